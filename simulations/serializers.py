# simulations/serializers.py
from rest_framework import serializers

from common.enums import SubmitReason
from .models import Attempt, Simulation, SimulationAssignment, SimulationQuestion
from .services.attempts import SCORE_FIELDS, results_hidden


# ---------- Staff CRUD ----------
class SimulationQuestionSerializer(serializers.ModelSerializer):
    class Meta:
        model = SimulationQuestion
        fields = ["id", "question", "order", "custom_points", "custom_negative_points"]


class SimulationSerializer(serializers.ModelSerializer):
    questions = SimulationQuestionSerializer(many=True, required=False)
    is_locked = serializers.BooleanField(read_only=True)

    class Meta:
        model = Simulation
        fields = [
            "id", "title", "description", "status", "duration_minutes",
            "correct_points", "wrong_points", "blank_points", "use_question_points",
            "passing_score", "max_score", "is_repeatable", "max_attempts",
            "allow_review", "show_results", "show_correct_answers",
            "is_official", "is_paper_based", "is_public", "access_type",
            "randomize_order", "randomize_answers", "start_date", "end_date",
            "questions", "is_locked", "created_at", "updated_at",
        ]
        read_only_fields = ["status", "created_at", "updated_at"]

    def validate(self, attrs):
        start = attrs.get("start_date", getattr(self.instance, "start_date", None))
        end = attrs.get("end_date", getattr(self.instance, "end_date", None))
        if start and end and start >= end:
            raise serializers.ValidationError("start_date must be earlier than end_date.")
        return attrs

    def _write_questions(self, sim, rows):
        sim.questions.all().delete()
        SimulationQuestion.objects.bulk_create([
            SimulationQuestion(
                simulation=sim,
                question=r["question"],
                order=r.get("order") or i + 1,
                custom_points=r.get("custom_points"),
                custom_negative_points=r.get("custom_negative_points"),
            )
            for i, r in enumerate(rows)
        ])

    def create(self, validated_data):
        rows = validated_data.pop("questions", [])
        sim = Simulation.objects.create(**validated_data)
        self._write_questions(sim, rows)
        return sim

    def update(self, instance, validated_data):
        rows = validated_data.pop("questions", None)
        for k, v in validated_data.items():
            setattr(instance, k, v)
        instance.save()
        if rows is not None:
            self._write_questions(instance, rows)
        return instance


class SimulationAssignmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = SimulationAssignment
        fields = ["id", "simulation", "student", "group", "start_date", "end_date", "status", "notes", "created_at"]
        read_only_fields = ["simulation", "status", "created_at"]

    def validate(self, attrs):
        if bool(attrs.get("student")) == bool(attrs.get("group")):
            raise serializers.ValidationError("Provide exactly one of student or group.")
        return attrs


# ---------- Student play ----------
class AnswerInSerializer(serializers.Serializer):
    question_id = serializers.UUIDField()
    selected_option_id = serializers.UUIDField(required=False, allow_null=True)
    answer_text = serializers.CharField(required=False, allow_blank=True)
    time_spent_seconds = serializers.IntegerField(required=False, min_value=0)
    flagged = serializers.BooleanField(required=False)


class SaveProgressInSerializer(serializers.Serializer):
    answers = AnswerInSerializer(many=True, required=False)
    elapsed_seconds = serializers.IntegerField(required=False, min_value=0)


class SubmitInSerializer(SaveProgressInSerializer):
    reason = serializers.ChoiceField(
        choices=[SubmitReason.MANUAL, SubmitReason.TIMEOUT], required=False, default=SubmitReason.MANUAL
    )


class PaperAnswerInSerializer(serializers.Serializer):
    question_id = serializers.UUIDField()
    selected_option_id = serializers.UUIDField(required=False, allow_null=True)


class PaperResultInSerializer(serializers.Serializer):
    student_id = serializers.IntegerField()
    was_present = serializers.BooleanField(default=True)
    answers = PaperAnswerInSerializer(many=True, required=False, default=list)


class AttemptResultSerializer(serializers.ModelSerializer):
    simulation_title = serializers.CharField(source="simulation.title", read_only=True)

    class Meta:
        model = Attempt
        fields = [
            "id", "simulation", "simulation_title", "status", "submit_reason",
            "started_at", "submitted_at", "elapsed_seconds", "is_paper_based", "was_present",
            "total_questions", "total_score", "percentage_score",
            "correct_count", "wrong_count", "blank_count", "passed", "subject_breakdown",
        ]
        read_only_fields = fields

    def to_representation(self, instance):
        data = super().to_representation(instance)
        request = self.context.get("request")
        if request is not None and results_hidden(instance.simulation, request.user):
            for key in SCORE_FIELDS:
                if key in data:
                    data[key] = None
        return data
