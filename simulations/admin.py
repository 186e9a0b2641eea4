from django.contrib import admin

from .models import (
    AnswerOption, Attempt, AttemptAnswer, Question, Simulation, SimulationAssignment,
    SimulationQuestion, Subject,
)


# ----- Inlines -----
class AnswerOptionInline(admin.TabularInline):
    model = AnswerOption
    extra = 1
    fields = ("label", "text", "is_correct", "order")
    ordering = ("order",)


class SimulationQuestionInline(admin.TabularInline):
    model = SimulationQuestion
    extra = 0
    raw_id_fields = ("question",)
    fields = ("question", "order", "custom_points", "custom_negative_points")
    ordering = ("order",)


class SimulationAssignmentInline(admin.TabularInline):
    model = SimulationAssignment
    fk_name = "simulation"
    extra = 0
    raw_id_fields = ("student", "group", "assigned_by")
    fields = ("student", "group", "start_date", "end_date", "status")


class AttemptAnswerInline(admin.TabularInline):
    model = AttemptAnswer
    extra = 0
    raw_id_fields = ("question", "selected_option")
    fields = ("order", "question", "selected_option", "is_correct", "earned_points", "time_spent_seconds", "flagged")
    readonly_fields = ("is_correct", "earned_points")


# ----- ModelAdmins -----
@admin.register(Subject)
class SubjectAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "order")
    search_fields = ("name", "code")


@admin.register(Question)
class QuestionAdmin(admin.ModelAdmin):
    list_display = ("short_text", "subject", "question_type", "points", "negative_points", "is_active")
    list_filter = ("subject", "question_type", "is_active")
    search_fields = ("text",)
    inlines = [AnswerOptionInline]

    @admin.display(description="Text")
    def short_text(self, obj):
        return obj.text[:80]


@admin.register(Simulation)
class SimulationAdmin(admin.ModelAdmin):
    list_display = ("title", "status", "access_type", "duration_minutes", "is_official", "is_paper_based",
                    "start_date", "end_date")
    list_filter = ("status", "access_type", "is_official", "is_paper_based")
    search_fields = ("title",)
    inlines = [SimulationQuestionInline, SimulationAssignmentInline]

    def get_readonly_fields(self, request, obj=None):
        if obj is not None and obj.is_locked:
            return ("correct_points", "wrong_points", "blank_points", "use_question_points",
                    "passing_score", "max_score")
        return ()


@admin.register(Attempt)
class AttemptAdmin(admin.ModelAdmin):
    list_display = ("simulation", "student", "status", "total_score", "passed", "is_paper_based", "submitted_at")
    list_filter = ("status", "is_paper_based", "submit_reason")
    search_fields = ("student__username", "simulation__title")
    raw_id_fields = ("simulation", "student", "entered_by")
    inlines = [AttemptAnswerInline]
