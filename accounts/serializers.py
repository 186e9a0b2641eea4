from rest_framework import serializers

from accounts.models import Notification, StudentGroup, User


class UserSerializer(serializers.ModelSerializer):
    name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = ["id", "username", "email", "phone", "role", "first_name", "last_name", "name"]


class LoginEmailPasswordSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)


class StudentGroupSerializer(serializers.ModelSerializer):
    member_ids = serializers.SerializerMethodField()

    class Meta:
        model = StudentGroup
        fields = ["id", "name", "member_ids", "created_at"]

    def get_member_ids(self, obj):
        return [m.student_id for m in obj.members.all()]


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ["id", "kind", "title", "body", "payload", "is_read", "created_at"]
        read_only_fields = fields
