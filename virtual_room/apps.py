# virtual_room/apps.py
from django.apps import AppConfig


class VirtualRoomConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "virtual_room"

    def ready(self):
        import virtual_room.tasks  # noqa: F401
