# simulations/apps.py
from django.apps import AppConfig


class SimulationsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "simulations"

    def ready(self):
        # Ensures Celery sees simulations.tasks (for @shared_task)
        import simulations.tasks  # noqa: F401
