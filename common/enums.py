from django.db import models


class Role(models.TextChoices):
    ADMIN        = "ADMIN",        "Admin"
    COLLABORATOR = "COLLABORATOR", "Collaborator"
    STUDENT      = "STUDENT",      "Student"


class QuestionType(models.TextChoices):
    SINGLE_CHOICE = "SINGLE_CHOICE", "Single choice"
    OPEN_TEXT     = "OPEN_TEXT",     "Open text"


class SimulationStatus(models.TextChoices):
    DRAFT     = "DRAFT",     "Draft"
    PUBLISHED = "PUBLISHED", "Published"
    ARCHIVED  = "ARCHIVED",  "Archived"


class AccessType(models.TextChoices):
    OPEN = "OPEN", "Open"
    ROOM = "ROOM", "Virtual room"


class AssignmentStatus(models.TextChoices):
    ACTIVE = "ACTIVE", "Active"
    CLOSED = "CLOSED", "Closed"


class AttemptStatus(models.TextChoices):
    IN_PROGRESS = "IN_PROGRESS", "In progress"
    SUBMITTED   = "SUBMITTED",   "Submitted"


class SubmitReason(models.TextChoices):
    MANUAL  = "MANUAL",  "Manual"
    TIMEOUT = "TIMEOUT", "Time expired"
    PAPER   = "PAPER",   "Paper entry"


class SessionStatus(models.TextChoices):
    WAITING   = "WAITING",   "Waiting"
    STARTED   = "STARTED",   "Started"
    COMPLETED = "COMPLETED", "Completed"


class CheatingEventType(models.TextChoices):
    TAB_SWITCH      = "TAB_SWITCH",      "Tab/Window switch"
    WINDOW_BLUR     = "WINDOW_BLUR",     "Window blur"
    FULLSCREEN_EXIT = "FULLSCREEN_EXIT", "Fullscreen exit"
    COPY            = "COPY",            "Copy"
    PASTE           = "PASTE",           "Paste"
    RIGHT_CLICK     = "RIGHT_CLICK",     "Right click"
    DEVTOOLS        = "DEVTOOLS",        "DevTools opened"
    OTHER           = "OTHER",           "Other"


class MessageSender(models.TextChoices):
    ADMIN   = "ADMIN",   "Staff"
    STUDENT = "STUDENT", "Student"


class NotificationKind(models.TextChoices):
    SIMULATION_ASSIGNED = "SIMULATION_ASSIGNED", "Simulation assigned"
    RESULT_AVAILABLE    = "RESULT_AVAILABLE",    "Result available"
