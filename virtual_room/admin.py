from django.contrib import admin

from .models import CheatingEvent, SessionMessage, SessionParticipant, SimulationSession


class SessionParticipantInline(admin.TabularInline):
    model = SessionParticipant
    extra = 0
    raw_id_fields = ("student", "attempt")
    fields = ("student", "is_connected", "last_heartbeat", "ready_at", "answered_count", "is_kicked", "completed_at")
    readonly_fields = ("last_heartbeat",)


@admin.register(SimulationSession)
class SimulationSessionAdmin(admin.ModelAdmin):
    list_display = ("simulation", "assignment", "status", "scheduled_start_at", "actual_start_at", "ended_at")
    list_filter = ("status",)
    raw_id_fields = ("simulation", "assignment", "started_by")
    inlines = [SessionParticipantInline]


@admin.register(CheatingEvent)
class CheatingEventAdmin(admin.ModelAdmin):
    list_display = ("participant", "event_type", "created_at")
    list_filter = ("event_type",)
    raw_id_fields = ("participant",)


@admin.register(SessionMessage)
class SessionMessageAdmin(admin.ModelAdmin):
    list_display = ("participant", "sender_type", "is_read", "created_at")
    list_filter = ("sender_type", "is_read")
    raw_id_fields = ("participant", "sender")
