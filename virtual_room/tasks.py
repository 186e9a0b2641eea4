# virtual_room/tasks.py
import logging

from celery import shared_task
from django.utils import timezone

from .models import SessionParticipant
from .services import disconnect_participant
from .state import heartbeat_timeout

logger = logging.getLogger(__name__)


@shared_task(ignore_result=True)
def sweep_stale_participants() -> int:
    """
    Periodic task (every minute): seats still flagged connected but silent
    for longer than the heartbeat timeout are disconnected, with the same
    message purge as an explicit disconnect.
    """
    cutoff = timezone.now() - heartbeat_timeout()
    stale = list(
        SessionParticipant.objects
        .filter(is_connected=True, last_heartbeat__lt=cutoff)
        .values_list("id", flat=True)
    )
    for pid in stale:
        disconnect_participant(pid)
    if stale:
        logger.info("swept %s stale participant(s)", len(stale))
    return len(stale)
