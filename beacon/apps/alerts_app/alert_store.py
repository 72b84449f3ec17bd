"""
Alert lifecycle state machine.

    active ──> resolved
      │           ^
      └──> escalated

Every transition is a single conditional UPDATE, so a user resolving an alert
and the escalation poller racing on the same row produce exactly one winner.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.utils import timezone

from .exceptions import AlertNotFound, StoreUnavailable
from .models import EmergencyAlert

logger = logging.getLogger(__name__)

Status = EmergencyAlert.Status


class AlertStore:
    def __init__(self, clock=None):
        self.clock = clock or timezone.now

    def get(self, alert_id):
        try:
            return EmergencyAlert.objects.select_related('owner').get(pk=alert_id)
        except (EmergencyAlert.DoesNotExist, ValidationError, ValueError):
            raise AlertNotFound()
        except DatabaseError as e:
            logger.error(f"Alert store lookup failed for {alert_id}: {e}", exc_info=True)
            raise StoreUnavailable() from e

    def resolve(self, alert_id):
        """
        Move an active or escalated alert to resolved.

        Returns True when this call performed the transition and False when the
        alert was already resolved.
        """
        now = self.clock()
        try:
            updated = EmergencyAlert.objects.filter(
                pk=alert_id,
                status__in=[Status.ACTIVE, Status.ESCALATED],
            ).update(status=Status.RESOLVED, resolved_at=now)
            if updated:
                logger.info(f"Alert {alert_id} resolved")
                return True
            if not EmergencyAlert.objects.filter(pk=alert_id).exists():
                raise AlertNotFound()
        except DatabaseError as e:
            logger.error(f"Could not resolve alert {alert_id}: {e}", exc_info=True)
            raise StoreUnavailable() from e
        logger.debug(f"Alert {alert_id} already resolved; nothing to do")
        return False

    def escalate(self, alert_id, threshold):
        """
        Move an active alert older than `threshold` to escalated.

        Returns False when the precondition no longer holds, e.g. the alert was
        resolved in the meantime or is still too young.
        """
        now = self.clock()
        try:
            updated = EmergencyAlert.objects.filter(
                pk=alert_id,
                status=Status.ACTIVE,
                created_at__lte=now - threshold,
            ).update(status=Status.ESCALATED, escalated_at=now)
        except DatabaseError as e:
            logger.error(f"Could not escalate alert {alert_id}: {e}", exc_info=True)
            raise StoreUnavailable() from e
        if updated:
            logger.info(f"Alert {alert_id} escalated")
        return bool(updated)

    def overdue(self, threshold):
        """Active alerts whose age is at least `threshold`, oldest first."""
        cutoff = self.clock() - threshold
        try:
            return list(
                EmergencyAlert.objects.filter(status=Status.ACTIVE, created_at__lte=cutoff)
                .select_related('owner')
                .order_by('created_at')
            )
        except DatabaseError as e:
            logger.error(f"Could not query overdue alerts: {e}", exc_info=True)
            raise StoreUnavailable() from e

    def awaiting_escalation_wave(self):
        """Escalated alerts whose escalated notification wave has not been dispatched yet."""
        try:
            return list(
                EmergencyAlert.objects.filter(status=Status.ESCALATED, escalation_notified_at__isnull=True)
                .select_related('owner')
                .order_by('escalated_at')
            )
        except DatabaseError as e:
            logger.error(f"Could not query escalated alerts awaiting notification: {e}", exc_info=True)
            raise StoreUnavailable() from e

    def mark_escalation_notified(self, alert_id):
        try:
            EmergencyAlert.objects.filter(pk=alert_id, escalation_notified_at__isnull=True).update(
                escalation_notified_at=self.clock()
            )
        except DatabaseError as e:
            logger.error(f"Could not mark escalation of alert {alert_id} as notified: {e}", exc_info=True)
            raise StoreUnavailable() from e


def escalation_threshold():
    return timedelta(minutes=getattr(settings, 'ALERT_ESCALATION_THRESHOLD_MINUTES', 15))
