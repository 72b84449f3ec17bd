import logging
from collections import namedtuple

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from .exceptions import StoreUnavailable
from .models import NotificationRecord

logger = logging.getLogger(__name__)

Outcome = NotificationRecord.Outcome

DedupKey = namedtuple('DedupKey', ['alert_id', 'contact_key', 'channel', 'wave'])


class NotificationLedger:
    """
    Append-only record of notification attempts.

    A success row for a DedupKey is the idempotency barrier for that
    (alert, contact, channel, wave); failed rows never block a retry.
    """

    def successful_keys(self, alert_id, wave):
        try:
            rows = NotificationRecord.objects.filter(
                alert_id=alert_id, wave=wave, outcome=Outcome.SUCCESS
            ).values_list('contact_key', 'channel')
            return {DedupKey(str(alert_id), contact_key, channel, wave) for contact_key, channel in rows}
        except DatabaseError as e:
            logger.error(f"Ledger read failed for alert {alert_id}/{wave}: {e}", exc_info=True)
            raise StoreUnavailable() from e

    def has_success(self, key):
        try:
            return NotificationRecord.objects.filter(
                alert_id=key.alert_id,
                contact_key=key.contact_key,
                channel=key.channel,
                wave=key.wave,
                outcome=Outcome.SUCCESS,
            ).exists()
        except DatabaseError as e:
            raise StoreUnavailable() from e

    def record(self, key, success, contact_name='', error_detail=None):
        """
        Append an outcome row. Returns False when a success for the same key
        already exists; the earlier row is kept.
        """
        try:
            with transaction.atomic():
                NotificationRecord.objects.create(
                    alert_id=key.alert_id,
                    contact_key=key.contact_key,
                    contact_name=contact_name[:200],
                    channel=key.channel,
                    wave=key.wave,
                    outcome=Outcome.SUCCESS if success else Outcome.FAILED,
                    provider_error=None if success else error_detail,
                    sent_at=timezone.now(),
                )
        except IntegrityError:
            logger.warning(f"Duplicate success for {key.channel}/{key.wave} on alert {key.alert_id}; keeping the first entry")
            return False
        except DatabaseError as e:
            logger.error(f"Ledger write failed for alert {key.alert_id}: {e}", exc_info=True)
            raise StoreUnavailable() from e
        return True

    def entries_for(self, alert_id):
        return NotificationRecord.objects.filter(alert_id=alert_id).order_by('sent_at', 'id')
