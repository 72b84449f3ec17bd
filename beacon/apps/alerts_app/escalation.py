import logging
import uuid

import redis
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.core.cache import cache
from redis.exceptions import LockError

from .alert_store import AlertStore, escalation_threshold
from .contacts import ContactResolver
from .dispatcher import NotificationDispatcher
from .exceptions import StoreUnavailable
from .models import NotificationRecord
from .push_service import send_push_to_user

logger = logging.getLogger(__name__)

POLLER_LOCK_KEY = 'alerts:escalation-poller:lock'


def publish_escalation_event(alert, result):
    """Tell the alert owner their alert was escalated: websocket group message plus device push."""
    payload = {
        'type': 'alert_escalated',
        'alert_id': str(alert.id),
        'emergency_type': alert.emergency_type,
        'escalated_at': alert.escalated_at.isoformat() if alert.escalated_at else None,
        'contacts_notified': result.contacts_notified if result else 0,
    }
    try:
        channel_layer = get_channel_layer()
        if channel_layer is not None:
            async_to_sync(channel_layer.group_send)(
                f'user_{alert.owner_id}_notifications',
                {"type": "send_notification", "message": payload},
            )
    except Exception as e:
        logger.warning(f"Could not publish escalation of alert {alert.id} to websocket group: {e}")

    try:
        send_push_to_user(
            alert.owner,
            title="Your emergency alert was escalated",
            body="No one has responded yet. Your contacts have been notified again.",
            data=payload,
        )
    except Exception as e:
        logger.warning(f"Could not push escalation of alert {alert.id} to owner devices: {e}")


class PollerLock:
    """
    Keeps escalation ticks from overlapping.

    With ALERT_LOCK_REDIS_URL set this is a redis-py Lock, whose release only
    deletes the key while it still holds our token. Without Redis the cache is
    process-local, so the get-then-delete release only races within a process.
    """

    def __init__(self, timeout):
        self.timeout = timeout
        self.token = uuid.uuid4().hex
        self._redis_lock = None

    def acquire(self):
        redis_url = getattr(settings, 'ALERT_LOCK_REDIS_URL', None)
        if redis_url:
            client = redis.from_url(redis_url)
            self._redis_lock = client.lock(POLLER_LOCK_KEY, timeout=self.timeout, blocking=False)
            return self._redis_lock.acquire()
        return cache.add(POLLER_LOCK_KEY, self.token, timeout=self.timeout)

    def release(self):
        if self._redis_lock is not None:
            try:
                self._redis_lock.release()
            except LockError:
                logger.warning("Escalation lock expired before the run finished; left it to its new holder")
            return
        if cache.get(POLLER_LOCK_KEY) == self.token:
            cache.delete(POLLER_LOCK_KEY)


class EscalationPoller:
    """
    One tick of the escalation job: escalate overdue active alerts and send
    each of them an "escalated" notification wave.

    An alert counts as notified only once its wave has been dispatched, so a
    tick that escalates an alert but fails before dispatching (contacts or
    ledger unavailable) leaves it for the next tick to notify.
    """

    def __init__(self, store=None, resolver=None, dispatcher=None, threshold=None, lock_timeout=None):
        self.store = store or AlertStore()
        self.resolver = resolver or ContactResolver()
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.threshold = threshold or escalation_threshold()
        self.lock_timeout = lock_timeout or getattr(settings, 'ALERT_ESCALATION_INTERVAL_SECONDS', 300) * 2

    def tick(self):
        lock = PollerLock(self.lock_timeout)
        if not lock.acquire():
            logger.info("Previous escalation run still in progress; skipping this tick")
            return {'skipped': True, 'escalated': 0, 'notifications_sent': 0, 'results': []}
        try:
            return self._run()
        finally:
            lock.release()

    def _run(self):
        try:
            unnotified = self.store.awaiting_escalation_wave()
            candidates = self.store.overdue(self.threshold)
        except StoreUnavailable:
            logger.error("Escalation check could not read alerts; will retry on next tick")
            return {'skipped': False, 'error': 'store_unavailable', 'escalated': 0, 'notifications_sent': 0, 'results': []}

        if not candidates and not unnotified:
            logger.debug("No alerts to escalate")

        results = []
        for alert in unnotified:
            logger.info(f"Alert {alert.id} was escalated without notifying contacts; retrying the escalated wave")
            results.append(self._guarded(self.notify, alert))
        for alert in candidates:
            results.append(self._guarded(self.process, alert))

        escalated = sum(1 for r in results if r.get('escalated'))
        notified = sum(1 for r in results if r.get('notifications_sent'))
        if escalated or notified:
            logger.info(f"{escalated} alert(s) escalated, {notified} with notifications sent")
        return {
            'skipped': False,
            'escalated': escalated,
            'notifications_sent': notified,
            'results': results,
        }

    def _guarded(self, step, alert):
        try:
            return step(alert)
        except Exception as e:
            logger.exception(f"Escalation processing failed for alert {alert.id}: {e}")
            return {'alert_id': str(alert.id), 'success': False, 'error': 'Processing failed'}

    def process(self, alert):
        if not self.store.escalate(alert.id, self.threshold):
            logger.info(f"Alert {alert.id} no longer eligible for escalation")
            return {'alert_id': str(alert.id), 'success': True, 'escalated': False}

        alert.refresh_from_db(fields=['status', 'escalated_at'])
        outcome = self.notify(alert)
        outcome['escalated'] = True
        return outcome

    def notify(self, alert):
        """Send the escalated wave for an already escalated alert and tell its owner."""
        minutes = int(self.threshold.total_seconds() // 60)
        contacts = self.resolver.resolve(alert.owner_id)
        result = self.dispatcher.dispatch(
            alert.id,
            NotificationRecord.Wave.ESCALATED,
            contacts,
            emergency_type=f"ESCALATED: {alert.emergency_type}",
            situation=f"⚠️ ESCALATED ALERT - NO RESPONSE FOR {minutes} MINUTES\n\n{alert.situation}",
            location=alert.location,
            evidence_refs=alert.evidence_refs,
        )
        self.store.mark_escalation_notified(alert.id)
        publish_escalation_event(alert, result)
        return {
            'alert_id': str(alert.id),
            'success': True,
            'escalated': False,
            'notifications_sent': result.total_sent > 0,
            'dispatch': result.as_dict(),
        }
