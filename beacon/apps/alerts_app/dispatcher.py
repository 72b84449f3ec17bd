"""
Notification fan-out.

A dispatch sends one wave of an alert to every contact over every applicable
channel. Sends run concurrently (bounded by a semaphore), each one limited by
a timeout, and every attempt is written to the NotificationLedger. A success
already in the ledger for (alert, contact, channel, wave) short-circuits the
send, which makes repeated triggers for the same wave idempotent.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from asgiref.sync import async_to_sync, sync_to_async
from django.conf import settings

from .exceptions import InvalidDispatchRequest
from .ledger import DedupKey, NotificationLedger
from .models import NotificationRecord
from .notification_channels import AlertPayload, ChannelResult, default_channels

logger = logging.getLogger(__name__)

SENT = 'sent'
FAILED = 'failed'
SKIPPED = 'skipped'
DUPLICATE = 'duplicate'


@dataclass
class ContactOutcome:
    contact_key: str
    contact_name: str
    channel: str
    status: str
    error: Optional[str] = None

    def as_dict(self):
        return {
            'contact_id': self.contact_key,
            'contact': self.contact_name,
            'channel': self.channel,
            'status': self.status,
            'error': self.error,
        }


@dataclass
class DispatchResult:
    alert_id: str
    wave: str
    email_sent: int = 0
    email_failed: int = 0
    sms_sent: int = 0
    sms_failed: int = 0
    skipped: int = 0
    contacts_notified: int = 0
    details: List[ContactOutcome] = field(default_factory=list)

    def add(self, outcome):
        self.details.append(outcome)
        if outcome.status == SKIPPED:
            self.skipped += 1
            return
        delivered = outcome.status in (SENT, DUPLICATE)
        if outcome.channel == 'email':
            if delivered:
                self.email_sent += 1
            else:
                self.email_failed += 1
        elif outcome.channel == 'sms':
            if delivered:
                self.sms_sent += 1
            else:
                self.sms_failed += 1

    @property
    def total_sent(self):
        return self.email_sent + self.sms_sent

    @property
    def total_failed(self):
        return self.email_failed + self.sms_failed

    def as_dict(self):
        return {
            'success': True,
            'alert_id': self.alert_id,
            'wave': self.wave,
            'email_sent': self.email_sent,
            'email_failed': self.email_failed,
            'sms_sent': self.sms_sent,
            'sms_failed': self.sms_failed,
            'skipped': self.skipped,
            'contacts_notified': self.contacts_notified,
            'results': [d.as_dict() for d in self.details],
        }


class NotificationDispatcher:
    def __init__(self, ledger=None, channels=None, timeout=None, concurrency=None):
        self.ledger = ledger or NotificationLedger()
        self.channels = channels if channels is not None else default_channels()
        self.timeout = timeout if timeout is not None else getattr(settings, 'ALERT_CHANNEL_TIMEOUT_SECONDS', 5)
        self.concurrency = concurrency or getattr(settings, 'ALERT_DISPATCH_CONCURRENCY', 8)

    def dispatch(self, alert_id, wave, contacts, emergency_type, situation, location, evidence_refs=None):
        """
        Send `wave` of an alert to `contacts` and return a DispatchResult.

        Channel failures are folded into the result. Only store failures
        (StoreUnavailable) and an unknown wave (InvalidDispatchRequest) propagate.
        """
        return async_to_sync(self.adispatch)(
            alert_id, wave, contacts, emergency_type, situation, location, evidence_refs
        )

    async def adispatch(self, alert_id, wave, contacts, emergency_type, situation, location, evidence_refs=None):
        try:
            wave = NotificationRecord.Wave(wave).value
        except ValueError:
            raise InvalidDispatchRequest(f"Unknown notification wave: {wave}")
        alert_id = str(alert_id)
        payload = AlertPayload(
            alert_id=alert_id,
            wave=wave,
            emergency_type=emergency_type,
            situation=situation,
            latitude=location['latitude'],
            longitude=location['longitude'],
            evidence_refs=list(evidence_refs or []),
        )
        result = DispatchResult(alert_id=alert_id, wave=wave)
        if not contacts:
            logger.info(f"Alert {alert_id} ({wave}): no contacts to notify")
            return result

        already_sent = await sync_to_async(self.ledger.successful_keys)(alert_id, wave)

        jobs = []
        for contact in contacts:
            for channel in self.channels:
                if not channel.applies_to(contact):
                    continue
                key = DedupKey(alert_id, contact.key, channel.name, wave)
                if key in already_sent:
                    result.add(ContactOutcome(contact.key, contact.name, channel.name, SKIPPED))
                    continue
                jobs.append((key, contact, channel))

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(key, contact, channel):
            async with semaphore:
                # Once started, a send always records its outcome, even if the
                # caller goes away.
                return await asyncio.shield(self._send_and_record(key, contact, channel, payload))

        outcomes = await asyncio.gather(*(run(*job) for job in jobs))
        for outcome in outcomes:
            result.add(outcome)

        result.contacts_notified = len({d.contact_key for d in result.details if d.status in (SENT, DUPLICATE)})
        logger.info(
            f"Alert {alert_id} ({wave}) dispatched: email {result.email_sent} sent/{result.email_failed} failed, "
            f"sms {result.sms_sent} sent/{result.sms_failed} failed, {result.skipped} already delivered"
        )
        return result

    async def _send_and_record(self, key, contact, channel, payload):
        send = sync_to_async(channel.send, thread_sensitive=False)
        try:
            channel_result = await asyncio.wait_for(send(contact, payload), timeout=self.timeout + 1)
        except asyncio.TimeoutError:
            channel_result = ChannelResult(success=False, error_detail=f"{channel.name} send timed out after {self.timeout}s")
        except Exception as e:
            logger.error(f"{channel.name} channel raised for alert {key.alert_id}: {e}", exc_info=True)
            channel_result = ChannelResult(success=False, error_detail=f"{channel.name} channel error: {type(e).__name__}")

        recorded = await sync_to_async(self.ledger.record)(
            key,
            channel_result.success,
            contact_name=contact.name,
            error_detail=channel_result.error_detail,
        )
        if channel_result.success:
            status = SENT if recorded else DUPLICATE
        else:
            status = FAILED
        return ContactOutcome(key.contact_key, contact.name, channel.name, status, channel_result.error_detail)
