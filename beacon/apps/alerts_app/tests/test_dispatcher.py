import asyncio
import threading
import time

from asgiref.sync import async_to_sync
from django.contrib.auth.models import User
from django.test import TestCase

from apps.alerts_app.contacts import ContactInfo
from apps.alerts_app.dispatcher import DUPLICATE, FAILED, SENT, SKIPPED, NotificationDispatcher
from apps.alerts_app.exceptions import InvalidDispatchRequest
from apps.alerts_app.ledger import NotificationLedger
from apps.alerts_app.models import EmergencyAlert, NotificationRecord
from apps.alerts_app.notification_channels import ChannelResult

LOCATION = {'latitude': 14.5995, 'longitude': 120.9842}


class FakeChannel:
    """Records calls; fails for contacts whose key is in `fail_for`."""

    def __init__(self, name, fail_for=(), raise_for=(), delay=0):
        self.name = name
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def applies_to(self, contact):
        return bool(contact.email) if self.name == 'email' else bool(contact.phone)

    def send(self, contact, payload):
        with self._lock:
            self.calls.append((contact.key, payload))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if contact.key in self.raise_for:
                raise RuntimeError("provider exploded")
            if contact.key in self.fail_for:
                return ChannelResult(success=False, error_detail=f"{self.name} rejected")
            return ChannelResult(success=True, provider_id=f"{self.name}-{contact.key}")
        finally:
            with self._lock:
                self.in_flight -= 1


class StaleLedger(NotificationLedger):
    """Reports no prior successes, as if another dispatch committed after our read."""

    def successful_keys(self, alert_id, wave):
        return set()


def sms_contacts(count):
    return [ContactInfo(key=str(i), name=f"Contact {i}", phone=f"0917000000{i}") for i in range(1, count + 1)]


class NotificationDispatcherTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='dispatch_owner', password='password123')
        self.alert = EmergencyAlert.objects.create(
            owner=self.user, emergency_type='medical', situation='Chest pain', **LOCATION
        )
        self.email = FakeChannel('email')
        self.sms = FakeChannel('sms')

    def dispatch(self, contacts, channels=None, wave='initial', **kwargs):
        dispatcher = NotificationDispatcher(channels=channels or [self.email, self.sms], timeout=2, **kwargs)
        return dispatcher.dispatch(
            self.alert.id, wave, contacts,
            emergency_type='medical', situation='Chest pain', location=LOCATION,
            evidence_refs=['https://cdn.example.com/e/1.jpg'],
        )

    def test_sends_every_applicable_channel(self):
        contacts = [
            ContactInfo(key='1', name='Both', phone='09170000001', email='both@example.com'),
            ContactInfo(key='2', name='Sms Only', phone='09170000002'),
        ]
        result = self.dispatch(contacts)

        self.assertEqual((result.email_sent, result.email_failed), (1, 0))
        self.assertEqual((result.sms_sent, result.sms_failed), (2, 0))
        self.assertEqual(result.contacts_notified, 2)
        self.assertEqual(NotificationRecord.objects.filter(alert=self.alert, outcome='success').count(), 3)
        _, payload = self.email.calls[0]
        self.assertEqual(payload.alert_id, str(self.alert.id))
        self.assertEqual(payload.evidence_refs, ['https://cdn.example.com/e/1.jpg'])

    def test_partial_failure_is_reported_per_contact(self):
        self.sms.fail_for = {'2'}

        result = self.dispatch(sms_contacts(3))

        self.assertEqual(result.sms_sent, 2)
        self.assertEqual(result.sms_failed, 1)
        self.assertEqual(result.contacts_notified, 2)
        failed = [d for d in result.details if d.status == FAILED]
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].contact_key, '2')
        self.assertEqual(failed[0].error, 'sms rejected')
        failed_row = NotificationRecord.objects.get(alert=self.alert, outcome='failed')
        self.assertEqual(failed_row.contact_key, '2')
        self.assertEqual(failed_row.provider_error, 'sms rejected')

    def test_repeat_dispatch_is_idempotent(self):
        first = self.dispatch(sms_contacts(2))
        second = self.dispatch(sms_contacts(2))

        self.assertEqual(first.sms_sent, 2)
        self.assertEqual(second.sms_sent, 0)
        self.assertEqual(second.skipped, 2)
        self.assertTrue(all(d.status == SKIPPED for d in second.details))
        self.assertEqual(len(self.sms.calls), 2)
        self.assertEqual(NotificationRecord.objects.filter(alert=self.alert, outcome='success').count(), 2)

    def test_failed_sends_are_retried(self):
        self.sms.fail_for = {'1'}
        self.dispatch(sms_contacts(2))
        self.sms.fail_for = set()

        retry = self.dispatch(sms_contacts(2))

        self.assertEqual(retry.sms_sent, 1)
        self.assertEqual(retry.skipped, 1)
        self.assertEqual(sorted(key for key, _ in self.sms.calls), ['1', '1', '2'])

    def test_new_wave_notifies_again(self):
        self.dispatch(sms_contacts(1), wave='initial')
        escalated = self.dispatch(sms_contacts(1), wave='escalated')

        self.assertEqual(escalated.sms_sent, 1)
        waves = set(NotificationRecord.objects.filter(alert=self.alert, outcome='success').values_list('wave', flat=True))
        self.assertEqual(waves, {'initial', 'escalated'})

    def test_no_contacts(self):
        result = self.dispatch([])

        self.assertEqual(result.total_sent, 0)
        self.assertEqual(result.total_failed, 0)
        self.assertEqual(result.details, [])
        self.assertEqual(self.sms.calls, [])
        self.assertFalse(NotificationRecord.objects.filter(alert=self.alert).exists())

    def test_success_lost_to_concurrent_dispatch_counts_as_duplicate(self):
        self.dispatch(sms_contacts(1))

        dispatcher = NotificationDispatcher(ledger=StaleLedger(), channels=[self.sms], timeout=2)
        result = dispatcher.dispatch(
            self.alert.id, 'initial', sms_contacts(1),
            emergency_type='medical', situation='Chest pain', location=LOCATION,
        )

        self.assertEqual(result.details[0].status, DUPLICATE)
        self.assertEqual(result.sms_sent, 1)
        self.assertEqual(NotificationRecord.objects.filter(alert=self.alert, outcome='success').count(), 1)

    def test_channel_exception_is_contained(self):
        self.sms.raise_for = {'1'}

        result = self.dispatch(sms_contacts(2))

        self.assertEqual(result.sms_sent, 1)
        self.assertEqual(result.sms_failed, 1)
        failed = next(d for d in result.details if d.status == FAILED)
        self.assertEqual(failed.error, 'sms channel error: RuntimeError')

    def test_slow_channel_times_out(self):
        slow = FakeChannel('sms', delay=1.3)
        dispatcher = NotificationDispatcher(channels=[slow], timeout=0.1)

        result = dispatcher.dispatch(
            self.alert.id, 'initial', sms_contacts(1),
            emergency_type='medical', situation='Chest pain', location=LOCATION,
        )

        self.assertEqual(result.sms_failed, 1)
        self.assertEqual(result.details[0].error, 'sms send timed out after 0.1s')
        self.assertTrue(NotificationRecord.objects.filter(alert=self.alert, outcome='failed').exists())

    def test_concurrency_is_capped(self):
        slow = FakeChannel('sms', delay=0.05)

        result = self.dispatch(sms_contacts(6), channels=[slow], concurrency=2)

        self.assertEqual(result.sms_sent, 6)
        self.assertLessEqual(slow.max_in_flight, 2)

    def test_unknown_wave_rejected_before_sending(self):
        with self.assertRaises(InvalidDispatchRequest):
            self.dispatch(sms_contacts(1), wave='third')
        self.assertEqual(self.sms.calls, [])
        self.assertFalse(NotificationRecord.objects.exists())

    def test_enum_and_plain_wave_share_dedup_keys(self):
        self.dispatch(sms_contacts(1), wave=NotificationRecord.Wave.INITIAL)
        again = self.dispatch(sms_contacts(1), wave='initial')
        self.assertEqual(again.skipped, 1)
        self.assertEqual(again.wave, 'initial')

    def test_result_as_dict(self):
        self.sms.fail_for = {'2'}
        data = self.dispatch(sms_contacts(2)).as_dict()

        self.assertTrue(data['success'])
        self.assertEqual(data['alert_id'], str(self.alert.id))
        self.assertEqual(data['wave'], 'initial')
        self.assertEqual(data['sms_sent'], 1)
        self.assertEqual(data['sms_failed'], 1)
        statuses = {r['contact_id']: r['status'] for r in data['results']}
        self.assertEqual(statuses, {'1': SENT, '2': FAILED})

    def test_started_sends_recorded_when_caller_cancelled(self):
        slow = FakeChannel('sms', delay=0.3)

        async_to_sync(self._cancel_mid_send)(slow)

        self.assertEqual(len(slow.calls), 1)
        row = NotificationRecord.objects.get(alert=self.alert, wave='initial')
        self.assertEqual(row.outcome, 'success')
        self.assertEqual(row.contact_key, '1')

    async def _cancel_mid_send(self, slow):
        dispatcher = NotificationDispatcher(channels=[slow], timeout=2)
        task = asyncio.ensure_future(dispatcher.adispatch(
            self.alert.id, 'initial', sms_contacts(1),
            emergency_type='medical', situation='Chest pain', location=LOCATION,
        ))
        while not slow.calls:
            await asyncio.sleep(0.01)

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        # The shielded send keeps running and writes its ledger row.
        await asyncio.sleep(0.6)
