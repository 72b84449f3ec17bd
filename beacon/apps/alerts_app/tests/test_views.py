# beacon/apps/alerts_app/tests/test_views.py
import functools
import uuid

from rest_framework.test import APITestCase
from django.contrib.auth.models import User
from django.core.cache import cache
from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from unittest.mock import patch

from apps.alerts_app.exceptions import StoreUnavailable
from apps.alerts_app.models import EmergencyAlert, EmergencyContact, NotificationRecord, UserDevice
from apps.alerts_app.rate_limit import DispatchRateThrottle, InMemoryRateLimitStore, RateLimiter
from apps.alerts_app.tests.test_dispatcher import FakeChannel
from apps.alerts_app.tests.test_rate_limit import FakeClock
from apps.alerts_app.views import DispatchView

import logging

# Optional: Disable logging for cleaner test output
# logging.disable(logging.CRITICAL)


def make_alert(owner, **kwargs):
    fields = {'emergency_type': 'accident', 'situation': 'Car crash on EDSA', 'latitude': 14.58, 'longitude': 121.05}
    fields.update(kwargs)
    return EmergencyAlert.objects.create(owner=owner, **fields)


class HealthCheckTests(APITestCase):
    def test_health_check_is_public(self):
        response = self.client.get(reverse('health-check'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'ok')


class DispatchViewTests(APITestCase):
    def setUp(self):
        cache.clear()
        self.owner = User.objects.create_user(username='dispatcher', password='password123')
        self.stranger = User.objects.create_user(username='stranger', password='password123')
        self.alert = make_alert(self.owner)
        EmergencyContact.objects.create(owner=self.owner, name='Ana', phone='09171112222', email='ana@example.com')
        EmergencyContact.objects.create(owner=self.owner, name='Ben', phone='09173334444')
        self.url = reverse('alert-dispatch')

        self.email = FakeChannel('email')
        self.sms = FakeChannel('sms')
        channels_patcher = patch('apps.alerts_app.dispatcher.default_channels', return_value=[self.email, self.sms])
        channels_patcher.start()
        self.addCleanup(channels_patcher.stop)

    def payload(self, **kwargs):
        data = {
            'alert_id': str(self.alert.id),
            'emergency_type': 'accident',
            'situation': 'Car crash on EDSA',
            'location': {'latitude': 14.58, 'longitude': 121.05},
        }
        data.update(kwargs)
        return data

    def test_dispatch_to_stored_contacts(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.post(self.url, self.payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['wave'], 'initial')
        self.assertEqual(response.data['email_sent'], 1)
        self.assertEqual(response.data['sms_sent'], 2)
        self.assertEqual(response.data['contacts_notified'], 2)
        self.assertEqual(len(response.data['results']), 3)
        self.assertEqual(NotificationRecord.objects.filter(alert=self.alert, outcome='success').count(), 3)

    def test_dispatch_to_contacts_in_request(self):
        self.client.force_authenticate(user=self.owner)
        contacts = [
            {'name': 'Walk-in', 'phone': '+63 (917) 000-1111'},
            {'id': 'c-42', 'name': 'Listed', 'phone': '09179998888', 'email': 'listed@example.com'},
        ]
        response = self.client.post(self.url, self.payload(contacts=contacts), format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data['sms_sent'], 2)
        self.assertEqual(response.data['email_sent'], 1)
        keys = {r['contact_id'] for r in response.data['results']}
        self.assertIn('c-42', keys)
        self.assertTrue(any(k.startswith('adhoc:') for k in keys))

    def test_repeat_dispatch_skips_delivered(self):
        self.client.force_authenticate(user=self.owner)
        self.client.post(self.url, self.payload(), format='json')
        response = self.client.post(self.url, self.payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['skipped'], 3)
        self.assertEqual(len(self.sms.calls), 2)
        self.assertEqual(len(self.email.calls), 1)

    def test_partial_provider_failure_still_200(self):
        ana = EmergencyContact.objects.get(owner=self.owner, name='Ana')
        self.sms.fail_for = {str(ana.pk)}
        self.client.force_authenticate(user=self.owner)

        response = self.client.post(self.url, self.payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['sms_sent'], 1)
        self.assertEqual(response.data['sms_failed'], 1)

    def test_unauthenticated(self):
        response = self.client.post(self.url, self.payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(NotificationRecord.objects.exists())

    def test_other_owner_rejected_without_side_effects(self):
        self.client.force_authenticate(user=self.stranger)
        response = self.client.post(self.url, self.payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'Unauthorized to send notifications for this alert.')
        self.assertFalse(NotificationRecord.objects.exists())
        self.assertEqual(self.email.calls, [])
        self.assertEqual(self.sms.calls, [])

    def test_unknown_alert(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.post(self.url, self.payload(alert_id=str(uuid.uuid4())), format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Alert not found.')

    def test_missing_fields(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.post(self.url, {'alert_id': str(self.alert.id)}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('emergency_type', response.data)
        self.assertIn('situation', response.data)
        self.assertIn('location', response.data)
        self.assertEqual(self.sms.calls, [])

    def test_invalid_contact_phone(self):
        self.client.force_authenticate(user=self.owner)
        contacts = [{'name': 'Bad', 'phone': 'call me maybe'}]
        response = self.client.post(self.url, self.payload(contacts=contacts), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('contacts', response.data)

    def test_too_many_contacts(self):
        self.client.force_authenticate(user=self.owner)
        contacts = [{'name': f'C{i}', 'phone': f'091700000{i:02d}'} for i in range(21)]
        response = self.client.post(self.url, self.payload(contacts=contacts), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('contacts', response.data)

    def test_store_unavailable_is_retryable(self):
        self.client.force_authenticate(user=self.owner)
        with patch('apps.alerts_app.alert_store.AlertStore.get', side_effect=StoreUnavailable()):
            response = self.client.post(self.url, self.payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response['Retry-After'], '30')

    def test_eleventh_request_throttled(self):
        clock = FakeClock()
        limiter = RateLimiter(InMemoryRateLimitStore(), max_requests=10, window_seconds=60, clock=clock)
        self.client.force_authenticate(user=self.owner)

        with patch.object(DispatchView, 'throttle_classes', [functools.partial(DispatchRateThrottle, limiter=limiter)]):
            responses = [self.client.post(self.url, self.payload(), format='json') for _ in range(10)]
            clock.now += 20
            throttled = self.client.post(self.url, self.payload(), format='json')

        self.assertTrue(all(r.status_code == status.HTTP_200_OK for r in responses))
        self.assertEqual(throttled.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(throttled['Retry-After'], '40')
        self.assertEqual(throttled.data['retry_after'], 40)
        self.assertIn('error', throttled.data)
        # Only the first request actually sent anything; the rest were deduplicated.
        self.assertEqual(len(self.sms.calls), 2)

    @override_settings(ALERT_RATE_LIMIT_STORE='apps.alerts_app.rate_limit.InMemoryRateLimitStore')
    def test_in_memory_store_limits_across_requests(self):
        self.client.force_authenticate(user=self.owner)

        codes = [self.client.post(self.url, self.payload(), format='json').status_code for _ in range(12)]

        self.assertEqual(codes[:10], [status.HTTP_200_OK] * 10)
        self.assertEqual(codes[10:], [status.HTTP_429_TOO_MANY_REQUESTS] * 2)

    def test_bearer_token_flow(self):
        token_response = self.client.post(
            reverse('token-obtain'), {'username': 'dispatcher', 'password': 'password123'}, format='json'
        )
        self.assertEqual(token_response.status_code, status.HTTP_200_OK)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token_response.data['access']}")
        response = self.client.post(self.url, self.payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)


class EmergencyAlertViewSetTests(APITestCase):
    def setUp(self):
        self.owner = User.objects.create_user(username='alert_user', password='password123')
        self.other = User.objects.create_user(username='other_user', password='password123')
        self.alert = make_alert(self.owner)
        self.other_alert = make_alert(self.other)
        self.list_url = reverse('alert-list')

    def test_create_alert(self):
        self.client.force_authenticate(user=self.owner)
        data = {
            'emergency_type': 'fire',
            'situation': '  Smoke coming from the garage  ',
            'latitude': 14.6,
            'longitude': 121.0,
            'evidence_refs': ['https://cdn.example.com/e/1.jpg'],
        }
        response = self.client.post(self.list_url, data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        alert = EmergencyAlert.objects.get(pk=response.data['id'])
        self.assertEqual(alert.owner, self.owner)
        self.assertEqual(alert.status, EmergencyAlert.Status.ACTIVE)
        self.assertEqual(alert.situation, 'Smoke coming from the garage')
        self.assertEqual(alert.evidence_refs, ['https://cdn.example.com/e/1.jpg'])

    def test_create_rejects_unknown_type_and_bad_coordinates(self):
        self.client.force_authenticate(user=self.owner)
        data = {'emergency_type': 'alien', 'situation': 'x', 'latitude': 120.0, 'longitude': 0.0}
        response = self.client.post(self.list_url, data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('emergency_type', response.data)
        self.assertIn('latitude', response.data)

    def test_client_cannot_set_status(self):
        self.client.force_authenticate(user=self.owner)
        data = {'emergency_type': 'fire', 'situation': 'Fire', 'latitude': 1.0, 'longitude': 1.0, 'status': 'resolved'}
        response = self.client.post(self.list_url, data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'active')

    def test_list_only_own_alerts(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.get(self.list_url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        results = response.data.get('results', response.data)
        self.assertEqual([a['id'] for a in results], [str(self.alert.id)])

    def test_retrieve_other_owner_alert_not_found(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.get(reverse('alert-detail', kwargs={'pk': self.other_alert.pk}))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_resolve_alert(self):
        self.client.force_authenticate(user=self.owner)
        url = reverse('alert-resolve', kwargs={'pk': self.alert.pk})

        first = self.client.post(url)
        second = self.client.post(url)

        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertTrue(first.data['resolved'])
        self.assertEqual(first.data['alert']['status'], 'resolved')
        self.assertFalse(second.data['resolved'])

    def test_resolve_other_owner_alert(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.post(reverse('alert-resolve', kwargs={'pk': self.other_alert.pk}))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.other_alert.refresh_from_db()
        self.assertEqual(self.other_alert.status, EmergencyAlert.Status.ACTIVE)

    def test_notifications_listing(self):
        NotificationRecord.objects.create(
            alert=self.alert, contact_key='1', contact_name='Ana', channel='sms', wave='initial', outcome='failed',
            provider_error='SMS delivery failed (status 500)',
        )
        NotificationRecord.objects.create(
            alert=self.alert, contact_key='1', contact_name='Ana', channel='sms', wave='initial', outcome='success',
        )
        self.client.force_authenticate(user=self.owner)

        response = self.client.get(reverse('alert-notifications', kwargs={'pk': self.alert.pk}))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([r['outcome'] for r in response.data], ['failed', 'success'])
        self.assertEqual(response.data[0]['provider_error'], 'SMS delivery failed (status 500)')


class DeviceRegistrationViewTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='device_owner', password='password123')
        self.url = reverse('device-register')

    def test_register_then_update(self):
        self.client.force_authenticate(user=self.user)
        data = {'device_token': 'fcm-token-abc', 'device_type': 'android'}

        created = self.client.post(self.url, data, format='json')
        updated = self.client.post(self.url, {'device_token': 'fcm-token-abc', 'device_type': 'ios'}, format='json')

        self.assertEqual(created.status_code, status.HTTP_201_CREATED)
        self.assertEqual(updated.status_code, status.HTTP_200_OK)
        device = UserDevice.objects.get(device_token='fcm-token-abc')
        self.assertEqual(device.device_type, 'ios')

    def test_token_moves_to_new_user(self):
        UserDevice.objects.create(user=User.objects.create_user(username='old', password='x'), device_token='shared', is_active=False)
        self.client.force_authenticate(user=self.user)

        response = self.client.post(self.url, {'device_token': 'shared'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        device = UserDevice.objects.get(device_token='shared')
        self.assertEqual(device.user, self.user)
        self.assertTrue(device.is_active)

    def test_blank_token_rejected(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.post(self.url, {'device_token': '   '}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
