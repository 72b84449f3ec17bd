"""
Outbound notification channels.

Each channel renders an alert for one contact and makes exactly one provider
call. `send` always returns a ChannelResult; provider errors, bad responses and
timeouts are reported as failures so the dispatcher can aggregate across
contacts during partial outages.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import requests
from django.conf import settings
from django.template.loader import render_to_string

from .exceptions import ChannelError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
SEMAPHORE_API_URL = "https://api.semaphore.co/api/v4/messages"
SMS_MAX_LENGTH = 480


@dataclass(frozen=True)
class AlertPayload:
    alert_id: str
    wave: str
    emergency_type: str
    situation: str
    latitude: float
    longitude: float
    evidence_refs: List[str] = field(default_factory=list)

    @property
    def map_url(self):
        return f"https://www.google.com/maps?q={self.latitude},{self.longitude}"


@dataclass(frozen=True)
class ChannelResult:
    success: bool
    error_detail: Optional[str] = None
    provider_id: Optional[str] = None


def mask_phone(phone):
    if not phone:
        return ''
    return '*' * max(0, len(phone) - 4) + phone[-4:]


class NotificationChannel:
    name = None

    def __init__(self, timeout=None, session=None):
        self.timeout = timeout if timeout is not None else getattr(settings, 'ALERT_CHANNEL_TIMEOUT_SECONDS', 5)
        self.http = session or requests

    def applies_to(self, contact):
        raise NotImplementedError

    def render(self, contact, payload):
        raise NotImplementedError

    def deliver(self, contact, payload):
        """Make the provider call. Returns a provider message id or raises ChannelError."""
        raise NotImplementedError

    def send(self, contact, payload):
        try:
            provider_id = self.deliver(contact, payload)
        except ChannelError as e:
            logger.warning(f"{self.name} notification to {contact.name} for alert {payload.alert_id} failed: {e.message}")
            return ChannelResult(success=False, error_detail=e.message)
        except requests.Timeout:
            logger.warning(f"{self.name} provider timed out after {self.timeout}s for alert {payload.alert_id}")
            return ChannelResult(success=False, error_detail=f"{self.name} provider timed out")
        except requests.RequestException as e:
            logger.warning(f"{self.name} provider request failed for alert {payload.alert_id}: {type(e).__name__}")
            return ChannelResult(success=False, error_detail=f"{self.name} provider unreachable: {type(e).__name__}")
        except Exception as e:
            logger.error(f"Unexpected {self.name} channel error for alert {payload.alert_id}: {e}", exc_info=True)
            return ChannelResult(success=False, error_detail=f"Unexpected {self.name} error: {type(e).__name__}")
        logger.info(f"{self.name} notification sent to {contact.name} for alert {payload.alert_id} ({payload.wave})")
        return ChannelResult(success=True, provider_id=provider_id)


class EmailChannel(NotificationChannel):
    """Rich HTML email through the Resend API."""
    name = 'email'

    def __init__(self, api_key=None, sender=None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key if api_key is not None else getattr(settings, 'RESEND_API_KEY', None)
        self.sender = sender or getattr(settings, 'ALERT_EMAIL_FROM', "Emergency Alert <onboarding@resend.dev>")

    def applies_to(self, contact):
        return bool(contact.email)

    def subject(self, payload):
        return f"\U0001F6A8 EMERGENCY ALERT: {payload.emergency_type.upper()}"

    def render(self, contact, payload):
        # Template auto-escaping covers every user-supplied field.
        return render_to_string('alerts_app/emergency_email.html', {
            'contact_name': contact.name,
            'emergency_type': payload.emergency_type,
            'situation': payload.situation,
            'latitude': payload.latitude,
            'longitude': payload.longitude,
            'map_url': payload.map_url,
            'evidence_refs': payload.evidence_refs,
            'escalated': payload.wave == 'escalated',
        })

    def deliver(self, contact, payload):
        if not self.api_key:
            raise ChannelError("Email provider not configured")
        response = self.http.post(
            RESEND_API_URL,
            headers={
                'Authorization': f"Bearer {self.api_key}",
                'Content-Type': 'application/json',
            },
            json={
                'from': self.sender,
                'to': [contact.email],
                'subject': self.subject(payload),
                'html': self.render(contact, payload),
            },
            timeout=self.timeout,
        )
        if not response.ok:
            raise ChannelError(f"Email API error: {response.status_code}")
        try:
            body = response.json()
        except ValueError:
            body = {}
        return body.get('id') if isinstance(body, dict) else None


class SmsChannel(NotificationChannel):
    """Plain-text SMS through the Semaphore API."""
    name = 'sms'

    def __init__(self, api_key=None, sender_name=None, max_length=SMS_MAX_LENGTH, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key if api_key is not None else getattr(settings, 'SEMAPHORE_API_KEY', None)
        self.sender_name = sender_name or getattr(settings, 'ALERT_SMS_SENDER_NAME', 'EmergencyPH')
        self.max_length = max_length

    def applies_to(self, contact):
        return bool(contact.phone)

    def render(self, contact, payload):
        header = f"\U0001F6A8 EMERGENCY ALERT \U0001F6A8\n\n{payload.emergency_type}\n\n"
        footer = f"\n\nLocation: {payload.map_url}\n\nThis is an automated emergency notification."
        situation = payload.situation
        budget = self.max_length - len(header) - len(footer)
        if len(situation) > budget:
            # Shorten the description first so the map link survives.
            situation = situation[:max(0, budget - 1)] + "…" if budget > 0 else ''
        return (header + situation + footer)[:self.max_length]

    def deliver(self, contact, payload):
        if not self.api_key:
            raise ChannelError("SMS provider not configured")
        response = self.http.post(
            SEMAPHORE_API_URL,
            data={
                'apikey': self.api_key,
                'number': contact.phone,
                'message': self.render(contact, payload),
                'sendername': self.sender_name,
            },
            timeout=self.timeout,
        )
        try:
            body = response.json()
        except ValueError:
            body = None
        if response.ok and isinstance(body, list) and body and isinstance(body[0], dict) and body[0].get('message_id'):
            return str(body[0]['message_id'])
        logger.debug(f"Semaphore rejected message to {mask_phone(contact.phone)}: status={response.status_code}")
        raise ChannelError(f"SMS delivery failed (status {response.status_code})")


def default_channels():
    return [EmailChannel(), SmsChannel()]
