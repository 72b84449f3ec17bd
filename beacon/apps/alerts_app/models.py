import uuid

from django.db import models
from django.db.models import Q
from django.contrib.auth.models import User
from django.utils import timezone


class EmergencyAlert(models.Model):
    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        RESOLVED = 'resolved', 'Resolved'
        ESCALATED = 'escalated', 'Escalated'

    EMERGENCY_TYPES = [
        ('fire', 'Fire Emergency'),
        ('medical', 'Medical Emergency'),
        ('police', 'Police / Crime'),
        ('accident', 'Road Accident'),
        ('disaster', 'Natural Disaster'),
        ('other', 'Other Emergency'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name='emergency_alerts')
    emergency_type = models.CharField(max_length=20, choices=EMERGENCY_TYPES)
    situation = models.TextField(max_length=2000)
    latitude = models.FloatField()
    longitude = models.FloatField()
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.ACTIVE)
    evidence_refs = models.JSONField(default=list, blank=True, help_text="Ordered list of evidence file URLs")
    # Not auto_now_add: the escalation threshold is measured from this value.
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    escalated_at = models.DateTimeField(blank=True, null=True)
    # Set once the escalated wave has been dispatched; escalated alerts without it are retried.
    escalation_notified_at = models.DateTimeField(blank=True, null=True)
    resolved_at = models.DateTimeField(blank=True, null=True)

    def __str__(self):
        return f"{self.get_emergency_type_display()} for {self.owner.username} ({self.status})"

    @property
    def location(self):
        return {'latitude': self.latitude, 'longitude': self.longitude}

    class Meta:
        ordering = ['-created_at']
        indexes = [models.Index(fields=['status', 'created_at'], name='alert_status_created_idx')]


class EmergencyContact(models.Model):
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name='emergency_contacts')
    name = models.CharField(max_length=200)
    phone = models.CharField(max_length=20)
    email = models.EmailField(blank=True, null=True)
    relationship = models.CharField(max_length=50, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.name} ({self.owner.username})"

    class Meta:
        ordering = ['name']


class NotificationRecord(models.Model):
    class Channel(models.TextChoices):
        EMAIL = 'email', 'Email'
        SMS = 'sms', 'SMS'

    class Wave(models.TextChoices):
        INITIAL = 'initial', 'Initial'
        ESCALATED = 'escalated', 'Escalated'

    class Outcome(models.TextChoices):
        SUCCESS = 'success', 'Success'
        FAILED = 'failed', 'Failed'

    alert = models.ForeignKey(EmergencyAlert, on_delete=models.CASCADE, related_name='notifications')
    contact_key = models.CharField(max_length=64, help_text="Stored contact id or a digest for ad-hoc contacts")
    contact_name = models.CharField(max_length=200, blank=True)
    channel = models.CharField(max_length=10, choices=Channel.choices)
    wave = models.CharField(max_length=10, choices=Wave.choices)
    outcome = models.CharField(max_length=10, choices=Outcome.choices)
    provider_error = models.TextField(blank=True, null=True)
    sent_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"{self.channel}/{self.wave} to {self.contact_name or self.contact_key}: {self.outcome}"

    class Meta:
        ordering = ['-sent_at']
        constraints = [
            models.UniqueConstraint(
                fields=['alert', 'contact_key', 'channel', 'wave'],
                condition=Q(outcome='success'),
                name='unique_successful_notification',
            ),
        ]


class UserDevice(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='devices')
    device_token = models.TextField(unique=True)
    device_type = models.CharField(max_length=10, blank=True, null=True, choices=[('android', 'Android'), ('ios', 'iOS'), ('web', 'Web')])
    created_at = models.DateTimeField(auto_now_add=True)
    is_active = models.BooleanField(default=True)

    def __str__(self):
        token_preview = self.device_token[:20] + "..." if self.device_token and len(self.device_token) > 20 else self.device_token
        return f"{self.user.username} - {self.device_type or 'UnknownType'} ({token_preview})"

    class Meta:
        ordering = ['-created_at']
