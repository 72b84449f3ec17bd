from rest_framework import serializers
from django.core.validators import MinValueValidator, MaxValueValidator, RegexValidator

from .contacts import PHONE_PATTERN
from .models import EmergencyAlert, NotificationRecord, UserDevice

MAX_CONTACTS_PER_DISPATCH = 20


class LocationSerializer(serializers.Serializer):
    latitude = serializers.FloatField(
        validators=[MinValueValidator(-90.0), MaxValueValidator(90.0)],
        help_text="Latitude of the person in distress (-90.0 to 90.0)."
    )
    longitude = serializers.FloatField(
        validators=[MinValueValidator(-180.0), MaxValueValidator(180.0)],
        help_text="Longitude of the person in distress (-180.0 to 180.0)."
    )


class DispatchContactSerializer(serializers.Serializer):
    id = serializers.CharField(required=False, allow_blank=True, max_length=64, help_text="Stored contact id, if any.")
    name = serializers.CharField(max_length=200)
    phone = serializers.CharField(
        max_length=20,
        validators=[RegexValidator(PHONE_PATTERN, message="Enter a valid phone number.")],
    )
    email = serializers.EmailField(required=False, allow_blank=True, allow_null=True)
    relationship = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=50)

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Contact name cannot be empty.")
        return value.strip()


class DispatchRequestSerializer(serializers.Serializer):
    alert_id = serializers.UUIDField(help_text="Alert to notify contacts about.")
    wave = serializers.ChoiceField(choices=NotificationRecord.Wave.choices, default=NotificationRecord.Wave.INITIAL)
    emergency_type = serializers.CharField(max_length=100)
    situation = serializers.CharField(max_length=2000)
    location = LocationSerializer()
    contacts = serializers.ListField(
        child=DispatchContactSerializer(),
        required=False,
        min_length=1,
        max_length=MAX_CONTACTS_PER_DISPATCH,
        help_text="Contacts to notify. Defaults to the alert owner's stored emergency contacts.",
    )
    evidence_refs = serializers.ListField(child=serializers.URLField(max_length=2000), required=False, default=list)


class EmergencyAlertSerializer(serializers.ModelSerializer):
    owner = serializers.PrimaryKeyRelatedField(read_only=True)
    emergency_type_display = serializers.CharField(source='get_emergency_type_display', read_only=True)
    situation = serializers.CharField(max_length=2000)
    latitude = serializers.FloatField(validators=[MinValueValidator(-90.0), MaxValueValidator(90.0)])
    longitude = serializers.FloatField(validators=[MinValueValidator(-180.0), MaxValueValidator(180.0)])
    evidence_refs = serializers.ListField(child=serializers.URLField(max_length=2000), required=False)

    class Meta:
        model = EmergencyAlert
        fields = [
            'id', 'owner', 'emergency_type', 'emergency_type_display', 'situation',
            'latitude', 'longitude', 'status', 'evidence_refs',
            'created_at', 'escalated_at', 'resolved_at',
        ]
        read_only_fields = ('id', 'owner', 'status', 'created_at', 'escalated_at', 'resolved_at')

    def validate_situation(self, value):
        if not value.strip():
            raise serializers.ValidationError("Please describe the situation.")
        return value.strip()


class NotificationRecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationRecord
        fields = ['id', 'contact_key', 'contact_name', 'channel', 'wave', 'outcome', 'provider_error', 'sent_at']
        read_only_fields = fields


class DeviceRegistrationSerializer(serializers.ModelSerializer):
    device_token = serializers.CharField()

    class Meta:
        model = UserDevice
        fields = ['device_token', 'device_type']

    def validate_device_token(self, value):
        if not value.strip():
            raise serializers.ValidationError("Device token cannot be empty.")
        return value.strip()
