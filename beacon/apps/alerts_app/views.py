from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status, viewsets, mixins
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from drf_spectacular.utils import extend_schema, OpenApiTypes
import logging

from .alert_store import AlertStore
from .authorization import AuthorizationGuard
from .contacts import ContactInfo, ContactResolver
from .dispatcher import NotificationDispatcher
from .models import EmergencyAlert, UserDevice
from .rate_limit import DispatchRateThrottle
from .serializers import (
    DeviceRegistrationSerializer,
    DispatchRequestSerializer,
    EmergencyAlertSerializer,
    NotificationRecordSerializer,
)

logger = logging.getLogger(__name__)


# ====== HEALTH CHECK ======
@api_view(['GET'])
@permission_classes([AllowAny])
def health_check(request):
    """Simple health check endpoint"""
    return Response({
        "status": "ok",
        "service": "Beacon Alerts API",
        "version": "1.0.0"
    })


class DispatchView(APIView):
    """
    Notifies the alert owner's emergency contacts by email and SMS.

    Returns 200 with per-channel counts even when some providers failed; the
    caller inspects `results` for individual failures.
    """
    permission_classes = [IsAuthenticated]
    throttle_classes = [DispatchRateThrottle]

    guard_class = AuthorizationGuard
    resolver_class = ContactResolver
    dispatcher_class = NotificationDispatcher

    @extend_schema(
        summary="Dispatch Emergency Notifications",
        request=DispatchRequestSerializer,
        responses={
            200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT,
            403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT,
        }
    )
    def post(self, request, *args, **kwargs):
        serializer = DispatchRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data

        alert = self.guard_class().authorize(request.user, data['alert_id'])

        if 'contacts' in data:
            contacts = [ContactInfo.from_payload(c) for c in data['contacts']]
        else:
            contacts = self.resolver_class().resolve(alert.owner_id)

        result = self.dispatcher_class().dispatch(
            alert.id,
            data['wave'],
            contacts,
            emergency_type=data['emergency_type'],
            situation=data['situation'],
            location=data['location'],
            evidence_refs=data.get('evidence_refs'),
        )
        return Response(result.as_dict(), status=status.HTTP_200_OK)


@extend_schema(
    summary="Manage Emergency Alerts",
    description="Create, list and retrieve the authenticated user's emergency alerts, and resolve them."
)
class EmergencyAlertViewSet(mixins.CreateModelMixin,
                            mixins.ListModelMixin,
                            mixins.RetrieveModelMixin,
                            viewsets.GenericViewSet):
    serializer_class = EmergencyAlertSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return EmergencyAlert.objects.filter(owner=self.request.user).order_by('-created_at')

    def perform_create(self, serializer):
        alert = serializer.save(owner=self.request.user)
        logger.info(f"Alert {alert.id} ({alert.emergency_type}) created by user {self.request.user.pk}")

    @extend_schema(summary="Resolve Alert", request=None, responses={200: OpenApiTypes.OBJECT})
    @action(detail=True, methods=['post'])
    def resolve(self, request, pk=None):
        alert = self.get_object()
        changed = AlertStore().resolve(alert.pk)
        alert.refresh_from_db()
        return Response({
            'resolved': changed,
            'alert': EmergencyAlertSerializer(alert).data,
        }, status=status.HTTP_200_OK)

    @extend_schema(summary="List Alert Notifications", responses={200: NotificationRecordSerializer(many=True)})
    @action(detail=True, methods=['get'])
    def notifications(self, request, pk=None):
        alert = self.get_object()
        records = alert.notifications.order_by('sent_at', 'id')
        return Response(NotificationRecordSerializer(records, many=True).data)


class DeviceRegistrationView(APIView):
    """
    Handles registration of user devices for FCM push notifications.
    """
    permission_classes = [IsAuthenticated]
    serializer_class = DeviceRegistrationSerializer

    @extend_schema(
        summary="Register Device for FCM",
        request=DeviceRegistrationSerializer,
        responses={200: OpenApiTypes.OBJECT, 201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT}
    )
    def post(self, request, *args, **kwargs):
        serializer = DeviceRegistrationSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        # A token belongs to whichever user registered it last.
        user_device, created = UserDevice.objects.update_or_create(
            device_token=serializer.validated_data['device_token'],
            defaults={
                'user': request.user,
                'is_active': True,
                'device_type': serializer.validated_data.get('device_type'),
            }
        )
        if created:
            return Response({"message": "Device registered successfully."}, status=status.HTTP_201_CREATED)
        return Response({"message": "Device registration updated successfully."}, status=status.HTTP_200_OK)
