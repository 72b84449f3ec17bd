from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .views import (
    DispatchView,
    EmergencyAlertViewSet,
    DeviceRegistrationView,
    health_check,
)

router = DefaultRouter()
router.register(r'alerts', EmergencyAlertViewSet, basename='alert')

urlpatterns = [
    # Health Check
    path('health/', health_check, name='health-check'),

    # Auth (JWT bearer tokens)
    path('auth/token/', TokenObtainPairView.as_view(), name='token-obtain'),
    path('auth/token/refresh/', TokenRefreshView.as_view(), name='token-refresh'),

    # Notification fan-out
    path('alerts/dispatch/', DispatchView.as_view(), name='alert-dispatch'),

    # Device Registration
    path('devices/register/', DeviceRegistrationView.as_view(), name='device-register'),

    # Include router URLs
    path('', include(router.urls)),
]
