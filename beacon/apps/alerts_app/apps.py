from django.apps import AppConfig


class AlertsAppConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.alerts_app'
    label = 'alerts_app'
    verbose_name = 'Emergency Alerts'
