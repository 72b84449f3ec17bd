from django.contrib import admin
from django.contrib import messages

from .alert_store import AlertStore
from .models import EmergencyAlert, EmergencyContact, NotificationRecord, UserDevice


class NotificationRecordInline(admin.TabularInline):
    model = NotificationRecord
    extra = 0
    can_delete = False
    readonly_fields = ('contact_name', 'contact_key', 'channel', 'wave', 'outcome', 'provider_error', 'sent_at')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(EmergencyAlert)
class EmergencyAlertAdmin(admin.ModelAdmin):
    list_display = ('id', 'owner', 'emergency_type', 'status', 'created_at', 'escalated_at', 'resolved_at')
    search_fields = ('owner__username', 'situation')
    list_filter = ('status', 'emergency_type', 'created_at')
    date_hierarchy = 'created_at'
    readonly_fields = ('status', 'created_at', 'escalated_at', 'escalation_notified_at', 'resolved_at')
    inlines = [NotificationRecordInline]
    actions = ['resolve_alerts_action']

    @admin.action(description='Resolve selected alerts')
    def resolve_alerts_action(modeladmin, request, queryset):
        store = AlertStore()
        resolved = sum(1 for alert in queryset if store.resolve(alert.pk))
        if resolved:
            modeladmin.message_user(request, f"Resolved {resolved} alert(s).", messages.SUCCESS)
        else:
            modeladmin.message_user(request, "Selected alerts were already resolved.", messages.INFO)


@admin.register(EmergencyContact)
class EmergencyContactAdmin(admin.ModelAdmin):
    list_display = ('name', 'owner', 'phone', 'email', 'relationship')
    search_fields = ('name', 'owner__username', 'phone', 'email')
    list_filter = ('relationship',)


@admin.register(NotificationRecord)
class NotificationRecordAdmin(admin.ModelAdmin):
    list_display = ('alert', 'contact_name', 'channel', 'wave', 'outcome', 'sent_at')
    list_filter = ('channel', 'wave', 'outcome', 'sent_at')
    search_fields = ('contact_name', 'contact_key', 'alert__id')
    date_hierarchy = 'sent_at'

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(UserDevice)
class UserDeviceAdmin(admin.ModelAdmin):
    list_display = ('user', 'device_type', 'device_token_short', 'created_at', 'is_active')
    list_filter = ('device_type', 'is_active', 'user')
    search_fields = ('user__username', 'device_token')
    readonly_fields = ('created_at',)

    def device_token_short(self, obj):
        if obj.device_token and isinstance(obj.device_token, str):
            return obj.device_token[:50] + "..." if len(obj.device_token) > 50 else obj.device_token
        return ""
    device_token_short.short_description = "Device Token (Short)"
