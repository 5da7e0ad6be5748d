from django.contrib import admin
from .models import BloodRequest, DonationHistory, DonorNotification

@admin.register(BloodRequest)
class BloodRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'blood_group', 'urgency_band', 'status', 'requester', 'created_at')
    list_filter = ('urgency_band', 'status', 'blood_group')
    search_fields = ('hospital_name', 'requester__full_name')
    # Status and its timestamps only move through RequestLifecycleManager
    readonly_fields = ('urgency_band', 'emergency_warning', 'status', 'accepted_donor', 'created_at',
                       'viewed_at', 'expires_at', 'completed_at')

@admin.register(DonorNotification)
class DonorNotificationAdmin(admin.ModelAdmin):
    list_display = ('blood_request', 'donor', 'sent_at', 'viewed_at', 'response_type', 'is_expired')
    list_filter = ('response_type', 'is_expired')

@admin.register(DonationHistory)
class DonationHistoryAdmin(admin.ModelAdmin):
    list_display = ('donor', 'status', 'response_type', 'accepted_at', 'completed_at', 'cancelled_at')
    list_filter = ('status', 'response_type')

    # Ledger entries are append-only; reliability scores are folded over them
    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
