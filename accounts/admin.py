from django.contrib import admin
from django.contrib.auth.admin import UserAdmin
from .models import User

@admin.register(User)
class CustomUserAdmin(UserAdmin):
    list_display = ('username', 'full_name', 'blood_group', 'user_type', 'mobile_verified', 'is_active')
    list_filter = ('user_type', 'blood_group', 'mobile_verified', 'is_active')
    search_fields = ('username', 'full_name', 'mobile_number')
    fieldsets = UserAdmin.fieldsets + (
        ('Care Circle', {'fields': ('user_type', 'full_name', 'age', 'gender', 'mobile_number',
                                    'mobile_verified', 'city', 'blood_group', 'medical_history')}),
        ('Notifications', {'fields': ('notification_enabled', 'quiet_hours_start', 'quiet_hours_end')}),
    )
