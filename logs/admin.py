from django.contrib import admin
from .models import LogEntry

@admin.register(LogEntry)
class LogEntryAdmin(admin.ModelAdmin):
    list_display = ('timestamp', 'level', 'logger_name', 'donor_id', 'blood_request_id', 'short_message')
    list_filter = ('level', 'logger_name')
    search_fields = ('message', '=donor_id', '=blood_request_id')
    date_hierarchy = 'timestamp'
    list_per_page = 100

    @admin.display(description='Message')
    def short_message(self, obj):
        return obj.message[:80]

    # Rows are written by DatabaseLogHandler and removed by cleanup_logs
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
