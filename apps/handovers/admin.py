"""
Django admin configuration for handovers app.
"""
from django.contrib import admin
from .models import HandoverTimelineEntry, ManagerHandover


class HandoverTimelineEntryInline(admin.TabularInline):
    model = HandoverTimelineEntry
    extra = 0
    can_delete = False
    readonly_fields = ['change_type', 'old_status', 'new_status', 'actor', 'notes', 'created_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(ManagerHandover)
class ManagerHandoverAdmin(admin.ModelAdmin):
    """Read-only: transitions go through HandoverService."""
    list_display = ['manager', 'backup_manager', 'company', 'status', 'start_date', 'end_date']
    list_filter = ['status', 'company']
    search_fields = ['manager__email', 'backup_manager__email']
    inlines = [HandoverTimelineEntryInline]

    def has_change_permission(self, request, obj=None):
        return False
