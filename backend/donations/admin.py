from django.contrib import admin
from .models import DonatedItem, DonatedItemStatus


class DonatedItemStatusInline(admin.TabularInline):
    model = DonatedItemStatus
    extra = 0
    fields = ['status_type', 'date_modified', 'image_urls']
    readonly_fields = ['created_at']


@admin.register(DonatedItem)
class DonatedItemAdmin(admin.ModelAdmin):
    list_display = ['id', 'item_type', 'category', 'quantity', 'current_status', 'donor', 'program', 'date_donated']
    list_filter = ['current_status', 'category', 'program']
    search_fields = ['item_type', 'category', 'donor__first_name', 'donor__last_name', 'donor__email']
    ordering = ['-date_donated']
    readonly_fields = ['last_updated', 'analysis_metadata']
    raw_id_fields = ['donor']
    inlines = [DonatedItemStatusInline]


@admin.register(DonatedItemStatus)
class DonatedItemStatusAdmin(admin.ModelAdmin):
    list_display = ['id', 'donated_item', 'status_type', 'date_modified', 'created_at']
    list_filter = ['status_type']
    search_fields = ['donated_item__item_type', 'donated_item__id']
    ordering = ['-date_modified']
    readonly_fields = ['created_at']
