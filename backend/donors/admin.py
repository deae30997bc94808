from django.contrib import admin
from .models import Donor


@admin.register(Donor)
class DonorAdmin(admin.ModelAdmin):
    list_display = ['id', 'first_name', 'last_name', 'email', 'contact', 'city', 'state', 'email_opt_in', 'created_at']
    list_filter = ['state', 'email_opt_in']
    search_fields = ['first_name', 'last_name', 'email', 'contact']
    ordering = ['last_name', 'first_name']
    readonly_fields = ['created_at', 'updated_at']
