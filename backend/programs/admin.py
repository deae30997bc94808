from django.contrib import admin
from .models import Program


@admin.register(Program)
class ProgramAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'start_date', 'created_at']
    search_fields = ['name', 'description', 'aim_and_cause']
    ordering = ['-start_date']
    readonly_fields = ['created_at', 'updated_at']
