from __future__ import annotations

from django.contrib import admin

from .models import SysAuditLog


@admin.register(SysAuditLog)
class SysAuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "entity_type", "entity_id", "actor_email", "created_at")
    list_filter = ("action", "entity_type")
    search_fields = ("entity_id", "actor_email")
    readonly_fields = ("action", "entity_type", "entity_id", "actor_email", "payload", "created_at")
