from __future__ import annotations

from django.apps import AppConfig


class FinanceConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.finance"
    label = "finance"
    verbose_name = "Scolarité - grand livre"

    def ready(self) -> None:
        from core import signals  # noqa: F401
