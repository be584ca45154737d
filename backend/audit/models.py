from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from django.db import models

logger = logging.getLogger(__name__)


class SysAuditLog(models.Model):
    """SYS_AUDIT_LOG - Journalisation applicative centralisée."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    action = models.CharField(max_length=64, db_index=True)
    entity_type = models.CharField(max_length=128)
    entity_id = models.CharField(max_length=64, blank=True)
    actor_email = models.EmailField(blank=True)
    payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "SYS_AUDIT_LOG"
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.action} {self.entity_type}:{self.entity_id}"


def journaliser(
    action: str,
    entity_type: str,
    entity_id: Any = "",
    payload: Optional[Dict[str, Any]] = None,
    actor_email: str = "",
) -> Optional[SysAuditLog]:
    """
    Écrit une entrée d'audit. Un échec d'écriture du journal est loggé
    mais ne fait jamais échouer l'opération métier appelante.
    """
    try:
        return SysAuditLog.objects.create(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else "",
            actor_email=actor_email or "",
            payload=payload or {},
        )
    except Exception:
        logger.warning("Audit log failed for %s %s:%s", action, entity_type, entity_id, exc_info=True)
        return None
