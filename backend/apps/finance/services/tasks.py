"""Soumission explicite des traitements annexes dont l'échec ne doit pas remonter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from django.db import transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskOutcome:
    label: str
    ok: bool
    value: Any = None
    error: str = ""


def submit_best_effort(label: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> TaskOutcome:
    """
    Exécute ``func`` dans son propre savepoint.

    En cas d'échec, seul le savepoint est annulé : l'erreur est loggée et
    retournée dans le ``TaskOutcome``, jamais propagée à l'appelant.
    """
    try:
        with transaction.atomic():
            value = func(*args, **kwargs)
    except Exception as exc:
        logger.warning("Tâche annexe '%s' en échec: %s", label, exc, exc_info=True)
        return TaskOutcome(label=label, ok=False, error=str(exc) or exc.__class__.__name__)
    return TaskOutcome(label=label, ok=True, value=value)
