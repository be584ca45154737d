"""Boucles de traitement par lot : chaque élément est isolé dans son propre savepoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from django.core.exceptions import ValidationError
from django.db import InterfaceError, OperationalError, transaction

from apps.finance.exceptions import LedgerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Base injoignable : l'opération entière est abandonnée.
FATAL_ERRORS = (OperationalError, InterfaceError)


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(exc.messages)
    if isinstance(exc, LedgerError):
        return exc.message
    return str(exc) or exc.__class__.__name__


@dataclass
class BatchResult:
    total: int = 0
    success: int = 0
    errors: int = 0
    error_details: List[Dict[str, Any]] = field(default_factory=list)

    def record_success(self) -> None:
        self.total += 1
        self.success += 1

    def record_error(self, reference: Any, exc: BaseException) -> None:
        self.total += 1
        self.errors += 1
        self.error_details.append(
            {
                "reference": str(reference),
                "code": getattr(exc, "code", exc.__class__.__name__),
                "message": describe_error(exc),
            }
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "errors": self.errors,
            "error_details": self.error_details,
        }


def run_batch(
    items: Iterable[T],
    handler: Callable[[T], Any],
    label: str,
    reference: Optional[Callable[[T], Any]] = None,
    result: Optional[BatchResult] = None,
) -> BatchResult:
    """
    Applique ``handler`` à chaque élément dans un ``transaction.atomic()`` dédié.

    Un échec isolé est compté et journalisé, puis le lot continue ;
    seule une perte de connexion à la base interrompt le lot.
    """
    result = result if result is not None else BatchResult()
    reference = reference or (lambda item: getattr(item, "pk", item))
    for item in items:
        ref = reference(item)
        try:
            with transaction.atomic():
                handler(item)
        except FATAL_ERRORS:
            logger.error("%s: base de données injoignable, lot interrompu sur %s", label, ref)
            raise
        except Exception as exc:
            logger.warning("%s: échec sur %s: %s", label, ref, describe_error(exc))
            result.record_error(ref, exc)
        else:
            result.record_success()
    logger.info("%s: %s traités, %s succès, %s erreurs", label, result.total, result.success, result.errors)
    return result
