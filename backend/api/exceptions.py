"""
Traduction des erreurs métier du grand livre en réponses HTTP.

Corps de réponse uniforme : ``{"detail": ..., "code": ...}``.
"""

from __future__ import annotations

import logging
from typing import Dict, Type

from django.core.exceptions import ObjectDoesNotExist
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.finance.exceptions import (
    AlreadyScheduled,
    DuplicateImport,
    DuplicateStudent,
    ImportRowError,
    InvalidTariff,
    LedgerError,
    RolloverError,
    ScheduleConsistencyError,
)

logger = logging.getLogger(__name__)

STATUTS_HTTP: Dict[Type[LedgerError], int] = {
    AlreadyScheduled: status.HTTP_409_CONFLICT,
    DuplicateImport: status.HTTP_409_CONFLICT,
    DuplicateStudent: status.HTTP_409_CONFLICT,
    InvalidTariff: status.HTTP_400_BAD_REQUEST,
    ImportRowError: status.HTTP_400_BAD_REQUEST,
    RolloverError: status.HTTP_400_BAD_REQUEST,
    ScheduleConsistencyError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def statut_http(exc: LedgerError) -> int:
    for classe in type(exc).__mro__:
        if classe in STATUTS_HTTP:
            return STATUTS_HTTP[classe]
    return status.HTTP_400_BAD_REQUEST


def ledger_exception_handler(exc, context):
    if isinstance(exc, LedgerError):
        code_http = statut_http(exc)
        if code_http >= 422:
            logger.error("Erreur métier %s: %s", exc.code, exc.message)
        return Response(exc.as_dict(), status=code_http)

    if isinstance(exc, DjangoValidationError):
        detail = exc.message_dict if hasattr(exc, "error_dict") else exc.messages
        return Response(
            {"detail": detail, "code": "validation_error"},
            status=status.HTTP_400_BAD_REQUEST,
        )

    if isinstance(exc, ObjectDoesNotExist):
        return Response(
            {"detail": str(exc) or "Objet introuvable.", "code": "not_found"},
            status=status.HTTP_404_NOT_FOUND,
        )

    response = exception_handler(exc, context)
    if response is not None and isinstance(response.data, dict) and "detail" in response.data:
        response.data.setdefault("code", getattr(response.data["detail"], "code", "error"))
    return response
