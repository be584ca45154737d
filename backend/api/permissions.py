from __future__ import annotations

from django.http import HttpRequest
from rest_framework.permissions import SAFE_METHODS, BasePermission

GROUPE_FINANCE = "OPERATOR_FINANCE"


def est_operateur_finance(user) -> bool:
    if not user or not user.is_authenticated:
        return False
    if user.is_staff or user.is_superuser:
        return True
    return user.groups.filter(name=GROUPE_FINANCE).exists()


class OperateurFinancePermission(BasePermission):
    """Lecture pour tout utilisateur connecté, écriture réservée aux opérateurs finance."""

    def has_permission(self, request: HttpRequest, view) -> bool:  # type: ignore[override]
        if request.method == "OPTIONS":
            return True
        if not request.user or not request.user.is_authenticated:
            return False
        if request.method in SAFE_METHODS:
            return True
        return est_operateur_finance(request.user)


class AdministrationPermission(BasePermission):
    """Traitements de masse (passage d'année, balayage) : personnel administratif uniquement."""

    def has_permission(self, request: HttpRequest, view) -> bool:  # type: ignore[override]
        user = request.user
        return bool(user and user.is_authenticated and user.is_staff)
