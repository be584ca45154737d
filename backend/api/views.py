from __future__ import annotations

from django.http import HttpRequest
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from apps.finance.services.config import LedgerConfig
from apps.finance.services.rollover_engine import RolloverEngine, annee_suivante_de

from .permissions import AdministrationPermission
from .serializers import RolloverRequestSerializer


def _annees(request: HttpRequest) -> tuple[str, str]:
    serializer = RolloverRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    annee_courante = serializer.validated_data.get("annee_courante") or LedgerConfig.from_settings().current_school_year
    annee_suivante = serializer.validated_data.get("annee_suivante") or annee_suivante_de(annee_courante)
    return annee_courante, annee_suivante


@api_view(["POST"])
@permission_classes([AdministrationPermission])
def rollover_graduation(request: HttpRequest) -> Response:
    """
    POST /api/rollover/diplomes/ : clôture les dossiers de dernière année.

    Corps: {"annee_courante": "2025_2026"} (optionnel, année courante par défaut)
    """
    annee_courante, _ = _annees(request)
    resultat = RolloverEngine().cloturer_diplomes(annee_courante)
    return Response({"annee_courante": annee_courante, **resultat.as_dict()})


@api_view(["POST"])
@permission_classes([AdministrationPermission])
def rollover_promotion(request: HttpRequest) -> Response:
    """POST /api/rollover/promotion/ : promotion au niveau supérieur avec report de l'impayé."""
    annee_courante, annee_suivante = _annees(request)
    resultat = RolloverEngine().promouvoir(annee_courante, annee_suivante)
    return Response({"annee_courante": annee_courante, "annee_suivante": annee_suivante, **resultat.as_dict()})
