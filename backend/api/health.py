from __future__ import annotations

from django import get_version
from django.db import DatabaseError, connection
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from apps.finance.models import ImportFichier
from apps.finance.services.config import LedgerConfig


@api_view(["GET"])
@permission_classes([AllowAny])
def health(request):
    db_status = "ok"
    imports_en_cours = None
    try:
        connection.ensure_connection()
        imports_en_cours = ImportFichier.objects.filter(statut=ImportFichier.StatutChoices.EN_COURS).count()
    except DatabaseError:
        db_status = "error"
    return Response(
        {
            "status": "healthy",
            "db": db_status,
            "django": get_version(),
            "annee_scolaire": LedgerConfig.from_settings().current_school_year,
            "imports_en_cours": imports_en_cours,
            "timestamp": timezone.now().isoformat(),
        },
        status=200,
    )
