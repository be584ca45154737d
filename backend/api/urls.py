from __future__ import annotations

from django.urls import include, path
from drf_yasg import openapi
from drf_yasg.views import get_schema_view
from rest_framework import permissions
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .health import health
from .views import rollover_graduation, rollover_promotion
from .viewsets import (
    AnneeScolaireViewSet,
    AnomalieViewSet,
    DossierScolariteViewSet,
    EcheanceViewSet,
    EleveViewSet,
    ImportFichierViewSet,
    ReglementViewSet,
    RelanceViewSet,
    RisqueFinancierViewSet,
)

router = DefaultRouter()
router.register(r"annees", AnneeScolaireViewSet, basename="annees")
router.register(r"eleves", EleveViewSet, basename="eleves")
router.register(r"dossiers", DossierScolariteViewSet, basename="dossiers")
router.register(r"reglements", ReglementViewSet, basename="reglements")
router.register(r"echeances", EcheanceViewSet, basename="echeances")
router.register(r"risques", RisqueFinancierViewSet, basename="risques")
router.register(r"anomalies", AnomalieViewSet, basename="anomalies")
router.register(r"imports", ImportFichierViewSet, basename="imports")
router.register(r"relances", RelanceViewSet, basename="relances")

schema_view = get_schema_view(
    openapi.Info(
        title="Scolarité - Grand livre API",
        default_version="v1",
        description="API de facturation et de rapprochement des frais de scolarité.",
    ),
    public=True,
    permission_classes=[permissions.AllowAny],
)

urlpatterns = [
    path("health/", health, name="health"),
    path("token/", TokenObtainPairView.as_view(), name="obtain-token"),
    path("token/refresh/", TokenRefreshView.as_view(), name="refresh-token"),
    path("rollover/diplomes/", rollover_graduation, name="rollover-graduation"),
    path("rollover/promotion/", rollover_promotion, name="rollover-promotion"),
    path("swagger/", schema_view.with_ui("swagger", cache_timeout=0), name="swagger-ui"),
    path("redoc/", schema_view.with_ui("redoc", cache_timeout=0), name="redoc"),
    path("", include(router.urls)),
]
