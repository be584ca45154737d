from __future__ import annotations

from django.db.models import Q
from django.http import HttpRequest
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.academic.models import AnneeScolaire, Eleve
from apps.finance.models import (
    Anomalie,
    DossierScolarite,
    Echeance,
    ImportFichier,
    Reglement,
    Relance,
    RisqueFinancier,
)
from apps.finance.services.anomaly_detector import AnomalyDetector
from apps.finance.services.dunning import DunningService
from apps.finance.services.import_reconciler import ImportReconciler
from apps.finance.services.installment_scheduler import InstallmentScheduler
from apps.finance.services.ledger_calculator import LedgerCalculator
from apps.finance.services.risk_scorer import RiskScorer, evaluation_as_dict
from apps.finance.services.rollover_engine import RolloverEngine
from apps.finance.services.status_synchronizer import StatusSynchronizer

from .permissions import AdministrationPermission, OperateurFinancePermission
from .serializers import (
    AnneeScolaireSerializer,
    AnomalieSerializer,
    CloturerDossierSerializer,
    DossierScolariteSerializer,
    EcheanceSerializer,
    EleveSerializer,
    GenererEcheancierSerializer,
    ImportFichierSerializer,
    ImportRequestSerializer,
    PayerEcheanceSerializer,
    ReglementSerializer,
    RelanceSerializer,
    RisqueFinancierSerializer,
)


class AnneeScolaireViewSet(viewsets.ModelViewSet):
    queryset = AnneeScolaire.objects.all()
    serializer_class = AnneeScolaireSerializer
    permission_classes = (OperateurFinancePermission,)


class EleveViewSet(viewsets.ModelViewSet):
    queryset = Eleve.objects.all()
    serializer_class = EleveSerializer
    permission_classes = (OperateurFinancePermission,)
    http_method_names = ["get", "post", "put", "patch", "head", "options"]

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        recherche = self.request.query_params.get("q")
        if recherche:
            queryset = queryset.filter(
                Q(nom__icontains=recherche)
                | Q(prenom__icontains=recherche)
                | Q(email__icontains=recherche)
                | Q(immatriculation__iexact=recherche)
            )
        return queryset

    @action(detail=True, methods=["post"], url_path="desinscrire")
    def desinscrire(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        """POST /api/eleves/<id>/desinscrire/ : résilie les dossiers actifs de l'élève."""
        eleve = self.get_object()
        motif = str(request.data.get("motif") or "Désinscription")
        resilies = RolloverEngine().desinscrire(eleve, motif=motif)
        eleve.refresh_from_db()
        return Response({"dossiers_resilies": resilies, "eleve": EleveSerializer(eleve).data})


class DossierScolariteViewSet(viewsets.ModelViewSet):
    queryset = DossierScolarite.objects.select_related("eleve", "niveau").all()
    serializer_class = DossierScolariteSerializer
    permission_classes = (OperateurFinancePermission,)
    http_method_names = ["get", "post", "put", "patch", "head", "options"]

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        params = self.request.query_params
        if params.get("annee_scolaire"):
            queryset = queryset.filter(annee_scolaire=params["annee_scolaire"])
        if params.get("statut_dossier"):
            queryset = queryset.filter(statut_dossier=params["statut_dossier"])
        if params.get("statut_paiement"):
            queryset = queryset.filter(statut_paiement=params["statut_paiement"])
        if params.get("eleve"):
            queryset = queryset.filter(eleve_id=params["eleve"])
        return queryset

    def perform_create(self, serializer):  # type: ignore[override]
        dossier = serializer.save()
        LedgerCalculator().rafraichir(dossier)

    @action(detail=True, methods=["get"], url_path="solde")
    def solde(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        """GET /api/dossiers/<id>/solde/ : solde recalculé depuis les règlements validés."""
        dossier = self.get_object()
        return Response(LedgerCalculator().calculer(dossier).as_dict())

    @action(detail=True, methods=["get"], url_path="echeances")
    def echeances(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        dossier = self.get_object()
        echeances = dossier.echeances.order_by("date_echeance", "pk")
        if request.query_params.get("actives") in {"1", "true"}:
            echeances = echeances.exclude(statut=Echeance.StatutChoices.ANNULEE)
        return Response(EcheanceSerializer(echeances, many=True).data)

    @action(detail=True, methods=["post"], url_path="echeances/generer")
    def generer_echeances(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        """
        POST /api/dossiers/<id>/echeances/generer/ : construit l'échéancier du dossier.

        409 si un échéancier existe déjà et ``force`` est faux.
        """
        dossier = self.get_object()
        serializer = GenererEcheancierSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        resultat = InstallmentScheduler().generer(dossier, force=serializer.validated_data["force"])
        return Response(resultat.as_dict(), status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get", "post"], url_path="risque")
    def risque(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        """
        GET : dernière évaluation connue.
        POST : évaluation du jour (créée une seule fois par jour).
        """
        dossier = self.get_object()
        if request.method == "GET":
            derniere = dossier.risques.order_by("-date_evaluation").first()
            if derniere is None:
                return Response({"detail": "Aucune évaluation.", "code": "not_found"}, status=status.HTTP_404_NOT_FOUND)
            return Response(evaluation_as_dict(derniere))
        evaluation, creee = RiskScorer().evaluer(dossier)
        return Response(
            evaluation_as_dict(evaluation),
            status=status.HTTP_201_CREATED if creee else status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"], url_path="cloturer")
    def cloturer(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        dossier = self.get_object()
        serializer = CloturerDossierSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        solde = RolloverEngine().cloturer_dossier(
            dossier,
            statut=serializer.validated_data["statut"],
            motif=serializer.validated_data["motif"],
        )
        dossier.refresh_from_db()
        return Response({"dossier": DossierScolariteSerializer(dossier).data, "solde": solde.as_dict()})

    @action(detail=True, methods=["post"], url_path="analyser")
    def analyser(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        """POST /api/dossiers/<id>/analyser/ : contrôle financier du dossier."""
        dossier = self.get_object()
        anomalies = AnomalyDetector().scan_dossier(dossier)
        return Response(AnomalieSerializer(anomalies, many=True).data)


class ReglementViewSet(viewsets.ModelViewSet):
    """
    Règlements. Pas de suppression : un règlement erroné est annulé ou refusé,
    ce qui le retire du solde et libère les échéances qu'il soldait.
    """

    queryset = Reglement.objects.select_related("dossier").all()
    serializer_class = ReglementSerializer
    permission_classes = (OperateurFinancePermission,)
    http_method_names = ["get", "post", "put", "patch", "head", "options"]

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        params = self.request.query_params
        if params.get("dossier"):
            queryset = queryset.filter(dossier_id=params["dossier"])
        if params.get("statut"):
            queryset = queryset.filter(statut=params["statut"])
        return queryset


class EcheanceViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Echeance.objects.all()
    serializer_class = EcheanceSerializer
    permission_classes = (OperateurFinancePermission,)

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        params = self.request.query_params
        if params.get("dossier"):
            queryset = queryset.filter(dossier_id=params["dossier"])
        if params.get("statut"):
            queryset = queryset.filter(statut=params["statut"])
        return queryset.order_by("dossier_id", "date_echeance", "pk")

    @action(detail=True, methods=["post"], url_path="payer")
    def payer(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        """POST /api/echeances/<id>/payer/ : rattache un règlement validé à l'échéance."""
        echeance = self.get_object()
        serializer = PayerEcheanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        StatusSynchronizer().marquer_payee(echeance, serializer.validated_data["reglement"])
        echeance.refresh_from_db()
        return Response(EcheanceSerializer(echeance).data)

    @action(
        detail=False,
        methods=["post"],
        url_path="synchroniser",
        permission_classes=(AdministrationPermission,),
    )
    def synchroniser(self, request: HttpRequest, *args, **kwargs):  # type: ignore[override]
        """POST /api/echeances/synchroniser/ : balayage des statuts d'échéances."""
        resultat = StatusSynchronizer().balayer()
        return Response(resultat.as_dict())


class RisqueFinancierViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = RisqueFinancier.objects.all()
    serializer_class = RisqueFinancierSerializer
    permission_classes = (OperateurFinancePermission,)

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        niveau = self.request.query_params.get("niveau")
        if niveau:
            queryset = queryset.filter(niveau=niveau)
        return queryset


class RelanceViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Relance.objects.select_related("dossier")
    serializer_class = RelanceSerializer
    permission_classes = (OperateurFinancePermission,)

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        params = self.request.query_params
        if params.get("dossier"):
            queryset = queryset.filter(dossier_id=params["dossier"])
        if params.get("type"):
            queryset = queryset.filter(type_relance=params["type"])
        return queryset

    @action(
        detail=False,
        methods=["post"],
        url_path="traiter",
        permission_classes=(AdministrationPermission,),
    )
    def traiter(self, request: HttpRequest, *args, **kwargs):  # type: ignore[override]
        """POST /api/relances/traiter/ : relances graduées puis rappels d'échéance proche."""
        service = DunningService()
        return Response(
            {
                "relances": service.traiter_relances().as_dict(),
                "rappels": service.rappeler_echeances_proches().as_dict(),
            }
        )


class AnomalieViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Anomalie.objects.all()
    serializer_class = AnomalieSerializer
    permission_classes = (OperateurFinancePermission,)

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        params = self.request.query_params
        if params.get("statut"):
            queryset = queryset.filter(statut=params["statut"])
        if params.get("type"):
            queryset = queryset.filter(type_anomalie=params["type"])
        return queryset

    @action(detail=True, methods=["post"], url_path="resoudre")
    def resoudre(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        anomalie = self.get_object()
        anomalie.resoudre()
        return Response(AnomalieSerializer(anomalie).data)

    @action(detail=True, methods=["post"], url_path="ignorer")
    def ignorer(self, request: HttpRequest, pk=None, *args, **kwargs):  # type: ignore[override]
        anomalie = self.get_object()
        anomalie.ignorer()
        return Response(AnomalieSerializer(anomalie).data)

    @action(detail=False, methods=["post"], url_path="detecter-doublons")
    def detecter_doublons(self, request: HttpRequest, *args, **kwargs):  # type: ignore[override]
        resultat = AnomalyDetector().detecter_doublons_eleves()
        return Response(resultat.as_dict())

    @action(detail=False, methods=["post"], url_path="analyser")
    def analyser(self, request: HttpRequest, *args, **kwargs):  # type: ignore[override]
        resultat = AnomalyDetector().scan_population()
        return Response(resultat.as_dict())


class ImportFichierViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    queryset = ImportFichier.objects.all()
    serializer_class = ImportFichierSerializer
    permission_classes = (OperateurFinancePermission,)

    def create(self, request: HttpRequest, *args, **kwargs):  # type: ignore[override]
        """
        POST /api/imports/ : import de règlements.

        409 ``duplicate_import`` si le même contenu a déjà été importé sans ``override``.
        """
        serializer = ImportRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        donnees = serializer.validated_data
        job = ImportReconciler().importer(
            donnees["content_fingerprint"],
            donnees["rows"],
            override=donnees["override"],
            fichier_nom=donnees["fichier_nom"],
        )
        return Response(ImportFichierSerializer(job).data, status=status.HTTP_201_CREATED)
