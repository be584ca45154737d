"""Tests des endpoints REST du grand livre."""
from __future__ import annotations

from decimal import Decimal

import pytest
from django.contrib.auth.models import Group, User
from rest_framework import status
from rest_framework.test import APIClient

from apps.finance.models import Anomalie, DossierScolarite, Echeance, ImportFichier, Reglement, RisqueFinancier
from apps.finance.services.installment_scheduler import InstallmentScheduler

from .factories import ANNEE, creer_dossier, creer_eleve, creer_niveaux, creer_reglement

CSV = (
    "Nom;Prénom;Email;Année;Tarif;Acompte;Date Rglt 1;Moyen Rglt 1\n"
    "Durand;Paul;paul@example.com;1A;8500;2000;10/09/2025;CB\n"
    "Petit;Léa;lea@example.com;1A;8500;;;\n"
)


@pytest.mark.django_db
class TestApiDossiers:
    def setup_method(self):
        creer_niveaux()
        self.client = APIClient()
        self.user = User.objects.create_user("finance", "finance@example.com", "secret", is_staff=True)
        self.client.force_authenticate(self.user)
        self.dossier = creer_dossier(tarif="8500")

    def test_authentification_requise(self):
        response = APIClient().get("/api/dossiers/")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_lecture_seule_sans_role_finance(self):
        lecteur = User.objects.create_user("lecteur", "lecteur@example.com", "secret")
        client = APIClient()
        client.force_authenticate(lecteur)
        assert client.get("/api/dossiers/").status_code == status.HTTP_200_OK
        response = client.post(f"/api/dossiers/{self.dossier.pk}/echeances/generer/", {}, format="json")
        assert response.status_code == status.HTTP_403_FORBIDDEN

        lecteur.groups.add(Group.objects.create(name="OPERATOR_FINANCE"))
        response = client.post(f"/api/dossiers/{self.dossier.pk}/echeances/generer/", {}, format="json")
        assert response.status_code == status.HTTP_201_CREATED

    def test_solde(self):
        creer_reglement(self.dossier, "2000")
        response = self.client.get(f"/api/dossiers/{self.dossier.pk}/solde/")
        assert response.status_code == status.HTTP_200_OK
        assert Decimal(str(response.data["balance"])) == Decimal("6500.00")
        assert response.data["payment_count"] == 1

    def test_generation_puis_conflit(self):
        url = f"/api/dossiers/{self.dossier.pk}/echeances/generer/"
        response = self.client.post(url, {}, format="json")
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["installments_created"] == 10

        response = self.client.post(url, {}, format="json")
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["code"] == "already_scheduled"

        response = self.client.post(url, {"force": True}, format="json")
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["cancelled"] == 10

    def test_tarif_nul(self):
        dossier = creer_dossier(eleve=creer_eleve("zero@example.com"), tarif="0")
        response = self.client.post(f"/api/dossiers/{dossier.pk}/echeances/generer/", {}, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["code"] == "invalid_tariff"

    def test_dossier_introuvable(self):
        response = self.client.get("/api/dossiers/999999/solde/")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_risque_cree_une_fois_par_jour(self):
        url = f"/api/dossiers/{self.dossier.pk}/risque/"
        assert self.client.get(url).status_code == status.HTTP_404_NOT_FOUND
        assert self.client.post(url).status_code == status.HTTP_201_CREATED
        response = self.client.post(url)
        assert response.status_code == status.HTTP_200_OK
        assert RisqueFinancier.objects.count() == 1
        assert self.client.get(url).data["score"] == response.data["score"]

    def test_cloturer(self):
        url = f"/api/dossiers/{self.dossier.pk}/cloturer/"
        response = self.client.post(url, {"statut": "resilie", "motif": "Départ"}, format="json")
        assert response.status_code == status.HTTP_200_OK
        assert response.data["dossier"]["statut_dossier"] == DossierScolarite.StatutDossierChoices.RESILIE

        response = self.client.post(url, {}, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["code"] == "rollover_error"

    def test_reglement_sans_suppression(self):
        response = self.client.post(
            "/api/reglements/",
            {"dossier": self.dossier.pk, "montant": "1500.00", "date_reglement": "2025-10-02", "moyen_paiement": "carte"},
            format="json",
        )
        assert response.status_code == status.HTTP_201_CREATED
        self.dossier.refresh_from_db()
        assert self.dossier.solde == Decimal("7000.00")

        url = f"/api/reglements/{response.data['id']}/"
        assert self.client.delete(url).status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        response = self.client.patch(url, {"statut": "annule"}, format="json")
        assert response.status_code == status.HTTP_200_OK
        self.dossier.refresh_from_db()
        assert self.dossier.solde == Decimal("8500.00")


@pytest.mark.django_db
class TestApiEcheancesEtAnomalies:
    def setup_method(self):
        creer_niveaux()
        self.client = APIClient()
        self.client.force_authenticate(User.objects.create_user("admin", "admin@example.com", "secret", is_staff=True))

    def test_payer_une_echeance(self):
        dossier = creer_dossier(tarif="1000")
        InstallmentScheduler().generer(dossier)
        reglement = creer_reglement(dossier, "480")
        echeance = Echeance.objects.filter(dossier=dossier).order_by("date_echeance").first()

        response = self.client.post(f"/api/echeances/{echeance.pk}/payer/", {"reglement": reglement.pk}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["statut"] == Echeance.StatutChoices.PAYEE

    def test_payer_avec_un_reglement_refuse(self):
        dossier = creer_dossier(tarif="1000")
        InstallmentScheduler().generer(dossier)
        reglement = creer_reglement(dossier, "480", statut=Reglement.StatutChoices.REFUSE)
        echeance = Echeance.objects.filter(dossier=dossier).first()

        response = self.client.post(f"/api/echeances/{echeance.pk}/payer/", {"reglement": reglement.pk}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["code"] == "validation_error"

    def test_synchroniser(self):
        response = self.client.post("/api/echeances/synchroniser/")
        assert response.status_code == status.HTTP_200_OK
        assert "installments_marked_overdue" in response.data

    def test_doublons_et_resolution(self):
        creer_eleve("a@example.com", nom="Durand", prenom="Paul")
        creer_eleve("b@example.com", nom="Durand", prenom="Paul")

        response = self.client.post("/api/anomalies/detecter-doublons/")
        assert response.data["detected"] == 1

        anomalie = Anomalie.objects.get()
        response = self.client.post(f"/api/anomalies/{anomalie.pk}/resoudre/")
        assert response.data["statut"] == Anomalie.StatutChoices.RESOLUE
        response = self.client.post(f"/api/anomalies/{anomalie.pk}/ignorer/")
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestApiImportEtPassage:
    def setup_method(self):
        creer_niveaux()
        self.client = APIClient()
        self.client.force_authenticate(User.objects.create_user("admin", "admin@example.com", "secret", is_staff=True))

    def test_import_csv_idempotent(self):
        response = self.client.post("/api/imports/", {"content": CSV, "fichier_nom": "export.csv"}, format="json")
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["lignes_inserees"] == 2
        nombre = Reglement.objects.count()

        response = self.client.post("/api/imports/", {"content": CSV}, format="json")
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["code"] == "duplicate_import"
        assert Reglement.objects.count() == nombre

        response = self.client.post("/api/imports/", {"content": CSV, "override": True}, format="json")
        assert response.status_code == status.HTTP_201_CREATED
        assert Reglement.objects.count() == nombre
        assert ImportFichier.objects.count() == 2

    def test_import_par_lignes(self):
        rows = [{"email": "x@example.com", "annee": "1A", "tarif": "1000", "reglements": []}]
        response = self.client.post("/api/imports/", {"rows": rows, "content_fingerprint": "abc"}, format="json")
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["fichier_hash"] == "abc"

    def test_import_reglements_mal_formes(self):
        rows = [
            {"email": "a@example.com", "tarif": "8500", "reglements": ["1000"]},
            {"email": "b@example.com", "tarif": "8500"},
        ]
        response = self.client.post("/api/imports/", {"rows": rows, "content_fingerprint": "def"}, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert not ImportFichier.objects.filter(fichier_hash="def").exists()

    def test_import_sans_contenu(self):
        response = self.client.post("/api/imports/", {}, format="json")
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_passage_d_annee(self):
        creer_dossier(tarif="8500")
        response = self.client.post("/api/rollover/promotion/", {"annee_courante": ANNEE}, format="json")
        assert response.status_code == status.HTTP_200_OK
        assert response.data["annee_suivante"] == "2026_2027"
        assert response.data["success"] == 1

        response = self.client.post("/api/rollover/diplomes/", {"annee_courante": ANNEE}, format="json")
        assert response.status_code == status.HTTP_200_OK
        assert response.data["total"] == 0

    def test_passage_reserve_au_personnel(self):
        client = APIClient()
        client.force_authenticate(User.objects.create_user("lecteur", "l@example.com", "secret"))
        response = client.post("/api/rollover/promotion/", {}, format="json")
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_health(self):
        response = APIClient().get("/api/health/")
        assert response.status_code == status.HTTP_200_OK
        assert response.data["db"] == "ok"
