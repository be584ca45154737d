"""Tests de l'import en masse et du rapport de pertes."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from django.core import mail

from apps.academic.models import Eleve
from apps.finance.exceptions import DuplicateImport
from apps.finance.models import Anomalie, DossierScolarite, Echeance, ImportFichier, Reglement
from apps.finance.services.config import LedgerConfig
from apps.finance.services.import_reconciler import ImportReconciler
from audit.models import SysAuditLog

from .factories import ANNEE, creer_eleve, creer_niveaux

TODAY = date(2025, 10, 1)


def ligne(email, numero, **kwargs):
    row = {
        "_ligne": numero,
        "email": email,
        "nom": "Durand",
        "prenom": "Paul",
        "annee": "1A",
        "tarif": "8500",
        "reglements": [],
    }
    row.update(kwargs)
    return row


def reglement(montant, date_brute="10/09/2025", moyen="CB"):
    return {"montant": montant, "date": date_brute, "moyen": moyen, "numero_piece": ""}


@pytest.mark.django_db
class TestImportReconciler:
    def setup_method(self):
        creer_niveaux()
        self.reconciler = ImportReconciler(LedgerConfig())
        self.rows = [
            ligne("paul.durand@example.com", 2, reglements=[reglement("2 000"), reglement("850", "15/10")]),
            ligne("LEA.PETIT@example.com ", 3, nom="Petit", prenom="Léa", annee="2A"),
        ]

    def test_import_nominal(self):
        job = self.reconciler.importer("empreinte-1", self.rows, fichier_nom="export.csv", today=TODAY)

        assert job.statut == ImportFichier.StatutChoices.TERMINE
        assert job.lignes_total == 2
        assert job.lignes_inserees == 2
        assert job.rapport["eleves_crees"] == 2
        assert job.rapport["reglements_importes"] == 2
        assert job.rapport["reglements_perdus"] == 0
        assert job.rapport["echeanciers_regeneres"] == 2

        paul = DossierScolarite.objects.get(eleve__email="paul.durand@example.com", annee_scolaire=ANNEE)
        assert paul.solde == Decimal("5650.00")
        assert paul.reglements.filter(date_reglement=date(2025, 10, 15)).exists()
        assert Eleve.objects.filter(email="lea.petit@example.com").exists()
        actives = Echeance.objects.filter(dossier=paul).exclude(statut=Echeance.StatutChoices.ANNULEE)
        assert sum(e.montant for e in actives) == Decimal("8500.00")
        assert SysAuditLog.objects.filter(action="IMPORT_COMPLETED", entity_id=str(job.pk)).exists()

    def test_reimport_refuse(self):
        self.reconciler.importer("empreinte-1", self.rows, today=TODAY)
        nombre = Reglement.objects.count()

        with pytest.raises(DuplicateImport) as excinfo:
            self.reconciler.importer("empreinte-1", self.rows, today=TODAY)

        assert excinfo.value.code == "duplicate_import"
        assert Reglement.objects.count() == nombre
        assert ImportFichier.objects.count() == 1

    def test_reimport_force_n_ajoute_aucun_reglement(self):
        self.reconciler.importer("empreinte-1", self.rows, today=TODAY)
        nombre = Reglement.objects.count()

        job = self.reconciler.importer("empreinte-1", self.rows, override=True, today=TODAY)

        assert Reglement.objects.count() == nombre
        assert job.rapport["reglements_ignores"] == 2
        assert job.rapport["eleves_mis_a_jour"] == 2
        assert job.override is True

    def test_points_de_perte(self):
        rows = self.rows + [
            ligne("", 4),
            ligne("pas-un-email", 5),
            ligne("paul.durand@example.com", 6),
            ligne("tarif@example.com", 7, tarif="huit mille"),
            ligne("niveau@example.com", 8, annee="9Z"),
        ]
        job = self.reconciler.importer("empreinte-2", rows, today=TODAY)

        assert job.lignes_total == 7
        assert job.lignes_valides == 2
        assert job.lignes_inserees == 2
        assert job.lignes_rejetees == 5
        codes = {erreur["ligne"]: erreur["code"] for erreur in job.rapport["erreurs"]}
        assert codes[6] == "doublon_fichier"
        assert set(codes) == {4, 5, 6, 7, 8}

    def test_immatriculation_deja_attribuee(self):
        creer_eleve("titulaire@example.com", immatriculation="MAT-001")
        rows = [ligne("autre@example.com", 2, immatriculation="MAT-001")]

        job = self.reconciler.importer("empreinte-3", rows, today=TODAY)

        assert job.lignes_rejetees == 1
        assert job.rapport["erreurs"][0]["code"] == "duplicate_student"
        assert not Eleve.objects.filter(email="autre@example.com").exists()

    def test_date_illisible_donne_un_reglement_en_attente(self):
        rows = [ligne("x@example.com", 2, reglements=[reglement("500", "IMPAYE")])]

        job = self.reconciler.importer("empreinte-4", rows, today=TODAY)

        importe = Reglement.objects.get(dossier__eleve__email="x@example.com")
        assert importe.statut == Reglement.StatutChoices.EN_ATTENTE
        assert importe.date_reglement == TODAY
        assert job.rapport["reglements_en_attente"] == 1
        assert job.rapport["avertissements"]
        dossier = importe.dossier
        dossier.refresh_from_db()
        assert dossier.solde == Decimal("8500.00")

    def test_montants_nuls_ignores(self):
        rows = [ligne("x@example.com", 2, reglements=[reglement("0"), reglement(""), reglement("300")])]
        job = self.reconciler.importer("empreinte-5", rows, today=TODAY)
        assert job.rapport["reglements_trouves"] == 1
        assert job.rapport["reglements_importes"] == 1

    def test_anomalies_d_import(self):
        rows = [
            ligne("sans.tarif@example.com", 2, tarif=""),
            ligne("sans.moyen@example.com", 3, reglements=[reglement("100", moyen="?")]),
            ligne("trop.percu@example.com", 4, tarif="1000", reglements=[reglement("1500")]),
        ]
        job = self.reconciler.importer("empreinte-6", rows, today=TODAY)

        types = set(Anomalie.objects.values_list("type_anomalie", flat=True))
        assert Anomalie.TypeChoices.DONNEES_MANQUANTES in types
        assert Anomalie.TypeChoices.MOYEN_MANQUANT in types
        assert Anomalie.TypeChoices.ELEVE_CREDITEUR in types
        assert job.rapport["anomalies_creees"] == 3
        # Tarif nul : pas d'échéancier.
        assert job.rapport["echeanciers_regeneres"] == 2

    def test_nom_deduit_de_l_email(self):
        rows = [ligne("jean.dupont@example.com", 2, nom="")]
        self.reconciler.importer("empreinte-7", rows, today=TODAY)
        assert Eleve.objects.get(email="jean.dupont@example.com").nom == "jean.dupont"

    def test_echec_precedent_ne_bloque_pas(self):
        ImportFichier.objects.create(fichier_hash="empreinte-8", statut=ImportFichier.StatutChoices.ECHEC)
        job = self.reconciler.importer("empreinte-8", self.rows, today=TODAY)
        assert job.statut == ImportFichier.StatutChoices.TERMINE

    def test_ligne_mal_formee_n_interrompt_pas_le_lot(self):
        rows = [
            ligne("a@example.com", 2, reglements=["1000"]),
            ligne("b@example.com", "x"),
            ligne("c@example.com", 4, reglements="1000"),
            "pas une ligne",
            ligne("d@example.com", 6),
        ]

        job = self.reconciler.importer("empreinte-9", rows, today=TODAY)

        assert job.statut == ImportFichier.StatutChoices.TERMINE
        assert job.lignes_total == 5
        assert job.lignes_rejetees == 4
        assert job.lignes_inserees == 1
        assert [e["ligne"] for e in job.rapport["erreurs"]] == [2, 2, 4, 4]
        assert Eleve.objects.filter(email="d@example.com").exists()
        assert not Eleve.objects.filter(email__in=["a@example.com", "b@example.com", "c@example.com"]).exists()

    def test_ligne_rejetee_ne_reserve_pas_son_email(self):
        rows = [
            ligne("paul.durand@example.com", 2, tarif="abc"),
            ligne("paul.durand@example.com", 3),
        ]

        job = self.reconciler.importer("empreinte-10", rows, today=TODAY)

        assert job.lignes_rejetees == 1
        assert job.lignes_inserees == 1
        assert job.rapport["erreurs"][0]["ligne"] == 2
        assert DossierScolarite.objects.filter(eleve__email="paul.durand@example.com").count() == 1

    def test_email_en_double_apres_une_ligne_valide(self):
        rows = [ligne("paul.durand@example.com", 2), ligne("paul.durand@example.com", 3)]
        job = self.reconciler.importer("empreinte-11", rows, today=TODAY)
        assert job.lignes_inserees == 1
        assert job.rapport["erreurs"][0]["code"] == "doublon_fichier"

    def test_import_sans_accuse_de_reception(self):
        mail.outbox.clear()
        rows = [ligne("paul.durand@example.com", 2, reglements=[reglement("2 000"), reglement("850", "15/10")])]

        self.reconciler.importer("empreinte-12", rows, today=TODAY)

        assert Reglement.objects.filter(statut=Reglement.StatutChoices.VALIDE).count() == 2
        assert [m for m in mail.outbox if m.subject == "Confirmation de votre règlement"] == []

    def test_validation_manuelle_apres_import_notifie(self):
        rows = [ligne("paul.durand@example.com", 2, reglements=[reglement("500", "IMPAYE")])]
        self.reconciler.importer("empreinte-13", rows, today=TODAY)
        en_attente = Reglement.objects.get(statut=Reglement.StatutChoices.EN_ATTENTE)

        mail.outbox.clear()
        en_attente.statut = Reglement.StatutChoices.VALIDE
        en_attente.save()

        assert [m.subject for m in mail.outbox].count("Confirmation de votre règlement") == 1
