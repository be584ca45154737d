"""Tests de détection des anomalies."""
from __future__ import annotations

import pytest
from django.core.exceptions import ValidationError

from apps.finance.models import Anomalie
from apps.finance.services.anomaly_detector import AnomalyDetector, normaliser_telephone
from apps.finance.services.config import LedgerConfig

from .factories import creer_dossier, creer_eleve, creer_reglement

Types = Anomalie.TypeChoices


def test_normaliser_telephone():
    assert normaliser_telephone("+33 6 12 34 56 78") == normaliser_telephone("06.12.34.56.78")
    assert normaliser_telephone("12 34") == ""
    assert normaliser_telephone(None) == ""


@pytest.mark.django_db
class TestDoublons:
    def setup_method(self):
        self.detector = AnomalyDetector(LedgerConfig())

    def test_paires_suspectes(self):
        a = creer_eleve("a@example.com", nom="Durand", prenom="Paul", telephone="+33 6 12 34 56 78")
        b = creer_eleve("b@example.com", nom="DURAND", prenom="Paul", telephone="06 12 34 56 78")
        creer_eleve("c@example.com", nom="Petit", prenom="Léa", telephone="0799999999")

        paires = self.detector.paires_suspectes()

        assert len(paires) == 1
        assert (paires[0].eleve_a, paires[0].eleve_b) == (a.pk, b.pk)
        assert paires[0].criteres == ("nom_prenom", "telephone")
        assert paires[0].score == 50

    def test_detection_ne_rouvre_pas_une_paire_traitee(self):
        creer_eleve("a@example.com", nom="Durand", prenom="Paul")
        creer_eleve("b@example.com", nom="Durand", prenom="Paul")

        premier = self.detector.detecter_doublons_eleves()
        anomalie = Anomalie.objects.get(type_anomalie=Types.DOUBLON_ELEVE)
        anomalie.ignorer()
        second = self.detector.detecter_doublons_eleves()

        assert premier.detected == 1
        assert anomalie.severite == Anomalie.SeveriteChoices.ALERTE
        assert second.detected == 0
        assert second.total == 1
        assert Anomalie.objects.filter(type_anomalie=Types.DOUBLON_ELEVE).count() == 1

    def test_immatriculation_partagee_critique(self):
        creer_eleve("a@example.com", nom="A", immatriculation="mat-01")
        creer_eleve("b@example.com", nom="B", immatriculation="MAT 01")
        self.detector.detecter_doublons_eleves()
        anomalie = Anomalie.objects.get(type_anomalie=Types.DOUBLON_ELEVE)
        assert anomalie.severite == Anomalie.SeveriteChoices.CRITIQUE
        assert anomalie.details["criteres"] == ["immatriculation"]


@pytest.mark.django_db
class TestScanDossier:
    def setup_method(self):
        self.detector = AnomalyDetector(LedgerConfig())

    def test_solde_important(self):
        dossier = creer_dossier(tarif="8500")
        creees = self.detector.scan_dossier(dossier)
        assert [a.type_anomalie for a in creees] == [Types.SOLDE_IMPORTANT]
        assert creees[0].severite == Anomalie.SeveriteChoices.INFO

    def test_crediteur_et_montant_aberrant(self):
        dossier = creer_dossier(tarif="1000")
        creer_reglement(dossier, "3500")
        types = {a.type_anomalie for a in self.detector.scan_dossier(dossier)}
        assert types == {Types.ELEVE_CREDITEUR, Types.MONTANT_ABERRANT}

    def test_pas_de_doublon_d_anomalie_ouverte(self):
        dossier = creer_dossier(tarif="8500")
        self.detector.scan_dossier(dossier)
        assert self.detector.scan_dossier(dossier) == []
        assert Anomalie.objects.filter(dossier=dossier).count() == 1

    def test_scan_population(self):
        creer_dossier(eleve=creer_eleve("a@example.com"), tarif="8500")
        solde = creer_dossier(eleve=creer_eleve("b@example.com"), tarif="1000")
        creer_reglement(solde, "1000")
        resultat = self.detector.scan_population()
        assert resultat.total == 2
        assert resultat.detected == 1


@pytest.mark.django_db
class TestCycleDeVie:
    def test_resoudre_puis_ignorer_refuse(self):
        dossier = creer_dossier(tarif="8500")
        anomalie, created = AnomalyDetector(LedgerConfig()).signaler(
            Types.SOLDE_IMPORTANT, "Reste à payer", dossier=dossier
        )
        assert created is True
        assert anomalie.eleve == dossier.eleve

        anomalie.resoudre()
        assert anomalie.statut == Anomalie.StatutChoices.RESOLUE
        assert anomalie.resolved_at is not None
        with pytest.raises(ValidationError):
            anomalie.ignorer()
