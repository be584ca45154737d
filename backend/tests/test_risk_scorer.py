"""Tests du score de risque d'impayé."""
from __future__ import annotations

from datetime import date

import pytest
from django.core import mail

from apps.finance.models import Reglement, RisqueFinancier
from apps.finance.services.config import LedgerConfig
from apps.finance.services.installment_scheduler import InstallmentScheduler
from apps.finance.services.risk_factors import FactorHit, RiskFactor
from apps.finance.services.risk_scorer import RECOMMANDATIONS, RiskScorer, evaluation_as_dict
from audit.models import SysAuditLog

from .factories import creer_dossier, creer_reglement

GENERATION = date(2025, 10, 1)
EVALUATION = date(2026, 1, 20)


@pytest.mark.django_db
class TestRiskScorer:
    def setup_method(self):
        self.config = LedgerConfig()
        self.scorer = RiskScorer(self.config)

    def test_niveaux(self):
        assert self.scorer.niveau(0) == RisqueFinancier.NiveauChoices.FAIBLE
        assert self.scorer.niveau(24) == RisqueFinancier.NiveauChoices.FAIBLE
        assert self.scorer.niveau(25) == RisqueFinancier.NiveauChoices.MOYEN
        assert self.scorer.niveau(50) == RisqueFinancier.NiveauChoices.ELEVE
        assert self.scorer.niveau(75) == RisqueFinancier.NiveauChoices.CRITIQUE
        assert self.scorer.niveau(100) == RisqueFinancier.NiveauChoices.CRITIQUE

    def test_dossier_a_jour(self):
        dossier = creer_dossier(tarif="1000")
        creer_reglement(dossier, "1000", date(2026, 1, 5))
        evaluation = self.scorer.calculer(dossier, EVALUATION)
        assert evaluation.score == 0
        assert evaluation.level == RisqueFinancier.NiveauChoices.FAIBLE
        assert evaluation.recommendation == RECOMMANDATIONS[RisqueFinancier.NiveauChoices.FAIBLE]

    def test_dossier_en_retard_sans_reglement(self):
        dossier = creer_dossier(tarif="8500")
        InstallmentScheduler(self.config).generer(dossier, today=GENERATION)

        evaluation = self.scorer.calculer(dossier, EVALUATION)

        facteurs = {hit.factor for hit in evaluation.factors}
        assert facteurs == {
            RiskFactor.ECHEANCE_RETARD_30J,
            RiskFactor.ECHEANCES_RETARD_MULTIPLES,
            RiskFactor.SOLDE_ELEVE,
            RiskFactor.AUCUN_REGLEMENT,
        }
        assert evaluation.score == 85
        assert evaluation.level == RisqueFinancier.NiveauChoices.CRITIQUE

    def test_impaye_refus_et_reglement_ancien(self):
        dossier = creer_dossier(tarif="8500", impaye="500")
        creer_reglement(dossier, "6000", date(2025, 9, 1))
        creer_reglement(dossier, "300", date(2025, 9, 2), statut=Reglement.StatutChoices.REFUSE)

        evaluation = self.scorer.calculer(dossier, EVALUATION)

        assert {hit.factor for hit in evaluation.factors} == {
            RiskFactor.DERNIER_REGLEMENT_ANCIEN,
            RiskFactor.IMPAYE_ANTERIEUR,
            RiskFactor.REGLEMENTS_REFUSES,
        }
        assert evaluation.score == 30
        assert evaluation.level == RisqueFinancier.NiveauChoices.MOYEN

    def test_score_plafonne(self):
        poids = {facteur.value: 60 for facteur in RiskFactor}
        scorer = RiskScorer(LedgerConfig.from_mapping({"risk_weights": poids}))
        dossier = creer_dossier(tarif="8500")
        InstallmentScheduler(self.config).generer(dossier, today=GENERATION)
        assert scorer.calculer(dossier, EVALUATION).score == 100

    def test_poids_nul_retire_le_facteur(self):
        scorer = RiskScorer(LedgerConfig.from_mapping({"risk_weights": {"aucun_reglement": 0}}))
        dossier = creer_dossier(tarif="8500")
        facteurs = {hit.factor for hit in scorer.calculer(dossier, EVALUATION).factors}
        assert RiskFactor.AUCUN_REGLEMENT not in facteurs

    def test_une_evaluation_par_jour(self):
        dossier = creer_dossier(tarif="8500")
        premiere, creee = self.scorer.evaluer(dossier, EVALUATION)
        seconde, recreee = self.scorer.evaluer(dossier.pk, EVALUATION)

        assert creee is True
        assert recreee is False
        assert premiere.pk == seconde.pk
        assert RisqueFinancier.objects.filter(dossier=dossier).count() == 1

        _, lendemain = self.scorer.evaluer(dossier, date(2026, 1, 21))
        assert lendemain is True
        assert SysAuditLog.objects.filter(action="RISK_EVALUATED").count() == 2

    def test_evaluation_persistee_relue(self):
        dossier = creer_dossier(tarif="8500")
        evaluation, _ = self.scorer.evaluer(dossier, EVALUATION)
        donnees = evaluation_as_dict(evaluation)
        assert donnees["level"] == evaluation.niveau
        assert donnees["factors"][0]["libelle"]
        assert [FactorHit.from_dict(f).factor for f in donnees["factors"]]

    def test_facteur_mal_forme_refuse(self):
        with pytest.raises(ValueError):
            FactorHit.from_dict({"facteur": "inconnu", "points": 10})
        with pytest.raises(ValueError):
            FactorHit.from_dict({"points": 10})

    def test_alerte_risque_critique(self):
        config = LedgerConfig(finance_notification_email="finance@example.com")
        dossier = creer_dossier(tarif="8500")
        InstallmentScheduler(config).generer(dossier, today=GENERATION)
        mail.outbox.clear()

        RiskScorer(config).evaluer(dossier, EVALUATION)

        assert [m.to for m in mail.outbox] == [["finance@example.com"]]
