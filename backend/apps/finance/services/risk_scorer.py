"""
Score de risque d'impayé, par points, au plus une évaluation persistée par dossier et par jour.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.finance.models import DossierScolarite, Echeance, Reglement, Relance, RisqueFinancier
from audit.models import journaliser

from .config import LedgerConfig
from .ledger_calculator import LedgerCalculator
from .notifications import notifier_risque
from .risk_factors import FactorHit, RiskFactor
from .tasks import submit_best_effort

logger = logging.getLogger(__name__)

Niveaux = RisqueFinancier.NiveauChoices

RECOMMANDATIONS: Dict[str, str] = {
    Niveaux.CRITIQUE: (
        "Action immédiate requise. Contacter l'élève et sa famille rapidement. "
        "Envisager un plan de paiement échelonné."
    ),
    Niveaux.ELEVE: (
        "Envoyer une relance formelle. "
        "Proposer un entretien pour discuter des modalités de paiement."
    ),
    Niveaux.MOYEN: "Surveillance recommandée. Envoyer un rappel amical de paiement.",
    Niveaux.FAIBLE: "Situation saine. Continuer le suivi normal.",
}


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    level: str
    factors: Tuple[FactorHit, ...]
    recommendation: str

    def factors_as_list(self) -> List[Dict[str, Any]]:
        return [hit.as_dict() for hit in self.factors]


def evaluation_as_dict(evaluation: RisqueFinancier) -> Dict[str, Any]:
    """Forme publique d'une évaluation ; les facteurs persistés sont relus et validés."""
    facteurs = [FactorHit.from_dict(f).as_dict() for f in evaluation.facteurs]
    return {
        "id": evaluation.pk,
        "dossier_id": evaluation.dossier_id,
        "score": evaluation.score,
        "level": evaluation.niveau,
        "factors": facteurs,
        "recommendation": evaluation.recommandation,
        "date_evaluation": evaluation.date_evaluation,
    }


class RiskScorer:
    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig.from_settings()
        self.calculator = LedgerCalculator(self.config)

    def niveau(self, score: int) -> str:
        bas, moyen, haut = self.config.risk_thresholds
        if score < bas:
            return Niveaux.FAIBLE
        if score < moyen:
            return Niveaux.MOYEN
        if score < haut:
            return Niveaux.ELEVE
        return Niveaux.CRITIQUE

    def _facteurs_presents(self, dossier: DossierScolarite, today: date) -> List[RiskFactor]:
        solde = self.calculator.calculer(dossier)
        reste_du = solde.balance > self.config.epsilon

        dates_retard = list(
            Echeance.objects.filter(
                dossier=dossier,
                statut__in=[Echeance.StatutChoices.A_VENIR, Echeance.StatutChoices.EN_RETARD],
                reglement__isnull=True,
                date_echeance__lt=today,
            ).values_list("date_echeance", flat=True)
        )
        presents: List[RiskFactor] = []
        if dates_retard and (today - min(dates_retard)).days >= self.config.risk_overdue_days:
            presents.append(RiskFactor.ECHEANCE_RETARD_30J)
        if len(dates_retard) >= 2:
            presents.append(RiskFactor.ECHEANCES_RETARD_MULTIPLES)
        if solde.tariff > 0 and solde.balance > solde.tariff * self.config.risk_balance_ratio:
            presents.append(RiskFactor.SOLDE_ELEVE)
        if reste_du and solde.payment_count == 0:
            presents.append(RiskFactor.AUCUN_REGLEMENT)
        if (
            reste_du
            and solde.last_payment_date is not None
            and (today - solde.last_payment_date).days > self.config.risk_stale_payment_days
        ):
            presents.append(RiskFactor.DERNIER_REGLEMENT_ANCIEN)
        if solde.arrears > 0:
            presents.append(RiskFactor.IMPAYE_ANTERIEUR)
        if Reglement.objects.filter(dossier=dossier, statut=Reglement.StatutChoices.REFUSE).exists():
            presents.append(RiskFactor.REGLEMENTS_REFUSES)
        if reste_du:
            derniere = (
                Relance.objects.filter(
                    dossier=dossier,
                    statut=Relance.StatutChoices.ENVOYEE,
                    niveau_relance__gte=self.config.dunning_max_level,
                    date_envoi__lte=today,
                )
                .exclude(type_relance=Relance.TypeChoices.ECHEANCE_PROCHE)
                .order_by("-date_envoi")
                .first()
            )
            # Aucun règlement reçu depuis la dernière relance de plus haut niveau.
            if derniere is not None and (
                solde.last_payment_date is None or solde.last_payment_date < derniere.date_envoi
            ):
                presents.append(RiskFactor.RELANCES_SANS_EFFET)
        return presents

    def calculer(self, dossier: DossierScolarite, today: Optional[date] = None) -> RiskAssessment:
        """Évaluation pure, sans écriture."""
        today = today or timezone.localdate()
        presents = set(self._facteurs_presents(dossier, today))
        hits = tuple(
            FactorHit(factor=factor, points=self.config.weight(factor))
            for factor in RiskFactor
            if factor in presents and self.config.weight(factor) > 0
        )
        score = min(100, sum(hit.points for hit in hits))
        niveau = self.niveau(score)
        return RiskAssessment(
            score=score,
            level=niveau,
            factors=hits,
            recommendation=RECOMMANDATIONS[niveau],
        )

    def evaluer(
        self,
        dossier: Union[DossierScolarite, int],
        today: Optional[date] = None,
    ) -> Tuple[RisqueFinancier, bool]:
        """
        Retourne l'évaluation du jour, en la créant si nécessaire.

        Returns:
            (évaluation, créée)
        """
        if not isinstance(dossier, DossierScolarite):
            dossier = DossierScolarite.objects.select_related("eleve").get(pk=dossier)
        today = today or timezone.localdate()

        existante = RisqueFinancier.objects.filter(dossier=dossier, date_evaluation=today).first()
        if existante is not None:
            return existante, False

        evaluation = self.calculer(dossier, today)
        try:
            with transaction.atomic():
                risque = RisqueFinancier.objects.create(
                    dossier=dossier,
                    score=evaluation.score,
                    niveau=evaluation.level,
                    facteurs=evaluation.factors_as_list(),
                    recommandation=evaluation.recommendation,
                    date_evaluation=today,
                )
        except IntegrityError:
            # Évaluation concurrente créée entre la lecture et l'écriture.
            return RisqueFinancier.objects.get(dossier=dossier, date_evaluation=today), False

        logger.info("Risque dossier %s: %s (%s)", dossier.pk, evaluation.score, evaluation.level)
        journaliser(
            "RISK_EVALUATED",
            "DOSSIER_SCOLARITE",
            dossier.pk,
            payload={"score": evaluation.score, "niveau": evaluation.level},
        )
        submit_best_effort("notification risque", notifier_risque, risque, self.config)
        return risque, True
