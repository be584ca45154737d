"""
Relances des dossiers en impayé.

Deux traitements planifiables :
- les relances graduées (niveaux 1 à 3) des dossiers à risque élevé ou en retard,
  au plus une par dossier sur la période de carence ;
- les rappels d'échéance proche, une seule fois par échéance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from django.db.models import QuerySet
from django.utils import timezone

from apps.academic.models import Eleve
from apps.finance.models import DossierScolarite, Echeance, Relance
from audit.models import journaliser

from .batch import BatchResult, run_batch
from .config import LedgerConfig
from .ledger_calculator import LedgerCalculator
from .notifications import notifier_echeance_proche, notifier_relance
from .risk_scorer import RiskScorer
from .tasks import submit_best_effort

logger = logging.getLogger(__name__)

Types = Relance.TypeChoices

MESSAGES_RELANCE: Dict[int, str] = {
    1: (
        "Bonjour {nom},\n\n"
        "Un solde de {montant} € reste dû sur votre dossier de scolarité {annee}.\n\n"
        "Merci de régulariser votre situation dans les plus brefs délais.\n\n"
        "Le service financier"
    ),
    2: (
        "Bonjour {nom},\n\n"
        "Nous vous relançons concernant le solde impayé de {montant} € sur votre dossier {annee}.\n\n"
        "Veuillez procéder au règlement dans les 7 jours pour éviter toute mesure complémentaire.\n\n"
        "Le service financier"
    ),
    3: (
        "Bonjour {nom},\n\n"
        "Malgré nos précédentes relances, votre solde de {montant} € reste impayé.\n\n"
        "Ceci constitue notre dernière relance avant mise en demeure.\n\n"
        "Le service financier"
    ),
}


def message_relance(niveau: int, montant: Decimal, eleve: Eleve, annee_scolaire: str) -> str:
    modele = MESSAGES_RELANCE.get(niveau, MESSAGES_RELANCE[1])
    return modele.format(nom=eleve.nom_complet, montant=montant, annee=annee_scolaire)


@dataclass
class DunningResult(BatchResult):
    sent: int = 0
    skipped: int = 0
    failed_deliveries: int = 0

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data.update(sent=self.sent, skipped=self.skipped, failed_deliveries=self.failed_deliveries)
        return data


class DunningService:
    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig.from_settings()
        self.calculator = LedgerCalculator(self.config)
        self.scorer = RiskScorer(self.config)

    def niveau_suivant(self, dossier: DossierScolarite, today: date) -> Optional[int]:
        """Niveau de la prochaine relance, ou None pendant la période de carence."""
        derniere = (
            Relance.objects.filter(dossier=dossier)
            .exclude(type_relance=Types.ECHEANCE_PROCHE)
            .order_by("-date_envoi", "-created_at")
            .first()
        )
        if derniere is None:
            return 1
        if (today - derniere.date_envoi).days < self.config.dunning_cooldown_days:
            return None
        return min(derniere.niveau_relance + 1, self.config.dunning_max_level)

    def _envoyer(self, relance: Relance, envoi: Callable[[], int]) -> bool:
        outcome = submit_best_effort(f"relance {relance.type_relance} dossier {relance.dossier_id}", envoi)
        if outcome.ok and outcome.value:
            return True
        relance.statut = Relance.StatutChoices.ECHEC
        relance.save(update_fields=["statut"])
        return False

    def relancer(
        self,
        dossier: DossierScolarite,
        today: Optional[date] = None,
        type_relance: str = Types.AUTOMATIQUE,
    ) -> Optional[Relance]:
        """
        Crée et envoie la relance du dossier si un reste à payer existe et que
        la période de carence est écoulée. Retourne None sinon.
        """
        today = today or timezone.localdate()
        if not dossier.est_actif:
            return None
        solde = self.calculator.calculer(dossier)
        if solde.balance <= self.config.epsilon:
            return None
        niveau = self.niveau_suivant(dossier, today)
        if niveau is None:
            return None

        relance = Relance.objects.create(
            dossier=dossier,
            type_relance=type_relance,
            niveau_relance=niveau,
            montant_du=solde.balance,
            message=message_relance(niveau, solde.balance, dossier.eleve, dossier.annee_scolaire),
            date_envoi=today,
        )
        self._envoyer(relance, lambda: notifier_relance(relance))
        logger.info("Relance niveau %s dossier %s (%s €)", niveau, dossier.pk, solde.balance)
        return relance

    def candidats(self) -> QuerySet:
        return (
            DossierScolarite.objects.filter(
                statut_dossier=DossierScolarite.StatutDossierChoices.EN_COURS,
                solde__gt=self.config.epsilon,
            )
            .select_related("eleve")
            .order_by("pk")
        )

    def traiter_relances(self, today: Optional[date] = None, dossiers: Optional[QuerySet] = None) -> DunningResult:
        """
        Évalue le risque du jour de chaque dossier débiteur, puis relance ceux
        dont le niveau de risque est configuré pour la relance ou qui ont une
        échéance en retard.
        """
        today = today or timezone.localdate()
        resultat = DunningResult()
        candidats = dossiers if dossiers is not None else self.candidats()

        def traiter(dossier: DossierScolarite) -> None:
            evaluation, _ = self.scorer.evaluer(dossier, today)
            en_retard = dossier.echeances.filter(statut=Echeance.StatutChoices.EN_RETARD).exists()
            if evaluation.niveau in self.config.dunning_risk_levels:
                type_relance = Types.AUTOMATIQUE
            elif en_retard:
                type_relance = Types.RETARD
            else:
                resultat.skipped += 1
                return
            relance = self.relancer(dossier, today, type_relance=type_relance)
            if relance is None:
                resultat.skipped += 1
            elif relance.statut == Relance.StatutChoices.ECHEC:
                resultat.failed_deliveries += 1
            else:
                resultat.sent += 1

        run_batch(candidats, traiter, label="Relances", result=resultat)
        journaliser(
            "DUNNING_PROCESSED",
            "RELANCE",
            today.isoformat(),
            payload={k: v for k, v in resultat.as_dict().items() if k != "error_details"},
        )
        return resultat

    def rappeler_echeances_proches(self, today: Optional[date] = None) -> DunningResult:
        """Rappel unique pour chaque échéance à venir dans la fenêtre configurée."""
        today = today or timezone.localdate()
        limite = today + timedelta(days=self.config.upcoming_reminder_days)
        resultat = DunningResult()
        echeances = (
            Echeance.objects.filter(
                statut=Echeance.StatutChoices.A_VENIR,
                reglement__isnull=True,
                date_echeance__gte=today,
                date_echeance__lte=limite,
                dossier__statut_dossier=DossierScolarite.StatutDossierChoices.EN_COURS,
            )
            .exclude(relances__type_relance=Types.ECHEANCE_PROCHE)
            .select_related("dossier__eleve")
            .order_by("date_echeance", "pk")
        )

        def rappeler(echeance: Echeance) -> None:
            relance = Relance.objects.create(
                dossier=echeance.dossier,
                echeance=echeance,
                type_relance=Types.ECHEANCE_PROCHE,
                niveau_relance=1,
                montant_du=echeance.montant,
                message=f"Échéance de {echeance.montant} € le {echeance.date_echeance:%d/%m/%Y}",
                date_envoi=today,
            )
            if self._envoyer(relance, lambda: notifier_echeance_proche(echeance)):
                resultat.sent += 1
            else:
                resultat.failed_deliveries += 1

        run_batch(echeances, rappeler, label="Rappels d'échéance", result=resultat)
        journaliser(
            "UPCOMING_REMINDERS_SENT",
            "ECHEANCE",
            today.isoformat(),
            payload={k: v for k, v in resultat.as_dict().items() if k != "error_details"},
        )
        return resultat
