"""
Calcul du solde d'un dossier de scolarité.

solde = tarif + impayé antérieur - somme des règlements valides
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Union

from django.db.models import Count, Max, Sum

from apps.finance.models import DossierScolarite, Echeance, Reglement

from .config import CENT, LedgerConfig

logger = logging.getLogger(__name__)


def arrondir(montant: Decimal) -> Decimal:
    return Decimal(montant).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LedgerBalance:
    dossier_id: int
    tariff: Decimal
    arrears: Decimal
    total_paid: Decimal
    balance: Decimal
    payment_count: int
    last_payment_date: Optional[date]
    status: str

    @property
    def total_due(self) -> Decimal:
        return self.tariff + self.arrears

    @property
    def difference(self) -> Decimal:
        """Écart tarif - versements, sans l'impayé reporté."""
        return self.tariff - self.total_paid

    def as_dict(self) -> Dict[str, Any]:
        return {
            "dossier_id": self.dossier_id,
            "tariff": self.tariff,
            "arrears": self.arrears,
            "total_due": self.total_due,
            "total_paid": self.total_paid,
            "balance": self.balance,
            "difference": self.difference,
            "payment_count": self.payment_count,
            "last_payment_date": self.last_payment_date,
            "status": self.status,
        }


class LedgerCalculator:
    """Calcule le solde autoritatif d'un dossier à partir de ses règlements valides."""

    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig.from_settings()

    def calculer(self, dossier: Union[DossierScolarite, int]) -> LedgerBalance:
        """Lecture seule : aucun effet de bord, appelable autant de fois que nécessaire."""
        if not isinstance(dossier, DossierScolarite):
            dossier = DossierScolarite.objects.get(pk=dossier)

        aggregats = Reglement.objects.filter(
            dossier_id=dossier.pk,
            statut=Reglement.StatutChoices.VALIDE,
        ).aggregate(
            total=Sum("montant"),
            nombre=Count("id"),
            dernier=Max("date_reglement"),
        )
        tarif = arrondir(dossier.tarif_scolarite or Decimal("0"))
        impaye = arrondir(dossier.impaye_anterieur or Decimal("0"))
        total_verse = arrondir(aggregats["total"] or Decimal("0"))
        solde = arrondir(tarif + impaye - total_verse)

        has_overdue = False
        if solde > self.config.epsilon:
            has_overdue = Echeance.objects.filter(
                dossier_id=dossier.pk,
                statut=Echeance.StatutChoices.EN_RETARD,
            ).exists()

        return LedgerBalance(
            dossier_id=dossier.pk,
            tariff=tarif,
            arrears=impaye,
            total_paid=total_verse,
            balance=solde,
            payment_count=aggregats["nombre"] or 0,
            last_payment_date=aggregats["dernier"],
            status=self.classer(solde, has_overdue),
        )

    def classer(self, solde: Decimal, has_overdue: bool = False) -> str:
        statuts = DossierScolarite.StatutPaiementChoices
        if solde < self.config.creditor_threshold:
            return statuts.CREDITEUR
        if solde <= self.config.epsilon:
            return statuts.A_JOUR
        return statuts.EN_RETARD if has_overdue else statuts.EN_COURS

    def rafraichir(self, dossier: Union[DossierScolarite, int]) -> LedgerBalance:
        """
        Recalcule le solde et met à jour le cache du dossier.

        Utilise update() pour ne pas redéclencher les signaux du dossier.
        """
        resultat = self.calculer(dossier)
        DossierScolarite.objects.filter(pk=resultat.dossier_id).update(
            solde=resultat.balance,
            statut_paiement=resultat.status,
        )
        if isinstance(dossier, DossierScolarite):
            dossier.solde = resultat.balance
            dossier.statut_paiement = resultat.status
        logger.debug("Solde dossier %s: %s (%s)", resultat.dossier_id, resultat.balance, resultat.status)
        return resultat
