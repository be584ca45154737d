"""
Génération et réparation de l'échéancier d'un dossier.

Chaque règlement valide devient une échéance historique ; le reste dû est
réparti en échéances mensuelles dont la dernière absorbe l'arrondi.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from django.db import transaction
from django.db.models import QuerySet, Sum
from django.utils import timezone

from apps.finance.exceptions import AlreadyScheduled, InvalidTariff, ScheduleConsistencyError
from apps.finance.models import DossierScolarite, Echeance, Reglement

from .batch import BatchResult, run_batch
from .config import InstallmentCountPolicy, LedgerConfig, default_installment_count
from .ledger_calculator import LedgerCalculator, arrondir

logger = logging.getLogger(__name__)


def ajouter_mois(depart: date, mois: int, jour: int) -> date:
    index = depart.month - 1 + mois
    return date(depart.year + index // 12, index % 12 + 1, jour)


@dataclass(frozen=True)
class ScheduleResult:
    dossier_id: int
    installments_created: int
    historical: int
    future: int
    cancelled: int
    remaining: Decimal

    def as_dict(self) -> Dict[str, Any]:
        return {
            "dossier_id": self.dossier_id,
            "installments_created": self.installments_created,
            "historical": self.historical,
            "future": self.future,
            "cancelled": self.cancelled,
            "remaining": str(self.remaining),
        }


class InstallmentScheduler:
    """Construit l'échéancier : historique des règlements + reste dû étalé."""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        count_policy: InstallmentCountPolicy = default_installment_count,
    ):
        self.config = config or LedgerConfig.from_settings()
        self.count_policy = count_policy
        self.calculator = LedgerCalculator(self.config)

    @staticmethod
    def echeancier_actif(dossier: DossierScolarite) -> QuerySet:
        return Echeance.objects.filter(dossier=dossier).exclude(statut=Echeance.StatutChoices.ANNULEE)

    def total_planifie(self, dossier: DossierScolarite) -> Decimal:
        total = self.echeancier_actif(dossier).aggregate(total=Sum("montant"))["total"]
        return arrondir(total or Decimal("0"))

    def generer(
        self,
        dossier: Union[DossierScolarite, int],
        force: bool = False,
        today: Optional[date] = None,
    ) -> ScheduleResult:
        """
        Génère l'échéancier du dossier.

        Raises:
            InvalidTariff: tarif nul ou négatif
            AlreadyScheduled: un échéancier actif existe et ``force`` est faux
            ScheduleConsistencyError: le total généré ne couvre pas tarif + impayé
        """
        if not isinstance(dossier, DossierScolarite):
            dossier = DossierScolarite.objects.get(pk=dossier)
        today = today or timezone.localdate()

        if (dossier.tarif_scolarite or Decimal("0")) <= 0:
            raise InvalidTariff(f"Tarif invalide ({dossier.tarif_scolarite}) pour le dossier {dossier.pk}.")

        with transaction.atomic():
            existantes = self.echeancier_actif(dossier)
            cancelled = 0
            if existantes.exists():
                if not force:
                    raise AlreadyScheduled(f"Le dossier {dossier.pk} a déjà un échéancier.")
                cancelled = existantes.update(
                    statut=Echeance.StatutChoices.ANNULEE,
                    reglement=None,
                    commentaire="Remplacée par régénération",
                    updated_at=timezone.now(),
                )

            reglements = list(
                Reglement.objects.filter(
                    dossier=dossier,
                    statut=Reglement.StatutChoices.VALIDE,
                ).order_by("date_reglement", "id")
            )
            a_creer: List[Echeance] = []
            total_historique = Decimal("0")
            for reglement in reglements:
                total_historique += reglement.montant
                a_creer.append(
                    Echeance(
                        dossier=dossier,
                        montant=reglement.montant,
                        date_echeance=reglement.date_reglement,
                        statut=(
                            Echeance.StatutChoices.PAYEE
                            if reglement.date_reglement <= today
                            else Echeance.StatutChoices.A_VENIR
                        ),
                        origine=Echeance.OrigineChoices.HISTORIQUE,
                        reglement=reglement,
                    )
                )

            total_du = arrondir(dossier.total_du)
            reste = arrondir(total_du - total_historique)
            futures = self._echeances_futures(dossier, reste, reglements, today)
            a_creer.extend(futures)

            Echeance.objects.bulk_create(a_creer)

            if reste > self.config.epsilon:
                total_genere = arrondir(total_historique + sum((e.montant for e in futures), Decimal("0")))
                if abs(total_genere - total_du) > self.config.epsilon:
                    raise ScheduleConsistencyError(
                        f"Échéancier du dossier {dossier.pk}: {total_genere} généré pour {total_du} dû.",
                        dossier_id=dossier.pk,
                        total_genere=str(total_genere),
                        total_du=str(total_du),
                    )

            self.calculator.rafraichir(dossier)

        logger.info(
            "Échéancier dossier %s: %s historiques, %s futures, %s annulées",
            dossier.pk,
            len(reglements),
            len(futures),
            cancelled,
        )
        return ScheduleResult(
            dossier_id=dossier.pk,
            installments_created=len(a_creer),
            historical=len(reglements),
            future=len(futures),
            cancelled=cancelled,
            remaining=reste,
        )

    def _echeances_futures(
        self,
        dossier: DossierScolarite,
        reste: Decimal,
        reglements: List[Reglement],
        today: date,
    ) -> List[Echeance]:
        if reste <= self.config.epsilon:
            return []

        nombre = self.count_policy(reste, self.config)
        if nombre < 1:
            raise ScheduleConsistencyError(
                f"Politique d'échéancier invalide: {nombre} échéance(s) pour {reste}.",
                dossier_id=dossier.pk,
            )
        montant = arrondir(reste / nombre)
        dernier = arrondir(reste - montant * (nombre - 1))

        ancre = today
        if reglements:
            ancre = max(today, max(r.date_reglement for r in reglements))

        return [
            Echeance(
                dossier=dossier,
                montant=dernier if i == nombre - 1 else montant,
                date_echeance=ajouter_mois(ancre, i + 1, self.config.installment_day),
                statut=Echeance.StatutChoices.A_VENIR,
                origine=Echeance.OrigineChoices.PLANIFIEE,
            )
            for i in range(nombre)
        ]

    def reparer(self, dossier: DossierScolarite, today: Optional[date] = None) -> Optional[ScheduleResult]:
        """Régénère un échéancier existant dont le total ne correspond plus à tarif + impayé."""
        if not self.echeancier_actif(dossier).exists() or dossier.tarif_scolarite <= 0:
            return None
        if abs(self.total_planifie(dossier) - arrondir(dossier.total_du)) <= self.config.epsilon:
            return None
        logger.info("Échéancier du dossier %s désynchronisé, régénération", dossier.pk)
        return self.generer(dossier, force=True, today=today)

    def generer_lot(
        self,
        dossiers: Optional[QuerySet] = None,
        force: bool = False,
        today: Optional[date] = None,
    ) -> BatchResult:
        """
        Génère les échéanciers manquants (ou tous si ``force``) des dossiers actifs.

        Les dossiers à tarif nul, et ceux déjà planifiés hors ``force``,
        ne sont pas candidats.
        """
        if dossiers is None:
            dossiers = DossierScolarite.objects.filter(
                statut_dossier=DossierScolarite.StatutDossierChoices.EN_COURS
            )
        candidats = dossiers.filter(tarif_scolarite__gt=0)
        if not force:
            candidats = candidats.exclude(
                echeances__statut__in=[
                    Echeance.StatutChoices.A_VENIR,
                    Echeance.StatutChoices.PAYEE,
                    Echeance.StatutChoices.EN_RETARD,
                ]
            )
        return run_batch(
            candidats.distinct().order_by("pk"),
            lambda dossier: self.generer(dossier, force=force, today=today),
            label="Génération des échéanciers",
        )
