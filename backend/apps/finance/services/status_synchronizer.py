"""
Synchronisation du statut des échéances avec les règlements et la date du jour.

    a_venir   -> payee      règlement lié validé, ou règlement correspondant trouvé après échéance
    a_venir   -> en_retard  échéance dépassée sans règlement
    en_retard -> payee      règlement tardif
    *         -> annulee    clôture ou résiliation du dossier
    payee     -> a_venir / en_retard   le règlement lié n'est plus valide
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Set

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from apps.finance.models import DossierScolarite, Echeance, Reglement

from .config import LedgerConfig
from .ledger_calculator import LedgerCalculator

logger = logging.getLogger(__name__)

STATUTS_IMPAYES = (Echeance.StatutChoices.A_VENIR, Echeance.StatutChoices.EN_RETARD)


@dataclass
class SweepResult:
    installments_marked_overdue: int = 0
    installments_marked_paid: int = 0
    installments_reverted: int = 0
    dossiers_changed: Set[int] = field(default_factory=set)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "installments_marked_overdue": self.installments_marked_overdue,
            "installments_marked_paid": self.installments_marked_paid,
            "installments_reverted": self.installments_reverted,
            "dossiers_changed": len(self.dossiers_changed),
        }


class StatusSynchronizer:
    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig.from_settings()
        self.calculator = LedgerCalculator(self.config)

    @staticmethod
    def statut_selon_date(echeance: Echeance, today: date) -> str:
        if echeance.date_echeance < today:
            return Echeance.StatutChoices.EN_RETARD
        return Echeance.StatutChoices.A_VENIR

    @staticmethod
    def _enregistrer(echeance: Echeance, **champs: Any) -> None:
        for nom, valeur in champs.items():
            setattr(echeance, nom, valeur)
        echeance.save(update_fields=[*champs.keys(), "updated_at"])

    # Écritures unitaires

    def marquer_payee(self, echeance: Echeance, reglement: Reglement) -> Echeance:
        """Solde manuellement une échéance par un règlement valide du même dossier."""
        if echeance.statut == Echeance.StatutChoices.ANNULEE:
            raise ValidationError("Impossible de solder une échéance annulée.")
        if reglement.dossier_id != echeance.dossier_id:
            raise ValidationError("Le règlement n'appartient pas au dossier de l'échéance.")
        if not reglement.est_valide:
            raise ValidationError("Seul un règlement validé peut solder une échéance.")
        with transaction.atomic():
            self._enregistrer(echeance, reglement=reglement, statut=Echeance.StatutChoices.PAYEE)
            self.calculator.rafraichir(echeance.dossier_id)
        return echeance

    def dissocier_reglement(self, reglement: Reglement, today: Optional[date] = None) -> int:
        """
        Le règlement n'est plus valide : ses échéances repassent à venir ou en retard.

        Returns:
            Nombre d'échéances rétablies
        """
        today = today or timezone.localdate()
        nombre = 0
        liees = Echeance.objects.filter(reglement=reglement).exclude(statut=Echeance.StatutChoices.ANNULEE)
        for echeance in liees:
            self._enregistrer(echeance, reglement=None, statut=self.statut_selon_date(echeance, today))
            nombre += 1
        if nombre:
            logger.info("Règlement %s invalidé: %s échéance(s) rétablie(s)", reglement.pk, nombre)
        return nombre

    def confirmer_reglement(self, reglement: Reglement, today: Optional[date] = None) -> int:
        """
        Le règlement vient d'être validé : ses échéances liées passent à payée.

        Sans échéance liée, la première échéance impayée du même montant est soldée.
        """
        today = today or timezone.localdate()
        liees = list(Echeance.objects.filter(reglement=reglement, statut__in=STATUTS_IMPAYES))
        if not liees and not Echeance.objects.filter(
            reglement=reglement, statut=Echeance.StatutChoices.PAYEE
        ).exists():
            candidate = (
                Echeance.objects.filter(
                    dossier_id=reglement.dossier_id,
                    statut__in=STATUTS_IMPAYES,
                    reglement__isnull=True,
                    montant__gte=reglement.montant - self.config.epsilon,
                    montant__lte=reglement.montant + self.config.epsilon,
                )
                .order_by("date_echeance", "id")
                .first()
            )
            if candidate is not None:
                self._enregistrer(candidate, reglement=reglement, statut=Echeance.StatutChoices.PAYEE)
                return 1
            return 0

        nombre = 0
        for echeance in liees:
            if echeance.origine == Echeance.OrigineChoices.HISTORIQUE and echeance.date_echeance > today:
                continue
            self._enregistrer(echeance, statut=Echeance.StatutChoices.PAYEE)
            nombre += 1
        return nombre

    def on_reglement_change(self, reglement: Reglement, ancien_statut: Optional[str]) -> None:
        valide = Reglement.StatutChoices.VALIDE
        if ancien_statut == valide and reglement.statut != valide:
            self.dissocier_reglement(reglement)
        elif reglement.statut == valide and ancien_statut != valide:
            self.confirmer_reglement(reglement)

    def annuler_echeancier(self, dossier: DossierScolarite, motif: str = "") -> int:
        """Annule les échéances impayées d'un dossier clôturé ; les payées restent en historique."""
        nombre = Echeance.objects.filter(dossier=dossier, statut__in=STATUTS_IMPAYES).update(
            statut=Echeance.StatutChoices.ANNULEE,
            commentaire=(motif or f"Dossier {dossier.get_statut_dossier_display().lower()}")[:255],
            updated_at=timezone.now(),
        )
        if nombre:
            logger.info("Dossier %s: %s échéance(s) annulée(s)", dossier.pk, nombre)
        return nombre

    # Balayage

    def balayer(self, today: Optional[date] = None, dossiers: Optional[QuerySet] = None) -> SweepResult:
        """
        Balaye les échéances des dossiers actifs. Idempotent : un second passage
        le même jour ne change rien et retourne des compteurs à zéro.
        """
        today = today or timezone.localdate()
        if dossiers is None:
            dossiers = DossierScolarite.objects.filter(
                statut_dossier=DossierScolarite.StatutDossierChoices.EN_COURS
            )
        dossier_ids = list(dossiers.values_list("pk", flat=True).order_by("pk"))

        resultat = SweepResult()
        for dossier_id in dossier_ids:
            with transaction.atomic():
                if self._balayer_dossier(dossier_id, today, resultat):
                    resultat.dossiers_changed.add(dossier_id)
                    self.calculator.rafraichir(dossier_id)

        logger.info(
            "Balayage des échéances: %s en retard, %s payées, %s rétablies sur %s dossier(s)",
            resultat.installments_marked_overdue,
            resultat.installments_marked_paid,
            resultat.installments_reverted,
            len(resultat.dossiers_changed),
        )
        return resultat

    def _reglements_libres(self, dossier_id: int) -> List[Reglement]:
        return list(
            Reglement.objects.filter(dossier_id=dossier_id, statut=Reglement.StatutChoices.VALIDE)
            .exclude(echeances__statut__in=[*STATUTS_IMPAYES, Echeance.StatutChoices.PAYEE])
            .order_by("date_reglement", "id")
        )

    def _prendre_correspondance(self, libres: List[Reglement], echeance: Echeance) -> Optional[Reglement]:
        for index, reglement in enumerate(libres):
            if abs(reglement.montant - echeance.montant) <= self.config.epsilon:
                return libres.pop(index)
        return None

    def _balayer_dossier(self, dossier_id: int, today: date, resultat: SweepResult) -> bool:
        echeances = (
            Echeance.objects.filter(dossier_id=dossier_id)
            .exclude(statut=Echeance.StatutChoices.ANNULEE)
            .select_related("reglement")
            .order_by("date_echeance", "id")
        )
        libres: Optional[List[Reglement]] = None
        change = False
        for echeance in echeances:
            reglement = echeance.reglement
            if reglement is not None:
                if not reglement.est_valide:
                    cible = self.statut_selon_date(echeance, today)
                    self._enregistrer(echeance, reglement=None, statut=cible)
                    resultat.installments_reverted += 1
                    if cible == Echeance.StatutChoices.EN_RETARD:
                        resultat.installments_marked_overdue += 1
                    change = True
                elif echeance.statut == Echeance.StatutChoices.EN_RETARD or (
                    echeance.statut == Echeance.StatutChoices.A_VENIR and echeance.date_echeance <= today
                ):
                    self._enregistrer(echeance, statut=Echeance.StatutChoices.PAYEE)
                    resultat.installments_marked_paid += 1
                    change = True
                continue

            if echeance.statut == Echeance.StatutChoices.PAYEE:
                # Payée sans règlement : le règlement a disparu.
                cible = self.statut_selon_date(echeance, today)
                self._enregistrer(echeance, statut=cible)
                resultat.installments_reverted += 1
                if cible == Echeance.StatutChoices.EN_RETARD:
                    resultat.installments_marked_overdue += 1
                change = True
                continue

            if echeance.date_echeance >= today:
                continue

            if libres is None:
                libres = self._reglements_libres(dossier_id)
            correspondance = self._prendre_correspondance(libres, echeance)
            if correspondance is not None:
                self._enregistrer(echeance, reglement=correspondance, statut=Echeance.StatutChoices.PAYEE)
                resultat.installments_marked_paid += 1
                change = True
            elif echeance.statut == Echeance.StatutChoices.A_VENIR:
                self._enregistrer(echeance, statut=Echeance.StatutChoices.EN_RETARD)
                resultat.installments_marked_overdue += 1
                change = True
        return change
