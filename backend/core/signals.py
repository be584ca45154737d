from __future__ import annotations

import logging

from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from apps.finance.models import DossierScolarite, Reglement
from apps.finance.services.config import LedgerConfig
from apps.finance.services.installment_scheduler import InstallmentScheduler
from apps.finance.services.ledger_calculator import LedgerCalculator
from apps.finance.services.notifications import notifier_reglement_valide
from apps.finance.services.status_synchronizer import StatusSynchronizer
from apps.finance.services.tasks import submit_best_effort

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=Reglement)
def memoriser_statut_reglement(sender, instance: Reglement, **kwargs) -> None:
    """Conserve le statut précédent pour détecter validation et invalidation."""
    instance._ancien_statut = None
    if instance.pk:
        instance._ancien_statut = (
            Reglement.objects.filter(pk=instance.pk).values_list("statut", flat=True).first()
        )


@receiver(post_save, sender=Reglement)
def synchroniser_apres_reglement(sender, instance: Reglement, created: bool, **kwargs) -> None:
    """
    Après toute écriture d'un règlement : synchronise les échéances liées,
    puis recalcule entièrement le solde du dossier.
    """
    if kwargs.get("raw"):
        return
    config = LedgerConfig.from_settings()
    ancien_statut = getattr(instance, "_ancien_statut", None)
    StatusSynchronizer(config).on_reglement_change(instance, ancien_statut)
    LedgerCalculator(config).rafraichir(instance.dossier_id)

    if (
        instance.est_valide
        and ancien_statut != Reglement.StatutChoices.VALIDE
        and not getattr(instance, "_sans_notification", False)
    ):
        submit_best_effort("notification règlement", notifier_reglement_valide, instance)


@receiver(pre_save, sender=DossierScolarite)
def memoriser_etat_dossier(sender, instance: DossierScolarite, **kwargs) -> None:
    instance._etat_precedent = None
    if instance.pk:
        instance._etat_precedent = (
            DossierScolarite.objects.filter(pk=instance.pk)
            .values("statut_dossier", "tarif_scolarite", "impaye_anterieur")
            .first()
        )


@receiver(post_save, sender=DossierScolarite)
def synchroniser_apres_dossier(sender, instance: DossierScolarite, created: bool, **kwargs) -> None:
    """
    Clôture ou résiliation : annule les échéances impayées.
    Modification du tarif ou de l'impayé : répare l'échéancier existant.
    """
    if kwargs.get("raw"):
        return
    config = LedgerConfig.from_settings()
    precedent = getattr(instance, "_etat_precedent", None)

    if precedent and not created:
        ferme = precedent["statut_dossier"] == DossierScolarite.StatutDossierChoices.EN_COURS and not instance.est_actif
        if ferme:
            StatusSynchronizer(config).annuler_echeancier(instance)
        elif instance.est_actif and (
            precedent["tarif_scolarite"] != instance.tarif_scolarite
            or precedent["impaye_anterieur"] != instance.impaye_anterieur
        ):
            submit_best_effort("réparation échéancier", InstallmentScheduler(config).reparer, instance)

    LedgerCalculator(config).rafraichir(instance)
