from __future__ import annotations

import logging
from typing import Optional

from django.conf import settings
from django.core.mail import send_mail

from apps.finance.models import Echeance, Reglement, Relance, RisqueFinancier

from .config import LedgerConfig

logger = logging.getLogger(__name__)


def notifier_reglement_valide(reglement: Reglement) -> int:
    """Accusé de réception envoyé à l'élève quand un règlement est validé."""
    eleve = reglement.dossier.eleve
    if not eleve.email:
        return 0
    return send_mail(
        subject="Confirmation de votre règlement",
        message=(
            f"Bonjour {eleve.nom_complet},\n\n"
            f"Nous confirmons la réception de votre règlement de {reglement.montant} € "
            f"du {reglement.date_reglement:%d/%m/%Y} (année {reglement.dossier.annee_scolaire}).\n"
        ),
        from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
        recipient_list=[eleve.email],
        fail_silently=True,
    )


def notifier_risque(evaluation: RisqueFinancier, config: Optional[LedgerConfig] = None) -> int:
    """Alerte le service financier pour les niveaux de risque configurés."""
    config = config or LedgerConfig.from_settings()
    if evaluation.niveau not in config.notify_on_risk_levels or not config.finance_notification_email:
        return 0
    dossier = evaluation.dossier
    logger.info("Alerte risque %s envoyée pour le dossier %s", evaluation.niveau, dossier.pk)
    return send_mail(
        subject=f"Risque {evaluation.get_niveau_display()} - {dossier.eleve.nom_complet}",
        message=(
            f"Score {evaluation.score}/100 pour le dossier {dossier.annee_scolaire} "
            f"de {dossier.eleve.email}.\n\n{evaluation.recommandation}"
        ),
        from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
        recipient_list=[config.finance_notification_email],
        fail_silently=True,
    )


SUJETS_RELANCE = {
    1: "Solde de scolarité à régulariser",
    2: "Relance : solde de scolarité impayé",
    3: "Dernière relance avant mise en demeure",
}


def notifier_relance(relance: Relance) -> int:
    """Envoie le message de la relance à l'élève ; 0 si rien n'est parti."""
    eleve = relance.dossier.eleve
    if not eleve.email:
        return 0
    return send_mail(
        subject=SUJETS_RELANCE.get(relance.niveau_relance, SUJETS_RELANCE[1]),
        message=relance.message,
        from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
        recipient_list=[eleve.email],
        fail_silently=True,
    )


def notifier_echeance_proche(echeance: Echeance) -> int:
    eleve = echeance.dossier.eleve
    if not eleve.email:
        return 0
    return send_mail(
        subject="Rappel : prochaine échéance de scolarité",
        message=(
            f"Bonjour {eleve.nom_complet},\n\n"
            f"Une échéance de {echeance.montant} € arrive le {echeance.date_echeance:%d/%m/%Y} "
            f"(année {echeance.dossier.annee_scolaire}).\n"
        ),
        from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
        recipient_list=[eleve.email],
        fail_silently=True,
    )
