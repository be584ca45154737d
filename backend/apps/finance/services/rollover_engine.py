"""
Passage d'année : clôture des diplômés et promotion avec report de l'impayé.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import QuerySet

from apps.academic.models import Eleve
from apps.finance.exceptions import RolloverError
from apps.finance.models import Anomalie, DossierScolarite
from audit.models import journaliser

from .anomaly_detector import AnomalyDetector
from .batch import BatchResult, run_batch
from .config import LedgerConfig
from .ledger_calculator import LedgerBalance, LedgerCalculator

logger = logging.getLogger(__name__)

_ANNEE_SCOLAIRE = re.compile(r"^(\d{4})_(\d{4})$")

Statuts = DossierScolarite.StatutDossierChoices


def annee_suivante_de(annee_scolaire: str) -> str:
    """« 2025_2026 » -> « 2026_2027 »."""
    match = _ANNEE_SCOLAIRE.match(annee_scolaire or "")
    if not match:
        raise ValidationError(f"Année scolaire invalide: {annee_scolaire!r}")
    return f"{int(match.group(1)) + 1}_{int(match.group(2)) + 1}"


class RolloverEngine:
    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig.from_settings()
        self.calculator = LedgerCalculator(self.config)
        self.detector = AnomalyDetector(self.config)

    def cloturer_dossier(
        self,
        dossier: DossierScolarite,
        statut: str = Statuts.CLOTURE,
        motif: str = "",
        signaler_solde: bool = True,
    ) -> LedgerBalance:
        """
        Clôture (ou résilie) un dossier actif. Les échéances impayées sont annulées
        par le signal du dossier ; un reste à payer significatif ouvre une anomalie.
        """
        if statut not in (Statuts.CLOTURE, Statuts.RESILIE):
            raise ValidationError(f"Statut de clôture invalide: {statut}")
        if not dossier.est_actif:
            raise RolloverError(f"Le dossier {dossier.pk} n'est plus actif ({dossier.statut_dossier}).")

        dossier.statut_dossier = statut
        if motif:
            dossier.commentaire = f"{dossier.commentaire}\n{motif}".strip()
        dossier.save(update_fields=["statut_dossier", "commentaire", "updated_at"])
        solde = self.calculator.rafraichir(dossier)

        if signaler_solde and solde.balance > self.config.closing_balance_alert:
            self.detector.signaler(
                Anomalie.TypeChoices.SOLDE_IMPORTANT,
                f"Dossier {dossier.annee_scolaire} clôturé avec un reste à payer de {solde.balance}.",
                severite=Anomalie.SeveriteChoices.ALERTE,
                dossier=dossier,
                details={"solde": str(solde.balance), "statut_dossier": statut},
                action_proposee="Relancer l'élève pour le solde restant.",
            )
        return solde

    def desinscrire(self, eleve: Eleve, motif: str = "Désinscription") -> int:
        """Résilie les dossiers actifs de l'élève. Retourne le nombre de dossiers résiliés."""
        with transaction.atomic():
            dossiers = list(eleve.dossiers.filter(statut_dossier=Statuts.EN_COURS))
            for dossier in dossiers:
                self.cloturer_dossier(dossier, statut=Statuts.RESILIE, motif=motif)
            eleve.statut_inscription = Eleve.StatutInscriptionChoices.DESINSCRIT
            eleve.save(update_fields=["statut_inscription", "updated_at"])
        journaliser("STUDENT_DISENROLLED", "ELEVE", eleve.pk, payload={"dossiers_resilies": len(dossiers)})
        return len(dossiers)

    # Candidats

    @staticmethod
    def candidats_diplomes(annee_courante: str) -> QuerySet:
        return DossierScolarite.objects.filter(
            annee_scolaire=annee_courante,
            statut_dossier=Statuts.EN_COURS,
            niveau__est_terminale=True,
        ).select_related("eleve", "niveau")

    @staticmethod
    def candidats_promotion(annee_courante: str) -> QuerySet:
        return DossierScolarite.objects.filter(
            annee_scolaire=annee_courante,
            statut_dossier=Statuts.EN_COURS,
            niveau__est_terminale=False,
        ).select_related("eleve", "niveau")

    # Traitements de masse

    def cloturer_diplomes(self, annee_courante: str, dossiers: Optional[QuerySet] = None) -> BatchResult:
        """Dossiers de dernière année : clôture et élève marqué diplômé."""
        annee_suivante_de(annee_courante)
        candidats = dossiers if dossiers is not None else self.candidats_diplomes(annee_courante)

        def diplomer(dossier: DossierScolarite) -> None:
            self.cloturer_dossier(dossier, motif=f"Diplômé ({annee_courante})")
            eleve = dossier.eleve
            eleve.statut_inscription = Eleve.StatutInscriptionChoices.DIPLOME
            eleve.save(update_fields=["statut_inscription", "updated_at"])

        resultat = run_batch(candidats.order_by("pk"), diplomer, label="Clôture des diplômés")
        journaliser(
            "ROLLOVER_GRADUATION",
            "DOSSIER_SCOLARITE",
            annee_courante,
            payload={k: v for k, v in resultat.as_dict().items() if k != "error_details"},
        )
        return resultat

    def promouvoir(
        self,
        annee_courante: str,
        annee_suivante: Optional[str] = None,
        dossiers: Optional[QuerySet] = None,
    ) -> BatchResult:
        """
        Clôture chaque dossier intermédiaire et ouvre celui de l'année suivante
        au niveau supérieur, avec le reste à payer reporté en impayé antérieur.
        """
        annee_suivante = annee_suivante or annee_suivante_de(annee_courante)
        if annee_suivante == annee_courante or not _ANNEE_SCOLAIRE.match(annee_suivante):
            raise ValidationError(f"Année suivante invalide: {annee_suivante!r}")
        candidats = dossiers if dossiers is not None else self.candidats_promotion(annee_courante)

        def promouvoir_dossier(dossier: DossierScolarite) -> DossierScolarite:
            niveau_suivant = dossier.niveau.niveau_suivant()
            if niveau_suivant is None:
                raise RolloverError(f"Aucun niveau après {dossier.niveau.libelle} pour le dossier {dossier.pk}.")
            if DossierScolarite.objects.filter(eleve=dossier.eleve, annee_scolaire=annee_suivante).exists():
                raise RolloverError(f"{dossier.eleve.email} a déjà un dossier {annee_suivante}.")

            solde = self.cloturer_dossier(
                dossier,
                motif=f"Passage en {niveau_suivant.libelle} ({annee_suivante})",
                signaler_solde=False,
            )
            impaye = max(Decimal("0"), solde.balance)
            nouveau = DossierScolarite(
                eleve=dossier.eleve,
                niveau=niveau_suivant,
                annee_scolaire=annee_suivante,
                tarif_scolarite=self.config.next_tariff(niveau_suivant.libelle),
                impaye_anterieur=impaye,
                commentaire=(
                    f"Passage de {dossier.niveau.libelle} ({annee_courante}) à {niveau_suivant.libelle}. "
                    f"Impayé reporté: {impaye}"
                ),
            )
            nouveau.full_clean()
            nouveau.save()
            return nouveau

        resultat = run_batch(candidats.order_by("pk"), promouvoir_dossier, label="Promotion des dossiers")
        journaliser(
            "ROLLOVER_PROMOTION",
            "DOSSIER_SCOLARITE",
            annee_courante,
            payload={
                "annee_suivante": annee_suivante,
                **{k: v for k, v in resultat.as_dict().items() if k != "error_details"},
            },
        )
        return resultat
