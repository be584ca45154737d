"""
Détection des anomalies : doublons d'élèves sur la population, incohérences financières par dossier.

Le détecteur ne fait qu'ouvrir des anomalies ; leur résolution appartient aux opérateurs.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from itertools import combinations
from typing import Any, Dict, List, Optional, Set, Tuple

from django.db.models import QuerySet

from apps.academic.models import Eleve
from apps.finance.models import Anomalie, DossierScolarite, Reglement

from .batch import BatchResult, run_batch
from .config import LedgerConfig
from .csv_import import canoniser
from .ledger_calculator import LedgerCalculator

logger = logging.getLogger(__name__)

Types = Anomalie.TypeChoices
Severites = Anomalie.SeveriteChoices

# Poids des signaux d'identité pour le score de correspondance.
POIDS_DOUBLON: Dict[str, int] = {
    "immatriculation": 50,
    "telephone": 30,
    "nom_prenom": 20,
}


def normaliser_telephone(telephone: Optional[str]) -> str:
    """Garde les 9 derniers chiffres : « +33 6 12 34 56 78 » et « 06.12.34.56.78 » coïncident."""
    chiffres = re.sub(r"\D", "", telephone or "")
    return chiffres[-9:] if len(chiffres) >= 9 else ""


@dataclass
class DuplicateScanResult(BatchResult):
    detected: int = 0

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data["detected"] = self.detected
        return data


@dataclass(frozen=True)
class PaireSuspecte:
    eleve_a: int
    eleve_b: int
    criteres: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def cle(self) -> str:
        return f"doublon:{self.eleve_a}:{self.eleve_b}"

    @property
    def score(self) -> int:
        return min(100, sum(POIDS_DOUBLON[c] for c in self.criteres))


class AnomalyDetector:
    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig.from_settings()
        self.calculator = LedgerCalculator(self.config)

    def signaler(
        self,
        type_anomalie: str,
        description: str,
        severite: str = Severites.ALERTE,
        dossier: Optional[DossierScolarite] = None,
        eleve: Optional[Eleve] = None,
        details: Optional[Dict[str, Any]] = None,
        action_proposee: str = "",
    ) -> Tuple[Anomalie, bool]:
        """Ouvre une anomalie, sauf si la même est déjà ouverte pour ce dossier/élève."""
        existante = Anomalie.objects.filter(
            type_anomalie=type_anomalie,
            statut=Anomalie.StatutChoices.OUVERTE,
            dossier=dossier,
            eleve=eleve if eleve is not None else (dossier.eleve if dossier is not None else None),
        ).first()
        if existante is not None:
            return existante, False
        anomalie = Anomalie.objects.create(
            type_anomalie=type_anomalie,
            severite=severite,
            description=description,
            details=details or {},
            action_proposee=action_proposee,
            dossier=dossier,
            eleve=eleve if eleve is not None else (dossier.eleve if dossier is not None else None),
        )
        logger.info("Anomalie %s ouverte (dossier=%s)", type_anomalie, getattr(dossier, "pk", None))
        return anomalie, True

    # Doublons d'élèves

    def paires_suspectes(self, eleves: Optional[QuerySet] = None) -> List[PaireSuspecte]:
        if eleves is None:
            eleves = Eleve.objects.all()
        groupes: Dict[Tuple[str, str], Set[int]] = defaultdict(set)
        for eleve_id, nom, prenom, telephone, immatriculation in eleves.values_list(
            "pk", "nom", "prenom", "telephone", "immatriculation"
        ):
            tel = normaliser_telephone(telephone)
            if tel:
                groupes[("telephone", tel)].add(eleve_id)
            identite = canoniser(nom) + "|" + canoniser(prenom)
            if canoniser(nom) and canoniser(prenom):
                groupes[("nom_prenom", identite)].add(eleve_id)
            if immatriculation:
                groupes[("immatriculation", canoniser(immatriculation))].add(eleve_id)

        criteres_par_paire: Dict[Tuple[int, int], Set[str]] = defaultdict(set)
        for (critere, _valeur), ids in groupes.items():
            for a, b in combinations(sorted(ids), 2):
                criteres_par_paire[(a, b)].add(critere)

        return [
            PaireSuspecte(eleve_a=a, eleve_b=b, criteres=tuple(sorted(criteres)))
            for (a, b), criteres in sorted(criteres_par_paire.items())
        ]

    def detecter_doublons_eleves(self, eleves: Optional[QuerySet] = None) -> DuplicateScanResult:
        """
        Ouvre une anomalie ``doublon_eleve`` par paire suspecte.

        Une paire déjà signalée (ouverte, résolue ou ignorée) n'est pas rouverte.
        """
        resultat = DuplicateScanResult()

        def traiter(paire: PaireSuspecte) -> None:
            if Anomalie.objects.filter(type_anomalie=Types.DOUBLON_ELEVE, details__cle=paire.cle).exists():
                return
            eleve_a = Eleve.objects.get(pk=paire.eleve_a)
            eleve_b = Eleve.objects.get(pk=paire.eleve_b)
            Anomalie.objects.create(
                type_anomalie=Types.DOUBLON_ELEVE,
                severite=Severites.CRITIQUE if paire.score >= 50 else Severites.ALERTE,
                description=f"Doublon probable: {eleve_a.email} et {eleve_b.email}",
                details={
                    "cle": paire.cle,
                    "eleves": [paire.eleve_a, paire.eleve_b],
                    "criteres": list(paire.criteres),
                    "score": paire.score,
                },
                action_proposee="Vérifier l'identité des deux fiches et fusionner les dossiers si nécessaire.",
                eleve=eleve_a,
            )
            resultat.detected += 1

        run_batch(
            self.paires_suspectes(eleves),
            traiter,
            label="Détection des doublons élèves",
            reference=lambda paire: paire.cle,
            result=resultat,
        )
        return resultat

    # Incohérences financières

    def scan_dossier(self, dossier: DossierScolarite) -> List[Anomalie]:
        """Créditeur, solde important, règlement aberrant. Retourne les anomalies créées."""
        solde = self.calculator.calculer(dossier)
        tarif = solde.tariff
        creees: List[Anomalie] = []

        def ouvrir(*args: Any, **kwargs: Any) -> None:
            anomalie, created = self.signaler(*args, dossier=dossier, **kwargs)
            if created:
                creees.append(anomalie)

        if solde.balance < self.config.creditor_threshold:
            ouvrir(
                Types.ELEVE_CREDITEUR,
                f"Trop-perçu de {-solde.balance} sur le dossier {dossier.annee_scolaire}.",
                severite=Severites.ALERTE,
                details={"solde": str(solde.balance), "total_verse": str(solde.total_paid)},
                action_proposee="Vérifier les règlements et prévoir un remboursement ou un report.",
            )
        if tarif > 0 and solde.balance > tarif * self.config.important_balance_ratio:
            ouvrir(
                Types.SOLDE_IMPORTANT,
                f"Reste à payer de {solde.balance} sur un tarif de {tarif}.",
                severite=Severites.INFO,
                details={"solde": str(solde.balance), "tarif": str(tarif)},
                action_proposee="Proposer un échéancier ou relancer la famille.",
            )
        if tarif > 0:
            seuil = tarif * self.config.aberrant_payment_ratio
            aberrants = Reglement.objects.filter(
                dossier=dossier,
                statut=Reglement.StatutChoices.VALIDE,
                montant__gt=seuil,
            ).values_list("pk", "montant")
            if aberrants:
                ouvrir(
                    Types.MONTANT_ABERRANT,
                    f"Règlement supérieur à {self.config.aberrant_payment_ratio}x le tarif.",
                    severite=Severites.CRITIQUE,
                    details={"reglements": [{"id": pk, "montant": str(m)} for pk, m in aberrants]},
                    action_proposee="Contrôler la saisie du montant.",
                )
        return creees

    def scan_population(self, dossiers: Optional[QuerySet] = None) -> DuplicateScanResult:
        if dossiers is None:
            dossiers = DossierScolarite.objects.filter(
                statut_dossier=DossierScolarite.StatutDossierChoices.EN_COURS
            )
        resultat = DuplicateScanResult()

        def traiter(dossier: DossierScolarite) -> None:
            resultat.detected += len(self.scan_dossier(dossier))

        return run_batch(
            dossiers.select_related("eleve").order_by("pk"),
            traiter,
            label="Analyse financière des dossiers",
            result=resultat,
        )
