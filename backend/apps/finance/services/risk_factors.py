"""Facteurs de risque : variantes explicites avec un schéma fixe."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping


class RiskFactor(str, Enum):
    """Facteurs évalués par RiskScorer, dans leur ordre d'évaluation."""

    ECHEANCE_RETARD_30J = "echeance_retard_30j"
    ECHEANCES_RETARD_MULTIPLES = "echeances_retard_multiples"
    SOLDE_ELEVE = "solde_eleve"
    AUCUN_REGLEMENT = "aucun_reglement"
    DERNIER_REGLEMENT_ANCIEN = "dernier_reglement_ancien"
    IMPAYE_ANTERIEUR = "impaye_anterieur"
    REGLEMENTS_REFUSES = "reglements_refuses"
    RELANCES_SANS_EFFET = "relances_sans_effet"

    @property
    def libelle(self) -> str:
        return RISK_FACTOR_LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "RiskFactor":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError as exc:
            raise ValueError(f"Facteur de risque inconnu: {value!r}") from exc


RISK_FACTOR_LABELS: Dict[RiskFactor, str] = {
    RiskFactor.ECHEANCE_RETARD_30J: "Échéance en retard depuis plus de 30 jours",
    RiskFactor.ECHEANCES_RETARD_MULTIPLES: "Plusieurs échéances en retard",
    RiskFactor.SOLDE_ELEVE: "Reste à payer supérieur à 50% du tarif",
    RiskFactor.AUCUN_REGLEMENT: "Aucun règlement validé",
    RiskFactor.DERNIER_REGLEMENT_ANCIEN: "Dernier règlement ancien",
    RiskFactor.IMPAYE_ANTERIEUR: "Impayé reporté de l'année précédente",
    RiskFactor.REGLEMENTS_REFUSES: "Règlement(s) refusé(s)",
    RiskFactor.RELANCES_SANS_EFFET: "Relance de dernier niveau restée sans effet",
}

# Points par défaut, surchargeables via SCOLARITE_LEDGER["risk_weights"].
DEFAULT_RISK_WEIGHTS: Mapping[RiskFactor, int] = {
    RiskFactor.ECHEANCE_RETARD_30J: 30,
    RiskFactor.ECHEANCES_RETARD_MULTIPLES: 20,
    RiskFactor.SOLDE_ELEVE: 20,
    RiskFactor.AUCUN_REGLEMENT: 15,
    RiskFactor.DERNIER_REGLEMENT_ANCIEN: 10,
    RiskFactor.IMPAYE_ANTERIEUR: 10,
    RiskFactor.REGLEMENTS_REFUSES: 10,
    RiskFactor.RELANCES_SANS_EFFET: 10,
}


@dataclass(frozen=True)
class FactorHit:
    factor: RiskFactor
    points: int

    def as_dict(self) -> Dict[str, Any]:
        return {"facteur": self.factor.value, "libelle": self.factor.libelle, "points": self.points}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FactorHit":
        """Relit un facteur persisté ; refuse toute forme inattendue."""
        if not isinstance(data, Mapping) or "facteur" not in data or "points" not in data:
            raise ValueError(f"Facteur de risque mal formé: {data!r}")
        points = int(data["points"])
        if points < 0:
            raise ValueError(f"Points négatifs pour {data['facteur']}")
        return cls(factor=RiskFactor.parse(data["facteur"]), points=points)
