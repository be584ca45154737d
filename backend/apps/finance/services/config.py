"""
Configuration explicite du grand livre.

Les services reçoivent un ``LedgerConfig`` immuable en paramètre ; la valeur
par défaut est construite depuis ``settings.SCOLARITE_LEDGER``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .risk_factors import DEFAULT_RISK_WEIGHTS, RiskFactor

CENT = Decimal("0.01")


def _decimal(value: Any, key: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ImproperlyConfigured(f"SCOLARITE_LEDGER[{key!r}] doit être numérique: {value!r}") from exc


@dataclass(frozen=True)
class LedgerConfig:
    epsilon: Decimal = Decimal("0.01")
    creditor_threshold: Decimal = Decimal("-10")
    closing_balance_alert: Decimal = Decimal("10")
    # Politique d'échéancier
    installment_floor: Decimal = Decimal("500")
    installment_max_count: int = 10
    installment_day: int = 15
    # Score de risque
    risk_weights: Mapping[RiskFactor, int] = field(default_factory=lambda: dict(DEFAULT_RISK_WEIGHTS))
    risk_thresholds: Tuple[int, int, int] = (25, 50, 75)
    risk_overdue_days: int = 30
    risk_balance_ratio: Decimal = Decimal("0.5")
    risk_stale_payment_days: int = 60
    # Import
    current_school_year: str = "2025_2026"
    default_level_label: str = "1A"
    max_payment_columns: int = 13
    aberrant_payment_ratio: Decimal = Decimal("3")
    important_balance_ratio: Decimal = Decimal("0.5")
    # Passage d'année
    next_year_tariffs: Mapping[str, Decimal] = field(default_factory=dict)
    default_next_tariff: Decimal = Decimal("8500")
    # Notifications
    finance_notification_email: str = ""
    notify_on_risk_levels: Tuple[str, ...] = ("critique",)
    # Relances
    dunning_risk_levels: Tuple[str, ...] = ("eleve", "critique")
    dunning_cooldown_days: int = 7
    dunning_max_level: int = 3
    upcoming_reminder_days: int = 7

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.installment_floor <= 0:
            raise ImproperlyConfigured("installment_floor doit être strictement positif.")
        if self.installment_max_count < 1:
            raise ImproperlyConfigured("installment_max_count doit être >= 1.")
        if not 1 <= self.installment_day <= 28:
            raise ImproperlyConfigured("installment_day doit être compris entre 1 et 28.")
        if self.epsilon < 0:
            raise ImproperlyConfigured("epsilon ne peut pas être négatif.")
        for factor, points in self.risk_weights.items():
            if not isinstance(factor, RiskFactor):
                raise ImproperlyConfigured(f"Facteur de risque inconnu: {factor!r}")
            if points < 0:
                raise ImproperlyConfigured(f"Poids négatif pour {factor.value}.")
        low, medium, high = self.risk_thresholds
        if not 0 < low < medium < high <= 100:
            raise ImproperlyConfigured("risk_thresholds doit être strictement croissant dans ]0, 100].")
        if self.dunning_cooldown_days < 1:
            raise ImproperlyConfigured("dunning_cooldown_days doit être >= 1.")
        if not 1 <= self.dunning_max_level <= 3:
            raise ImproperlyConfigured("dunning_max_level doit être compris entre 1 et 3.")
        if self.upcoming_reminder_days < 0:
            raise ImproperlyConfigured("upcoming_reminder_days ne peut pas être négatif.")

    def weight(self, factor: RiskFactor) -> int:
        return int(self.risk_weights.get(factor, 0))

    def next_tariff(self, level_label: str) -> Decimal:
        return self.next_year_tariffs.get(level_label, self.default_next_tariff)

    @classmethod
    def from_settings(cls, overrides: Optional[Mapping[str, Any]] = None) -> "LedgerConfig":
        raw: Dict[str, Any] = dict(getattr(settings, "SCOLARITE_LEDGER", {}) or {})
        raw.update(overrides or {})
        return cls.from_mapping(raw)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "LedgerConfig":
        known = set(cls.__dataclass_fields__)
        unknown = set(raw) - known
        if unknown:
            raise ImproperlyConfigured(f"Clés SCOLARITE_LEDGER inconnues: {sorted(unknown)}")

        values: Dict[str, Any] = {}
        for key in (
            "epsilon",
            "creditor_threshold",
            "closing_balance_alert",
            "installment_floor",
            "risk_balance_ratio",
            "aberrant_payment_ratio",
            "important_balance_ratio",
            "default_next_tariff",
        ):
            if key in raw:
                values[key] = _decimal(raw[key], key)
        for key in (
            "installment_max_count",
            "installment_day",
            "risk_overdue_days",
            "risk_stale_payment_days",
            "max_payment_columns",
            "dunning_cooldown_days",
            "dunning_max_level",
            "upcoming_reminder_days",
        ):
            if key in raw:
                values[key] = int(raw[key])
        for key in ("current_school_year", "default_level_label", "finance_notification_email"):
            if key in raw:
                values[key] = str(raw[key])

        if "risk_weights" in raw:
            weights = dict(DEFAULT_RISK_WEIGHTS)
            for code, points in dict(raw["risk_weights"]).items():
                try:
                    weights[RiskFactor.parse(code)] = int(points)
                except ValueError as exc:
                    raise ImproperlyConfigured(str(exc)) from exc
            values["risk_weights"] = weights
        if "risk_thresholds" in raw:
            thresholds = tuple(int(t) for t in raw["risk_thresholds"])
            if len(thresholds) != 3:
                raise ImproperlyConfigured("risk_thresholds attend exactement trois seuils.")
            values["risk_thresholds"] = thresholds
        if "next_year_tariffs" in raw:
            values["next_year_tariffs"] = {
                str(label): _decimal(amount, f"next_year_tariffs.{label}")
                for label, amount in dict(raw["next_year_tariffs"]).items()
            }
        if "notify_on_risk_levels" in raw:
            values["notify_on_risk_levels"] = tuple(raw["notify_on_risk_levels"])
        if "dunning_risk_levels" in raw:
            values["dunning_risk_levels"] = tuple(raw["dunning_risk_levels"])
        return cls(**values)


InstallmentCountPolicy = Callable[[Decimal, LedgerConfig], int]


def default_installment_count(remaining: Decimal, config: LedgerConfig) -> int:
    """Une échéance par tranche de ``installment_floor``, plafonnée à ``installment_max_count``."""
    if remaining <= 0:
        return 0
    return max(1, min(config.installment_max_count, math.ceil(remaining / config.installment_floor)))
