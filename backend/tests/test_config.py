"""Tests de la configuration du grand livre."""
from __future__ import annotations

from decimal import Decimal

import pytest
from django.core.exceptions import ImproperlyConfigured

from apps.finance.services.config import LedgerConfig
from apps.finance.services.risk_factors import RiskFactor


class TestLedgerConfig:
    def test_valeurs_par_defaut(self):
        config = LedgerConfig()
        assert config.installment_floor == Decimal("500")
        assert config.installment_max_count == 10
        assert config.risk_thresholds == (25, 50, 75)
        assert config.weight(RiskFactor.ECHEANCE_RETARD_30J) == 30
        assert config.next_tariff("5A") == Decimal("8500")

    def test_depuis_settings(self, settings):
        settings.SCOLARITE_LEDGER = {"installment_floor": "250", "current_school_year": "2026_2027"}
        config = LedgerConfig.from_settings()
        assert config.installment_floor == Decimal("250")
        assert config.current_school_year == "2026_2027"

    def test_surcharges(self, settings):
        settings.SCOLARITE_LEDGER = {"installment_max_count": 10}
        config = LedgerConfig.from_settings({"installment_max_count": 4})
        assert config.installment_max_count == 4

    def test_poids_partiels(self):
        config = LedgerConfig.from_mapping({"risk_weights": {"solde_eleve": 40}})
        assert config.weight(RiskFactor.SOLDE_ELEVE) == 40
        assert config.weight(RiskFactor.AUCUN_REGLEMENT) == 15

    @pytest.mark.parametrize(
        "valeurs",
        [
            {"cle_inconnue": 1},
            {"installment_floor": "0"},
            {"installment_floor": "abc"},
            {"installment_max_count": 0},
            {"installment_day": 31},
            {"risk_thresholds": [50, 25, 75]},
            {"risk_thresholds": [25, 50]},
            {"risk_weights": {"facteur_inconnu": 10}},
            {"risk_weights": {"solde_eleve": -5}},
            {"dunning_cooldown_days": 0},
            {"dunning_max_level": 4},
            {"upcoming_reminder_days": -1},
        ],
    )
    def test_configuration_invalide(self, valeurs):
        with pytest.raises(ImproperlyConfigured):
            LedgerConfig.from_mapping(valeurs)
