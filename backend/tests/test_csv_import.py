"""Tests de lecture et de normalisation des exports CSV."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from apps.finance.services.csv_import import (
    canoniser,
    fingerprint_content,
    normaliser_date,
    normaliser_montant,
    normaliser_moyen,
    parse_csv_content,
)


class TestNormalisation:
    @pytest.mark.parametrize(
        "brut, attendu",
        [
            ("1 250,50 €", Decimal("1250.50")),
            ("1 000", Decimal("1000")),
            (" 850 EUR", Decimal("850")),
            ("1.250,5", Decimal("1250.5")),
            ("1,250.50", Decimal("1250.50")),
            ("12,5", Decimal("12.5")),
            ("2000.00", Decimal("2000.00")),
            (1500, Decimal("1500")),
        ],
    )
    def test_montants(self, brut, attendu):
        assert normaliser_montant(brut) == attendu

    def test_montant_vide(self):
        assert normaliser_montant("") is None
        assert normaliser_montant(None) is None
        assert normaliser_montant(" - ") is None

    def test_montant_illisible(self):
        with pytest.raises(ValueError):
            normaliser_montant("deux mille")

    def test_dates(self):
        assert normaliser_date("15/10/2025") == date(2025, 10, 15)
        assert normaliser_date("15/10/25") == date(2025, 10, 15)
        assert normaliser_date("2025-10-15") == date(2025, 10, 15)
        assert normaliser_date("2025-10-15T08:30:00") == date(2025, 10, 15)
        assert normaliser_date("2025-02-30") is None
        assert normaliser_date("15.10.2025") == date(2025, 10, 15)

    def test_date_sans_annee_deduite_de_l_annee_scolaire(self):
        assert normaliser_date("15/10", "2025_2026") == date(2025, 10, 15)
        assert normaliser_date("15/02", "2025_2026") == date(2026, 2, 15)
        assert normaliser_date("15/02") is None

    def test_dates_illisibles(self):
        assert normaliser_date("IMPAYE") is None
        assert normaliser_date("31/02/2025") is None
        assert normaliser_date("") is None

    def test_moyens(self):
        assert normaliser_moyen("CB") == "carte"
        assert normaliser_moyen("Chèque") == "cheque"
        assert normaliser_moyen("Virement bancaire") == "virement"
        assert normaliser_moyen("Orange Money") == "mobile"
        assert normaliser_moyen("troc") == ""

    def test_canoniser(self):
        assert canoniser("Date Rglt 2") == "daterglt2"
        assert canoniser("Tarif Scolarité") == "tarifscolarite"


class TestParseCsv:
    def test_export_point_virgule(self):
        contenu = (
            "Nom;Prénom;E-mail;Année;Tarif Scolarité;Acompte;Date Rglt 1;Moyen Rglt 1;"
            "Montant Rglt 2;Date Rglt 2;Moyen Rglt 2\n"
            "Durand;Paul;PAUL.DURAND@example.com;1A;8 500,00;2 000;10/09/2025;CB;850;15/10/2025;Espèces\n"
            ";;;;;;;;;;\n"
            "Petit;Léa;lea.petit@example.com;2A;8500;;;;;;\n"
        )
        lignes = parse_csv_content(contenu)

        assert len(lignes) == 2
        premiere = lignes[0]
        assert premiere["_ligne"] == 2
        assert premiere["nom"] == "Durand"
        assert premiere["email"] == "PAUL.DURAND@example.com"
        assert premiere["tarif"] == "8 500,00"
        assert premiere["reglements"] == [
            {"montant": "2 000", "date": "10/09/2025", "moyen": "CB", "numero_piece": ""},
            {"montant": "850", "date": "15/10/2025", "moyen": "Espèces", "numero_piece": ""},
        ]
        assert lignes[1]["_ligne"] == 4
        assert lignes[1]["reglements"] == []

    def test_export_virgule_et_colonnes_inconnues(self):
        contenu = "email,nom,remarque,montantrglt1,daterglt1\nx@example.com,X,RAS,100,01/10/2025\n"
        lignes = parse_csv_content(contenu)
        assert lignes == [
            {
                "_ligne": 2,
                "reglements": [{"montant": "100", "date": "01/10/2025", "moyen": "", "numero_piece": ""}],
                "email": "x@example.com",
                "nom": "X",
            }
        ]

    def test_limite_de_colonnes_de_reglement(self):
        contenu = "email;montantrglt1;montantrglt2\nx@example.com;100;200\n"
        lignes = parse_csv_content(contenu, max_reglements=1)
        assert [r["montant"] for r in lignes[0]["reglements"]] == ["100"]

    def test_contenu_vide(self):
        assert parse_csv_content("") == []
        assert parse_csv_content(b"\xef\xbb\xbf") == []

    def test_empreinte(self):
        assert fingerprint_content("a;b\n") == fingerprint_content(b"a;b\n")
        assert fingerprint_content("a;b\n") != fingerprint_content("a;b\n1;2\n")
        assert len(fingerprint_content("x")) == 64
