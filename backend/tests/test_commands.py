"""Tests des commandes de gestion."""
from __future__ import annotations

from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.finance.models import DossierScolarite, Echeance, ImportFichier
from audit.models import SysAuditLog

from .factories import ANNEE, creer_dossier, creer_eleve, creer_niveaux


def executer(*args, **kwargs) -> str:
    sortie = StringIO()
    call_command(*args, stdout=sortie, **kwargs)
    return sortie.getvalue()


@pytest.mark.django_db
class TestCommandes:
    def setup_method(self):
        self.premiere, self.deuxieme, self.troisieme = creer_niveaux()

    def test_importer_reglements(self, tmp_path):
        fichier = tmp_path / "export.csv"
        fichier.write_text(
            "Nom;Email;Année;Tarif;Acompte;Date Rglt 1;Moyen Rglt 1\n"
            "Durand;paul@example.com;1A;8500;2000;10/09/2025;CB\n",
            encoding="utf-8",
        )

        sortie = executer("importer_reglements", str(fichier))
        assert "terminé" in sortie
        assert ImportFichier.objects.get().fichier_nom == "export.csv"

        with pytest.raises(CommandError):
            executer("importer_reglements", str(fichier))
        executer("importer_reglements", str(fichier), "--override")
        assert ImportFichier.objects.count() == 2

    def test_importer_fichier_absent(self, tmp_path):
        with pytest.raises(CommandError):
            executer("importer_reglements", str(tmp_path / "absent.csv"))

    def test_generer_echeances(self):
        dossier = creer_dossier(niveau=self.premiere)
        sortie = executer("generer_echeances")
        assert "1/1" in sortie
        assert Echeance.objects.filter(dossier=dossier).count() == 10
        assert SysAuditLog.objects.filter(action="SCHEDULES_GENERATED").exists()

        with pytest.raises(CommandError):
            executer("generer_echeances", "--dossier", str(dossier.pk))
        executer("generer_echeances", "--dossier", str(dossier.pk), "--force")
        assert Echeance.objects.filter(dossier=dossier, statut=Echeance.StatutChoices.ANNULEE).count() == 10

    def test_synchroniser_echeances(self):
        dossier = creer_dossier(niveau=self.premiere)
        executer("generer_echeances")
        executer("synchroniser_echeances", "--date", "2099-01-01")
        assert Echeance.objects.filter(dossier=dossier, statut=Echeance.StatutChoices.EN_RETARD).count() == 10
        with pytest.raises(CommandError):
            executer("synchroniser_echeances", "--date", "demain")

    def test_detecter_doublons(self):
        creer_eleve("a@example.com", nom="Durand", prenom="Paul")
        creer_eleve("b@example.com", nom="Durand", prenom="Paul")
        sortie = executer("detecter_doublons", "--scan-financier")
        assert "1 nouvelle(s) paire(s)" in sortie
        assert "Contrôle financier" in sortie

    def test_migrer_annee(self):
        creer_dossier(eleve=creer_eleve("p@example.com"), niveau=self.premiere)
        creer_dossier(eleve=creer_eleve("d@example.com"), niveau=self.troisieme)

        sortie = executer("migrer_annee", "--annee-courante", ANNEE)

        assert "Diplômés: 1/1" in sortie
        assert "Promotions: 1/1" in sortie
        assert DossierScolarite.objects.filter(annee_scolaire="2026_2027").count() == 1

    def test_migrer_annee_invalide(self):
        with pytest.raises(CommandError):
            executer("migrer_annee", "--annee-courante", "2025")
