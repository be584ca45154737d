"""Tests de génération des échéanciers."""
from __future__ import annotations

import random
from datetime import date, timedelta
from decimal import Decimal

import pytest

from apps.finance.exceptions import AlreadyScheduled, InvalidTariff
from apps.finance.models import Echeance, Reglement
from apps.finance.services.config import LedgerConfig, default_installment_count
from apps.finance.services.installment_scheduler import InstallmentScheduler, ajouter_mois

from .factories import creer_dossier, creer_eleve, creer_reglement

TODAY = date(2025, 10, 1)


def actives(dossier):
    return Echeance.objects.filter(dossier=dossier).exclude(statut=Echeance.StatutChoices.ANNULEE)


class TestPolitiqueEcheances:
    def test_nombre_d_echeances(self):
        config = LedgerConfig()
        assert default_installment_count(Decimal("8500"), config) == 10
        assert default_installment_count(Decimal("1200"), config) == 3
        assert default_installment_count(Decimal("100"), config) == 1
        assert default_installment_count(Decimal("0"), config) == 0

    def test_ajouter_mois_passe_l_annee(self):
        assert ajouter_mois(date(2025, 11, 30), 2, 15) == date(2026, 1, 15)


@pytest.mark.django_db
class TestInstallmentScheduler:
    def setup_method(self):
        self.scheduler = InstallmentScheduler(LedgerConfig())

    def test_dossier_sans_reglement(self):
        dossier = creer_dossier(tarif="8500")
        resultat = self.scheduler.generer(dossier, today=TODAY)

        echeances = list(actives(dossier).order_by("date_echeance"))
        assert resultat.installments_created == 10
        assert resultat.historical == 0
        assert [e.montant for e in echeances] == [Decimal("850.00")] * 10
        assert echeances[0].date_echeance == date(2025, 11, 15)
        assert echeances[-1].date_echeance == date(2026, 8, 15)
        assert all(e.statut == Echeance.StatutChoices.A_VENIR for e in echeances)

    def test_reglement_historique_et_reste_etale(self):
        dossier = creer_dossier(tarif="8500")
        reglement = creer_reglement(dossier, "2000", date(2025, 9, 10))

        resultat = self.scheduler.generer(dossier, today=TODAY)

        historiques = actives(dossier).filter(origine=Echeance.OrigineChoices.HISTORIQUE)
        futures = actives(dossier).filter(origine=Echeance.OrigineChoices.PLANIFIEE)
        assert resultat.historical == 1
        assert resultat.future == 10
        assert resultat.remaining == Decimal("6500.00")
        assert historiques.get().reglement == reglement
        assert historiques.get().statut == Echeance.StatutChoices.PAYEE
        assert {e.montant for e in futures} == {Decimal("650.00")}
        assert sum(e.montant for e in actives(dossier)) == Decimal("8500.00")

    def test_impaye_anterieur_inclus(self):
        dossier = creer_dossier(tarif="8500", impaye="1000")
        self.scheduler.generer(dossier, today=TODAY)
        assert sum(e.montant for e in actives(dossier)) == Decimal("9500.00")

    def test_derniere_echeance_absorbe_l_arrondi(self):
        dossier = creer_dossier(tarif="1000.01")
        self.scheduler.generer(dossier, today=TODAY)
        montants = [e.montant for e in actives(dossier).order_by("date_echeance")]
        assert montants == [Decimal("333.34"), Decimal("333.34"), Decimal("333.33")]

    def test_reglement_posterieur_decale_les_echeances(self):
        dossier = creer_dossier(tarif="1500")
        creer_reglement(dossier, "500", date(2025, 12, 20))
        self.scheduler.generer(dossier, today=TODAY)
        premiere = actives(dossier).filter(origine=Echeance.OrigineChoices.PLANIFIEE).order_by("date_echeance")[0]
        assert premiere.date_echeance == date(2026, 1, 15)
        historique = actives(dossier).get(origine=Echeance.OrigineChoices.HISTORIQUE)
        assert historique.statut == Echeance.StatutChoices.A_VENIR

    def test_trop_percu_sans_echeance_future(self):
        dossier = creer_dossier(tarif="1000")
        creer_reglement(dossier, "1200")
        resultat = self.scheduler.generer(dossier, today=TODAY)
        assert resultat.future == 0
        assert resultat.remaining == Decimal("-200.00")

    def test_echeancier_existant(self):
        dossier = creer_dossier(tarif="8500")
        self.scheduler.generer(dossier, today=TODAY)
        with pytest.raises(AlreadyScheduled):
            self.scheduler.generer(dossier, today=TODAY)
        assert actives(dossier).count() == 10

    def test_regeneration_forcee(self):
        dossier = creer_dossier(tarif="8500")
        creer_reglement(dossier, "2000")
        self.scheduler.generer(dossier, today=TODAY)

        resultat = self.scheduler.generer(dossier, force=True, today=TODAY)

        assert resultat.cancelled == 11
        assert actives(dossier).count() == 11
        annulees = Echeance.objects.filter(dossier=dossier, statut=Echeance.StatutChoices.ANNULEE)
        assert annulees.count() == 11
        assert not annulees.filter(reglement__isnull=False).exists()

    def test_tarif_nul_refuse(self):
        dossier = creer_dossier(tarif="0")
        with pytest.raises(InvalidTariff):
            self.scheduler.generer(dossier, today=TODAY)
        assert not Echeance.objects.filter(dossier=dossier).exists()

    def test_politique_personnalisee(self):
        scheduler = InstallmentScheduler(LedgerConfig(), count_policy=lambda reste, config: 3)
        dossier = creer_dossier(tarif="8500")
        scheduler.generer(dossier, today=TODAY)
        montants = [e.montant for e in actives(dossier).order_by("date_echeance")]
        assert montants == [Decimal("2833.33"), Decimal("2833.33"), Decimal("2833.34")]

    def test_generation_par_lot(self):
        a_planifier = creer_dossier(eleve=creer_eleve("a@example.com"), tarif="8500")
        deja_planifie = creer_dossier(eleve=creer_eleve("b@example.com"), tarif="6000")
        creer_dossier(eleve=creer_eleve("c@example.com"), tarif="0")
        self.scheduler.generer(deja_planifie, today=TODAY)

        resultat = self.scheduler.generer_lot(today=TODAY)

        assert resultat.total == 1
        assert resultat.success == 1
        assert actives(a_planifier).count() == 10

    def test_modification_du_tarif_repare_l_echeancier(self):
        dossier = creer_dossier(tarif="8500")
        self.scheduler.generer(dossier, today=TODAY)

        dossier.tarif_scolarite = Decimal("9000")
        dossier.save()

        assert sum(e.montant for e in actives(dossier)) == Decimal("9000.00")


STATUTS_TIRES = [
    Reglement.StatutChoices.VALIDE,
    Reglement.StatutChoices.VALIDE,
    Reglement.StatutChoices.EN_ATTENTE,
    Reglement.StatutChoices.REFUSE,
    Reglement.StatutChoices.ANNULE,
]


@pytest.mark.django_db
class TestCompletudeEcheancier:
    """Tarif, impayé et règlements tirés au hasard : l'échéancier couvre toujours le dû."""

    @pytest.mark.parametrize("graine", range(25))
    def test_total_couvre_tarif_et_impaye(self, graine):
        alea = random.Random(graine)
        tarif = Decimal(alea.randint(1, 1_500_000)) / 100
        impaye = Decimal(alea.choice([0, 0, alea.randint(1, 300_000)])) / 100
        dossier = creer_dossier(eleve=creer_eleve(f"eleve{graine}@example.com"), tarif=str(tarif), impaye=str(impaye))
        for _ in range(alea.randint(0, 6)):
            montant = Decimal(alea.randint(-50_000, 400_000)) / 100 or Decimal("1")
            creer_reglement(
                dossier,
                str(montant),
                TODAY + timedelta(days=alea.randint(-120, 120)),
                statut=alea.choice(STATUTS_TIRES),
            )

        resultat = InstallmentScheduler(LedgerConfig()).generer(dossier, today=TODAY)

        valides = Reglement.objects.filter(dossier=dossier, statut=Reglement.StatutChoices.VALIDE)
        reste = tarif + impaye - sum((r.montant for r in valides), Decimal("0"))
        assert resultat.remaining == reste
        planifiees = actives(dossier).filter(origine=Echeance.OrigineChoices.PLANIFIEE)
        if reste > Decimal("0.01"):
            total = sum((e.montant for e in actives(dossier)), Decimal("0"))
            assert abs(total - (tarif + impaye)) <= Decimal("0.01")
            assert planifiees.exists()
        else:
            assert not planifiees.exists()
        assert all(e.montant > 0 for e in planifiees)
