"""Commande quotidienne des relances d'impayés et des rappels d'échéance."""
from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from apps.finance.services.dunning import DunningService


class Command(BaseCommand):
    help = "Envoie les relances graduées des dossiers à risque et les rappels d'échéance proche."

    def add_arguments(self, parser):
        parser.add_argument(
            "--date",
            type=str,
            help="Date de référence AAAA-MM-JJ (défaut: aujourd'hui)",
        )
        parser.add_argument(
            "--rappels-seulement",
            action="store_true",
            help="N'envoie que les rappels d'échéance proche",
        )

    def handle(self, *args, **options):
        today = None
        if options.get("date"):
            today = parse_date(options["date"])
            if today is None:
                raise CommandError(f"Date invalide: {options['date']}")

        service = DunningService()
        if not options["rappels_seulement"]:
            resultat = service.traiter_relances(today=today)
            self._afficher("Relances", resultat)
        resultat = service.rappeler_echeances_proches(today=today)
        self._afficher("Rappels d'échéance", resultat)

    def _afficher(self, titre, resultat):
        for detail in resultat.error_details[:20]:
            self.stdout.write(self.style.WARNING(f"  [!] {detail['reference']}: {detail['message']}"))
        style = self.style.SUCCESS if not resultat.errors and not resultat.failed_deliveries else self.style.WARNING
        self.stdout.write(
            style(
                f"{titre}: {resultat.sent} envoyée(s), {resultat.skipped} ignorée(s), "
                f"{resultat.failed_deliveries} non distribuée(s), {resultat.errors} erreur(s)"
            )
        )
