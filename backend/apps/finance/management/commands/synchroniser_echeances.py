"""Commande de balayage quotidien des statuts d'échéances."""
from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from apps.finance.services.status_synchronizer import StatusSynchronizer
from audit.models import journaliser


class Command(BaseCommand):
    help = "Passe en retard les échéances échues et réaligne les échéances sur les règlements."

    def add_arguments(self, parser):
        parser.add_argument(
            "--date",
            type=str,
            help="Date de référence AAAA-MM-JJ (défaut: aujourd'hui)",
        )

    def handle(self, *args, **options):
        today = None
        if options.get("date"):
            today = parse_date(options["date"])
            if today is None:
                raise CommandError(f"Date invalide: {options['date']}")

        resultat = StatusSynchronizer().balayer(today=today)
        journaliser("INSTALLMENTS_SYNCED", "ECHEANCE", payload=resultat.as_dict())
        self.stdout.write(
            self.style.SUCCESS(
                f"En retard: {resultat.installments_marked_overdue} | "
                f"payées: {resultat.installments_marked_paid} | "
                f"rétablies: {resultat.installments_reverted} | "
                f"dossiers modifiés: {len(resultat.dossiers_changed)}"
            )
        )
