"""Commande pour générer les échéanciers des dossiers actifs."""
from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from apps.finance.exceptions import LedgerError
from apps.finance.models import DossierScolarite
from apps.finance.services.installment_scheduler import InstallmentScheduler
from audit.models import journaliser


class Command(BaseCommand):
    help = "Génère les échéanciers manquants (ou tous avec --force)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--force",
            action="store_true",
            help="Annule et régénère les échéanciers existants",
        )
        parser.add_argument(
            "--dossier",
            type=int,
            help="Ne traiter qu'un dossier (id)",
        )
        parser.add_argument(
            "--annee",
            type=str,
            help="Restreindre à une année scolaire (ex: 2025_2026)",
        )

    def handle(self, *args, **options):
        scheduler = InstallmentScheduler()

        if options.get("dossier"):
            try:
                dossier = DossierScolarite.objects.get(pk=options["dossier"])
            except DossierScolarite.DoesNotExist as exc:
                raise CommandError(f"Dossier {options['dossier']} introuvable.") from exc
            try:
                resultat = scheduler.generer(dossier, force=options["force"])
            except LedgerError as exc:
                raise CommandError(f"[{exc.code}] {exc.message}") from exc
            self.stdout.write(
                self.style.SUCCESS(
                    f"Dossier {dossier.pk}: {resultat.installments_created} échéance(s) "
                    f"({resultat.historical} historique(s), {resultat.future} à venir)"
                )
            )
            return

        dossiers = None
        if options.get("annee"):
            dossiers = DossierScolarite.objects.filter(annee_scolaire=options["annee"])
        resultat = scheduler.generer_lot(dossiers=dossiers, force=options["force"])
        journaliser("SCHEDULES_GENERATED", "DOSSIER_SCOLARITE", options.get("annee") or "", payload=resultat.as_dict())

        for detail in resultat.error_details[:20]:
            self.stdout.write(self.style.WARNING(f"  [!] {detail['reference']}: {detail['message']}"))
        style = self.style.SUCCESS if not resultat.errors else self.style.WARNING
        self.stdout.write(
            style(f"Échéanciers: {resultat.success}/{resultat.total} générés, {resultat.errors} erreur(s)")
        )
