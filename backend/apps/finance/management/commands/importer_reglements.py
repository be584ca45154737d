"""Commande pour importer un fichier CSV de règlements."""
from __future__ import annotations

from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from apps.finance.exceptions import DuplicateImport
from apps.finance.services.config import LedgerConfig
from apps.finance.services.csv_import import fingerprint_content, parse_csv_content
from apps.finance.services.import_reconciler import ImportReconciler


class Command(BaseCommand):
    help = "Importe un fichier CSV d'élèves et de règlements, puis régénère les échéanciers."

    def add_arguments(self, parser):
        parser.add_argument("fichier", type=str, help="Chemin du fichier CSV")
        parser.add_argument(
            "--override",
            action="store_true",
            help="Réimporte un fichier déjà importé",
        )
        parser.add_argument(
            "--encoding",
            type=str,
            default="utf-8-sig",
            help="Encodage du fichier (défaut: utf-8-sig)",
        )

    def handle(self, *args, **options):
        chemin = Path(options["fichier"])
        if not chemin.is_file():
            raise CommandError(f"Fichier introuvable: {chemin}")
        try:
            contenu = chemin.read_text(encoding=options["encoding"])
        except UnicodeDecodeError as exc:
            raise CommandError(f"Encodage illisible ({options['encoding']}): {exc}") from exc

        config = LedgerConfig.from_settings()
        rows = parse_csv_content(contenu, max_reglements=config.max_payment_columns)
        self.stdout.write(f"{len(rows)} ligne(s) lue(s) dans {chemin.name}")

        try:
            job = ImportReconciler(config).importer(
                fingerprint_content(contenu),
                rows,
                override=options["override"],
                fichier_nom=chemin.name,
            )
        except DuplicateImport as exc:
            raise CommandError(f"{exc.message} Utiliser --override pour forcer.") from exc

        rapport = job.rapport
        self.stdout.write(
            f"  Lignes: {job.lignes_total} | valides: {job.lignes_valides} | "
            f"insérées: {job.lignes_inserees} | rejetées: {job.lignes_rejetees} | échec: {job.lignes_echec}"
        )
        self.stdout.write(
            f"  Règlements: trouvés {rapport.get('reglements_trouves', 0)} | "
            f"importés {rapport.get('reglements_importes', 0)} | "
            f"ignorés {rapport.get('reglements_ignores', 0)} | "
            f"perdus {rapport.get('reglements_perdus', 0)}"
        )
        for erreur in rapport.get("erreurs", [])[:20]:
            self.stdout.write(self.style.WARNING(f"  [!] Ligne {erreur.get('ligne')}: {erreur.get('message')}"))
        self.stdout.write(self.style.SUCCESS(f"Import #{job.pk} terminé."))
