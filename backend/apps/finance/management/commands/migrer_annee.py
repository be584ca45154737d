"""Commande de passage à l'année scolaire suivante."""
from __future__ import annotations

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from apps.finance.services.config import LedgerConfig
from apps.finance.services.rollover_engine import RolloverEngine, annee_suivante_de


class Command(BaseCommand):
    help = "Clôture les diplômés et promeut les autres élèves vers l'année suivante."

    def add_arguments(self, parser):
        parser.add_argument("--annee-courante", type=str, help="Ex: 2025_2026 (défaut: année configurée)")
        parser.add_argument("--annee-suivante", type=str, help="Ex: 2026_2027 (défaut: année courante + 1)")
        parser.add_argument("--diplomes", action="store_true", help="Clôturer uniquement les diplômés")
        parser.add_argument("--promotion", action="store_true", help="Promouvoir uniquement")

    def handle(self, *args, **options):
        annee_courante = options.get("annee_courante") or LedgerConfig.from_settings().current_school_year
        try:
            annee_suivante = options.get("annee_suivante") or annee_suivante_de(annee_courante)
        except ValidationError as exc:
            raise CommandError("; ".join(exc.messages)) from exc

        # Sans option, les deux étapes dans l'ordre.
        tout = not options["diplomes"] and not options["promotion"]
        engine = RolloverEngine()

        self.stdout.write(f"Passage {annee_courante} -> {annee_suivante}")
        if tout or options["diplomes"]:
            resultat = engine.cloturer_diplomes(annee_courante)
            self._afficher("Diplômés", resultat)
        if tout or options["promotion"]:
            try:
                resultat = engine.promouvoir(annee_courante, annee_suivante)
            except ValidationError as exc:
                raise CommandError("; ".join(exc.messages)) from exc
            self._afficher("Promotions", resultat)

    def _afficher(self, titre, resultat):
        for detail in resultat.error_details[:20]:
            self.stdout.write(self.style.WARNING(f"  [!] {detail['reference']}: {detail['message']}"))
        style = self.style.SUCCESS if not resultat.errors else self.style.WARNING
        self.stdout.write(style(f"{titre}: {resultat.success}/{resultat.total} réussi(s), {resultat.errors} échec(s)"))
