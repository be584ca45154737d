"""Commande de détection des doublons d'élèves et des anomalies financières."""
from __future__ import annotations

from django.core.management.base import BaseCommand

from apps.finance.services.anomaly_detector import AnomalyDetector


class Command(BaseCommand):
    help = "Détecte les élèves probablement en double (et, en option, les anomalies de solde)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--scan-financier",
            action="store_true",
            help="Contrôle aussi les soldes de tous les dossiers actifs",
        )

    def handle(self, *args, **options):
        detector = AnomalyDetector()

        doublons = detector.detecter_doublons_eleves()
        self.stdout.write(
            self.style.SUCCESS(
                f"Doublons: {doublons.detected} nouvelle(s) paire(s) sur {doublons.total} examinée(s)"
            )
        )

        if options["scan_financier"]:
            scan = detector.scan_population()
            self.stdout.write(
                self.style.SUCCESS(
                    f"Contrôle financier: {scan.detected} anomalie(s) ouverte(s) sur {scan.total} dossier(s)"
                )
            )
            for detail in scan.error_details[:20]:
                self.stdout.write(self.style.WARNING(f"  [!] {detail['reference']}: {detail['message']}"))
