from __future__ import annotations

from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("finance", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Relance",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "type_relance",
                    models.CharField(
                        choices=[
                            ("automatique", "Automatique"),
                            ("retard", "Retard de paiement"),
                            ("echeance_proche", "Échéance proche"),
                        ],
                        db_index=True,
                        max_length=16,
                    ),
                ),
                ("niveau_relance", models.PositiveSmallIntegerField(default=1)),
                ("montant_du", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("canal", models.CharField(default="email", max_length=16)),
                (
                    "statut",
                    models.CharField(
                        choices=[("envoyee", "Envoyée"), ("echec", "Échec d'envoi")],
                        default="envoyee",
                        max_length=16,
                    ),
                ),
                ("message", models.TextField(blank=True)),
                ("date_envoi", models.DateField(db_index=True, default=django.utils.timezone.localdate)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "dossier",
                    models.ForeignKey(
                        db_column="dossier_id",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="relances",
                        to="finance.dossierscolarite",
                    ),
                ),
                (
                    "echeance",
                    models.ForeignKey(
                        blank=True,
                        db_column="echeance_id",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="relances",
                        to="finance.echeance",
                    ),
                ),
            ],
            options={
                "db_table": "RELANCE",
                "verbose_name": "Relance",
                "verbose_name_plural": "Relances",
                "ordering": ["-date_envoi", "-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(niveau_relance__gte=1, niveau_relance__lte=3), name="relance_niveau_1_3"
                    ),
                ],
            },
        ),
    ]
