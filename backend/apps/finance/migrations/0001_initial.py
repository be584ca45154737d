from __future__ import annotations

from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("academic", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="DossierScolarite",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "annee_scolaire",
                    models.CharField(db_index=True, help_text="Année universitaire au format 2025_2026", max_length=9),
                ),
                (
                    "tarif_scolarite",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0"))],
                    ),
                ),
                (
                    "impaye_anterieur",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        help_text="Reste à payer reporté de l'année précédente",
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0"))],
                    ),
                ),
                (
                    "statut_dossier",
                    models.CharField(
                        choices=[("en_cours", "En cours"), ("cloture", "Clôturé"), ("resilie", "Résilié")],
                        db_index=True,
                        default="en_cours",
                        max_length=16,
                    ),
                ),
                (
                    "solde",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0"),
                        help_text="Calculé via signal (tarif + impayé - règlements valides)",
                        max_digits=12,
                    ),
                ),
                (
                    "statut_paiement",
                    models.CharField(
                        choices=[
                            ("a_jour", "À jour"),
                            ("en_cours", "En cours"),
                            ("en_retard", "En retard"),
                            ("crediteur", "Créditeur"),
                        ],
                        default="en_cours",
                        max_length=16,
                    ),
                ),
                ("commentaire", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "eleve",
                    models.ForeignKey(
                        db_column="eleve_id",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="dossiers",
                        to="academic.eleve",
                    ),
                ),
                (
                    "niveau",
                    models.ForeignKey(
                        db_column="annee_id",
                        help_text="Niveau d'étude (1A, 2A...) du dossier",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="dossiers",
                        to="academic.anneescolaire",
                    ),
                ),
            ],
            options={
                "db_table": "DOSSIER_SCOLARITE",
                "verbose_name": "Dossier de scolarité",
                "verbose_name_plural": "Dossiers de scolarité",
                "ordering": ["-annee_scolaire", "eleve__nom"],
                "indexes": [
                    models.Index(fields=["statut_dossier", "annee_scolaire"], name="dossier_statut_annee_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("eleve", "annee_scolaire"), name="uniq_dossier_eleve_annee"),
                    models.CheckConstraint(
                        condition=models.Q(impaye_anterieur__gte=0), name="dossier_impaye_positif"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Reglement",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("montant", models.DecimalField(decimal_places=2, max_digits=12)),
                ("date_reglement", models.DateField(default=django.utils.timezone.localdate)),
                (
                    "moyen_paiement",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("especes", "Espèces"),
                            ("carte", "Carte bancaire"),
                            ("virement", "Virement"),
                            ("cheque", "Chèque"),
                            ("prelevement", "Prélèvement"),
                            ("mobile", "Mobile money"),
                        ],
                        max_length=16,
                    ),
                ),
                (
                    "statut",
                    models.CharField(
                        choices=[
                            ("en_attente", "En attente"),
                            ("valide", "Validé"),
                            ("refuse", "Refusé"),
                            ("annule", "Annulé"),
                        ],
                        db_index=True,
                        default="valide",
                        max_length=16,
                    ),
                ),
                ("numero_piece", models.CharField(blank=True, max_length=64)),
                ("commentaire", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "dossier",
                    models.ForeignKey(
                        db_column="dossier_id",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reglements",
                        to="finance.dossierscolarite",
                    ),
                ),
            ],
            options={
                "db_table": "REGLEMENT",
                "verbose_name": "Règlement",
                "verbose_name_plural": "Règlements",
                "ordering": ["date_reglement", "id"],
                "indexes": [models.Index(fields=["dossier", "statut"], name="reglement_dossier_statut_idx")],
            },
        ),
        migrations.CreateModel(
            name="Echeance",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("montant", models.DecimalField(decimal_places=2, max_digits=12)),
                ("date_echeance", models.DateField()),
                (
                    "statut",
                    models.CharField(
                        choices=[
                            ("a_venir", "À venir"),
                            ("payee", "Payée"),
                            ("en_retard", "En retard"),
                            ("annulee", "Annulée"),
                        ],
                        db_index=True,
                        default="a_venir",
                        max_length=16,
                    ),
                ),
                (
                    "origine",
                    models.CharField(
                        choices=[("historique", "Règlement historique"), ("planifiee", "Échéance future")],
                        default="planifiee",
                        max_length=16,
                    ),
                ),
                ("commentaire", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "dossier",
                    models.ForeignKey(
                        db_column="dossier_id",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="echeances",
                        to="finance.dossierscolarite",
                    ),
                ),
                (
                    "reglement",
                    models.ForeignKey(
                        blank=True,
                        db_column="reglement_id",
                        help_text="Règlement ayant soldé l'échéance",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="echeances",
                        to="finance.reglement",
                    ),
                ),
            ],
            options={
                "db_table": "ECHEANCE",
                "verbose_name": "Échéance",
                "verbose_name_plural": "Échéances",
                "ordering": ["date_echeance", "id"],
                "indexes": [
                    models.Index(fields=["dossier", "statut"], name="echeance_dossier_statut_idx"),
                    models.Index(fields=["statut", "date_echeance"], name="echeance_statut_date_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="RisqueFinancier",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("score", models.PositiveSmallIntegerField()),
                (
                    "niveau",
                    models.CharField(
                        choices=[
                            ("faible", "Faible"),
                            ("moyen", "Moyen"),
                            ("eleve", "Élevé"),
                            ("critique", "Critique"),
                        ],
                        max_length=16,
                    ),
                ),
                ("facteurs", models.JSONField(blank=True, default=list)),
                ("recommandation", models.TextField(blank=True)),
                ("date_evaluation", models.DateField(default=django.utils.timezone.localdate)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "dossier",
                    models.ForeignKey(
                        db_column="dossier_id",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="risques",
                        to="finance.dossierscolarite",
                    ),
                ),
            ],
            options={
                "db_table": "RISQUE_FINANCIER",
                "verbose_name": "Risque financier",
                "verbose_name_plural": "Risques financiers",
                "ordering": ["-date_evaluation"],
                "constraints": [
                    models.UniqueConstraint(fields=("dossier", "date_evaluation"), name="uniq_risque_dossier_jour"),
                    models.CheckConstraint(condition=models.Q(score__lte=100), name="risque_score_max_100"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Anomalie",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "type_anomalie",
                    models.CharField(
                        choices=[
                            ("doublon_eleve", "Doublon élève"),
                            ("eleve_crediteur", "Élève créditeur"),
                            ("solde_important", "Solde important"),
                            ("montant_aberrant", "Montant aberrant"),
                            ("donnees_manquantes", "Données manquantes"),
                            ("moyen_manquant", "Moyen de paiement manquant"),
                            ("echeancier_incoherent", "Échéancier incohérent"),
                        ],
                        db_index=True,
                        max_length=32,
                    ),
                ),
                (
                    "severite",
                    models.CharField(
                        choices=[("info", "Information"), ("alerte", "Alerte"), ("critique", "Critique")],
                        default="alerte",
                        max_length=16,
                    ),
                ),
                (
                    "statut",
                    models.CharField(
                        choices=[("ouverte", "Ouverte"), ("resolue", "Résolue"), ("ignoree", "Ignorée")],
                        db_index=True,
                        default="ouverte",
                        max_length=16,
                    ),
                ),
                ("description", models.TextField()),
                ("details", models.JSONField(blank=True, default=dict)),
                ("action_proposee", models.TextField(blank=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "dossier",
                    models.ForeignKey(
                        blank=True,
                        db_column="dossier_id",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="anomalies",
                        to="finance.dossierscolarite",
                    ),
                ),
                (
                    "eleve",
                    models.ForeignKey(
                        blank=True,
                        db_column="eleve_id",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="anomalies",
                        to="academic.eleve",
                    ),
                ),
            ],
            options={
                "db_table": "ANOMALIE",
                "verbose_name": "Anomalie",
                "verbose_name_plural": "Anomalies",
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["type_anomalie", "statut"], name="anomalie_type_statut_idx")],
            },
        ),
        migrations.CreateModel(
            name="ImportFichier",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("fichier_nom", models.CharField(blank=True, max_length=255)),
                ("fichier_hash", models.CharField(db_index=True, max_length=64)),
                (
                    "statut",
                    models.CharField(
                        choices=[("en_cours", "En cours"), ("termine", "Terminé"), ("echec", "Échec")],
                        db_index=True,
                        default="en_cours",
                        max_length=16,
                    ),
                ),
                ("override", models.BooleanField(default=False)),
                ("lignes_total", models.PositiveIntegerField(default=0)),
                ("lignes_valides", models.PositiveIntegerField(default=0)),
                ("lignes_inserees", models.PositiveIntegerField(default=0)),
                ("lignes_rejetees", models.PositiveIntegerField(default=0)),
                ("lignes_echec", models.PositiveIntegerField(default=0)),
                ("rapport", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("termine_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "IMPORT_FICHIER",
                "verbose_name": "Import",
                "verbose_name_plural": "Imports",
                "ordering": ["-created_at"],
            },
        ),
    ]
