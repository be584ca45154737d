from __future__ import annotations

from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AnneeScolaire",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("libelle", models.CharField(max_length=32, unique=True)),
                ("ordre", models.PositiveSmallIntegerField(unique=True)),
                (
                    "est_terminale",
                    models.BooleanField(
                        default=False,
                        help_text="Dernière année du cursus : les dossiers sont clôturés (diplômés) en fin d'année",
                    ),
                ),
                ("par_defaut", models.BooleanField(default=False)),
            ],
            options={
                "db_table": "ANNEE_SCOLAIRE",
                "verbose_name": "Année scolaire (niveau)",
                "verbose_name_plural": "Années scolaires (niveaux)",
                "ordering": ["ordre"],
            },
        ),
        migrations.CreateModel(
            name="Eleve",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("nom", models.CharField(max_length=150)),
                ("prenom", models.CharField(blank=True, max_length=150)),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("immatriculation", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("telephone", models.CharField(blank=True, max_length=32)),
                ("adresse", models.TextField(blank=True)),
                ("date_naissance", models.DateField(blank=True, null=True)),
                (
                    "statut_inscription",
                    models.CharField(
                        choices=[
                            ("Inscrit", "Inscrit"),
                            ("Redoublant", "Redoublant"),
                            ("Diplômé", "Diplômé"),
                            ("Désinscrit", "Désinscrit"),
                        ],
                        db_index=True,
                        default="Inscrit",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "ELEVE",
                "verbose_name": "Élève",
                "verbose_name_plural": "Élèves",
                "ordering": ["nom", "prenom"],
                "indexes": [models.Index(fields=["nom", "prenom"], name="eleve_nom_prenom_idx")],
            },
        ),
    ]
