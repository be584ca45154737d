from __future__ import annotations

from django.core.exceptions import ValidationError
from django.db import models


def normaliser_email(email: str | None) -> str:
    """Identifiant unique d'un élève : e-mail en minuscules, sans espaces."""
    return (email or "").strip().lower()


class AnneeScolaire(models.Model):
    """ANNEE_SCOLAIRE - Niveau d'étude (1A, 2A, ...) ordonné pour le passage d'année."""

    libelle = models.CharField(max_length=32, unique=True)
    ordre = models.PositiveSmallIntegerField(unique=True)
    est_terminale = models.BooleanField(
        default=False,
        help_text="Dernière année du cursus : les dossiers sont clôturés (diplômés) en fin d'année",
    )
    par_defaut = models.BooleanField(default=False)

    class Meta:
        db_table = "ANNEE_SCOLAIRE"
        verbose_name = "Année scolaire (niveau)"
        verbose_name_plural = "Années scolaires (niveaux)"
        ordering = ["ordre"]

    def __str__(self) -> str:
        return self.libelle

    def niveau_suivant(self) -> AnneeScolaire | None:
        return AnneeScolaire.objects.filter(ordre=self.ordre + 1).first()


class Eleve(models.Model):
    """ELEVE - Élève inscrit, identifié de façon unique par son e-mail normalisé."""

    class StatutInscriptionChoices(models.TextChoices):
        INSCRIT = "Inscrit", "Inscrit"
        REDOUBLANT = "Redoublant", "Redoublant"
        DIPLOME = "Diplômé", "Diplômé"
        DESINSCRIT = "Désinscrit", "Désinscrit"

    nom = models.CharField(max_length=150)
    prenom = models.CharField(max_length=150, blank=True)
    email = models.EmailField(unique=True)
    immatriculation = models.CharField(max_length=64, unique=True, null=True, blank=True)
    telephone = models.CharField(max_length=32, blank=True)
    adresse = models.TextField(blank=True)
    date_naissance = models.DateField(null=True, blank=True)
    statut_inscription = models.CharField(
        max_length=20,
        choices=StatutInscriptionChoices.choices,
        default=StatutInscriptionChoices.INSCRIT,
        db_index=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "ELEVE"
        verbose_name = "Élève"
        verbose_name_plural = "Élèves"
        ordering = ["nom", "prenom"]
        indexes = [
            models.Index(fields=["nom", "prenom"], name="eleve_nom_prenom_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.nom_complet} <{self.email}>"

    @property
    def nom_complet(self) -> str:
        return f"{self.prenom} {self.nom}".strip()

    def _normaliser(self) -> None:
        self.email = normaliser_email(self.email)
        if self.immatriculation is not None:
            self.immatriculation = self.immatriculation.strip() or None

    def clean(self) -> None:
        self._normaliser()
        if not self.email or "@" not in self.email:
            raise ValidationError({"email": "Adresse e-mail invalide."})

    def save(self, *args, **kwargs):
        self._normaliser()
        super().save(*args, **kwargs)
