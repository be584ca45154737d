from __future__ import annotations

from decimal import Decimal

from auditlog.registry import auditlog
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from apps.academic.models import AnneeScolaire, Eleve


class DossierScolarite(models.Model):
    """
    DOSSIER_SCOLARITE - Dossier de scolarité d'un élève pour une année.

    Le solde (``solde``) et le statut de paiement sont des valeurs dérivées,
    recalculées intégralement par LedgerCalculator à chaque écriture.
    """

    class StatutDossierChoices(models.TextChoices):
        EN_COURS = "en_cours", "En cours"
        CLOTURE = "cloture", "Clôturé"
        RESILIE = "resilie", "Résilié"

    class StatutPaiementChoices(models.TextChoices):
        A_JOUR = "a_jour", "À jour"
        EN_COURS = "en_cours", "En cours"
        EN_RETARD = "en_retard", "En retard"
        CREDITEUR = "crediteur", "Créditeur"

    eleve = models.ForeignKey(
        Eleve,
        on_delete=models.CASCADE,
        related_name="dossiers",
        db_column="eleve_id",
    )
    niveau = models.ForeignKey(
        AnneeScolaire,
        on_delete=models.PROTECT,
        related_name="dossiers",
        db_column="annee_id",
        help_text="Niveau d'étude (1A, 2A...) du dossier",
    )
    annee_scolaire = models.CharField(
        max_length=9,
        db_index=True,
        help_text="Année universitaire au format 2025_2026",
    )
    tarif_scolarite = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0"),
        validators=[MinValueValidator(Decimal("0"))],
    )
    impaye_anterieur = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0"),
        validators=[MinValueValidator(Decimal("0"))],
        help_text="Reste à payer reporté de l'année précédente",
    )
    statut_dossier = models.CharField(
        max_length=16,
        choices=StatutDossierChoices.choices,
        default=StatutDossierChoices.EN_COURS,
        db_index=True,
    )
    solde = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0"),
        help_text="Calculé via signal (tarif + impayé - règlements valides)",
    )
    statut_paiement = models.CharField(
        max_length=16,
        choices=StatutPaiementChoices.choices,
        default=StatutPaiementChoices.EN_COURS,
    )
    commentaire = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "DOSSIER_SCOLARITE"
        verbose_name = "Dossier de scolarité"
        verbose_name_plural = "Dossiers de scolarité"
        ordering = ["-annee_scolaire", "eleve__nom"]
        constraints = [
            models.UniqueConstraint(fields=["eleve", "annee_scolaire"], name="uniq_dossier_eleve_annee"),
            models.CheckConstraint(condition=models.Q(impaye_anterieur__gte=0), name="dossier_impaye_positif"),
        ]
        indexes = [
            models.Index(fields=["statut_dossier", "annee_scolaire"], name="dossier_statut_annee_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.eleve.email} - {self.annee_scolaire} ({self.niveau})"

    @property
    def total_du(self) -> Decimal:
        return (self.tarif_scolarite or Decimal("0")) + (self.impaye_anterieur or Decimal("0"))

    @property
    def est_actif(self) -> bool:
        return self.statut_dossier == self.StatutDossierChoices.EN_COURS

    def clean(self) -> None:
        errors = {}
        if self.tarif_scolarite is not None and self.tarif_scolarite < 0:
            errors["tarif_scolarite"] = "Le tarif ne peut pas être négatif."
        if self.impaye_anterieur is not None and self.impaye_anterieur < 0:
            errors["impaye_anterieur"] = "L'impayé antérieur ne peut pas être négatif."
        if errors:
            raise ValidationError(errors)


class Reglement(models.Model):
    """REGLEMENT - Règlement reçu sur un dossier. Jamais supprimé, seul son statut évolue."""

    MOYEN_ESPECES = "especes"
    MOYEN_CARTE = "carte"
    MOYEN_VIREMENT = "virement"
    MOYEN_CHEQUE = "cheque"
    MOYEN_PRELEVEMENT = "prelevement"
    MOYEN_MOBILE = "mobile"

    MOYEN_CHOICES = (
        (MOYEN_ESPECES, "Espèces"),
        (MOYEN_CARTE, "Carte bancaire"),
        (MOYEN_VIREMENT, "Virement"),
        (MOYEN_CHEQUE, "Chèque"),
        (MOYEN_PRELEVEMENT, "Prélèvement"),
        (MOYEN_MOBILE, "Mobile money"),
    )

    class StatutChoices(models.TextChoices):
        EN_ATTENTE = "en_attente", "En attente"
        VALIDE = "valide", "Validé"
        REFUSE = "refuse", "Refusé"
        ANNULE = "annule", "Annulé"

    dossier = models.ForeignKey(
        DossierScolarite,
        on_delete=models.PROTECT,
        related_name="reglements",
        db_column="dossier_id",
    )
    montant = models.DecimalField(max_digits=12, decimal_places=2)
    date_reglement = models.DateField(default=timezone.localdate)
    moyen_paiement = models.CharField(max_length=16, choices=MOYEN_CHOICES, blank=True)
    statut = models.CharField(
        max_length=16,
        choices=StatutChoices.choices,
        default=StatutChoices.VALIDE,
        db_index=True,
    )
    numero_piece = models.CharField(max_length=64, blank=True)
    commentaire = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "REGLEMENT"
        verbose_name = "Règlement"
        verbose_name_plural = "Règlements"
        ordering = ["date_reglement", "id"]
        indexes = [
            models.Index(fields=["dossier", "statut"], name="reglement_dossier_statut_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.montant} le {self.date_reglement} ({self.statut})"

    @property
    def est_valide(self) -> bool:
        return self.statut == self.StatutChoices.VALIDE


class Echeance(models.Model):
    """ECHEANCE - Échéance planifiée d'un dossier, éventuellement soldée par un règlement."""

    class StatutChoices(models.TextChoices):
        A_VENIR = "a_venir", "À venir"
        PAYEE = "payee", "Payée"
        EN_RETARD = "en_retard", "En retard"
        ANNULEE = "annulee", "Annulée"

    class OrigineChoices(models.TextChoices):
        HISTORIQUE = "historique", "Règlement historique"
        PLANIFIEE = "planifiee", "Échéance future"

    dossier = models.ForeignKey(
        DossierScolarite,
        on_delete=models.CASCADE,
        related_name="echeances",
        db_column="dossier_id",
    )
    montant = models.DecimalField(max_digits=12, decimal_places=2)
    date_echeance = models.DateField()
    statut = models.CharField(
        max_length=16,
        choices=StatutChoices.choices,
        default=StatutChoices.A_VENIR,
        db_index=True,
    )
    origine = models.CharField(
        max_length=16,
        choices=OrigineChoices.choices,
        default=OrigineChoices.PLANIFIEE,
    )
    reglement = models.ForeignKey(
        Reglement,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="echeances",
        db_column="reglement_id",
        help_text="Règlement ayant soldé l'échéance",
    )
    commentaire = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "ECHEANCE"
        verbose_name = "Échéance"
        verbose_name_plural = "Échéances"
        ordering = ["date_echeance", "id"]
        indexes = [
            models.Index(fields=["dossier", "statut"], name="echeance_dossier_statut_idx"),
            models.Index(fields=["statut", "date_echeance"], name="echeance_statut_date_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.montant} au {self.date_echeance} ({self.statut})"


class RisqueFinancier(models.Model):
    """RISQUE_FINANCIER - Évaluation du risque d'impayé, au plus une par dossier et par jour."""

    class NiveauChoices(models.TextChoices):
        FAIBLE = "faible", "Faible"
        MOYEN = "moyen", "Moyen"
        ELEVE = "eleve", "Élevé"
        CRITIQUE = "critique", "Critique"

    dossier = models.ForeignKey(
        DossierScolarite,
        on_delete=models.CASCADE,
        related_name="risques",
        db_column="dossier_id",
    )
    score = models.PositiveSmallIntegerField()
    niveau = models.CharField(max_length=16, choices=NiveauChoices.choices)
    facteurs = models.JSONField(default=list, blank=True)
    recommandation = models.TextField(blank=True)
    date_evaluation = models.DateField(default=timezone.localdate)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "RISQUE_FINANCIER"
        verbose_name = "Risque financier"
        verbose_name_plural = "Risques financiers"
        ordering = ["-date_evaluation"]
        constraints = [
            models.UniqueConstraint(fields=["dossier", "date_evaluation"], name="uniq_risque_dossier_jour"),
            models.CheckConstraint(condition=models.Q(score__lte=100), name="risque_score_max_100"),
        ]

    def __str__(self) -> str:
        return f"{self.dossier_id} {self.date_evaluation}: {self.score} ({self.niveau})"


class Anomalie(models.Model):
    """ANOMALIE - Incohérence détectée, résolue ou ignorée par un opérateur."""

    class TypeChoices(models.TextChoices):
        DOUBLON_ELEVE = "doublon_eleve", "Doublon élève"
        ELEVE_CREDITEUR = "eleve_crediteur", "Élève créditeur"
        SOLDE_IMPORTANT = "solde_important", "Solde important"
        MONTANT_ABERRANT = "montant_aberrant", "Montant aberrant"
        DONNEES_MANQUANTES = "donnees_manquantes", "Données manquantes"
        MOYEN_MANQUANT = "moyen_manquant", "Moyen de paiement manquant"
        ECHEANCIER_INCOHERENT = "echeancier_incoherent", "Échéancier incohérent"

    class SeveriteChoices(models.TextChoices):
        INFO = "info", "Information"
        ALERTE = "alerte", "Alerte"
        CRITIQUE = "critique", "Critique"

    class StatutChoices(models.TextChoices):
        OUVERTE = "ouverte", "Ouverte"
        RESOLUE = "resolue", "Résolue"
        IGNOREE = "ignoree", "Ignorée"

    type_anomalie = models.CharField(max_length=32, choices=TypeChoices.choices, db_index=True)
    severite = models.CharField(
        max_length=16,
        choices=SeveriteChoices.choices,
        default=SeveriteChoices.ALERTE,
    )
    statut = models.CharField(
        max_length=16,
        choices=StatutChoices.choices,
        default=StatutChoices.OUVERTE,
        db_index=True,
    )
    description = models.TextField()
    details = models.JSONField(default=dict, blank=True)
    action_proposee = models.TextField(blank=True)
    dossier = models.ForeignKey(
        DossierScolarite,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="anomalies",
        db_column="dossier_id",
    )
    eleve = models.ForeignKey(
        Eleve,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="anomalies",
        db_column="eleve_id",
    )
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "ANOMALIE"
        verbose_name = "Anomalie"
        verbose_name_plural = "Anomalies"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["type_anomalie", "statut"], name="anomalie_type_statut_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.type_anomalie} ({self.statut})"

    def _cloturer(self, statut: str) -> None:
        if self.statut != self.StatutChoices.OUVERTE:
            raise ValidationError(f"L'anomalie n'est plus ouverte (statut: {self.statut}).")
        self.statut = statut
        self.resolved_at = timezone.now()
        self.save(update_fields=["statut", "resolved_at"])

    def resoudre(self) -> None:
        self._cloturer(self.StatutChoices.RESOLUE)

    def ignorer(self) -> None:
        self._cloturer(self.StatutChoices.IGNOREE)


class ImportFichier(models.Model):
    """IMPORT_FICHIER - Trace d'un import en masse et de son rapport de pertes."""

    class StatutChoices(models.TextChoices):
        EN_COURS = "en_cours", "En cours"
        TERMINE = "termine", "Terminé"
        ECHEC = "echec", "Échec"

    fichier_nom = models.CharField(max_length=255, blank=True)
    fichier_hash = models.CharField(max_length=64, db_index=True)
    statut = models.CharField(
        max_length=16,
        choices=StatutChoices.choices,
        default=StatutChoices.EN_COURS,
        db_index=True,
    )
    override = models.BooleanField(default=False)
    lignes_total = models.PositiveIntegerField(default=0)
    lignes_valides = models.PositiveIntegerField(default=0)
    lignes_inserees = models.PositiveIntegerField(default=0)
    lignes_rejetees = models.PositiveIntegerField(default=0)
    lignes_echec = models.PositiveIntegerField(default=0)
    rapport = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    termine_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "IMPORT_FICHIER"
        verbose_name = "Import"
        verbose_name_plural = "Imports"
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.fichier_nom or self.fichier_hash[:12]} ({self.statut})"


class Relance(models.Model):
    """
    RELANCE - Journal des relances envoyées à l'élève.

    Les relances automatiques montent d'un niveau (1 à 3) à chaque envoi,
    au plus une par dossier sur la période de carence.
    """

    class TypeChoices(models.TextChoices):
        AUTOMATIQUE = "automatique", "Automatique"
        RETARD = "retard", "Retard de paiement"
        ECHEANCE_PROCHE = "echeance_proche", "Échéance proche"

    class StatutChoices(models.TextChoices):
        ENVOYEE = "envoyee", "Envoyée"
        ECHEC = "echec", "Échec d'envoi"

    dossier = models.ForeignKey(
        DossierScolarite,
        on_delete=models.CASCADE,
        related_name="relances",
        db_column="dossier_id",
    )
    echeance = models.ForeignKey(
        Echeance,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="relances",
        db_column="echeance_id",
    )
    type_relance = models.CharField(max_length=16, choices=TypeChoices.choices, db_index=True)
    niveau_relance = models.PositiveSmallIntegerField(default=1)
    montant_du = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    canal = models.CharField(max_length=16, default="email")
    statut = models.CharField(
        max_length=16,
        choices=StatutChoices.choices,
        default=StatutChoices.ENVOYEE,
    )
    message = models.TextField(blank=True)
    date_envoi = models.DateField(default=timezone.localdate, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "RELANCE"
        verbose_name = "Relance"
        verbose_name_plural = "Relances"
        ordering = ["-date_envoi", "-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(niveau_relance__gte=1, niveau_relance__lte=3),
                name="relance_niveau_1_3",
            ),
        ]

    def __str__(self) -> str:
        return f"Relance {self.type_relance} n{self.niveau_relance} dossier {self.dossier_id}"


auditlog.register(DossierScolarite)
auditlog.register(Reglement)
auditlog.register(Echeance)
auditlog.register(Anomalie)
