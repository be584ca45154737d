from __future__ import annotations

from django.contrib import admin

from .models import Anomalie, DossierScolarite, Echeance, ImportFichier, Reglement, Relance, RisqueFinancier


class ReglementInline(admin.TabularInline):
    model = Reglement
    extra = 0
    fields = ("montant", "date_reglement", "moyen_paiement", "statut", "numero_piece")


class EcheanceInline(admin.TabularInline):
    model = Echeance
    extra = 0
    fields = ("montant", "date_echeance", "statut", "origine", "reglement")
    readonly_fields = ("reglement",)


@admin.register(DossierScolarite)
class DossierScolariteAdmin(admin.ModelAdmin):
    list_display = (
        "eleve",
        "annee_scolaire",
        "niveau",
        "tarif_scolarite",
        "impaye_anterieur",
        "solde",
        "statut_paiement",
        "statut_dossier",
    )
    list_filter = ("annee_scolaire", "statut_dossier", "statut_paiement", "niveau")
    search_fields = ("eleve__nom", "eleve__prenom", "eleve__email")
    readonly_fields = ("solde", "statut_paiement")
    inlines = (ReglementInline, EcheanceInline)


@admin.register(Reglement)
class ReglementAdmin(admin.ModelAdmin):
    list_display = ("dossier", "montant", "date_reglement", "moyen_paiement", "statut")
    list_filter = ("statut", "moyen_paiement")
    search_fields = ("dossier__eleve__email", "numero_piece")


@admin.register(Echeance)
class EcheanceAdmin(admin.ModelAdmin):
    list_display = ("dossier", "montant", "date_echeance", "statut", "origine")
    list_filter = ("statut", "origine")


@admin.register(RisqueFinancier)
class RisqueFinancierAdmin(admin.ModelAdmin):
    list_display = ("dossier", "score", "niveau", "date_evaluation")
    list_filter = ("niveau",)


@admin.register(Anomalie)
class AnomalieAdmin(admin.ModelAdmin):
    list_display = ("type_anomalie", "severite", "statut", "dossier", "eleve", "created_at")
    list_filter = ("type_anomalie", "severite", "statut")
    search_fields = ("description",)


@admin.register(ImportFichier)
class ImportFichierAdmin(admin.ModelAdmin):
    list_display = ("fichier_nom", "statut", "lignes_total", "lignes_inserees", "lignes_rejetees", "created_at")
    list_filter = ("statut",)
    readonly_fields = ("fichier_hash", "rapport")


@admin.register(Relance)
class RelanceAdmin(admin.ModelAdmin):
    list_display = ("dossier", "type_relance", "niveau_relance", "montant_du", "statut", "date_envoi")
    list_filter = ("type_relance", "niveau_relance", "statut")
    readonly_fields = ("message",)
