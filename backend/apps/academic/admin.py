from __future__ import annotations

from django.contrib import admin

from .models import AnneeScolaire, Eleve


@admin.register(AnneeScolaire)
class AnneeScolaireAdmin(admin.ModelAdmin):
    list_display = ("libelle", "ordre", "est_terminale", "par_defaut")
    ordering = ("ordre",)


@admin.register(Eleve)
class EleveAdmin(admin.ModelAdmin):
    list_display = ("nom", "prenom", "email", "immatriculation", "statut_inscription")
    list_filter = ("statut_inscription",)
    search_fields = ("nom", "prenom", "email", "immatriculation")
