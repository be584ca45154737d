from __future__ import annotations

import json

from rest_framework import serializers

from apps.academic.models import AnneeScolaire, Eleve, normaliser_email
from apps.finance.models import (
    Anomalie,
    DossierScolarite,
    Echeance,
    ImportFichier,
    Reglement,
    Relance,
    RisqueFinancier,
)
from apps.finance.services.csv_import import fingerprint_content, parse_csv_content


class AnneeScolaireSerializer(serializers.ModelSerializer):
    class Meta:
        model = AnneeScolaire
        fields = ("id", "libelle", "ordre", "est_terminale", "par_defaut")


class EleveSerializer(serializers.ModelSerializer):
    nom_complet = serializers.CharField(read_only=True)

    class Meta:
        model = Eleve
        fields = (
            "id",
            "nom",
            "prenom",
            "nom_complet",
            "email",
            "immatriculation",
            "telephone",
            "adresse",
            "date_naissance",
            "statut_inscription",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("created_at", "updated_at")

    def validate_email(self, value: str) -> str:
        email = normaliser_email(value)
        doublons = Eleve.objects.filter(email=email)
        if self.instance is not None:
            doublons = doublons.exclude(pk=self.instance.pk)
        if doublons.exists():
            raise serializers.ValidationError("Un élève avec cet e-mail existe déjà.")
        return email


class DossierScolariteSerializer(serializers.ModelSerializer):
    eleve_email = serializers.EmailField(source="eleve.email", read_only=True)
    niveau_libelle = serializers.CharField(source="niveau.libelle", read_only=True)

    class Meta:
        model = DossierScolarite
        fields = (
            "id",
            "eleve",
            "eleve_email",
            "niveau",
            "niveau_libelle",
            "annee_scolaire",
            "tarif_scolarite",
            "impaye_anterieur",
            "statut_dossier",
            "solde",
            "statut_paiement",
            "commentaire",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("solde", "statut_paiement", "created_at", "updated_at")

    def validate_statut_dossier(self, value: str) -> str:
        if self.instance is not None and not self.instance.est_actif and value != self.instance.statut_dossier:
            raise serializers.ValidationError("Un dossier clôturé ne peut pas être rouvert.")
        return value


class ReglementSerializer(serializers.ModelSerializer):
    class Meta:
        model = Reglement
        fields = (
            "id",
            "dossier",
            "montant",
            "date_reglement",
            "moyen_paiement",
            "statut",
            "numero_piece",
            "commentaire",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("created_at", "updated_at")

    def validate(self, attrs):  # type: ignore[override]
        if self.instance is not None and "dossier" in attrs and attrs["dossier"] != self.instance.dossier:
            raise serializers.ValidationError({"dossier": "Un règlement ne change pas de dossier."})
        return attrs


class EcheanceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Echeance
        fields = (
            "id",
            "dossier",
            "montant",
            "date_echeance",
            "statut",
            "origine",
            "reglement",
            "commentaire",
        )
        read_only_fields = fields


class RisqueFinancierSerializer(serializers.ModelSerializer):
    class Meta:
        model = RisqueFinancier
        fields = ("id", "dossier", "score", "niveau", "facteurs", "recommandation", "date_evaluation")
        read_only_fields = fields


class RelanceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Relance
        fields = (
            "id",
            "dossier",
            "echeance",
            "type_relance",
            "niveau_relance",
            "montant_du",
            "canal",
            "statut",
            "message",
            "date_envoi",
        )
        read_only_fields = fields


class AnomalieSerializer(serializers.ModelSerializer):
    class Meta:
        model = Anomalie
        fields = (
            "id",
            "type_anomalie",
            "severite",
            "statut",
            "description",
            "details",
            "action_proposee",
            "dossier",
            "eleve",
            "resolved_at",
            "created_at",
        )
        read_only_fields = fields


class ImportFichierSerializer(serializers.ModelSerializer):
    class Meta:
        model = ImportFichier
        fields = (
            "id",
            "fichier_nom",
            "fichier_hash",
            "statut",
            "override",
            "lignes_total",
            "lignes_valides",
            "lignes_inserees",
            "lignes_rejetees",
            "lignes_echec",
            "rapport",
            "created_at",
            "termine_at",
        )
        read_only_fields = fields


class GenererEcheancierSerializer(serializers.Serializer):
    force = serializers.BooleanField(default=False)


class CloturerDossierSerializer(serializers.Serializer):
    statut = serializers.ChoiceField(
        choices=[DossierScolarite.StatutDossierChoices.CLOTURE, DossierScolarite.StatutDossierChoices.RESILIE],
        default=DossierScolarite.StatutDossierChoices.CLOTURE,
    )
    motif = serializers.CharField(required=False, allow_blank=True, default="")


class PayerEcheanceSerializer(serializers.Serializer):
    reglement = serializers.PrimaryKeyRelatedField(queryset=Reglement.objects.all())


class ImportRequestSerializer(serializers.Serializer):
    """
    Import par lignes déjà analysées (``rows``) ou par contenu CSV brut (``content``).
    Sans ``content_fingerprint``, l'empreinte est calculée sur le contenu reçu.
    """

    content_fingerprint = serializers.CharField(required=False, allow_blank=True, max_length=64)
    rows = serializers.ListField(child=serializers.DictField(), required=False)
    content = serializers.CharField(required=False, allow_blank=False, trim_whitespace=False)
    fichier_nom = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    override = serializers.BooleanField(default=False)

    def validate_rows(self, value):
        for position, row in enumerate(value, start=1):
            reglements = row.get("reglements")
            if reglements in (None, ""):
                continue
            if not isinstance(reglements, list) or not all(isinstance(r, dict) for r in reglements):
                raise serializers.ValidationError(
                    f"Ligne {position}: « reglements » doit être une liste d'objets."
                )
        return value

    def validate(self, attrs):  # type: ignore[override]
        content = attrs.get("content")
        rows = attrs.get("rows")
        if content is None and rows is None:
            raise serializers.ValidationError("Fournir « rows » ou « content ».")
        if content is not None and rows is not None:
            raise serializers.ValidationError("« rows » et « content » sont exclusifs.")
        if content is not None:
            attrs["rows"] = parse_csv_content(content)
            attrs["content_fingerprint"] = attrs.get("content_fingerprint") or fingerprint_content(content)
        elif not attrs.get("content_fingerprint"):
            attrs["content_fingerprint"] = fingerprint_content(
                json.dumps(rows, sort_keys=True, ensure_ascii=False, default=str)
            )
        return attrs


class RolloverRequestSerializer(serializers.Serializer):
    annee_courante = serializers.RegexField(r"^\d{4}_\d{4}$", required=False)
    annee_suivante = serializers.RegexField(r"^\d{4}_\d{4}$", required=False)
