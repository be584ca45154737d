"""
Import en masse des élèves, dossiers et règlements.

Chaque ligne est validée puis enregistrée indépendamment : une ligne rejetée
ou en échec d'insertion est consignée dans le rapport, le lot continue.
Le rapport distingue trois points de perte : lignes lues, lignes valides,
lignes enregistrées.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import transaction
from django.utils import timezone

from apps.academic.models import AnneeScolaire, Eleve, normaliser_email
from apps.finance.exceptions import DuplicateImport, DuplicateStudent, ImportRowError
from apps.finance.models import Anomalie, DossierScolarite, ImportFichier, Reglement
from audit.models import journaliser

from .anomaly_detector import AnomalyDetector
from .batch import FATAL_ERRORS, describe_error
from .config import LedgerConfig
from .csv_import import normaliser_date, normaliser_montant, normaliser_moyen
from .installment_scheduler import InstallmentScheduler
from .ledger_calculator import LedgerCalculator, arrondir
from .tasks import submit_best_effort

logger = logging.getLogger(__name__)

_ANNEE_SCOLAIRE = re.compile(r"^\d{4}_\d{4}$")

Types = Anomalie.TypeChoices
Severites = Anomalie.SeveriteChoices


@dataclass(frozen=True)
class ReglementImporte:
    montant: Decimal
    date_reglement: Optional[date]
    date_brute: str
    moyen_paiement: str
    moyen_brut: str
    numero_piece: str


@dataclass(frozen=True)
class LigneValidee:
    ligne: int
    email: str
    nom: str
    prenom: str
    immatriculation: Optional[str]
    telephone: str
    niveau: AnneeScolaire
    annee_scolaire: str
    tarif: Decimal
    tarif_absent: bool
    impaye_anterieur: Optional[Decimal]
    reglements: List[ReglementImporte]


@dataclass
class ImportReport:
    lignes_total: int = 0
    lignes_valides: int = 0
    lignes_inserees: int = 0
    lignes_rejetees: int = 0
    lignes_echec: int = 0
    eleves_crees: int = 0
    eleves_mis_a_jour: int = 0
    reglements_trouves: int = 0
    reglements_importes: int = 0
    reglements_ignores: int = 0
    reglements_en_attente: int = 0
    anomalies_creees: int = 0
    echeanciers_regeneres: int = 0
    echeanciers_en_echec: int = 0
    erreurs: List[Dict[str, Any]] = field(default_factory=list)
    avertissements: List[Dict[str, Any]] = field(default_factory=list)
    dossiers_affectes: Set[int] = field(default_factory=set)

    @property
    def reglements_perdus(self) -> int:
        return self.reglements_trouves - self.reglements_importes - self.reglements_ignores

    def fusionner(self, autre: "ImportReport") -> None:
        """Ajoute les compteurs d'une ligne enregistrée avec succès."""
        for nom in (
            "eleves_crees",
            "eleves_mis_a_jour",
            "reglements_importes",
            "reglements_ignores",
            "reglements_en_attente",
            "anomalies_creees",
        ):
            setattr(self, nom, getattr(self, nom) + getattr(autre, nom))
        self.avertissements.extend(autre.avertissements)
        self.dossiers_affectes.update(autre.dossiers_affectes)

    def rejeter(self, erreur: ImportRowError, email: str = "") -> None:
        if erreur.etape == "insertion":
            self.lignes_echec += 1
        else:
            self.lignes_rejetees += 1
        self.erreurs.append(
            {
                "ligne": erreur.ligne,
                "etape": erreur.etape,
                "email": email,
                "code": erreur.details.get("motif", erreur.code),
                "message": erreur.message,
            }
        )

    def resume(self) -> str:
        return (
            f"{self.lignes_total} lues -> {self.lignes_valides} valides -> "
            f"{self.lignes_inserees} enregistrées, {self.lignes_echec} échec(s) d'insertion"
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "lignes_total": self.lignes_total,
            "lignes_valides": self.lignes_valides,
            "lignes_inserees": self.lignes_inserees,
            "lignes_rejetees": self.lignes_rejetees,
            "lignes_echec": self.lignes_echec,
            "resume": self.resume(),
            "eleves_crees": self.eleves_crees,
            "eleves_mis_a_jour": self.eleves_mis_a_jour,
            "reglements_trouves": self.reglements_trouves,
            "reglements_importes": self.reglements_importes,
            "reglements_ignores": self.reglements_ignores,
            "reglements_en_attente": self.reglements_en_attente,
            "reglements_perdus": self.reglements_perdus,
            "anomalies_creees": self.anomalies_creees,
            "dossiers_affectes": len(self.dossiers_affectes),
            "echeanciers_regeneres": self.echeanciers_regeneres,
            "echeanciers_en_echec": self.echeanciers_en_echec,
            "erreurs": self.erreurs,
            "avertissements": self.avertissements,
        }


def _texte(valeur: Any) -> str:
    return str(valeur).strip() if valeur is not None else ""


def _numero_ligne(row: Any, index: int) -> int:
    """Numéro de ligne du fichier source (``_ligne``), à défaut la position dans le lot."""
    if not isinstance(row, Mapping):
        raise ImportRowError(f"Ligne illisible: {row!r}", index)
    brut = row.get("_ligne")
    if brut in (None, ""):
        return index
    try:
        return int(brut)
    except (TypeError, ValueError) as exc:
        raise ImportRowError(f"Numéro de ligne invalide: {brut!r}", index) from exc


class ImportReconciler:
    """Import idempotent : une empreinte déjà importée avec succès est refusée sauf ``override``."""

    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig.from_settings()
        self.calculator = LedgerCalculator(self.config)
        self.detector = AnomalyDetector(self.config)
        self.scheduler = InstallmentScheduler(self.config)

    def importer(
        self,
        fingerprint: str,
        rows: Iterable[Mapping[str, Any]],
        override: bool = False,
        fichier_nom: str = "",
        today: Optional[date] = None,
    ) -> ImportFichier:
        """
        Importe les lignes et retourne le job ; son rapport est dans ``job.rapport``.

        Raises:
            DuplicateImport: empreinte déjà importée et ``override`` faux
        """
        today = today or timezone.localdate()
        precedent = (
            ImportFichier.objects.filter(fichier_hash=fingerprint, statut=ImportFichier.StatutChoices.TERMINE)
            .order_by("-created_at")
            .first()
        )
        if precedent is not None and not override:
            raise DuplicateImport(fingerprint, precedent.pk)

        job = ImportFichier.objects.create(
            fichier_nom=fichier_nom,
            fichier_hash=fingerprint,
            override=override,
            statut=ImportFichier.StatutChoices.EN_COURS,
        )
        rapport = ImportReport()
        try:
            self._traiter_lignes(list(rows), rapport, today)
            self._regenerer_echeanciers(rapport, today)
        except Exception as exc:
            logger.error("Import %s interrompu: %s", job.pk, exc, exc_info=True)
            self._terminer(job, rapport, ImportFichier.StatutChoices.ECHEC, erreur=describe_error(exc))
            raise

        self._terminer(job, rapport, ImportFichier.StatutChoices.TERMINE)
        logger.info("Import %s (%s): %s", job.pk, fingerprint[:12], rapport.resume())
        journaliser(
            "IMPORT_COMPLETED",
            "IMPORT_FICHIER",
            job.pk,
            payload={
                "fichier_hash": fingerprint,
                "override": override,
                "lignes_total": rapport.lignes_total,
                "lignes_inserees": rapport.lignes_inserees,
                "lignes_rejetees": rapport.lignes_rejetees,
                "lignes_echec": rapport.lignes_echec,
            },
        )
        return job

    def _terminer(self, job: ImportFichier, rapport: ImportReport, statut: str, erreur: str = "") -> None:
        job.statut = statut
        job.lignes_total = rapport.lignes_total
        job.lignes_valides = rapport.lignes_valides
        job.lignes_inserees = rapport.lignes_inserees
        job.lignes_rejetees = rapport.lignes_rejetees
        job.lignes_echec = rapport.lignes_echec
        job.rapport = rapport.as_dict()
        if erreur:
            job.rapport["erreur_fatale"] = erreur
        job.termine_at = timezone.now()
        try:
            job.save()
        except FATAL_ERRORS:
            if statut != ImportFichier.StatutChoices.ECHEC:
                raise
            logger.error("Import %s: statut d'échec non enregistré", job.pk)

    def _traiter_lignes(self, rows: List[Mapping[str, Any]], rapport: ImportReport, today: date) -> None:
        emails_vus: Set[str] = set()
        for index, row in enumerate(rows, start=1):
            rapport.lignes_total += 1
            numero, email = index, ""
            try:
                numero = _numero_ligne(row, index)
                email = normaliser_email(_texte(row.get("email")))
                ligne = self.valider(row, numero, emails_vus)
            except ImportRowError as erreur:
                rapport.rejeter(erreur, email)
                continue
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("Import ligne %s illisible: %s", numero, describe_error(exc))
                rapport.rejeter(ImportRowError(f"Ligne illisible: {describe_error(exc)}", numero), email)
                continue
            # Seule une ligne valide réserve son e-mail dans le fichier.
            emails_vus.add(ligne.email)
            rapport.lignes_valides += 1
            rapport.reglements_trouves += len(ligne.reglements)

            partiel = ImportReport()
            try:
                with transaction.atomic():
                    self.enregistrer(ligne, partiel, today)
            except FATAL_ERRORS:
                raise
            except Exception as exc:
                logger.warning("Import ligne %s (%s): %s", numero, ligne.email, describe_error(exc))
                rapport.rejeter(ImportRowError(describe_error(exc), numero, etape="insertion"), ligne.email)
                continue
            rapport.lignes_inserees += 1
            rapport.fusionner(partiel)

    # Validation

    def _niveau(self, libelle: str, numero: int) -> AnneeScolaire:
        libelle = libelle or self.config.default_level_label
        niveau = AnneeScolaire.objects.filter(libelle__iexact=libelle).first()
        if niveau is None:
            raise ImportRowError(f"Niveau inconnu: {libelle!r}", numero)
        return niveau

    def _montant(self, valeur: Any, champ: str, numero: int) -> Optional[Decimal]:
        try:
            return normaliser_montant(valeur)
        except ValueError as exc:
            raise ImportRowError(f"{champ}: {exc}", numero) from exc

    def valider(self, row: Mapping[str, Any], numero: int, emails_vus: Optional[Set[str]] = None) -> LigneValidee:
        """Valide une ligne brute. Lève ImportRowError (étape « validation »)."""
        email = normaliser_email(_texte(row.get("email")))
        if not email:
            raise ImportRowError("E-mail manquant", numero)
        try:
            validate_email(email)
        except ValidationError as exc:
            raise ImportRowError(f"E-mail invalide: {email}", numero) from exc
        if emails_vus is not None and email in emails_vus:
            raise ImportRowError(
                f"E-mail présent plusieurs fois dans le fichier: {email}",
                numero,
                motif="doublon_fichier",
            )

        immatriculation = _texte(row.get("immatriculation")) or None
        if immatriculation:
            autre = Eleve.objects.filter(immatriculation=immatriculation).exclude(email=email).first()
            if autre is not None:
                raise ImportRowError(
                    f"Immatriculation {immatriculation} déjà attribuée à {autre.email}",
                    numero,
                    motif=DuplicateStudent.code,
                )

        annee_scolaire = _texte(row.get("annee_scolaire")) or self.config.current_school_year
        if not _ANNEE_SCOLAIRE.match(annee_scolaire):
            raise ImportRowError(f"Année scolaire invalide: {annee_scolaire!r}", numero)

        tarif = self._montant(row.get("tarif"), "Tarif", numero)
        if tarif is not None and tarif < 0:
            raise ImportRowError(f"Tarif négatif: {tarif}", numero)
        impaye = self._montant(row.get("impaye_anterieur"), "Impayé antérieur", numero)
        if impaye is not None and impaye < 0:
            raise ImportRowError(f"Impayé antérieur négatif: {impaye}", numero)

        bruts = row.get("reglements") or []
        if not isinstance(bruts, (list, tuple)):
            raise ImportRowError("« reglements » doit être une liste", numero)
        reglements: List[ReglementImporte] = []
        for position, brut in enumerate(bruts, start=1):
            if not isinstance(brut, Mapping):
                raise ImportRowError(f"Règlement {position} illisible: {brut!r}", numero)
            montant = self._montant(brut.get("montant"), f"Règlement {position}", numero)
            if montant is None or montant == 0:
                continue
            date_brute = _texte(brut.get("date"))
            moyen_brut = _texte(brut.get("moyen"))
            reglements.append(
                ReglementImporte(
                    montant=arrondir(montant),
                    date_reglement=normaliser_date(brut.get("date"), annee_scolaire),
                    date_brute=date_brute,
                    moyen_paiement=normaliser_moyen(moyen_brut),
                    moyen_brut=moyen_brut,
                    numero_piece=_texte(brut.get("numero_piece"))[:64],
                )
            )

        nom = _texte(row.get("nom")) or email.split("@", 1)[0]
        return LigneValidee(
            ligne=numero,
            email=email,
            nom=nom[:150],
            prenom=_texte(row.get("prenom"))[:150],
            immatriculation=immatriculation,
            telephone=_texte(row.get("telephone"))[:32],
            niveau=self._niveau(_texte(row.get("annee")), numero),
            annee_scolaire=annee_scolaire,
            tarif=arrondir(tarif) if tarif is not None else Decimal("0.00"),
            tarif_absent=tarif is None or tarif == 0,
            impaye_anterieur=arrondir(impaye) if impaye is not None else None,
            reglements=reglements,
        )

    # Écriture

    def enregistrer(self, ligne: LigneValidee, rapport: ImportReport, today: date) -> DossierScolarite:
        eleve = Eleve.objects.filter(email=ligne.email).first()
        if eleve is None:
            eleve = Eleve(email=ligne.email)
            rapport.eleves_crees += 1
        else:
            rapport.eleves_mis_a_jour += 1
        eleve.nom = ligne.nom
        if ligne.prenom:
            eleve.prenom = ligne.prenom
        if ligne.telephone:
            eleve.telephone = ligne.telephone
        if ligne.immatriculation:
            eleve.immatriculation = ligne.immatriculation
        eleve.save()

        dossier = DossierScolarite.objects.filter(eleve=eleve, annee_scolaire=ligne.annee_scolaire).first()
        if dossier is None:
            dossier = DossierScolarite(eleve=eleve, annee_scolaire=ligne.annee_scolaire)
        dossier.niveau = ligne.niveau
        if not ligne.tarif_absent or dossier.pk is None:
            dossier.tarif_scolarite = ligne.tarif
        if ligne.impaye_anterieur is not None:
            dossier.impaye_anterieur = ligne.impaye_anterieur
        dossier.full_clean(validate_unique=False)
        dossier.save()
        rapport.dossiers_affectes.add(dossier.pk)

        for reglement in ligne.reglements:
            self._enregistrer_reglement(dossier, reglement, ligne.ligne, rapport, today)

        self._anomalies_import(dossier, ligne, rapport)
        return dossier

    def _enregistrer_reglement(
        self,
        dossier: DossierScolarite,
        reglement: ReglementImporte,
        numero: int,
        rapport: ImportReport,
        today: date,
    ) -> None:
        date_reglement = reglement.date_reglement or today
        statut = Reglement.StatutChoices.VALIDE
        commentaire = "Import"
        if reglement.date_reglement is None:
            statut = Reglement.StatutChoices.EN_ATTENTE
            commentaire = f"Import - date illisible: {reglement.date_brute!r}"

        doublon = Reglement.objects.filter(
            dossier=dossier,
            montant=reglement.montant,
            moyen_paiement=reglement.moyen_paiement,
            numero_piece=reglement.numero_piece,
        )
        if reglement.date_reglement is not None:
            doublon = doublon.filter(date_reglement=reglement.date_reglement)
        else:
            doublon = doublon.filter(statut=Reglement.StatutChoices.EN_ATTENTE, commentaire=commentaire)
        if doublon.exists():
            rapport.reglements_ignores += 1
            return

        nouveau = Reglement(
            dossier=dossier,
            montant=reglement.montant,
            date_reglement=date_reglement,
            moyen_paiement=reglement.moyen_paiement,
            statut=statut,
            numero_piece=reglement.numero_piece,
            commentaire=commentaire,
        )
        # Historique du fichier : pas d'accusé de réception à l'élève.
        nouveau._sans_notification = True
        nouveau.save()
        rapport.reglements_importes += 1
        if statut == Reglement.StatutChoices.EN_ATTENTE:
            rapport.reglements_en_attente += 1
            rapport.avertissements.append(
                {
                    "ligne": numero,
                    "message": f"Règlement de {reglement.montant} importé en attente: date {reglement.date_brute!r} illisible",
                }
            )

    def _anomalies_import(self, dossier: DossierScolarite, ligne: LigneValidee, rapport: ImportReport) -> None:
        signalements = []
        if dossier.tarif_scolarite <= 0:
            signalements.append(
                dict(
                    type_anomalie=Types.DONNEES_MANQUANTES,
                    description=f"Tarif manquant pour {ligne.email} (ligne {ligne.ligne}).",
                    severite=Severites.ALERTE,
                    action_proposee="Renseigner le tarif de scolarité du dossier.",
                )
            )
        else:
            seuil = dossier.tarif_scolarite * self.config.aberrant_payment_ratio
            aberrants = [r for r in ligne.reglements if r.montant > seuil]
            if aberrants:
                signalements.append(
                    dict(
                        type_anomalie=Types.MONTANT_ABERRANT,
                        description=f"Règlement supérieur à {self.config.aberrant_payment_ratio}x le tarif (ligne {ligne.ligne}).",
                        severite=Severites.CRITIQUE,
                        details={"montants": [str(r.montant) for r in aberrants]},
                        action_proposee="Contrôler la saisie du montant.",
                    )
                )
        sans_moyen = [r for r in ligne.reglements if not r.moyen_paiement]
        if sans_moyen:
            signalements.append(
                dict(
                    type_anomalie=Types.MOYEN_MANQUANT,
                    description=f"{len(sans_moyen)} règlement(s) sans moyen de paiement reconnu (ligne {ligne.ligne}).",
                    severite=Severites.INFO,
                    details={"moyens": [r.moyen_brut for r in sans_moyen]},
                    action_proposee="Compléter le moyen de paiement.",
                )
            )
        solde = self.calculator.calculer(dossier)
        if solde.balance < self.config.creditor_threshold:
            signalements.append(
                dict(
                    type_anomalie=Types.ELEVE_CREDITEUR,
                    description=f"Trop-perçu de {-solde.balance} après import (ligne {ligne.ligne}).",
                    severite=Severites.ALERTE,
                    details={"solde": str(solde.balance), "total_verse": str(solde.total_paid)},
                    action_proposee="Vérifier les règlements et prévoir un remboursement ou un report.",
                )
            )
        for signalement in signalements:
            _, created = self.detector.signaler(dossier=dossier, **signalement)
            if created:
                rapport.anomalies_creees += 1

    # Suite de l'import

    def _regenerer_echeanciers(self, rapport: ImportReport, today: date) -> None:
        """Régénère l'échéancier des dossiers touchés ; un échec n'annule pas l'import."""
        dossiers = DossierScolarite.objects.filter(
            pk__in=rapport.dossiers_affectes,
            statut_dossier=DossierScolarite.StatutDossierChoices.EN_COURS,
            tarif_scolarite__gt=0,
        ).order_by("pk")
        for dossier in dossiers:
            resultat = submit_best_effort(
                f"échéancier dossier {dossier.pk}",
                self.scheduler.generer,
                dossier,
                force=True,
                today=today,
            )
            if resultat.ok:
                rapport.echeanciers_regeneres += 1
            else:
                rapport.echeanciers_en_echec += 1
                rapport.avertissements.append(
                    {"dossier": dossier.pk, "message": f"Échéancier non régénéré: {resultat.error}"}
                )
