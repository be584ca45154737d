"""
Lecture des exports tableur de la scolarité (CSV) et normalisation des valeurs.

Les en-têtes sont canonisés (minuscules, sans accents ni ponctuation) :
« Tarif Scolarité » et « tarif_scolarite » désignent la même colonne.
"""

from __future__ import annotations

import csv
import hashlib
import io
import re
import unicodedata
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from django.utils.dateparse import parse_date

MAX_COLONNES_REGLEMENT = 13

ALIAS_COLONNES: Dict[str, str] = {
    "nom": "nom",
    "name": "nom",
    "nomdefamille": "nom",
    "prenom": "prenom",
    "prenoms": "prenom",
    "firstname": "prenom",
    "email": "email",
    "mail": "email",
    "courriel": "email",
    "adresseemail": "email",
    "emaileleve": "email",
    "immatriculation": "immatriculation",
    "matricule": "immatriculation",
    "numeroetudiant": "immatriculation",
    "telephone": "telephone",
    "tel": "telephone",
    "portable": "telephone",
    "annee": "annee",
    "niveau": "annee",
    "classe": "annee",
    "anneescolaire": "annee_scolaire",
    "anneeuniversitaire": "annee_scolaire",
    "tarifscolarite": "tarif",
    "tarif": "tarif",
    "fraisscolarite": "tarif",
    "impayeanterieur": "impaye_anterieur",
    "impaye": "impaye_anterieur",
    "reportanterieur": "impaye_anterieur",
    "acompte": "montantrglt1",
    "montantacompte": "montantrglt1",
}

ALIAS_MOYENS: Dict[str, str] = {
    "especes": "especes",
    "espece": "especes",
    "liquide": "especes",
    "cash": "especes",
    "carte": "carte",
    "cb": "carte",
    "cartebancaire": "carte",
    "tpe": "carte",
    "virement": "virement",
    "vir": "virement",
    "virementbancaire": "virement",
    "cheque": "cheque",
    "chq": "cheque",
    "prelevement": "prelevement",
    "prlv": "prelevement",
    "sepa": "prelevement",
    "mobile": "mobile",
    "mobilemoney": "mobile",
    "momo": "mobile",
    "om": "mobile",
    "orangemoney": "mobile",
}

_DATE_JJ_MM_AAAA = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{2}|\d{4})$")
_DATE_JJ_MM = re.compile(r"^(\d{1,2})[/.-](\d{1,2})$")
_ANNEE_SCOLAIRE = re.compile(r"^(\d{4})[_/-](\d{4})$")


def canoniser(texte: Any) -> str:
    """« Date Rglt 2 » -> « daterglt2 »."""
    decompose = unicodedata.normalize("NFKD", str(texte or ""))
    sans_accents = "".join(c for c in decompose if not unicodedata.combining(c))
    return re.sub(r"[^a-z0-9]", "", sans_accents.lower())


def fingerprint_content(content: Union[str, bytes]) -> str:
    """Empreinte SHA-256 du contenu brut du fichier."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def normaliser_montant(valeur: Any) -> Optional[Decimal]:
    """
    « 1 250,50 € » -> Decimal("1250.50"). Retourne None pour une cellule vide.

    Raises:
        ValueError: montant illisible
    """
    if valeur is None:
        return None
    if isinstance(valeur, Decimal):
        return valeur
    if isinstance(valeur, (int, float)):
        return Decimal(str(valeur))
    texte = str(valeur).strip()
    for parasite in ("\u00a0", "\u202f", " ", "€", "EUR", "eur"):
        texte = texte.replace(parasite, "")
    if not texte or texte in {"-", "—"}:
        return None
    if "," in texte and "." in texte:
        # Le dernier séparateur est la marque décimale : « 1.250,50 » ou « 1,250.50 ».
        if texte.rfind(",") > texte.rfind("."):
            texte = texte.replace(".", "").replace(",", ".")
        else:
            texte = texte.replace(",", "")
    elif "," in texte:
        texte = texte.replace(",", ".")
    try:
        montant = Decimal(texte)
    except InvalidOperation as exc:
        raise ValueError(f"Montant illisible: {valeur!r}") from exc
    if not montant.is_finite():
        raise ValueError(f"Montant illisible: {valeur!r}")
    return montant


def _annee_pour_mois(mois: int, annee_scolaire: str) -> Optional[int]:
    match = _ANNEE_SCOLAIRE.match(annee_scolaire or "")
    if not match:
        return None
    debut, fin = int(match.group(1)), int(match.group(2))
    return debut if mois >= 9 else fin


def normaliser_date(valeur: Any, annee_scolaire: str = "") -> Optional[date]:
    """
    Accepte JJ/MM/AAAA, JJ/MM/AA, JJ/MM (année déduite de l'année scolaire) et AAAA-MM-JJ.
    Retourne None pour une date absente ou illisible (ex: « IMPAYE »).
    """
    if valeur is None:
        return None
    if isinstance(valeur, date):
        return valeur
    texte = str(valeur).strip()
    if not texte:
        return None
    try:
        iso = parse_date(re.split(r"[T ]", texte, maxsplit=1)[0])
        if iso is not None:
            return iso
        match = _DATE_JJ_MM_AAAA.match(texte)
        if match:
            annee = int(match.group(3))
            if annee < 100:
                annee += 2000
            return date(annee, int(match.group(2)), int(match.group(1)))
        match = _DATE_JJ_MM.match(texte)
        if match:
            mois = int(match.group(2))
            annee = _annee_pour_mois(mois, annee_scolaire)
            if annee is None:
                return None
            return date(annee, mois, int(match.group(1)))
    except ValueError:
        return None
    return None


def normaliser_moyen(valeur: Any) -> str:
    """Retourne le code du moyen de paiement, ou une chaîne vide s'il est inconnu."""
    return ALIAS_MOYENS.get(canoniser(valeur), "")


def _colonne(entete: str) -> Optional[str]:
    cle = canoniser(entete)
    if cle in ALIAS_COLONNES:
        return ALIAS_COLONNES[cle]
    if re.fullmatch(r"(montant|moyen|date|piece)rglt\d{1,2}", cle):
        return cle
    return None


def parse_csv_content(content: Union[str, bytes], max_reglements: int = MAX_COLONNES_REGLEMENT) -> List[Dict[str, Any]]:
    """
    Transforme le contenu d'un export CSV en lignes prêtes pour ImportReconciler.

    Les valeurs restent brutes (chaînes) : la validation et la normalisation
    sont faites ligne par ligne par le réconciliateur.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig")
    content = content.lstrip("\ufeff")
    if not content.strip():
        return []

    premiere_ligne = content.splitlines()[0]
    separateur = max((";", ",", "\t"), key=premiere_ligne.count)

    lecteur = csv.reader(io.StringIO(content), delimiter=separateur)
    entetes = next(lecteur, None) or []
    colonnes = [_colonne(entete) for entete in entetes]

    lignes: List[Dict[str, Any]] = []
    for numero, cellules in enumerate(lecteur, start=2):
        if not any((cellule or "").strip() for cellule in cellules):
            continue
        brut: Dict[str, str] = {}
        for colonne, cellule in zip(colonnes, cellules):
            if colonne and colonne not in brut:
                brut[colonne] = (cellule or "").strip()

        reglements = []
        for n in range(1, max_reglements + 1):
            montant = brut.get(f"montantrglt{n}", "")
            if not montant:
                continue
            reglements.append(
                {
                    "montant": montant,
                    "date": brut.get(f"daterglt{n}", ""),
                    "moyen": brut.get(f"moyenrglt{n}", ""),
                    "numero_piece": brut.get(f"piecerglt{n}", ""),
                }
            )

        ligne: Dict[str, Any] = {
            "_ligne": numero,
            "reglements": reglements,
        }
        for champ in (
            "nom",
            "prenom",
            "email",
            "immatriculation",
            "telephone",
            "annee",
            "annee_scolaire",
            "tarif",
            "impaye_anterieur",
        ):
            if champ in brut:
                ligne[champ] = brut[champ]
        lignes.append(ligne)
    return lignes
