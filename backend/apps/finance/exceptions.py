"""Erreurs métier du grand livre de scolarité."""

from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Erreur métier portant un code stable, exposé tel quel par l'API."""

    code = "ledger_error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.details: Dict[str, Any] = details

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.code

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            data["details"] = self.details
        return data


class AlreadyScheduled(LedgerError):
    """Un échéancier existe déjà pour ce dossier."""

    code = "already_scheduled"


class InvalidTariff(LedgerError):
    """Le tarif du dossier doit être strictement positif."""

    code = "invalid_tariff"


class DuplicateImport(LedgerError):
    """Ce fichier a déjà été importé."""

    code = "duplicate_import"

    def __init__(self, fingerprint: str, job_id: Optional[int] = None):
        super().__init__(
            f"Le fichier {fingerprint[:12]} a déjà été importé (import #{job_id}).",
            fingerprint=fingerprint,
            import_id=job_id,
        )
        self.fingerprint = fingerprint
        self.job_id = job_id


class DuplicateStudent(LedgerError):
    """Un autre élève porte déjà cet identifiant."""

    code = "duplicate_student"


class ScheduleConsistencyError(LedgerError):
    """Le total de l'échéancier ne correspond pas au montant dû."""

    code = "schedule_inconsistent"


class RolloverError(LedgerError):
    """Le dossier ne peut pas passer à l'année suivante."""

    code = "rollover_error"


class ImportRowError(LedgerError):
    """Ligne d'import rejetée."""

    code = "import_row_error"

    def __init__(self, message: str, ligne: int, etape: str = "validation", **details: Any):
        super().__init__(message, ligne=ligne, etape=etape, **details)
        self.ligne = ligne
        self.etape = etape
