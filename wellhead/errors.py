"""
Exceptions du moteur de distribution.

- ValidationError: saisie invalide, levée avant tout calcul ou écriture
- PersistenceError: échec de l'écriture durable (réessayable)
- ConcurrentPayoutError: révision périmée lors d'un recalcul concurrent
- ReconstructionDegraded: simple drapeau (jamais levé) posé sur un relevé
  reconstruit à partir des agrégats stockés
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


class WellheadError(Exception):
    """Base de toutes les erreurs du portail."""

    def __init__(
        self,
        message: str,
        code: str = "WELLHEAD_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(WellheadError):
    def __init__(
        self, field: str, message: str, details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(f"{field}: {message}", "VALIDATION_ERROR", details)
        self.field = field


class PersistenceError(WellheadError):
    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        retryable: bool = True,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, "PERSISTENCE_ERROR", details)
        self.operation = operation
        self.retryable = retryable


class ConcurrentPayoutError(PersistenceError):
    """Un autre calcul a déjà réécrit la période depuis la lecture."""

    def __init__(self, expected: int, found: int):
        super().__init__(
            f"Révision attendue {expected}, trouvée {found}",
            operation="persist_payout",
            retryable=False,
            details={"expected_revision": expected, "found_revision": found},
        )
        self.expected = expected
        self.found = found


@dataclass(frozen=True)
class ReconstructionDegraded:
    reason: str
    missing: Tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        if self.missing:
            return f"{self.reason} (manquant: {', '.join(self.missing)})"
        return self.reason


__all__ = [
    "WellheadError",
    "ValidationError",
    "PersistenceError",
    "ConcurrentPayoutError",
    "ReconstructionDegraded",
]
