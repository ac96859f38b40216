from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from .errors import ValidationError

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

_CURRENCY_NOISE = re.compile(r"[\s$,]")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """Convertit un montant saisi en Decimal.
    Les floats passent par str() pour éviter de traîner l'erreur binaire.
    Les chaînes peuvent contenir '$', des espaces et des séparateurs de milliers.
    """
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(field, f"montant invalide: {value!r}")
    elif isinstance(value, int):
        dec = Decimal(value)
    elif isinstance(value, float):
        dec = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = _CURRENCY_NOISE.sub("", value)
        if not cleaned:
            raise ValidationError(field, "valeur vide")
        try:
            dec = Decimal(cleaned)
        except InvalidOperation:
            raise ValidationError(field, f"montant invalide: {value!r}") from None
    else:
        try:
            dec = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(field, f"montant invalide: {value!r}") from None
    if not dec.is_finite():
        raise ValidationError(field, f"montant non fini: {value!r}")
    return dec


def optional_decimal(value: Any, field: str = "value") -> Optional[Decimal]:
    """Comme to_decimal mais laisse passer None / NaN (colonnes SQL ou pandas vides)."""
    if value is None:
        return None
    if isinstance(value, float) and value != value:
        return None
    return to_decimal(value, field)


def quantize_cents(value: Decimal) -> Decimal:
    # Uniquement à l'affichage / export, jamais au milieu du calcul
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_usd(value: Any) -> str:
    if value is None:
        return "-"
    dec = quantize_cents(to_decimal(value))
    sign = "-" if dec < 0 else ""
    return f"{sign}${abs(dec):,.2f}"


def cent_tolerance(count: int) -> Decimal:
    return CENT * max(int(count), 1)
