"""
Configuration du portail.
Lecture des réglages depuis l'environnement puis les secrets Streamlit:
- DATABASE_URL
- SEVERANCE_TAX_RATE / INVESTOR_POOL_SHARE (taux du waterfall)
- LOG_LEVEL
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from .errors import ValidationError
from .money import to_decimal

# Constantes publiques du contrat de calcul
SEVERANCE_TAX_RATE = Decimal("0.046")
INVESTOR_POOL_SHARE = Decimal("0.75")


@dataclass(frozen=True)
class PayoutRates:
    severance_tax_rate: Decimal = SEVERANCE_TAX_RATE
    investor_pool_share: Decimal = INVESTOR_POOL_SHARE

    def __post_init__(self) -> None:
        for name in ("severance_tax_rate", "investor_pool_share"):
            val = to_decimal(getattr(self, name), name)
            if val < 0 or val > 1:
                raise ValidationError(name, f"doit être dans [0, 1], reçu {val}")
            # dataclass gelée: passer par object.__setattr__
            object.__setattr__(self, name, val)

    @property
    def company_share(self) -> Decimal:
        return Decimal("1") - self.investor_pool_share


DEFAULT_RATES = PayoutRates()


def _read_setting(key: str) -> Optional[Any]:
    # 1) env var
    val = os.getenv(key)
    if val:
        return val
    # 2) streamlit secrets
    try:
        import streamlit as st  # type: ignore

        if key in st.secrets:
            return st.secrets[key]  # pragma: no cover
    except Exception:
        pass
    return None


def get_database_url() -> str:
    url = _read_setting("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL introuvable. Définissez une variable d'environnement ou .streamlit/secrets.toml."
        )
    return str(url)


def load_rates() -> PayoutRates:
    """Taux du waterfall; les constantes publiques servent de défaut."""
    sev = _read_setting("SEVERANCE_TAX_RATE")
    pool = _read_setting("INVESTOR_POOL_SHARE")
    return PayoutRates(
        severance_tax_rate=SEVERANCE_TAX_RATE if sev is None else to_decimal(sev, "SEVERANCE_TAX_RATE"),
        investor_pool_share=INVESTOR_POOL_SHARE if pool is None else to_decimal(pool, "INVESTOR_POOL_SHARE"),
    )


class DetailedFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-15s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure le logger racine du paquet (idempotent: pas de handler en double)."""
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logger = logging.getLogger("wellhead")
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(DetailedFormatter())
        logger.addHandler(handler)
    return logger
