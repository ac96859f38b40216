"""
Registre de propriété (stakes investisseur x projet) et saisie de production mensuelle.
Objets immuables: le calculateur les lit sans jamais les modifier.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import ValidationError
from .money import HUNDRED, ZERO, to_decimal


def parse_period(period: str) -> Tuple[int, int]:
    """'2024-03' -> (2024, 3)"""
    try:
        year_s, month_s = str(period).strip().split("-")
        year, month = int(year_s), int(month_s)
    except ValueError:
        raise ValidationError("period", f"format attendu YYYY-MM, reçu {period!r}") from None
    _check_period(year, month)
    return year, month


def _check_period(year: Any, month: Any) -> None:
    if year is None or month is None:
        raise ValidationError("period", "année et mois requis")
    if not isinstance(year, int) or year < 1900:
        raise ValidationError("year", f"année invalide: {year!r}")
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError("month", f"mois hors de 1..12: {month!r}")


@dataclass(frozen=True)
class OwnershipStake:
    investor_id: str
    ownership_fraction: Decimal
    base_barrels_override: Optional[Decimal] = None
    invested_amount: Decimal = ZERO
    investor_name: Optional[str] = None

    @classmethod
    def from_percentage(
        cls,
        investor_id: str,
        percentage_owned: Any,
        invested_amount: Any = 0,
        investor_name: Optional[str] = None,
        base_barrels_override: Any = None,
    ) -> "OwnershipStake":
        pct = to_decimal(percentage_owned, "percentage_owned")
        if pct < 0 or pct > HUNDRED:
            raise ValidationError("percentage_owned", f"doit être dans [0, 100], reçu {pct}")
        return cls(
            investor_id=str(investor_id),
            ownership_fraction=pct / HUNDRED,
            base_barrels_override=(
                None
                if base_barrels_override is None
                else to_decimal(base_barrels_override, "base_barrels_override")
            ),
            invested_amount=to_decimal(invested_amount or 0, "invested_amount"),
            investor_name=investor_name,
        )

    @property
    def percentage_owned(self) -> Decimal:
        return self.ownership_fraction * HUNDRED


def validate_stakes(stakes: Sequence[OwnershipStake]) -> List[OwnershipStake]:
    """Vérifie chaque stake et retourne une liste normalisée (Decimal partout)."""
    out: List[OwnershipStake] = []
    seen = set()
    for s in stakes:
        if not s.investor_id:
            raise ValidationError("investor_id", "identifiant investisseur requis")
        if s.investor_id in seen:
            raise ValidationError("investor_id", f"stake en double pour {s.investor_id}")
        seen.add(s.investor_id)
        frac = to_decimal(s.ownership_fraction, "ownership_fraction")
        if frac < 0 or frac > 1:
            raise ValidationError(
                "ownership_fraction", f"{s.investor_id}: doit être dans [0, 1], reçu {frac}"
            )
        override = s.base_barrels_override
        if override is not None:
            override = to_decimal(override, "base_barrels_override")
            if override < 0:
                raise ValidationError(
                    "base_barrels_override", f"{s.investor_id}: négatif ({override})"
                )
        invested = to_decimal(s.invested_amount, "invested_amount")
        if invested < 0:
            raise ValidationError("invested_amount", f"{s.investor_id}: négatif ({invested})")
        out.append(
            replace(
                s,
                ownership_fraction=frac,
                base_barrels_override=override,
                invested_amount=invested,
            )
        )
    return out


@dataclass(frozen=True)
class ProductionInput:
    project_id: str
    year: int
    month: int
    total_barrels: Decimal
    price_per_barrel: Decimal
    operating_expenses: Decimal = ZERO
    base_barrel_overrides: Mapping[str, Decimal] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        project_id: str,
        year: int,
        month: int,
        total_barrels: Any,
        price_per_barrel: Any,
        operating_expenses: Any = 0,
        base_barrel_overrides: Optional[Mapping[str, Any]] = None,
    ) -> "ProductionInput":
        """Construit et valide une saisie à partir de valeurs brutes (formulaire)."""
        overrides = {
            str(k): to_decimal(v, f"base_barrel_overrides[{k}]")
            for k, v in (base_barrel_overrides or {}).items()
        }
        prod = cls(
            project_id=str(project_id),
            year=year,
            month=month,
            total_barrels=to_decimal(total_barrels, "total_barrels"),
            price_per_barrel=to_decimal(price_per_barrel, "price_per_barrel"),
            operating_expenses=to_decimal(
                0 if operating_expenses is None else operating_expenses,
                "operating_expenses",
            ),
            base_barrel_overrides=overrides,
        )
        prod.validate()
        return prod

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def validate(self) -> None:
        if not self.project_id:
            raise ValidationError("project_id", "projet requis")
        _check_period(self.year, self.month)
        for name in ("total_barrels", "price_per_barrel", "operating_expenses"):
            val = to_decimal(getattr(self, name), name)
            if val < 0:
                raise ValidationError(name, f"ne peut pas être négatif ({val})")
        for inv_id, barrels in self.base_barrel_overrides.items():
            if to_decimal(barrels, "base_barrel_overrides") < 0:
                raise ValidationError(
                    "base_barrel_overrides", f"{inv_id}: négatif ({barrels})"
                )


def apply_overrides(
    stakes: Iterable[OwnershipStake], overrides: Mapping[str, Any]
) -> List[OwnershipStake]:
    """Retourne de nouveaux stakes avec les barils de base surchargés."""
    out = []
    for s in stakes:
        if s.investor_id in overrides and overrides[s.investor_id] is not None:
            s = replace(
                s,
                base_barrels_override=to_decimal(
                    overrides[s.investor_id], "base_barrels_override"
                ),
            )
        out.append(s)
    return out


def ownership_summary(stakes: Sequence[OwnershipStake]) -> Dict[str, Any]:
    """Total alloué (%). Informatif: le sous/sur-allocation n'est pas bloquant."""
    total_pct = sum((s.percentage_owned for s in stakes), ZERO)
    total_invested = sum((s.invested_amount for s in stakes), ZERO)
    return {
        "investors": len(stakes),
        "allocated_pct": total_pct,
        "unallocated_pct": HUNDRED - total_pct,
        "invested": total_invested,
        "status": (
            "complete"
            if total_pct == HUNDRED
            else ("over_allocated" if total_pct > HUNDRED else "under_allocated")
        ),
    }
