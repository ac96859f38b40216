"""
Reconstruction du waterfall pour les relevés mensuels investisseur.

À partir des agrégats stockés (montant versé, % détenu, production, prix,
taxe de severance, frais), on recalcule chaque étape pour l'affichage:

    gross_revenue       = prix x production
    severance_tax       = valeur stockée, sinon gross_revenue x taux
    net_revenue         = gross_revenue - severance_tax
    investor_pool       = net_revenue x part investisseurs
    net_investor_payout = investor_pool - frais
    distribution_amount = net_investor_payout x (% détenu / 100)

Si les faits bruts manquent (données antérieures à la migration), on retombe
sur les montants stockés et la ligne porte un drapeau ReconstructionDegraded.
Aucune exception ne sort d'ici: un relevé doit toujours s'afficher.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd
from sqlalchemy.orm import Session

from .config import DEFAULT_RATES, PayoutRates
from .db import load_statement_aggregates
from .errors import ReconstructionDegraded, ValidationError
from .models import Investor
from .money import CENT, HUNDRED, ZERO, optional_decimal, quantize_cents

logger = logging.getLogger(__name__)

_DECIMAL_FIELDS = (
    "payout_amount",
    "percentage_owned",
    "production",
    "price_per_barrel",
    "severance_tax",
    "expenses",
    "total_revenue",
    "severance_tax_rate",
    "investor_pool_share",
)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class StatementAggregate:
    project_id: str
    investor_id: str
    year: int
    month: int
    project_name: Optional[str] = None
    payout_amount: Optional[Decimal] = None
    percentage_owned: Optional[Decimal] = None
    production: Optional[Decimal] = None
    price_per_barrel: Optional[Decimal] = None
    severance_tax: Optional[Decimal] = None
    expenses: Optional[Decimal] = None
    total_revenue: Optional[Decimal] = None
    # taux en vigueur lors du calcul (sinon ceux de la config)
    severance_tax_rate: Optional[Decimal] = None
    investor_pool_share: Optional[Decimal] = None
    unreadable: Tuple[str, ...] = ()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StatementAggregate":
        """Tolérant: une valeur illisible devient None et est notée dans `unreadable`."""
        values: Dict[str, Optional[Decimal]] = {}
        unreadable = []
        for name in _DECIMAL_FIELDS:
            # 'total_barrels' accepté comme alias de 'production'
            raw = row.get(name)
            if raw is None and name == "production":
                raw = row.get("total_barrels")
            try:
                values[name] = optional_decimal(raw, name)
            except ValidationError:
                values[name] = None
                unreadable.append(name)
        return cls(
            project_id=str(row.get("project_id")),
            investor_id=str(row.get("investor_id")),
            year=_as_int(row.get("year")),
            month=_as_int(row.get("month")),
            project_name=row.get("project_name"),
            unreadable=tuple(unreadable),
            **values,
        )


@dataclass(frozen=True)
class StatementLine:
    project_id: str
    project_name: Optional[str]
    percentage_owned: Optional[Decimal]
    production: Optional[Decimal]
    price_per_barrel: Optional[Decimal]
    gross_revenue: Optional[Decimal]
    severance_tax: Optional[Decimal]
    severance_recomputed: bool
    net_revenue: Optional[Decimal]
    investor_pool: Optional[Decimal]
    expenses: Decimal
    net_investor_payout: Optional[Decimal]
    distribution_amount: Decimal
    payout_amount: Optional[Decimal]
    degraded: Optional[ReconstructionDegraded] = None

    @property
    def discrepancy(self) -> Optional[Decimal]:
        """distribution_amount recalculé moins payout_amount stocké."""
        if self.payout_amount is None:
            return None
        return self.distribution_amount - self.payout_amount

    @property
    def reconciles(self) -> bool:
        gap = self.discrepancy
        return gap is None or abs(gap) <= CENT


_ROW_KEYS = ("project_id", "investor_id", "year", "month", "project_name", "total_barrels")


def _as_mapping(obj: Any) -> Mapping[str, Any]:
    if isinstance(obj, Mapping):
        return obj
    # Row SQLAlchemy: accès par nom via _mapping
    mapping = getattr(obj, "_mapping", None)
    if isinstance(mapping, Mapping):
        return mapping
    return {k: getattr(obj, k, None) for k in _ROW_KEYS + _DECIMAL_FIELDS}


def _normalize(agg: StatementAggregate) -> StatementAggregate:
    """Repasse un agrégat construit à la main par la lecture tolérante de from_row."""
    fresh = StatementAggregate.from_row({f.name: getattr(agg, f.name) for f in fields(agg)})
    unreadable = tuple(dict.fromkeys(tuple(agg.unreadable or ()) + fresh.unreadable))
    return replace(fresh, project_name=agg.project_name, unreadable=unreadable)


def reconstruct_line(
    aggregate: StatementAggregate, rates: PayoutRates = DEFAULT_RATES
) -> StatementLine:
    agg = _normalize(aggregate)
    expenses = agg.expenses if agg.expenses is not None else ZERO
    missing: List[str] = list(agg.unreadable)
    severance_rate = (
        agg.severance_tax_rate if agg.severance_tax_rate is not None else rates.severance_tax_rate
    )
    pool_share = (
        agg.investor_pool_share if agg.investor_pool_share is not None else rates.investor_pool_share
    )

    if agg.production is not None and agg.price_per_barrel is not None:
        gross = agg.price_per_barrel * agg.production
        severance_recomputed = agg.severance_tax is None
        severance = gross * severance_rate if severance_recomputed else agg.severance_tax
        net = gross - severance
        pool = net * pool_share
        net_investor = pool - expenses
        if agg.percentage_owned is not None:
            amount = net_investor * (agg.percentage_owned / HUNDRED)
        else:
            missing.append("percentage_owned")
            amount = agg.payout_amount if agg.payout_amount is not None else ZERO
        degraded = (
            ReconstructionDegraded("agrégat incomplet", tuple(missing)) if missing else None
        )
    else:
        # Pas de faits de production: montants stockés tels quels
        for name in ("production", "price_per_barrel"):
            if getattr(agg, name) is None and name not in missing:
                missing.append(name)
        gross = severance = net = pool = None
        severance_recomputed = False
        net_investor = agg.total_revenue
        if agg.payout_amount is not None:
            amount = agg.payout_amount
        elif net_investor is not None and agg.percentage_owned is not None:
            amount = net_investor * (agg.percentage_owned / HUNDRED)
        else:
            amount = ZERO
            missing.append("payout_amount")
        degraded = ReconstructionDegraded(
            "faits de production absents, montants stockés utilisés", tuple(missing)
        )

    line = StatementLine(
        project_id=agg.project_id,
        project_name=agg.project_name,
        percentage_owned=agg.percentage_owned,
        production=agg.production,
        price_per_barrel=agg.price_per_barrel,
        gross_revenue=gross,
        severance_tax=severance,
        severance_recomputed=severance_recomputed,
        net_revenue=net,
        investor_pool=pool,
        expenses=expenses,
        net_investor_payout=net_investor,
        distribution_amount=amount,
        payout_amount=agg.payout_amount,
        degraded=degraded,
    )
    if degraded is not None:
        logger.info(
            "Relevé dégradé %s/%s %04d-%02d: %s",
            agg.investor_id,
            agg.project_id,
            agg.year,
            agg.month,
            degraded,
        )
    elif not line.reconciles:
        logger.warning(
            "Écart de reconstruction %s/%s %04d-%02d: %s",
            agg.investor_id,
            agg.project_id,
            agg.year,
            agg.month,
            line.discrepancy,
        )
    return line


@dataclass
class Statement:
    investor_id: str
    year: int
    month: int
    investor_name: Optional[str] = None
    projects: "OrderedDict[str, List[StatementLine]]" = field(default_factory=OrderedDict)

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def lines(self) -> List[StatementLine]:
        return [line for group in self.projects.values() for line in group]

    @property
    def total_distribution(self) -> Decimal:
        return sum((line.distribution_amount for line in self.lines), ZERO)

    @property
    def total_payout_amount(self) -> Decimal:
        return sum(
            (line.payout_amount for line in self.lines if line.payout_amount is not None),
            ZERO,
        )

    @property
    def degraded(self) -> bool:
        return any(line.degraded is not None for line in self.lines)

    def project_total(self, project_id: str) -> Decimal:
        return sum(
            (line.distribution_amount for line in self.projects.get(project_id, [])), ZERO
        )


def build_statement(
    investor_id: str,
    year: int,
    month: int,
    aggregates: Iterable[Any],
    rates: PayoutRates = DEFAULT_RATES,
    investor_name: Optional[str] = None,
) -> Statement:
    stmt = Statement(
        investor_id=str(investor_id), year=year, month=month, investor_name=investor_name
    )
    for agg in aggregates:
        if not isinstance(agg, StatementAggregate):
            agg = StatementAggregate.from_row(_as_mapping(agg))
        line = reconstruct_line(agg, rates)
        stmt.projects.setdefault(line.project_id, []).append(line)
    return stmt


def _cents(value: Optional[Decimal]) -> Optional[float]:
    return None if value is None else float(quantize_cents(value))


def statement_to_frame(statement: Statement) -> pd.DataFrame:
    """Table imprimable (arrondi au cent uniquement ici)."""
    data = [
        {
            "project_id": line.project_id,
            "project": line.project_name or line.project_id,
            "ownership_pct": None if line.percentage_owned is None else float(line.percentage_owned),
            "production_bbl": None if line.production is None else float(line.production),
            "price_per_barrel": _cents(line.price_per_barrel),
            "gross_revenue": _cents(line.gross_revenue),
            "severance_tax": _cents(line.severance_tax),
            "net_revenue": _cents(line.net_revenue),
            "investor_pool": _cents(line.investor_pool),
            "expenses": _cents(line.expenses),
            "net_investor_payout": _cents(line.net_investor_payout),
            "distribution_amount": _cents(line.distribution_amount),
            "payout_amount": _cents(line.payout_amount),
            "degraded": line.degraded is not None,
        }
        for line in statement.lines
    ]
    return pd.DataFrame(
        data,
        columns=[
            "project_id",
            "project",
            "ownership_pct",
            "production_bbl",
            "price_per_barrel",
            "gross_revenue",
            "severance_tax",
            "net_revenue",
            "investor_pool",
            "expenses",
            "net_investor_payout",
            "distribution_amount",
            "payout_amount",
            "degraded",
        ],
    )


def investor_statement(
    session: Session,
    investor_id: str,
    year: int,
    month: int,
    rates: PayoutRates = DEFAULT_RATES,
) -> Statement:
    inv = session.get(Investor, investor_id)
    rows = load_statement_aggregates(session, investor_id, year, month)
    return build_statement(
        investor_id,
        year,
        month,
        rows,
        rates=rates,
        investor_name=inv.name if inv is not None else None,
    )
