"""
Calcul de la distribution mensuelle (waterfall en cinq étapes).

    gross_revenue       = barils x prix
    severance_tax       = gross_revenue x taux de severance
    net_revenue         = gross_revenue - severance_tax
    investor_pool       = net_revenue x part investisseurs (company_revenue = le reste)
    net_investor_payout = investor_pool - frais d'exploitation

Chaque investisseur reçoit net_investor_payout x (ses barils / somme des barils),
où ses barils = (barils de base surchargés ou barils totaux) x fraction détenue.
Tout est en Decimal, sans arrondi intermédiaire. Fonction pure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from .config import DEFAULT_RATES, PayoutRates
from .errors import ValidationError
from .ledger import OwnershipStake, ProductionInput, apply_overrides, validate_stakes
from .money import HUNDRED, ZERO, quantize_cents, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvestorDistribution:
    investor_id: str
    investor_name: Optional[str]
    ownership_fraction: Decimal
    base_barrels: Decimal
    investor_barrels: Decimal
    share: Decimal
    payout_amount: Decimal
    overridden: bool = False

    @property
    def percentage_owned(self) -> Decimal:
        return self.ownership_fraction * HUNDRED


@dataclass(frozen=True)
class PayoutResult:
    total_barrels: Decimal
    price_per_barrel: Decimal
    gross_revenue: Decimal
    severance_tax: Decimal
    net_revenue: Decimal
    investor_pool: Decimal
    company_revenue: Decimal
    operating_expenses: Decimal
    net_investor_payout: Decimal
    sum_investor_barrels: Decimal
    distributions: Tuple[InvestorDistribution, ...]
    rates: PayoutRates = DEFAULT_RATES

    @property
    def total_distributed(self) -> Decimal:
        return sum((d.payout_amount for d in self.distributions), ZERO)

    @property
    def conservation_gap(self) -> Decimal:
        """Écart entre la somme distribuée et net_investor_payout (0 si aucun stake)."""
        if not self.distributions or self.sum_investor_barrels == 0:
            return ZERO
        return self.total_distributed - self.net_investor_payout

    def distribution_for(self, investor_id: str) -> Optional[InvestorDistribution]:
        for d in self.distributions:
            if d.investor_id == investor_id:
                return d
        return None

    def summary(self) -> dict:
        return {
            "gross_revenue": self.gross_revenue,
            "severance_tax": self.severance_tax,
            "net_revenue": self.net_revenue,
            "investor_pool": self.investor_pool,
            "company_revenue": self.company_revenue,
            "operating_expenses": self.operating_expenses,
            "net_investor_payout": self.net_investor_payout,
        }

    def to_frame(self) -> pd.DataFrame:
        """Table d'affichage; l'arrondi au cent se fait ici et seulement ici."""
        data = [
            {
                "investor_id": d.investor_id,
                "name": d.investor_name,
                "ownership_pct": float(d.percentage_owned),
                "base_barrels": float(d.base_barrels),
                "investor_barrels": float(d.investor_barrels),
                "share": float(d.share),
                "payout_amount": float(quantize_cents(d.payout_amount)),
                "overridden": d.overridden,
            }
            for d in self.distributions
        ]
        return pd.DataFrame(
            data,
            columns=[
                "investor_id",
                "name",
                "ownership_pct",
                "base_barrels",
                "investor_barrels",
                "share",
                "payout_amount",
                "overridden",
            ],
        )


def _normalize_production(production: ProductionInput) -> ProductionInput:
    production.validate()
    return ProductionInput(
        project_id=production.project_id,
        year=production.year,
        month=production.month,
        total_barrels=to_decimal(production.total_barrels, "total_barrels"),
        price_per_barrel=to_decimal(production.price_per_barrel, "price_per_barrel"),
        operating_expenses=to_decimal(production.operating_expenses, "operating_expenses"),
        base_barrel_overrides=dict(production.base_barrel_overrides),
    )


def calculate_payout(
    production: ProductionInput,
    stakes: Sequence[OwnershipStake],
    rates: PayoutRates = DEFAULT_RATES,
) -> PayoutResult:
    prod = _normalize_production(production)
    known = {s.investor_id for s in stakes}
    unknown = [k for k in prod.base_barrel_overrides if k not in known]
    if unknown:
        raise ValidationError(
            "base_barrel_overrides", f"investisseurs sans stake: {', '.join(sorted(unknown))}"
        )
    clean: List[OwnershipStake] = validate_stakes(
        apply_overrides(stakes, prod.base_barrel_overrides)
    )

    gross_revenue = prod.total_barrels * prod.price_per_barrel
    severance_tax = gross_revenue * rates.severance_tax_rate
    net_revenue = gross_revenue - severance_tax
    investor_pool = net_revenue * rates.investor_pool_share
    company_revenue = net_revenue * rates.company_share
    # Pas de plancher: un résultat négatif reste visible pour revue admin
    net_investor_payout = investor_pool - prod.operating_expenses

    barrels: List[Tuple[OwnershipStake, Decimal, Decimal]] = []
    for s in clean:
        base = s.base_barrels_override if s.base_barrels_override is not None else prod.total_barrels
        barrels.append((s, base, base * s.ownership_fraction))
    sum_investor_barrels = sum((b[2] for b in barrels), ZERO)

    distributions = []
    for s, base, inv_barrels in barrels:
        share = inv_barrels / sum_investor_barrels if sum_investor_barrels > 0 else ZERO
        distributions.append(
            InvestorDistribution(
                investor_id=s.investor_id,
                investor_name=s.investor_name,
                ownership_fraction=s.ownership_fraction,
                base_barrels=base,
                investor_barrels=inv_barrels,
                share=share,
                payout_amount=net_investor_payout * share,
                overridden=s.base_barrels_override is not None,
            )
        )

    result = PayoutResult(
        total_barrels=prod.total_barrels,
        price_per_barrel=prod.price_per_barrel,
        gross_revenue=gross_revenue,
        severance_tax=severance_tax,
        net_revenue=net_revenue,
        investor_pool=investor_pool,
        company_revenue=company_revenue,
        operating_expenses=prod.operating_expenses,
        net_investor_payout=net_investor_payout,
        sum_investor_barrels=sum_investor_barrels,
        distributions=tuple(distributions),
        rates=rates,
    )
    if net_investor_payout < 0:
        logger.warning(
            "Payout négatif pour %s %s: frais %s > pool %s",
            prod.project_id,
            prod.period,
            prod.operating_expenses,
            investor_pool,
        )
    logger.debug(
        "Payout calculé %s %s: net=%s investisseurs=%d",
        prod.project_id,
        prod.period,
        net_investor_payout,
        len(distributions),
    )
    return result
