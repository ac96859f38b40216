"""
Vues de portefeuille calculées à partir des enregistrements stockés
(distributions, résumés de revenu, stakes). Sorties en DataFrame pour l'UI.
"""

from __future__ import annotations

import calendar
from typing import Optional

import numpy as np
import pandas as pd
from sqlalchemy.orm import Session

from .db import list_distributions_df, list_investors_df, list_projects_df, list_revenue_df, list_stakes_df

POSITIVE = "Positive Returns"
NEGATIVE = "Negative Returns"


def _as_float(series: pd.Series) -> pd.Series:
    return series.apply(lambda v: np.nan if v is None else float(v)).astype(float)


def _period_label(year: int, month: int) -> str:
    # "Jan '24"
    return f"{calendar.month_abbr[int(month)]} '{str(int(year))[-2:]}"


def investor_portfolio(session: Session, investor_id: str) -> pd.DataFrame:
    """Par projet: investi, % détenu, payouts cumulés, rendement %, payout mensuel moyen."""
    cols = [
        "project_id",
        "project_name",
        "invested_amount",
        "ownership_pct",
        "total_payouts",
        "return_pct",
        "avg_monthly_payout",
        "months_paid",
    ]
    stakes = list_stakes_df(session)
    stakes = stakes[stakes["investor_id"] == investor_id].copy()
    dists = list_distributions_df(session, investor_id=investor_id)
    if stakes.empty and dists.empty:
        return pd.DataFrame(columns=cols)

    stakes["invested_amount"] = _as_float(stakes["invested_amount"])
    stakes["ownership_pct"] = _as_float(stakes["percentage_owned"])
    if dists.empty:
        paid = pd.DataFrame(columns=["project_id", "total_payouts", "months_paid"])
    else:
        dists["payout_amount"] = _as_float(dists["payout_amount"]).fillna(0.0)
        # mois "payés" = payout strictement positif
        dists["paid"] = dists["payout_amount"] > 0
        paid = dists.groupby("project_id", as_index=False).agg(
            total_payouts=("payout_amount", "sum"),
            months_paid=("paid", "sum"),
        )

    out = stakes[["project_id", "invested_amount", "ownership_pct"]].merge(
        paid, on="project_id", how="outer"
    )
    projects = list_projects_df(session)[["project_id", "name"]].rename(
        columns={"name": "project_name"}
    )
    out = out.merge(projects, on="project_id", how="left")
    out["invested_amount"] = out["invested_amount"].fillna(0.0)
    out["ownership_pct"] = out["ownership_pct"].fillna(0.0)
    out["total_payouts"] = out["total_payouts"].astype(float).fillna(0.0)
    out["months_paid"] = out["months_paid"].fillna(0).astype(int)
    invested = out["invested_amount"].to_numpy(dtype=float)
    total = out["total_payouts"].to_numpy(dtype=float)
    out["return_pct"] = np.where(
        invested > 0, total / np.where(invested > 0, invested, 1.0) * 100.0, 0.0
    )
    months = out["months_paid"].to_numpy(dtype=float)
    out["avg_monthly_payout"] = np.where(
        months > 0, total / np.where(months > 0, months, 1.0), 0.0
    )
    return out[cols].sort_values("project_id").reset_index(drop=True)


def payout_timeseries(
    session: Session, investor_id: str, project_id: Optional[str] = None
) -> pd.DataFrame:
    """Payouts mensuels, cumul, ROI mensuel % et % de l'investissement récupéré."""
    cols = ["year", "month", "label", "monthly", "cumulative", "monthly_roi_pct", "pct_recovered"]
    dists = list_distributions_df(session, project_id=project_id, investor_id=investor_id)
    if dists.empty:
        return pd.DataFrame(columns=cols)
    dists["monthly"] = _as_float(dists["payout_amount"]).fillna(0.0)
    ts = (
        dists.groupby(["year", "month"], as_index=False)
        .agg(monthly=("monthly", "sum"))
        .sort_values(["year", "month"])
        .reset_index(drop=True)
    )
    stakes = list_stakes_df(session, project_id=project_id)
    stakes = stakes[stakes["investor_id"] == investor_id]
    invested = float(_as_float(stakes["invested_amount"]).fillna(0.0).sum()) if not stakes.empty else 0.0

    ts["label"] = [_period_label(y, m) for y, m in zip(ts["year"], ts["month"])]
    ts["cumulative"] = ts["monthly"].cumsum()
    if invested > 0:
        ts["monthly_roi_pct"] = ts["monthly"] / invested * 100.0
        ts["pct_recovered"] = ts["cumulative"] / invested * 100.0
    else:
        ts["monthly_roi_pct"] = 0.0
        ts["pct_recovered"] = 0.0
    return ts[cols]


def project_history(session: Session, project_id: str) -> pd.DataFrame:
    """Mois avec données de revenu: revenu total, nb d'investisseurs, payout total."""
    cols = ["year", "month", "label", "revenue", "investor_count", "total_payout"]
    rev = list_revenue_df(session, project_id=project_id)
    if rev.empty:
        return pd.DataFrame(columns=cols)
    rev["revenue"] = _as_float(rev["total_revenue"]).fillna(0.0)
    dists = list_distributions_df(session, project_id=project_id)
    if dists.empty:
        agg = pd.DataFrame(columns=["year", "month", "investor_count", "total_payout"])
    else:
        dists["payout_amount"] = _as_float(dists["payout_amount"]).fillna(0.0)
        agg = dists.groupby(["year", "month"], as_index=False).agg(
            investor_count=("investor_id", "nunique"),
            total_payout=("payout_amount", "sum"),
        )
    out = rev[["year", "month", "revenue"]].merge(agg, on=["year", "month"], how="left")
    out["investor_count"] = out["investor_count"].fillna(0).astype(int)
    out["total_payout"] = out["total_payout"].astype(float).fillna(0.0)
    out["label"] = [_period_label(y, m) for y, m in zip(out["year"], out["month"])]
    # Plus récent en premier
    return out[cols].sort_values(["year", "month"], ascending=False).reset_index(drop=True)


def investor_return_summary(session: Session) -> pd.DataFrame:
    """Par investisseur: investissement total, payouts totaux, statut de rendement."""
    cols = ["investor_id", "investor_name", "total_investment", "total_payout", "return_status"]
    investors = list_investors_df(session)
    if investors.empty:
        return pd.DataFrame(columns=cols)
    stakes = list_stakes_df(session)
    dists = list_distributions_df(session)
    out = investors[["investor_id", "name"]].rename(columns={"name": "investor_name"})
    if not stakes.empty:
        stakes["invested_amount"] = _as_float(stakes["invested_amount"]).fillna(0.0)
        inv = stakes.groupby("investor_id", as_index=False).agg(
            total_investment=("invested_amount", "sum")
        )
        out = out.merge(inv, on="investor_id", how="left")
    else:
        out["total_investment"] = 0.0
    if not dists.empty:
        dists["payout_amount"] = _as_float(dists["payout_amount"]).fillna(0.0)
        pay = dists.groupby("investor_id", as_index=False).agg(
            total_payout=("payout_amount", "sum")
        )
        out = out.merge(pay, on="investor_id", how="left")
    else:
        out["total_payout"] = 0.0
    out["total_investment"] = out["total_investment"].astype(float).fillna(0.0)
    out["total_payout"] = out["total_payout"].astype(float).fillna(0.0)
    # Positif une fois l'investissement récupéré
    out["return_status"] = np.where(
        out["total_payout"] >= out["total_investment"], POSITIVE, NEGATIVE
    )
    return out[cols].sort_values("investor_id").reset_index(drop=True)


def revenue_growth(session: Session, project_id: Optional[str] = None) -> pd.DataFrame:
    """Croissance mois sur mois du revenu total (NaN au premier mois ou sur base nulle)."""
    cols = ["year", "month", "label", "total_revenue", "growth_pct"]
    rev = list_revenue_df(session, project_id=project_id)
    if rev.empty:
        return pd.DataFrame(columns=cols)
    rev["total_revenue"] = _as_float(rev["total_revenue"]).fillna(0.0)
    ts = (
        rev.groupby(["year", "month"], as_index=False)
        .agg(total_revenue=("total_revenue", "sum"))
        .sort_values(["year", "month"])
        .reset_index(drop=True)
    )
    prev = ts["total_revenue"].shift(1).to_numpy(dtype=float)
    cur = ts["total_revenue"].to_numpy(dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        growth = np.where(
            np.isnan(prev) | (prev == 0), np.nan, (cur - prev) / np.abs(prev) * 100.0
        )
    ts["growth_pct"] = growth
    ts["label"] = [_period_label(y, m) for y, m in zip(ts["year"], ts["month"])]
    return ts[cols]
