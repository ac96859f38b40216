import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import get_database_url
from .errors import ValidationError
from .ledger import OwnershipStake
from .models import (
    PROJECT_STATUSES,
    Base,
    Distribution,
    Investor,
    Project,
    RevenueSummary,
    Stake,
)
from .money import HUNDRED, to_decimal

logger = logging.getLogger(__name__)


def get_engine_and_session(db_url: Optional[str] = None) -> Tuple[Engine, sessionmaker]:
    # DATABASE_URL depuis env puis secrets Streamlit si non fourni
    url = db_url or get_database_url()
    engine = create_engine(url, future=True, pool_pre_ping=True)
    SessionLocal = sessionmaker(
        bind=engine, autoflush=False, autocommit=False, future=True
    )
    # Crée/ajuste le schéma
    ensure_schema(engine)
    return engine, SessionLocal


def ensure_schema(engine: Engine) -> None:
    # Crée les tables si absentes (contraintes uniques incluses)
    Base.metadata.create_all(engine)


def _utcnow() -> dt.datetime:
    return dt.datetime.utcnow()


# Projects


def list_projects_df(session: Session) -> pd.DataFrame:
    rows = session.query(Project).order_by(Project.name).all()
    data = [
        {
            "project_id": r.project_id,
            "name": r.name,
            "location": r.location,
            "status": r.status,
            "total_units": r.total_units,
            "target_raise": r.target_raise,
            "created_at": r.created_at,
        }
        for r in rows
    ]
    return pd.DataFrame(
        data,
        columns=[
            "project_id",
            "name",
            "location",
            "status",
            "total_units",
            "target_raise",
            "created_at",
        ],
    )


def _check_status(status: str) -> str:
    if status not in PROJECT_STATUSES:
        raise ValidationError("status", f"statut inconnu: {status!r}")
    return status


def upsert_project(
    session: Session,
    project_id: str,
    name: str,
    location: Optional[str] = None,
    status: str = "Planning",
    total_units: Optional[int] = None,
    target_raise: Any = None,
) -> Project:
    _check_status(status)
    if not name:
        raise ValidationError("name", "nom du projet requis")
    raise_amount = None if target_raise is None else to_decimal(target_raise, "target_raise")
    if raise_amount is not None and raise_amount < 0:
        raise ValidationError("target_raise", "ne peut pas être négatif")
    proj = session.get(Project, project_id)
    if proj:
        setattr(proj, "name", name)
        setattr(proj, "location", location)
        setattr(proj, "status", status)
        setattr(proj, "total_units", total_units)
        setattr(proj, "target_raise", raise_amount)
    else:
        proj = Project(
            project_id=project_id,
            name=name,
            location=location,
            status=status,
            total_units=total_units,
            target_raise=raise_amount,
            created_at=_utcnow(),
        )
        session.add(proj)
    session.flush()
    return proj


def set_project_status(session: Session, project_id: str, status: str) -> None:
    """Pas de suppression de projet: on change le statut."""
    _check_status(status)
    proj = session.get(Project, project_id)
    if proj is None:
        raise KeyError(f"Projet inconnu: {project_id}")
    setattr(proj, "status", status)


# Investors


def list_investors_df(session: Session) -> pd.DataFrame:
    rows = session.query(Investor).all()
    data = [
        {
            "investor_id": r.investor_id,
            "name": r.name,
            "email": r.email,
            "phone": r.phone,
            "active": r.active,
            "created_at": r.created_at,
            "notes": r.notes,
        }
        for r in rows
    ]
    return pd.DataFrame(
        data,
        columns=["investor_id", "name", "email", "phone", "active", "created_at", "notes"],
    )


def get_investor_by_email(session: Session, email: str) -> Optional[Investor]:
    if not email:
        return None
    return session.execute(
        select(Investor).where(Investor.email == email.strip().lower())
    ).scalar_one_or_none()


def upsert_investor(
    session: Session,
    investor_id: str,
    name: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    active: bool = True,
    notes: Optional[str] = None,
    bank_name: Optional[str] = None,
    routing_number: Optional[str] = None,
    account_number: Optional[str] = None,
) -> Investor:
    email = email.strip().lower() if email else None
    if email:
        other = get_investor_by_email(session, email)
        if other is not None and other.investor_id != investor_id:
            raise ValidationError("email", f"email déjà utilisé par {other.investor_id}")
    inv = session.get(Investor, investor_id)
    if inv:
        # setattr pour éviter les soucis de typage statique
        setattr(inv, "name", name)
        setattr(inv, "email", email)
        setattr(inv, "phone", phone)
        setattr(inv, "active", active)
        setattr(inv, "notes", notes)
        if bank_name is not None:
            setattr(inv, "bank_name", bank_name)
        if routing_number is not None:
            setattr(inv, "routing_number", routing_number)
        if account_number is not None:
            setattr(inv, "account_number", account_number)
    else:
        inv = Investor(
            investor_id=investor_id,
            name=name,
            email=email,
            phone=phone,
            active=active,
            created_at=_utcnow(),
            notes=notes,
            bank_name=bank_name,
            routing_number=routing_number,
            account_number=account_number,
        )
        session.add(inv)
    session.flush()
    return inv


# Stakes


def list_stakes_df(session: Session, project_id: Optional[str] = None) -> pd.DataFrame:
    q = session.query(Stake, Investor.name).outerjoin(
        Investor, Investor.investor_id == Stake.investor_id
    )
    if project_id:
        q = q.filter(Stake.project_id == project_id)
    data = [
        {
            "stake_id": r.stake_id,
            "investor_id": r.investor_id,
            "investor_name": name,
            "project_id": r.project_id,
            "invested_amount": r.invested_amount,
            "percentage_owned": r.percentage_owned,
            "start_date": r.start_date,
            "updated_at": r.updated_at,
        }
        for r, name in q.all()
    ]
    df = pd.DataFrame(
        data,
        columns=[
            "stake_id",
            "investor_id",
            "investor_name",
            "project_id",
            "invested_amount",
            "percentage_owned",
            "start_date",
            "updated_at",
        ],
    )
    if not df.empty:
        df.sort_values(["project_id", "investor_id"], inplace=True)
    return df


def add_or_update_stake(
    session: Session,
    investor_id: str,
    project_id: str,
    invested_amount: Any,
    percentage_owned: Any,
    start_date: Optional[dt.date] = None,
    stake_id: Optional[str] = None,
) -> Stake:
    amount = to_decimal(invested_amount, "invested_amount")
    if amount < 0:
        raise ValidationError("invested_amount", "ne peut pas être négatif")
    pct = to_decimal(percentage_owned, "percentage_owned")
    if pct < 0 or pct > HUNDRED:
        raise ValidationError("percentage_owned", f"doit être dans [0, 100], reçu {pct}")
    if session.get(Project, project_id) is None:
        raise ValidationError("project_id", f"projet inconnu: {project_id}")
    if session.get(Investor, investor_id) is None:
        raise ValidationError("investor_id", f"investisseur inconnu: {investor_id}")

    now = _utcnow()
    stobj = session.execute(
        select(Stake).where(Stake.investor_id == investor_id, Stake.project_id == project_id)
    ).scalar_one_or_none()
    if stobj:
        setattr(stobj, "invested_amount", amount)
        setattr(stobj, "percentage_owned", pct)
        if start_date is not None:
            setattr(stobj, "start_date", start_date)
        setattr(stobj, "updated_at", now)
    else:
        stobj = Stake(
            stake_id=stake_id or f"stk_{investor_id}_{project_id}",
            investor_id=investor_id,
            project_id=project_id,
            invested_amount=amount,
            percentage_owned=pct,
            start_date=start_date,
            created_at=now,
            updated_at=now,
        )
        session.add(stobj)
    session.flush()
    return stobj


def remove_stake(session: Session, investor_id: str, project_id: str) -> bool:
    """Suppression physique du stake uniquement (investisseur et projet restent)."""
    n = (
        session.query(Stake)
        .filter(Stake.investor_id == investor_id, Stake.project_id == project_id)
        .delete(synchronize_session=False)
    )
    if n:
        logger.info("Stake supprimé: %s / %s", investor_id, project_id)
    return bool(n)


def load_ownership(session: Session, project_id: str) -> List[OwnershipStake]:
    """Instantané du registre de propriété d'un projet pour le calculateur."""
    rows = session.execute(
        select(Stake, Investor.name)
        .outerjoin(Investor, Investor.investor_id == Stake.investor_id)
        .where(Stake.project_id == project_id)
        .order_by(Stake.investor_id)
    ).all()
    return [
        OwnershipStake.from_percentage(
            investor_id=s.investor_id,
            percentage_owned=s.percentage_owned or 0,
            invested_amount=s.invested_amount or 0,
            investor_name=name,
        )
        for s, name in rows
    ]


# Revenue summaries & distributions


def list_revenue_df(session: Session, project_id: Optional[str] = None) -> pd.DataFrame:
    q = session.query(RevenueSummary)
    if project_id:
        q = q.filter(RevenueSummary.project_id == project_id)
    data = [
        {
            "project_id": r.project_id,
            "year": r.year,
            "month": r.month,
            "total_barrels": r.total_barrels,
            "price_per_barrel": r.price_per_barrel,
            "gross_revenue": r.gross_revenue,
            "severance_tax": r.severance_tax,
            "operating_expenses": r.operating_expenses,
            "total_revenue": r.total_revenue,
            "revision": r.revision,
            "calculated_at": r.calculated_at,
        }
        for r in q.all()
    ]
    df = pd.DataFrame(
        data,
        columns=[
            "project_id",
            "year",
            "month",
            "total_barrels",
            "price_per_barrel",
            "gross_revenue",
            "severance_tax",
            "operating_expenses",
            "total_revenue",
            "revision",
            "calculated_at",
        ],
    )
    if not df.empty:
        df.sort_values(["project_id", "year", "month"], inplace=True)
    return df


def list_distributions_df(
    session: Session,
    project_id: Optional[str] = None,
    investor_id: Optional[str] = None,
) -> pd.DataFrame:
    q = session.query(Distribution)
    if project_id:
        q = q.filter(Distribution.project_id == project_id)
    if investor_id:
        q = q.filter(Distribution.investor_id == investor_id)
    data = [
        {
            "project_id": r.project_id,
            "investor_id": r.investor_id,
            "year": r.year,
            "month": r.month,
            "percentage_owned": r.percentage_owned,
            "base_barrels": r.base_barrels,
            "investor_barrels": r.investor_barrels,
            "share": r.share,
            "payout_amount": r.payout_amount,
            "calculated_at": r.calculated_at,
        }
        for r in q.all()
    ]
    df = pd.DataFrame(
        data,
        columns=[
            "project_id",
            "investor_id",
            "year",
            "month",
            "percentage_owned",
            "base_barrels",
            "investor_barrels",
            "share",
            "payout_amount",
            "calculated_at",
        ],
    )
    if not df.empty:
        df.sort_values(["project_id", "year", "month", "investor_id"], inplace=True)
    return df


def available_periods(session: Session, project_id: str) -> List[Tuple[int, int]]:
    """Mois ayant des données de revenu, du plus récent au plus ancien."""
    rows = session.execute(
        select(RevenueSummary.year, RevenueSummary.month)
        .where(RevenueSummary.project_id == project_id)
        .order_by(RevenueSummary.year.desc(), RevenueSummary.month.desc())
    ).all()
    return [(int(y), int(m)) for y, m in rows]


def load_statement_aggregates(
    session: Session, investor_id: str, year: int, month: int
) -> List[Dict[str, Any]]:
    """Agrégats stockés (par projet) d'un investisseur pour un mois.
    Les faits bruts viennent du résumé de revenu; absents pour les vieilles données.
    """
    rows = session.execute(
        select(Distribution, RevenueSummary, Project.name)
        .outerjoin(
            RevenueSummary,
            (RevenueSummary.project_id == Distribution.project_id)
            & (RevenueSummary.year == Distribution.year)
            & (RevenueSummary.month == Distribution.month),
        )
        .outerjoin(Project, Project.project_id == Distribution.project_id)
        .where(
            Distribution.investor_id == investor_id,
            Distribution.year == year,
            Distribution.month == month,
        )
        .order_by(Distribution.project_id)
    ).all()
    out = []
    for d, rev, project_name in rows:
        out.append(
            {
                "project_id": d.project_id,
                "project_name": project_name,
                "investor_id": d.investor_id,
                "year": d.year,
                "month": d.month,
                "payout_amount": d.payout_amount,
                "percentage_owned": d.percentage_owned,
                "production": rev.total_barrels if rev is not None else None,
                "price_per_barrel": rev.price_per_barrel if rev is not None else None,
                "severance_tax": rev.severance_tax if rev is not None else None,
                "expenses": rev.operating_expenses if rev is not None else None,
                "total_revenue": rev.total_revenue if rev is not None else None,
                "severance_tax_rate": rev.severance_tax_rate if rev is not None else None,
                "investor_pool_share": rev.investor_pool_share if rev is not None else None,
            }
        )
    return out
