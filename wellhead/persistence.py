"""
Écriture d'une distribution mensuelle.

Le résumé de revenu (projet, année, mois) et les lignes de distribution par
investisseur sont écrits dans une seule transaction: soit tout est visible,
soit rien. Relancer la même période écrase (upsert), ne duplique jamais.
En cas d'échec, le PayoutResult déjà calculé peut être repassé tel quel.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import MutableMapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .calculator import PayoutResult, calculate_payout
from .config import DEFAULT_RATES, PayoutRates
from .db import load_ownership
from .errors import ConcurrentPayoutError, PersistenceError
from .ledger import ProductionInput
from .models import Distribution, RevenueSummary

logger = logging.getLogger(__name__)


def _upsert_summary(
    session: Session,
    production: ProductionInput,
    result: PayoutResult,
    now: dt.datetime,
    expected_revision: Optional[int],
) -> RevenueSummary:
    summary = session.execute(
        select(RevenueSummary).where(
            RevenueSummary.project_id == production.project_id,
            RevenueSummary.year == production.year,
            RevenueSummary.month == production.month,
        )
    ).scalar_one_or_none()
    current = summary.revision if summary is not None else 0
    if expected_revision is not None and expected_revision != current:
        raise ConcurrentPayoutError(expected_revision, current)

    values = {
        "total_barrels": result.total_barrels,
        "price_per_barrel": result.price_per_barrel,
        "operating_expenses": result.operating_expenses,
        "severance_tax_rate": result.rates.severance_tax_rate,
        "investor_pool_share": result.rates.investor_pool_share,
        "gross_revenue": result.gross_revenue,
        "severance_tax": result.severance_tax,
        "net_revenue": result.net_revenue,
        "investor_pool": result.investor_pool,
        "company_revenue": result.company_revenue,
        "total_revenue": result.net_investor_payout,
        "calculated_at": now,
    }
    if summary is None:
        summary = RevenueSummary(
            project_id=production.project_id,
            year=production.year,
            month=production.month,
            **values,
        )
        session.add(summary)
    else:
        for k, v in values.items():
            setattr(summary, k, v)
    return summary


def _upsert_distributions(
    session: Session,
    production: ProductionInput,
    result: PayoutResult,
    now: dt.datetime,
) -> None:
    existing = {
        d.investor_id: d
        for d in session.execute(
            select(Distribution).where(
                Distribution.project_id == production.project_id,
                Distribution.year == production.year,
                Distribution.month == production.month,
            )
        ).scalars()
    }
    for dist in result.distributions:
        values = {
            "percentage_owned": dist.percentage_owned,
            "base_barrels": dist.base_barrels,
            "investor_barrels": dist.investor_barrels,
            "share": dist.share,
            "payout_amount": dist.payout_amount,
            "calculated_at": now,
        }
        row = existing.pop(dist.investor_id, None)
        if row is None:
            session.add(
                Distribution(
                    project_id=production.project_id,
                    investor_id=dist.investor_id,
                    year=production.year,
                    month=production.month,
                    **values,
                )
            )
        else:
            for k, v in values.items():
                setattr(row, k, v)
    # Investisseurs retirés du projet depuis le dernier calcul de la période
    for stale in existing.values():
        session.delete(stale)


def _persistence_error(production: ProductionInput, e: Exception) -> PersistenceError:
    logger.error(
        "Échec d'écriture du payout %s %s: %s",
        production.project_id,
        production.period,
        e,
    )
    return PersistenceError(
        f"Écriture du payout {production.project_id} {production.period} échouée",
        operation="persist_payout",
        retryable=True,
        details={"project_id": production.project_id, "period": production.period},
    )


def persist_payout(
    session: Session,
    production: ProductionInput,
    result: PayoutResult,
    expected_revision: Optional[int] = None,
) -> int:
    """Écrit résumé + distributions et retourne la nouvelle révision de la période.

    expected_revision (optionnel): révision lue avant calcul; 0 = période jamais
    calculée. Si une autre session a réécrit la période entre la lecture et le
    commit, le mapper le détecte (version_id_col) et ConcurrentPayoutError est levée.
    Sans jeton, la dernière écriture gagne: on relit la ligne fraîche et on réessaie une fois.
    """
    attempts = 1 if expected_revision is not None else 2
    for attempt in range(1, attempts + 1):
        now = dt.datetime.utcnow()
        try:
            summary = _upsert_summary(session, production, result, now, expected_revision)
            _upsert_distributions(session, production, result, now)
            session.commit()
        except ConcurrentPayoutError:
            session.rollback()
            logger.warning(
                "Calcul concurrent détecté pour %s %s", production.project_id, production.period
            )
            raise
        except (StaleDataError, IntegrityError) as e:
            # Révision changée ou période insérée par une autre session depuis la lecture
            session.rollback()
            found = current_revision(session, production.project_id, production.year, production.month)
            if expected_revision is not None:
                logger.warning(
                    "Calcul concurrent détecté au commit pour %s %s (révision %s)",
                    production.project_id,
                    production.period,
                    found,
                )
                raise ConcurrentPayoutError(expected_revision, found) from e
            if attempt == attempts:
                raise _persistence_error(production, e) from e
            logger.warning(
                "Écriture concurrente sur %s %s, nouvelle tentative",
                production.project_id,
                production.period,
            )
        except SQLAlchemyError as e:
            session.rollback()
            raise _persistence_error(production, e) from e
        else:
            break
    logger.info(
        "Payout enregistré %s %s (révision %s, %d investisseurs)",
        production.project_id,
        production.period,
        summary.revision,
        len(result.distributions),
    )
    return int(summary.revision)


def current_revision(session: Session, project_id: str, year: int, month: int) -> int:
    rev = session.execute(
        select(RevenueSummary.revision).where(
            RevenueSummary.project_id == project_id,
            RevenueSummary.year == year,
            RevenueSummary.month == month,
        )
    ).scalar_one_or_none()
    return int(rev or 0)


def _revision_key(project_id: str, year: int, month: int) -> str:
    return f"payout_rev:{project_id}:{year:04d}-{month:02d}"


def remembered_revision(
    state: MutableMapping, session: Session, project_id: str, year: int, month: int
) -> int:
    """Révision lue à la première prévisualisation de la période.
    `state` survit aux reruns (st.session_state): on ne relit pas la base au clic.
    """
    key = _revision_key(project_id, year, month)
    if key not in state:
        state[key] = current_revision(session, project_id, year, month)
    return int(state[key])


def remember_revision(
    state: MutableMapping, project_id: str, year: int, month: int, revision: Optional[int]
) -> None:
    """Mémorise la révision après écriture; None oublie (relecture au prochain affichage)."""
    key = _revision_key(project_id, year, month)
    if revision is None:
        state.pop(key, None)
    else:
        state[key] = int(revision)


def process_payout(
    session: Session,
    production: ProductionInput,
    rates: PayoutRates = DEFAULT_RATES,
    expected_revision: Optional[int] = None,
) -> PayoutResult:
    """Lit le registre du projet, calcule puis enregistre la période.
    La validation a lieu avant toute écriture.
    """
    stakes = load_ownership(session, production.project_id)
    result = calculate_payout(production, stakes, rates)
    persist_payout(session, production, result, expected_revision=expected_revision)
    return result
