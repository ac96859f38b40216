from decimal import Decimal

import pytest

from wellhead.db import (
    add_or_update_stake,
    get_engine_and_session,
    upsert_investor,
    upsert_project,
)
from wellhead.ledger import OwnershipStake, ProductionInput


def seed_eagle(session):
    """Projet 'eagle' avec deux investisseurs (60% / 40%)."""
    upsert_project(session, "eagle", "Eagle Ford #3", location="TX", status="Active")
    upsert_investor(session, "alice", "Alice Martin", email="alice@example.com")
    upsert_investor(session, "bob", "Bob Chen", email="bob@example.com")
    add_or_update_stake(session, "alice", "eagle", invested_amount="420000", percentage_owned="60")
    add_or_update_stake(session, "bob", "eagle", invested_amount="280000", percentage_owned="40")
    session.commit()


@pytest.fixture
def session():
    engine, SessionLocal = get_engine_and_session("sqlite://")
    with SessionLocal() as s:
        yield s
    engine.dispose()


@pytest.fixture
def seeded(session):
    seed_eagle(session)
    return session


@pytest.fixture
def db_file(tmp_path):
    """Base SQLite sur disque: plusieurs sessions/connexions voient les mêmes données."""
    url = f"sqlite:///{tmp_path / 'wellhead.db'}"
    engine, SessionLocal = get_engine_and_session(url)
    with SessionLocal() as s:
        seed_eagle(s)
    yield url, SessionLocal
    engine.dispose()


@pytest.fixture
def two_stakes():
    return [
        OwnershipStake(investor_id="A", ownership_fraction=Decimal("0.6")),
        OwnershipStake(investor_id="B", ownership_fraction=Decimal("0.4")),
    ]


@pytest.fixture
def march():
    return ProductionInput.build(
        project_id="eagle",
        year=2024,
        month=3,
        total_barrels=1000,
        price_per_barrel=70,
        operating_expenses=800,
    )
