from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from wellhead.db import (
    add_or_update_stake,
    available_periods,
    get_investor_by_email,
    list_investors_df,
    list_projects_df,
    list_stakes_df,
    load_ownership,
    remove_stake,
    set_project_status,
    upsert_investor,
    upsert_project,
)
from wellhead.errors import ValidationError
from wellhead.ledger import ProductionInput
from wellhead.models import Project, Stake
from wellhead.persistence import process_payout


class TestProjects:
    def test_upsert_updates_in_place(self, session):
        upsert_project(session, "p1", "Permian A", status="Planning", target_raise="1,500,000")
        upsert_project(session, "p1", "Permian A-1", status="Funding")
        session.commit()
        df = list_projects_df(session)
        assert len(df) == 1
        assert df.iloc[0]["name"] == "Permian A-1"
        assert df.iloc[0]["status"] == "Funding"

    def test_unknown_status_rejected(self, session):
        with pytest.raises(ValidationError) as exc:
            upsert_project(session, "p1", "X", status="Drilling")
        assert exc.value.field == "status"

    def test_negative_target_raise_rejected(self, session):
        with pytest.raises(ValidationError):
            upsert_project(session, "p1", "X", target_raise=-1)

    def test_status_change(self, seeded):
        set_project_status(seeded, "eagle", "Completed")
        seeded.commit()
        assert seeded.get(Project, "eagle").status == "Completed"
        with pytest.raises(KeyError):
            set_project_status(seeded, "nope", "Active")


class TestInvestors:
    def test_email_is_normalized_and_looked_up(self, seeded):
        upsert_investor(seeded, "carol", "Carol", email="  Carol@Example.COM ")
        seeded.commit()
        inv = get_investor_by_email(seeded, "CAROL@example.com")
        assert inv is not None and inv.investor_id == "carol"
        assert get_investor_by_email(seeded, "") is None

    def test_email_must_be_unique(self, seeded):
        with pytest.raises(ValidationError) as exc:
            upsert_investor(seeded, "mallory", "Mallory", email="alice@example.com")
        assert exc.value.field == "email"

    def test_update_keeps_own_email(self, seeded):
        upsert_investor(seeded, "alice", "Alice M.", email="alice@example.com", phone="555")
        seeded.commit()
        df = list_investors_df(seeded).set_index("investor_id")
        assert df.loc["alice", "name"] == "Alice M."
        assert len(df) == 2


class TestStakes:
    def test_listing_joins_investor_name(self, seeded):
        df = list_stakes_df(seeded, project_id="eagle")
        assert list(df["investor_id"]) == ["alice", "bob"]
        assert list(df["investor_name"]) == ["Alice Martin", "Bob Chen"]

    def test_update_does_not_duplicate(self, seeded):
        add_or_update_stake(seeded, "alice", "eagle", invested_amount="1000", percentage_owned="55")
        seeded.commit()
        assert seeded.query(Stake).count() == 2
        stakes = {s.investor_id: s for s in load_ownership(seeded, "eagle")}
        assert stakes["alice"].ownership_fraction == Decimal("0.55")

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            (dict(invested_amount="-1", percentage_owned="10"), "invested_amount"),
            (dict(invested_amount="1", percentage_owned="100.5"), "percentage_owned"),
            (dict(invested_amount="1", percentage_owned="-2"), "percentage_owned"),
        ],
    )
    def test_stake_bounds(self, seeded, kwargs, field):
        with pytest.raises(ValidationError) as exc:
            add_or_update_stake(seeded, "alice", "eagle", **kwargs)
        assert exc.value.field == field

    def test_unknown_project_or_investor(self, seeded):
        with pytest.raises(ValidationError) as exc:
            add_or_update_stake(seeded, "alice", "ghost", 1, 1)
        assert exc.value.field == "project_id"
        with pytest.raises(ValidationError) as exc:
            add_or_update_stake(seeded, "ghost", "eagle", 1, 1)
        assert exc.value.field == "investor_id"

    def test_pair_is_unique_in_database(self, seeded):
        seeded.add(Stake(stake_id="dup", investor_id="alice", project_id="eagle"))
        with pytest.raises(IntegrityError):
            seeded.commit()
        seeded.rollback()

    def test_remove_stake(self, seeded):
        assert remove_stake(seeded, "bob", "eagle") is True
        seeded.commit()
        assert remove_stake(seeded, "bob", "eagle") is False
        assert [s.investor_id for s in load_ownership(seeded, "eagle")] == ["alice"]

    def test_load_ownership_snapshot(self, seeded):
        stakes = load_ownership(seeded, "eagle")
        assert [s.investor_id for s in stakes] == ["alice", "bob"]
        assert stakes[0].investor_name == "Alice Martin"
        assert stakes[0].ownership_fraction == Decimal("0.6")
        assert stakes[1].invested_amount == Decimal("280000")


class TestPeriods:
    def test_available_periods_newest_first(self, seeded, march):
        process_payout(seeded, march)
        process_payout(seeded, ProductionInput.build("eagle", 2023, 11, 10, 70))
        process_payout(seeded, ProductionInput.build("eagle", 2024, 1, 10, 70))
        assert available_periods(seeded, "eagle") == [(2024, 3), (2024, 1), (2023, 11)]
