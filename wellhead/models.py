from sqlalchemy import (
    Column,
    String,
    Date,
    Numeric,
    Boolean,
    Integer,
    DateTime,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

PROJECT_STATUSES = (
    "Open",
    "Active",
    "Planning",
    "Completed",
    "Funding",
    "On Hold",
    "Cancelled",
)

# Montants: Numeric(20, 6) -> Decimal côté Python, pas de float
Money = Numeric(20, 6, asdecimal=True)


class Project(Base):
    __tablename__ = "projects"
    project_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    location = Column(String)
    status = Column(String, default="Planning")
    total_units = Column(Integer)
    target_raise = Column(Money)
    created_at = Column(DateTime)


class Investor(Base):
    __tablename__ = "investors"
    investor_id = Column(String, primary_key=True)
    name = Column(String)
    email = Column(String, unique=True, index=True)
    phone = Column(String)
    bank_name = Column(String)
    routing_number = Column(String)
    account_number = Column(String)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime)
    notes = Column(String)


class Stake(Base):
    __tablename__ = "ownership_stakes"
    stake_id = Column(String, primary_key=True)
    investor_id = Column(String, index=True, nullable=False)
    project_id = Column(String, index=True, nullable=False)
    invested_amount = Column(Money, default=0)
    percentage_owned = Column(Numeric(9, 6, asdecimal=True), default=0)
    start_date = Column(Date)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
    __table_args__ = (
        UniqueConstraint("investor_id", "project_id", name="uq_stake_investor_project"),
    )


class RevenueSummary(Base):
    """Instantané de production + résultat du waterfall pour (projet, année, mois)."""

    __tablename__ = "revenue_summaries"
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String, index=True, nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    total_barrels = Column(Money)
    price_per_barrel = Column(Money)
    operating_expenses = Column(Money)
    severance_tax_rate = Column(Numeric(9, 6, asdecimal=True))
    investor_pool_share = Column(Numeric(9, 6, asdecimal=True))
    gross_revenue = Column(Money)
    severance_tax = Column(Money)
    net_revenue = Column(Money)
    investor_pool = Column(Money)
    company_revenue = Column(Money)
    # total_revenue = net_investor_payout (pool investisseurs net des frais)
    total_revenue = Column(Money)
    # Compteur de version géré par le mapper: UPDATE ... WHERE revision = <lue>
    revision = Column(Integer, default=1, nullable=False)
    calculated_at = Column(DateTime)
    __table_args__ = (
        UniqueConstraint("project_id", "year", "month", name="uq_revenue_period"),
    )
    __mapper_args__ = {"version_id_col": revision}


class Distribution(Base):
    __tablename__ = "distributions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String, index=True, nullable=False)
    investor_id = Column(String, index=True, nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    percentage_owned = Column(Numeric(9, 6, asdecimal=True))
    base_barrels = Column(Money)
    investor_barrels = Column(Money)
    share = Column(Numeric(20, 12, asdecimal=True))
    payout_amount = Column(Money)
    calculated_at = Column(DateTime)
    __table_args__ = (
        UniqueConstraint(
            "project_id", "investor_id", "year", "month", name="uq_distribution_period"
        ),
    )
