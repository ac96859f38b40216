import logging
from decimal import Decimal

import pytest

from wellhead.config import (
    DEFAULT_RATES,
    INVESTOR_POOL_SHARE,
    SEVERANCE_TAX_RATE,
    PayoutRates,
    get_database_url,
    load_rates,
    setup_logging,
)
from wellhead.errors import ReconstructionDegraded, ValidationError
from wellhead.ledger import OwnershipStake, ownership_summary, parse_period
from wellhead.money import cent_tolerance, format_usd, optional_decimal, quantize_cents, to_decimal


class TestMoney:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("$1,234.50", Decimal("1234.50")),
            (" 70 ", Decimal("70")),
            (0.1, Decimal("0.1")),
            (3, Decimal("3")),
            (Decimal("2.5"), Decimal("2.5")),
        ],
    )
    def test_to_decimal(self, raw, expected):
        assert to_decimal(raw) == expected

    @pytest.mark.parametrize("raw", [None, True, "", "abc", float("inf"), "NaN"])
    def test_to_decimal_rejects(self, raw):
        with pytest.raises(ValidationError) as exc:
            to_decimal(raw, "price_per_barrel")
        assert exc.value.field == "price_per_barrel"

    def test_optional_decimal(self):
        assert optional_decimal(None) is None
        assert optional_decimal(float("nan")) is None
        assert optional_decimal("5") == Decimal("5")

    def test_rounding_is_half_up(self):
        assert quantize_cents(Decimal("0.005")) == Decimal("0.01")
        assert quantize_cents(Decimal("-2.675")) == Decimal("-2.68")

    def test_format_usd(self):
        assert format_usd(Decimal("29571")) == "$29,571.00"
        assert format_usd("-1234.567") == "-$1,234.57"
        assert format_usd(None) == "-"

    def test_cent_tolerance(self):
        assert cent_tolerance(0) == Decimal("0.01")
        assert cent_tolerance(7) == Decimal("0.07")


class TestRates:
    def test_defaults(self):
        assert SEVERANCE_TAX_RATE == Decimal("0.046")
        assert INVESTOR_POOL_SHARE == Decimal("0.75")
        assert DEFAULT_RATES.company_share == Decimal("0.25")

    @pytest.mark.parametrize("kw", [dict(severance_tax_rate="1.2"), dict(investor_pool_share="-0.1")])
    def test_out_of_range(self, kw):
        with pytest.raises(ValidationError):
            PayoutRates(**kw)

    def test_load_rates_from_env(self, monkeypatch):
        monkeypatch.setenv("SEVERANCE_TAX_RATE", "0.05")
        monkeypatch.setenv("INVESTOR_POOL_SHARE", "0.8")
        rates = load_rates()
        assert rates.severance_tax_rate == Decimal("0.05")
        assert rates.company_share == Decimal("0.2")

    def test_database_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        assert get_database_url() == "sqlite://"
        monkeypatch.delenv("DATABASE_URL")
        with pytest.raises(RuntimeError):
            get_database_url()


class TestLogging:
    def test_setup_is_idempotent(self):
        logger = setup_logging("debug")
        setup_logging("debug")
        assert logger.name == "wellhead"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1


class TestLedger:
    def test_parse_period(self):
        assert parse_period("2024-03") == (2024, 3)
        for bad in ("2024/03", "2024-13", "march"):
            with pytest.raises(ValidationError):
                parse_period(bad)

    def test_from_percentage(self):
        stake = OwnershipStake.from_percentage("a", "12.5", invested_amount="$10,000")
        assert stake.ownership_fraction == Decimal("0.125")
        assert stake.invested_amount == Decimal("10000")
        with pytest.raises(ValidationError):
            OwnershipStake.from_percentage("a", 101)

    def test_ownership_summary(self):
        stakes = [
            OwnershipStake.from_percentage("a", 60, 100),
            OwnershipStake.from_percentage("b", 30, 50),
        ]
        summary = ownership_summary(stakes)
        assert summary["allocated_pct"] == Decimal("90")
        assert summary["unallocated_pct"] == Decimal("10")
        assert summary["status"] == "under_allocated"
        assert ownership_summary(stakes + [OwnershipStake.from_percentage("c", 10)])["status"] == "complete"

    def test_degraded_flag_text(self):
        flag = ReconstructionDegraded("agrégat incomplet", ("production",))
        assert "production" in str(flag)
