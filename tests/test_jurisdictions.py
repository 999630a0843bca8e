"""Tests for tax periods, jurisdictions and the registry."""

import pytest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from domain.enums import CostBasisMethod, RuleCategory, TaxEventType
from domain.exceptions import UnsupportedJurisdiction
from domain.jurisdictions import (
    JURISDICTIONS, ClassificationRule, TaxPeriod, TaxRule, australia,
    load_jurisdiction, register_jurisdiction, supported_jurisdictions,
)

AU = australia()


class TestAustralianPeriod:
    def test_2024_boundaries(self):
        p = AU.tax_year_period(2024)
        assert p.start == datetime(2023, 7, 1, tzinfo=timezone.utc)
        assert p.end == datetime(2024, 7, 1, tzinfo=timezone.utc) - timedelta(microseconds=1)
        assert p.label == "2023-2024"
        assert p.days == 366

    def test_contains_is_closed(self):
        p = AU.tax_year_period(2024)
        assert p.contains(p.start)
        assert p.contains(p.end)
        assert not p.contains(p.start - timedelta(microseconds=1))
        assert not p.contains(datetime(2024, 7, 1, tzinfo=timezone.utc))

    def test_naive_moment_read_as_utc(self):
        assert AU.tax_year_period(2024).contains(datetime(2024, 6, 30, 23, 59))

    def test_tax_year_of(self):
        assert AU.tax_year_of(datetime(2023, 6, 30, tzinfo=timezone.utc)) == 2023
        assert AU.tax_year_of(datetime(2023, 7, 1, tzinfo=timezone.utc)) == 2024

    def test_calendar_year_regime(self):
        cal = replace(AU, code="CY", tax_year_start_month=1, tax_year_start_day=1)
        p = cal.tax_year_period(2024)
        assert p.start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert p.label == "2024"
        assert cal.tax_year_of(datetime(2024, 12, 31, tzinfo=timezone.utc)) == 2024

    def test_inverted_period_rejected(self):
        with pytest.raises(ValueError):
            TaxPeriod(2024, datetime(2024, 2, 1), datetime(2024, 1, 1))


class TestJurisdiction:
    def test_australian_parameters(self):
        assert AU.cgt_discount_rate == Decimal("0.5")
        assert AU.cgt_holding_period == 365
        assert AU.personal_use_threshold == Decimal("10000")
        assert AU.supports_method(CostBasisMethod.SPECIFIC_IDENTIFICATION)

    def test_discount_qualification(self):
        assert AU.qualifies_for_discount(365)
        assert not AU.qualifies_for_discount(364)
        assert not AU.qualifies_for_discount(1000, is_personal_use=True)

    def test_classification_rules_sorted_by_priority(self):
        priorities = [r.priority for r in AU.classification_rules]
        assert priorities == sorted(priorities, reverse=True)
        assert AU.classification_rules[0].event_type == TaxEventType.INCOME

    def test_rules_in_category(self):
        ids = [r.id for r in AU.rules_in(RuleCategory.INCOME)]
        assert "AU_STAKING_INCOME" in ids
        assert "AU_CGT_DISCOUNT" not in ids

    def test_invalid_discount_rate(self):
        with pytest.raises(ValueError):
            replace(AU, cgt_discount_rate=Decimal("1.5"))

    def test_default_method_must_be_supported(self):
        with pytest.raises(ValueError):
            replace(AU, supported_methods=(CostBasisMethod.SPECIFIC_IDENTIFICATION,))


class TestRules:
    def test_classification_matching(self):
        rule = TaxRule(id="R", name="R", description="", category=RuleCategory.INCOME,
                       applicable_transaction_types=("Staking",))
        assert rule.matches_classification("DeFi Staking Reward - Ordinary Income")
        assert not rule.matches_classification("Sale of Cryptocurrency")

    def test_effective_window(self):
        rule = TaxRule(id="R", name="R", description="", category=RuleCategory.INCOME,
                       effective_from=datetime(2023, 1, 1, tzinfo=timezone.utc))
        assert not rule.is_effective(datetime(2022, 12, 31, tzinfo=timezone.utc))
        assert rule.is_effective(datetime(2023, 1, 1))

    def test_keyword_rule_description(self):
        rule = ClassificationRule(TaxEventType.INCOME, ("Bonus",), priority=1)
        assert rule.matches("spot_trade:buy", "Signup bonus")
        quiet = ClassificationRule(TaxEventType.INCOME, ("bonus",), priority=1,
                                   match_description=False)
        assert not quiet.matches("spot_trade:buy", "Signup bonus")


class TestRegistry:
    def test_load_is_case_insensitive(self):
        assert load_jurisdiction("au").code == "AU"
        assert "AU" in supported_jurisdictions()

    def test_unknown(self):
        with pytest.raises(UnsupportedJurisdiction):
            load_jurisdiction("ZZ")

    def test_register(self, monkeypatch):
        monkeypatch.setattr("domain.jurisdictions.JURISDICTIONS", dict(JURISDICTIONS))
        register_jurisdiction("nz", lambda: replace(AU, code="NZ", name="New Zealand"))
        assert load_jurisdiction("NZ").name == "New Zealand"
