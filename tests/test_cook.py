"""Tests for the COOK value engine: caps, decay, equity and aggregation."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from cooperation_toolkit.cook import (
    DAYS_PER_MONTH,
    aggregate_by_month,
    aggregate_by_year,
    apply_cap,
    apply_decay,
    calculate_equity,
    effective_cook,
    months_elapsed,
    overall_velocity,
    summarize,
    velocity_trends,
)

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def entry(value, issued_at=NOW, attribution="self"):
    return SimpleNamespace(cook_value=value, issued_at=issued_at, attribution=attribution)


class TestCap:
    def test_no_cap_passes_through(self):
        result = apply_cap(120.0, None)
        assert result.capped_cook == 120.0
        assert result.cap_percentage is None
        assert result.is_capped is False

    def test_under_cap(self):
        result = apply_cap(50.0, 200.0)
        assert result.capped_cook == 50.0
        assert result.uncapped_cook == 0.0
        assert result.cap_percentage == pytest.approx(25.0)
        assert result.is_capped is False

    def test_over_cap(self):
        result = apply_cap(250.0, 200.0)
        assert result.capped_cook == 200.0
        assert result.uncapped_cook == 50.0
        assert result.cap_percentage == pytest.approx(100.0)
        assert result.is_capped is True


class TestDecay:
    def test_months_elapsed(self):
        issued = NOW - timedelta(days=DAYS_PER_MONTH * 2)
        assert months_elapsed(issued, NOW) == pytest.approx(2.0)

    def test_future_entries_do_not_grow(self):
        assert months_elapsed(NOW + timedelta(days=10), NOW) == 0.0

    def test_exponential_decay(self):
        issued = NOW - timedelta(days=DAYS_PER_MONTH)
        result = apply_decay([entry(100.0, issued)], 0.1, NOW)
        assert result.raw_cook == 100.0
        assert result.decayed_cook == pytest.approx(90.0)
        assert result.decay_amount == pytest.approx(10.0)

    def test_no_rate_means_no_decay(self):
        issued = NOW - timedelta(days=400)
        result = apply_decay([entry(10.0, issued)], None, NOW)
        assert result.decayed_cook == 10.0
        assert result.decay_rate is None

    def test_naive_timestamps_treated_as_utc(self):
        issued = (NOW - timedelta(days=DAYS_PER_MONTH)).replace(tzinfo=None)
        result = apply_decay([entry(100.0, issued)], 0.5, NOW)
        assert result.decayed_cook == pytest.approx(50.0)


class TestEffectiveCook:
    def test_decay_then_cap(self):
        issued = NOW - timedelta(days=DAYS_PER_MONTH)
        result = effective_cook([entry(300.0, issued)], cap=200.0, decay_rate=0.5, now=NOW)
        # 300 decays to 150, under the cap
        assert result.decayed_cook == pytest.approx(150.0)
        assert result.effective_cook == pytest.approx(150.0)
        assert result.is_capped is False

    def test_cap_applies_after_decay(self):
        result = effective_cook([entry(300.0)], cap=200.0, decay_rate=0.5, now=NOW)
        assert result.effective_cook == 200.0
        assert result.uncapped_cook == pytest.approx(100.0)


class TestEquity:
    def test_split_by_effective_cook(self):
        rows = calculate_equity(
            {"alice": [entry(30.0)], "bob": [entry(10.0)]},
            now=NOW,
        )
        assert [r["contributor_id"] for r in rows] == ["alice", "bob"]
        assert rows[0]["equity_percentage"] == pytest.approx(75.0)
        assert rows[1]["equity_percentage"] == pytest.approx(25.0)
        assert rows[0]["model"] == "slicing"

    def test_cap_limits_share(self):
        rows = calculate_equity(
            {"alice": [entry(300.0)], "bob": [entry(100.0)]},
            cap=100.0,
            model="proportional",
            now=NOW,
        )
        assert all(r["equity_percentage"] == pytest.approx(50.0) for r in rows)
        assert rows[0]["model"] == "proportional"

    def test_empty_team(self):
        assert calculate_equity({}, now=NOW) == []


class TestAggregation:
    @pytest.fixture
    def entries(self):
        return [
            entry(10.0, datetime(2025, 11, 3, tzinfo=timezone.utc)),
            entry(5.0, datetime(2025, 11, 20, tzinfo=timezone.utc), "spend"),
            entry(20.0, datetime(2026, 1, 10, tzinfo=timezone.utc)),
            entry(8.0, datetime(2026, 2, 1, tzinfo=timezone.utc)),
        ]

    def test_by_month(self, entries):
        months = aggregate_by_month(entries)
        assert [m.period for m in months] == ["2025-11", "2026-01", "2026-02"]
        assert months[0].total == 15.0
        assert months[0].self_cook == 10.0
        assert months[0].spend_cook == 5.0
        assert months[0].count == 2

    def test_by_year(self, entries):
        years = aggregate_by_year(entries)
        assert [(y.period, y.total) for y in years] == [("2025", 15.0), ("2026", 28.0)]

    def test_overall_velocity_over_active_months(self, entries):
        assert overall_velocity(entries) == pytest.approx(43.0 / 3)

    def test_trends_compare_to_previous_period(self, entries):
        trends = [p.trend for p in velocity_trends(entries)]
        assert trends == ["new", "increasing", "decreasing"]

    def test_stable_trend(self):
        points = velocity_trends(
            [
                entry(4.0, datetime(2026, 1, 1, tzinfo=timezone.utc)),
                entry(4.0, datetime(2026, 2, 1, tzinfo=timezone.utc)),
            ]
        )
        assert points[1].trend == "stable"

    def test_summarize_empty(self):
        summary = summarize([])
        assert summary["by_month"] == []
        assert summary["overall_velocity"] == 0.0
