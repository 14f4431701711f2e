from __future__ import annotations

from src.analytics.forecast_engine import (
    build_monthly_rows,
    build_product_breakdown,
    deviation_pct,
    filter_by_probability,
    hit_rate,
    monthly_values,
    open_funnel_by_subtraction,
    orders_in_hand,
    orders_received,
    owner_month_grid,
    owner_roster,
    quarterly_rollup,
    rounded_deviation,
)
from src.analytics.resolvers import TargetResolver
from src.models.forecast import OfferRecord, TargetRecord, UserRecord


def _offer(**values):
    values.setdefault("id", 1)
    return OfferRecord.model_validate(values)


def _target(scope_id, period, value, product_type=None, period_type="YEARLY"):
    return TargetRecord(
        scope_id=scope_id,
        target_period=period,
        period_type=period_type,
        product_type=product_type,
        target_value=value,
    )


def test_deviation_is_none_without_a_target():
    assert deviation_pct(500, 0) is None
    assert deviation_pct(500, -10) is None
    assert rounded_deviation(500, 0) is None


def test_deviation_is_none_without_actuals():
    assert deviation_pct(0, 400) is None


def test_deviation_against_target():
    assert deviation_pct(1200, 400) == 200
    assert rounded_deviation(300, 400) == -25


def test_orders_received_uses_effective_period_and_value():
    offers = [
        _offer(id=1, stage="WON", offer_value=1000, po_value=1200, offer_month="2024-02", po_received_month="2024-03"),
        _offer(id=2, stage="WON", offer_value=400, offer_month="2024-03"),
        _offer(id=3, stage="NEGOTIATION", offer_value=999, offer_month="2024-03"),
        _offer(id=4, stage="WON", offer_value=50, offer_month="2023-03"),
    ]
    assert orders_received(offers, 2024) == 1600.0
    assert orders_received(offers, 2024, 3) == 1600.0
    assert orders_received(offers, 2024, 2) == 0.0


def test_open_funnel_definitions_are_kept_apart():
    offers = [
        _offer(id=1, stage="NEGOTIATION", offer_value=500, open_funnel=True),
        _offer(id=2, stage="WON", offer_value=700, open_funnel=True),
        _offer(id=3, stage="INITIAL", offer_value=300, open_funnel=False),
    ]
    assert orders_in_hand(offers) == 500.0
    assert open_funnel_by_subtraction(1500, 700) == 800.0


def test_probability_filter_excludes_instead_of_weighting():
    offers = [
        _offer(id=1, offer_value=1000, probability_percentage=40),
        _offer(id=2, offer_value=300, probability_percentage=60),
    ]
    kept = filter_by_probability(offers, 50, 100)
    assert [offer.id for offer in kept] == [2]


def test_hit_rate_handles_zero_offers():
    assert hit_rate(100, 0) == 0
    assert hit_rate(1200, 1800) == 67
    assert hit_rate(1200, 1800, digits=1) == 66.7


def test_quarterly_forecast_matches_month_sum():
    monthly = monthly_values(
        [
            _offer(id=1, offer_value="0.1", offer_month="2024-01"),
            _offer(id=2, offer_value="0.2", offer_month="2024-02"),
            _offer(id=3, offer_value="0.3", offer_month="2024-03"),
        ],
        lambda offer: offer.offer_month,
    )
    quarters = quarterly_rollup(monthly, 2400)
    assert quarters[0].forecast == 0.6
    assert quarters[0].bu == 800.0
    assert quarters[1].forecast == 0.0
    assert quarters[1].deviation is None


def test_quarterly_rollup_without_target_has_no_deviation():
    quarters = quarterly_rollup({"JAN": 500.0}, 0)
    assert [quarter.deviation for quarter in quarters] == [None, None, None, None]


def test_owner_roster_adds_synthetic_owners():
    members = [UserRecord(id=10, name="Asha")]
    offers = [
        _offer(id=1, assigned_to_id=10),
        _offer(id=2, assigned_to_id=99, created_by_id=10),
        _offer(id=3, created_by_id=42),
    ]
    roster = owner_roster(members, offers, {99: UserRecord(id=99, name="Admin One")})
    assert [(user.id, user.display_name) for user in roster] == [
        (10, "Asha"),
        (42, "User 42"),
        (99, "Admin One"),
    ]


def test_owner_month_grid_counts_each_offer_once():
    roster = [UserRecord(id=10, name="Zed"), UserRecord(id=11, name="Amy")]
    offers = [
        _offer(id=1, assigned_to_id=10, created_by_id=11, offer_value=100, po_expected_month="2024-06"),
        _offer(id=2, created_by_id=11, offer_value=50, po_expected_month="2024-06"),
        _offer(id=3, offer_value=75, po_expected_month="2024-06"),
    ]
    rows, totals, grand_total = owner_month_grid(roster, offers, lambda offer: offer.po_expected_month)
    assert [row.user_name for row in rows] == ["Amy", "Zed"]
    assert rows[0].monthly_values["JUN"] == 50.0
    assert rows[1].monthly_values["JUN"] == 100.0
    assert totals["JUN"] == 150.0
    assert grand_total == 150.0


def test_monthly_budget_totals_do_not_drift():
    resolver = TargetResolver([_target(1, "2024", 1000)])
    rows, totals = build_monthly_rows([], 2024, 1, resolver)

    assert rows[0].bu_monthly == 83.33
    assert rows[0].offer_bu_month == 333.32
    assert totals.bu_monthly == 1000.0
    assert totals.offer_bu_month == 4000.0


def test_monthly_budget_totals_include_explicit_months():
    resolver = TargetResolver(
        [_target(1, "2024", 1200)],
        [_target(1, "2024-01", 250, period_type="MONTHLY")],
    )
    _, totals = build_monthly_rows([], 2024, 1, resolver)

    assert totals.bu_monthly == 1350.0
    assert totals.offer_bu_month == 5400.0


def test_product_budget_totals_follow_yearly_target():
    resolver = TargetResolver([_target(1, "2024", 1000, "SPP")])
    breakdown = build_product_breakdown([], 2024, 1, resolver, ["SPP", "CONTRACT"])

    assert [product.product_type for product in breakdown] == ["SPP"]
    assert breakdown[0].monthly_data[0].bu_monthly == 83.33
    assert breakdown[0].totals.bu_monthly == 1000.0
    assert breakdown[0].totals.offer_bu_month == 4000.0
