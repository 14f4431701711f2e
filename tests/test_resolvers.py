from __future__ import annotations

from src.analytics.resolvers import (
    TargetResolver,
    effective_period,
    effective_value,
    resolve_owner_id,
)
from src.models.forecast import OfferRecord, TargetRecord


def _target(scope_id, period, value, product_type=None, period_type="YEARLY"):
    return TargetRecord(
        scope_id=scope_id,
        target_period=period,
        period_type=period_type,
        product_type=product_type,
        target_value=value,
    )


def test_effective_period_prefers_po_received_month():
    offer = OfferRecord(id=1, offer_month="2024-02", po_received_month="2024-03")
    assert effective_period(offer) == "2024-03"


def test_effective_period_falls_back_to_offer_month():
    assert effective_period(OfferRecord(id=1, offer_month="2024-02")) == "2024-02"


def test_effective_period_is_none_without_months():
    assert effective_period(OfferRecord(id=1, offer_month="garbage")) is None


def test_effective_value_prefers_po_value():
    assert effective_value(OfferRecord(id=1, offer_value=1000, po_value="1200")) == 1200.0


def test_effective_value_keeps_zero_po_value():
    assert effective_value(OfferRecord(id=1, offer_value=1000, po_value=0)) == 0.0


def test_effective_value_falls_back_to_offer_value():
    assert effective_value(OfferRecord(id=1, offer_value="850.5")) == 850.5
    assert effective_value(OfferRecord(id=1)) == 0.0


def test_resolve_owner_id_prefers_assignee():
    assert resolve_owner_id(OfferRecord(id=1, assigned_to_id=5, created_by_id=6)) == 5
    assert resolve_owner_id(OfferRecord(id=1, created_by_id=6)) == 6
    assert resolve_owner_id(OfferRecord(id=1)) is None


def test_overall_target_wins_over_product_targets():
    resolver = TargetResolver([_target(1, "2024", 4800), _target(1, "2024", 1000, "SPP")])
    assert resolver.yearly_target(1, 2024) == 4800.0


def test_product_targets_are_summed_without_overall_target():
    resolver = TargetResolver([_target(1, "2024", 6000, "SPP"), _target(1, "2024", 3000, "CONTRACT")])
    assert resolver.yearly_target(1, 2024) == 9000.0
    assert resolver.overall_yearly_target(1, 2024) == 0.0


def test_missing_target_is_zero():
    assert TargetResolver().yearly_target(7, 2024) == 0.0


def test_monthly_target_derived_from_yearly():
    resolver = TargetResolver([_target(1, "2024", 4800)])
    assert resolver.monthly_target(1, 2024, 3) == 400.0


def test_explicit_monthly_target_wins():
    resolver = TargetResolver(
        [_target(1, "2024", 4800)],
        [_target(1, "2024-03", 650, period_type="MONTHLY")],
    )
    assert resolver.monthly_target(1, 2024, 3) == 650.0
    assert resolver.monthly_target(1, 2024, 4) == 400.0


def test_zero_monthly_target_falls_back_to_yearly_share():
    resolver = TargetResolver(
        [_target(1, "2024", 1200)],
        [_target(1, "2024-05", 0, period_type="MONTHLY")],
    )
    assert resolver.monthly_target(1, 2024, 5) == 100.0


def test_product_targets_and_offer_budget():
    resolver = TargetResolver([_target(2, "2024", 6000, "SPP")])
    assert resolver.product_yearly_target(2, 2024, "SPP") == 6000.0
    assert resolver.product_monthly_target(2, 2024, "SPP") == 500.0
    assert resolver.product_offer_bu(2, 2024, "SPP") == 2000.0
    assert resolver.product_monthly_target(2, 2024, "CONTRACT") == 0.0


def test_monthly_share_is_rounded_to_cents():
    resolver = TargetResolver([_target(1, "2024", 1000)])
    assert resolver.monthly_target(1, 2024, 1) == 83.33


def test_value_and_period_resolve_independently():
    offer = OfferRecord(id=1, offer_value=1000, po_value=1200, offer_month="2024-02")
    assert effective_value(offer) == 1200.0
    assert effective_period(offer) == "2024-02"
