from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, Optional, Tuple

from src.analytics.values import sum_money, to_money
from src.models.forecast import OfferRecord, PeriodType, TargetRecord
from src.shared.time import month_period

# Offer budget benchmark: monthly BU times four, a rolling-quarter business rule.
OFFER_BU_MULTIPLIER = 4
MONTHS_PER_YEAR = 12


def effective_period(offer: OfferRecord) -> Optional[str]:
    """Period that governs a closed order: PO-received month, else offer month."""
    if offer.po_received_month:
        return offer.po_received_month
    if offer.offer_month:
        return offer.offer_month
    return None


def effective_value(offer: OfferRecord) -> float:
    """Amount that counts as an order: PO value when recorded, else offer value.

    Resolved independently of ``effective_period``.
    """
    if offer.po_value is not None:
        return to_money(offer.po_value)
    return to_money(offer.offer_value)


def resolve_owner_id(offer: OfferRecord) -> Optional[int]:
    if offer.assigned_to_id is not None:
        return offer.assigned_to_id
    return offer.created_by_id


class TargetResolver:
    """In-memory target lookups over one batched fetch of yearly and monthly targets."""

    def __init__(
        self,
        yearly_targets: Iterable[TargetRecord] = (),
        monthly_targets: Iterable[TargetRecord] = (),
    ) -> None:
        self._overall: Dict[Tuple[int, str], float] = {}
        self._by_product: Dict[Tuple[int, str], Dict[str, float]] = defaultdict(dict)
        self._monthly: Dict[Tuple[int, str], float] = {}
        for target in yearly_targets:
            if target.period_type != PeriodType.YEARLY.value:
                continue
            key = (target.scope_id, target.target_period)
            if target.product_type is None:
                self._overall[key] = to_money(target.target_value)
            else:
                products = self._by_product[key]
                products[target.product_type] = sum_money(
                    [products.get(target.product_type, 0.0), target.target_value]
                )
        for target in monthly_targets:
            if target.period_type != PeriodType.MONTHLY.value or target.product_type is not None:
                continue
            self._monthly[(target.scope_id, target.target_period)] = to_money(target.target_value)

    def yearly_target(self, scope_id: int, year: int) -> float:
        key = (scope_id, str(year))
        if key in self._overall:
            return self._overall[key]
        # Product targets only stand in when no overall target exists; never both.
        return sum_money(self._by_product.get(key, {}).values())

    def overall_yearly_target(self, scope_id: int, year: int) -> float:
        return self._overall.get((scope_id, str(year)), 0.0)

    def monthly_share(self, scope_id: int, year: int, month: int) -> float:
        """Unrounded monthly target, for totals that must not accumulate cent drift."""
        explicit = self._monthly.get((scope_id, month_period(year, month)))
        if explicit:
            return explicit
        return self.yearly_target(scope_id, year) / MONTHS_PER_YEAR

    def monthly_target(self, scope_id: int, year: int, month: int) -> float:
        return to_money(self.monthly_share(scope_id, year, month))

    def product_yearly_target(self, scope_id: int, year: int, product_type: str) -> float:
        return self._by_product.get((scope_id, str(year)), {}).get(product_type, 0.0)

    def product_monthly_target(self, scope_id: int, year: int, product_type: str) -> float:
        return to_money(self.product_yearly_target(scope_id, year, product_type) / MONTHS_PER_YEAR)

    def product_offer_bu(self, scope_id: int, year: int, product_type: str) -> float:
        yearly = self.product_yearly_target(scope_id, year, product_type)
        return to_money(yearly / MONTHS_PER_YEAR * OFFER_BU_MULTIPLIER)

