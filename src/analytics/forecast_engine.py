from __future__ import annotations

import math
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from src.analytics.resolvers import (
    OFFER_BU_MULTIPLIER,
    TargetResolver,
    effective_period,
    effective_value,
    resolve_owner_id,
)
from src.analytics.values import round_half_up, round_percent, sum_money, to_money
from src.models.forecast import (
    TERMINAL_STAGES,
    OfferRecord,
    OfferStage,
    UserRecord,
    product_label,
)
from src.schemas.forecast import (
    MonthlyRow,
    MonthlyTotals,
    OwnerMonthlyValues,
    ProductBreakdown,
    ProductMonthlyRow,
    ProductTotals,
    QuarterRollup,
)
from src.shared.time import MONTH_KEYS, MONTH_NAMES, QUARTERS, month_period, period_in_year, period_month

K = TypeVar("K")

WON_STAGES = (OfferStage.WON.value,)
# Zone summary counts a received PO as an order even before the offer is marked WON.
ORDER_STAGES = (OfferStage.WON.value, OfferStage.PO_RECEIVED.value)
QUARTERLY_BU_DIVISOR = 3


def offer_value(offer: OfferRecord) -> float:
    return to_money(offer.offer_value)


def sum_offer_values(offers: Iterable[OfferRecord]) -> float:
    return sum_money(offer_value(offer) for offer in offers)


def count_and_sum(offers: Sequence[OfferRecord]) -> Tuple[int, float]:
    return len(offers), sum_offer_values(offers)


def group_by(
    offers: Iterable[OfferRecord], key: Callable[[OfferRecord], Optional[K]]
) -> Dict[K, List[OfferRecord]]:
    groups: Dict[K, List[OfferRecord]] = defaultdict(list)
    for offer in offers:
        group_key = key(offer)
        if group_key is not None:
            groups[group_key].append(offer)
    return dict(groups)


def is_won(offer: OfferRecord, stages: Sequence[str] = WON_STAGES) -> bool:
    return offer.stage in stages


def orders_received(
    offers: Iterable[OfferRecord],
    year: int,
    month: Optional[int] = None,
    stages: Sequence[str] = WON_STAGES,
) -> float:
    """Sum effective values of won offers whose effective period lands in the year/month."""
    values: List[float] = []
    for offer in offers:
        if not is_won(offer, stages):
            continue
        period = effective_period(offer)
        if month is None:
            if not period_in_year(period, year):
                continue
        elif period != month_period(year, month):
            continue
        values.append(effective_value(offer))
    return sum_money(values)


def won_value(offers: Iterable[OfferRecord], stages: Sequence[str] = WON_STAGES) -> float:
    return sum_money(effective_value(offer) for offer in offers if is_won(offer, stages))


def open_funnel_by_subtraction(offers_value: float, orders: float) -> float:
    # Zone-level open funnel is offers minus orders. Month-level reports use
    # orders_in_hand instead; the two are not equivalent and both are intentional
    # until the business owner settles on one definition.
    return to_money(offers_value - orders)


def orders_in_hand(offers: Iterable[OfferRecord]) -> float:
    # Month-level open funnel: offers still flagged open and not WON/LOST.
    return sum_money(
        offer_value(offer)
        for offer in offers
        if offer.open_funnel and offer.stage not in TERMINAL_STAGES
    )


def hit_rate(orders: float, offers_value: float, digits: int = 0) -> float:
    if offers_value <= 0:
        return 0
    rate = orders / offers_value * 100
    if digits == 0:
        return round_percent(rate)
    return round_half_up(rate, digits)


def balance_bu(yearly_target: float, orders: float) -> float:
    return to_money(yearly_target - orders)


def deviation_pct(actual: float, target: float) -> Optional[float]:
    """Percent deviation of actual from target; None when there is nothing to compare."""
    if target <= 0 or actual == 0:
        return None
    return (actual - target) / target * 100


def rounded_deviation(actual: float, target: float) -> Optional[int]:
    deviation = deviation_pct(actual, target)
    return round_percent(deviation) if deviation is not None else None


def filter_by_probability(
    offers: Iterable[OfferRecord], min_probability: int = 0, max_probability: int = 100
) -> List[OfferRecord]:
    # Included offers keep their full value; no probability weighting is applied.
    return [
        offer
        for offer in offers
        if min_probability <= offer.probability_percentage <= max_probability
    ]


def monthly_values(
    offers: Iterable[OfferRecord],
    period_of: Callable[[OfferRecord], Optional[str]],
    value_of: Callable[[OfferRecord], float] = offer_value,
    month_keys: Sequence[str] = MONTH_KEYS,
) -> Dict[str, float]:
    buckets: Dict[str, float] = {key: 0.0 for key in month_keys}
    for offer in offers:
        month = period_month(period_of(offer))
        if month is None:
            continue
        key = MONTH_KEYS[month - 1]
        if key in buckets:
            buckets[key] += value_of(offer)
    return {key: to_money(value) for key, value in buckets.items()}


def quarterly_rollup(monthly: Dict[str, float], yearly_target: float) -> List[QuarterRollup]:
    quarterly_bu = to_money(yearly_target / QUARTERLY_BU_DIVISOR)
    quarters: List[QuarterRollup] = []
    for name, months in QUARTERS:
        forecast = sum_money(monthly.get(month, 0.0) for month in months)
        quarters.append(
            QuarterRollup(
                name=name,
                label=f"{name} Forecast",
                months=list(months),
                forecast=forecast,
                bu=quarterly_bu,
                deviation=rounded_deviation(forecast, quarterly_bu),
            )
        )
    return quarters


def build_monthly_rows(
    offers: Sequence[OfferRecord],
    year: int,
    scope_id: int,
    targets: TargetResolver,
) -> Tuple[List[MonthlyRow], MonthlyTotals]:
    by_offer_month = group_by(offers, lambda offer: offer.offer_month)
    rows: List[MonthlyRow] = []
    budget_shares: List[float] = []
    for month in range(1, 13):
        period = month_period(year, month)
        month_offers = by_offer_month.get(period, [])
        offers_value = sum_offer_values(month_offers)
        order_received = orders_received(offers, year, month)
        # Bookings are not tracked separately yet, so booked mirrors received.
        orders_booked = order_received
        budget_share = targets.monthly_share(scope_id, year, month)
        budget_shares.append(budget_share)
        bu_monthly = to_money(budget_share)
        offer_bu_month = to_money(bu_monthly * OFFER_BU_MULTIPLIER)
        rows.append(
            MonthlyRow(
                month=period,
                month_label=MONTH_NAMES[month - 1],
                offers_value=offers_value,
                order_received=order_received,
                orders_booked=orders_booked,
                dev_or_vs_booked=to_money(order_received - orders_booked),
                orders_in_hand=orders_in_hand(month_offers),
                bu_monthly=bu_monthly,
                booked_vs_bu=round_percent(orders_booked / bu_monthly * 100) if bu_monthly > 0 else None,
                percent_dev=rounded_deviation(order_received, bu_monthly),
                offer_bu_month=offer_bu_month,
                offer_bu_month_dev=rounded_deviation(offers_value, offer_bu_month),
            )
        )
    return rows, sum_monthly_rows(rows, math.fsum(budget_shares))


def sum_monthly_rows(rows: Sequence[MonthlyRow], budget_total: float) -> MonthlyTotals:
    # Budget totals come from the unrounded monthly shares, not the cent-rounded rows.
    return MonthlyTotals(
        offers_value=sum_money(row.offers_value for row in rows),
        order_received=sum_money(row.order_received for row in rows),
        orders_booked=sum_money(row.orders_booked for row in rows),
        orders_in_hand=sum_money(row.orders_in_hand for row in rows),
        bu_monthly=to_money(budget_total),
        offer_bu_month=to_money(budget_total * OFFER_BU_MULTIPLIER),
    )


def sum_monthly_totals(totals: Iterable[MonthlyTotals]) -> MonthlyTotals:
    items = list(totals)
    return MonthlyTotals(
        offers_value=sum_money(item.offers_value for item in items),
        order_received=sum_money(item.order_received for item in items),
        orders_booked=sum_money(item.orders_booked for item in items),
        orders_in_hand=sum_money(item.orders_in_hand for item in items),
        bu_monthly=sum_money(item.bu_monthly for item in items),
        offer_bu_month=sum_money(item.offer_bu_month for item in items),
    )


def breakdown_hit_rate(offers: Sequence[OfferRecord]) -> int:
    return int(hit_rate(won_value(offers), sum_offer_values(offers)))


def build_product_breakdown(
    offers: Sequence[OfferRecord],
    year: int,
    scope_id: int,
    targets: TargetResolver,
    product_types: Sequence[str],
) -> List[ProductBreakdown]:
    """Per-product monthly rows, keeping only products with activity or a target."""
    by_product = group_by(offers, lambda offer: offer.product_type)
    breakdown: List[ProductBreakdown] = []
    for product_type in product_types:
        product_offers = by_product.get(product_type, [])
        yearly_target = targets.product_yearly_target(scope_id, year, product_type)
        bu_monthly = targets.product_monthly_target(scope_id, year, product_type)
        offer_bu = targets.product_offer_bu(scope_id, year, product_type)
        by_offer_month = group_by(product_offers, lambda offer: offer.offer_month)
        rows: List[ProductMonthlyRow] = []
        for month in range(1, 13):
            period = month_period(year, month)
            month_offers = by_offer_month.get(period, [])
            offers_value = sum_offer_values(month_offers)
            order_received = orders_received(product_offers, year, month)
            rows.append(
                ProductMonthlyRow(
                    month=period,
                    month_label=MONTH_NAMES[month - 1],
                    offers_value=offers_value,
                    order_received=order_received,
                    orders_in_hand=orders_in_hand(month_offers),
                    bu_monthly=bu_monthly,
                    percent_dev=rounded_deviation(order_received, bu_monthly),
                    offer_bu_month=offer_bu,
                    offer_bu_month_dev=rounded_deviation(offers_value, offer_bu),
                )
            )
        totals = ProductTotals(
            offers_value=sum_money(row.offers_value for row in rows),
            order_received=sum_money(row.order_received for row in rows),
            orders_in_hand=sum_money(row.orders_in_hand for row in rows),
            bu_monthly=to_money(yearly_target),
            offer_bu_month=to_money(yearly_target * OFFER_BU_MULTIPLIER),
        )
        has_activity = (
            totals.offers_value > 0
            or totals.order_received > 0
            or totals.orders_in_hand > 0
            or yearly_target > 0
        )
        if not has_activity:
            continue
        breakdown.append(
            ProductBreakdown(
                product_type=product_type,
                product_label=product_label(product_type),
                yearly_target=yearly_target,
                hit_rate=breakdown_hit_rate(product_offers),
                monthly_data=rows,
                totals=totals,
            )
        )
    return breakdown


def owner_roster(
    members: Sequence[UserRecord],
    offers: Iterable[OfferRecord],
    directory: Optional[Dict[int, UserRecord]] = None,
) -> List[UserRecord]:
    """Zone members plus a synthetic entry for every other owner who has offers here.

    Members come first in their given order; synthetic owners are appended by id.
    """
    directory = directory or {}
    roster = list(members)
    known = {member.id for member in members}
    for owner_id in sorted({resolve_owner_id(offer) for offer in offers} - {None}):
        if owner_id in known:
            continue
        roster.append(directory.get(owner_id) or UserRecord(id=owner_id))
        known.add(owner_id)
    return roster


def sort_by_name(users: Iterable[UserRecord]) -> List[UserRecord]:
    return sorted(users, key=lambda user: (user.display_name.lower(), user.id))


def owner_month_grid(
    roster: Sequence[UserRecord],
    offers: Iterable[OfferRecord],
    period_of: Callable[[OfferRecord], Optional[str]],
    month_keys: Sequence[str] = MONTH_KEYS,
) -> Tuple[List[OwnerMonthlyValues], Dict[str, float], float]:
    """Owner × month grid of offer values, plus column totals and the grand total."""
    by_owner = group_by(offers, resolve_owner_id)
    rows: List[OwnerMonthlyValues] = []
    for user in sort_by_name(roster):
        values = monthly_values(by_owner.get(user.id, []), period_of, month_keys=month_keys)
        rows.append(
            OwnerMonthlyValues(
                user_id=user.id,
                user_name=user.display_name,
                monthly_values=values,
                total=sum_money(values.values()),
            )
        )
    monthly_totals = {
        key: sum_money(row.monthly_values.get(key, 0.0) for row in rows) for key in month_keys
    }
    return rows, monthly_totals, sum_money(monthly_totals.values())
