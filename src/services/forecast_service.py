from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import date
from functools import partial
from typing import Callable, Dict, Hashable, Iterator, List, Optional, TypeVar

import httpx
from pydantic import ValidationError

from src.analytics.forecast_engine import (
    ORDER_STAGES,
    balance_bu,
    breakdown_hit_rate,
    build_monthly_rows,
    build_product_breakdown,
    count_and_sum,
    effective_value,
    filter_by_probability,
    group_by,
    hit_rate,
    is_won,
    monthly_values,
    open_funnel_by_subtraction,
    orders_received,
    owner_month_grid,
    owner_roster,
    quarterly_rollup,
    sort_by_name,
    sum_monthly_totals,
    sum_offer_values,
)
from src.analytics.resolvers import TargetResolver, effective_period, resolve_owner_id
from src.analytics.values import round_half_up, sum_money, to_money
from src.models.forecast import (
    CORE_PRODUCT_TYPES,
    FORECAST_PRODUCT_TYPES,
    TERMINAL_STAGES,
    ZONE_MEMBER_ROLES,
    OfferCriteria,
    OfferRecord,
    OfferStage,
    ServiceZoneRecord,
    PeriodType,
    TargetCriteria,
    TargetScope,
    UserCriteria,
    UserRecord,
    UserRole,
    product_label,
)
from src.repositories.forecast_repository import ForecastRepository
from src.schemas.forecast import (
    AnalyticsHighlights,
    AnalyticsOverall,
    ForecastAnalyticsReport,
    ForecastFilters,
    MatrixUser,
    MonthlyBreakdownReport,
    MonthlyGridTotals,
    MonthlyTrendPoint,
    Performer,
    PoExpectedMonthReport,
    ProductMatrixReport,
    ProductMatrixRow,
    ProductMatrixTotals,
    ProductMonthlyValues,
    ProductStat,
    ProductTypeLabel,
    ProductWiseForecastReport,
    QuarterlySummary,
    UserMonthlyBreakdown,
    UserMonthlyBreakdownReport,
    UserProductForecast,
    ZoneAnalytics,
    ZoneAnalyticsMetrics,
    ZoneHighlight,
    ZoneMonthlyBreakdown,
    ZonePoExpectedBreakdown,
    ZoneProductForecast,
    ZoneProductMatrix,
    ZoneSummaryReport,
    ZoneSummaryRow,
    ZoneSummaryTotals,
)
from src.core.errors import ReportFetchError
from src.shared.time import (
    FINANCIAL_YEAR_MONTH_KEYS,
    MONTH_KEYS,
    MONTH_NAMES,
    QUARTERS,
    month_period,
    period_in_year,
    year_bounds,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOP_PERFORMER_LIMIT = 10
NO_ZONE_NAME = "No Zone"
OTHER_PRODUCT = "OTHER"


class ForecastService:
    def __init__(self, repository: ForecastRepository, max_workers: int = 8) -> None:
        self.repository = repository
        self.max_workers = max(max_workers, 1)

    def get_zone_summary(self, filters: ForecastFilters) -> ZoneSummaryReport:
        with self._report_guard("forecast summary"):
            return self._build_zone_summary(filters)

    def get_monthly_breakdown(self, filters: ForecastFilters) -> MonthlyBreakdownReport:
        with self._report_guard("monthly breakdown"):
            return self._build_monthly_breakdown(filters)

    def get_user_monthly_breakdown(self, filters: ForecastFilters) -> UserMonthlyBreakdownReport:
        with self._report_guard("user monthly breakdown"):
            return self._build_user_monthly_breakdown(filters)

    def get_po_expected_month_breakdown(self, filters: ForecastFilters) -> PoExpectedMonthReport:
        with self._report_guard("PO Expected Month data"):
            return self._build_po_expected_month_breakdown(filters)

    def get_product_user_matrix(self, filters: ForecastFilters) -> ProductMatrixReport:
        with self._report_guard("Product × User × Zone breakdown"):
            return self._build_product_user_matrix(filters)

    def get_product_wise_forecast(self, filters: ForecastFilters) -> ProductWiseForecastReport:
        with self._report_guard("Product-wise Forecast"):
            return self._build_product_wise_forecast(filters)

    def get_forecast_analytics(self, filters: ForecastFilters) -> ForecastAnalyticsReport:
        with self._report_guard("Forecast Analytics"):
            return self._build_forecast_analytics(filters)

    def _build_zone_summary(self, filters: ForecastFilters) -> ZoneSummaryReport:
        year = filters.year
        zones = self._list_zones(filters)
        zone_ids = [zone.id for zone in zones]
        created_from, created_to = year_bounds(year)

        tasks: Dict[Hashable, Callable[[], object]] = {
            "yearly_targets": partial(self._list_yearly_targets, TargetScope.ZONE, zone_ids, year),
        }
        for zone in zones:
            tasks[(zone.id, "year_offers")] = partial(
                self.repository.list_offers,
                OfferCriteria(zone_id=zone.id, created_from=created_from, created_to=created_to),
            )
            tasks[(zone.id, "order_offers")] = partial(
                self.repository.list_offers,
                OfferCriteria(zone_id=zone.id, stages_in=list(ORDER_STAGES)),
            )
        results = self._fan_out(tasks)
        targets = TargetResolver(results["yearly_targets"])
        booking_period = month_period(year, date.today().month)

        rows: List[ZoneSummaryRow] = []
        for zone in zones:
            year_offers: List[OfferRecord] = results[(zone.id, "year_offers")]
            order_offers: List[OfferRecord] = results[(zone.id, "order_offers")]

            no_of_offers, offers_value = count_and_sum(year_offers)
            received = orders_received(order_offers, year, stages=ORDER_STAGES)
            order_booking = sum_money(
                to_money(offer.po_value)
                for offer in order_offers
                if offer.stage == OfferStage.WON.value and offer.po_received_month == booking_period
            )
            # U for booking counts the full value of qualifying offers, never a weighted one.
            bookable = [
                offer
                for offer in year_offers
                if offer.open_funnel and offer.stage not in TERMINAL_STAGES
            ]
            u_for_booking = sum_offer_values(
                filter_by_probability(bookable, filters.min_probability, filters.max_probability)
            )
            yearly_target = targets.yearly_target(zone.id, year)
            balance = balance_bu(yearly_target, received)
            if yearly_target > 0 and balance >= yearly_target:
                logger.debug(
                    "Zone %s: target=%s orders_received=%s balance_bu=%s",
                    zone.name,
                    yearly_target,
                    received,
                    balance,
                )
            monthly = monthly_values(year_offers, self._offer_month_in(year))
            rows.append(
                ZoneSummaryRow(
                    zone_id=zone.id,
                    zone_name=zone.name,
                    no_of_offers=no_of_offers,
                    offers_value=offers_value,
                    orders_received=received,
                    open_funnel=open_funnel_by_subtraction(offers_value, received),
                    order_booking=order_booking,
                    u_for_booking=u_for_booking,
                    hit_rate_percent=int(hit_rate(received, offers_value)),
                    balance_bu=balance,
                    yearly_target=yearly_target,
                    monthly_offers_value=monthly,
                    quarters=quarterly_rollup(monthly, yearly_target),
                )
            )

        total_offers_value = sum_money(row.offers_value for row in rows)
        total_received = sum_money(row.orders_received for row in rows)
        total_target = sum_money(row.yearly_target for row in rows)
        total_monthly = {
            key: sum_money(row.monthly_offers_value[key] for row in rows) for key in MONTH_KEYS
        }
        overall = ZoneSummaryTotals(
            no_of_offers=sum(row.no_of_offers for row in rows),
            offers_value=total_offers_value,
            orders_received=total_received,
            open_funnel=sum_money(row.open_funnel for row in rows),
            order_booking=sum_money(row.order_booking for row in rows),
            u_for_booking=sum_money(row.u_for_booking for row in rows),
            hit_rate_percent=int(hit_rate(total_received, total_offers_value)),
            balance_bu=sum_money(row.balance_bu for row in rows),
            yearly_target=total_target,
            monthly_offers_value=total_monthly,
            quarters=quarterly_rollup(total_monthly, total_target),
        )
        return ZoneSummaryReport(
            year=year,
            filters=filters,
            zones=rows,
            overall_totals=overall,
            months=list(MONTH_KEYS),
        )

    def _build_monthly_breakdown(self, filters: ForecastFilters) -> MonthlyBreakdownReport:
        year = filters.year
        zones = self._list_zones(filters)
        zone_ids = [zone.id for zone in zones]
        created_from, created_to = year_bounds(year)

        tasks: Dict[Hashable, Callable[[], object]] = {
            "yearly_targets": partial(self._list_yearly_targets, TargetScope.ZONE, zone_ids, year),
            "monthly_targets": partial(self._list_monthly_targets, TargetScope.ZONE, zone_ids, year),
        }
        for zone in zones:
            tasks[zone.id] = partial(
                self.repository.list_offers,
                OfferCriteria(
                    zone_id=zone.id,
                    created_from=created_from,
                    created_to=created_to,
                    product_type=filters.product_filter,
                ),
            )
        results = self._fan_out(tasks)
        targets = TargetResolver(results["yearly_targets"], results["monthly_targets"])

        breakdowns: List[ZoneMonthlyBreakdown] = []
        for zone in zones:
            offers: List[OfferRecord] = results[zone.id]
            monthly_data, totals = build_monthly_rows(offers, year, zone.id, targets)
            breakdowns.append(
                ZoneMonthlyBreakdown(
                    zone_id=zone.id,
                    zone_name=zone.name,
                    hit_rate=breakdown_hit_rate(offers),
                    yearly_target=targets.yearly_target(zone.id, year),
                    monthly_data=monthly_data,
                    product_breakdown=self._product_breakdown(offers, year, zone.id, targets, filters),
                    totals=totals,
                )
            )
        return MonthlyBreakdownReport(
            year=year,
            filters=filters,
            zones=breakdowns,
            overall_totals=sum_monthly_totals(item.totals for item in breakdowns),
            months=list(MONTH_NAMES),
        )

    def _build_user_monthly_breakdown(self, filters: ForecastFilters) -> UserMonthlyBreakdownReport:
        year = filters.year
        created_from, created_to = year_bounds(year)
        lookups = self._fan_out(
            {
                "users": partial(
                    self.repository.list_users,
                    UserCriteria(
                        roles=list(ZONE_MEMBER_ROLES),
                        zone_id=filters.zone_id,
                        user_id=filters.user_id,
                    ),
                ),
                "zones": partial(self.repository.list_zones, False),
            }
        )
        users: List[UserRecord] = lookups["users"]
        user_ids = [user.id for user in users]
        zone_names = {zone.id: zone.name for zone in lookups["zones"]}

        tasks: Dict[Hashable, Callable[[], object]] = {
            "yearly_targets": partial(self._list_yearly_targets, TargetScope.USER, user_ids, year),
            "monthly_targets": partial(self._list_monthly_targets, TargetScope.USER, user_ids, year),
        }
        for user in users:
            tasks[user.id] = partial(
                self.repository.list_offers,
                OfferCriteria(
                    created_by_id=user.id,
                    created_from=created_from,
                    created_to=created_to,
                    product_type=filters.product_filter,
                ),
            )
        results = self._fan_out(tasks)
        targets = TargetResolver(results["yearly_targets"], results["monthly_targets"])

        breakdowns: List[UserMonthlyBreakdown] = []
        for user in users:
            offers: List[OfferRecord] = results[user.id]
            monthly_data, totals = build_monthly_rows(offers, year, user.id, targets)
            primary_zone = zone_names.get(user.zone_ids[0]) if user.zone_ids else None
            breakdowns.append(
                UserMonthlyBreakdown(
                    user_id=user.id,
                    user_name=user.display_name,
                    user_short_form=user.short_form,
                    zone_name=primary_zone or NO_ZONE_NAME,
                    hit_rate=breakdown_hit_rate(offers),
                    yearly_target=targets.yearly_target(user.id, year),
                    monthly_data=monthly_data,
                    product_breakdown=self._product_breakdown(offers, year, user.id, targets, filters),
                    totals=totals,
                )
            )
        breakdowns.sort(key=lambda item: (-item.totals.order_received, item.user_name.lower()))
        return UserMonthlyBreakdownReport(
            year=year,
            filters=filters,
            users=breakdowns,
            overall_totals=sum_monthly_totals(item.totals for item in breakdowns),
            months=list(MONTH_NAMES),
        )

    def _build_po_expected_month_breakdown(self, filters: ForecastFilters) -> PoExpectedMonthReport:
        year = filters.year
        zones = self._list_zones(filters)
        zone_ids = [zone.id for zone in zones]

        tasks: Dict[Hashable, Callable[[], object]] = {
            "yearly_targets": partial(
                self._list_yearly_targets,
                TargetScope.ZONE,
                zone_ids,
                year,
                overall_only=True,
            ),
            "directory": self._list_admin_directory,
        }
        for zone in zones:
            tasks[(zone.id, "members")] = partial(
                self.repository.list_users_in_zone, zone.id, list(ZONE_MEMBER_ROLES)
            )
            tasks[(zone.id, "offers")] = partial(
                self.repository.list_offers,
                OfferCriteria(
                    zone_id=zone.id,
                    po_expected_month_prefix=f"{year}-",
                    stages_not_in=[OfferStage.LOST.value],
                    open_funnel=True,
                    owner_user_id=filters.user_id,
                    **self._probability_criteria(filters),
                ),
            )
        results = self._fan_out(tasks)
        targets = TargetResolver(results["yearly_targets"])
        directory: Dict[int, UserRecord] = results["directory"]

        breakdowns: List[ZonePoExpectedBreakdown] = []
        for zone in zones:
            members: List[UserRecord] = results[(zone.id, "members")]
            offers: List[OfferRecord] = results[(zone.id, "offers")]
            roster = owner_roster(members, offers, directory)
            users, monthly_totals, grand_total = owner_month_grid(
                roster, offers, lambda offer: offer.po_expected_month
            )
            breakdowns.append(
                ZonePoExpectedBreakdown(
                    zone_id=zone.id,
                    zone_name=zone.name,
                    users=users,
                    monthly_totals=monthly_totals,
                    grand_total=grand_total,
                )
            )

        overall_monthly = {
            key: sum_money(item.monthly_totals[key] for item in breakdowns) for key in MONTH_KEYS
        }
        # Only overall targets feed the quarterly budget, never product-specific ones.
        yearly_target = sum_money(targets.overall_yearly_target(zone.id, year) for zone in zones)
        quarterly_data = quarterly_rollup(overall_monthly, yearly_target)
        return PoExpectedMonthReport(
            year=year,
            filters=filters,
            zones=breakdowns,
            overall_totals=MonthlyGridTotals(
                monthly_totals=overall_monthly,
                grand_total=sum_money(item.grand_total for item in breakdowns),
            ),
            months=list(MONTH_KEYS),
            quarterly_data=quarterly_data,
            yearly_target=yearly_target,
            quarterly_bu=quarterly_data[0].bu,
        )

    def _build_product_user_matrix(self, filters: ForecastFilters) -> ProductMatrixReport:
        year = filters.year
        zones, results = self._fetch_zone_owner_offers(filters)
        directory: Dict[int, UserRecord] = results["directory"]

        matrices: List[ZoneProductMatrix] = []
        for zone in zones:
            offers: List[OfferRecord] = results[(zone.id, "offers")]
            roster = sort_by_name(owner_roster(results[(zone.id, "members")], offers, directory))
            by_product = group_by(offers, lambda offer: offer.product_type)
            user_totals: Dict[str, float] = {str(user.id): 0.0 for user in roster}
            product_rows: List[ProductMatrixRow] = []
            for product_type in CORE_PRODUCT_TYPES:
                by_owner = group_by(by_product.get(product_type, []), resolve_owner_id)
                user_values = {
                    str(user.id): sum_offer_values(by_owner.get(user.id, [])) for user in roster
                }
                for user_key, value in user_values.items():
                    user_totals[user_key] = to_money(user_totals[user_key] + value)
                product_rows.append(
                    ProductMatrixRow(
                        product_type=product_type,
                        product_label=product_label(product_type),
                        user_values=user_values,
                        total=sum_money(user_values.values()),
                    )
                )
            matrices.append(
                ZoneProductMatrix(
                    zone_id=zone.id,
                    zone_name=zone.name,
                    users=[MatrixUser(id=user.id, name=user.display_name) for user in roster],
                    product_matrix=product_rows,
                    user_totals=user_totals,
                    zone_total_value=sum_money(row.total for row in product_rows),
                )
            )

        product_totals = {
            product_type: sum_money(
                row.total
                for matrix in matrices
                for row in matrix.product_matrix
                if row.product_type == product_type
            )
            for product_type in CORE_PRODUCT_TYPES
        }
        return ProductMatrixReport(
            year=year,
            filters=filters,
            product_types=self._product_labels(CORE_PRODUCT_TYPES),
            zones=matrices,
            overall_totals=ProductMatrixTotals(
                product_totals=product_totals,
                grand_total=sum_money(matrix.zone_total_value for matrix in matrices),
            ),
        )

    def _build_product_wise_forecast(self, filters: ForecastFilters) -> ProductWiseForecastReport:
        year = filters.year
        zones, results = self._fetch_zone_owner_offers(filters)
        directory: Dict[int, UserRecord] = results["directory"]

        forecasts: List[ZoneProductForecast] = []
        for zone in zones:
            offers: List[OfferRecord] = results[(zone.id, "offers")]
            roster = sort_by_name(owner_roster(results[(zone.id, "members")], offers, directory))
            by_owner = group_by(offers, resolve_owner_id)
            users: List[UserProductForecast] = []
            for user in roster:
                by_product = group_by(by_owner.get(user.id, []), lambda offer: offer.product_type)
                products: List[ProductMonthlyValues] = []
                for product_type in FORECAST_PRODUCT_TYPES:
                    values = monthly_values(
                        by_product.get(product_type, []),
                        lambda offer: offer.offer_month,
                        month_keys=FINANCIAL_YEAR_MONTH_KEYS,
                    )
                    products.append(
                        ProductMonthlyValues(
                            product_type=product_type,
                            product_label=product_label(product_type),
                            monthly_values=values,
                            total=sum_money(values.values()),
                        )
                    )
                monthly_totals = self._column_totals(
                    [product.monthly_values for product in products], FINANCIAL_YEAR_MONTH_KEYS
                )
                users.append(
                    UserProductForecast(
                        user_id=user.id,
                        user_name=user.display_name,
                        monthly_totals=monthly_totals,
                        grand_total=sum_money(monthly_totals.values()),
                        products=products,
                    )
                )
            zone_monthly = self._column_totals(
                [user.monthly_totals for user in users], FINANCIAL_YEAR_MONTH_KEYS
            )
            forecasts.append(
                ZoneProductForecast(
                    zone_id=zone.id,
                    zone_name=zone.name,
                    users=users,
                    monthly_totals=zone_monthly,
                    grand_total=sum_money(zone_monthly.values()),
                )
            )

        overall_monthly = self._column_totals(
            [forecast.monthly_totals for forecast in forecasts], FINANCIAL_YEAR_MONTH_KEYS
        )
        return ProductWiseForecastReport(
            year=year,
            filters=filters,
            months=list(FINANCIAL_YEAR_MONTH_KEYS),
            product_types=self._product_labels(FORECAST_PRODUCT_TYPES),
            zones=forecasts,
            overall_totals=MonthlyGridTotals(
                monthly_totals=overall_monthly,
                grand_total=sum_money(overall_monthly.values()),
            ),
        )

    def _build_forecast_analytics(self, filters: ForecastFilters) -> ForecastAnalyticsReport:
        year = filters.year
        zones = self._list_zones(filters)
        zone_ids = [zone.id for zone in zones]
        created_from, created_to = year_bounds(year)

        tasks: Dict[Hashable, Callable[[], object]] = {
            "yearly_targets": partial(self._list_yearly_targets, TargetScope.ZONE, zone_ids, year),
            "users": partial(self.repository.list_users, UserCriteria()),
        }
        for zone in zones:
            tasks[zone.id] = partial(
                self.repository.list_offers,
                OfferCriteria(zone_id=zone.id, created_from=created_from, created_to=created_to),
            )
        results = self._fan_out(tasks)
        targets = TargetResolver(results["yearly_targets"])
        directory = {user.id: user for user in results["users"]}

        zone_analytics: List[ZoneAnalytics] = []
        all_offers: List[OfferRecord] = []
        for zone in zones:
            offers: List[OfferRecord] = results[zone.id]
            all_offers.extend(offers)
            zone_analytics.append(
                ZoneAnalytics(
                    zone_id=zone.id,
                    zone_name=zone.name,
                    metrics=self._zone_metrics(offers, targets.yearly_target(zone.id, year), year),
                )
            )

        total_offers = sum(item.metrics.offers for item in zone_analytics)
        total_value = sum_money(item.metrics.offers_value for item in zone_analytics)
        total_won = sum_money(item.metrics.won_value for item in zone_analytics)
        total_target = sum_money(item.metrics.target for item in zone_analytics)
        overall = AnalyticsOverall(
            total_offers=total_offers,
            total_value=total_value,
            total_won=total_won,
            total_lost=sum_money(item.metrics.lost_value for item in zone_analytics),
            total_open=sum_money(item.metrics.open_value for item in zone_analytics),
            total_target=total_target,
            balance=balance_bu(total_target, total_won),
            hit_rate=hit_rate(total_won, total_value, digits=1),
            achievement=self._percent(total_won, total_target),
            avg_offer_value=int(round_half_up(total_value / total_offers)) if total_offers else 0,
        )

        monthly_trends = self._monthly_trends(all_offers, year)
        trend_by_month = {point.month: point for point in monthly_trends}
        quarterly = [
            QuarterlySummary(
                name=name,
                months=list(months),
                value=sum_money(trend_by_month[month].value for month in months),
                won=sum_money(trend_by_month[month].won for month in months),
            )
            for name, months in QUARTERS
        ]
        products = self._product_stats(all_offers)
        performers = self._performers(all_offers, directory)

        ranked_zones = sorted(
            zone_analytics, key=lambda item: item.metrics.achievement, reverse=True
        )
        highlights = AnalyticsHighlights(
            best_zone=self._zone_highlight(ranked_zones[0]) if ranked_zones else None,
            worst_zone=self._zone_highlight(ranked_zones[-1]) if ranked_zones else None,
            highest_value_product=products[0] if products else None,
            total_users=len(performers),
        )
        return ForecastAnalyticsReport(
            year=year,
            filters=filters,
            overall_totals=overall,
            zones=zone_analytics,
            months=list(MONTH_KEYS),
            monthly_trends=monthly_trends,
            quarterly=quarterly,
            products=products,
            top_performers=performers[:TOP_PERFORMER_LIMIT],
            highlights=highlights,
        )

    def _zone_metrics(
        self, offers: List[OfferRecord], target: float, year: int
    ) -> ZoneAnalyticsMetrics:
        offer_count, offers_value = count_and_sum(offers)
        won = [
            offer
            for offer in offers
            if is_won(offer) and period_in_year(effective_period(offer), year)
        ]
        won_total = sum_money(effective_value(offer) for offer in won)
        lost = [offer for offer in offers if offer.stage == OfferStage.LOST.value]
        open_offers = [
            offer for offer in offers if offer.open_funnel and offer.stage not in TERMINAL_STAGES
        ]
        return ZoneAnalyticsMetrics(
            offers=offer_count,
            offers_value=offers_value,
            won_value=won_total,
            won_count=len(won),
            lost_value=sum_offer_values(lost),
            lost_count=len(lost),
            open_value=sum_offer_values(open_offers),
            open_count=len(open_offers),
            target=target,
            balance=balance_bu(target, won_total),
            hit_rate=hit_rate(won_total, offers_value, digits=1),
            achievement=self._percent(won_total, target),
            conversion=self._percent(len(won), offer_count),
        )

    def _monthly_trends(self, offers: List[OfferRecord], year: int) -> List[MonthlyTrendPoint]:
        by_month = group_by(offers, self._offer_month_in(year))
        points: List[MonthlyTrendPoint] = []
        for month_index, key in enumerate(MONTH_KEYS, start=1):
            month_offers = by_month.get(month_period(year, month_index), [])
            points.append(
                MonthlyTrendPoint(
                    month=key,
                    offers=len(month_offers),
                    value=sum_offer_values(month_offers),
                    won=sum_money(effective_value(offer) for offer in month_offers if is_won(offer)),
                    lost=sum_offer_values(
                        offer for offer in month_offers if offer.stage == OfferStage.LOST.value
                    ),
                )
            )
        return points

    @staticmethod
    def _product_stats(offers: List[OfferRecord]) -> List[ProductStat]:
        by_product = group_by(offers, lambda offer: offer.product_type or OTHER_PRODUCT)
        stats: List[ProductStat] = []
        for product_type, product_offers in by_product.items():
            value = sum_offer_values(product_offers)
            won = sum_money(effective_value(offer) for offer in product_offers if is_won(offer))
            stats.append(
                ProductStat(
                    product_type=product_type,
                    label=product_label(product_type),
                    count=len(product_offers),
                    value=value,
                    won=won,
                    hit_rate=int(hit_rate(won, value)),
                )
            )
        stats.sort(key=lambda stat: (-stat.value, stat.product_type))
        return stats

    @staticmethod
    def _performers(
        offers: List[OfferRecord], directory: Dict[int, UserRecord]
    ) -> List[Performer]:
        performers: List[Performer] = []
        for owner_id, owned in group_by(offers, resolve_owner_id).items():
            value = sum_offer_values(owned)
            won = sum_money(effective_value(offer) for offer in owned if is_won(offer))
            user = directory.get(owner_id) or UserRecord(id=owner_id)
            performers.append(
                Performer(
                    id=owner_id,
                    name=user.display_name,
                    offers=len(owned),
                    value=value,
                    won=won,
                    conversion=int(hit_rate(won, value)),
                )
            )
        performers.sort(key=lambda performer: (-performer.won, performer.name.lower()))
        return performers

    @staticmethod
    def _zone_highlight(item: ZoneAnalytics) -> ZoneHighlight:
        return ZoneHighlight(name=item.zone_name, achievement=item.metrics.achievement)

    @staticmethod
    def _percent(numerator: float, denominator: float) -> float:
        if denominator <= 0:
            return 0.0
        return round_half_up(numerator / denominator * 100, 1)

    def _product_breakdown(
        self,
        offers: List[OfferRecord],
        year: int,
        scope_id: int,
        targets: TargetResolver,
        filters: ForecastFilters,
    ):
        if not filters.include_products:
            return None
        product_types = [filters.product_filter] if filters.product_filter else CORE_PRODUCT_TYPES
        return build_product_breakdown(offers, year, scope_id, targets, product_types)

    def _fetch_zone_owner_offers(self, filters: ForecastFilters):
        zones = self._list_zones(filters)
        tasks: Dict[Hashable, Callable[[], object]] = {
            "directory": self._list_admin_directory,
        }
        for zone in zones:
            tasks[(zone.id, "members")] = partial(
                self.repository.list_users_in_zone, zone.id, list(ZONE_MEMBER_ROLES)
            )
            tasks[(zone.id, "offers")] = partial(
                self.repository.list_offers,
                OfferCriteria(
                    zone_id=zone.id,
                    offer_month_prefix=f"{filters.year}-",
                    stages_not_in=[OfferStage.LOST.value],
                    owner_user_id=filters.user_id,
                    **self._probability_criteria(filters),
                ),
            )
        return zones, self._fan_out(tasks)

    def _list_zones(self, filters: ForecastFilters) -> List[ServiceZoneRecord]:
        zones = self.repository.list_zones(active_only=True, zone_id=filters.zone_id)
        return sorted(zones, key=lambda zone: zone.name.lower())

    def _list_admin_directory(self) -> Dict[int, UserRecord]:
        admins = self.repository.list_users(UserCriteria(roles=[UserRole.ADMIN.value]))
        return {admin.id: admin for admin in admins}

    def _list_yearly_targets(
        self,
        scope: TargetScope,
        scope_ids: List[int],
        year: int,
        overall_only: bool = False,
    ):
        return self.repository.list_targets(
            TargetCriteria(
                scope=scope,
                scope_ids=scope_ids,
                year=year,
                period_type=PeriodType.YEARLY,
                overall_only=overall_only,
            )
        )

    def _list_monthly_targets(
        self,
        scope: TargetScope,
        scope_ids: List[int],
        year: int,
    ):
        return self.repository.list_targets(
            TargetCriteria(
                scope=scope,
                scope_ids=scope_ids,
                year=year,
                period_type=PeriodType.MONTHLY,
                overall_only=True,
            )
        )

    def _fan_out(self, tasks: Dict[Hashable, Callable[[], T]]) -> Dict[Hashable, T]:
        if not tasks:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(tasks))) as executor:
            futures = {key: executor.submit(task) for key, task in tasks.items()}
            return {key: future.result() for key, future in futures.items()}

    @contextmanager
    def _report_guard(self, report_name: str) -> Iterator[None]:
        try:
            yield
        except (httpx.HTTPError, ValidationError) as exc:
            logger.exception("Failed to assemble %s", report_name)
            raise ReportFetchError(report_name) from exc

    @staticmethod
    def _probability_criteria(filters: ForecastFilters) -> Dict[str, Optional[int]]:
        if not filters.has_probability_range:
            return {}
        return {
            "min_probability": filters.min_probability,
            "max_probability": filters.max_probability,
        }

    @staticmethod
    def _offer_month_in(year: int) -> Callable[[OfferRecord], Optional[str]]:
        def period_of(offer: OfferRecord) -> Optional[str]:
            return offer.offer_month if period_in_year(offer.offer_month, year) else None

        return period_of

    @staticmethod
    def _column_totals(rows: List[Dict[str, float]], keys: List[str]) -> Dict[str, float]:
        return {key: sum_money(row.get(key, 0.0) for row in rows) for key in keys}

    @staticmethod
    def _product_labels(product_types: List[str]) -> List[ProductTypeLabel]:
        return [
            ProductTypeLabel(key=product_type, label=product_label(product_type))
            for product_type in product_types
        ]
