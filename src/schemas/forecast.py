from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from src.models.forecast import ProductType
from src.shared.base import BaseSchema
from src.shared.time import current_year

ALL_PRODUCTS = "ALL"
_FALSE_VALUES = {"false", "0", "no", "off"}


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class ForecastFilters(BaseSchema):
    """Query filters shared by every forecast report.

    Malformed values never fail the request; each one falls back to its default.
    """

    year: int = Field(default_factory=current_year)
    min_probability: int = 0
    max_probability: int = 100
    zone_id: Optional[int] = None
    user_id: Optional[int] = None
    product_type: str = ALL_PRODUCTS
    include_products: bool = True

    @field_validator("year", mode="before")
    @classmethod
    def _year(cls, value: Any) -> int:
        year = _coerce_int(value)
        if year is None or not 1900 <= year <= 9999:
            return current_year()
        return year

    @field_validator("min_probability", mode="before")
    @classmethod
    def _min_probability(cls, value: Any) -> int:
        probability = _coerce_int(value)
        return probability if probability is not None and 0 <= probability <= 100 else 0

    @field_validator("max_probability", mode="before")
    @classmethod
    def _max_probability(cls, value: Any) -> int:
        probability = _coerce_int(value)
        return probability if probability is not None and 0 <= probability <= 100 else 100

    @field_validator("zone_id", "user_id", mode="before")
    @classmethod
    def _identifier(cls, value: Any) -> Optional[int]:
        identifier = _coerce_int(value)
        return identifier if identifier is not None and identifier > 0 else None

    @field_validator("product_type", mode="before")
    @classmethod
    def _product_type(cls, value: Any) -> str:
        text = str(value or "").strip().upper()
        return text if text in ProductType.__members__ else ALL_PRODUCTS

    @field_validator("include_products", mode="before")
    @classmethod
    def _include_products(cls, value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() not in _FALSE_VALUES

    @model_validator(mode="after")
    def _ordered_probabilities(self) -> "ForecastFilters":
        if self.min_probability > self.max_probability:
            self.min_probability, self.max_probability = self.max_probability, self.min_probability
        return self

    @property
    def product_filter(self) -> Optional[str]:
        return None if self.product_type == ALL_PRODUCTS else self.product_type

    @property
    def has_probability_range(self) -> bool:
        return self.min_probability > 0 or self.max_probability < 100


class QuarterRollup(BaseSchema):
    name: str
    label: str
    months: List[str]
    forecast: float
    bu: float
    deviation: Optional[int] = None


class ZoneSummaryRow(BaseSchema):
    zone_id: int
    zone_name: str
    no_of_offers: int
    offers_value: float
    orders_received: float
    open_funnel: float
    order_booking: float
    u_for_booking: float
    hit_rate_percent: int
    balance_bu: float
    yearly_target: float
    monthly_offers_value: Dict[str, float]
    quarters: List[QuarterRollup]


class ZoneSummaryTotals(BaseSchema):
    no_of_offers: int
    offers_value: float
    orders_received: float
    open_funnel: float
    order_booking: float
    u_for_booking: float
    hit_rate_percent: int
    balance_bu: float
    yearly_target: float
    monthly_offers_value: Dict[str, float]
    quarters: List[QuarterRollup]


class ZoneSummaryReport(BaseSchema):
    year: int
    filters: ForecastFilters
    zones: List[ZoneSummaryRow]
    overall_totals: ZoneSummaryTotals
    months: List[str]


class MonthlyRow(BaseSchema):
    month: str
    month_label: str
    offers_value: float
    order_received: float
    orders_booked: float
    dev_or_vs_booked: float
    orders_in_hand: float
    bu_monthly: float
    booked_vs_bu: Optional[int] = None
    percent_dev: Optional[int] = None
    offer_bu_month: float
    offer_bu_month_dev: Optional[int] = None


class MonthlyTotals(BaseSchema):
    offers_value: float = 0.0
    order_received: float = 0.0
    orders_booked: float = 0.0
    orders_in_hand: float = 0.0
    bu_monthly: float = 0.0
    offer_bu_month: float = 0.0


class ProductMonthlyRow(BaseSchema):
    month: str
    month_label: str
    offers_value: float
    order_received: float
    orders_in_hand: float
    bu_monthly: float
    percent_dev: Optional[int] = None
    offer_bu_month: float
    offer_bu_month_dev: Optional[int] = None


class ProductTotals(BaseSchema):
    offers_value: float = 0.0
    order_received: float = 0.0
    orders_in_hand: float = 0.0
    bu_monthly: float = 0.0
    offer_bu_month: float = 0.0


class ProductBreakdown(BaseSchema):
    product_type: str
    product_label: str
    yearly_target: float
    hit_rate: int
    monthly_data: List[ProductMonthlyRow]
    totals: ProductTotals


class ZoneMonthlyBreakdown(BaseSchema):
    zone_id: int
    zone_name: str
    hit_rate: int
    yearly_target: float
    monthly_data: List[MonthlyRow]
    product_breakdown: Optional[List[ProductBreakdown]] = None
    totals: MonthlyTotals


class MonthlyBreakdownReport(BaseSchema):
    year: int
    filters: ForecastFilters
    zones: List[ZoneMonthlyBreakdown]
    overall_totals: MonthlyTotals
    months: List[str]


class UserMonthlyBreakdown(BaseSchema):
    user_id: int
    user_name: str
    user_short_form: Optional[str] = None
    zone_name: str
    hit_rate: int
    yearly_target: float
    monthly_data: List[MonthlyRow]
    product_breakdown: Optional[List[ProductBreakdown]] = None
    totals: MonthlyTotals


class UserMonthlyBreakdownReport(BaseSchema):
    year: int
    filters: ForecastFilters
    users: List[UserMonthlyBreakdown]
    overall_totals: MonthlyTotals
    months: List[str]


class OwnerMonthlyValues(BaseSchema):
    user_id: int
    user_name: str
    monthly_values: Dict[str, float]
    total: float


class ZonePoExpectedBreakdown(BaseSchema):
    zone_id: int
    zone_name: str
    users: List[OwnerMonthlyValues]
    monthly_totals: Dict[str, float]
    grand_total: float


class MonthlyGridTotals(BaseSchema):
    monthly_totals: Dict[str, float]
    grand_total: float


class PoExpectedMonthReport(BaseSchema):
    year: int
    filters: ForecastFilters
    zones: List[ZonePoExpectedBreakdown]
    overall_totals: MonthlyGridTotals
    months: List[str]
    quarterly_data: List[QuarterRollup]
    yearly_target: float
    quarterly_bu: float


class ProductTypeLabel(BaseSchema):
    key: str
    label: str


class MatrixUser(BaseSchema):
    id: int
    name: str


class ProductMatrixRow(BaseSchema):
    product_type: str
    product_label: str
    user_values: Dict[str, float]
    total: float


class ZoneProductMatrix(BaseSchema):
    zone_id: int
    zone_name: str
    users: List[MatrixUser]
    product_matrix: List[ProductMatrixRow]
    user_totals: Dict[str, float]
    zone_total_value: float


class ProductMatrixTotals(BaseSchema):
    product_totals: Dict[str, float]
    grand_total: float


class ProductMatrixReport(BaseSchema):
    year: int
    filters: ForecastFilters
    product_types: List[ProductTypeLabel]
    zones: List[ZoneProductMatrix]
    overall_totals: ProductMatrixTotals


class ProductMonthlyValues(BaseSchema):
    product_type: str
    product_label: str
    monthly_values: Dict[str, float]
    total: float


class UserProductForecast(BaseSchema):
    user_id: int
    user_name: str
    monthly_totals: Dict[str, float]
    grand_total: float
    products: List[ProductMonthlyValues]


class ZoneProductForecast(BaseSchema):
    zone_id: int
    zone_name: str
    users: List[UserProductForecast]
    monthly_totals: Dict[str, float]
    grand_total: float


class ProductWiseForecastReport(BaseSchema):
    year: int
    filters: ForecastFilters
    months: List[str]
    product_types: List[ProductTypeLabel]
    zones: List[ZoneProductForecast]
    overall_totals: MonthlyGridTotals


class ZoneAnalyticsMetrics(BaseSchema):
    offers: int
    offers_value: float
    won_value: float
    won_count: int
    lost_value: float
    lost_count: int
    open_value: float
    open_count: int
    target: float
    balance: float
    hit_rate: float
    achievement: float
    conversion: float


class ZoneAnalytics(BaseSchema):
    zone_id: int
    zone_name: str
    metrics: ZoneAnalyticsMetrics


class AnalyticsOverall(BaseSchema):
    total_offers: int
    total_value: float
    total_won: float
    total_lost: float
    total_open: float
    total_target: float
    balance: float
    hit_rate: float
    achievement: float
    avg_offer_value: int


class MonthlyTrendPoint(BaseSchema):
    month: str
    offers: int
    value: float
    won: float
    lost: float


class QuarterlySummary(BaseSchema):
    name: str
    months: List[str]
    value: float
    won: float


class ProductStat(BaseSchema):
    product_type: str
    label: str
    count: int
    value: float
    won: float
    hit_rate: int


class Performer(BaseSchema):
    id: int
    name: str
    offers: int
    value: float
    won: float
    conversion: int


class ZoneHighlight(BaseSchema):
    name: str
    achievement: float


class AnalyticsHighlights(BaseSchema):
    best_zone: Optional[ZoneHighlight] = None
    worst_zone: Optional[ZoneHighlight] = None
    highest_value_product: Optional[ProductStat] = None
    total_users: int


class ForecastAnalyticsReport(BaseSchema):
    year: int
    filters: ForecastFilters
    overall_totals: AnalyticsOverall
    zones: List[ZoneAnalytics]
    months: List[str]
    monthly_trends: List[MonthlyTrendPoint]
    quarterly: List[QuarterlySummary]
    products: List[ProductStat]
    top_performers: List[Performer]
    highlights: AnalyticsHighlights
