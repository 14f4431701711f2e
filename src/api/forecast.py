from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_forecast_service
from src.schemas.forecast import (
    ForecastAnalyticsReport,
    ForecastFilters,
    MonthlyBreakdownReport,
    PoExpectedMonthReport,
    ProductMatrixReport,
    ProductWiseForecastReport,
    UserMonthlyBreakdownReport,
    ZoneSummaryReport,
)
from src.services.forecast_service import ForecastService
from src.shared.response import Meta, ResponseEnvelope


router = APIRouter(prefix="/forecast", tags=["forecast"])

FORECAST_CALCULATION_VERSION = "v1"


def get_forecast_filters(
    year: Optional[str] = Query(default=None),
    min_probability: Optional[str] = Query(default=None, alias="minProbability"),
    max_probability: Optional[str] = Query(default=None, alias="maxProbability"),
    zone_id: Optional[str] = Query(default=None, alias="zoneId"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    product_type: Optional[str] = Query(default=None, alias="productType"),
    include_products: Optional[str] = Query(default=None, alias="includeProducts"),
) -> ForecastFilters:
    # Parameters arrive as raw strings; ForecastFilters falls back to defaults for bad input.
    return ForecastFilters(
        year=year,
        min_probability=min_probability,
        max_probability=max_probability,
        zone_id=zone_id,
        user_id=user_id,
        product_type=product_type,
        include_products=include_products,
    )


def _build_meta(filters: ForecastFilters) -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source="supabase",
        time_window=str(filters.year),
        calculation_version=FORECAST_CALCULATION_VERSION,
        data_status="live",
        generated_at=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/zone-summary")
def zone_summary(
    filters: ForecastFilters = Depends(get_forecast_filters),
    service: ForecastService = Depends(get_forecast_service),
) -> ResponseEnvelope[ZoneSummaryReport]:
    data = service.get_zone_summary(filters)
    return ResponseEnvelope(data=data, meta=_build_meta(filters))


@router.get("/monthly-breakdown")
def monthly_breakdown(
    filters: ForecastFilters = Depends(get_forecast_filters),
    service: ForecastService = Depends(get_forecast_service),
) -> ResponseEnvelope[MonthlyBreakdownReport]:
    data = service.get_monthly_breakdown(filters)
    return ResponseEnvelope(data=data, meta=_build_meta(filters))


@router.get("/user-monthly-breakdown")
def user_monthly_breakdown(
    filters: ForecastFilters = Depends(get_forecast_filters),
    service: ForecastService = Depends(get_forecast_service),
) -> ResponseEnvelope[UserMonthlyBreakdownReport]:
    data = service.get_user_monthly_breakdown(filters)
    return ResponseEnvelope(data=data, meta=_build_meta(filters))


@router.get("/po-expected-month")
def po_expected_month(
    filters: ForecastFilters = Depends(get_forecast_filters),
    service: ForecastService = Depends(get_forecast_service),
) -> ResponseEnvelope[PoExpectedMonthReport]:
    data = service.get_po_expected_month_breakdown(filters)
    return ResponseEnvelope(data=data, meta=_build_meta(filters))


@router.get("/product-user-zone")
def product_user_zone(
    filters: ForecastFilters = Depends(get_forecast_filters),
    service: ForecastService = Depends(get_forecast_service),
) -> ResponseEnvelope[ProductMatrixReport]:
    data = service.get_product_user_matrix(filters)
    return ResponseEnvelope(data=data, meta=_build_meta(filters))


@router.get("/product-wise")
def product_wise(
    filters: ForecastFilters = Depends(get_forecast_filters),
    service: ForecastService = Depends(get_forecast_service),
) -> ResponseEnvelope[ProductWiseForecastReport]:
    data = service.get_product_wise_forecast(filters)
    return ResponseEnvelope(data=data, meta=_build_meta(filters))


@router.get("/analytics")
def analytics(
    filters: ForecastFilters = Depends(get_forecast_filters),
    service: ForecastService = Depends(get_forecast_service),
) -> ResponseEnvelope[ForecastAnalyticsReport]:
    data = service.get_forecast_analytics(filters)
    return ResponseEnvelope(data=data, meta=_build_meta(filters))
