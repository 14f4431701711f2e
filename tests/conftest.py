from __future__ import annotations

import os
from typing import Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("SUPABASE_URL", "http://supabase.test")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-key")

from src.api.dependencies import get_forecast_repository  # noqa: E402
from src.main import create_app  # noqa: E402
from src.models.forecast import (  # noqa: E402
    OfferCriteria,
    OfferRecord,
    PeriodType,
    ServiceZoneRecord,
    TargetCriteria,
    TargetRecord,
    TargetScope,
    UserCriteria,
    UserRecord,
)
from src.services.forecast_service import ForecastService  # noqa: E402


def _offer(**values: object) -> OfferRecord:
    return OfferRecord.model_validate(values)


def _target(scope_id: int, period: str, value: float, product_type: Optional[str] = None) -> TargetRecord:
    return TargetRecord(
        scope_id=scope_id,
        target_period=period,
        period_type="YEARLY" if "-" not in period else "MONTHLY",
        product_type=product_type,
        target_value=value,
    )


class StubForecastRepository:
    """In-memory repository applying the same criteria the PostgREST repository pushes down."""

    def __init__(self) -> None:
        self.zones: List[ServiceZoneRecord] = [
            ServiceZoneRecord(id=1, name="North", is_active=True),
            ServiceZoneRecord(id=2, name="South", is_active=True),
            ServiceZoneRecord(id=3, name="Closed", is_active=False),
        ]
        self.users: List[UserRecord] = [
            UserRecord(id=10, name="Asha", short_form="AS", role="ZONE_MANAGER", zone_ids=[1]),
            UserRecord(id=11, name="Ravi", short_form="RV", role="ZONE_USER", zone_ids=[1]),
            UserRecord(id=20, name="Meera", short_form="ME", role="ZONE_USER", zone_ids=[2]),
            UserRecord(id=99, name="Admin One", role="ADMIN", zone_ids=[]),
        ]
        self.offers: List[OfferRecord] = [
            _offer(
                id=1,
                offer_value="1000",
                po_value=1200,
                offer_month="2024-03",
                po_received_month="2024-03",
                stage="WON",
                probability_percentage=100,
                product_type="SPP",
                open_funnel=False,
                zone_id=1,
                assigned_to_id=10,
                created_by_id=10,
                created_at="2024-03-05T09:00:00Z",
            ),
            _offer(
                id=2,
                offer_value=500,
                offer_month="2024-04",
                po_expected_month="2024-06",
                stage="NEGOTIATION",
                probability_percentage=40,
                product_type="CONTRACT",
                open_funnel=True,
                zone_id=1,
                created_by_id=11,
                created_at="2024-04-10T09:00:00Z",
            ),
            _offer(
                id=3,
                offer_value=300,
                offer_month="2024-05",
                po_expected_month="2024-07",
                stage="PROPOSAL_SENT",
                probability_percentage=60,
                product_type="SPP",
                open_funnel=True,
                zone_id=1,
                assigned_to_id=99,
                created_by_id=11,
                created_at="2024-05-01T09:00:00Z",
            ),
            _offer(
                id=4,
                offer_value=800,
                offer_month="2024-02",
                stage="LOST",
                probability_percentage=10,
                product_type="BD_SPARE",
                open_funnel=False,
                zone_id=2,
                assigned_to_id=20,
                created_by_id=20,
                created_at="2024-02-01T09:00:00Z",
            ),
            _offer(
                id=5,
                offer_value=700,
                offer_month="2024-01",
                po_expected_month="2024-02",
                stage="INITIAL",
                probability_percentage=70,
                product_type="SOFTWARE",
                open_funnel=True,
                zone_id=2,
                assigned_to_id=20,
                created_by_id=20,
                created_at="2024-01-15T09:00:00Z",
            ),
        ]
        self.targets: Dict[TargetScope, List[TargetRecord]] = {
            TargetScope.ZONE: [
                _target(1, "2024", 4800),
                _target(2, "2024", 6000, "SPP"),
                _target(2, "2024", 3000, "CONTRACT"),
            ],
            TargetScope.USER: [_target(10, "2024", 2400)],
        }
        self.error: Optional[Exception] = None
        self.offer_criteria: List[OfferCriteria] = []

    def list_zones(self, active_only: bool = True, zone_id: Optional[int] = None) -> List[ServiceZoneRecord]:
        zones = [
            zone
            for zone in self.zones
            if (not active_only or zone.is_active) and (zone_id is None or zone.id == zone_id)
        ]
        return sorted(zones, key=lambda zone: zone.name)

    def list_users_in_zone(self, zone_id: int, roles: List[str]) -> List[UserRecord]:
        return self.list_users(UserCriteria(roles=roles, zone_id=zone_id))

    def list_users(self, criteria: UserCriteria) -> List[UserRecord]:
        users = [
            user
            for user in self.users
            if (not criteria.roles or user.role in criteria.roles)
            and (criteria.zone_id is None or criteria.zone_id in user.zone_ids)
            and (criteria.user_id is None or user.id == criteria.user_id)
        ]
        return sorted(users, key=lambda user: user.name or "")

    def list_offers(self, criteria: OfferCriteria) -> List[OfferRecord]:
        if self.error is not None:
            raise self.error
        self.offer_criteria.append(criteria)
        return [offer for offer in self.offers if self._matches(offer, criteria)]

    def list_targets(self, criteria: TargetCriteria) -> List[TargetRecord]:
        matches = []
        for target in self.targets.get(criteria.scope, []):
            if target.scope_id not in criteria.scope_ids:
                continue
            if target.period_type != criteria.period_type.value:
                continue
            if criteria.period_type == PeriodType.YEARLY and target.target_period != str(criteria.year):
                continue
            if criteria.period_type == PeriodType.MONTHLY and not target.target_period.startswith(
                f"{criteria.year}-"
            ):
                continue
            if criteria.overall_only and target.product_type is not None:
                continue
            matches.append(target)
        return matches

    @staticmethod
    def _matches(offer: OfferRecord, criteria: OfferCriteria) -> bool:
        checks = [
            criteria.zone_id is None or offer.zone_id == criteria.zone_id,
            criteria.created_from is None
            or (offer.created_at is not None and offer.created_at >= criteria.created_from),
            criteria.created_to is None
            or (offer.created_at is not None and offer.created_at <= criteria.created_to),
            not criteria.offer_month_prefix
            or (offer.offer_month or "").startswith(criteria.offer_month_prefix),
            not criteria.po_expected_month_prefix
            or (offer.po_expected_month or "").startswith(criteria.po_expected_month_prefix),
            not criteria.stages_in or offer.stage in criteria.stages_in,
            not criteria.stages_not_in or offer.stage not in criteria.stages_not_in,
            criteria.min_probability is None or offer.probability_percentage >= criteria.min_probability,
            criteria.max_probability is None or offer.probability_percentage <= criteria.max_probability,
            not criteria.product_type or offer.product_type == criteria.product_type,
            criteria.owner_user_id is None
            or criteria.owner_user_id in (offer.assigned_to_id, offer.created_by_id),
            criteria.created_by_id is None or offer.created_by_id == criteria.created_by_id,
            criteria.open_funnel is None or offer.open_funnel == criteria.open_funnel,
        ]
        return all(checks)


@pytest.fixture()
def repository() -> StubForecastRepository:
    return StubForecastRepository()


@pytest.fixture()
def service(repository: StubForecastRepository) -> ForecastService:
    return ForecastService(repository=repository, max_workers=4)


@pytest.fixture()
def failing_repository(repository: StubForecastRepository) -> StubForecastRepository:
    repository.error = httpx.ConnectError("connection refused")
    return repository


@pytest.fixture()
def client(repository: StubForecastRepository) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_forecast_repository] = lambda: repository
    return TestClient(app)

