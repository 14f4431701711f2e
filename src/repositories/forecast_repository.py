from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from src.core.supabase import SupabaseClient
from src.models.forecast import (
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

MAX_QUERY_ROWS = 5000

OFFER_COLUMNS = (
    "id,offer_value,po_value,offer_month,po_received_month,po_expected_month,stage,"
    "probability_percentage,product_type,open_funnel,zone_id,assigned_to_id,created_by_id,created_at"
)
TARGET_TABLES = {
    TargetScope.ZONE: ("zone_targets", "service_zone_id"),
    TargetScope.USER: ("user_targets", "user_id"),
}


class ForecastRepository:
    def __init__(self, client: SupabaseClient) -> None:
        self.client = client

    def list_zones(
        self, active_only: bool = True, zone_id: Optional[int] = None
    ) -> List[ServiceZoneRecord]:
        filters: List[Tuple[str, str]] = []
        if active_only:
            filters.append(("is_active", "eq.true"))
        if zone_id is not None:
            filters.append(("id", f"eq.{zone_id}"))
        rows = self.client.select_all(
            table="service_zones",
            select="id,name,is_active",
            filters=filters,
            order="name.asc",
            page_size=MAX_QUERY_ROWS,
        )
        return [ServiceZoneRecord.model_validate(row) for row in rows]

    def list_users_in_zone(self, zone_id: int, roles: List[str]) -> List[UserRecord]:
        return self.list_users(UserCriteria(roles=roles, zone_id=zone_id))

    def list_users(self, criteria: UserCriteria) -> List[UserRecord]:
        # The inner join narrows users to members of the zone when a zone filter is set.
        membership = "service_person_zones!inner" if criteria.zone_id is not None else "service_person_zones"
        filters: List[Tuple[str, str]] = []
        if criteria.active_only:
            filters.append(("is_active", "eq.true"))
        if criteria.roles:
            filters.append(("role", self._build_in_filter(criteria.roles)))
        if criteria.user_id is not None:
            filters.append(("id", f"eq.{criteria.user_id}"))
        if criteria.zone_id is not None:
            filters.append(("service_person_zones.service_zone_id", f"eq.{criteria.zone_id}"))
        rows = self.client.select_all(
            table="users",
            select=f"id,name,short_form,role,{membership}(service_zone_id)",
            filters=filters,
            order="name.asc",
            page_size=MAX_QUERY_ROWS,
        )
        return [self._to_user(row) for row in rows]

    def list_offers(self, criteria: OfferCriteria) -> List[OfferRecord]:
        rows = self.client.select_all(
            table="offers",
            select=OFFER_COLUMNS,
            filters=self._build_offer_filters(criteria),
            order="id.asc",
            page_size=MAX_QUERY_ROWS,
        )
        return [OfferRecord.model_validate(row) for row in rows]

    def list_targets(self, criteria: TargetCriteria) -> List[TargetRecord]:
        if not criteria.scope_ids:
            return []
        table, scope_column = TARGET_TABLES[criteria.scope]
        scope_ids = ",".join(str(scope_id) for scope_id in sorted(set(criteria.scope_ids)))
        filters: List[Tuple[str, str]] = [
            (scope_column, f"in.({scope_ids})"),
            ("period_type", f"eq.{criteria.period_type.value}"),
        ]
        if criteria.period_type == PeriodType.YEARLY:
            filters.append(("target_period", f"eq.{criteria.year}"))
        else:
            filters.append(("target_period", f"like.{criteria.year}-*"))
        if criteria.overall_only:
            filters.append(("product_type", "is.null"))
        elif criteria.product_type:
            filters.append(("product_type", f"eq.{criteria.product_type}"))
        rows = self.client.select_all(
            table=table,
            select=f"{scope_column},target_period,period_type,product_type,target_value",
            filters=filters,
            order="target_period.asc",
            page_size=MAX_QUERY_ROWS,
        )
        return [
            TargetRecord.model_validate({**row, "scope_id": row.get(scope_column)})
            for row in rows
        ]

    @classmethod
    def _build_offer_filters(cls, criteria: OfferCriteria) -> List[Tuple[str, str]]:
        filters: List[Tuple[str, str]] = []
        if criteria.zone_id is not None:
            filters.append(("zone_id", f"eq.{criteria.zone_id}"))
        if criteria.created_from is not None:
            filters.append(("created_at", f"gte.{criteria.created_from.isoformat()}"))
        if criteria.created_to is not None:
            filters.append(("created_at", f"lte.{criteria.created_to.isoformat()}"))
        if criteria.offer_month_prefix:
            filters.append(("offer_month", f"like.{criteria.offer_month_prefix}*"))
        if criteria.po_expected_month_prefix:
            filters.append(("po_expected_month", f"like.{criteria.po_expected_month_prefix}*"))
        if criteria.stages_in:
            filters.append(("stage", cls._build_in_filter(criteria.stages_in)))
        if criteria.stages_not_in:
            filters.append(("stage", f"not.{cls._build_in_filter(criteria.stages_not_in)}"))
        if criteria.min_probability is not None:
            filters.append(("probability_percentage", f"gte.{criteria.min_probability}"))
        if criteria.max_probability is not None:
            filters.append(("probability_percentage", f"lte.{criteria.max_probability}"))
        if criteria.product_type:
            filters.append(("product_type", f"eq.{criteria.product_type}"))
        if criteria.owner_user_id is not None:
            owner = criteria.owner_user_id
            filters.append(("or", f"(assigned_to_id.eq.{owner},created_by_id.eq.{owner})"))
        if criteria.created_by_id is not None:
            filters.append(("created_by_id", f"eq.{criteria.created_by_id}"))
        if criteria.open_funnel is not None:
            filters.append(("open_funnel", f"eq.{str(criteria.open_funnel).lower()}"))
        return filters

    @staticmethod
    def _to_user(row: Dict[str, Any]) -> UserRecord:
        memberships = row.get("service_person_zones") or []
        zone_ids = [
            membership["service_zone_id"]
            for membership in memberships
            if membership.get("service_zone_id") is not None
        ]
        return UserRecord.model_validate(
            {
                "id": row.get("id"),
                "name": row.get("name") or None,
                "short_form": row.get("short_form") or None,
                "role": row.get("role"),
                "zone_ids": zone_ids,
            }
        )

    @staticmethod
    def _build_in_filter(values: List[str]) -> str:
        sanitized_values = [value.strip() for value in values if value and value.strip()]
        return f"in.({','.join(sanitized_values)})"
