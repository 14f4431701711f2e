from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class OfferStage(str, Enum):
    INITIAL = "INITIAL"
    PROPOSAL_SENT = "PROPOSAL_SENT"
    NEGOTIATION = "NEGOTIATION"
    PO_RECEIVED = "PO_RECEIVED"
    WON = "WON"
    LOST = "LOST"


TERMINAL_STAGES = frozenset({OfferStage.WON.value, OfferStage.LOST.value})


class ProductType(str, Enum):
    CONTRACT = "CONTRACT"
    BD_SPARE = "BD_SPARE"
    SPP = "SPP"
    RELOCATION = "RELOCATION"
    SOFTWARE = "SOFTWARE"
    BD_CHARGES = "BD_CHARGES"
    RETROFIT_KIT = "RETROFIT_KIT"
    UPGRADE_KIT = "UPGRADE_KIT"
    MIDLIFE_UPGRADE = "MIDLIFE_UPGRADE"
    TRAINING = "TRAINING"


PRODUCT_LABELS = {
    ProductType.CONTRACT.value: "Contract",
    ProductType.BD_SPARE.value: "BD Spare",
    ProductType.SPP.value: "SPP",
    ProductType.RELOCATION.value: "Relocation",
    ProductType.SOFTWARE.value: "Software",
    ProductType.BD_CHARGES.value: "BD Charges",
    ProductType.RETROFIT_KIT.value: "Retrofit Kit",
    ProductType.UPGRADE_KIT.value: "Upgrade Kit",
    ProductType.MIDLIFE_UPGRADE.value: "Midlife Upgrade",
    ProductType.TRAINING.value: "Training",
}

# Breakdown reports cover the core catalogue; TRAINING only shows in the product-wise forecast.
CORE_PRODUCT_TYPES = [product.value for product in ProductType if product != ProductType.TRAINING]
FORECAST_PRODUCT_TYPES = [
    ProductType.CONTRACT.value,
    ProductType.BD_SPARE.value,
    ProductType.SPP.value,
    ProductType.RELOCATION.value,
    ProductType.SOFTWARE.value,
    ProductType.BD_CHARGES.value,
    ProductType.RETROFIT_KIT.value,
    ProductType.UPGRADE_KIT.value,
    ProductType.TRAINING.value,
    ProductType.MIDLIFE_UPGRADE.value,
]


class PeriodType(str, Enum):
    YEARLY = "YEARLY"
    MONTHLY = "MONTHLY"


class TargetScope(str, Enum):
    ZONE = "ZONE"
    USER = "USER"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    ZONE_MANAGER = "ZONE_MANAGER"
    ZONE_USER = "ZONE_USER"


ZONE_MEMBER_ROLES = [UserRole.ZONE_MANAGER.value, UserRole.ZONE_USER.value]


def product_label(product_type: str) -> str:
    return PRODUCT_LABELS.get(product_type, product_type.replace("_", " "))


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _optional_upper(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().upper()
    return text or None


class OfferRecord(BaseModel):
    id: int
    offer_value: Optional[Any] = None
    po_value: Optional[Any] = None
    offer_month: Optional[str] = None
    po_received_month: Optional[str] = None
    po_expected_month: Optional[str] = None
    stage: Optional[str] = None
    probability_percentage: int = 0
    product_type: Optional[str] = None
    open_funnel: bool = False
    zone_id: Optional[int] = None
    assigned_to_id: Optional[int] = None
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None

    @field_validator("offer_month", "po_received_month", "po_expected_month", mode="before")
    @classmethod
    def _month_or_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text if MONTH_PATTERN.match(text) else None

    @field_validator("stage", "product_type", mode="before")
    @classmethod
    def _upper_or_none(cls, value: Any) -> Optional[str]:
        return _optional_upper(value)

    @field_validator("probability_percentage", mode="before")
    @classmethod
    def _probability(cls, value: Any) -> int:
        try:
            probability = int(float(str(value)))
        except (TypeError, ValueError):
            return 0
        return min(max(probability, 0), 100)

    @field_validator("open_funnel", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"true", "t", "1", "yes"}
        return bool(value)

    @field_validator("zone_id", "assigned_to_id", "created_by_id", mode="before")
    @classmethod
    def _reference(cls, value: Any) -> Optional[int]:
        return _optional_int(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _timestamp(cls, value: Any) -> Optional[datetime]:
        if value is None or isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None


class TargetRecord(BaseModel):
    scope_id: int
    target_period: str
    period_type: str
    product_type: Optional[str] = None
    target_value: Optional[Any] = None

    @field_validator("period_type", "product_type", mode="before")
    @classmethod
    def _upper_or_none(cls, value: Any) -> Optional[str]:
        return _optional_upper(value)


class ServiceZoneRecord(BaseModel):
    id: int
    name: str = ""
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value: Any) -> str:
        return str(value or "")


class UserRecord(BaseModel):
    id: int
    name: Optional[str] = None
    short_form: Optional[str] = None
    role: Optional[str] = None
    zone_ids: List[int] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or self.short_form or f"User {self.id}"


class OfferCriteria(BaseModel):
    """Typed filter set for offer fetches; every field is optional and ANDed."""

    zone_id: Optional[int] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    offer_month_prefix: Optional[str] = None
    po_expected_month_prefix: Optional[str] = None
    stages_in: Optional[List[str]] = None
    stages_not_in: Optional[List[str]] = None
    min_probability: Optional[int] = Field(default=None, ge=0, le=100)
    max_probability: Optional[int] = Field(default=None, ge=0, le=100)
    product_type: Optional[str] = None
    owner_user_id: Optional[int] = None
    created_by_id: Optional[int] = None
    open_funnel: Optional[bool] = None

    @model_validator(mode="after")
    def _check_ranges(self) -> "OfferCriteria":
        if (
            self.min_probability is not None
            and self.max_probability is not None
            and self.min_probability > self.max_probability
        ):
            raise ValueError("min_probability must not exceed max_probability")
        if self.created_from and self.created_to and self.created_from > self.created_to:
            raise ValueError("created_from must not be after created_to")
        return self


class TargetCriteria(BaseModel):
    scope: TargetScope
    scope_ids: List[int]
    year: int = Field(ge=1900, le=9999)
    period_type: PeriodType
    product_type: Optional[str] = None
    overall_only: bool = False


class UserCriteria(BaseModel):
    roles: Optional[List[str]] = None
    zone_id: Optional[int] = None
    user_id: Optional[int] = None
    active_only: bool = True
