from __future__ import annotations

from datetime import date

from fastapi import APIRouter

from src.core.config import get_settings
from src.shared.response import Meta, ResponseEnvelope


router = APIRouter(tags=["health"])


def _health_payload() -> ResponseEnvelope[dict]:
    meta = Meta(
        as_of_date=date.today().isoformat(),
        source="system",
        time_window="now",
        calculation_version="v1",
    )
    return ResponseEnvelope(data={"status": "ok", "service": get_settings().app_name}, meta=meta)


@router.get("/health")
def health_check() -> ResponseEnvelope[dict]:
    return _health_payload()


@router.get("/healthz")
def health_check_liveness() -> ResponseEnvelope[dict]:
    return _health_payload()
