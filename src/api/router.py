from __future__ import annotations

from fastapi import APIRouter

from src.api.forecast import router as forecast_router
from src.api.health import router as health_router


api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(forecast_router)
