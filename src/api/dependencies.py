from __future__ import annotations

from typing import Iterator

import httpx
from fastapi import Depends

from src.core.config import get_settings
from src.core.supabase import SupabaseClient, build_http_client
from src.repositories.forecast_repository import ForecastRepository
from src.services.forecast_service import ForecastService


def get_http_client() -> Iterator[httpx.Client]:
    client = build_http_client()
    try:
        yield client
    finally:
        client.close()


def get_supabase_client(http_client: httpx.Client = Depends(get_http_client)) -> SupabaseClient:
    return SupabaseClient(http_client)


def get_forecast_repository(
    client: SupabaseClient = Depends(get_supabase_client),
) -> ForecastRepository:
    return ForecastRepository(client)


def get_forecast_service(
    repository: ForecastRepository = Depends(get_forecast_repository),
) -> ForecastService:
    return ForecastService(repository=repository, max_workers=get_settings().forecast_max_workers)
