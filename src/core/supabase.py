from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from src.core.config import Settings, get_settings


def build_http_client(settings: Optional[Settings] = None) -> httpx.Client:
    settings = settings or get_settings()
    return httpx.Client(
        timeout=settings.supabase_timeout_seconds,
        limits=httpx.Limits(
            max_keepalive_connections=settings.forecast_max_workers,
            max_connections=max(settings.forecast_max_workers * 2, 10),
        ),
    )


class SupabaseClient:
    """Read-only PostgREST client bound to an injected ``httpx.Client``.

    The HTTP client is owned by the caller (one per request), so several report
    fetches can share its connection pool without any process-wide state.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> None:
        if base_url is None or api_key is None:
            settings = get_settings()
            base_url = base_url or settings.supabase_url
            api_key = api_key or settings.supabase_service_role_key or settings.supabase_anon_key
        if not api_key:
            raise ValueError("Supabase API key is required")
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self._client = http_client

    def select(
        self,
        table: str,
        select: str,
        filters: Optional[List[Tuple[str, str]]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: List[Tuple[str, str]] = [("select", select)]
        if filters:
            params.extend(filters)
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset is not None:
            params.append(("offset", str(offset)))
        if order:
            params.append(("order", order))

        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        url = f"{self.base_url}/{table}?{urlencode(params, doseq=True)}"
        response = self._client.get(url, headers=headers)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise httpx.DecodingError(f"Invalid JSON from {table}", request=response.request) from exc
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]
        return []

    def select_all(
        self,
        table: str,
        select: str,
        filters: Optional[List[Tuple[str, str]]] = None,
        order: Optional[str] = None,
        page_size: int = 1000,
    ) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = self.select(
                table=table,
                select=select,
                filters=filters,
                limit=page_size,
                offset=offset,
                order=order,
            )
            rows.extend(page)
            if len(page) < page_size:
                return rows
            offset += page_size
