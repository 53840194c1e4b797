from __future__ import annotations

from threading import Lock
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from src.core.config import get_settings


class SupabaseClient:
    """Thin PostgREST client for the agency's Supabase project.

    Table reads/writes go through ``/rest/v1/<table>``; stored procedures are
    invoked with ``POST /rest/v1/rpc/<function>``. Every call raises
    ``httpx.HTTPStatusError`` on a non-2xx answer so callers decide whether a
    failure is fatal.
    """

    _shared_client: httpx.Client | None = None
    _client_lock: Lock = Lock()

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if supabase_url is None or api_key is None:
            settings = get_settings()
            supabase_url = supabase_url or settings.supabase_url
            api_key = api_key or settings.supabase_service_role_key or settings.supabase_anon_key
        if not api_key:
            raise ValueError("Supabase API key is required")
        self.base_url = supabase_url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self._client = http_client or self._get_shared_client()

    @classmethod
    def _get_shared_client(cls) -> httpx.Client:
        if cls._shared_client is not None:
            return cls._shared_client
        with cls._client_lock:
            if cls._shared_client is None:
                cls._shared_client = httpx.Client(
                    timeout=30.0,
                    limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
                )
        return cls._shared_client

    def _headers(self, write: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        if write:
            headers["Content-Type"] = "application/json"
            headers["Prefer"] = "return=representation"
        return headers

    @staticmethod
    def _rows(response: httpx.Response) -> List[Dict[str, Any]]:
        if not response.content:
            return []
        data = response.json()
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]
        return []

    def select(
        self,
        table: str,
        select: str,
        filters: Optional[List[Tuple[str, str]]] = None,
    ) -> List[Dict[str, Any]]:
        params: List[Tuple[str, str]] = [("select", select)]
        if filters:
            params.extend(filters)
        url = f"{self.base_url}/{table}?{urlencode(params, doseq=True)}"
        response = self._client.get(url, headers=self._headers())
        response.raise_for_status()
        return self._rows(response)

    def insert(
        self,
        table: str,
        payload: Dict[str, Any] | List[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        response = self._client.post(
            f"{self.base_url}/{table}", headers=self._headers(write=True), json=payload
        )
        response.raise_for_status()
        return self._rows(response)

    def update(
        self,
        table: str,
        payload: Dict[str, Any],
        filters: List[Tuple[str, str]],
    ) -> List[Dict[str, Any]]:
        if not filters:
            # PostgREST would patch every row without a filter.
            raise ValueError("update requires at least one filter")
        url = f"{self.base_url}/{table}?{urlencode(filters, doseq=True)}"
        response = self._client.patch(url, headers=self._headers(write=True), json=payload)
        response.raise_for_status()
        return self._rows(response)

    def rpc(self, function: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/rpc/{function}"
        headers = self._headers()
        headers["Content-Type"] = "application/json"
        response = self._client.post(url, headers=headers, json=payload or {})
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()
