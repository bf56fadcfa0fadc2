"""
Notion REST API client.

Thin synchronous wrapper over the database query and search endpoints,
authenticated with a single integration token.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_NOTION_API_URL = "https://api.notion.com"
DEFAULT_NOTION_VERSION = "2022-06-28"
PAGE_SIZE = 100


class NotionApiError(RuntimeError):
    """Raised when a Notion API call fails or returns an unusable body."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class NotionClient:
    """Thread-safe client for the subset of the Notion API the cache needs."""

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_NOTION_API_URL,
        notion_version: str = DEFAULT_NOTION_VERSION,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._notion_version = notion_version
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.Client | None = None
        self._lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(
                    base_url=self._base_url,
                    headers={
                        "Authorization": f"Bearer {self._token}",
                        "Notion-Version": self._notion_version,
                        "Content-Type": "application/json",
                    },
                    timeout=self._timeout_seconds,
                    transport=self._transport,
                )
            return self._client

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._get_client().post(path, json=body)
        except httpx.HTTPError as exc:
            raise NotionApiError(
                "notion_unavailable", f"Notion request to {path} failed: {exc}"
            ) from exc

        if response.status_code >= 400:
            detail = response.text
            try:
                detail = response.json().get("message", detail)
            except ValueError:
                pass
            raise NotionApiError(
                "notion_http_error",
                f"Notion returned HTTP {response.status_code} for {path}: {detail}",
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise NotionApiError(
                "notion_bad_response", f"Notion returned invalid JSON for {path}"
            ) from exc
        if not isinstance(payload, dict):
            raise NotionApiError(
                "notion_bad_response", f"Notion returned an unexpected body for {path}"
            )
        return payload

    def query_database(
        self, database_id: str, cursor: str = "", page_size: int = PAGE_SIZE
    ) -> tuple[list[dict[str, Any]], str]:
        """Fetch one page of a database. Returns (results, next_cursor or "")."""
        body: dict[str, Any] = {"page_size": page_size}
        if cursor:
            body["start_cursor"] = cursor
        payload = self._post(f"/v1/databases/{database_id}/query", body)

        results = payload.get("results")
        if not isinstance(results, list):
            raise NotionApiError(
                "notion_bad_response",
                f"Notion query for database {database_id} returned no results list",
            )
        if not all(isinstance(item, dict) for item in results):
            raise NotionApiError(
                "notion_bad_response",
                f"Notion query for database {database_id} returned a malformed page",
            )
        next_cursor = payload.get("next_cursor") if payload.get("has_more") else None
        return results, next_cursor or ""

    def list_accessible_databases(self) -> dict[str, str]:
        """
        Map of database id -> title for databases shared with the integration.

        Best-effort: Notion no longer offers a dedicated list endpoint, so this
        goes through search and callers should treat a failure as unsupported.
        """
        databases: dict[str, str] = {}
        cursor = ""
        while True:
            body: dict[str, Any] = {
                "filter": {"property": "object", "value": "database"},
                "page_size": PAGE_SIZE,
            }
            if cursor:
                body["start_cursor"] = cursor
            payload = self._post("/v1/search", body)

            for item in payload.get("results") or []:
                if not isinstance(item, dict) or "id" not in item:
                    continue
                title = "".join(
                    str(fragment.get("plain_text", ""))
                    for fragment in item.get("title") or []
                    if isinstance(fragment, dict)
                )
                databases[str(item["id"])] = title

            cursor = (payload.get("next_cursor") if payload.get("has_more") else None) or ""
            if not cursor:
                return databases

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
