"""
Supabase Backend - PostgREST and Storage over httpx

Request shapes:
- upsert:  POST   /rest/v1/{table}?on_conflict=id   Prefer: resolution=merge-duplicates
- update:  PATCH  /rest/v1/{table}?id=eq.{id}       Prefer: return=representation
- delete:  DELETE /rest/v1/{table}?id=eq.{id}
- upload:  POST   /storage/v1/object/{bucket}/{path} x-upsert: true

An update that matches no row comes back as an empty list; that is reported
as RECORD_MISSING_REMOTELY (non-retryable).
"""

import logging
from typing import Any, AsyncIterator, Dict, Iterable, Optional

import httpx

from claimsync.errors import ErrorHandler, ErrorType, PermanentSyncError
from claimsync.remote.realtime import RealtimeClient

logger = logging.getLogger(__name__)


class SupabaseBackend:
    """RemoteBackend implementation for a Supabase project"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        realtime_url: Optional[str] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        realtime: Optional[RealtimeClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self.realtime = realtime or RealtimeClient(
            url=realtime_url or self._default_realtime_url(),
            api_key=api_key,
        )

    def _default_realtime_url(self) -> str:
        ws_base = self.base_url.replace("https://", "wss://").replace("http://", "ws://")
        return f"{ws_base}/realtime/v1/websocket"

    def _headers(self, **extra: str) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
        }
        headers.update(extra)
        return headers

    def _rest_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        raise ErrorHandler.from_status_code(
            response.status_code,
            message=f"{action} rejected: HTTP {response.status_code}",
            details={"body": response.text[:500]}
        )

    # ===== Tables =====

    async def upsert(self, table: str, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.post(
            self._rest_url(table),
            params={"on_conflict": "id"},
            json={**payload, "id": record_id},
            headers=self._headers(Prefer="resolution=merge-duplicates,return=representation"),
        )
        self._check(response, f"upsert {table}/{record_id}")
        rows = response.json() if response.content else []
        return rows[0] if rows else payload

    async def update(self, table: str, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = {k: v for k, v in payload.items() if k != "id"}
        response = await self._client.patch(
            self._rest_url(table),
            params={"id": f"eq.{record_id}"},
            json=body,
            headers=self._headers(Prefer="return=representation"),
        )
        self._check(response, f"update {table}/{record_id}")
        rows = response.json() if response.content else []
        if not rows:
            raise PermanentSyncError(
                f"Record missing remotely: {table}/{record_id}",
                error_type=ErrorType.RECORD_MISSING_REMOTELY,
                details={"table": table, "record_id": record_id}
            )
        return rows[0]

    async def delete(self, table: str, record_id: str) -> None:
        response = await self._client.delete(
            self._rest_url(table),
            params={"id": f"eq.{record_id}"},
            headers=self._headers(),
        )
        self._check(response, f"delete {table}/{record_id}")

    # ===== Storage =====

    async def put_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None
    ) -> str:
        response = await self._client.post(
            f"{self.base_url}/storage/v1/object/{bucket}/{path}",
            content=data,
            headers=self._headers(**{
                "Content-Type": content_type or "application/octet-stream",
                "x-upsert": "true",
            }),
        )
        self._check(response, f"upload {bucket}/{path}")
        logger.debug(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return path

    # ===== Realtime =====

    def subscribe(self, owner_id: str, tables: Iterable[str]) -> AsyncIterator[Dict[str, Any]]:
        return self.realtime.changes(owner_id, tables)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
