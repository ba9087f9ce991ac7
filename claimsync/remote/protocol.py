"""
Remote Backend Protocol - the capability the sync core consumes

Implementations:
- SupabaseBackend (PostgREST + Storage over httpx, Realtime over websockets)
- in-memory fakes used by the test suite
"""

from typing import Any, AsyncIterator, Dict, Iterable, Optional, Protocol, runtime_checkable


@runtime_checkable
class RemoteBackend(Protocol):
    """
    Per-table CRUD, object storage and a change stream.

    Errors: implementations raise ClaimSyncError subclasses for rejected
    requests and let transport errors (httpx / OSError) propagate; the sync
    engine classifies both through ErrorHandler.
    """

    async def upsert(self, table: str, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create-or-replace keyed by the client id; safe to repeat"""
        ...

    async def update(self, table: str, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete(self, table: str, record_id: str) -> None:
        """Idempotent: deleting an absent row succeeds"""
        ...

    async def put_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None
    ) -> str:
        """Upload bytes; returns the storage locator"""
        ...

    def subscribe(self, owner_id: str, tables: Iterable[str]) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream raw change payloads for one owner:
        {"table", "operation", "new_values", "old_values"}
        """
        ...

    async def aclose(self) -> None:
        ...
