"""
Backend Gateway Client
======================

Async client for the managed relational backend: table-scoped
select/insert/update/delete/upsert over its REST table API, plus the auth
subsystem (see ``blueprint.gateway.auth``).

Example:
    gateway = SupabaseGateway(url, anon_key, storage=MemoryStorage())

    rows = await gateway.select("settings", order="sku")
    await gateway.update("feedback", {"status": "resolved"}, match={"id": 7})
    await gateway.auth.sign_in_with_password("tech@example.com", "secret")
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from blueprint.core.storage import KeyValueStorage
from blueprint.gateway.auth import SESSION_KEY_PREFIX, AuthClient
from blueprint.gateway.exceptions import GatewayError, raise_for_response

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


def _encode_filter(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class SupabaseGateway:
    """
    Table and auth client for a Supabase-compatible backend.

    Args:
        url: Backend base URL (``https://<ref>.supabase.co``)
        anon_key: Project anon key sent as ``apikey``
        storage: Long-lived storage tier holding the backend session
        project_ref: Namespace for the stored session key
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        http: Shared httpx client; the gateway then leaves closing it to the owner
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        storage: KeyValueStorage,
        project_ref: str = "local",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url.rstrip("/")
        self._anon_key = anon_key
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout,
            transport=transport,
        )
        self.auth = AuthClient(
            self._http,
            anon_key,
            storage,
            storage_key=f"{SESSION_KEY_PREFIX}{project_ref}-auth-token",
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        token = self.auth.access_token or self._anon_key
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _match_params(match: Optional[Dict[str, Any]]) -> Dict[str, str]:
        return {column: _encode_filter(value) for column, value in (match or {}).items()}

    @staticmethod
    def _rows(response: httpx.Response) -> List[Row]:
        raise_for_response(response)
        if not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return list(data)

    # =========================================================================
    # Table operations
    # =========================================================================

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        maybe_single: bool = False,
    ) -> Union[List[Row], Optional[Row]]:
        """
        Read rows from a table.

        Args:
            table: Table name
            columns: Column list (PostgREST ``select`` syntax)
            filters: Equality filters keyed by column
            order: Column to order by
            descending: Order direction
            limit: Maximum rows
            maybe_single: Return one row or None instead of a list

        Returns:
            List of rows, or a single row / None when ``maybe_single``
        """
        params = {"select": columns, **self._match_params(filters)}
        if order:
            params["order"] = f"{order}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        elif maybe_single:
            params["limit"] = "2"

        response = await self._http.get(f"/rest/v1/{table}", params=params, headers=self._headers())
        rows = self._rows(response)

        if not maybe_single:
            return rows
        if len(rows) > 1:
            raise GatewayError(
                f"Expected at most one row from {table}, got {len(rows)}",
                status_code=response.status_code,
                code="PGRST116",
            )
        return rows[0] if rows else None

    async def insert(self, table: str, rows: Union[Row, Sequence[Row]]) -> List[Row]:
        """Insert one or more rows and return them as stored."""
        payload = [rows] if isinstance(rows, dict) else list(rows)
        response = await self._http.post(
            f"/rest/v1/{table}",
            json=payload,
            headers=self._headers(prefer="return=representation"),
        )
        return self._rows(response)

    async def update(self, table: str, values: Row, *, match: Dict[str, Any]) -> List[Row]:
        """Update rows matching ``match`` and return them."""
        if not match:
            raise ValueError("update() requires a match filter")
        response = await self._http.patch(
            f"/rest/v1/{table}",
            params=self._match_params(match),
            json=values,
            headers=self._headers(prefer="return=representation"),
        )
        return self._rows(response)

    async def delete(self, table: str, *, match: Dict[str, Any]) -> None:
        """Delete rows matching ``match``."""
        if not match:
            raise ValueError("delete() requires a match filter")
        response = await self._http.delete(
            f"/rest/v1/{table}",
            params=self._match_params(match),
            headers=self._headers(prefer="return=minimal"),
        )
        raise_for_response(response)

    async def upsert(
        self,
        table: str,
        rows: Union[Row, Sequence[Row]],
        *,
        on_conflict: str,
    ) -> List[Row]:
        """Insert rows, replacing any existing row with the same ``on_conflict`` key."""
        payload = [rows] if isinstance(rows, dict) else list(rows)
        response = await self._http.post(
            f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=payload,
            headers=self._headers(prefer="resolution=merge-duplicates,return=representation"),
        )
        return self._rows(response)
