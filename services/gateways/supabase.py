"""
Supabase Gateway Module

Relational backing store reached through the PostgREST HTTP API that
Supabase exposes under ``/rest/v1``.  Reads are retried once on a transient
failure; writes never are.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from core import config
from core.errors import MutationError, UpstreamAPIError
from core.schemas import Candidate
from services.gateways.base import Id, LookupGateway, RecordMutationGateway
from services.retry import read_retrying

logger = logging.getLogger(__name__)

# Postgres error codes surfaced by PostgREST
PG_ERROR_REASONS = {
    "23503": "foreign_key_violation",
    "23505": "unique_violation",
    "23502": "not_null_violation",
    "42703": "unknown_column",
    "42P01": "unknown_table",
}

_DISPLAY_FIELDS = ("name", "title", "document_name")
_RESERVED = set(',.:()"\\')


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, UpstreamAPIError) and exc.transient


def _quote(value: Any) -> str:
    """Quote a PostgREST filter value when it contains reserved characters."""
    text = str(value)
    if any(ch in _RESERVED for ch in text):
        return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return text


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards (and PostgREST's ``*``) so ilike compares literally."""
    for ch in ("\\", "%", "_", "*"):
        value = value.replace(ch, "\\" + ch)
    return value


def _error_payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"message": response.text}
    return data if isinstance(data, dict) else {"message": str(data)}


class SupabaseGateway(LookupGateway, RecordMutationGateway):
    """Lookups and writes against Supabase tables."""

    service = "supabase"

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        lookup_timeout: float = config.LOOKUP_TIMEOUT,
        mutation_timeout: float = config.MUTATION_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not url or not key:
            raise ValueError("Supabase URL and key are required")
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.lookup_timeout = lookup_timeout
        self.mutation_timeout = mutation_timeout
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    async def _get(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        async def once() -> List[Dict[str, Any]]:
            response = await self._client.get(
                f"{self.base_url}/{table}",
                params=params,
                headers=self._headers,
                timeout=self.lookup_timeout,
            )
            if response.status_code >= 400:
                err = _error_payload(response)
                raise UpstreamAPIError(
                    self.service,
                    err.get("message") or f"HTTP {response.status_code}",
                    status_code=response.status_code,
                    transient=response.status_code >= 500 or response.status_code == 429,
                )
            try:
                data = response.json()
            except ValueError as e:
                raise UpstreamAPIError(self.service, f"{table} returned a non-JSON body") from e
            return data if isinstance(data, list) else []

        try:
            async for attempt in read_retrying(_is_transient):
                with attempt:
                    rows = await once()
        except httpx.HTTPError as e:
            raise UpstreamAPIError(self.service, str(e), transient=True) from e
        return rows

    async def _write(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        headers = {**self._headers, "Prefer": "return=representation"}
        try:
            response = await self._client.request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=payload,
                headers=headers,
                timeout=self.mutation_timeout,
            )
        except httpx.HTTPError as e:
            raise MutationError(self.service, "network_error", str(e)) from e

        if response.status_code >= 400:
            err = _error_payload(response)
            code = str(err.get("code") or "")
            reason = PG_ERROR_REASONS.get(code, "rejected")
            message = err.get("message") or f"HTTP {response.status_code}"
            if reason == "foreign_key_violation" and method == "DELETE":
                message = f"{table} record is still referenced by other records: {message}"
            elif reason == "unique_violation":
                message = f"duplicate {table} record: {message}"
            logger.warning("Supabase %s %s failed (%s): %s", method, table, reason, message)
            raise MutationError(self.service, reason, message, status_code=response.status_code)

        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as e:
            raise MutationError(self.service, "bad_response", f"{method} {table} returned a non-JSON body") from e
        return data if isinstance(data, list) else [data]

    @staticmethod
    def _eq_params(filter: Mapping[str, Any]) -> Dict[str, str]:
        return {
            col: "is.null" if value is None else f"eq.{value}"
            for col, value in filter.items()
        }

    @staticmethod
    def _to_candidate(row: Dict[str, Any]) -> Candidate:
        display = next((row[f] for f in _DISPLAY_FIELDS if row.get(f)), "")
        return Candidate(id=row.get("id", ""), display_name=str(display), attributes=row)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    async def list_candidates(self, collection: Id, filter_properties: Mapping[str, Any], limit: int = 50) -> List[Candidate]:
        props = {
            k: v for k, v in filter_properties.items()
            if v is not None and str(v).strip() != ""
        }
        if not props:
            return []
        conditions = ",".join(
            f"{col}.ilike.{_quote('*' + str(v).strip() + '*')}" for col, v in props.items()
        )
        params = {"select": "*", "and": f"({conditions})", "limit": str(limit)}
        rows = await self._get(str(collection), params)
        return [self._to_candidate(r) for r in rows]

    async def find_id_by_name(self, collection: str, name: str) -> Optional[Id]:
        target = str(name).strip()
        params = {"select": "id,name", "name": f"ilike.{_quote(_escape_like(target))}", "limit": "50"}
        for row in await self._get(collection, params):
            if str(row.get("name", "")).lower() == target.lower():
                return row.get("id")
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def insert(self, collection: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._write("POST", collection, payload=payload)
        return rows[0] if rows else dict(payload)

    async def update(self, collection: str, payload: Dict[str, Any], filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not filter:
            raise MutationError(self.service, "missing_filter", "UPDATE requires a filter")
        rows = await self._write("PATCH", collection, params=self._eq_params(filter), payload=payload)
        if not rows:
            raise MutationError(self.service, "no_match", f"No {collection} record matched {filter}")
        return rows

    async def delete(self, collection: str, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not filter:
            raise MutationError(self.service, "missing_filter", "DELETE requires a filter")
        rows = await self._write("DELETE", collection, params=self._eq_params(filter))
        if not rows:
            raise MutationError(self.service, "no_match", f"No {collection} record matched {filter}")
        return rows
