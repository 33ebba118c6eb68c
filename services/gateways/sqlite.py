"""
SQLite Gateway Module

Relational backing store on a local SQLite file.  Implements both the lookup
and the mutation contracts; blocking sqlite3 calls run in a worker thread so
the pipeline never blocks other commands.
"""

import asyncio
import logging
import re
import sqlite3
from typing import Any, Dict, List, Mapping, Optional, Tuple

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from core.errors import MutationError, UpstreamAPIError
from core.schemas import Candidate
from services.gateways.base import Id, LookupGateway, RecordMutationGateway

logger = logging.getLogger(__name__)

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DISPLAY_FIELDS = ("name", "title", "document_name")


def _is_locked(exc: BaseException) -> bool:
    return isinstance(exc, sqlite3.OperationalError) and "locked" in str(exc).lower()


def _classify_error(error: sqlite3.Error) -> str:
    """Map sqlite errors to machine-readable mutation reasons."""
    msg = str(error).lower()
    if "foreign key" in msg:
        return "foreign_key_violation"
    if "unique" in msg:
        return "unique_violation"
    if "not null" in msg:
        return "not_null_violation"
    if "no such column" in msg or "has no column" in msg:
        return "unknown_column"
    if "no such table" in msg:
        return "unknown_table"
    if "locked" in msg or "busy" in msg:
        return "locked"
    return "database_error"


class SQLiteGateway(LookupGateway, RecordMutationGateway):
    """Lookups and writes against a SQLite database."""

    service = "sqlite"

    def __init__(self, db_path: str):
        self.db_path = db_path

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _columns(self, conn: sqlite3.Connection, table: str) -> List[str]:
        if not _IDENT.match(table):
            return []
        return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]

    @staticmethod
    def _display_field(columns: List[str]) -> Optional[str]:
        for name in _DISPLAY_FIELDS:
            if name in columns:
                return name
        return None

    def get_schema(self) -> Dict[str, Any]:
        """Return basic table/column information for the configured database."""
        schema: Dict[str, Any] = {"tables": {}}
        try:
            with self._connect() as conn:
                cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
                for (table_name,) in cursor.fetchall():
                    if table_name.startswith("sqlite_"):
                        continue
                    schema["tables"][table_name] = {"columns": self._columns(conn, table_name)}
        except sqlite3.Error as e:
            raise UpstreamAPIError(self.service, str(e)) from e
        return schema

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception(_is_locked),
        reraise=True,
    )
    def _list_candidates_sync(self, table: str, filter_properties: Mapping[str, Any], limit: int) -> List[Candidate]:
        with self._connect() as conn:
            columns = self._columns(conn, table)
            if not columns:
                return []
            props = {
                k: v for k, v in filter_properties.items()
                if k in columns and v is not None and str(v).strip() != ""
            }
            if not props:
                return []
            clauses = [f"LOWER(CAST({col} AS TEXT)) LIKE ?" for col in props]
            params = [f"%{str(v).strip().lower()}%" for v in props.values()]

            sql = f"SELECT * FROM {table} WHERE {' AND '.join(clauses)} ORDER BY rowid LIMIT ?"
            rows = conn.execute(sql, [*params, limit]).fetchall()

            display = self._display_field(columns)
            out = []
            for row in rows:
                data = dict(row)
                out.append(Candidate(
                    id=data.get("id", ""),
                    display_name=str(data.get(display) or "") if display else "",
                    attributes=data,
                ))
            return out

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception(_is_locked),
        reraise=True,
    )
    def _find_id_by_name_sync(self, table: str, name: str) -> Optional[Id]:
        with self._connect() as conn:
            columns = self._columns(conn, table)
            display = self._display_field(columns)
            if not display or "id" not in columns:
                return None
            row = conn.execute(
                f"SELECT id FROM {table} WHERE LOWER({display}) = LOWER(?) ORDER BY rowid LIMIT 1",
                (str(name).strip(),),
            ).fetchone()
            return row[0] if row else None

    async def list_candidates(self, collection: Id, filter_properties: Mapping[str, Any], limit: int = 50) -> List[Candidate]:
        try:
            return await asyncio.to_thread(self._list_candidates_sync, str(collection), dict(filter_properties), limit)
        except sqlite3.Error as e:
            raise UpstreamAPIError(self.service, str(e)) from e

    async def find_id_by_name(self, collection: str, name: str) -> Optional[Id]:
        try:
            return await asyncio.to_thread(self._find_id_by_name_sync, collection, name)
        except sqlite3.Error as e:
            raise UpstreamAPIError(self.service, str(e)) from e

    # ------------------------------------------------------------------
    # Mutations (never retried)
    # ------------------------------------------------------------------
    @staticmethod
    def _check_idents(table: str, names) -> None:
        for ident in (table, *names):
            if not _IDENT.match(str(ident)):
                raise MutationError("sqlite", "invalid_identifier", f"Invalid identifier: {ident!r}")

    @staticmethod
    def _where(filter: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        clauses, params = [], []
        for col, value in filter.items():
            if value is None:
                clauses.append(f"{col} IS NULL")
            else:
                clauses.append(f"{col} = ?")
                params.append(value)
        return " AND ".join(clauses), params

    def _write(self, sql: str, params: List[Any]) -> sqlite3.Cursor:
        try:
            with self._connect() as conn:
                return conn.execute(sql, params)
        except sqlite3.Error as e:
            reason = _classify_error(e)
            logger.warning("SQLite write failed (%s): %s", reason, e)
            raise MutationError(self.service, reason, str(e)) from e

    def _insert_sync(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._check_idents(table, payload.keys())
        cols = ", ".join(payload)
        marks = ", ".join("?" for _ in payload)
        cur = self._write(f"INSERT INTO {table} ({cols}) VALUES ({marks})", list(payload.values()))
        return {"id": cur.lastrowid, **payload}

    def _update_sync(self, table: str, payload: Dict[str, Any], filter: Dict[str, Any]) -> Dict[str, Any]:
        if not filter:
            raise MutationError(self.service, "missing_filter", "UPDATE requires a filter")
        if not payload:
            raise MutationError(self.service, "empty_payload", "UPDATE requires at least one field")
        self._check_idents(table, [*payload.keys(), *filter.keys()])
        assignments = ", ".join(f"{col} = ?" for col in payload)
        where, where_params = self._where(filter)
        cur = self._write(f"UPDATE {table} SET {assignments} WHERE {where}", [*payload.values(), *where_params])
        if cur.rowcount == 0:
            raise MutationError(self.service, "no_match", f"No {table} record matched {filter}")
        return {"updated": cur.rowcount}

    def _delete_sync(self, table: str, filter: Dict[str, Any]) -> Dict[str, Any]:
        if not filter:
            raise MutationError(self.service, "missing_filter", "DELETE requires a filter")
        self._check_idents(table, filter.keys())
        where, params = self._where(filter)
        cur = self._write(f"DELETE FROM {table} WHERE {where}", params)
        if cur.rowcount == 0:
            raise MutationError(self.service, "no_match", f"No {table} record matched {filter}")
        return {"deleted": cur.rowcount}

    async def insert(self, collection: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._insert_sync, collection, dict(payload))

    async def update(self, collection: str, payload: Dict[str, Any], filter: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._update_sync, collection, dict(payload), dict(filter))

    async def delete(self, collection: str, filter: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._delete_sync, collection, dict(filter))
