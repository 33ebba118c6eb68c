"""
Monday Gateway Module

Board-system backend over the monday.com GraphQL API.

Collections understood by the lookup side:

* ``"boards"`` - the boards visible to the token (first 100)
* ``"boards/<board_id>/columns"`` - the columns of one board, looked up by title
* ``<board_id>`` - the items of one board, with their column values keyed by
  column title
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from core import config
from core.errors import MutationError, UpstreamAPIError
from core.schemas import Candidate
from services.gateways.base import (
    BOARDS,
    BoardMutationGateway,
    Id,
    LookupGateway,
    matches_properties,
    parse_columns_collection,
)
from services.retry import read_retrying

logger = logging.getLogger(__name__)

BOARDS_QUERY = "query { boards(limit: 100) { id name } }"

COLUMNS_QUERY = """
query ($board: [ID!]) {
  boards(ids: $board) { columns { id title type } }
}
"""

ITEMS_QUERY = """
query ($board: [ID!], $limit: Int!) {
  boards(ids: $board) {
    columns { id title }
    items_page(limit: $limit) {
      items { id name column_values { id text } }
    }
  }
}
"""

CREATE_ITEM = """
mutation ($board: ID!, $name: String!) {
  create_item(board_id: $board, item_name: $name) { id name }
}
"""

RENAME_ITEM = """
mutation ($board: ID!, $item: ID!, $name: String!) {
  change_simple_column_value(board_id: $board, item_id: $item, column_id: "name", value: $name) { id name }
}
"""

CHANGE_COLUMN = """
mutation ($board: ID!, $item: ID!, $column: String!, $value: JSON!) {
  change_column_value(board_id: $board, item_id: $item, column_id: $column, value: $value) {
    id name column_values { id text }
  }
}
"""

# items fetched per board before matching client-side
ITEMS_PAGE_LIMIT = 500


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, UpstreamAPIError) and exc.transient


def format_column_value(column_id: str, value: Any) -> str:
    """JSON-encode a column value; status columns take a label object."""
    if "status" in column_id.lower():
        return json.dumps({"label": value})
    return json.dumps(value)


class MondayGateway(LookupGateway, BoardMutationGateway):
    """Lookups and item mutations against monday.com boards."""

    service = "monday"

    def __init__(
        self,
        api_token: Optional[str] = None,
        api_url: str = config.MONDAY_API_URL,
        api_version: str = config.MONDAY_API_VERSION,
        lookup_timeout: float = config.LOOKUP_TIMEOUT,
        mutation_timeout: float = config.MUTATION_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_token:
            raise ValueError("Monday.com API token is required")
        self.api_url = api_url
        self.lookup_timeout = lookup_timeout
        self.mutation_timeout = mutation_timeout
        self._headers = {
            "Content-Type": "application/json",
            "Authorization": api_token,
            "API-Version": api_version,
        }
        self._client = client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # GraphQL transport
    # ------------------------------------------------------------------
    async def _post(
        self, query: str, variables: Optional[Dict[str, Any]], timeout: float, write: bool = False
    ) -> Dict[str, Any]:
        response = await self._client.post(
            self.api_url,
            json={"query": query, "variables": variables or {}},
            headers=self._headers,
            timeout=timeout,
        )
        if response.status_code >= 400:
            raise UpstreamAPIError(
                self.service,
                f"API call failed with HTTP status {response.status_code}",
                status_code=response.status_code,
                transient=response.status_code >= 500 or response.status_code == 429,
            )
        try:
            result = response.json()
        except ValueError:
            result = None
        if not isinstance(result, dict):
            message = "API returned a non-JSON body"
            if write:
                raise MutationError(self.service, "bad_response", message, status_code=response.status_code)
            raise UpstreamAPIError(self.service, message, status_code=response.status_code)
        if result.get("errors"):
            messages = ", ".join(e.get("message", "unknown error") for e in result["errors"])
            raise UpstreamAPIError(self.service, f"API errors: {messages}")
        return result.get("data") or {}

    async def _read(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            async for attempt in read_retrying(_is_transient):
                with attempt:
                    data = await self._post(query, variables, self.lookup_timeout)
        except httpx.HTTPError as e:
            raise UpstreamAPIError(self.service, str(e), transient=True) from e
        return data

    async def _mutate(self, field: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        try:
            data = await self._post(query, variables, self.mutation_timeout, write=True)
        except httpx.HTTPError as e:
            raise MutationError(self.service, "network_error", str(e)) from e
        except MutationError:
            raise
        except UpstreamAPIError as e:
            logger.warning("monday %s failed: %s", field, e)
            raise MutationError(self.service, "rejected", str(e), status_code=e.status_code) from e
        if not data.get(field):
            raise MutationError(self.service, "empty_response", f"{field} returned no data")
        return data[field]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_boards(self) -> List[Dict[str, Any]]:
        data = await self._read(BOARDS_QUERY)
        return data.get("boards") or []

    async def get_columns(self, board_id: Id) -> List[Dict[str, Any]]:
        data = await self._read(COLUMNS_QUERY, {"board": [str(board_id)]})
        boards = data.get("boards") or []
        return (boards[0].get("columns") or []) if boards else []

    async def get_items(self, board_id: Id) -> List[Candidate]:
        data = await self._read(ITEMS_QUERY, {"board": [str(board_id)], "limit": ITEMS_PAGE_LIMIT})
        boards = data.get("boards") or []
        if not boards:
            return []
        titles = {c["id"]: c["title"] for c in boards[0].get("columns") or []}
        items = (boards[0].get("items_page") or {}).get("items") or []

        out = []
        for item in items:
            attributes: Dict[str, Any] = {"name": item.get("name", "")}
            for cv in item.get("column_values") or []:
                title = titles.get(cv.get("id"), cv.get("id"))
                attributes[title.lower()] = cv.get("text")
            out.append(Candidate(id=str(item["id"]), display_name=item.get("name", ""), attributes=attributes))
        return out

    async def list_candidates(self, collection: Id, filter_properties: Mapping[str, Any], limit: int = 50) -> List[Candidate]:
        collection = str(collection)
        wanted = {str(k).lower(): v for k, v in filter_properties.items()}

        if collection == BOARDS:
            rows = [
                Candidate(id=str(b["id"]), display_name=b["name"], attributes={"name": b["name"]})
                for b in await self.get_boards()
            ]
        else:
            board_id = parse_columns_collection(collection)
            if board_id is not None:
                rows = [
                    Candidate(id=c["id"], display_name=c["title"], attributes={"name": c["title"], "type": c.get("type")})
                    for c in await self.get_columns(board_id)
                ]
            else:
                rows = await self.get_items(collection)

        matched = [r for r in rows if matches_properties(r.attributes, wanted)]
        return matched[:limit]

    async def find_id_by_name(self, collection: str, name: str) -> Optional[Id]:
        target = str(name).strip().lower()
        if collection == BOARDS:
            for board in await self.get_boards():
                if board["name"].lower() == target:
                    return str(board["id"])
            return None

        board_id = parse_columns_collection(collection)
        if board_id is not None:
            for column in await self.get_columns(board_id):
                if column["title"].lower() == target:
                    return column["id"]
            return None

        for item in await self.get_items(collection):
            if item.display_name.lower() == target:
                return item.id
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def create_item(self, board_id: Id, item_name: str) -> Dict[str, Any]:
        return await self._mutate("create_item", CREATE_ITEM, {"board": str(board_id), "name": item_name})

    async def rename_item(self, board_id: Id, item_id: Id, new_name: str) -> Dict[str, Any]:
        return await self._mutate(
            "change_simple_column_value",
            RENAME_ITEM,
            {"board": str(board_id), "item": str(item_id), "name": new_name},
        )

    async def set_column_value(self, board_id: Id, item_id: Id, column_id: str, value: Any) -> Dict[str, Any]:
        return await self._mutate(
            "change_column_value",
            CHANGE_COLUMN,
            {
                "board": str(board_id),
                "item": str(item_id),
                "column": column_id,
                "value": format_column_value(column_id, value),
            },
        )
