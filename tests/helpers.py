"""Test doubles: a deterministic model and an in-memory board system."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from core.errors import MutationError
from core.schemas import Candidate
from services.gateways.base import (
    BOARDS,
    BoardMutationGateway,
    LookupGateway,
    matches_properties,
    parse_columns_collection,
)
from services.llm_service import GenerativeModel


class StubModel(GenerativeModel):
    """Returns queued replies in order and records every prompt."""

    def __init__(self, *replies: Dict[str, Any]):
        self.replies = list(replies)
        self.prompts: List[str] = []
        self.schemas: List[Dict[str, Any]] = []

    async def generate(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        self.prompts.append(prompt)
        self.schemas.append(schema)
        if not self.replies:
            raise AssertionError("StubModel called more often than expected")
        return self.replies.pop(0)

    @property
    def calls(self) -> int:
        return len(self.prompts)


class FakeBoards(LookupGateway, BoardMutationGateway):
    """In-memory board system counting every call."""

    service = "fake-board"

    def __init__(self, boards: Dict[str, Dict[str, Any]]):
        # {board_id: {"name": ..., "columns": {col_id: title}, "items": [{"id", "name", **values}]}}
        self.boards = boards
        self.lookup_calls: List[tuple] = []
        self.mutations: List[tuple] = []
        self.fail_columns: set = set()

    async def list_candidates(self, collection, filter_properties, limit=50):
        self.lookup_calls.append(("list", str(collection), dict(filter_properties)))
        board = self.boards[str(collection)]
        rows = [
            Candidate(id=item["id"], display_name=item["name"], attributes={k.lower(): v for k, v in item.items()})
            for item in board["items"]
        ]
        wanted = {k.lower(): v for k, v in filter_properties.items()}
        matched = [r for r in rows if matches_properties(r.attributes, wanted)]
        return matched[:limit]

    async def find_id_by_name(self, collection, name) -> Optional[str]:
        self.lookup_calls.append(("find", str(collection), name))
        if collection == BOARDS:
            for board_id, board in self.boards.items():
                if board["name"].lower() == str(name).lower():
                    return board_id
            return None
        board_id = parse_columns_collection(collection)
        for col_id, title in self.boards[board_id]["columns"].items():
            if title.lower() == str(name).lower():
                return col_id
        return None

    async def create_item(self, board_id, item_name):
        self.mutations.append(("create_item", str(board_id), item_name))
        return {"id": "900", "name": item_name}

    async def rename_item(self, board_id, item_id, new_name):
        self.mutations.append(("rename_item", str(board_id), str(item_id), new_name))
        return {"id": str(item_id), "name": new_name}

    async def set_column_value(self, board_id, item_id, column_id, value):
        self.mutations.append(("set_column_value", str(board_id), str(item_id), column_id, value))
        if column_id in self.fail_columns:
            raise MutationError(self.service, "rejected", f"column {column_id} rejected the value")
        return {"id": str(item_id)}


def sample_boards() -> Dict[str, Dict[str, Any]]:
    return {
        "1001": {
            "name": "Contacts",
            "columns": {"company": "Company", "email": "Email", "status": "Status", "phone": "Phone"},
            "items": [
                {"id": "11", "name": "George", "Company": "Alphabak", "Email": "george@alphabak.com"},
                {"id": "12", "name": "George", "Company": "Globex", "Email": "george@globex.com"},
                {"id": "13", "name": "Jane", "Company": "Acme", "Email": "jane@acme.com"},
            ],
        },
        "2002": {
            "name": "Deals",
            "columns": {"status": "Status", "text0": "Owner"},
            "items": [{"id": "21", "name": "Website Redesign"}],
        },
    }


BOARD_PROFILES = {
    "board": {
        "contact": {"collection": "Contacts", "properties": {"name": "name", "company": "Company", "email": "Email"}},
        "item": {"properties": {"name": "name"}},
    }
}


class FakeRecords(LookupGateway):
    """Relational lookups answered from dictionaries, counting calls."""

    service = "fake-records"

    def __init__(self, names: Optional[Dict[tuple, Any]] = None, rows: Optional[Dict[str, List[Candidate]]] = None):
        # names: {(collection, lowercase name): id}
        self.names = names or {}
        self.rows = rows or {}
        self.calls: List[tuple] = []

    async def find_id_by_name(self, collection, name):
        self.calls.append(("find", collection, name))
        return self.names.get((collection, str(name).lower()))

    async def list_candidates(self, collection, filter_properties, limit=50):
        self.calls.append(("list", collection, dict(filter_properties)))
        return list(self.rows.get(collection, []))


CRM_TABLES = {
    "companies": ["id", "name", "country", "company_type_id"],
    "company_types": ["id", "name"],
    "contacts": ["id", "name", "email", "title", "company_id"],
}
