"""Gateway contracts consumed by the command pipeline.

Each backing system exposes a lookup side (used while resolving names) and a
mutation side (used by the executor).  The pipeline depends only on these
contracts, never on a concrete wire format.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Union

from core.schemas import Candidate

Id = Union[int, str]

BOARDS = "boards"


def columns_collection(board_id: Id) -> str:
    """Collection name under which a board's columns are looked up."""
    return f"{BOARDS}/{board_id}/columns"


def parse_columns_collection(collection: str) -> Optional[str]:
    """Return the board id of a ``boards/<id>/columns`` collection, else None."""
    parts = collection.split("/")
    if len(parts) == 3 and parts[0] == BOARDS and parts[2] == "columns":
        return parts[1]
    return None


def matches_properties(attributes: Mapping[str, Any], filter_properties: Mapping[str, Any]) -> bool:
    """True when every non-empty property is a case-insensitive substring of its attribute."""
    checks = []
    for key, wanted in filter_properties.items():
        if wanted is None or str(wanted).strip() == "":
            continue
        actual = attributes.get(key)
        if actual is None:
            checks.append(False)
            continue
        checks.append(str(wanted).strip().lower() in str(actual).lower())
    if not checks:
        return False
    return all(checks)


class LookupGateway(ABC):
    """Read-only lookups against one backing system."""

    service = "lookup"

    @abstractmethod
    async def list_candidates(
        self, collection: Id, filter_properties: Mapping[str, Any], limit: int = 50
    ) -> List[Candidate]:
        """Return at most ``limit`` rows matching ``filter_properties``.

        Only rows matching every non-empty property are returned; a row
        matching some of them is not a candidate.  Never raises for "not
        found".
        """
        raise NotImplementedError

    @abstractmethod
    async def find_id_by_name(self, collection: str, name: str) -> Optional[Id]:
        """Exact case-insensitive name match; ``None`` when absent."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class RecordMutationGateway(ABC):
    """Writes against a relational store."""

    service = "records"

    @abstractmethod
    async def insert(self, collection: str, payload: Dict[str, Any]) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def update(self, collection: str, payload: Dict[str, Any], filter: Dict[str, Any]) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, collection: str, filter: Dict[str, Any]) -> Any:
        raise NotImplementedError


class BoardMutationGateway(ABC):
    """Writes against a work-management board system."""

    service = "board"

    @abstractmethod
    async def create_item(self, board_id: Id, item_name: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def rename_item(self, board_id: Id, item_id: Id, new_name: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def set_column_value(self, board_id: Id, item_id: Id, column_id: str, value: Any) -> Any:
        raise NotImplementedError
