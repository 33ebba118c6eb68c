"""Pipeline data models.

A :class:`Command` enters the pipeline, the intent parser turns it into
:class:`Intent` objects, the reference resolver replaces every symbolic
reference with concrete ids (:class:`ResolvedOperation`), the compiler
orders them into a :class:`Batch` and the executor reports an
:class:`ExecutionResult`.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, computed_field

MAX_CANDIDATES = 50

RECORDS = "records"
BOARD = "board"


class IntentKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    CREATE_ITEM = "create_item"
    UPDATE_ITEM_NAME = "update_item_name"
    UPDATE_COLUMN_VALUE = "update_column_value"

    @property
    def system(self) -> str:
        if self in (IntentKind.INSERT, IntentKind.UPDATE, IntentKind.DELETE):
            return RECORDS
        return BOARD

    @property
    def requires_filter(self) -> bool:
        return self not in (IntentKind.INSERT, IntentKind.CREATE_ITEM)


class Command(BaseModel):
    """One user submission. Consumed entirely within one pipeline run."""
    instruction_text: str
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    context_hint: Optional[str] = None


class EntityReference(BaseModel):
    """An item described by properties rather than by id, e.g. a contact
    named George at Alphabak."""
    type: str
    properties: Dict[str, Any] = {}


class ColumnUpdate(BaseModel):
    column_id: Optional[str] = None
    column_name: Optional[str] = None
    new_value: Any = None


class Intent(BaseModel):
    """Structured form of one operation extracted from an instruction.

    ``filter`` is mandatory for update/delete kinds and forbidden for
    insert/create kinds. ``entity`` and ``updates`` are only used by board
    operations.
    """
    kind: IntentKind
    target_collection: str
    payload: Dict[str, Any] = {}
    filter: Optional[Dict[str, Any]] = None
    entity: Optional[EntityReference] = None
    updates: List[ColumnUpdate] = []
    raw_model_output: Optional[Dict[str, Any]] = None

    @property
    def system(self) -> str:
        return self.kind.system


class ReferenceRole(str, Enum):
    PRIMARY = "primary"        # which table/board to act on
    PAYLOAD = "payload"        # foreign-key label inside a record payload or filter
    ENTITY = "entity"          # item identified by several properties
    SECONDARY = "secondary"    # one column of a multi-column update


class SymbolicReference(BaseModel):
    """A human-readable name standing in for a concrete identifier."""
    field: str
    value: Any
    collection: str
    role: ReferenceRole

    @property
    def is_numeric(self) -> bool:
        return is_numeric_id(self.value)


class Candidate(BaseModel):
    """Snapshot of one backing-system row/item considered for a match."""
    id: Union[int, str]
    display_name: str = ""
    attributes: Dict[str, Any] = {}


class CandidateSet(BaseModel):
    """Several rows matched an entity reference; one must be selected."""
    reference: EntityReference
    collection: Union[int, str]
    candidates: List[Candidate] = []

    def describe(self) -> str:
        props = ", ".join(f"{k}={v}" for k, v in self.reference.properties.items())
        return f"{self.reference.type} ({props})"


class ResolvedOperation(BaseModel):
    kind: IntentKind
    target_collection_id: Union[int, str]
    payload: Dict[str, Any] = {}
    filter: Optional[Dict[str, Any]] = None

    @property
    def system(self) -> str:
        return self.kind.system

    def describe(self) -> str:
        text = f"{self.kind.value} on {self.target_collection_id}"
        if self.filter:
            text += f" where {self.filter}"
        return text


class SkippedOperation(BaseModel):
    """An update dropped during resolution (e.g. an unknown column name)."""
    kind: IntentKind
    target_collection_id: Union[int, str]
    reason: str

    def describe(self) -> str:
        return f"{self.kind.value} on {self.target_collection_id} (skipped: {self.reason})"


BatchEntry = Union[ResolvedOperation, SkippedOperation]


class Batch(BaseModel):
    """Execution-ready operations in intent generation order."""
    entries: List[BatchEntry] = []

    @property
    def operations(self) -> List[ResolvedOperation]:
        return [e for e in self.entries if isinstance(e, ResolvedOperation)]

    @property
    def target_collections(self) -> set:
        return {(e.system, str(e.target_collection_id)) for e in self.operations}

    def __len__(self) -> int:
        return len(self.entries)


class OperationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class OperationOutcome(BaseModel):
    operation: BatchEntry
    status: OperationStatus
    error: Optional[str] = None
    reason: Optional[str] = None
    output: Any = None


class ExecutionResult(BaseModel):
    per_operation: List[OperationOutcome] = []
    no_operations: bool = False

    def _count(self, status: OperationStatus) -> int:
        return sum(1 for o in self.per_operation if o.status == status)

    @computed_field
    @property
    def succeeded_count(self) -> int:
        return self._count(OperationStatus.SUCCEEDED)

    @computed_field
    @property
    def failed_count(self) -> int:
        return self._count(OperationStatus.FAILED)

    @computed_field
    @property
    def skipped_count(self) -> int:
        return self._count(OperationStatus.SKIPPED)

    @property
    def is_partial(self) -> bool:
        return self.succeeded_count > 0 and (self.failed_count + self.skipped_count) > 0

    def summary(self) -> str:
        if self.no_operations:
            return "No operations were generated from the instruction"
        return (
            f"{self.succeeded_count} succeeded, {self.failed_count} failed, "
            f"{self.skipped_count} skipped"
        )


def is_numeric_id(value: Any) -> bool:
    """True when ``value`` is, or parses as, a pure non-negative integer."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 0
    if isinstance(value, str):
        return value.strip().isdigit()
    return False


def as_numeric_id(value: Any) -> Union[int, str]:
    """Return the fast-path id for a numeric reference.

    Short numbers become ``int`` (relational primary keys); board ids keep
    their string form since they can exceed what the board API treats as an
    int.
    """
    text = str(value).strip()
    return int(text) if len(text) < 10 else text


def normalize_candidates(candidates: Iterable[Candidate], limit: int = MAX_CANDIDATES) -> List[Candidate]:
    """Deduplicate by id and cap at ``limit`` keeping backing-system order."""
    seen = set()
    out: List[Candidate] = []
    for cand in candidates:
        key = str(cand.id)
        if key in seen:
            continue
        seen.add(key)
        out.append(cand)
        if len(out) >= limit:
            break
    return out
