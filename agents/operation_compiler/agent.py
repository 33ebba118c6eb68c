"""
Operation Compiler Agent Module

Turns resolution results into an execution-ready :class:`Batch`.  Order is
kept exactly as the intents were generated; the compiler only checks that
every operation is concrete and safe to hand to a mutation gateway.
"""

import logging
from typing import Any, Dict, List, Optional

from agents.base import Agent
from core.errors import CompilationError
from core.schemas import (
    RECORDS,
    Batch,
    BatchEntry,
    IntentKind,
    ResolvedOperation,
    SkippedOperation,
    SymbolicReference,
)
from services.lookup_fields import LookupFieldTable

logger = logging.getLogger(__name__)

ITEM_KINDS = (IntentKind.UPDATE_ITEM_NAME, IntentKind.UPDATE_COLUMN_VALUE)


def _contains_symbolic(value: Any) -> bool:
    if isinstance(value, SymbolicReference):
        return True
    if isinstance(value, dict):
        return any(_contains_symbolic(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(_contains_symbolic(v) for v in value)
    return False


class OperationCompilerAgent(Agent):
    def __init__(self, lookup_fields: Optional[LookupFieldTable] = None):
        self.lookup_fields = lookup_fields or LookupFieldTable()

    async def run(self, payload: List[BatchEntry], context: Dict[str, Any]):
        return self.compile(payload)

    def check(self, op: ResolvedOperation) -> List[str]:
        """Return the invariant violations of one resolved operation."""
        problems = []
        if op.target_collection_id in (None, ""):
            problems.append("missing target collection")
        if _contains_symbolic(op.payload) or _contains_symbolic(op.filter):
            problems.append("unresolved symbolic reference")

        if op.system == RECORDS:
            table = str(op.target_collection_id)
            leftover = self.lookup_fields.lookup_keys(table, op.payload) + self.lookup_fields.lookup_keys(table, op.filter)
            if leftover:
                problems.append(f"unresolved lookup field(s) {leftover}")

        if op.kind.requires_filter and not op.filter:
            problems.append(f"{op.kind.value} requires a non-empty filter")
        if not op.kind.requires_filter and op.filter:
            problems.append(f"{op.kind.value} must not carry a filter")
        if op.kind in ITEM_KINDS and op.filter and op.filter.get("item_id") in (None, ""):
            problems.append("missing item id")
        if op.kind == IntentKind.UPDATE_COLUMN_VALUE and not op.payload.get("column_id"):
            problems.append("missing column id")
        return problems

    def compile(self, entries: List[BatchEntry]) -> Batch:
        """Validate and wrap ``entries``; raises :class:`CompilationError`."""
        errors = []
        for idx, entry in enumerate(entries):
            if isinstance(entry, SkippedOperation):
                continue
            for problem in self.check(entry):
                errors.append(f"operation {idx + 1} ({entry.describe()}): {problem}")
        if errors:
            raise CompilationError("; ".join(errors))

        batch = Batch(entries=list(entries))
        logger.info(
            f"Compiled batch with {len(batch.operations)} operation(s) "
            f"and {len(batch) - len(batch.operations)} skipped update(s)"
        )
        return batch
