"""
Intent Parser Agent Module

This module contains the IntentParserAgent that converts a free-form
instruction into structured intents (insert/update/delete on the relational
store, item operations on the board system).  The model is constrained by the
operations JSON schema and every returned operation is validated before it
leaves this module.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from agents.base import Agent
from core.errors import ExtractionError
from core.schemas import ColumnUpdate, Command, EntityReference, Intent, IntentKind
from services.llm_service import GenerativeModel
from services.validation_engine import ValidationEngine, operations_json_schema

logger = logging.getLogger(__name__)

SYSTEM_RULES = """You convert natural language instructions into a list of structured operations.
Respond with a single JSON object {"operations": [...]} and nothing else.

Relational store operations:
- "action": "insert", "update" or "delete"
- "table": the table name from the schema below
- "payload": the fields to write
- "where": conditions, required for update and delete, never for insert
- "entityToIdentify": for update and delete, optionally the record to act on,
  {"type": "contact"|"activity"|"company", "properties": {...}}, when the
  user describes it by several properties; then give "where": {}
- Never invent numeric foreign keys. For lookups use the "_name" suffix
  (e.g. "company_type_name": "Investor"); the backend resolves the id.

Board operations:
- "action": "create_item", "update_item_name" or "update_column_value"
- "targetBoardForAction": the board where the action happens (name or id)
- "itemName": name of the new item, or the new name for update_item_name
- "entityToIdentify": {"type": "contact"|"activity"|"company"|"item",
  "properties": {...}} describing the item to act on (not for create_item)
- "updates": for update_column_value, a list of
  {"columnId"?, "columnNameToLookup"?, "newValue"}

Generate operations for several tables or boards when the request needs it.
If nothing can be determined, return {"operations": []}.
"""


def _entity(op: Dict[str, Any]) -> Optional[EntityReference]:
    ent = op.get("entityToIdentify")
    if not ent:
        return None
    return EntityReference(type=ent["type"], properties=dict(ent.get("properties") or {}))


class IntentParserAgent(Agent):
    """Instruction text (+ context) -> list of :class:`Intent`."""

    def __init__(
        self,
        model: GenerativeModel,
        validator: Optional[ValidationEngine] = None,
        db_schema: str = "",
        board_context: str = "",
    ):
        self.model = model
        self.validator = validator or ValidationEngine()
        self.db_schema = db_schema
        self.board_context = board_context
        self.output_schema = operations_json_schema()
        logger.info("IntentParserAgent initialized")

    async def run(self, payload: Command, context: Dict[str, Any]):
        return await self.parse(payload)

    def build_prompt(self, command: Command) -> str:
        parts = [SYSTEM_RULES]
        if self.db_schema:
            parts.append(self.db_schema)
        if self.board_context:
            parts.append(f"BOARDS:\n{self.board_context}")
        if command.context_hint:
            parts.append(f"The user is currently looking at: {command.context_hint}")
        parts.append(f'Instruction:\n"{command.instruction_text}"')
        return "\n\n".join(parts)

    async def parse(self, command: Command) -> List[Intent]:
        """Extract intents; raises :class:`ExtractionError` on invalid output.

        Never retried with a different prompt.
        """
        logger.info(f"Parsing instruction: {command.instruction_text}")
        output = await self.model.generate(self.build_prompt(command), self.output_schema)
        raw = json.dumps(output, ensure_ascii=False, default=str)

        report = self.validator.validate(output, "operations")
        if report.ok:
            for idx, op in enumerate(output["operations"]):
                report.extend(self.validator.validate_operation(op, f"operations[{idx}]"))
        if not report.ok:
            raise ExtractionError(
                "Model output does not match the operations schema",
                raw_output=raw,
                violations=report.violations(),
            )

        intents = [self._to_intent(op) for op in output["operations"]]
        logger.info(f"Extracted {len(intents)} intent(s): {[i.kind.value for i in intents]}")
        return intents

    # -------- conversion helpers --------
    @staticmethod
    def _to_intent(op: Dict[str, Any]) -> Intent:
        kind = IntentKind(op["action"])
        if kind.system == "records":
            return Intent(
                kind=kind,
                target_collection=str(op["table"]),
                payload=dict(op.get("payload") or {}),
                filter=dict(op["where"]) if op.get("where") is not None else None,
                entity=_entity(op),
                raw_model_output=op,
            )

        payload: Dict[str, Any] = {}
        if op.get("itemName"):
            payload["name"] = op["itemName"]
        updates = [
            ColumnUpdate(
                column_id=u.get("columnId"),
                column_name=u.get("columnNameToLookup"),
                new_value=u.get("newValue"),
            )
            for u in op.get("updates") or []
        ]
        return Intent(
            kind=kind,
            target_collection=str(op["targetBoardForAction"]),
            payload=payload,
            entity=_entity(op),
            updates=updates,
            raw_model_output=op,
        )
