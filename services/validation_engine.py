from __future__ import annotations

"""Central schema validation used across agents.

Every structured model output (extracted operations, disambiguation
selections) is checked against one declarative schema table, ``SCHEMAS``,
keyed by intent kind.  Agents should import and use this service instead of
checking fields ad hoc.  The same table is rendered as a JSON schema document
and sent to the model as its output contract.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
import logging

logger = logging.getLogger(__name__)

# ========== Public Data Models ==========

@dataclass
class ValidationIssue:
    severity: str           # "ERROR" | "WARN"
    code: str               # e.g., "MISSING_FIELD", "BAD_TYPE", ...
    message: str
    path: Optional[str] = None  # e.g., "operations[0].where"

@dataclass
class ValidationReport:
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors()

    def add(self, severity: str, code: str, message: str, path: Optional[str] = None):
        self.issues.append(ValidationIssue(severity, code, message, path))

    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "ERROR"]

    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "WARN"]

    def violations(self) -> List[str]:
        return [f"{i.path}: {i.message}" if i.path else i.message for i in self.errors()]

    def extend(self, other: "ValidationReport") -> None:
        self.issues.extend(other.issues)


@dataclass
class FieldSpec:
    """Declarative constraint for one field.

    ``type`` is a primitive name or a tuple of names: string, integer,
    number, boolean, object, array, scalar (string/number/boolean).
    """
    type: Union[str, Tuple[str, ...]]
    required: bool = False
    nullable: bool = False
    forbidden: bool = False
    enum: Optional[List[Any]] = None
    fields: Optional[Dict[str, "FieldSpec"]] = None   # nested object schema
    items: Optional["FieldSpec"] = None               # array element schema
    min_items: int = 0
    description: Optional[str] = None


Schema = Dict[str, FieldSpec]

RECORD_ACTIONS = ["insert", "update", "delete"]
BOARD_ACTIONS = ["create_item", "update_item_name", "update_column_value"]
ENTITY_TYPES = ["contact", "activity", "company", "item"]

_TABLE = FieldSpec("string", required=True, description="Target table name")
_BOARD = FieldSpec(("string", "integer"), required=True, description="Board name or numeric board id")
_ENTITY = FieldSpec(
    "object",
    description="Item to act on, described by its properties",
    fields={
        "type": FieldSpec("string", required=True, enum=ENTITY_TYPES),
        "properties": FieldSpec("object", required=True),
    },
)
_UPDATES = FieldSpec(
    "array",
    min_items=1,
    items=FieldSpec(
        "object",
        fields={
            "columnId": FieldSpec("string"),
            "columnNameToLookup": FieldSpec("string"),
            "newValue": FieldSpec("scalar", required=True),
        },
    ),
)

SCHEMAS: Dict[str, Schema] = {
    "operations": {
        "operations": FieldSpec("array", required=True, items=FieldSpec("object")),
    },
    "operation": {
        "action": FieldSpec("string", required=True, enum=RECORD_ACTIONS + BOARD_ACTIONS),
    },
    "insert": {
        "action": FieldSpec("string", required=True, enum=["insert"]),
        "table": _TABLE,
        "payload": FieldSpec("object", required=True),
        "where": FieldSpec("object", forbidden=True),
        "entityToIdentify": FieldSpec("object", forbidden=True),
    },
    "update": {
        "action": FieldSpec("string", required=True, enum=["update"]),
        "table": _TABLE,
        "payload": FieldSpec("object", required=True),
        "where": FieldSpec("object", required=True),
        "entityToIdentify": _ENTITY,
    },
    "delete": {
        "action": FieldSpec("string", required=True, enum=["delete"]),
        "table": _TABLE,
        "payload": FieldSpec("object"),
        "where": FieldSpec("object", required=True),
        "entityToIdentify": _ENTITY,
    },
    "create_item": {
        "action": FieldSpec("string", required=True, enum=["create_item"]),
        "targetBoardForAction": _BOARD,
        "itemName": FieldSpec("string", required=True),
        "entityToIdentify": FieldSpec("object", forbidden=True),
    },
    "update_item_name": {
        "action": FieldSpec("string", required=True, enum=["update_item_name"]),
        "targetBoardForAction": _BOARD,
        "itemName": FieldSpec("string", required=True),
        "entityToIdentify": replace(_ENTITY, required=True),
    },
    "update_column_value": {
        "action": FieldSpec("string", required=True, enum=["update_column_value"]),
        "targetBoardForAction": _BOARD,
        "entityToIdentify": replace(_ENTITY, required=True),
        "updates": replace(_UPDATES, required=True),
    },
    "disambiguation": {
        "selectedId": FieldSpec(("string", "integer"), required=True, nullable=True),
    },
}

# ========== Validation ==========

def _type_ok(value: Any, type_name: str) -> bool:
    if type_name == "string":
        return isinstance(value, str)
    if type_name == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if type_name == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if type_name == "boolean":
        return isinstance(value, bool)
    if type_name == "object":
        return isinstance(value, Mapping)
    if type_name == "array":
        return isinstance(value, list)
    if type_name == "scalar":
        return value is None or isinstance(value, (str, int, float, bool))
    return False


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _check_value(value: Any, spec: FieldSpec, path: str, report: ValidationReport) -> None:
    if value is None:
        if not spec.nullable and spec.type != "scalar":
            report.add("ERROR", "NULL_VALUE", "must not be null", path)
        return

    types = spec.type if isinstance(spec.type, tuple) else (spec.type,)
    if not any(_type_ok(value, t) for t in types):
        report.add("ERROR", "BAD_TYPE", f"expected {' or '.join(types)}, got {type(value).__name__}", path)
        return

    if spec.enum is not None and value not in spec.enum:
        report.add("ERROR", "BAD_ENUM", f"'{value}' is not one of {spec.enum}", path)

    if spec.fields is not None and isinstance(value, Mapping):
        _check_mapping(value, spec.fields, path, report)

    if isinstance(value, list):
        if len(value) < spec.min_items:
            report.add("ERROR", "TOO_FEW_ITEMS", f"needs at least {spec.min_items} item(s)", path)
        if spec.items is not None:
            for idx, item in enumerate(value):
                _check_value(item, spec.items, f"{path}[{idx}]", report)


def _check_mapping(payload: Mapping, schema: Schema, path: str, report: ValidationReport) -> None:
    for name, spec in schema.items():
        fpath = _join(path, name)
        present = name in payload and payload[name] not in (None, {}, [])
        if spec.forbidden:
            if present:
                report.add("ERROR", "FORBIDDEN_FIELD", "field is not allowed here", fpath)
            continue
        if name not in payload:
            if spec.required:
                report.add("ERROR", "MISSING_FIELD", "required field is missing", fpath)
            continue
        _check_value(payload[name], spec, fpath, report)

    for name in payload:
        if name not in schema:
            report.add("WARN", "UNKNOWN_FIELD", "field is not declared in the schema", _join(path, str(name)))


def validate(payload: Any, schema: Union[str, Schema], path: str = "") -> ValidationReport:
    """Validate ``payload`` against ``schema`` (a schema or a ``SCHEMAS`` key).

    Never raises for malformed input; callers decide whether violations are
    fatal.
    """
    report = ValidationReport()
    if isinstance(schema, str):
        if schema not in SCHEMAS:
            report.add("ERROR", "UNKNOWN_SCHEMA", f"no schema named '{schema}'", path or None)
            return report
        schema = SCHEMAS[schema]
    if not isinstance(payload, Mapping):
        report.add("ERROR", "BAD_TYPE", f"expected object, got {type(payload).__name__}", path or None)
        return report
    _check_mapping(payload, schema, path, report)
    return report


# ========== JSON schema rendering ==========

_JSON_TYPES = {
    "string": "string", "integer": "integer", "number": "number",
    "boolean": "boolean", "object": "object", "array": "array",
}


def _field_to_json(spec: FieldSpec) -> Dict[str, Any]:
    types = spec.type if isinstance(spec.type, tuple) else (spec.type,)
    if "scalar" in types:
        out: Dict[str, Any] = {"type": ["string", "number", "boolean", "null"]}
    else:
        names = [_JSON_TYPES[t] for t in types]
        if spec.nullable:
            names.append("null")
        out = {"type": names[0] if len(names) == 1 else names}
    if spec.enum is not None:
        out["enum"] = list(spec.enum)
    if spec.description:
        out["description"] = spec.description
    if spec.fields is not None:
        out.update(to_json_schema(spec.fields))
    if spec.items is not None:
        out["items"] = _field_to_json(spec.items)
    if spec.min_items:
        out["minItems"] = spec.min_items
    return out


def to_json_schema(schema: Union[str, Schema]) -> Dict[str, Any]:
    """Render a declarative schema as a JSON schema object."""
    if isinstance(schema, str):
        schema = SCHEMAS[schema]
    properties = {name: _field_to_json(spec) for name, spec in schema.items() if not spec.forbidden}
    required = [name for name, spec in schema.items() if spec.required]
    return {"type": "object", "properties": properties, "required": required}


def operations_json_schema(actions: Optional[List[str]] = None) -> Dict[str, Any]:
    """JSON schema for the ``{"operations": [...]}`` envelope."""
    actions = actions or RECORD_ACTIONS + BOARD_ACTIONS
    return {
        "type": "object",
        "properties": {
            "operations": {
                "type": "array",
                "items": {"oneOf": [to_json_schema(a) for a in actions]},
            }
        },
        "required": ["operations"],
    }


class ValidationEngine:
    """Thin stateful wrapper so agents can share one configured validator."""

    def __init__(self, schemas: Optional[Dict[str, Schema]] = None):
        self.schemas = dict(SCHEMAS)
        if schemas:
            self.schemas.update(schemas)

    def validate(self, payload: Any, schema_name: str, path: str = "") -> ValidationReport:
        if schema_name not in self.schemas:
            report = ValidationReport()
            report.add("ERROR", "UNKNOWN_SCHEMA", f"no schema named '{schema_name}'", path or None)
            return report
        return validate(payload, self.schemas[schema_name], path)

    def validate_operation(self, op: Any, path: str = "") -> ValidationReport:
        """Check the ``action`` discriminator, then the kind-specific schema."""
        report = self.validate(op, "operation", path)
        if not report.ok:
            return report
        kind_report = self.validate(op, op["action"], path)
        for issue in kind_report.warnings():
            logger.debug("Schema warning at %s: %s", issue.path, issue.message)
        return kind_report

    def json_schema(self, schema_name: str) -> Dict[str, Any]:
        return to_json_schema(self.schemas[schema_name])
