"""Foreign-key label fields of the relational store.

The model never sees numeric foreign keys.  It writes a ``<x>_name`` field
holding a label (``"company_type_name": "Investor"``) and the resolver swaps
it for the id column (``company_type_id``) after a lookup in the label's
table.  Explicitly declared fields win; otherwise the ``<x>_name`` ->
``<x>s`` / ``<x>_id`` convention applies when the declared tables agree.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional


@dataclass(frozen=True)
class LookupField:
    field: str
    collection: str
    id_field: str


class LookupFieldTable:
    def __init__(
        self,
        fields: Optional[Mapping[str, Mapping[str, str]]] = None,
        tables: Optional[Mapping[str, List[str]]] = None,
    ):
        self.fields: Dict[str, LookupField] = {
            name: LookupField(name, spec["collection"], spec["id_field"])
            for name, spec in (fields or {}).items()
        }
        self.tables: Dict[str, List[str]] = {t: list(cols or []) for t, cols in (tables or {}).items()}

    def knows_table(self, table: str) -> bool:
        """True when ``table`` is declared, or when no tables are declared at all."""
        return not self.tables or table in self.tables

    def match(self, table: str, field: str) -> Optional[LookupField]:
        """Return the lookup behind ``field`` of ``table``, or None for a plain column."""
        columns = self.tables.get(table) or []
        if field in columns:
            return None
        if field in self.fields:
            return self.fields[field]
        if not field.endswith("_name") or field == "_name":
            return None
        base = field[: -len("_name")]
        id_field = f"{base}_id"
        collection = f"{base}s"
        if id_field in columns or collection in self.tables:
            return LookupField(field, collection, id_field)
        return None

    def lookup_keys(self, table: str, data: Optional[Mapping[str, Any]]) -> List[str]:
        return [k for k in (data or {}) if self.match(table, k) is not None]

    def describe(self) -> str:
        """Markdown description of the declared tables for the extraction prompt."""
        lines = ["DATABASE SCHEMA:"]
        for table, columns in self.tables.items():
            lines.append(f"\n### {table}")
            lines.extend(f"- {col}" for col in columns)
        if self.fields:
            lines.append("\n## Lookup fields")
            for lf in self.fields.values():
                lines.append(f"- {lf.field}: name in {lf.collection}, stored as {lf.id_field}")
        lines.append(
            '\nUse a "_name" suffix for lookups (e.g. "company_type_name": "Investor" '
            "is resolved to company_type_id)."
        )
        return "\n".join(lines)
