import pytest

from agents.operation_compiler.agent import OperationCompilerAgent
from core.errors import CompilationError
from core.schemas import (
    IntentKind,
    ReferenceRole,
    ResolvedOperation,
    SkippedOperation,
    SymbolicReference,
)
from helpers import CRM_TABLES
from services.lookup_fields import LookupFieldTable


def _compiler():
    return OperationCompilerAgent(LookupFieldTable(tables=CRM_TABLES))


def test_order_is_preserved_including_skips():
    entries = [
        ResolvedOperation(kind=IntentKind.INSERT, target_collection_id="companies", payload={"name": "A"}),
        SkippedOperation(kind=IntentKind.UPDATE_COLUMN_VALUE, target_collection_id="1001", reason="no column"),
        ResolvedOperation(kind=IntentKind.DELETE, target_collection_id="contacts", filter={"id": 2}),
    ]
    batch = _compiler().compile(entries)
    assert batch.entries == entries
    assert len(batch) == 3
    assert len(batch.operations) == 2
    assert batch.target_collections == {("records", "companies"), ("records", "contacts")}


def test_leftover_lookup_field_is_rejected():
    op = ResolvedOperation(
        kind=IntentKind.INSERT, target_collection_id="companies", payload={"company_type_name": "Software"}
    )
    with pytest.raises(CompilationError) as exc:
        _compiler().compile([op])
    assert "company_type_name" in str(exc.value)


def test_symbolic_reference_instance_is_rejected():
    ref = SymbolicReference(field="company_id", value="Acme", collection="companies", role=ReferenceRole.PAYLOAD)
    op = ResolvedOperation(kind=IntentKind.UPDATE, target_collection_id="contacts",
                           payload={"company_id": ref}, filter={"id": 1})
    with pytest.raises(CompilationError):
        _compiler().compile([op])


@pytest.mark.parametrize("kind", [IntentKind.UPDATE, IntentKind.DELETE])
def test_update_and_delete_need_a_filter(kind):
    for flt in (None, {}):
        op = ResolvedOperation(kind=kind, target_collection_id="contacts", payload={"title": "x"}, filter=flt)
        with pytest.raises(CompilationError):
            _compiler().compile([op])


def test_insert_and_create_must_not_carry_a_filter():
    with pytest.raises(CompilationError):
        _compiler().compile([ResolvedOperation(
            kind=IntentKind.INSERT, target_collection_id="companies", payload={"name": "A"}, filter={"id": 1}
        )])
    with pytest.raises(CompilationError):
        _compiler().compile([ResolvedOperation(
            kind=IntentKind.CREATE_ITEM, target_collection_id="1001", payload={"name": "A"}, filter={"item_id": "1"}
        )])


def test_column_update_needs_item_and_column():
    op = ResolvedOperation(kind=IntentKind.UPDATE_COLUMN_VALUE, target_collection_id="1001",
                           payload={"value": "Done"}, filter={"item_id": "11"})
    with pytest.raises(CompilationError) as exc:
        _compiler().compile([op])
    assert "missing column id" in str(exc.value)
