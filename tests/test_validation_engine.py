from services.validation_engine import (
    ValidationEngine,
    operations_json_schema,
    to_json_schema,
    validate,
)


def test_valid_insert_has_no_violations():
    report = validate(
        {"action": "insert", "table": "companies", "payload": {"name": "TechCorp"}}, "insert"
    )
    assert report.ok
    assert report.violations() == []


def test_insert_with_where_is_forbidden():
    report = validate(
        {"action": "insert", "table": "companies", "payload": {"name": "X"}, "where": {"id": 1}}, "insert"
    )
    assert not report.ok
    assert any("where" in v for v in report.violations())


def test_empty_where_on_insert_is_tolerated():
    report = validate({"action": "insert", "table": "companies", "payload": {}, "where": {}}, "insert")
    assert report.ok


def test_update_requires_where():
    report = validate({"action": "update", "table": "contacts", "payload": {"title": "CTO"}}, "update")
    assert not report.ok
    assert report.errors()[0].code == "MISSING_FIELD"
    assert report.errors()[0].path == "where"


def test_bad_enum_and_type_are_reported():
    engine = ValidationEngine()
    report = engine.validate({"action": "upsert"}, "operation")
    assert [i.code for i in report.errors()] == ["BAD_ENUM"]

    report = engine.validate({"action": "insert", "table": 5, "payload": {}}, "insert")
    assert [i.code for i in report.errors()] == ["BAD_TYPE"]


def test_malformed_input_never_raises():
    assert not validate(None, "operations").ok
    assert not validate(["not", "an", "object"], "operations").ok
    assert not validate({}, "no-such-schema").ok


def test_unknown_fields_are_warnings_only():
    report = validate({"selectedId": "1", "confidence": 0.9}, "disambiguation")
    assert report.ok
    assert [w.code for w in report.warnings()] == ["UNKNOWN_FIELD"]


def test_disambiguation_accepts_null_and_integers():
    assert validate({"selectedId": None}, "disambiguation").ok
    assert validate({"selectedId": 12}, "disambiguation").ok
    assert not validate({}, "disambiguation").ok
    assert not validate({"selectedId": ["1"]}, "disambiguation").ok


def test_update_column_value_needs_entity_and_updates():
    engine = ValidationEngine()
    op = {"action": "update_column_value", "targetBoardForAction": "Contacts"}
    codes = {i.path for i in engine.validate_operation(op).errors()}
    assert codes == {"entityToIdentify", "updates"}

    op.update({
        "entityToIdentify": {"type": "contact", "properties": {"name": "George"}},
        "updates": [{"columnNameToLookup": "Status", "newValue": "Done"}],
    })
    assert engine.validate_operation(op).ok


def test_nested_paths_are_reported():
    engine = ValidationEngine()
    op = {
        "action": "update_column_value",
        "targetBoardForAction": "Contacts",
        "entityToIdentify": {"type": "robot", "properties": {}},
        "updates": [{"columnNameToLookup": "Status"}],
    }
    paths = {i.path for i in engine.validate_operation(op, "operations[0]").errors()}
    assert "operations[0].entityToIdentify.type" in paths
    assert "operations[0].updates[0].newValue" in paths


def test_json_schema_rendering():
    schema = to_json_schema("update")
    assert schema["required"] == ["action", "table", "payload", "where"]
    assert "where" not in to_json_schema("insert")["properties"]

    envelope = operations_json_schema(["insert", "create_item"])
    variants = envelope["properties"]["operations"]["items"]["oneOf"]
    assert [v["properties"]["action"]["enum"] for v in variants] == [["insert"], ["create_item"]]
    assert ValidationEngine().json_schema("disambiguation")["properties"]["selectedId"]["type"] == [
        "string", "integer", "null"
    ]
