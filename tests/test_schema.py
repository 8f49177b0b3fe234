import pytest

from billing_copilot.ai import schema as s
from billing_copilot.ai.tools.documents import DOCUMENT_LINE
from billing_copilot.errors import ToolValidationError


def test_json_schema_marks_required_and_optional_fields():
    node = s.obj(
        name=s.string("Nom"),
        quantity=s.integer("Quantité"),
        price=s.number(),
        active=s.optional(s.boolean("Actif")),
        limit=s.default(s.integer(), 8),
        kind=s.enum("quote", "invoice"),
        tags=s.array(s.string()),
    )

    schema = s.to_json_schema(node)

    assert schema["type"] == "object"
    assert schema["required"] == ["name", "quantity", "price", "kind", "tags"]
    assert schema["properties"] == {
        "name": {"type": "string", "description": "Nom"},
        "quantity": {"type": "integer", "description": "Quantité"},
        "price": {"type": "number"},
        "active": {"type": "boolean", "description": "Actif"},
        "limit": {"type": "integer"},
        "kind": {"type": "string", "enum": ["quote", "invoice"]},
        "tags": {"type": "array", "items": {"type": "string"}},
    }


def test_json_schema_omits_required_when_everything_is_optional():
    schema = s.to_json_schema(s.obj(note=s.optional(s.string())))

    assert "required" not in schema


def test_unknown_node_kinds_render_as_string():
    schema = s.to_json_schema(s.obj(payload=s.AnyNode(description="Données libres")))

    assert schema["properties"]["payload"] == {"type": "string", "description": "Données libres"}
    assert schema["required"] == ["payload"]


def test_nested_objects_render_recursively():
    schema = s.to_json_schema(s.obj(lines=s.array(DOCUMENT_LINE, min_items=1)))

    items = schema["properties"]["lines"]["items"]
    assert items["type"] == "object"
    assert items["required"] == ["quantity"]
    assert items["properties"]["quantity"] == {"type": "number", "description": "Quantité"}


def test_validation_applies_defaults_strips_and_ignores_extras():
    model = s.compile_model(
        s.obj(
            query=s.string(min_length=1),
            limit=s.default(s.integer(minimum=1), 8),
            note=s.optional(s.string()),
        )
    )

    validated = s.validate_arguments(model, {"query": "  Atlas  ", "unexpected": True})

    assert validated == {"query": "Atlas", "limit": 8, "note": None}


def test_validation_reports_dotted_paths():
    model = s.compile_model(s.obj(lines=s.array(DOCUMENT_LINE, min_items=1)), name="Invoice")

    with pytest.raises(ToolValidationError) as excinfo:
        s.validate_arguments(model, {"lines": [{"description": "Audit", "quantity": 0}]})

    paths = [path for path, _ in excinfo.value.issues]
    assert paths == ["lines.0.quantity"]
    assert str(excinfo.value).startswith("Paramètres invalides: lines.0.quantity")


def test_validation_rejects_missing_arguments():
    model = s.compile_model(s.obj(query=s.string(min_length=1)))

    with pytest.raises(ToolValidationError) as excinfo:
        s.validate_arguments(model, None)

    assert [path for path, _ in excinfo.value.issues] == ["query"]


def test_validation_enforces_constraints():
    model = s.compile_model(
        s.obj(
            email=s.string(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"),
            kind=s.enum("quote", "invoice"),
            amount=s.number(exclusive_minimum=0),
        )
    )

    with pytest.raises(ToolValidationError) as excinfo:
        s.validate_arguments(model, {"email": "pas-une-adresse", "kind": "receipt", "amount": 0})

    assert sorted(path for path, _ in excinfo.value.issues) == ["amount", "email", "kind"]


def test_extend_adds_fields_without_touching_original():
    base = s.obj(name=s.string())

    extended = base.extend(client_id=s.string())

    assert list(extended.fields) == ["name", "client_id"]
    assert list(base.fields) == ["name"]
