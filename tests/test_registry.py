import pytest

from billing_copilot.ai.tools.registry import ToolRegistry
from billing_copilot.errors import DuplicateToolError, UnknownToolError
from tests.fakes import RecordingTool

BUILT_IN_TOOLS = [
    "search_clients",
    "create_client",
    "update_client",
    "search_products",
    "create_product",
    "create_quote",
    "create_invoice",
    "convert_currency",
]


def test_register_rejects_duplicate_names():
    registry = ToolRegistry()
    registry.register(RecordingTool())

    with pytest.raises(DuplicateToolError):
        registry.register(RecordingTool())

    assert len(registry) == 1


def test_lookup():
    registry = ToolRegistry()
    tool = RecordingTool()
    registry.register(tool)

    assert registry.get("record_note") is tool
    assert registry.get("missing") is None
    assert "record_note" in registry
    with pytest.raises(UnknownToolError) as excinfo:
        registry.require("missing")
    assert excinfo.value.tool_name == "missing"


def test_serialize_all_uses_provider_neutral_shape():
    registry = ToolRegistry()
    registry.register(RecordingTool())

    (definition,) = registry.serialize_all()

    assert definition["name"] == "record_note"
    assert definition["description"] == "Outil de test record_note"
    assert definition["parameters"]["required"] == ["note"]
    assert definition["parameters"]["properties"]["amount"] == {"type": "number", "description": "Montant"}


def test_built_in_tools(crm):
    registry = ToolRegistry()
    registry.discover_and_register(crm)

    assert [tool.name for tool in registry.all_tools()] == BUILT_IN_TOOLS
    confirmed = {tool.name for tool in registry.all_tools() if tool.requires_confirmation}
    assert confirmed == {"create_client", "update_client", "create_product", "create_quote", "create_invoice"}
    terminal = {tool.name for tool in registry.all_tools() if tool.completes_workflow}
    assert terminal == {"create_quote", "create_invoice"}
    fresh_reads = {tool.name for tool in registry.all_tools() if not tool.deduplicate}
    assert fresh_reads == {"search_clients", "search_products", "convert_currency"}
    for definition in registry.serialize_all():
        assert definition["parameters"]["type"] == "object"
