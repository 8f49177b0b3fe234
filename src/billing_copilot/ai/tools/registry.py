"""Tool registry for discovering and managing available tools."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from billing_copilot.ai.tools.base import Tool
from billing_copilot.errors import DuplicateToolError, UnknownToolError
from billing_copilot.log import get_logger

if TYPE_CHECKING:
    from billing_copilot.services.crm import CrmService

logger = get_logger(__name__)


class ToolRegistry:
    """Closed set of tools, resolved once at startup."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise DuplicateToolError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name, confirmation=tool.requires_confirmation)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def serialize_all(self) -> list[dict[str, Any]]:
        return [tool.to_api_dict() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def discover_and_register(self, crm: CrmService, currency_rates: dict[str, float] | None = None) -> None:
        """Import and register all built-in tools."""
        from billing_copilot.ai.tools.clients import CreateClientTool, SearchClientsTool, UpdateClientTool
        from billing_copilot.ai.tools.documents import CreateInvoiceTool, CreateQuoteTool
        from billing_copilot.ai.tools.products import CreateProductTool, SearchProductsTool
        from billing_copilot.ai.tools.utility import ConvertCurrencyTool

        self.register(SearchClientsTool(crm))
        self.register(CreateClientTool(crm))
        self.register(UpdateClientTool(crm))
        self.register(SearchProductsTool(crm))
        self.register(CreateProductTool(crm))
        self.register(CreateQuoteTool(crm))
        self.register(CreateInvoiceTool(crm))
        self.register(ConvertCurrencyTool(currency_rates))
