"""Abstract tool interface for model tool use."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Optional

from pydantic import BaseModel

from billing_copilot.ai.schema import ObjectNode, compile_model, to_json_schema, validate_arguments


@dataclass
class ActionCard:
    """Structured UI card describing the entity a tool touched."""

    type: str
    title: str
    subtitle: Optional[str] = None
    amount: Optional[str] = None
    href: Optional[str] = None
    metadata: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value not in (None, [])}


@dataclass(frozen=True)
class ToolContext:
    user_id: str
    conversation_id: str
    timezone: str


@dataclass
class ToolResult:
    success: bool
    summary: str
    data: Any = None
    action_card: Optional[ActionCard] = None
    requires_follow_up: bool = False


@dataclass(frozen=True)
class NormalizationContext:
    """What a normalizer may read besides the arguments.

    ``user_messages`` holds the conversation's user texts, newest first.
    """

    user_messages: tuple[str, ...] = ()

    @property
    def last_user_message(self) -> Optional[str]:
        return self.user_messages[0] if self.user_messages else None


class Tool(ABC):
    """Base class for all model-callable tools."""

    requires_confirmation: ClassVar[bool] = False
    # Executing this tool successfully ends the multi-step workflow.
    completes_workflow: ClassVar[bool] = False
    # An identical earlier call in the conversation is reused instead of run again.
    deduplicate: ClassVar[bool] = True
    action_label: ClassVar[str] = ""

    _arguments_model: Optional[type[BaseModel]] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the model."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the model."""
        ...

    @property
    @abstractmethod
    def argument_schema(self) -> ObjectNode:
        """Schema tree describing accepted arguments."""
        ...

    @abstractmethod
    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Run the tool on validated, normalized arguments."""
        ...

    def confirmation_summary(self, arguments: dict[str, Any]) -> str:
        return f"Exécuter l'action {self.name}"

    def normalize(self, arguments: dict[str, Any], context: NormalizationContext) -> dict[str, Any]:
        """Canonical form of validated arguments, used for hashing and execution."""
        return dict(arguments)

    def validate(self, raw: Any) -> dict[str, Any]:
        """Check raw model arguments; raises ``ToolValidationError``."""
        if self._arguments_model is None:
            model_name = "".join(part.title() for part in self.name.split("_")) + "Arguments"
            self._arguments_model = compile_model(self.argument_schema, name=model_name)
        return validate_arguments(self._arguments_model, raw)

    def to_api_dict(self) -> dict[str, Any]:
        """Provider-neutral tool definition: name, description and JSON schema."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": to_json_schema(self.argument_schema),
        }
