"""Exception hierarchy for the assistant runtime."""

from __future__ import annotations


class CopilotError(Exception):
    """Base class for every error raised by billing_copilot."""


class UsageLimitError(CopilotError):
    """The monthly message quota of the user is exhausted."""

    def __init__(self, message: str = "Quota mensuel atteint. Réessayez après le renouvellement.") -> None:
        super().__init__(message)


class UnknownToolError(CopilotError):
    """The model named a tool that is not in the registry."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Outil inconnu: {tool_name}")
        self.tool_name = tool_name


class DuplicateToolError(CopilotError):
    """Two tools were registered under the same name."""


class ToolValidationError(CopilotError):
    """Tool arguments failed schema validation.

    ``issues`` holds ``(path, message)`` pairs where the path is dot-joined
    (``lines.0.quantity``).
    """

    def __init__(self, issues: list[tuple[str, str]]) -> None:
        self.issues = issues
        super().__init__(self.describe())

    def describe(self) -> str:
        details = "; ".join(f"{path or 'champ'}: {message}" for path, message in self.issues)
        return f"Paramètres invalides: {details}"


class DomainError(CopilotError):
    """A business rule rejected the operation (not found, conflict, ...)."""


class ProviderError(CopilotError):
    """An LLM backend call failed.

    ``transient`` is set by the backend from the structured failure (status
    code, connection error, timeout) and drives provider fallback.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        transient: bool,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.transient = transient
        self.status_code = status_code


class IterationBoundExceeded(CopilotError):
    """The agent loop reached its maximum number of model calls."""

    def __init__(self, limit: int) -> None:
        super().__init__("Boucle d'outils interrompue.")
        self.limit = limit


class PendingActionNotFound(CopilotError):
    """The pending confirmation is unknown, expired, foreign or already used."""

    def __init__(self) -> None:
        super().__init__("Action à confirmer introuvable.")


_TRANSIENT_STATUS = frozenset({408, 409, 425, 429, 500, 502, 503, 504, 529})


def is_transient_status(status_code: int | None) -> bool:
    """HTTP statuses worth retrying on another provider."""
    if status_code is None:
        return False
    return status_code in _TRANSIENT_STATUS or 500 <= status_code < 600


class TurnCancelled(CopilotError):
    """The caller cancelled the turn."""

    def __init__(self) -> None:
        super().__init__("Tour annulé.")


class EmptyMessageError(CopilotError):
    def __init__(self) -> None:
        super().__init__("Message vide.")
