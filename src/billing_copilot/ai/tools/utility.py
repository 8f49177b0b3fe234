"""Currency conversion between the currencies the app invoices in."""

from __future__ import annotations

from typing import Any, Optional

from billing_copilot.ai import schema as s
from billing_copilot.ai.tools.base import Tool, ToolContext, ToolResult
from billing_copilot.errors import DomainError

# Value of one unit of each currency, in TND.
DEFAULT_EXCHANGE_RATES: dict[str, float] = {
    "TND": 1.0,
    "EUR": 3.3,
    "USD": 3.1,
    "GBP": 4.1,
    "CAD": 2.3,
}


class ConvertCurrencyTool(Tool):
    action_label = "Convertir un montant"
    deduplicate = False

    def __init__(self, rates: Optional[dict[str, float]] = None):
        self._rates = {**DEFAULT_EXCHANGE_RATES, **{code.upper(): rate for code, rate in (rates or {}).items()}}

    @property
    def name(self) -> str:
        return "convert_currency"

    @property
    def description(self) -> str:
        return "Convertit un montant d'une devise à une autre avec les taux configurés."

    @property
    def argument_schema(self) -> s.ObjectNode:
        return s.obj(
            amount=s.number("Montant à convertir", minimum=0),
            from_currency=s.string("Devise source (code ISO)", min_length=3, max_length=3),
            to_currency=s.string("Devise cible (code ISO)", min_length=3, max_length=3),
        )

    def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        from_rate = self._rates.get(from_currency.upper())
        to_rate = self._rates.get(to_currency.upper())
        if not from_rate or not to_rate:
            raise DomainError("Conversion indisponible pour cette devise.")
        return amount * from_rate / to_rate

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        source = arguments["from_currency"].upper()
        target = arguments["to_currency"].upper()
        converted = round(self.convert(arguments["amount"], source, target), 3)
        return ToolResult(
            success=True,
            summary=f"{arguments['amount']:g} {source} ≈ {converted:g} {target}",
            data={"amount": arguments["amount"], "from": source, "to": target, "converted": converted},
        )
