"""Product tools: search the catalog and add products."""

from __future__ import annotations

from typing import Any

from billing_copilot.ai import schema as s
from billing_copilot.ai.tools.base import ActionCard, NormalizationContext, Tool, ToolContext, ToolResult
from billing_copilot.ai.tools.clients import clean_text
from billing_copilot.services.crm import CrmService, format_amount


def product_card(product: dict[str, Any]) -> ActionCard:
    return ActionCard(
        type="product",
        title=product["name"],
        subtitle=product["sku"],
        href=f"/produits/{product['id']}/modifier",
        metadata=[
            {"label": "Prix HT", "value": format_amount(product["price_ht_cents"], product["currency"])},
            {"label": "TVA", "value": f"{product['vat_rate']:g}%"},
        ],
    )


def _to_float(value: Any, fallback: float = 0.0) -> float:
    if isinstance(value, bool):
        return fallback
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


class SearchProductsTool(Tool):
    action_label = "Rechercher des produits"
    deduplicate = False

    def __init__(self, crm: CrmService):
        self._crm = crm

    @property
    def name(self) -> str:
        return "search_products"

    @property
    def description(self) -> str:
        return "Liste les produits correspondant à un mot-clé (nom, SKU)."

    @property
    def argument_schema(self) -> s.ObjectNode:
        return s.obj(
            query=s.string("Mot-clé", min_length=1, max_length=80),
            limit=s.default(s.integer("Nombre maximum de résultats", minimum=1, maximum=25), 8),
        )

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        matches = await self._crm.search_products(context.user_id, arguments["query"], arguments["limit"])
        if not matches:
            summary = "Aucun produit trouvé."
        elif len(matches) == 1:
            summary = f"Produit identifié : {matches[0]['name']}"
        else:
            summary = f"{len(matches)} produits trouvés."
        return ToolResult(
            success=True,
            summary=summary,
            data={
                "matches": [
                    {
                        "id": match["id"],
                        "name": match["name"],
                        "sku": match["sku"],
                        "price_ht_cents": match["price_ht_cents"],
                        "vat_rate": match["vat_rate"],
                        "currency": match["currency"],
                    }
                    for match in matches
                ]
            },
            requires_follow_up=len(matches) != 1,
        )


class CreateProductTool(Tool):
    """Adds a product, reusing an existing one with the same SKU."""

    requires_confirmation = True
    action_label = "Créer un produit"

    def __init__(self, crm: CrmService):
        self._crm = crm

    @property
    def name(self) -> str:
        return "create_product"

    @property
    def description(self) -> str:
        return "Ajoute un produit/service avec prix HT et TVA prêts à être utilisés dans les documents."

    @property
    def argument_schema(self) -> s.ObjectNode:
        return s.obj(
            sku=s.optional(s.string("Référence")),
            name=s.string("Nom du produit", min_length=1),
            description=s.optional(s.string("Description")),
            unit=s.optional(s.string("Unité")),
            price_ht=s.number("Prix unitaire HT", exclusive_minimum=0),
            vat_rate=s.number("Taux de TVA en %", minimum=0, maximum=100),
            currency=s.optional(s.string("Devise (code ISO)")),
            is_active=s.optional(s.boolean("Produit actif")),
        )

    def confirmation_summary(self, arguments: dict[str, Any]) -> str:
        sku = f" ({arguments['sku']})" if arguments.get("sku") else ""
        return f"Créer le produit {arguments['name']}{sku}"

    def normalize(self, arguments: dict[str, Any], context: NormalizationContext) -> dict[str, Any]:
        return {
            "sku": clean_text(arguments.get("sku")),
            "name": clean_text(arguments.get("name")) or "",
            "description": clean_text(arguments.get("description")),
            "unit": clean_text(arguments.get("unit")) or "",
            "price_ht": _to_float(arguments.get("price_ht")),
            "vat_rate": _to_float(arguments.get("vat_rate")),
            "currency": (clean_text(arguments.get("currency")) or "TND").upper(),
            "is_active": arguments["is_active"] if isinstance(arguments.get("is_active"), bool) else True,
        }

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        product, reused = await self._crm.create_product(context.user_id, arguments)
        if reused:
            summary = f"Produit existant réutilisé : {product['name']} ({product['sku']})."
        else:
            summary = f"Produit {product['name']} ajouté."
        data: dict[str, Any] = {"product_id": product["id"], "name": product["name"]}
        if reused:
            data["reused"] = True
        return ToolResult(success=True, summary=summary, data=data, action_card=product_card(product))
