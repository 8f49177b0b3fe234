"""Client tools: search, create and update CRM clients."""

from __future__ import annotations

from typing import Any, Optional

from billing_copilot.ai import schema as s
from billing_copilot.ai.tools.base import ActionCard, NormalizationContext, Tool, ToolContext, ToolResult
from billing_copilot.services.crm import CrmService

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

CLIENT_FIELDS = s.obj(
    display_name=s.string("Nom complet", min_length=1),
    company_name=s.optional(s.string("Société")),
    email=s.optional(s.string("Adresse e-mail", pattern=_EMAIL_PATTERN)),
    phone=s.optional(s.string("Téléphone", min_length=6)),
    vat_number=s.optional(s.string("Matricule fiscal")),
    address=s.optional(s.string("Adresse postale")),
    notes=s.optional(s.string("Notes internes")),
    is_active=s.optional(s.boolean("Client actif")),
    source=s.optional(s.enum("MANUAL", "IMPORT", "LEAD", description="Origine du client")),
)


def clean_text(value: Any) -> Optional[str]:
    """Trimmed string, or None for non-strings and blank strings."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def client_card(client: dict[str, Any]) -> ActionCard:
    metadata = [{"label": "Téléphone", "value": client["phone"]}] if client.get("phone") else []
    return ActionCard(
        type="client",
        title=client["display_name"],
        subtitle=client.get("email"),
        href=f"/clients/{client['id']}/modifier",
        metadata=metadata,
    )


def _client_payload(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "display_name": clean_text(raw.get("display_name")) or "",
        "company_name": clean_text(raw.get("company_name")),
        "email": clean_text(raw.get("email")),
        "phone": clean_text(raw.get("phone")),
        "vat_number": clean_text(raw.get("vat_number")),
        "address": clean_text(raw.get("address")),
        "notes": clean_text(raw.get("notes")),
        "is_active": raw["is_active"] if isinstance(raw.get("is_active"), bool) else True,
        "source": raw.get("source") if isinstance(raw.get("source"), str) else "MANUAL",
    }


class SearchClientsTool(Tool):
    action_label = "Rechercher des clients"
    # Always reads current state.
    deduplicate = False

    def __init__(self, crm: CrmService):
        self._crm = crm

    @property
    def name(self) -> str:
        return "search_clients"

    @property
    def description(self) -> str:
        return "Recherche les clients qui correspondent à un mot clé (nom, société, e-mail)."

    @property
    def argument_schema(self) -> s.ObjectNode:
        return s.obj(
            query=s.string("Mot-clé", min_length=1, max_length=80),
            limit=s.default(s.integer("Nombre maximum de résultats", minimum=1, maximum=25), 8),
        )

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        matches = await self._crm.search_clients(context.user_id, arguments["query"], arguments["limit"])
        if not matches:
            summary = "Aucun client correspondant."
        elif len(matches) == 1:
            summary = f"Client identifié : {matches[0]['display_name']}"
        else:
            summary = f"{len(matches)} clients possibles."
        return ToolResult(
            success=True,
            summary=summary,
            data={
                "matches": [
                    {
                        "id": match["id"],
                        "display_name": match["display_name"],
                        "company_name": match["company_name"],
                        "email": match["email"],
                        "phone": match["phone"],
                    }
                    for match in matches
                ]
            },
            requires_follow_up=len(matches) != 1,
        )


class CreateClientTool(Tool):
    requires_confirmation = True
    action_label = "Créer un client"

    def __init__(self, crm: CrmService):
        self._crm = crm

    @property
    def name(self) -> str:
        return "create_client"

    @property
    def description(self) -> str:
        return "Crée un client avec ses coordonnées pour l'utiliser dans des devis, factures ou e-mails."

    @property
    def argument_schema(self) -> s.ObjectNode:
        return CLIENT_FIELDS

    def confirmation_summary(self, arguments: dict[str, Any]) -> str:
        company = f" ({arguments['company_name']})" if arguments.get("company_name") else ""
        return f"Créer le client {arguments['display_name']}{company}"

    def normalize(self, arguments: dict[str, Any], context: NormalizationContext) -> dict[str, Any]:
        return _client_payload(arguments)

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        created = await self._crm.create_client(context.user_id, arguments)
        return ToolResult(
            success=True,
            summary=f"Client {created['display_name']} enregistré.",
            data={"client_id": created["id"], "display_name": created["display_name"]},
            action_card=client_card(created),
        )


class UpdateClientTool(Tool):
    requires_confirmation = True
    action_label = "Mettre à jour un client"

    def __init__(self, crm: CrmService):
        self._crm = crm

    @property
    def name(self) -> str:
        return "update_client"

    @property
    def description(self) -> str:
        return "Met à jour les informations d'un client existant (adresse, TVA, coordonnées)."

    @property
    def argument_schema(self) -> s.ObjectNode:
        return CLIENT_FIELDS.extend(client_id=s.string("Identifiant client", min_length=1))

    def confirmation_summary(self, arguments: dict[str, Any]) -> str:
        return f"Mettre à jour le client {arguments['display_name']}"

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        changes = {key: value for key, value in arguments.items() if key != "client_id"}
        updated = await self._crm.update_client(context.user_id, arguments["client_id"], changes)
        return ToolResult(
            success=True,
            summary=f"Client {updated['display_name']} actualisé.",
            data={"client_id": updated["id"], "display_name": updated["display_name"]},
            action_card=client_card(updated),
        )
