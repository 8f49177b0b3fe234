"""Quote and invoice creation tools.

Both tools end the multi-step workflow: once a document exists the turn
closes with a completion summary instead of another model call.
"""

from __future__ import annotations

import re
from abc import abstractmethod
from typing import Any, Iterable, Optional

from billing_copilot.ai import schema as s
from billing_copilot.ai.tools.base import ActionCard, NormalizationContext, Tool, ToolContext, ToolResult
from billing_copilot.ai.tools.clients import clean_text
from billing_copilot.core.types import DocumentKind
from billing_copilot.services.crm import CrmService, format_amount

_NEGATIVE_TIMBRE = (
    "sans timbre",
    "pas de timbre",
    "pas timbre",
    "ne pas appliquer le timbre",
    "ne pas mettre le timbre",
    "ne mets pas le timbre",
    "retire le timbre",
    "retirer le timbre",
    "retirez le timbre",
    "supprime le timbre",
    "enlever le timbre",
    "enleve le timbre",
    "desactive le timbre",
    "désactive le timbre",
)
_POSITIVE_TIMBRE = (
    "avec timbre",
    "inclure le timbre",
    "ajoute le timbre",
    "ajouter le timbre",
    "appliquer le timbre",
    "applique le timbre",
    "met le timbre",
)
_TRUE_WORDS = frozenset({"oui", "true", "vrai", "with", "enable", "activer", "avec", "yes"})
_FALSE_WORDS = frozenset({"non", "false", "faux", "disable", "desactiver", "désactiver", "sans", "no"})


def extract_timbre_preference(text: Optional[str]) -> Optional[bool]:
    """Explicit fiscal stamp wish in free text: False, True or None when silent."""
    if not text:
        return None
    normalized = re.sub(r"\s+", " ", text.lower().replace("’", "'")).strip()
    if "timbre" not in normalized:
        return None
    if any(pattern in normalized for pattern in _NEGATIVE_TIMBRE):
        return False
    if any(pattern in normalized for pattern in _POSITIVE_TIMBRE):
        return True
    return None


def resolve_timbre_preference(texts: Iterable[str]) -> Optional[bool]:
    """First explicit preference found in ``texts`` (newest first)."""
    for text in texts:
        preference = extract_timbre_preference(text)
        if preference is not None:
            return preference
    return None


def _timbre_flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    if normalized in _TRUE_WORDS or "avec" in normalized:
        return True
    if normalized in _FALSE_WORDS or "sans" in normalized or ("timbre" in normalized and "pas" in normalized):
        return False
    return None


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _normalize_line(line: dict[str, Any]) -> dict[str, Any]:
    return {
        "product_id": clean_text(line.get("product_id")),
        "description": clean_text(line.get("description")),
        "quantity": _optional_float(line.get("quantity")) or 0.0,
        "unit": clean_text(line.get("unit")) or "",
        "unit_price": _optional_float(line.get("unit_price")),
        "vat_rate": _optional_float(line.get("vat_rate")),
        "discount_rate": _optional_float(line.get("discount_rate")),
    }


DOCUMENT_LINE = s.obj(
    product_id=s.optional(s.string("Identifiant produit")),
    description=s.optional(s.string("Libellé de la ligne", min_length=2, max_length=400)),
    quantity=s.number("Quantité", exclusive_minimum=0),
    unit=s.optional(s.string("Unité")),
    unit_price=s.optional(s.number("Prix unitaire HT", minimum=0)),
    vat_rate=s.optional(s.number("Taux de TVA en %", minimum=0, maximum=100)),
    discount_rate=s.optional(s.number("Remise en %", minimum=0, maximum=90)),
)


def document_card(kind: DocumentKind, document: dict[str, Any]) -> ActionCard:
    label = "Devis" if kind == DocumentKind.QUOTE else "Facture"
    href = f"/api/{'devis' if kind == DocumentKind.QUOTE else 'factures'}/{document['id']}/pdf"
    return ActionCard(
        type=kind.value,
        title=f"{label} {document['client_name']}",
        subtitle=document["number"],
        amount=format_amount(document["total_ttc_cents"], document["currency"]),
        href=href,
    )


class DocumentTool(Tool):
    """Shared behaviour of quote and invoice creation."""

    kind: DocumentKind
    requires_confirmation = True
    completes_workflow = True

    def __init__(self, crm: CrmService):
        self._crm = crm

    def _base_fields(self) -> dict[str, s.SchemaNode]:
        return {
            "client_id": s.string("Client", min_length=1),
            "issue_date": s.optional(s.string("Date d'émission (AAAA-MM-JJ)")),
            "currency": s.optional(s.string("Devise (code ISO)")),
            "status": s.optional(s.string("Statut")),
            "notes": s.optional(s.string("Notes")),
            "terms": s.optional(s.string("Conditions")),
            "lines": s.array(DOCUMENT_LINE, "Lignes du document", min_items=1),
            "apply_timbre": s.optional(s.boolean("Appliquer le timbre fiscal")),
            "timbre_amount": s.optional(s.number("Montant du timbre", minimum=0)),
        }

    def normalize(self, arguments: dict[str, Any], context: NormalizationContext) -> dict[str, Any]:
        timbre = resolve_timbre_preference(context.user_messages)
        if timbre is None:
            timbre = _timbre_flag(arguments.get("apply_timbre"))
        if timbre is None:
            timbre = _timbre_flag(arguments.get("notes"))
        return {
            "client_id": clean_text(arguments.get("client_id")) or "",
            "issue_date": clean_text(arguments.get("issue_date")),
            "currency": (clean_text(arguments.get("currency")) or "TND").upper(),
            "status": clean_text(arguments.get("status")) or "BROUILLON",
            "notes": clean_text(arguments.get("notes")),
            "terms": clean_text(arguments.get("terms")),
            "lines": [_normalize_line(line) for line in arguments.get("lines") or []],
            # The fiscal stamp applies unless the user opted out.
            "apply_timbre": True if timbre is None else timbre,
            "timbre_amount": _optional_float(arguments.get("timbre_amount")),
        }

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        document = await self._crm.create_document(context.user_id, self.kind, arguments)
        return ToolResult(
            success=True,
            summary=self._created_summary(document["number"]),
            data={
                f"{self.kind.value}_id": document["id"],
                "number": document["number"],
                "client_id": document["client_id"],
                "client_name": document["client_name"],
                "total_ttc": format_amount(document["total_ttc_cents"], document["currency"]),
            },
            action_card=document_card(self.kind, document),
        )

    @abstractmethod
    def _created_summary(self, number: str) -> str: ...


class CreateQuoteTool(DocumentTool):
    kind = DocumentKind.QUOTE
    action_label = "Créer un devis"

    @property
    def name(self) -> str:
        return "create_quote"

    @property
    def description(self) -> str:
        return "Génère un devis avec lignes détaillées et calcul des taxes."

    @property
    def argument_schema(self) -> s.ObjectNode:
        return s.obj(**self._base_fields(), valid_until=s.optional(s.string("Date de validité (AAAA-MM-JJ)")))

    def confirmation_summary(self, arguments: dict[str, Any]) -> str:
        return "Créer un nouveau devis"

    def normalize(self, arguments: dict[str, Any], context: NormalizationContext) -> dict[str, Any]:
        normalized = super().normalize(arguments, context)
        normalized["valid_until"] = clean_text(arguments.get("valid_until"))
        return normalized

    def _created_summary(self, number: str) -> str:
        return f"Devis {number} créé."


class CreateInvoiceTool(DocumentTool):
    kind = DocumentKind.INVOICE
    action_label = "Créer une facture"

    @property
    def name(self) -> str:
        return "create_invoice"

    @property
    def description(self) -> str:
        return "Crée une facture avec lignes détaillées, TVA et timbre fiscal."

    @property
    def argument_schema(self) -> s.ObjectNode:
        return s.obj(**self._base_fields(), due_date=s.optional(s.string("Date d'échéance (AAAA-MM-JJ)")))

    def confirmation_summary(self, arguments: dict[str, Any]) -> str:
        return "Créer une nouvelle facture"

    def normalize(self, arguments: dict[str, Any], context: NormalizationContext) -> dict[str, Any]:
        normalized = super().normalize(arguments, context)
        normalized["due_date"] = clean_text(arguments.get("due_date"))
        return normalized

    def _created_summary(self, number: str) -> str:
        return f"Facture {number} créée."
