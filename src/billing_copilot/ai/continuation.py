"""Hints that keep a multi-step workflow moving after a confirmation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from billing_copilot.core.types import MessageRole
from billing_copilot.storage.models import Message

INTENT_HINT = " ".join(
    [
        "Poursuis automatiquement la demande ci-dessus jusqu'au résultat final.",
        "Si plusieurs actions sont nécessaires (client, produit, devis ou facture), enchaîne-les sans t'arrêter après une seule confirmation.",
        "Réutilise les identifiants et données déjà obtenus; s'il manque une information essentielle, pose une question brève puis continue.",
        "Termine en confirmant l'élément final créé avec son lien ou numéro.",
    ]
)

_INVOICE_WORDS = ("facture", "invoice", "facturation")


@dataclass
class WorkflowEntities:
    """Latest entity of each kind created in a conversation, with display data."""

    client_id: Optional[str] = None
    client_name: Optional[str] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    quote_id: Optional[str] = None
    quote_number: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None

    @property
    def complete(self) -> bool:
        return all((self.client_id, self.product_id, self.quote_id, self.invoice_id))


def last_user_intent(history: list[Message]) -> Optional[str]:
    for message in reversed(history):
        if message.role == MessageRole.USER:
            return message.text.strip() or None
    return None


def _absorb(entities: WorkflowEntities, data: dict[str, Any]) -> None:
    if entities.client_id is None and isinstance(data.get("client_id"), str):
        entities.client_id = data["client_id"]
        entities.client_name = data.get("display_name") or data.get("client_name")
    if entities.product_id is None and isinstance(data.get("product_id"), str):
        entities.product_id = data["product_id"]
        entities.product_name = data.get("name")
    if entities.quote_id is None and isinstance(data.get("quote_id"), str):
        entities.quote_id = data["quote_id"]
        entities.quote_number = data.get("number")
    if entities.invoice_id is None and isinstance(data.get("invoice_id"), str):
        entities.invoice_id = data["invoice_id"]
        entities.invoice_number = data.get("number")


def extract_workflow_entities(history: list[Message], limit: int | None = None) -> WorkflowEntities:
    """Scan tool-message metadata newest first; the first id of each kind wins.

    ``limit`` bounds how many tool messages are inspected.
    """
    entities = WorkflowEntities()
    inspected = 0
    for message in reversed(history):
        if message.role != MessageRole.TOOL or not message.metadata:
            continue
        if limit is not None and inspected >= limit:
            break
        inspected += 1
        data = message.metadata.get("data")
        if isinstance(data, dict):
            _absorb(entities, data)
        if entities.complete:
            break
    return entities


def build_continuation_hint(history: list[Message]) -> Optional[str]:
    if last_user_intent(history) is None:
        return None
    return INTENT_HINT


def build_workflow_hint(history: list[Message]) -> Optional[str]:
    """Name the steps already done so the model does not redo them."""
    entities = extract_workflow_entities(history)
    if not entities.client_id and not entities.product_id:
        return None

    steps: list[str] = []
    if entities.client_id:
        steps.append(f"client créé (ID: {entities.client_id})")
    if entities.product_id:
        steps.append(f"produit créé (ID: {entities.product_id})")
    if entities.invoice_id:
        steps.append(f"facture créée (ID: {entities.invoice_id})")

    intent = (last_user_intent(history) or "").lower()
    wants_invoice = any(word in intent for word in _INVOICE_WORDS)
    hints = [f"Étapes terminées: {' ; '.join(steps)}."]
    if not entities.invoice_id and wants_invoice and entities.client_id and entities.product_id:
        hints.append(
            "Passe directement à la facture en réutilisant ce client et ce produit "
            "sans redemander de confirmation pour des éléments déjà créés."
        )
    else:
        hints.append("Ne relance pas la création des entités déjà terminées dans cette conversation.")
    return " ".join(hints)


def build_resume_hint(history: list[Message]) -> Optional[str]:
    """Combined hint appended as a user message after a confirmed action."""
    parts = [hint for hint in (build_continuation_hint(history), build_workflow_hint(history)) if hint]
    return " ".join(parts) or None


def build_completion_summary(history: list[Message]) -> str:
    """Closing message after a terminal tool: what the workflow created."""
    entities = extract_workflow_entities(history, limit=20)
    lines: list[str] = []
    if entities.client_id:
        lines.append(
            f"• Client créé : {entities.client_name}"
            if entities.client_name
            else f"• Client créé (ID: {entities.client_id})"
        )
    if entities.product_id:
        lines.append(
            f"• Produit ajouté : {entities.product_name}"
            if entities.product_name
            else f"• Produit ajouté (ID: {entities.product_id})"
        )
    if entities.quote_id:
        lines.append(
            f"• Devis créé : {entities.quote_number}"
            if entities.quote_number
            else f"• Devis créé (ID: {entities.quote_id})"
        )
    if entities.invoice_id:
        lines.append(
            f"• Facture créée : {entities.invoice_number}"
            if entities.invoice_number
            else f"• Facture créée (ID: {entities.invoice_id})"
        )
    body = "\n".join(lines) if lines else "Création terminée."
    return f"Création terminée. Résumé :\n{body}"
