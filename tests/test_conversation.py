import itertools

from billing_copilot.ai.continuation import (
    INTENT_HINT,
    build_completion_summary,
    build_resume_hint,
    build_workflow_hint,
    extract_workflow_entities,
)
from billing_copilot.ai.conversation import (
    build_model_messages,
    format_tool_message_text,
    normalize_assistant_text,
    split_tokens,
    user_texts_newest_first,
)
from billing_copilot.ai.tools.base import ToolResult
from billing_copilot.core.types import MessageRole
from billing_copilot.storage.models import Message, text_block


_ids = itertools.count(1)


def _message(role, text, tool_name=None, data=None):
    return Message(
        id=f"msg-{next(_ids)}",
        conversation_id="conv-1",
        user_id="user-1",
        role=role,
        content=[text_block(text)] if text else [],
        tool_name=tool_name,
        metadata={"data": data} if data is not None else None,
    )


def _tool(tool_name, data):
    return _message(MessageRole.TOOL, f"{tool_name} ok", tool_name=tool_name, data=data)


def test_model_messages_replay_tool_messages_as_assistant_text():
    history = [
        _message(MessageRole.USER, "Crée le client Jean"),
        _tool("create_client", {"client_id": "c-1"}),
        _message(MessageRole.ASSISTANT, ""),
        _message(MessageRole.ASSISTANT, "C'est fait."),
    ]

    messages = build_model_messages("Prompt système", history)

    assert [(message.role, message.content) for message in messages] == [
        ("system", "Prompt système"),
        ("user", "Crée le client Jean"),
        ("assistant", "Outil create_client: create_client ok"),
        ("assistant", "C'est fait."),
    ]


def test_tool_message_text_joins_summary_and_data():
    result = ToolResult(success=True, summary=" Client créé. ", data={"client_id": "c-1"})

    assert format_tool_message_text(result) == 'Client créé. | {"client_id": "c-1"}'
    assert format_tool_message_text(ToolResult(success=True, summary="")) == ""


def test_normalize_assistant_text():
    raw = "```markdown\n* Premier point\n2) Second   point\n```\n\n\n\nTotal : $$238$$ TND"

    assert normalize_assistant_text(raw) == "- Premier point\n2. Second point\n\nTotal : 238 TND"


def test_normalize_keeps_plain_text():
    assert normalize_assistant_text("  Bonjour,\r\nvoici la facture.  ") == "Bonjour,\nvoici la facture."


def test_split_tokens_after_sentence_punctuation():
    assert split_tokens("Facture créée. Voulez-vous l'envoyer ? Oui!") == [
        "Facture créée.",
        " Voulez-vous l'envoyer ?",
        " Oui!",
    ]
    assert "".join(split_tokens("Sans ponctuation")) == "Sans ponctuation"


def test_user_texts_newest_first_skips_blank_and_other_roles():
    history = [
        _message(MessageRole.USER, "Première demande"),
        _message(MessageRole.ASSISTANT, "Réponse"),
        _message(MessageRole.USER, "  "),
        _message(MessageRole.USER, "Sans timbre"),
    ]

    assert user_texts_newest_first(history) == ("Sans timbre", "Première demande")


def test_entities_newest_first_wins():
    history = [
        _tool("create_client", {"client_id": "c-old", "display_name": "Ancien"}),
        _tool("create_client", {"client_id": "c-new", "display_name": "Nouveau"}),
        _tool("create_product", {"product_id": "p-1", "name": "Audit"}),
    ]

    entities = extract_workflow_entities(history)

    assert (entities.client_id, entities.client_name) == ("c-new", "Nouveau")
    assert (entities.product_id, entities.product_name) == ("p-1", "Audit")
    assert entities.invoice_id is None


def test_workflow_hint_pushes_towards_invoice():
    history = [
        _message(MessageRole.USER, "Crée le client, le produit puis la facture"),
        _tool("create_client", {"client_id": "c-1"}),
        _tool("create_product", {"product_id": "p-1"}),
    ]

    hint = build_workflow_hint(history)

    assert hint.startswith("Étapes terminées: client créé (ID: c-1) ; produit créé (ID: p-1).")
    assert "Passe directement à la facture" in hint


def test_workflow_hint_without_invoice_intent():
    history = [_message(MessageRole.USER, "Ajoute le client Jean"), _tool("create_client", {"client_id": "c-1"})]

    hint = build_workflow_hint(history)

    assert hint.endswith("Ne relance pas la création des entités déjà terminées dans cette conversation.")


def test_no_hints_without_entities_or_intent():
    assert build_workflow_hint([_message(MessageRole.USER, "Bonjour")]) is None
    assert build_resume_hint([]) is None
    assert build_resume_hint([_message(MessageRole.USER, "Liste mes devis")]) == INTENT_HINT


def test_completion_summary_lists_created_entities():
    history = [
        _tool("create_client", {"client_id": "c-1", "display_name": "Jean Dupont"}),
        _tool("create_product", {"product_id": "p-1"}),
        _tool(
            "create_invoice",
            {"invoice_id": "i-1", "number": "FAC-2026-0001", "client_id": "c-1", "client_name": "Jean Dupont"},
        ),
    ]

    assert build_completion_summary(history) == (
        "Création terminée. Résumé :\n"
        "• Client créé : Jean Dupont\n"
        "• Produit ajouté (ID: p-1)\n"
        "• Facture créée : FAC-2026-0001"
    )


def test_completion_summary_without_entities():
    assert build_completion_summary([]) == "Création terminée. Résumé :\nCréation terminée."
