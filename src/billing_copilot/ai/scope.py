"""Keyword heuristics deciding whether a message belongs to the app's domain."""

from __future__ import annotations

import re
import unicodedata
from typing import Any, Optional

from billing_copilot.core.ports import ScopeDecision
from billing_copilot.core.types import MessageRole
from billing_copilot.storage.models import Message

SCOPE_METADATA_KEY = "_scope"

OUT_OF_SCOPE_RESPONSE = (
    "Je suis un assistant dédié à votre application de facturation, CRM et messagerie. "
    "Je peux uniquement vous aider pour les modules clients, produits, devis, factures, "
    "messagerie, tableau de bord, paramètres ou site web. Reformulez votre demande dans ce cadre."
)

_SINGLE_WORD_KEYWORDS = """
client clients customer customers prospect prospects lead leads contact contacts crm pipeline
prospection produit produits product products catalogue catalog article articles service services
prestation prestations offre offres tarif tarifs pricing prix vente ventes commercial commerce
business affaires entreprise entreprises societe societes processus workflow remise remises
discount discounts tva fodec timbre retenue retenues impot impots fiscal fiscale fiscalite taxation
comptabilite comptable comptables taxe taxes devis quote quotes quotation estimate estimation
facture factures facturation invoice invoices billing avoir avoirs paiement paiements payment
payments encaissement encaissements reglement reglements relance relances relancer rappel rappels
echeance echeances acompte acomptes solde messagerie message messages messaging email emails mail
mails courriel courriels mailbox inbox sent draft drafts brouillon brouillons spam indesirable
indesirables trash corbeille archive archives planifie planifiee planifiees planification scheduled
planifies programmee conversation conversations dashboard reporting rapport rapports analytics
statistiques indicateur indicateurs parametre parametres setting settings configuration preferences
compte landing website formulaire formulaires note notes commentaire commentaires ligne lignes item
items document documents
"""
_MULTI_WORD_KEYWORDS = (
    "fiche client",
    "plan tarifaire",
    "timbre fiscal",
    "droit de timbre",
    "retenue a la source",
    "retenues a la source",
    "proposition commerciale",
    "bon de commande",
    "note d honoraires",
    "note de frais",
    "boite de reception",
    "boite mail",
    "tableau de bord",
    "site web",
    "site internet",
    "site builder",
    "site vitrine",
    "page web",
    "page marketing",
    "landing page",
)

ACK_WORDS = frozenset(
    "oui non ok okay daccord dac merci beaucoup parfait super top cest bon ca marche bien recu "
    "tres genial impec parfaitement excellent bonjour bonsoir salut hello va".split()
)
QUESTION_WORDS = frozenset(
    "qui que quoi ou quand comment pourquoi combien quel quelle quelles quels who what when where why how".split()
)
GREETING_WORDS = frozenset("bonjour bonsoir salut hello hi coucou yo".split())
GREETING_FILLERS = frozenset(
    "ca va tu vous toi can you me m moi nous hey yo svp stp please plz peux peut pouvez help "
    "assist assiste assistance aide aider".split()
)

_FOLLOW_UP_VERBS = (
    "ajoute|ajoutes|ajoutez|ajouter|supprime|supprimes|supprimez|supprimer|retire|retires|retirez|retirer|"
    "envoie|envoies|envoyez|envoyer|relance|relances|relancez|relancer|planifie|planifies|planifiez|planifier|"
    "annule|annules|annulez|annuler|archive|archives|archivez|archiver|duplique|dupliques|dupliquez|dupliquer|"
    "copie|copies|copiez|copier|convertis|convertissez|convertir|reponds|repond|repondez|repondre|"
    "reprends|reprend|reprenez|reprendre|poursuis|poursuivre|continue|continues|continuez|valide|validez|valider|"
    "confirme|confirmez|confirmer|assigne|assignes|assignez|assigner|applique|appliques|appliquez|appliquer|"
    "rappelle|rappelles|rappelez|rappeler|ecris|ecrivez|ecrire"
)
_FOLLOW_UP_COMMAND = re.compile(
    rf"^({_FOLLOW_UP_VERBS})(?:\s+|-)(le|la|les|lui|leur|leurs|l'|y|en)(?=$|[\s!.?,])"
)


def _strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def normalize_scope_text(value: str) -> str:
    """Accent-free lowercase text with every non-alphanumeric run turned into one space."""
    folded = _strip_accents(value).lower()
    return re.sub(r"\s+", " ", re.sub(r"[^a-z0-9]+", " ", folded)).strip()


IN_SCOPE_KEYWORDS = tuple(
    dict.fromkeys(normalize_scope_text(keyword) for keyword in (*_SINGLE_WORD_KEYWORDS.split(), *_MULTI_WORD_KEYWORDS))
)


def matches_keyword(normalized: str) -> bool:
    return any(keyword in normalized for keyword in IN_SCOPE_KEYWORDS)


def is_greeting(text: str) -> bool:
    tokens = normalize_scope_text(text).split()
    if not tokens or tokens[0] not in GREETING_WORDS:
        return False
    return all(
        token in GREETING_WORDS
        or token in ACK_WORDS
        or token in QUESTION_WORDS
        or token in GREETING_FILLERS
        or len(token) <= 3
        for token in tokens[1:]
    )


def looks_like_follow_up(text: str) -> bool:
    """Short acknowledgement ("ok merci") or pronoun command ("envoie-le")."""
    trimmed = text.strip()
    if not trimmed:
        return False
    normalized = _strip_accents(trimmed.replace("’", "'")).lower()
    ack_candidate = re.sub(r"\s+", " ", re.sub(r"[!.?,]", " ", normalized.replace("'", ""))).strip()
    if ack_candidate:
        tokens = ack_candidate.split()
        if (
            "?" not in normalized
            and not any(token in QUESTION_WORDS for token in tokens)
            and all(token in ACK_WORDS for token in tokens)
        ):
            return True
    return _FOLLOW_UP_COMMAND.match(normalized) is not None


def read_scope_tag(metadata: Optional[dict[str, Any]]) -> Optional[str]:
    if not isinstance(metadata, dict):
        return None
    scope = metadata.get(SCOPE_METADATA_KEY)
    if not isinstance(scope, dict):
        return None
    tag = scope.get("tag")
    return tag if tag in ("in-app", "out-of-scope") else None


def _entry_in_scope(message: Message) -> bool:
    tag = read_scope_tag(message.metadata)
    if tag is not None:
        return tag == "in-app"
    normalized = normalize_scope_text(message.text)
    return bool(normalized) and matches_keyword(normalized)


class KeywordScopeEvaluator:
    """Decides, before any model call, whether a user message is in scope.

    A request context (the page the user is on) always allows the message.
    Otherwise a domain keyword, a bare greeting, or a follow-up after an
    earlier in-scope message allows it.
    """

    def evaluate(
        self, history: list[Message], text: str, context: Optional[dict[str, Any]] = None
    ) -> ScopeDecision:
        normalized = normalize_scope_text(text or "")
        keyword_match = bool(normalized) and matches_keyword(normalized)
        greeting_match = is_greeting(text or "")
        follow_up = looks_like_follow_up(text or "")

        if context:
            reason = "context"
        elif keyword_match:
            reason = "keyword"
        elif greeting_match:
            reason = "greeting"
        elif follow_up and any(
            _entry_in_scope(message) for message in history if message.role == MessageRole.USER
        ):
            reason = "follow-up"
        else:
            reason = "out-of-scope"

        allowed = reason != "out-of-scope"
        metadata = {
            SCOPE_METADATA_KEY: {
                "version": 1,
                "tag": "in-app" if allowed else "out-of-scope",
                "reason": reason,
                "keyword_match": keyword_match,
                "greeting_match": greeting_match,
                "follow_up_candidate": follow_up,
                "context_type": (context or {}).get("type"),
            }
        }
        return ScopeDecision(allowed=allowed, metadata=metadata)
