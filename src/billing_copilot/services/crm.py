"""Clients, products and commercial documents stored in SQLite."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Optional

from billing_copilot.core.types import DocumentKind
from billing_copilot.errors import DomainError
from billing_copilot.log import get_logger
from billing_copilot.storage.database import Database
from billing_copilot.storage.models import utcnow

logger = get_logger(__name__)

DEFAULT_TIMBRE_AMOUNT = 1.0

_NUMBER_PREFIX = {DocumentKind.QUOTE: "DEV", DocumentKind.INVOICE: "FAC"}

_CLIENT_FIELDS = ("display_name", "company_name", "email", "phone", "vat_number", "address", "notes")


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


def from_cents(cents: int) -> float:
    return round(cents / 100, 2)


def format_amount(cents: int, currency: str) -> str:
    return f"{from_cents(cents):,.2f} {currency}".replace(",", " ")


class CrmService:
    """Minimal CRM backing the assistant tools.

    Every query is scoped to ``user_id``. Missing entities and business rule
    violations raise :class:`DomainError` with a French message meant for the
    model.
    """

    def __init__(self, db: Database):
        self._db = db

    # ── clients ──────────────────────────────────────────────

    async def create_client(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        email = payload.get("email")
        if email:
            cursor = await self._db.conn.execute(
                "SELECT id FROM clients WHERE user_id = ? AND lower(email) = lower(?)",
                (user_id, email),
            )
            if await cursor.fetchone() is not None:
                raise DomainError(f"Un client avec l'adresse {email} existe déjà.")

        client_id = uuid.uuid4().hex
        await self._db.conn.execute(
            """INSERT INTO clients
               (id, user_id, display_name, company_name, email, phone, vat_number,
                address, notes, is_active, source)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                client_id,
                user_id,
                payload["display_name"],
                payload.get("company_name"),
                email,
                payload.get("phone"),
                payload.get("vat_number"),
                payload.get("address"),
                payload.get("notes"),
                int(payload.get("is_active", True)),
                payload.get("source") or "MANUAL",
            ),
        )
        await self._db.conn.commit()
        logger.info("client_created", client_id=client_id)
        return await self.get_client(user_id, client_id)

    async def update_client(self, user_id: str, client_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        await self.get_client(user_id, client_id)
        updates = {key: value for key, value in changes.items() if key in _CLIENT_FIELDS and value is not None}
        if not updates:
            raise DomainError("Aucune modification fournie pour ce client.")
        assignments = ", ".join(f"{key} = ?" for key in updates)
        await self._db.conn.execute(
            f"UPDATE clients SET {assignments} WHERE id = ? AND user_id = ?",
            (*updates.values(), client_id, user_id),
        )
        await self._db.conn.commit()
        logger.info("client_updated", client_id=client_id, fields=sorted(updates))
        return await self.get_client(user_id, client_id)

    async def get_client(self, user_id: str, client_id: str) -> dict[str, Any]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM clients WHERE id = ? AND user_id = ?",
            (client_id, user_id),
        )
        row = await cursor.fetchone()
        if row is None:
            raise DomainError(f"Client introuvable: {client_id}")
        return dict(row)

    async def search_clients(self, user_id: str, query: str, limit: int = 5) -> list[dict[str, Any]]:
        pattern = f"%{query.strip().lower()}%"
        cursor = await self._db.conn.execute(
            """SELECT * FROM clients
               WHERE user_id = ? AND is_active = 1
                 AND (lower(display_name) LIKE ? OR lower(coalesce(company_name, '')) LIKE ?
                      OR lower(coalesce(email, '')) LIKE ?)
               ORDER BY display_name
               LIMIT ?""",
            (user_id, pattern, pattern, pattern, limit),
        )
        return [dict(row) for row in await cursor.fetchall()]

    # ── products ─────────────────────────────────────────────

    async def create_product(self, user_id: str, payload: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        """Create a product, or return the existing one with the same SKU.

        The second element tells whether an existing product was reused.
        """
        sku = payload.get("sku") or _sku_from_name(payload["name"])
        existing = await self._find_product_by_sku(user_id, sku)
        if existing is not None:
            logger.info("product_reused", product_id=existing["id"], sku=sku)
            return existing, True

        product_id = uuid.uuid4().hex
        await self._db.conn.execute(
            """INSERT INTO products
               (id, user_id, sku, name, description, unit, price_ht_cents, vat_rate, currency, is_active)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                product_id,
                user_id,
                sku,
                payload["name"],
                payload.get("description"),
                payload.get("unit") or "",
                to_cents(payload["price_ht"]),
                payload["vat_rate"] if payload.get("vat_rate") is not None else 19.0,
                payload.get("currency") or "TND",
                int(payload.get("is_active", True)),
            ),
        )
        await self._db.conn.commit()
        logger.info("product_created", product_id=product_id, sku=sku)
        return await self.get_product(user_id, product_id), False

    async def get_product(self, user_id: str, product_id: str) -> dict[str, Any]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM products WHERE id = ? AND user_id = ?",
            (product_id, user_id),
        )
        row = await cursor.fetchone()
        if row is None:
            raise DomainError(f"Produit introuvable: {product_id}")
        return dict(row)

    async def search_products(self, user_id: str, query: str, limit: int = 5) -> list[dict[str, Any]]:
        pattern = f"%{query.strip().lower()}%"
        cursor = await self._db.conn.execute(
            """SELECT * FROM products
               WHERE user_id = ? AND is_active = 1
                 AND (lower(name) LIKE ? OR lower(sku) LIKE ?)
               ORDER BY name
               LIMIT ?""",
            (user_id, pattern, pattern, limit),
        )
        return [dict(row) for row in await cursor.fetchall()]

    async def _find_product_by_sku(self, user_id: str, sku: str) -> Optional[dict[str, Any]]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM products WHERE user_id = ? AND sku = ?",
            (user_id, sku),
        )
        row = await cursor.fetchone()
        return dict(row) if row is not None else None

    # ── quotes and invoices ──────────────────────────────────

    async def create_document(
        self, user_id: str, kind: DocumentKind, payload: dict[str, Any]
    ) -> dict[str, Any]:
        client = await self.get_client(user_id, payload["client_id"])
        lines = []
        for line in payload["lines"]:
            product = None
            if line.get("product_id"):
                product = await self.get_product(user_id, line["product_id"])
            description = line.get("description") or (product["name"] if product else None)
            if not description:
                raise DomainError("Chaque ligne doit avoir une description ou un produit.")
            unit_price = line.get("unit_price")
            if unit_price is None:
                if product is None:
                    raise DomainError(f"Prix unitaire manquant pour la ligne « {description} ».")
                unit_price = from_cents(product["price_ht_cents"])
            vat_rate = line.get("vat_rate")
            if vat_rate is None:
                vat_rate = product["vat_rate"] if product else 19.0
            lines.append(
                {
                    "product_id": line.get("product_id"),
                    "description": description,
                    "quantity": line["quantity"],
                    "unit_price": unit_price,
                    "vat_rate": vat_rate,
                    "discount_rate": line.get("discount_rate") or 0.0,
                }
            )

        total_ht, total_tva = compute_totals(lines)
        timbre = 0.0
        if payload.get("apply_timbre", True):
            timbre = payload["timbre_amount"] if payload.get("timbre_amount") is not None else DEFAULT_TIMBRE_AMOUNT
        total_ttc = total_ht + total_tva + timbre

        document_id = uuid.uuid4().hex
        number = await self._next_number(user_id, kind, payload.get("issue_date"))
        currency = payload.get("currency") or "TND"
        await self._db.conn.execute(
            """INSERT INTO documents
               (id, user_id, kind, number, client_id, status, currency,
                total_ht_cents, total_ttc_cents, lines_json)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                document_id,
                user_id,
                kind.value,
                number,
                client["id"],
                payload.get("status") or "BROUILLON",
                currency,
                to_cents(total_ht),
                to_cents(total_ttc),
                json.dumps(lines, ensure_ascii=False),
            ),
        )
        await self._db.conn.commit()
        logger.info("document_created", kind=kind.value, document_id=document_id, number=number)
        document = await self.get_document(user_id, document_id)
        document["client_name"] = client["display_name"]
        document["timbre"] = timbre
        return document

    async def get_document(self, user_id: str, document_id: str) -> dict[str, Any]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM documents WHERE id = ? AND user_id = ?",
            (document_id, user_id),
        )
        row = await cursor.fetchone()
        if row is None:
            raise DomainError(f"Document introuvable: {document_id}")
        document = dict(row)
        document["lines"] = json.loads(document.pop("lines_json"))
        return document

    async def _next_number(self, user_id: str, kind: DocumentKind, issue_date: Optional[str]) -> str:
        year = _year_of(issue_date)
        prefix = f"{_NUMBER_PREFIX[kind]}-{year}-"
        cursor = await self._db.conn.execute(
            "SELECT count(*) FROM documents WHERE user_id = ? AND kind = ? AND number LIKE ?",
            (user_id, kind.value, f"{prefix}%"),
        )
        row = await cursor.fetchone()
        return f"{prefix}{row[0] + 1:04d}"


def compute_totals(lines: list[dict[str, Any]]) -> tuple[float, float]:
    """Return ``(total_ht, total_tva)`` for normalized document lines."""
    total_ht = 0.0
    total_tva = 0.0
    for line in lines:
        line_ht = line["quantity"] * line["unit_price"] * (1 - (line.get("discount_rate") or 0.0) / 100)
        total_ht += line_ht
        total_tva += line_ht * (line.get("vat_rate") or 0.0) / 100
    return round(total_ht, 2), round(total_tva, 2)


def _sku_from_name(name: str) -> str:
    slug = "".join(char if char.isalnum() else "-" for char in name.upper())
    return "-".join(part for part in slug.split("-") if part)[:32] or uuid.uuid4().hex[:8].upper()


def _year_of(issue_date: Optional[str]) -> int:
    if issue_date:
        try:
            return datetime.fromisoformat(issue_date).year
        except ValueError:
            pass
    return utcnow().year
