from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from invoicing.errors import PersistenceError, ValidationError
from invoicing.models.common import to_decimal
from invoicing.models.identity import Identity
from invoicing.models.invoice import DraftLineItem
from invoicing.models.product import Product
from invoicing.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


class ProductService:
    """
    Catalogue produits (aide à la saisie, sans lien direct avec les factures).
    - Normalise: unit_price décimal >= 0 (accepte "18,50", "price", "unitPrice")
    - Hydrate JSON -> Product, en ignorant les entrées invalides
    """

    def __init__(self, store: DocumentStore) -> None:
        self.collection = store.products

    # ---------- Helpers ---------- #

    @staticmethod
    def _parse_price(payload: Dict[str, Any]) -> Decimal:
        for k in ("unit_price", "unitPrice", "price"):
            if payload.get(k) not in (None, ""):
                return max(Decimal("0"), to_decimal(payload[k]))
        return Decimal("0")

    def _ensure_defaults(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        out = {k: v for k, v in payload.items() if k not in ("unitPrice", "price")}
        out["unit_price"] = self._parse_price(payload)
        if out.get("description") is None:
            out["description"] = ""
        if out.get("tax_rate") == "":
            out["tax_rate"] = None
        return out

    @staticmethod
    def _hydrate_list(rows: Iterable[Dict[str, Any]]) -> List[Product]:
        out: List[Product] = []
        for d in rows:
            try:
                out.append(Product.model_validate(d))
            except PydanticValidationError:
                logger.warning("Skipping invalid product record %s", d.get("id"))
        return out

    # ---------- CRUD ---------- #

    def list_products(self, identity: Identity) -> List[Product]:
        return self._hydrate_list(self.collection.list(identity.user_id))

    def get_product(self, identity: Identity, product_id: str) -> Optional[Product]:
        row = self.collection.get(product_id, owner_id=identity.user_id)
        found = self._hydrate_list([row] if row else [])
        return found[0] if found else None

    def add_product(self, identity: Identity, data: Dict[str, Any]) -> Product:
        payload = self._ensure_defaults({**data, "owner_id": identity.user_id})
        try:
            product = Product.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e
        try:
            self.collection.create(product, owner_id=identity.user_id)
        except (OSError, ValueError) as e:
            raise PersistenceError("Could not save the product.") from e
        return product

    def update_product(self, identity: Identity, product: Product) -> Product:
        if product.owner_id != identity.user_id:
            raise ValidationError("product belongs to another user")
        try:
            self.collection.update(product.id, product, owner_id=identity.user_id)
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError("Could not update the product.") from e
        return product

    def delete_product(self, identity: Identity, product_id: str) -> bool:
        try:
            return self.collection.delete(product_id, owner_id=identity.user_id)
        except OSError as e:
            raise PersistenceError("Failed to delete product.") from e

    @staticmethod
    def to_line_item(product: Product, quantity: Decimal = Decimal("1")) -> DraftLineItem:
        """Pré-remplit une ligne de brouillon depuis le catalogue."""
        label = product.name if not product.description else f"{product.name} - {product.description}"
        return DraftLineItem(description=label, quantity=quantity, unit_price=product.unit_price)

    @asynccontextmanager
    async def subscribe(self, identity: Identity) -> AsyncIterator[AsyncIterator[List[Product]]]:
        async with self.collection.subscribe(identity.user_id) as snapshots:
            async def products() -> AsyncIterator[List[Product]]:
                async for rows in snapshots:
                    yield self._hydrate_list(rows)
            yield products()
