"""Product catalog: lookup, registration, stock movements, and deletion.

The catalog is the sole owner of ``ProductRow.stock``. Checkout and the
correction processor move stock through :func:`apply_stock_delta` inside
their own unit of work; everything else goes through :func:`adjust_stock`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional

from . import log
from .auth import Authorizer, require_authorization
from .core_logic import (
    DuplicateSkuError,
    InsufficientStockError,
    LedgerStore,
    MissingReferenceError,
    ValidationError,
    require_nonnegative_money,
    require_text,
    unit_of_work,
)
from .data_manager import ProductRow


@dataclass(frozen=True)
class ProductDraft:
    """User intent for registering a new product."""

    sku: str
    name: str
    category: str
    price: Decimal
    stock: int
    image_url: Optional[str] = None


def _normalize_sku(sku: str) -> str:
    return (sku or "").strip().casefold()


def _generate_product_id(store: LedgerStore) -> str:
    while True:
        candidate = f"P{uuid.uuid4().hex[:8].upper()}"
        if candidate not in store.products:
            return candidate


def list_products(store: LedgerStore) -> List[ProductRow]:
    """Return the catalog in insertion order."""

    return list(store.products.values())


def get_product(store: LedgerStore, product_id: str) -> ProductRow:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If ``product_id`` is not in the catalog.
    """

    try:
        return store.products[product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def find_by_sku(store: LedgerStore, sku: str) -> Optional[ProductRow]:
    """Return the product whose SKU matches ``sku`` ignoring case, if any."""

    wanted = _normalize_sku(sku)
    if not wanted:
        return None
    for product in store.products.values():
        if _normalize_sku(product.sku) == wanted:
            return product
    return None


def search_products(store: LedgerStore, term: str = "", category: Optional[str] = None) -> List[ProductRow]:
    """Filter the catalog by a name/SKU substring and an optional category.

    Matching on ``term`` is a case-insensitive substring test against both the
    product name and the SKU. ``category`` must match exactly; ``None`` or
    ``"All"`` disables the category filter.
    """

    needle = (term or "").strip().casefold()
    results = []
    for product in store.products.values():
        if needle and needle not in product.name.casefold() and needle not in product.sku.casefold():
            continue
        if category not in (None, "All") and product.category != category:
            continue
        results.append(product)
    return results


def list_categories(store: LedgerStore) -> List[str]:
    return sorted({product.category for product in store.products.values()})


def low_stock_products(store: LedgerStore, threshold: Optional[int] = None) -> List[ProductRow]:
    """Return products whose stock is strictly below ``threshold``.

    The threshold defaults to ``LowStockThreshold`` from the configuration.
    """

    limit = store.settings.low_stock_threshold if threshold is None else threshold
    return [product for product in store.products.values() if product.stock < limit]


def add_product(store: LedgerStore, draft: ProductDraft) -> ProductRow:
    """Validate ``draft`` and register it under a freshly generated id.

    Args:
        store (LedgerStore): Store whose catalog receives the product.
        draft (ProductDraft): Fields supplied by the operator.

    Returns:
        ProductRow: The stored product.

    Raises:
        ValidationError: If a text field is blank, the price is negative, or
            the stock is not a non-negative integer.
        DuplicateSkuError: If the SKU already exists, ignoring case.
    """

    sku = require_text(draft.sku, label="SKU")
    name = require_text(draft.name, label="Product name")
    category = require_text(draft.category, label="Category")
    price = require_nonnegative_money(draft.price, label="Price")
    if isinstance(draft.stock, bool) or not isinstance(draft.stock, int) or draft.stock < 0:
        log.error("Stock validation failed for SKU '%s': %r", sku, draft.stock)
        raise ValidationError("Initial stock must be a non-negative whole number")

    existing = find_by_sku(store, sku)
    if existing is not None:
        log.warning("Rejected duplicate SKU '%s' (already used by '%s')", sku, existing.product_id)
        raise DuplicateSkuError(f"SKU already exists: {existing.sku}")

    image_url = (draft.image_url or "").strip() or None
    with unit_of_work(store, "add product"):
        product = ProductRow(
            product_id=_generate_product_id(store),
            sku=sku,
            name=name,
            category=category,
            price=price,
            stock=draft.stock,
            image_url=image_url,
        )
        store.products[product.product_id] = product
    log.info("Added product '%s' (sku=%s, price=%s, stock=%s)", product.product_id, sku, price, draft.stock)
    return product


def apply_stock_delta(store: LedgerStore, product_id: str, delta: int) -> ProductRow:
    """Apply ``stock += delta`` without opening a unit of work.

    Callers must already hold a unit of work. Decrements are checked before
    the row is replaced; increments are always allowed.

    Raises:
        MissingReferenceError: If the product does not exist.
        InsufficientStockError: If a decrement would make stock negative.
    """

    product = get_product(store, product_id)
    new_stock = product.stock + delta
    if delta < 0 and new_stock < 0:
        log.warning(
            "Stock for '%s' cannot drop by %d (on hand: %d)",
            product_id,
            -delta,
            product.stock,
        )
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}: {product.stock} on hand, {-delta} requested"
        )
    updated = replace(product, stock=new_stock)
    store.products[product_id] = updated
    return updated


def adjust_stock(store: LedgerStore, product_id: str, delta: int) -> ProductRow:
    """Adjust a product's stock by ``delta`` as a committed operation."""

    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("Stock adjustment must be a whole number")
    with unit_of_work(store, "adjust stock"):
        updated = apply_stock_delta(store, product_id, delta)
    log.info("Adjusted stock for '%s' by %+d (now %d)", product_id, delta, updated.stock)
    return updated


def remove_product(store: LedgerStore, product_id: str, *, authorizer: Authorizer, secret: Optional[str]) -> ProductRow:
    """Delete a product after an authorization check.

    Historical sale records keep their own snapshots and are left untouched.

    Raises:
        AuthorizationError: If ``secret`` is rejected; nothing is deleted.
        MissingReferenceError: If the product does not exist.
    """

    require_authorization(authorizer, secret, action="delete a product")
    product = get_product(store, product_id)
    with unit_of_work(store, "remove product"):
        del store.products[product_id]
    log.info("Removed product '%s' (sku=%s)", product_id, product.sku)
    return product
