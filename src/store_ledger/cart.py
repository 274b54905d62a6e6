"""Cart aggregation ahead of checkout.

Lines snapshot the product and fix their effective unit price when they are
created: the operator's override and discount percent when given, otherwise
the catalog price with the bulk discount once the line quantity reaches
``BULK_DISCOUNT_THRESHOLD``. Adding the same product at the same effective
price merges quantities; a different price starts a new line so each discount
keeps its own provenance.

The cart does not reserve stock. The stock guard compares against the static
catalog quantity, and checkout re-checks the aggregate before committing.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from . import log
from .catalog import find_by_sku
from .constants import BULK_DISCOUNT_RATE, BULK_DISCOUNT_THRESHOLD
from .core_logic import (
    InsufficientStockError,
    LedgerStore,
    MissingReferenceError,
    ValidationError,
    require_nonnegative_money,
    require_positive_quantity,
    unit_of_work,
)
from .data_manager import CartLine, ProductRow, quantize_money


def _discount_fraction(discount_percent: Any) -> Decimal:
    try:
        percent = Decimal(str(discount_percent).strip())
    except InvalidOperation as exc:
        log.error("Discount validation failed: %r is not a number", discount_percent)
        raise ValidationError("Discount percent must be a number") from exc
    if not percent.is_finite() or not Decimal("0") <= percent <= Decimal("100"):
        log.error("Discount validation failed: %s", discount_percent)
        raise ValidationError("Discount percent must be between 0 and 100")
    return percent / Decimal("100")


def effective_unit_price(
    product: ProductRow,
    quantity: int,
    price_override: Optional[Any] = None,
    discount_percent: Optional[Any] = None,
) -> Decimal:
    """Return the unit price a new line for ``product`` would carry.

    A manual override replaces the catalog price. An operator discount percent
    is then taken off whichever base applies. Either manual input disables the
    bulk discount; without one, the catalog price gets ``BULK_DISCOUNT_RATE``
    off when ``quantity`` reaches the bulk threshold.
    """

    if price_override is not None:
        base = require_nonnegative_money(price_override, label="Price override")
    else:
        base = product.price
    if discount_percent is not None:
        return quantize_money(base * (Decimal("1") - _discount_fraction(discount_percent)))
    if price_override is not None:
        return base
    if quantity >= BULK_DISCOUNT_THRESHOLD:
        return quantize_money(product.price * (Decimal("1") - BULK_DISCOUNT_RATE))
    return product.price


def list_lines(store: LedgerStore) -> List[CartLine]:
    return list(store.cart)


def cart_total(store: LedgerStore) -> Decimal:
    """Sum ``price * quantity`` over every cart line."""

    return sum((line.subtotal for line in store.cart), Decimal("0.00"))


def add_line(
    store: LedgerStore,
    product: ProductRow,
    quantity: int,
    price_override: Optional[Any] = None,
    discount_percent: Optional[Any] = None,
) -> CartLine:
    """Add ``quantity`` units of ``product`` to the cart.

    Args:
        store (LedgerStore): Store holding the cart.
        product (ProductRow): Catalog product being sold.
        quantity (int): Units to add; must be a positive integer.
        price_override (Any | None): Manual unit price replacing the catalog
            price and disabling the bulk discount.
        discount_percent (Any | None): Operator discount, 0 to 100, taken off
            the unit price in place of the bulk discount.

    Returns:
        CartLine: The new or merged line.

    Raises:
        ValidationError: If the quantity, override or discount is invalid.
        InsufficientStockError: If ``quantity`` exceeds the catalog stock.
    """

    require_positive_quantity(quantity)
    price = effective_unit_price(product, quantity, price_override, discount_percent)
    if quantity > product.stock:
        log.warning(
            "Cannot add %d x '%s' to cart: only %d in stock",
            quantity,
            product.sku,
            product.stock,
        )
        raise InsufficientStockError(f"Insufficient stock for {product.name}")

    with unit_of_work(store, "add cart line"):
        for index, line in enumerate(store.cart):
            if line.product_id == product.product_id and line.price == price:
                merged = replace(line, quantity=line.quantity + quantity)
                store.cart[index] = merged
                log.info("Merged %d x '%s' into cart line %d @ %s", quantity, product.sku, index, price)
                return merged

        line = CartLine(
            product_id=product.product_id,
            sku=product.sku,
            name=product.name,
            category=product.category,
            price=price,
            quantity=quantity,
            image_url=product.image_url,
        )
        store.cart.append(line)
    log.info("Added %d x '%s' to cart @ %s", quantity, product.sku, price)
    return line


def add_by_sku(
    store: LedgerStore,
    sku: str,
    quantity: int,
    price_override: Optional[Any] = None,
    discount_percent: Optional[Any] = None,
) -> CartLine:
    """Scanner path: resolve ``sku`` case-insensitively, then :func:`add_line`.

    Raises:
        MissingReferenceError: If no product carries ``sku``.
    """

    product = find_by_sku(store, sku)
    if product is None:
        log.warning("Scan rejected: no product with SKU '%s'", sku)
        raise MissingReferenceError(f"Product not found (SKU: {sku})")
    return add_line(store, product, quantity, price_override, discount_percent)


def remove_line(store: LedgerStore, index: int) -> CartLine:
    """Remove and return the cart line at ``index``.

    Raises:
        ValidationError: If ``index`` does not address an existing line.
    """

    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(store.cart):
        log.error("Cart line index %r out of range (cart has %d lines)", index, len(store.cart))
        raise ValidationError(f"No cart line at position {index}")
    with unit_of_work(store, "remove cart line"):
        line = store.cart.pop(index)
    log.info("Removed cart line %d (%d x '%s')", index, line.quantity, line.sku)
    return line


def clear_cart(store: LedgerStore) -> None:
    with unit_of_work(store, "clear cart"):
        store.cart.clear()
