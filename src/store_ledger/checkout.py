"""Checkout: turn the current cart into an immutable sale record.

The record and the stock it consumes are committed in one unit of work. Every
check (cart not empty, valid payment, products still present with enough
stock) runs before anything is mutated, so a rejected checkout leaves the cart,
the catalog, and the ledger exactly as they were.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from . import log
from .cart import cart_total
from .catalog import apply_stock_delta, get_product
from .constants import PARTIAL_SUFFIX, PaymentLabel
from .core_logic import (
    EmptyCartError,
    InsufficientStockError,
    LedgerStore,
    generate_record_id,
    require_nonnegative_money,
    require_text,
    resolve_timestamp,
    unit_of_work,
)
from .data_manager import SaleRecord


@dataclass(frozen=True)
class CheckoutCommand:
    """User intent for finalizing the cart."""

    payment_method: str
    amount_paid: Any
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


def derive_payment_label(method: str, amount_paid: Decimal, total: Decimal) -> str:
    """Describe how the sale was paid.

    Nothing tendered is ``"Credit"``; less than the total appends
    ``"(Partial)"`` to the method; otherwise the method is kept as given.
    """

    if amount_paid == Decimal("0"):
        return PaymentLabel.CREDIT.value
    if amount_paid < total:
        return f"{method} {PARTIAL_SUFFIX}"
    return method


def resolve_customer_name(store: LedgerStore, customer_name: Optional[str]) -> str:
    return (customer_name or "").strip() or store.settings.walk_in_customer


def quantities_by_product(store: LedgerStore) -> Dict[str, int]:
    """Sum cart quantities per product id, in first-seen order.

    Lines for the same product at different prices are combined because they
    draw on the same stock.
    """

    totals: Dict[str, int] = OrderedDict()
    for line in store.cart:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def build_sale_record(
    store: LedgerStore,
    command: CheckoutCommand,
    *,
    amount_paid: Decimal,
    method: str,
    sale_id: str,
    timestamp: datetime,
) -> SaleRecord:
    """Snapshot the cart into a :class:`SaleRecord` without mutating anything."""

    total = cart_total(store)
    return SaleRecord(
        sale_id=sale_id,
        date=timestamp,
        items=tuple(store.cart),
        total=total,
        amount_paid=amount_paid,
        payment_method=derive_payment_label(method, amount_paid, total),
        customer_name=resolve_customer_name(store, command.customer_name),
        notes=(command.notes or "").strip() or None,
    )


def checkout(store: LedgerStore, command: CheckoutCommand) -> SaleRecord:
    """Finalize the cart into a sale, decrement stock, and clear the cart.

    Args:
        store (LedgerStore): Store holding cart, catalog, and ledger.
        command (CheckoutCommand): Payment and customer details.

    Returns:
        SaleRecord: The committed sale.

    Raises:
        EmptyCartError: If the cart has no lines.
        ValidationError: If the payment method is blank or the amount paid is
            negative or not a number.
        MissingReferenceError: If a product in the cart was deleted.
        InsufficientStockError: If the combined quantity of any product now
            exceeds its stock.
    """

    if not store.cart:
        log.warning("Checkout rejected: cart is empty")
        raise EmptyCartError("Cart is empty")
    method = require_text(command.payment_method, label="Payment method")
    amount_paid = require_nonnegative_money(command.amount_paid, label="Amount paid")

    demand = quantities_by_product(store)
    for product_id, quantity in demand.items():
        product = get_product(store, product_id)
        if quantity > product.stock:
            log.warning(
                "Checkout rejected: %d x '%s' requested, %d in stock",
                quantity,
                product.sku,
                product.stock,
            )
            raise InsufficientStockError(f"Insufficient stock for {product.name}")

    timestamp = resolve_timestamp(command.timestamp)
    record = build_sale_record(
        store,
        command,
        amount_paid=amount_paid,
        method=method,
        sale_id=generate_record_id(store, prefix="S", when=timestamp),
        timestamp=timestamp,
    )

    with unit_of_work(store, "checkout"):
        store.sales.append(record)
        for product_id, quantity in demand.items():
            apply_stock_delta(store, product_id, -quantity)
        store.cart.clear()

    log.info(
        "Recorded sale '%s' for '%s' (lines=%d, total=%s, paid=%s, method=%s)",
        record.sale_id,
        record.customer_name,
        len(record.items),
        record.total,
        record.amount_paid,
        record.payment_method,
    )
    return record
