"""Corrections: voiding a sale and processing item returns.

Both operations are gated by an :class:`~store_ledger.auth.Authorizer` and run
as a single unit of work, but they deliberately differ:

* A void is a hard rollback of an erroneous sale. Every item goes back on the
  shelf and the record disappears from the ledger.
* A return is a permanent correction. The original sale stays untouched and a
  new refund record with negative totals offsets it.

Stock restoration targets products by id. If a product has since been deleted
the restoration for that line is skipped; it is not an error.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from . import log
from .auth import Authorizer, require_authorization
from .catalog import apply_stock_delta
from .constants import UNKNOWN_CUSTOMER, PaymentLabel
from .core_logic import (
    InvalidOperationError,
    LedgerStore,
    MissingReferenceError,
    ValidationError,
    generate_record_id,
    require_positive_quantity,
    require_text,
    resolve_timestamp,
    unit_of_work,
)
from .data_manager import CartLine, SaleRecord, quantize_money


@dataclass(frozen=True)
class VoidCommand:
    """User intent for voiding a committed sale."""

    sale_id: str


@dataclass(frozen=True)
class ReturnCommand:
    """User intent for returning part of a sold line."""

    original_sale_id: str
    item: CartLine
    quantity: int
    reason: str
    timestamp: Optional[datetime] = None


def find_sale(store: LedgerStore, sale_id: str) -> Optional[SaleRecord]:
    for record in store.sales:
        if record.sale_id == sale_id:
            return record
    return None


def get_sale(store: LedgerStore, sale_id: str) -> SaleRecord:
    """Resolve a sale record by id.

    Raises:
        MissingReferenceError: If no record carries ``sale_id``.
    """
    record = find_sale(store, sale_id)
    if record is None:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise MissingReferenceError(f"Unknown sale id: {sale_id}")
    return record


def restore_stock(store: LedgerStore, product_id: str, quantity: int) -> bool:
    """Put ``quantity`` units back; returns ``False`` if the product is gone.

    Must be called inside a unit of work.
    """
    if product_id not in store.products:
        log.warning(
            "Product '%s' no longer exists; skipping restoration of %d units",
            product_id,
            quantity,
        )
        return False
    apply_stock_delta(store, product_id, quantity)
    return True


def void_sale(store: LedgerStore, command: VoidCommand, *, authorizer: Authorizer, secret: Optional[str]) -> SaleRecord:
    """Reverse a sale completely: restore its stock and delete the record.

    Args:
        store (LedgerStore): Store holding the ledger and catalog.
        command (VoidCommand): Identifies the sale to void.
        authorizer (Authorizer): Capability vouching for ``secret``.
        secret (str | None): Admin secret supplied by the operator.

    Returns:
        SaleRecord: The record that was removed.

    Raises:
        AuthorizationError: If the secret is rejected; nothing changes.
        MissingReferenceError: If the sale does not exist; nothing changes.
    """
    require_authorization(authorizer, secret, action="void a sale")
    record = get_sale(store, command.sale_id)
    if record.payment_method == PaymentLabel.REFUND.value:
        # The return already restocked these units; voiding its refund adds them again.
        log.warning(
            "Voiding refund '%s' restocks its %d line(s) a second time",
            record.sale_id,
            len(record.items),
        )

    with unit_of_work(store, "void sale"):
        for item in record.items:
            restore_stock(store, item.product_id, item.quantity)
        store.sales.remove(record)

    log.info(
        "Voided sale '%s' for '%s' (total=%s, lines=%d)",
        record.sale_id,
        record.customer_name,
        record.total,
        len(record.items),
    )
    return record


def build_refund_record(
    store: LedgerStore,
    command: ReturnCommand,
    *,
    original: Optional[SaleRecord],
    reason: str,
    timestamp: datetime,
) -> SaleRecord:
    """Create the negative sale that offsets the returned units."""
    refund_total = quantize_money(-(command.item.price * command.quantity))
    return SaleRecord(
        sale_id=generate_record_id(store, prefix="R", when=timestamp),
        date=timestamp,
        items=(replace(command.item, quantity=command.quantity),),
        total=refund_total,
        amount_paid=refund_total,
        payment_method=PaymentLabel.REFUND.value,
        customer_name=original.customer_name if original is not None else UNKNOWN_CUSTOMER,
        notes=(
            f"RETURN: {command.quantity}x {command.item.name} from Sale "
            f"#{command.original_sale_id}. Reason: {reason}"
        ),
    )


def process_return(store: LedgerStore, command: ReturnCommand, *, authorizer: Authorizer, secret: Optional[str]) -> SaleRecord:
    """Accept returned units: restock them and append a refund record.

    Refunds are only accepted against a forward sale (positive total). If the
    original sale can no longer be found the return still goes through and
    the refund is booked against ``UNKNOWN_CUSTOMER``.

    Args:
        store (LedgerStore): Store holding the ledger and catalog.
        command (ReturnCommand): Original sale, sold line, quantity, reason.
        authorizer (Authorizer): Capability vouching for ``secret``.
        secret (str | None): Admin secret supplied by the operator.

    Returns:
        SaleRecord: The refund record.

    Raises:
        AuthorizationError: If the secret is rejected; nothing changes.
        ValidationError: If the quantity is not within ``1..item.quantity``,
            the reason is blank, or the item is not part of the original sale.
        InvalidOperationError: If the original sale is itself a refund or has
            a non-positive total.
    """
    require_authorization(authorizer, secret, action="process a return")
    require_positive_quantity(command.quantity)
    if command.quantity > command.item.quantity:
        log.error(
            "Return of %d x '%s' exceeds the %d sold",
            command.quantity,
            command.item.sku,
            command.item.quantity,
        )
        raise ValidationError("Return quantity exceeds the quantity sold")
    reason = require_text(command.reason, label="Return reason")

    original = find_sale(store, command.original_sale_id)
    if original is None:
        log.warning(
            "Original sale '%s' not found; refund will be booked to '%s'",
            command.original_sale_id,
            UNKNOWN_CUSTOMER,
        )
    else:
        if original.total <= Decimal("0"):
            log.error("Refusing return against non-forward sale '%s'", original.sale_id)
            raise InvalidOperationError(
                f"Sale {original.sale_id} is not a forward sale and cannot take a return"
            )
        if command.item not in original.items:
            log.error("Item '%s' is not part of sale '%s'", command.item.sku, original.sale_id)
            raise ValidationError(f"Item {command.item.sku} was not sold in sale {original.sale_id}")

    timestamp = resolve_timestamp(command.timestamp)
    with unit_of_work(store, "process return"):
        restore_stock(store, command.item.product_id, command.quantity)
        refund = build_refund_record(store, command, original=original, reason=reason, timestamp=timestamp)
        store.sales.append(refund)

    log.info(
        "Recorded refund '%s' for %d x '%s' from sale '%s' (total=%s)",
        refund.sale_id,
        command.quantity,
        command.item.sku,
        command.original_sale_id,
        refund.total,
    )
    return refund
