"""Runtime store and shared rules for the store ledger engine.

The :class:`LedgerStore` is the explicit object every engine function takes as
its first argument. It bundles the configuration, the live workbook, and the
in-memory catalog, cart, sale ledger, and user directory loaded from it.
Nothing in the package keeps hidden global state.

Mutations run inside :func:`unit_of_work`, which snapshots the mutable
collections, serializes callers through the store lock, and restores the
snapshot when the block raises. A sale record and the stock movement it
implies therefore always land together or not at all.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION


class ValidationError(ValueError):
    """Raised when input has the wrong shape or range; never mutates state."""


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product or sale is unknown."""


class DuplicateSkuError(BusinessRuleViolation):
    """Raised when a new product reuses an existing SKU."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a request would take more units than are on hand."""


class EmptyCartError(BusinessRuleViolation):
    """Raised when checkout is attempted without any cart lines."""


class InvalidOperationError(BusinessRuleViolation):
    """Raised when an operation is not allowed against the targeted record."""


class AuthorizationError(Exception):
    """Raised when a destructive operation fails the authorization check."""


@dataclass(frozen=True)
class LedgerStore:
    """Container for configuration, workbook, and the live engine state.

    The collections are mutable and owned by the store: ``products`` maps
    product ids to rows in catalog order, ``sales`` keeps records in the order
    they were committed.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    products: Dict[str, data_manager.ProductRow] = field(default_factory=dict)
    cart: List[data_manager.CartLine] = field(default_factory=list)
    sales: List[data_manager.SaleRecord] = field(default_factory=list)
    users: List[data_manager.UserRow] = field(default_factory=list)
    _lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``.

    Naive timestamps are taken to be UTC, the same rule applied to dates read
    back from the workbook, so every stored record compares with every other.
    """

    if candidate is None:
        return datetime.now(UTC)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=UTC)
    return candidate


def load_store(config_path: Optional[Path] = None) -> LedgerStore:
    """Load configuration and workbook state into a fresh :class:`LedgerStore`.

    Args:
        config_path (Path | None): Optional override for ``config.ini``. When
            omitted the data layer searches upward from the working directory.

    Returns:
        LedgerStore: Store populated from every persisted sheet.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    store = build_store(settings, workbook)
    log.info("Loaded ledger store from workbook '%s'", settings.data_file)
    return store


def build_store(settings: data_manager.ConfigSettings, workbook: Workbook) -> LedgerStore:
    """Materialize a store from an already opened workbook."""

    products = {product.product_id: product for product in data_manager.iter_products(workbook)}
    store = LedgerStore(
        settings=settings,
        workbook=workbook,
        products=products,
        cart=list(data_manager.iter_cart(workbook)),
        sales=list(data_manager.iter_sales(workbook)),
        users=list(data_manager.iter_users(workbook)),
    )
    log.debug(
        "Store holds %d products, %d cart lines, %d sales, %d users",
        len(store.products),
        len(store.cart),
        len(store.sales),
        len(store.users),
    )
    return store


def ensure_schema_version(store: LedgerStore) -> None:
    """Refuse to operate on a workbook declared with another schema version.

    Raises:
        RuntimeError: If the configured version differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if store.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            store.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, store.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", store.settings.schema_version)


def persist_store(store: LedgerStore) -> None:
    """Write every collection back to its sheet and save the workbook."""
    with store._lock:
        data_manager.write_products(store.workbook, store.products.values())
        data_manager.write_cart(store.workbook, store.cart)
        data_manager.write_sales(store.workbook, store.sales)
        data_manager.write_users(store.workbook, store.users)
        data_manager.save_workbook(store.workbook, destination=store.settings.data_file)
    log.info("Persisted workbook '%s'", store.settings.data_file)


def reload_store(store: LedgerStore) -> LedgerStore:
    """Discard unsaved changes by reopening the workbook from disk.

    Returns:
        LedgerStore: New store sharing the settings of ``store``.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(store.settings.data_file)
    log.info("Reloaded workbook '%s'", store.settings.data_file)
    return build_store(store.settings, workbook)


@contextmanager
def unit_of_work(store: LedgerStore, action: str) -> Iterator[LedgerStore]:
    """Run a block of mutations atomically against ``store``.

    The catalog, cart, and sale ledger are snapshotted on entry. If the block
    raises, all three are restored before the exception propagates. On
    success the workbook is saved when ``AutoSave`` is enabled.

    Args:
        store (LedgerStore): Store being mutated.
        action (str): Short label used in log messages.

    Yields:
        LedgerStore: The same store, for convenience.
    """
    with store._lock:
        products = dict(store.products)
        cart = list(store.cart)
        sales = list(store.sales)
        try:
            yield store
        except BaseException:
            store.products.clear()
            store.products.update(products)
            store.cart[:] = cart
            store.sales[:] = sales
            log.error("Rolled back '%s'; store restored to its previous state", action)
            raise
        log.debug("Committed '%s'", action)
        if store.settings.auto_save:
            persist_store(store)


def generate_record_id(store: LedgerStore, *, prefix: str = "S", when: Optional[datetime] = None) -> str:
    """Generate a sortable, unique sale or refund identifier.

    The identifier is ``{prefix}{YYYYMMDDHHMMSSffffff}``; when a record with
    the same id already exists a ``-N`` suffix is appended.

    Args:
        store (LedgerStore): Store whose ledger must not already hold the id.
        prefix (str): ``"S"`` for sales, ``"R"`` for refunds.
        when (datetime | None): Timestamp to encode; defaults to now (UTC).

    Returns:
        str: Identifier unique within ``store.sales``.
    """
    when = when or resolve_timestamp(None)
    base = f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"
    taken = {sale.sale_id for sale in store.sales}
    candidate = base
    suffix = 1
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def require_positive_quantity(quantity: Any) -> int:
    """Validate that a quantity is a strictly positive integer.

    Returns:
        int: The validated quantity.

    Raises:
        ValidationError: If ``quantity`` is not an ``int`` or is below one.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r is not an integer", quantity)
        raise ValidationError("Quantity must be a whole number")
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be greater than zero")
    return quantity


def require_nonnegative_money(amount: Any, *, label: str = "Amount") -> Decimal:
    """Validate and normalize a monetary value that must not be negative.

    Returns:
        Decimal: ``amount`` quantized to cents.

    Raises:
        ValidationError: If ``amount`` is not a finite number or is negative.
    """
    try:
        value = data_manager.quantize_money(amount)
    except ValueError as exc:
        log.error("%s validation failed: %r", label, amount)
        raise ValidationError(f"{label} must be a number") from exc
    if value < Decimal("0"):
        log.error("%s validation failed: %s", label, value)
        raise ValidationError(f"{label} must be zero or positive")
    return value


def require_text(value: Optional[str], *, label: str) -> str:
    """Return ``value`` stripped, rejecting blank input.

    Raises:
        ValidationError: If ``value`` is ``None`` or only whitespace.
    """
    text = (value or "").strip()
    if not text:
        log.error("%s validation failed: value is blank", label)
        raise ValidationError(f"{label} is required")
    return text
