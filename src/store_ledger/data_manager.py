"""Data access layer for the store ledger.

This module owns every read and write against the master workbook. Business
rules live in the engine modules; nothing here decides whether a sale is
allowed, only how it is stored.

The public API covers three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, persisting, and reloading the Excel file.
3. Record mapping: typed records for products, cart lines, sales, and users,
   plus the serializers that translate them to and from worksheet rows.

Each persisted record lives on its own sheet and is always rewritten as a
whole, mirroring the single-key overwrite semantics of a key-value store.
"""


from __future__ import annotations

import configparser
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    CENTS,
    DEFAULT_LOW_STOCK_THRESHOLD,
    WALK_IN_CUSTOMER,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "SKU",
        "ProductName",
        "Category",
        "Price",
        "Stock",
        "ImageUrl",
    ],
    SheetName.CART.value: [
        "ProductID",
        "SKU",
        "ProductName",
        "Category",
        "UnitPrice",
        "Quantity",
        "ImageUrl",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "Date",
        "Total",
        "AmountPaid",
        "PaymentMethod",
        "CustomerName",
        "Notes",
    ],
    SheetName.SALE_ITEMS.value: [
        "SaleID",
        "LineNo",
        "ProductID",
        "SKU",
        "ProductName",
        "Category",
        "UnitPrice",
        "Quantity",
        "ImageUrl",
    ],
    SheetName.USERS.value: [
        "UserID",
        "FirstName",
        "LastName",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    auto_save: bool = False
    walk_in_customer: str = WALK_IN_CUSTOMER
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    admin_secret_hash: Optional[str] = None


@dataclass(frozen=True)
class ProductRow:
    """Catalog entry as stored on the ``Products`` sheet."""

    product_id: str
    sku: str
    name: str
    category: str
    price: Decimal
    stock: int
    image_url: Optional[str] = None


@dataclass(frozen=True)
class CartLine:
    """Product snapshot with the quantity and effective unit price being sold."""

    product_id: str
    sku: str
    name: str
    category: str
    price: Decimal
    quantity: int
    image_url: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class SaleRecord:
    """Immutable sale or refund as stored across ``Sales`` and ``SaleItems``."""

    sale_id: str
    date: datetime
    items: Tuple[CartLine, ...]
    total: Decimal
    amount_paid: Decimal
    payment_method: str
    customer_name: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class UserRow:
    """Entry of the user directory; carried along but unused by the ledger."""

    user_id: str
    first_name: str
    last_name: str


def quantize_money(amount: Any) -> Decimal:
    """Normalize a numeric value into a two-place :class:`~decimal.Decimal`.

    Args:
        amount (Any): ``Decimal``, ``int``, ``float`` or numeric string.

    Returns:
        Decimal: Value rounded half-up to cents.

    Raises:
        ValueError: If ``amount`` is not a finite number.
    """

    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Not a monetary amount: {amount!r}")
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls the data layer.

    An explicit path is returned as-is so callers can target a non-standard
    location. Otherwise the search walks from the current working directory
    toward the filesystem root and returns the first ``CONFIG_FILE_NAME`` that
    exists.

    Args:
        explicit_path (Path | None): Optional path to use instead of searching.

    Returns:
        Path: The provided path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in any parent.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser``.

    Args:
        config_path (Path): Path to the configuration file.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` and ``[Security]`` are
    optional and fall back to the package defaults. A relative ``DataFile`` is
    anchored to ``base_path`` (or the current working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor for relative ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings with a resolved data file path.

    Raises:
        KeyError: If a required entry is missing.
        ValueError: If ``AutoSave`` or ``LowStockThreshold`` cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    auto_save = parser.getboolean("System", "AutoSave", fallback=False)
    walk_in = parser.get("Defaults", "WalkInCustomer", fallback=WALK_IN_CUSTOMER).strip() or WALK_IN_CUSTOMER
    low_stock = parser.getint("Defaults", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD)
    secret_hash = parser.get("Security", "AdminSecretHash", fallback="").strip() or None

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        auto_save=auto_save,
        walk_in_customer=walk_in,
        low_stock_threshold=low_stock,
        admin_secret_hash=secret_hash,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: Loaded workbook instance.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def _data_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    """Yield the non-empty rows of ``sheet_name`` below the header."""

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield raw


def _replace_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> int:
    """Overwrite every data row of ``sheet_name`` with ``rows``.

    The header row is kept. Returns the number of rows written.
    """

    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    count = 0
    for row in rows:
        sheet.append(list(row))
        count += 1
    log.debug("Rewrote sheet '%s' with %d rows", sheet_name, count)
    return count


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over the ``Products`` sheet in row order."""

    for raw in _data_rows(workbook, SheetName.PRODUCTS.value):
        yield deserialize_product(raw)


def iter_cart(workbook: Workbook) -> Iterable[CartLine]:
    """Iterate over the persisted cart lines in row order."""

    for raw in _data_rows(workbook, SheetName.CART.value):
        yield deserialize_cart_line(raw)


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Iterate over the ``Users`` sheet in row order."""

    for raw in _data_rows(workbook, SheetName.USERS.value):
        yield deserialize_user(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRecord]:
    """Stream sale records, joining each header with its item rows.

    Item rows are grouped by ``SaleID`` and ordered by ``LineNo`` before being
    attached to the header from the ``Sales`` sheet. Headers keep sheet order.

    Args:
        workbook (Workbook): Workbook containing ``Sales`` and ``SaleItems``.

    Yields:
        SaleRecord: One immutable record per header row.
    """

    items_by_sale: Dict[str, List[Tuple[int, CartLine]]] = defaultdict(list)
    for raw in _data_rows(workbook, SheetName.SALE_ITEMS.value):
        sale_id, line_no, line = deserialize_sale_item(raw)
        items_by_sale[sale_id].append((line_no, line))

    for raw in _data_rows(workbook, SheetName.SALES.value):
        lines = sorted(items_by_sale.get(str(raw[0]), []), key=lambda entry: entry[0])
        yield deserialize_sale(raw, tuple(line for _, line in lines))


def write_products(workbook: Workbook, products: Iterable[ProductRow]) -> None:
    """Replace the ``Products`` sheet contents."""

    _replace_rows(workbook, SheetName.PRODUCTS.value, (serialize_product(p) for p in products))


def write_cart(workbook: Workbook, lines: Iterable[CartLine]) -> None:
    """Replace the ``Cart`` sheet contents."""

    _replace_rows(workbook, SheetName.CART.value, (serialize_cart_line(line) for line in lines))


def write_users(workbook: Workbook, users: Iterable[UserRow]) -> None:
    """Replace the ``Users`` sheet contents."""

    _replace_rows(workbook, SheetName.USERS.value, (serialize_user(user) for user in users))


def write_sales(workbook: Workbook, sales: Iterable[SaleRecord]) -> None:
    """Replace both the ``Sales`` headers and their ``SaleItems`` rows."""

    sales = list(sales)
    _replace_rows(workbook, SheetName.SALES.value, (serialize_sale(sale) for sale in sales))
    _replace_rows(
        workbook,
        SheetName.SALE_ITEMS.value,
        (row for sale in sales for row in serialize_sale_items(sale)),
    )


def serialize_product(record: ProductRow) -> list[object]:
    """Arrange a product in ``Products`` column order."""

    return [
        record.product_id,
        record.sku,
        record.name,
        record.category,
        record.price,
        record.stock,
        record.image_url,
    ]


def serialize_cart_line(line: CartLine) -> list[object]:
    """Arrange a cart line in ``Cart`` column order."""

    return [
        line.product_id,
        line.sku,
        line.name,
        line.category,
        line.price,
        line.quantity,
        line.image_url,
    ]


def serialize_sale(record: SaleRecord) -> list[object]:
    """Arrange a sale header in ``Sales`` column order."""

    return [
        record.sale_id,
        record.date.isoformat(),
        record.total,
        record.amount_paid,
        record.payment_method,
        record.customer_name,
        record.notes,
    ]


def serialize_sale_items(record: SaleRecord) -> list[list[object]]:
    """Produce one ``SaleItems`` row per line, numbered from 1."""

    return [
        [record.sale_id, line_no, *serialize_cart_line(line)]
        for line_no, line in enumerate(record.items, start=1)
    ]


def serialize_user(record: UserRow) -> list[object]:
    """Arrange a user in ``Users`` column order."""

    return [record.user_id, record.first_name, record.last_name]


def _optional_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _as_int(value: object) -> int:
    # Excel hands integers back as floats once a cell has been edited.
    return int(Decimal(str(value))) if value is not None else 0


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw ``Products`` row into a :class:`ProductRow`.

    Identifiers are coerced to ``str`` so numeric-looking SKUs survive Excel's
    type inference, and money is normalized to cents.
    """

    product_id, sku, name, category, price, stock, image_url = raw_row[:7]
    return ProductRow(
        product_id=str(product_id),
        sku=str(sku),
        name=str(name),
        category=str(category) if category is not None else "",
        price=quantize_money(price if price is not None else 0),
        stock=_as_int(stock),
        image_url=_optional_text(image_url),
    )


def deserialize_cart_line(raw_row: Sequence[object]) -> CartLine:
    """Convert a raw ``Cart`` row (or the tail of a ``SaleItems`` row)."""

    product_id, sku, name, category, price, quantity, image_url = raw_row[:7]
    return CartLine(
        product_id=str(product_id),
        sku=str(sku),
        name=str(name),
        category=str(category) if category is not None else "",
        price=quantize_money(price if price is not None else 0),
        quantity=_as_int(quantity),
        image_url=_optional_text(image_url),
    )


def deserialize_sale_item(raw_row: Sequence[object]) -> Tuple[str, int, CartLine]:
    """Split a ``SaleItems`` row into its sale id, line number, and line."""

    return str(raw_row[0]), _as_int(raw_row[1]), deserialize_cart_line(raw_row[2:])


def deserialize_sale(raw_row: Sequence[object], items: Tuple[CartLine, ...]) -> SaleRecord:
    """Convert a raw ``Sales`` row plus its joined items into a record.

    Naive timestamps written by older tooling are read as UTC so every
    record stays comparable with the timezone-aware values the engine writes.
    """

    sale_id, date_raw, total, amount_paid, payment_method, customer_name, notes = raw_row[:7]
    date = date_raw if isinstance(date_raw, datetime) else datetime.fromisoformat(str(date_raw))
    if date.tzinfo is None:
        date = date.replace(tzinfo=UTC)
    return SaleRecord(
        sale_id=str(sale_id),
        date=date,
        items=items,
        total=quantize_money(total if total is not None else 0),
        amount_paid=quantize_money(amount_paid if amount_paid is not None else 0),
        payment_method=str(payment_method) if payment_method is not None else "",
        customer_name=str(customer_name) if customer_name is not None else "",
        notes=_optional_text(notes),
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw ``Users`` row into a :class:`UserRow`."""

    user_id, first_name, last_name = raw_row[:3]
    return UserRow(
        user_id=str(user_id),
        first_name=str(first_name) if first_name is not None else "",
        last_name=str(last_name) if last_name is not None else "",
    )
