"""Constants shared across the store ledger modules.

Keeps sheet names, payment labels, and pricing thresholds in one place so the
data layer, the ledger engine, and the CLI agree on the same identifiers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Workbook layout version the engine knows how to read and write.
EXPECTED_SCHEMA_VERSION = "1.0.0"

WALK_IN_CUSTOMER = "Walk-in Customer"
UNKNOWN_CUSTOMER = "Unknown"

# Quantity at which a single cart line earns the bulk discount.
BULK_DISCOUNT_THRESHOLD = 3
BULK_DISCOUNT_RATE = Decimal("0.05")

# Balances at or below this amount count as settled (absorbs rounding noise).
DUE_THRESHOLD = Decimal("0.5")

DEFAULT_LOW_STOCK_THRESHOLD = 5

CENTS = Decimal("0.01")


class PaymentLabel(str, Enum):
    """Payment method labels the engine synthesizes itself."""

    CASH = "Cash"
    CARD = "Card"
    CREDIT = "Credit"
    REFUND = "Refund"


PARTIAL_SUFFIX = "(Partial)"


class SheetName(str, Enum):
    """Enumerate the workbook sheets backing each persisted record."""

    PRODUCTS = "Products"
    CART = "Cart"
    SALES = "Sales"
    SALE_ITEMS = "SaleItems"
    USERS = "Users"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "WALK_IN_CUSTOMER",
    "UNKNOWN_CUSTOMER",
    "BULK_DISCOUNT_THRESHOLD",
    "BULK_DISCOUNT_RATE",
    "DUE_THRESHOLD",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "CENTS",
    "PaymentLabel",
    "PARTIAL_SUFFIX",
    "SheetName",
]
