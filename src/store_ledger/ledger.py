"""Read-only customer ledger views derived from the sale records.

Nothing here is persisted. Every statement and directory entry is recomputed
from ``store.sales``: a record debits its ``total`` and credits its
``amount_paid``, so refunds (negative on both sides) reduce what a customer
bought without changing what they owe.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .constants import DUE_THRESHOLD
from .core_logic import LedgerStore
from .data_manager import SaleRecord

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class LedgerEntry:
    """One statement line with the balance carried after it."""

    record: SaleRecord
    debit: Decimal
    credit: Decimal
    balance: Decimal


@dataclass(frozen=True)
class CustomerStatement:
    """Date-ordered statement of account for one customer."""

    customer_name: str
    entries: Tuple[LedgerEntry, ...]
    total_sales: Decimal
    total_paid: Decimal
    total_due: Decimal

    @property
    def is_due(self) -> bool:
        return is_due(self.total_due)


@dataclass(frozen=True)
class CustomerAccount:
    """Directory row summarizing every record booked to one customer."""

    name: str
    count: int
    total: Decimal
    paid: Decimal
    last_date: datetime

    @property
    def due(self) -> Decimal:
        return self.total - self.paid

    @property
    def is_due(self) -> bool:
        return is_due(self.due)


def is_due(amount: Decimal) -> bool:
    """Whether ``amount`` is large enough to be shown as owed."""
    return amount > DUE_THRESHOLD


def sale_balance(record: SaleRecord) -> Decimal:
    return record.total - record.amount_paid


def _by_date(records: List[SaleRecord]) -> List[SaleRecord]:
    # sorted() is stable, so records sharing a timestamp keep commit order.
    return sorted(records, key=lambda record: record.date)


def list_sales(store: LedgerStore) -> List[SaleRecord]:
    """Sales log view: every record, newest first."""
    return list(reversed(_by_date(store.sales)))


def customer_statement(store: LedgerStore, customer_name: str) -> CustomerStatement:
    """Build the running-balance statement for ``customer_name``.

    Records are matched on the exact stored customer name and folded in date
    order with ``balance += total - amount_paid``.

    Args:
        store (LedgerStore): Store whose ledger is read.
        customer_name (str): Name exactly as recorded on the sales.

    Returns:
        CustomerStatement: Entries plus ``total_sales``, ``total_paid`` and
            ``total_due``. A name with no records yields an empty statement.
    """
    records = _by_date([record for record in store.sales if record.customer_name == customer_name])

    entries = []
    balance = ZERO
    total_sales = ZERO
    total_paid = ZERO
    for record in records:
        balance += record.total - record.amount_paid
        total_sales += record.total
        total_paid += record.amount_paid
        entries.append(
            LedgerEntry(
                record=record,
                debit=record.total,
                credit=record.amount_paid,
                balance=balance,
            )
        )

    return CustomerStatement(
        customer_name=customer_name,
        entries=tuple(entries),
        total_sales=total_sales,
        total_paid=total_paid,
        total_due=total_sales - total_paid,
    )


def customer_directory(store: LedgerStore, search: Optional[str] = None) -> List[CustomerAccount]:
    """Group the ledger by customer name.

    Args:
        store (LedgerStore): Store whose ledger is read.
        search (str | None): Optional case-insensitive substring filter on the
            customer name.

    Returns:
        list[CustomerAccount]: One row per customer, largest total first.
    """
    groups: Dict[str, Dict[str, object]] = {}
    for record in store.sales:
        group = groups.setdefault(
            record.customer_name,
            {"count": 0, "total": ZERO, "paid": ZERO, "last_date": record.date},
        )
        group["count"] += 1
        group["total"] += record.total
        group["paid"] += record.amount_paid
        if record.date > group["last_date"]:
            group["last_date"] = record.date

    needle = (search or "").strip().casefold()
    accounts = [
        CustomerAccount(name=name, **stats)
        for name, stats in groups.items()
        if needle in name.casefold()
    ]
    accounts.sort(key=lambda account: account.total, reverse=True)
    return accounts
