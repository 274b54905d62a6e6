"""Unit tests for statements, the customer directory, and the sales log."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from store_ledger import ledger
from store_ledger.data_manager import SaleRecord


def _sale(sale_id, day, total, paid, customer="Ayesha", method="Cash") -> SaleRecord:
    return SaleRecord(
        sale_id=sale_id,
        date=datetime(2026, 2, day, 10, 0, tzinfo=UTC),
        items=(),
        total=Decimal(total),
        amount_paid=Decimal(paid),
        payment_method=method,
        customer_name=customer,
    )


def test_statement_folds_running_balance_in_date_order(store):
    store.sales.extend(
        [
            _sale("S3", 5, "50.00", "50.00"),
            _sale("S1", 1, "100.00", "0.00", method="Credit"),
            _sale("S2", 3, "200.00", "150.00", method="Cash (Partial)"),
            _sale("S9", 2, "999.00", "0.00", customer="Bilal"),
        ]
    )

    statement = ledger.customer_statement(store, "Ayesha")

    assert [entry.record.sale_id for entry in statement.entries] == ["S1", "S2", "S3"]
    assert [entry.balance for entry in statement.entries] == [
        Decimal("100.00"),
        Decimal("150.00"),
        Decimal("150.00"),
    ]
    assert statement.total_sales == Decimal("350.00")
    assert statement.total_paid == Decimal("200.00")
    assert statement.total_due == statement.entries[-1].balance
    assert statement.is_due


def test_statement_ties_keep_commit_order(store):
    store.sales.extend([_sale("B", 1, "10.00", "0.00"), _sale("A", 1, "20.00", "20.00")])
    assert [e.record.sale_id for e in ledger.customer_statement(store, "Ayesha").entries] == ["B", "A"]


def test_statement_for_unknown_customer_is_empty(store):
    statement = ledger.customer_statement(store, "Nobody")
    assert statement.entries == ()
    assert statement.total_due == Decimal("0.00")
    assert not statement.is_due


def test_due_threshold_absorbs_rounding():
    assert not ledger.is_due(Decimal("0.50"))
    assert ledger.is_due(Decimal("0.51"))


def test_customer_directory_groups_and_sorts(store):
    store.sales.extend(
        [
            _sale("S1", 1, "100.00", "100.00", customer="Ayesha"),
            _sale("S2", 4, "50.00", "0.00", customer="Ayesha"),
            _sale("S3", 2, "500.00", "500.00", customer="Bilal"),
            _sale("S4", 3, "20.00", "20.00", customer="Walk-in Customer"),
        ]
    )

    accounts = ledger.customer_directory(store)

    assert [account.name for account in accounts] == ["Bilal", "Ayesha", "Walk-in Customer"]
    ayesha = accounts[1]
    assert ayesha.count == 2
    assert ayesha.total == Decimal("150.00")
    assert ayesha.paid == Decimal("100.00")
    assert ayesha.due == Decimal("50.00")
    assert ayesha.is_due
    assert ayesha.last_date == datetime(2026, 2, 4, 10, 0, tzinfo=UTC)
    assert not accounts[0].is_due


def test_customer_directory_search_is_case_insensitive(store):
    store.sales.extend([_sale("S1", 1, "1.00", "1.00", customer="Ayesha"), _sale("S2", 1, "1.00", "1.00", customer="Bilal")])
    assert [a.name for a in ledger.customer_directory(store, "  aYe")] == ["Ayesha"]


def test_list_sales_newest_first(store):
    store.sales.extend([_sale("S1", 1, "1.00", "1.00"), _sale("S3", 3, "1.00", "1.00"), _sale("S2", 2, "1.00", "1.00")])
    assert [record.sale_id for record in ledger.list_sales(store)] == ["S3", "S2", "S1"]


def test_sale_balance():
    assert ledger.sale_balance(_sale("S1", 1, "285.00", "200.00")) == Decimal("85.00")
