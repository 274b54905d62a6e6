"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path

import pytest

from store_ledger import cart, checkout, cli, core_logic, corrections

from conftest import ADMIN_SECRET


WRITE_COMMANDS = {
    "add-product",
    "remove-product",
    "adjust-stock",
    "cart-add",
    "cart-remove",
    "cart-clear",
    "checkout",
    "void",
    "return",
}

READ_COMMANDS = {
    "stock",
    "cart",
    "sales",
    "statement",
    "customers",
    "summary",
}


def _parse(spec_factory, argv):
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = spec_factory(subparsers)
    spec.register(subparsers)
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "store-ledger"


def test_configure_subcommands_registers_everything(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for name, spec in specs.items():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.help_text
        assert name in subparsers_action.choices


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    for name in READ_COMMANDS:
        assert name in subparsers_action.choices


def test_register_cart_add_command_configures_arguments():
    namespace = _parse(cli.register_cart_add_command, ["cart-add", "--sku", "A-1", "--quantity", "3", "--price", "80"])
    assert namespace.sku == "A-1"
    assert namespace.quantity == 3
    assert namespace.price == "80"
    assert namespace.discount is None

    namespace = _parse(cli.register_cart_add_command, ["cart-add", "--sku", "A-1", "--discount", "12.5"])
    assert namespace.discount == "12.5"


def test_register_checkout_command_defaults():
    namespace = _parse(cli.register_checkout_command, ["checkout"])
    assert namespace.method == "Cash"
    assert namespace.paid is None
    assert namespace.customer is None


def test_register_checkout_command_documents_paid_default():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    checkout_parser = cli.register_checkout_command(subparsers).register(subparsers)

    help_text = " ".join(checkout_parser.format_help().split())

    assert "full payment of the cart total" in help_text
    assert "pass 0 for a credit sale" in help_text


def test_register_return_command_configures_arguments():
    namespace = _parse(
        cli.register_return_command,
        ["return", "--sale-id", "S1", "--sku", "A-1", "--quantity", "1", "--reason", "Torn", "--admin-secret", "x"],
    )
    assert namespace.sale_id == "S1"
    assert namespace.quantity == 1
    assert namespace.reason == "Torn"
    assert namespace.admin_secret == "x"


def test_register_stock_command_flags():
    namespace = _parse(cli.register_stock_command, ["stock", "--low", "--category", "Grocery"])
    assert namespace.low is True
    assert namespace.category == "Grocery"


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_load_store_uses_provided_path(config_file, monkeypatch):
    sentinel = object()

    def fake_loader(path):
        assert path == config_file
        return sentinel

    monkeypatch.setattr(core_logic, "load_store", fake_loader)
    assert cli.load_store(config_file) is sentinel


def test_load_store_defaults_to_working_directory(monkeypatch, tmp_path):
    sentinel = object()

    def fake_loader(path):
        assert path == tmp_path / "config.ini"
        return sentinel

    monkeypatch.setattr(core_logic, "load_store", fake_loader)
    monkeypatch.chdir(tmp_path)
    assert cli.load_store() is sentinel


def test_dispatch_command_invokes_executor(store):
    called = {}

    def execute(target, args):
        called["store"] = target
        return 0

    spec = cli.CommandSpec("sample", "help", lambda s: s.add_parser("sample"), execute)
    assert cli.dispatch_command(store, argparse.Namespace(command="sample"), {"sample": spec}) == 0
    assert called["store"] is store


def test_dispatch_command_handles_unknown_commands(store):
    with pytest.raises(KeyError):
        cli.dispatch_command(store, argparse.Namespace(command="unknown"), {})


def test_build_command_table_detects_duplicate_commands():
    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("raw, expected", [("3.50", Decimal("3.50")), ("1,250.5", Decimal("1250.5")), ("0", Decimal("0"))])
def test_parse_money_accepts_numbers(raw, expected):
    assert cli.parse_money(raw, label="Price") == expected


@pytest.mark.parametrize("raw", ["abc", "NaN", "-1", "inf", ""])
def test_parse_money_rejects_bad_input(raw):
    with pytest.raises(core_logic.ValidationError):
        cli.parse_money(raw, label="Price")


def test_translate_add_product_returns_draft():
    args = argparse.Namespace(sku="A-1", name="Tea", category="Drinks", price="12.00", stock=4, image_url=None)
    draft = cli.translate_add_product(args)
    assert draft.price == Decimal("12.00")
    assert draft.stock == 4


def test_translate_checkout_defaults_paid_to_cart_total(make_product, store):
    cart.add_line(store, make_product(price="100.00"), 3)
    args = argparse.Namespace(method="Card", paid=None, customer="Bilal", notes=None)

    command = cli.translate_checkout(store, args)

    assert command == checkout.CheckoutCommand(payment_method="Card", amount_paid=Decimal("285.00"), customer_name="Bilal")


def test_translate_return_picks_sold_line(make_product, store):
    product = make_product("A-1", price="100.00")
    cart.add_line(store, product, 2)
    record = checkout.checkout(store, checkout.CheckoutCommand("Cash", Decimal("200")))
    args = argparse.Namespace(sale_id=record.sale_id, sku="a-1", price=None, quantity=1, reason="Torn")

    command = cli.translate_return(store, args)

    assert command == corrections.ReturnCommand(record.sale_id, record.items[0], 1, "Torn")


def test_translate_return_unknown_sku(make_product, store):
    cart.add_line(store, make_product("A-1"), 1)
    record = checkout.checkout(store, checkout.CheckoutCommand("Cash", Decimal("100")))
    args = argparse.Namespace(sale_id=record.sale_id, sku="B-2", price=None, quantity=1, reason="Torn")
    with pytest.raises(core_logic.MissingReferenceError):
        cli.translate_return(store, args)


def test_resolve_secret_prefers_argument(monkeypatch):
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt: pytest.fail("should not prompt"))
    assert cli.resolve_secret(argparse.Namespace(admin_secret="pin")) == "pin"


def test_resolve_secret_prompts_when_missing(monkeypatch):
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt: "typed")
    assert cli.resolve_secret(argparse.Namespace(admin_secret=None)) == "typed"


def test_run_stock_report_prints_matches(make_product, store, capsys):
    make_product("A-1", name="Green Tea")
    make_product("B-2", name="Soap")

    assert cli.run_stock_report(store, argparse.Namespace(low=False, search="tea", category=None)) == 0

    out = capsys.readouterr().out
    assert "Green Tea" in out
    assert "Soap" not in out


def test_run_cart_add_applies_discount(make_product, store, capsys):
    make_product("A-1", price="100.00")
    args = argparse.Namespace(sku="A-1", quantity=3, price=None, discount="10")

    assert cli.run_cart_add(store, args) == 0

    assert store.cart[0].price == Decimal("90.00")
    assert "3 x" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Error handling and persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.InsufficientStockError("short"), 2),
        (core_logic.ValidationError("bad"), 2),
        (FileNotFoundError("missing"), 3),
        (core_logic.AuthorizationError("denied"), 4),
        (RuntimeError("schema"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error, expected, caplog):
    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


def test_persist_store_delegates_to_engine(store, monkeypatch):
    called = {}
    monkeypatch.setattr(cli.core_logic, "persist_store", lambda target: called.setdefault("store", target))
    cli.persist_store(store)
    assert called["store"] is store


# ---------------------------------------------------------------------------
# End-to-end through main()
# ---------------------------------------------------------------------------


def _run(config_path: Path, *argv: str) -> int:
    return cli.main(["--config", str(config_path), *argv])


def test_main_sale_flow_persists_between_invocations(config_file, capsys):
    assert _run(config_file, "add-product", "--sku", "A-1", "--name", "Rice", "--category", "Grocery",
                "--price", "100", "--stock", "10") == 0
    assert _run(config_file, "cart-add", "--sku", "a-1", "--quantity", "3") == 0
    assert _run(config_file, "checkout", "--paid", "200", "--customer", "Ayesha") == 0

    store = core_logic.load_store(config_file)
    (record,) = store.sales
    assert record.total == Decimal("285.00")
    assert record.payment_method == "Cash (Partial)"
    assert next(iter(store.products.values())).stock == 7
    assert store.cart == []
    assert "Balance due: 85.00" in capsys.readouterr().out


def test_main_void_requires_admin_secret(config_file):
    _run(config_file, "add-product", "--sku", "A-1", "--name", "Rice", "--category", "Grocery",
         "--price", "100", "--stock", "10")
    _run(config_file, "cart-add", "--sku", "A-1")
    _run(config_file, "checkout")
    sale_id = core_logic.load_store(config_file).sales[0].sale_id

    assert _run(config_file, "void", "--sale-id", sale_id, "--admin-secret", "wrong") == 4
    assert len(core_logic.load_store(config_file).sales) == 1

    assert _run(config_file, "void", "--sale-id", sale_id, "--admin-secret", ADMIN_SECRET) == 0
    store = core_logic.load_store(config_file)
    assert store.sales == []
    assert next(iter(store.products.values())).stock == 10


def test_main_reports_business_errors(config_file):
    assert _run(config_file, "checkout") == 2
    assert _run(config_file, "cart-add", "--sku", "nope") == 2


def test_main_missing_config(tmp_path):
    assert _run(tmp_path / "absent.ini", "stock") == 3
