"""Command-line entry points for the store ledger.

This module is limited to argparse wiring, parsing raw text into the numbers
and command objects the engine expects, and printing results. Monetary input
is parsed here, at the boundary, so the engine only ever receives validated
``Decimal`` values.
"""

from __future__ import annotations

import argparse
import getpass
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import auth, cart, catalog, checkout, core_logic, corrections, ledger, log, reports
from .constants import PaymentLabel
from .data_manager import CartLine


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.LedgerStore, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="store-ledger",
        description="Checkout, corrections, and customer ledger for the store workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "remove-product": register_remove_product_command(subparsers),
        "adjust-stock": register_adjust_stock_command(subparsers),
        "cart-add": register_cart_add_command(subparsers),
        "cart-remove": register_cart_remove_command(subparsers),
        "cart-clear": register_cart_clear_command(subparsers),
        "checkout": register_checkout_command(subparsers),
        "void": register_void_command(subparsers),
        "return": register_return_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands."""
    specs = {
        "stock": register_stock_command(subparsers),
        "cart": register_cart_command(subparsers),
        "sales": register_sales_command(subparsers),
        "statement": register_statement_command(subparsers),
        "customers": register_customers_command(subparsers),
        "summary": register_summary_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.LedgerStore, argparse.Namespace], int],
    configure: Optional[Callable[[argparse.ArgumentParser], None]] = None,
) -> CommandSpec:
    """Build a spec whose registrar adds a parser and lets ``configure`` fill it."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        if configure is not None:
            configure(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def _add_secret_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--admin-secret",
        default=None,
        help="Admin secret; prompted for when omitted.",
    )


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sku", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--stock", required=True, type=int)
        parser.add_argument("--image-url", default=None)

    return _simple_spec("add-product", "Register a new product in the catalog.", run_add_product, configure)


def register_remove_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-product``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sku", required=True)
        _add_secret_argument(parser)

    return _simple_spec("remove-product", "Delete a product (admin only).", run_remove_product, configure)


def register_adjust_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust-stock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sku", required=True)
        parser.add_argument("--delta", required=True, type=int)

    return _simple_spec("adjust-stock", "Add or remove units of a product.", run_adjust_stock, configure)


def register_cart_add_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cart-add``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sku", required=True)
        parser.add_argument("--quantity", type=int, default=1)
        parser.add_argument("--price", default=None, help="Manual unit price override.")
        parser.add_argument(
            "--discount",
            default=None,
            help="Manual discount percent (0-100); replaces the bulk discount.",
        )

    return _simple_spec("cart-add", "Add a product to the cart by SKU.", run_cart_add, configure)


def register_cart_remove_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cart-remove``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--line", required=True, type=int, help="1-based line number.")

    return _simple_spec("cart-remove", "Remove a line from the cart.", run_cart_remove, configure)


def register_cart_clear_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cart-clear``."""
    return _simple_spec("cart-clear", "Empty the cart.", run_cart_clear)


def register_checkout_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``checkout``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--method",
            default=PaymentLabel.CASH.value,
            help="Payment method label (default: Cash).",
        )
        parser.add_argument(
            "--paid",
            default=None,
            help="Amount tendered. Omitting it records a full payment of the cart total; pass 0 for a credit sale.",
        )
        parser.add_argument("--customer", default=None)
        parser.add_argument("--notes", default=None)

    return _simple_spec("checkout", "Finalize the cart into a sale.", run_checkout, configure)


def register_void_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``void``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sale-id", required=True)
        _add_secret_argument(parser)

    return _simple_spec("void", "Void a sale and restore its stock (admin only).", run_void, configure)


def register_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--sale-id", required=True)
        parser.add_argument("--sku", required=True)
        parser.add_argument("--price", default=None, help="Unit price, when the SKU was sold at several prices.")
        parser.add_argument("--quantity", required=True, type=int)
        parser.add_argument("--reason", required=True)
        _add_secret_argument(parser)

    return _simple_spec("return", "Return units from a sale (admin only).", run_return, configure)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default="")
        parser.add_argument("--category", default=None)
        parser.add_argument("--low", action="store_true", help="Only show low-stock products.")

    return _simple_spec("stock", "Display the catalog and stock levels.", run_stock_report, configure)


def register_cart_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cart``."""
    return _simple_spec("cart", "Display the current cart.", run_cart_report)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    return _simple_spec("sales", "Display the sales log, newest first.", run_sales_report)


def register_statement_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``statement``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer", required=True)

    return _simple_spec("statement", "Display a customer's statement of account.", run_statement_report, configure)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default=None)

    return _simple_spec("customers", "Display the customer directory.", run_customers_report, configure)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    return _simple_spec("summary", "Display revenue, best seller, and low stock.", run_summary_report)


def load_store(config_path: Optional[Path] = None) -> core_logic.LedgerStore:
    """Resolve the ledger store for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_store(target)


def dispatch_command(
    store: core_logic.LedgerStore,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(store, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_money(raw: Any, *, label: str) -> Decimal:
    """Parse operator input into a non-negative ``Decimal``.

    Thousands separators are accepted (``"1,250.50"``).

    Raises:
        ValidationError: If the text is not a finite, non-negative number.
    """
    text = str(raw).replace(",", "").strip()
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise core_logic.ValidationError(f"{label} must be a number, got {raw!r}") from exc
    if not value.is_finite() or value < 0:
        raise core_logic.ValidationError(f"{label} must be a non-negative number, got {raw!r}")
    return value


def resolve_secret(args: argparse.Namespace) -> Optional[str]:
    """Return the admin secret from ``--admin-secret`` or an interactive prompt."""
    secret = getattr(args, "admin_secret", None)
    if secret is not None:
        return secret
    try:
        return getpass.getpass("Admin secret: ")
    except (EOFError, KeyboardInterrupt):
        return None


def resolve_product_by_sku(store: core_logic.LedgerStore, sku: str):
    product = catalog.find_by_sku(store, sku)
    if product is None:
        raise core_logic.MissingReferenceError(f"Product not found (SKU: {sku})")
    return product


def resolve_return_item(
    store: core_logic.LedgerStore,
    sale_id: str,
    sku: str,
    price: Optional[Decimal] = None,
) -> CartLine:
    """Pick the sold line matching ``sku`` (and ``price``) from a sale.

    Raises:
        MissingReferenceError: If the sale or a matching line does not exist.
        ValidationError: If several lines match and no price disambiguates.
    """
    record = corrections.get_sale(store, sale_id)
    wanted = sku.strip().casefold()
    matches = [item for item in record.items if item.sku.casefold() == wanted]
    if price is not None:
        matches = [item for item in matches if item.price == price]
    if not matches:
        raise core_logic.MissingReferenceError(f"SKU {sku} was not sold in sale {sale_id}")
    if len(matches) > 1:
        raise core_logic.ValidationError(f"SKU {sku} appears at several prices in sale {sale_id}; pass --price")
    return matches[0]


def translate_add_product(args: argparse.Namespace) -> catalog.ProductDraft:
    """Translate CLI args into a product draft."""
    return catalog.ProductDraft(
        sku=args.sku,
        name=args.name,
        category=args.category,
        price=parse_money(args.price, label="Price"),
        stock=args.stock,
        image_url=args.image_url,
    )


def translate_checkout(store: core_logic.LedgerStore, args: argparse.Namespace) -> checkout.CheckoutCommand:
    """Translate CLI args into a checkout command; unpaid amount defaults to the total."""
    paid = cart.cart_total(store) if args.paid is None else parse_money(args.paid, label="Amount paid")
    return checkout.CheckoutCommand(
        payment_method=args.method,
        amount_paid=paid,
        customer_name=args.customer,
        notes=args.notes,
    )


def translate_return(store: core_logic.LedgerStore, args: argparse.Namespace) -> corrections.ReturnCommand:
    """Translate CLI args into a return command for the matching sold line."""
    price = parse_money(args.price, label="Price") if args.price is not None else None
    item = resolve_return_item(store, args.sale_id, args.sku, price)
    return corrections.ReturnCommand(
        original_sale_id=args.sale_id,
        item=item,
        quantity=args.quantity,
        reason=args.reason,
    )


def run_add_product(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = catalog.add_product(store, translate_add_product(args))
    print(f"Added {product.sku} as {product.product_id}")
    return 0


def run_remove_product(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Execute the remove-product workflow."""
    product = resolve_product_by_sku(store, args.sku)
    catalog.remove_product(
        store,
        product.product_id,
        authorizer=auth.authorizer_from_settings(store.settings),
        secret=resolve_secret(args),
    )
    print(f"Removed {product.sku}")
    return 0


def run_adjust_stock(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Execute the adjust-stock workflow."""
    product = resolve_product_by_sku(store, args.sku)
    updated = catalog.adjust_stock(store, product.product_id, args.delta)
    print(f"{updated.sku}: {updated.stock} in stock")
    return 0


def run_cart_add(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Execute the cart-add workflow."""
    override = parse_money(args.price, label="Price") if args.price is not None else None
    discount = parse_money(args.discount, label="Discount") if args.discount is not None else None
    line = cart.add_by_sku(store, args.sku, args.quantity, override, discount)
    print(f"Cart: {line.quantity} x {line.name} @ {line.price}")
    return 0


def run_cart_remove(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Execute the cart-remove workflow."""
    line = cart.remove_line(store, args.line - 1)
    print(f"Removed {line.quantity} x {line.name}")
    return 0


def run_cart_clear(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Execute the cart-clear workflow."""
    cart.clear_cart(store)
    return 0


def run_checkout(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Execute the checkout workflow."""
    record = checkout.checkout(store, translate_checkout(store, args))
    balance = ledger.sale_balance(record)
    print(f"Sale {record.sale_id}: total {record.total}, paid {record.amount_paid} ({record.payment_method})")
    if ledger.is_due(balance):
        print(f"Balance due: {balance}")
    return 0


def run_void(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Execute the void workflow."""
    record = corrections.void_sale(
        store,
        corrections.VoidCommand(sale_id=args.sale_id),
        authorizer=auth.authorizer_from_settings(store.settings),
        secret=resolve_secret(args),
    )
    print(f"Voided sale {record.sale_id}")
    return 0


def run_return(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Execute the return workflow."""
    command = translate_return(store, args)
    refund = corrections.process_return(
        store,
        command,
        authorizer=auth.authorizer_from_settings(store.settings),
        secret=resolve_secret(args),
    )
    print(f"Refund {refund.sale_id}: {refund.total}")
    return 0


def run_stock_report(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Print the catalog, optionally filtered."""
    if args.low:
        products = catalog.low_stock_products(store)
    else:
        products = catalog.search_products(store, args.search, args.category)
    for product in products:
        print(f"{product.sku:<12} {product.name:<36} {product.category:<16} {product.price:>10} {product.stock:>6}")
    print(f"{len(products)} items found")
    return 0


def run_cart_report(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Print the cart lines and total."""
    for number, line in enumerate(cart.list_lines(store), start=1):
        print(f"{number:>3}. {line.quantity} x {line.name} @ {line.price} = {line.subtotal}")
    print(f"Total: {cart.cart_total(store)}")
    return 0


def run_sales_report(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Print the sales log with outstanding balances flagged."""
    for record in ledger.list_sales(store):
        balance = ledger.sale_balance(record)
        flag = f" DUE {balance}" if ledger.is_due(balance) else ""
        print(
            f"{record.sale_id} {record.date:%Y-%m-%d %H:%M} {record.customer_name:<24} "
            f"{record.total:>10} {record.payment_method}{flag}"
        )
    return 0


def run_statement_report(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Print a customer's statement of account."""
    statement = ledger.customer_statement(store, args.customer)
    print(f"Statement of account: {statement.customer_name}")
    for entry in statement.entries:
        print(
            f"{entry.record.date:%Y-%m-%d} {entry.record.sale_id:<24} "
            f"{entry.debit:>10} {entry.credit:>10} {entry.balance:>10}"
        )
    print(f"Total sales {statement.total_sales} | paid {statement.total_paid} | due {statement.total_due}")
    return 0


def run_customers_report(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Print the customer directory."""
    for account in ledger.customer_directory(store, args.search):
        status = "DUE" if account.is_due else "OK"
        print(
            f"{account.name:<28} {account.count:>4} {account.total:>12} "
            f"{account.paid:>12} {account.due:>12} {status}"
        )
    return 0


def run_summary_report(store: core_logic.LedgerStore, args: argparse.Namespace) -> int:
    """Print the sales overview."""
    overview = reports.summarize_sales(
        store.sales,
        store.products.values(),
        low_stock_threshold=store.settings.low_stock_threshold,
    )
    print(f"Revenue: {overview.total_revenue} over {overview.sale_count} sales (avg {overview.average_sale})")
    if overview.best_seller is not None:
        print(f"Best seller: {overview.best_seller[0]} ({overview.best_seller[1]} units)")
    for product in overview.low_stock:
        print(f"Low stock: {product.name} ({product.stock} left)")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (core_logic.BusinessRuleViolation, core_logic.ValidationError)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.AuthorizationError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_store(store: core_logic.LedgerStore) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_store(store)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        store = load_store(getattr(args, "config", None))
        core_logic.ensure_schema_version(store)
        exit_code = dispatch_command(store, args, command_table)
        if exit_code == 0:
            persist_store(store)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
