"""Shared pytest fixtures and utilities for store ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from store_ledger import auth, catalog, constants, core_logic, data_manager  # noqa: E402
from store_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
ADMIN_SECRET = "open-sesame"
# Low cost factor keeps bcrypt checks fast in tests.
ADMIN_SECRET_HASH = auth.hash_secret(ADMIN_SECRET, rounds=4)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
    "AutoSave = {auto_save}\n\n"
    "[Defaults]\n"
    "WalkInCustomer = Walk-in Customer\n"
    "LowStockThreshold = 5\n\n"
    "[Security]\n"
    "AdminSecretHash = {secret_hash}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "store_ledger.xlsx",
        seed_products=(),
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, seed_products=seed_products, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        auto_save: bool = False,
        admin_secret: str | None = ADMIN_SECRET,
        seed_products=(),
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", seed_products=seed_products)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                auto_save="yes" if auto_save else "no",
                secret_hash=auth.hash_secret(admin_secret, rounds=4) if admin_secret else "",
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def disk_store(config_file: Path) -> core_logic.LedgerStore:
    """Load a workbook-backed store through the public API."""

    store = core_logic.load_store(config_file)
    core_logic.ensure_schema_version(store)
    return store


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="store-ledger", description="Store ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory stores."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "store_ledger.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        admin_secret_hash=ADMIN_SECRET_HASH,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for engine tests."""

    return Mock(name="workbook")


@pytest.fixture
def store(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.LedgerStore:
    """Assemble an empty in-memory store; nothing is ever saved."""

    return core_logic.LedgerStore(settings=settings, workbook=workbook)


@pytest.fixture
def authorizer() -> auth.HashedSecretAuthorizer:
    return auth.HashedSecretAuthorizer(ADMIN_SECRET_HASH)


@pytest.fixture
def make_product(store: core_logic.LedgerStore) -> Callable[..., data_manager.ProductRow]:
    """Register products through the catalog with sensible defaults."""

    def _make(
        sku: str = "A-100",
        *,
        name: str | None = None,
        category: str = "General",
        price: str = "100.00",
        stock: int = 10,
    ) -> data_manager.ProductRow:
        draft = catalog.ProductDraft(
            sku=sku,
            name=name or f"Item {sku}",
            category=category,
            price=Decimal(price),
            stock=stock,
        )
        return catalog.add_product(store, draft)

    return _make


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
