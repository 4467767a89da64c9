"""
FilaBridge Test Suite — Shared Fixtures

Unit tests build their own SQLite database per test (session_factory).
Route tests share the app's database, which is pointed at a temporary
file before any backend module is imported, and swap in fake Spoolman
clients through the module registry.

Usage:
    pip install -e ".[test]"
    pytest tests -v --tb=short
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="filabridge-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_TMP_DIR) / 'app.db'}"
os.environ["API_KEY"] = ""
os.environ["SPOOLMAN_URL"] = "http://127.0.0.1:9"

BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from helpers import FakeInventory  # noqa: E402


# ---------------------------------------------------------------------------
# Isolated database for unit tests
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory(tmp_path):
    from core.db import init_db, make_engine

    engine = make_engine(f"sqlite:///{tmp_path / 'unit.db'}", poolclass=NullPool)
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def make_printer(session_factory):
    """Insert a printer row and return its id."""
    from modules.printers.models import Printer, ToolheadName

    def _make(name="CORE One", toolheads=1, address="192.168.1.50", toolhead_names=None, **extra):
        db = session_factory()
        try:
            printer = Printer(name=name, address=address, toolheads=toolheads, is_active=True, **extra)
            db.add(printer)
            db.flush()
            for tid, display in (toolhead_names or {}).items():
                db.add(ToolheadName(printer_id=printer.id, toolhead_id=tid, display_name=display))
            db.commit()
            return printer.id
        finally:
            db.close()

    return _make


@pytest.fixture
def inventory():
    return FakeInventory()


@pytest.fixture
def binding_store(session_factory):
    from modules.bindings.store import BindingStore
    return BindingStore(session_factory)


# ---------------------------------------------------------------------------
# Application client for route tests
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def app():
    from core.app import create_app
    return create_app(start_monitors=False, background_tasks=False)


@pytest.fixture
def fake_inventory():
    return FakeInventory()


@pytest.fixture
def client(app, fake_inventory):
    from fastapi.testclient import TestClient

    from core.base import Base
    from core.config import RUNTIME_KEYS, settings
    from core.db import engine
    from core.registry import registry

    saved = {key: getattr(settings, key) for key in RUNTIME_KEYS}
    with TestClient(app) as test_client:
        registry.register_provider("InventoryClient", fake_inventory)
        yield test_client
    for key, value in saved.items():
        setattr(settings, key, value)
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
