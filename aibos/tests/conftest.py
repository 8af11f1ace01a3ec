import os
import shutil
import sys
import tempfile
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config as AlembicConfig

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# The testing config reads TEST_DATABASE_URL at import time.
_DB_DIR = tempfile.mkdtemp(prefix="aibos-tests-")
os.environ.setdefault("TEST_DATABASE_URL", f"sqlite:///{_DB_DIR}/test.db")
os.environ.setdefault("APP_ENV", "testing")

from aibos import create_app  # noqa: E402
from aibos.domains.fx.services.currency_service import seed_currencies  # noqa: E402
from aibos.extensions import db  # noqa: E402
from aibos.tests.factories import bearer, build_books, login  # noqa: E402


# ==================== Pytest Markers ====================
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (database, API)")


def _alembic_config() -> AlembicConfig:
    cfg = AlembicConfig(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "aibos" / "migrations"))
    cfg.set_main_option("aibos_env", "testing")
    cfg.set_main_option("sqlalchemy.url", os.environ["TEST_DATABASE_URL"])
    return cfg


@pytest.fixture(scope="session", autouse=True)
def migrated_db():
    """Apply migrations once per session to mirror production schema."""
    cfg = _alembic_config()
    command.upgrade(cfg, "head")
    yield
    command.downgrade(cfg, "base")
    shutil.rmtree(_DB_DIR, ignore_errors=True)


@pytest.fixture()
def app(migrated_db):
    """Per-test app; every table is emptied afterwards."""
    app = create_app("testing")
    ctx = app.app_context()
    ctx.push()
    seed_currencies()
    try:
        yield app
    finally:
        db.session.rollback()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.remove()
        db.engine.dispose()
        ctx.pop()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def books(app):
    return build_books()


@pytest.fixture()
def owner_headers(client, books):
    body = login(client, books.owner.email, company_id=books.company.id)
    return bearer(body["access_token"])
