"""Configure pytest for the billing project."""
import os
import sys
from pathlib import Path

import pytest

# =============================================================================
# Test Environment Configuration
# =============================================================================
# Set environment for tests BEFORE any imports
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_conftest_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_conftest")

# Add project root so tests can import billing, persistence and app
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_database(tmp_path, monkeypatch):
    """Point every test at a fresh SQLite file."""
    import persistence.db as db_module

    db_module.close_db()
    monkeypatch.setattr(db_module, "DB_PATH", tmp_path / "billing.db")
    with db_module._init_lock:
        db_module._initialized = False

    db_module.init_db()
    yield
    db_module.reset_db()
    db_module.close_db()
