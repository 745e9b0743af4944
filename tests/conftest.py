# tests/conftest.py
import os
import tempfile

# Must be set before any proofmeet module reads settings.
os.environ.setdefault("APP_ENV", "test")
if "DB_URL" not in os.environ:
    # A file left by an earlier run may predate the current columns.
    _db_path = os.path.join(tempfile.gettempdir(), "proofmeet_test.db")
    if os.path.exists(_db_path):
        os.remove(_db_path)
    os.environ["DB_URL"] = "sqlite+aiosqlite:///" + _db_path

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from proofmeet.main import create_app  # noqa: E402


@pytest.fixture(scope="session")
def client() -> TestClient:
    """
    Shared TestClient fixture for all tests.

    Entering the client runs the startup hook, which creates the schema.
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
