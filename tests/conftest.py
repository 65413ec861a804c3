import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Must be set before edilcheck modules create their loggers and data paths
os.environ.setdefault("EDILCHECK_DATA_DIR", tempfile.mkdtemp(prefix="edilcheck-tests-"))
os.environ["EDILCHECK_LOG_TO_FILE"] = "0"

from edilcheck.client.local_store import LocalDatabase  # noqa: E402
from edilcheck.server.server import create_app  # noqa: E402
from tests.fakes import FakeRemote, FlaskTestSession  # noqa: E402

ACCOUNT = "demo"


@pytest.fixture
def local_db(tmp_path) -> LocalDatabase:
    return LocalDatabase(tmp_path / "edilcheck.db")


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def server_app(tmp_path):
    app = create_app(tmp_path / "edilcheck_server.db")
    app.config["TESTING"] = True
    return app


@pytest.fixture
def api_client(server_app):
    return server_app.test_client()


@pytest.fixture
def server_session(server_app) -> FlaskTestSession:
    return FlaskTestSession(server_app)
