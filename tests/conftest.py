import pytest
import os
import sys
import tempfile
from pathlib import Path

# Add the project root to Python path
project_root = str(Path(__file__).parent.parent)
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# Keep test logs out of the working tree; must happen before shared.* is imported
os.environ.setdefault("FSHARE_LOG_DIR", tempfile.mkdtemp(prefix="fshare-logs-"))

from fastapi.testclient import TestClient

from backend.registry import RegistryStore
from backend.server import create_app, require_local
from shared.config import Settings
from shared.storage import JsonStorage

TEST_MACHINE_ID = "test-machine"


@pytest.fixture
def storage(tmp_path):
    """Storage document in a temporary cache directory"""
    return JsonStorage(tmp_path / "cache" / "files.json")


@pytest.fixture
def registry(storage):
    return RegistryStore(storage, TEST_MACHINE_ID)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        upload_dir=tmp_path / "uploads",
        storage_file=tmp_path / "cache" / "files.json",
        ip="127.0.0.1",
        machine_id=TEST_MACHINE_ID,
    )


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "settings.json"


@pytest.fixture
def app(settings, registry, config_file):
    return create_app(settings, config_file=config_file, registry=registry)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def local_client(app):
    """Client whose requests count as coming from this machine"""
    app.dependency_overrides[require_local] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def shared_dir(tmp_path):
    """Directory with a.txt and sub/b.txt"""
    root = tmp_path / "shares" / "photos"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"alpha content")
    (root / "sub" / "b.txt").write_bytes(b"beta content")
    return root


@pytest.fixture
def shared_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("some notes")
    return path
