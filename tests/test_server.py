import io
import os
import shutil
import zipfile
from dataclasses import replace
from urllib.parse import quote_plus

import pytest
from fastapi.testclient import TestClient

from backend.registry import Entry
from backend.server import create_app


@pytest.fixture
def photos(registry, shared_dir):
    return registry.add(Entry(name="photos", path=str(shared_dir), owner="1.2.3.4"))


@pytest.fixture
def auth_settings(settings):
    return replace(settings, auth_enable=True, password="s3cret")


@pytest.fixture
def auth_client(auth_settings, registry, config_file):
    return TestClient(create_app(auth_settings, config_file=config_file, registry=registry))


def test_ping(client, settings):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.json() == {"status": "online", "machine_id": settings.machine_id}


def test_list_empty_registry(client):
    response = client.get("/api/files")
    assert response.status_code == 200
    assert response.json() == {"path": [], "files": []}


def test_list_registry_root(client, photos, registry):
    registry.add_text("hello world", "1.2.3.4")
    files = {f["name"]: f for f in client.get("/api/files").json()["files"]}
    assert files["photos"]["kind"] == "directory"
    assert files["hello world"] == {
        "kind": "text", "name": "hello world", "owner": "1.2.3.4", "summary": "hello world",
    }


def test_browse_into_shared_directory(client, photos):
    response = client.get("/api/files", params={"path": "photos/sub"})
    assert response.status_code == 200
    data = response.json()
    assert data["path"] == ["photos", "sub"]
    assert [(f["name"], f["kind"]) for f in data["files"]] == [("b.txt", "file")]


def test_browse_errors(client, photos):
    assert client.get("/api/files", params={"path": "nope"}).status_code == 404
    assert client.get("/api/files", params={"path": "/"}).status_code == 400
    assert client.get("/api/files", params={"path": "photos/../.."}).status_code == 400
    assert client.get("/api/files", params={"path": "photos/a.txt"}).status_code == 400
    assert client.get("/api/files", params={"path": "photos/missing"}).status_code == 404


def test_download_file(client, registry, shared_file):
    registry.add(Entry(name="notes.txt", path=str(shared_file)))
    response = client.get("/api/download", params={"filename": "notes.txt"})
    assert response.status_code == 200
    assert response.content == b"some notes"
    assert response.headers["content-disposition"] == "attachment; filename=notes.txt"
    assert response.headers["download-filename"] == "notes.txt"


def test_download_file_escapes_name(client, registry, tmp_path):
    path = tmp_path / "my report.txt"
    path.write_text("x")
    registry.add(Entry(name="my report.txt", path=str(path)))
    response = client.get("/api/download", params={"filename": "my report.txt"})
    assert response.headers["download-filename"] == quote_plus("my report.txt")


def test_download_file_inside_directory(client, photos):
    response = client.get("/api/download", params={"filename": "photos/sub/b.txt"})
    assert response.status_code == 200
    assert response.content == b"beta content"


def test_download_directory_as_zip(client, photos, shared_dir):
    response = client.get("/api/download", params={"filename": "photos"})
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["content-disposition"] == "attachment; filename=photos.zip"

    with zipfile.ZipFile(io.BytesIO(response.content)) as zipf:
        assert sorted(zipf.namelist()) == ["a.txt", "sub/", "sub/b.txt"]
        assert zipf.read("sub/b.txt") == b"beta content"

    # Archive lives next to the directory only while it is being sent
    assert list(shared_dir.parent.glob("*.zip")) == []
    assert list(shared_dir.parent.glob(".photos.*")) == []


def test_download_directory_keeps_existing_zip(client, photos, shared_dir):
    own_zip = shared_dir.parent / "photos.zip"
    own_zip.write_bytes(b"user data")
    response = client.get("/api/download", params={"filename": "photos"})
    assert response.status_code == 200
    assert zipfile.is_zipfile(io.BytesIO(response.content))
    assert own_zip.read_bytes() == b"user data"
    assert list(shared_dir.parent.glob(".photos.*")) == []


def test_download_directory_with_old_file(client, photos, shared_dir):
    os.utime(shared_dir / "a.txt", (0, 0))
    response = client.get("/api/download", params={"filename": "photos"})
    assert response.status_code == 200
    with zipfile.ZipFile(io.BytesIO(response.content)) as zipf:
        assert zipf.read("a.txt") == b"alpha content"
    assert [p.name for p in shared_dir.parent.iterdir()] == ["photos"]


def test_download_directory_archive_error_leaves_nothing(client, photos, shared_dir, monkeypatch):
    def broken_walk(top, onerror=None):
        raise PermissionError(13, "Permission denied", top)

    monkeypatch.setattr("backend.archiver.os.walk", broken_walk)
    response = client.get("/api/download", params={"filename": "photos"})
    assert response.status_code == 500
    assert [p.name for p in shared_dir.parent.iterdir()] == ["photos"]


def test_browse_unreadable_directory(client, photos, monkeypatch):
    def deny(path):
        raise PermissionError(13, "Permission denied", path)

    monkeypatch.setattr("backend.listing.os.scandir", deny)
    assert client.get("/api/files", params={"path": "photos"}).status_code == 400


def test_download_stale_entry_is_pruned(client, photos, shared_dir):
    shutil.rmtree(shared_dir)
    response = client.get("/api/download", params={"filename": "photos"})
    assert response.status_code == 404
    names = [f["name"] for f in client.get("/api/files").json()["files"]]
    assert "photos" not in names


def test_download_errors(client, registry):
    registry.add_text("hello world", "1.2.3.4")
    assert client.get("/api/download", params={"filename": "nope"}).status_code == 404
    assert client.get("/api/download", params={"filename": ""}).status_code == 400
    assert client.get("/api/download", params={"filename": "hello world"}).status_code == 400


def test_add_text(client, registry):
    response = client.post("/api/addText", json={"message": "hello world"})
    assert response.status_code == 200
    entry = registry.get("hello world")
    assert entry.kind.value == "text"
    assert entry.summary == "hello world"
    assert entry.owner == "testclient"


def test_add_text_uses_real_ip_header(client, registry):
    client.post("/api/addText", json={"message": "from proxy"}, headers={"X-Real-IP": "1.2.3.4"})
    assert registry.get("from proxy").owner == "1.2.3.4"


def test_add_empty_text_rejected(client, registry):
    assert client.post("/api/addText", json={"message": "   "}).status_code == 400
    assert registry.list() == []


def test_add_file_upload(client, registry, settings):
    response = client.post("/api/addFile", files={"file": ("report.pdf", b"%PDF-data")})
    assert response.status_code == 200
    entry = registry.get("report.pdf")
    assert entry.kind.value == "file"
    assert (settings.upload_dir / "report.pdf").read_bytes() == b"%PDF-data"
    assert entry.path == str(settings.upload_dir / "report.pdf")


def test_add_file_upload_strips_directories(client, registry, settings):
    response = client.post("/api/addFile", files={"file": ("../../evil.sh", b"echo")})
    assert response.status_code == 200
    assert registry.get("evil.sh").path == str(settings.upload_dir / "evil.sh")


def test_add_path_requires_local_client(client, shared_dir):
    assert client.post("/api/addPath", json={"path": str(shared_dir)}).status_code == 403


def test_add_path(local_client, registry, shared_dir, tmp_path):
    response = local_client.post("/api/addPath", json={"path": str(shared_dir)})
    assert response.status_code == 200
    assert response.json()["data"]["name"] == "photos"

    other = tmp_path / "other" / "photos"
    other.mkdir(parents=True)
    response = local_client.post("/api/addPath", json={"path": str(other)})
    assert response.json()["data"]["name"] == "photos_1"

    missing = local_client.post("/api/addPath", json={"path": str(tmp_path / "gone")})
    assert missing.status_code == 404

    garbled = local_client.post("/api/addPath", json={"path": str(tmp_path) + "/a\x00b"})
    assert garbled.status_code == 404


def test_remove_file(client, photos, registry):
    assert client.post("/api/removeFile", json={"name": "photos"}).status_code == 200
    assert registry.get("photos") is None
    assert client.post("/api/removeFile", json={"name": "photos"}).status_code == 200


def test_login_without_auth(client):
    response = client.post("/api/login", json={"password": "anything"})
    assert response.status_code == 200
    assert response.json() == {"message": "success"}


def test_auth_gates_api(auth_client, photos):
    assert auth_client.get("/api/files").status_code == 401
    assert auth_client.post("/api/addText", json={"message": "hi"}).status_code == 401
    assert auth_client.get("/api/files", headers={"Authorization": "garbage"}).status_code == 401
    assert auth_client.get("/ping").status_code == 200

    assert auth_client.post("/api/login", json={"password": "wrong"}).status_code == 403
    token = auth_client.post("/api/login", json={"password": "s3cret"}).json()["Authorization"]

    assert auth_client.get("/api/files", headers={"Authorization": token}).status_code == 200
    assert auth_client.get("/api/files", headers={"Authorization": f"Bearer {token}"}).status_code == 200


def test_auth_gates_download_by_query_token(auth_client, photos):
    assert auth_client.get("/api/download", params={"filename": "photos/a.txt"}).status_code == 403
    token = auth_client.post("/api/login", json={"password": "s3cret"}).json()["Authorization"]
    response = auth_client.get("/api/download", params={"filename": "photos/a.txt", "token": token})
    assert response.status_code == 200
    assert response.content == b"alpha content"


def test_settings_roundtrip(local_client, tmp_path, config_file):
    data = local_client.get("/api/settings").json()
    assert "password" not in data
    assert data["port"] == 5421

    new_upload = tmp_path / "elsewhere"
    new_upload.mkdir()
    response = local_client.post("/api/settings", json={"upload_dir": str(new_upload), "port": 6000})
    assert response.status_code == 200
    assert response.json()["upload_dir"] == str(new_upload)
    assert config_file.exists()

    assert local_client.post("/api/settings", json={"port": 0}).status_code == 400
    assert local_client.post("/api/settings", json={"upload_dir": str(tmp_path / "nope")}).status_code == 400


def test_settings_not_exposed_remotely(client):
    assert client.get("/api/settings").status_code == 403


def test_registry_changes_are_published(app, registry, shared_dir):
    published = []
    app.state.broker.publish = published.append
    registry.add(Entry(name="photos", path=str(shared_dir)))
    assert published == [{"type": "files.change", "data": {"action": "add", "name": "photos", "kind": "directory"}}]


def test_settings_reject_restart_only_keys(local_client, settings, tmp_path, registry):
    response = local_client.post("/api/settings", json={"storage_file": str(tmp_path / "other.json")})
    assert response.status_code == 400
    assert local_client.post("/api/settings", json={"machine_id": "elsewhere"}).status_code == 400
    assert local_client.get("/api/settings").json()["machine_id"] == settings.machine_id

    # Posting back the unchanged document is fine
    data = local_client.get("/api/settings").json()
    assert local_client.post("/api/settings", json=data).status_code == 200
