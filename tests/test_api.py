"""Tests for the HTTP routes"""

import shutil
from urllib.parse import urlsplit

import pytest
from fastapi.testclient import TestClient

from tempcloud.main import app
from tempcloud.services.blob_store import LocalBlobStore
from tempcloud.services.deletion_queue import DeletionQueue
from tempcloud.services.lifecycle_engine import LifecycleEngine
from tempcloud.services.metadata_store import InMemoryMetadataStore
from tempcloud.services.password_verifier import PasswordVerifier
from tests.conftest import FakeClock


@pytest.fixture
def api_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(tmp_path, api_clock):
    blob_store = LocalBlobStore(tmp_path / "blobs")
    app.state.engine = LifecycleEngine(
        metadata_store=InMemoryMetadataStore(clock=api_clock),
        blob_store=blob_store,
        password_verifier=PasswordVerifier(iterations=1000),
        deletion_queue=DeletionQueue(blob_store),
        max_file_size=1024,
        default_ttl=3600,
        pending_ttl=900,
        clock=api_clock,
    )

    with TestClient(app) as test_client:
        yield test_client

    app.state.engine = None


def path_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}" if parts.query else parts.path


def upload(client, data: bytes = b"hello world", **fields) -> str:
    body = {"filename": "hello.txt", "size": len(data), "mime": "text/plain"}
    body.update(fields)

    init = client.post("/api/v1/upload/init", json=body)
    assert init.status_code == 200
    file_uuid = init.json()["file_uuid"]

    put = client.put(path_of(init.json()["upload_url"]), content=data)
    assert put.status_code == 200
    assert put.json() == {"status": "uploaded", "file_uuid": file_uuid, "size": len(data)}

    finalize = client.post("/api/v1/upload/finalize", json={"file_uuid": file_uuid})
    assert finalize.status_code == 200
    return file_uuid


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "tempcloud"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["metadata_store"] is True
    assert data["blob_store"] is True
    assert data["deletion_queue"] is True


def test_full_lifecycle(client, api_clock):
    init = client.post(
        "/api/v1/upload/init",
        json={"filename": "hello.txt", "size": 11, "mime": "text/plain", "max_downloads": 1},
    )
    assert init.status_code == 200
    payload = init.json()
    file_uuid = payload["file_uuid"]
    assert payload["expires_at"] == api_clock.now + 3600
    assert f"/api/v1/upload/put/{file_uuid}?expires=" in payload["upload_url"]

    put = client.put(path_of(payload["upload_url"]), content=b"hello world")
    assert put.status_code == 200

    finalize = client.post("/api/v1/upload/finalize", json={"file_uuid": file_uuid})
    assert finalize.status_code == 200
    assert finalize.json()["status"] == "active"
    assert finalize.json()["download_link"].endswith(f"/d/{file_uuid}")
    assert finalize.json()["expires_at"] == payload["expires_at"]

    info = client.get(f"/api/v1/file/{file_uuid}/info")
    assert info.status_code == 200
    assert info.json() == {
        "filename": "hello.txt",
        "size": 11,
        "mime": "text/plain",
        "uploaded_at": api_clock.now,
        "expires_at": payload["expires_at"],
        "downloads_left": 1,
        "has_password": False,
    }

    download = client.get(f"/api/v1/file/{file_uuid}/download")
    assert download.status_code == 200
    assert download.content == b"hello world"
    assert download.headers["content-disposition"] == 'attachment; filename="hello.txt"'
    assert download.headers["cache-control"] == "no-store"
    assert download.headers["content-type"].startswith("text/plain")

    engine = app.state.engine
    client.portal.call(engine.deletion_queue.join)
    assert client.portal.call(engine.blob_store.head, f"uploads/{file_uuid}/hello.txt") is None

    again = client.get(f"/api/v1/file/{file_uuid}/download")
    assert again.status_code == 404
    assert again.json()["code"] == "NOT_FOUND"

    assert client.get(f"/api/v1/file/{file_uuid}/info").status_code == 404


def test_unlimited_downloads(client):
    file_uuid = upload(client)

    for _ in range(3):
        response = client.get(f"/api/v1/file/{file_uuid}/download")
        assert response.status_code == 200
        assert response.content == b"hello world"

    assert client.get(f"/api/v1/file/{file_uuid}/info").json()["downloads_left"] is None


def test_password_protected_download(client):
    file_uuid = upload(client, password="s3cret")

    assert client.get(f"/api/v1/file/{file_uuid}/info").json()["has_password"] is True

    missing = client.get(f"/api/v1/file/{file_uuid}/download")
    assert missing.status_code == 401
    assert missing.json() == {"error": "Password required", "code": "PASSWORD_REQUIRED"}

    wrong = client.get(f"/api/v1/file/{file_uuid}/download", headers={"X-File-Password": "nope"})
    assert wrong.status_code == 403
    assert wrong.json()["code"] == "INVALID_PASSWORD"

    by_header = client.get(f"/api/v1/file/{file_uuid}/download", headers={"X-File-Password": "s3cret"})
    assert by_header.status_code == 200
    assert by_header.content == b"hello world"

    by_query = client.get(f"/api/v1/file/{file_uuid}/download", params={"password": "s3cret"})
    assert by_query.status_code == 200


def test_expired_file(client, api_clock):
    file_uuid = upload(client, expires_in=60)

    api_clock.advance(61)

    response = client.get(f"/api/v1/file/{file_uuid}/download")
    assert response.status_code in (404, 410)
    assert client.get(f"/api/v1/file/{file_uuid}/info").status_code == 404


def test_short_link_redirect_keeps_query(client):
    response = client.get("/d/abc?password=s3cret", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"].endswith("/api/v1/file/abc/download?password=s3cret")


def test_delete(client):
    file_uuid = upload(client)

    response = client.delete(f"/api/v1/file/{file_uuid}")
    assert response.status_code == 200
    assert response.json() == {"status": "deleted"}

    assert client.get(f"/api/v1/file/{file_uuid}/info").status_code == 404
    assert client.delete(f"/api/v1/file/{file_uuid}").status_code == 404


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"filename": "a.txt"},
        {"size": 10},
        {"filename": "a.txt", "size": 0},
        {"filename": "a.txt", "size": -5},
        {"filename": "a.txt", "size": "ten"},
    ],
)
def test_init_rejects_bad_requests(client, body):
    response = client.post("/api/v1/upload/init", json=body)

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"


def test_init_rejects_oversized_file(client):
    response = client.post("/api/v1/upload/init", json={"filename": "big.bin", "size": 4096})

    assert response.status_code == 413
    assert response.json()["code"] == "FILE_TOO_LARGE"


def test_put_unknown_session(client):
    response = client.put("/api/v1/upload/put/does-not-exist", content=b"data")

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_put_empty_body(client):
    init = client.post("/api/v1/upload/init", json={"filename": "a.txt", "size": 4})

    response = client.put(path_of(init.json()["upload_url"]), content=b"")

    assert response.status_code == 400
    assert response.json()["code"] in ("EMPTY_BODY", "INVALID_REQUEST")


def test_put_after_link_expired(client, api_clock):
    init = client.post("/api/v1/upload/init", json={"filename": "a.txt", "size": 4})

    api_clock.advance(3601)
    response = client.put(path_of(init.json()["upload_url"]), content=b"data")

    assert response.status_code == 410
    assert response.json()["code"] == "UPLOAD_EXPIRED"


def test_finalize_without_upload(client):
    init = client.post("/api/v1/upload/init", json={"filename": "a.txt", "size": 4})

    response = client.post("/api/v1/upload/finalize", json={"file_uuid": init.json()["file_uuid"]})

    assert response.status_code == 409
    assert response.json()["code"] == "UPLOAD_INCOMPLETE"


def test_finalize_requires_uuid(client):
    response = client.post("/api/v1/upload/finalize", json={})

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_REQUEST"


def test_finalize_twice(client):
    file_uuid = upload(client)

    response = client.post("/api/v1/upload/finalize", json={"file_uuid": file_uuid})

    assert response.status_code == 404


def test_download_unknown_file(client):
    response = client.get("/api/v1/file/nope/download")

    assert response.status_code == 404
    assert response.json() == {"error": "File not found or expired", "code": "NOT_FOUND"}


def test_health_reports_missing_blob_root(client):
    shutil.rmtree(app.state.engine.blob_store.root)

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "error"
    assert response.json()["blob_store"] is False


def test_put_body_over_ceiling(client):
    init = client.post("/api/v1/upload/init", json={"filename": "a.txt", "size": 4})

    response = client.put(path_of(init.json()["upload_url"]), content=b"x" * 4096)

    assert response.status_code == 413
    assert response.json()["code"] == "FILE_TOO_LARGE"
