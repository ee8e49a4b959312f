"""Pytest configuration and shared fixtures"""

import os
from typing import AsyncIterator, Generator

import pytest
import pytest_asyncio

from tempcloud.services.blob_store import LocalBlobStore
from tempcloud.services.deletion_queue import DeletionQueue
from tempcloud.services.lifecycle_engine import LifecycleEngine
from tempcloud.services.metadata_store import InMemoryMetadataStore
from tempcloud.services.password_verifier import PasswordVerifier


TEMPCLOUD_ENV_VARS = [
    "ENVIRONMENT",
    "LOG_LEVEL",
    "BASE_URL",
    "MAX_FILE_SIZE",
    "DEFAULT_FILE_TTL",
    "PENDING_UPLOAD_TTL",
    "PRESIGNED_URL_TTL",
    "STRICT_DOWNLOAD_LIMIT",
    "CAS_MAX_ATTEMPTS",
    "PASSWORD_HASH_ITERATIONS",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_PASSWORD",
    "DISABLE_REDIS",
    "BLOB_STORAGE_BACKEND",
    "BLOB_STORAGE_PATH",
    "BLOB_API_URL",
    "BLOB_API_TOKEN",
    "ORPHAN_CLEANUP_ENABLED",
]


@pytest.fixture(autouse=True)
def reset_env_vars() -> Generator[None, None, None]:
    """Reset environment variables before each test"""
    original_env = os.environ.copy()

    for var in TEMPCLOUD_ENV_VARS:
        os.environ.pop(var, None)

    yield

    os.environ.clear()
    os.environ.update(original_env)


class FakeClock:
    """Manually advanced unix clock"""

    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


async def byte_stream(data: bytes, chunk_size: int = 4) -> AsyncIterator[bytes]:
    for i in range(0, len(data), chunk_size):
        yield data[i:i + chunk_size]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metadata_store(clock) -> InMemoryMetadataStore:
    return InMemoryMetadataStore(clock=clock)


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest_asyncio.fixture
async def deletion_queue(blob_store):
    queue = DeletionQueue(blob_store)
    await queue.start()
    yield queue
    await queue.stop()


@pytest.fixture
def engine(metadata_store, blob_store, deletion_queue, clock) -> LifecycleEngine:
    return LifecycleEngine(
        metadata_store=metadata_store,
        blob_store=blob_store,
        password_verifier=PasswordVerifier(iterations=1000),
        deletion_queue=deletion_queue,
        max_file_size=1024,
        default_ttl=3600,
        pending_ttl=900,
        clock=clock,
    )


@pytest.fixture
def make_file(engine):
    """Run a full upload and return the active file's id"""

    async def _make(data: bytes = b"0123456789", filename: str = "a.txt", **kwargs) -> str:
        session = await engine.begin_upload(filename, len(data), **kwargs)
        await engine.receive_upload(session.id, byte_stream(data))
        await engine.complete_upload(session.id)
        return session.id

    return _make
