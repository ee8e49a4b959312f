"""Blob stores: byte storage addressed by key"""

import asyncio
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Dict, Iterator, Optional, Tuple
from urllib.parse import quote
from uuid import uuid4

import aiofiles
import aiofiles.os
import aiohttp

from tempcloud.errors import StoreUnavailableError
from tempcloud.utils.logger import get_logger

logger = get_logger(__name__)


CHUNK_SIZE = 64 * 1024
PARTIAL_SUFFIX = ".part"


class BlobStore(ABC):
    """Contract for the blob store"""

    @abstractmethod
    async def put(self, key: str, chunks: AsyncIterable[bytes], content_type: str) -> int:
        """Stream ``chunks`` into ``key`` and return the number of bytes written"""

    @abstractmethod
    async def head(self, key: str) -> Optional[int]:
        """Return the blob size, or None if it does not exist"""

    @abstractmethod
    async def get(self, key: str) -> Optional[AsyncIterator[bytes]]:
        """Return an iterator over the blob bytes, or None if it does not exist"""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the blob; deleting a missing blob is not an error"""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class LocalBlobStore(BlobStore):
    """
    Blob store on the local filesystem

    Keys map to paths beneath ``root``. Writes land in a temporary file that
    is renamed into place, so ``head`` never reports a half-written blob.
    """

    def __init__(self, root):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path == self.root or self.root not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key!r}")
        return path

    async def put(self, key: str, chunks: AsyncIterable[bytes], content_type: str) -> int:
        path = self._path(key)
        tmp_path = path.with_name(f"{path.name}.{uuid4().hex}{PARTIAL_SUFFIX}")
        written = 0
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                async for chunk in chunks:
                    if chunk:
                        await f.write(chunk)
                        written += len(chunk)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to write blob {key}: {e}")
            await self._discard(tmp_path)
            raise StoreUnavailableError("Blob store unavailable") from e
        except BaseException:
            await self._discard(tmp_path)
            raise

        logger.debug(f"Stored blob {key} ({written} bytes, {content_type})")
        return written

    async def head(self, key: str) -> Optional[int]:
        try:
            stat = await aiofiles.os.stat(self._path(key))
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreUnavailableError("Blob store unavailable") from e
        return stat.st_size

    async def get(self, key: str) -> Optional[AsyncIterator[bytes]]:
        if await self.head(key) is None:
            return None
        return self._read(self._path(key))

    async def _read(self, path: Path) -> AsyncIterator[bytes]:
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StoreUnavailableError("Blob store unavailable") from e

        # Drop the per-upload directory once it is empty
        try:
            await aiofiles.os.rmdir(path.parent)
        except OSError:
            pass

    async def ping(self) -> bool:
        return await aiofiles.os.path.isdir(self.root)

    def list_blobs(self) -> Iterator[Tuple[str, float]]:
        """
        List stored blobs

        Returns:
            Iterator of (key, modification time) pairs, partial writes excluded
        """
        for file_path in self.root.rglob("*"):
            if not file_path.is_file() or file_path.name.endswith(PARTIAL_SUFFIX):
                continue
            try:
                mtime = file_path.stat().st_mtime
            except FileNotFoundError:
                continue
            yield file_path.relative_to(self.root).as_posix(), mtime

    @staticmethod
    async def _discard(path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except OSError:
            pass


class HttpBlobStore(BlobStore):
    """
    Blob store behind an HTTP object endpoint

    Objects live at ``<base_url>/<key>`` and are managed with PUT, HEAD, GET
    and DELETE. Idempotent requests are retried with exponential backoff;
    uploads are not, since the body stream cannot be replayed.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        retry_attempts: int = 3,
        backoff_base: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.backoff_base = backoff_base
        self._session: Optional[aiohttp.ClientSession] = None

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{quote(key, safe='/')}"

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def _request_status(self, method: str, key: str) -> Tuple[int, Dict[str, str]]:
        """Run an idempotent request with retries and return (status, headers)"""
        session = await self._get_session()

        for attempt in range(self.retry_attempts):
            try:
                async with session.request(method, self._url(key), headers=self._headers()) as response:
                    if response.status >= 500:
                        raise aiohttp.ClientResponseError(
                            response.request_info,
                            response.history,
                            status=response.status,
                            message=f"{method} {key} returned {response.status}",
                        )
                    return response.status, dict(response.headers)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt < self.retry_attempts - 1:
                    wait_time = self.backoff_base * (2 ** attempt)
                    logger.warning(
                        f"Blob {method} attempt {attempt + 1}/{self.retry_attempts} failed, "
                        f"retrying in {wait_time}s: {e}"
                    )
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(f"Blob {method} {key} failed after {self.retry_attempts} attempts: {e}")
                    raise StoreUnavailableError("Blob store unavailable") from e

        raise StoreUnavailableError("Blob store unavailable")

    async def put(self, key: str, chunks: AsyncIterable[bytes], content_type: str) -> int:
        session = await self._get_session()
        written = 0

        async def counted() -> AsyncIterator[bytes]:
            nonlocal written
            async for chunk in chunks:
                written += len(chunk)
                yield chunk

        headers = self._headers()
        headers["Content-Type"] = content_type

        try:
            async with session.put(self._url(key), data=counted(), headers=headers) as response:
                if response.status not in (200, 201, 204):
                    error_text = await response.text()
                    logger.error(f"Blob upload failed: {response.status} - {error_text}")
                    raise StoreUnavailableError(f"Blob upload failed with status {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Blob upload of {key} failed: {e}")
            raise StoreUnavailableError("Blob store unavailable") from e

        return written

    async def head(self, key: str) -> Optional[int]:
        status, headers = await self._request_status("HEAD", key)
        if status == 404:
            return None
        if status != 200:
            raise StoreUnavailableError(f"Blob probe failed with status {status}")
        return int(headers.get("Content-Length", 0))

    async def get(self, key: str) -> Optional[AsyncIterator[bytes]]:
        if await self.head(key) is None:
            return None
        return self._read(key)

    async def _read(self, key: str) -> AsyncIterator[bytes]:
        session = await self._get_session()
        async with session.get(self._url(key), headers=self._headers()) as response:
            if response.status != 200:
                raise StoreUnavailableError(f"Blob read failed with status {response.status}")
            async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                yield chunk

    async def delete(self, key: str) -> None:
        status, _ = await self._request_status("DELETE", key)
        if status not in (200, 202, 204, 404):
            raise StoreUnavailableError(f"Blob delete failed with status {status}")

    async def ping(self) -> bool:
        """Any non-5xx answer from the endpoint counts as reachable"""
        try:
            await self._request_status("HEAD", "")
        except StoreUnavailableError:
            return False
        return True

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None


def create_blob_store(config) -> BlobStore:
    """Build the configured blob store"""
    if config.blob_storage_backend == "http":
        return HttpBlobStore(
            config.blob_api_url,
            token=config.blob_api_token,
            timeout=config.blob_timeout,
            retry_attempts=config.blob_retry_attempts,
        )
    return LocalBlobStore(os.path.expanduser(config.blob_storage_path))
