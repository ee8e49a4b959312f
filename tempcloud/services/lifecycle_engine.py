"""File lifecycle engine: Pending -> Active -> Gone"""

import asyncio
import time
from typing import AsyncIterable, AsyncIterator, Callable, Optional, Tuple
from uuid import uuid4

from tempcloud.errors import (
    AlreadyExpiredError,
    DownloadLimitReachedError,
    FileExpiredError,
    FileMissingError,
    FileTooLargeError,
    InvalidPasswordError,
    InvalidRequestError,
    PasswordRequiredError,
    RecordNotFoundError,
    StoreUnavailableError,
    UploadIncompleteError,
)
from tempcloud.models.file_record import (
    DEFAULT_CONTENT_TYPE,
    FileRecord,
    FileSummary,
    UploadSession,
)
from tempcloud.services.blob_store import BlobStore
from tempcloud.services.deletion_queue import DeletionQueue
from tempcloud.services.metadata_store import MetadataStore
from tempcloud.services.password_verifier import PasswordVerifier
from tempcloud.services.record_codec import RecordDecodeError, decode_record, encode_record
from tempcloud.utils.file_security import build_blob_key
from tempcloud.utils.logger import get_logger

logger = get_logger(__name__)


PENDING_PREFIX = "pending:"
ACTIVE_PREFIX = "file:"


def pending_key(file_id: str) -> str:
    return f"{PENDING_PREFIX}{file_id}"


def active_key(file_id: str) -> str:
    return f"{ACTIVE_PREFIX}{file_id}"


def system_clock() -> int:
    """Current unix time in whole seconds"""
    return int(time.time())


class Download:
    """
    A successful consume: headers for the response plus the blob body

    When this was the final allowed download, the blob is queued for
    deletion once the body has been fully iterated or the download is
    closed, never before.
    """

    def __init__(
        self,
        record: FileRecord,
        is_final: bool,
        chunks: AsyncIterator[bytes],
        on_delivered: Optional[Callable[[], None]] = None,
    ):
        self.record = record
        self.is_final = is_final
        self._chunks = chunks
        self._on_delivered = on_delivered
        self._closed = False

    @property
    def filename(self) -> str:
        return self.record.filename

    @property
    def size(self) -> int:
        return self.record.size

    @property
    def content_type(self) -> str:
        return self.record.content_type

    @property
    def downloads_remaining(self) -> Optional[int]:
        return self.record.downloads_remaining

    async def iter_body(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._chunks:
                yield chunk
        finally:
            await self.close()

    async def read(self) -> bytes:
        """Collect the whole body in memory"""
        return b"".join([chunk async for chunk in self.iter_body()])

    async def close(self):
        if self._closed:
            return
        self._closed = True

        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()

        if self.is_final and self._on_delivered is not None:
            self._on_delivered()


class LifecycleEngine:
    """
    Owns every transition of a file record

    Records live in the metadata store under ``pending:<id>`` until the upload
    is confirmed and under ``file:<id>`` while downloadable. Absence of both is
    the terminal state. Store-level TTLs are set on every write but never
    relied on: expiry and download limits are re-checked on every access.
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        blob_store: BlobStore,
        password_verifier: PasswordVerifier,
        deletion_queue: DeletionQueue,
        max_file_size: int,
        default_ttl: int,
        pending_ttl: int = 900,
        strict_download_limit: bool = True,
        cas_max_attempts: int = 5,
        clock: Callable[[], int] = system_clock,
    ):
        self.metadata_store = metadata_store
        self.blob_store = blob_store
        self.password_verifier = password_verifier
        self.deletion_queue = deletion_queue
        self.max_file_size = max_file_size
        self.default_ttl = default_ttl
        self.pending_ttl = pending_ttl
        self.strict_download_limit = strict_download_limit
        self.cas_max_attempts = cas_max_attempts
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    async def begin_upload(
        self,
        filename: str,
        declared_size: int,
        content_type: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        max_downloads: Optional[int] = None,
        password: Optional[str] = None,
    ) -> UploadSession:
        """
        Open an upload session

        Persists a pending record with a short grace TTL so that abandoned
        sessions disappear on their own.

        Raises:
            InvalidRequestError: Missing filename or non-positive size
            FileTooLargeError: Declared size above the configured ceiling
        """
        if not filename or isinstance(declared_size, bool) or not isinstance(declared_size, int):
            raise InvalidRequestError()
        if declared_size <= 0:
            raise InvalidRequestError()
        if declared_size > self.max_file_size:
            raise FileTooLargeError(f"File too large. Max size: {self.max_file_size} bytes")

        file_id = str(uuid4())
        ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else self.default_ttl
        now = self.now()

        password_hash = None
        if password:
            password_hash = await self._run_blocking(self.password_verifier.hash, password)

        record = FileRecord(
            id=file_id,
            filename=filename,
            size=declared_size,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            created_at=now,
            expires_at=now + ttl,
            downloads_remaining=max_downloads if max_downloads and max_downloads > 0 else None,
            password_hash=password_hash,
            blob_key=build_blob_key(file_id, filename),
        )

        await self.metadata_store.put(pending_key(file_id), encode_record(record), self.pending_ttl)

        logger.info(
            "upload_started",
            file_id=file_id,
            declared_size=declared_size,
            expires_at=record.expires_at,
            max_downloads=record.downloads_remaining,
            has_password=record.has_password,
        )
        return UploadSession(id=file_id, blob_key=record.blob_key, expires_at=record.expires_at)

    async def receive_upload(self, file_id: str, chunks: AsyncIterable[bytes]) -> int:
        """
        Stream upload bytes into the blob store for a pending record

        Returns:
            Number of bytes written

        Raises:
            RecordNotFoundError: No pending record
            InvalidRequestError: Empty body
            FileTooLargeError: Body larger than the configured ceiling
        """
        loaded = await self._load(pending_key(file_id))
        if loaded is None:
            raise RecordNotFoundError("Upload session not found or expired")
        _, record = loaded

        received = 0
        exceeded = False

        async def bounded() -> AsyncIterator[bytes]:
            nonlocal received, exceeded
            async for chunk in chunks:
                received += len(chunk)
                if received > self.max_file_size:
                    exceeded = True
                    raise FileTooLargeError(f"File too large. Max size: {self.max_file_size} bytes")
                yield chunk

        try:
            written = await self.blob_store.put(record.blob_key, bounded(), record.content_type)
        except Exception:
            if not exceeded:
                raise
            # The blob store may wrap the error raised from inside the stream
            await self._delete_blob_quietly(record.blob_key)
            logger.warning("upload_too_large", file_id=file_id, received=received)
            raise FileTooLargeError(f"File too large. Max size: {self.max_file_size} bytes")

        if written == 0:
            await self.blob_store.delete(record.blob_key)
            raise InvalidRequestError("No file body provided")

        logger.info("upload_received", file_id=file_id, size=written)
        return written

    async def complete_upload(self, file_id: str) -> int:
        """
        Promote a pending record to active once its bytes are in the blob store

        Returns:
            The file's expiry time (unix seconds)

        Raises:
            RecordNotFoundError: No pending record (never begun, lapsed or already completed)
            UploadIncompleteError: Blob store has no bytes for the record
            AlreadyExpiredError: The file's lifetime ran out before completion
        """
        key = pending_key(file_id)
        loaded = await self._load(key)
        if loaded is None:
            raise RecordNotFoundError("Upload session not found or already finalized")
        _, record = loaded

        observed_size = await self.blob_store.head(record.blob_key)
        if observed_size is None:
            raise UploadIncompleteError()

        remaining = record.expires_at - self.now()
        if remaining <= 0:
            await self.metadata_store.delete(key)
            await self._delete_blob_quietly(record.blob_key)
            raise AlreadyExpiredError()

        record = record.model_copy(update={"size": observed_size})

        # Active must be durable before pending goes away; a crash in between
        # leaves a harmless duplicate that the grace TTL reclaims.
        await self.metadata_store.put(active_key(file_id), encode_record(record), remaining)
        await self.metadata_store.delete(key)

        logger.info("upload_completed", file_id=file_id, size=observed_size, expires_at=record.expires_at)
        return record.expires_at

    async def get_summary(self, file_id: str) -> FileSummary:
        """
        Public view of an active file

        Expired, exhausted, revoked and unknown ids all raise RecordNotFoundError.
        """
        loaded = await self._load(active_key(file_id))
        if loaded is None:
            raise RecordNotFoundError()
        _, record = loaded

        if record.is_expired(self.now()) or record.is_exhausted():
            raise RecordNotFoundError()

        return FileSummary.from_record(record)

    async def consume(self, file_id: str, password: Optional[str] = None) -> Download:
        """
        Serve one download of an active file

        Checks expiry, the download limit and the password in that order,
        commits the decremented counter (deleting the record on the final
        download) and opens the blob.

        Raises:
            RecordNotFoundError, FileExpiredError, DownloadLimitReachedError,
            PasswordRequiredError, InvalidPasswordError, FileMissingError,
            StoreUnavailableError
        """
        key = active_key(file_id)
        password_checked = False

        for attempt in range(self.cas_max_attempts):
            loaded = await self._load(key)
            if loaded is None:
                raise RecordNotFoundError()
            raw, record = loaded

            now = self.now()
            if record.is_expired(now):
                await self.metadata_store.delete(key)
                logger.info("file_expired", file_id=file_id, expires_at=record.expires_at)
                raise FileExpiredError()

            if record.is_exhausted():
                # A previous final download did not finish cleaning up
                await self.metadata_store.delete(key)
                await self._delete_blob_quietly(record.blob_key)
                logger.warning("stale_exhausted_record_removed", file_id=file_id)
                raise DownloadLimitReachedError()

            if record.password_hash is not None and not password_checked:
                if not password:
                    raise PasswordRequiredError()
                valid = await self._run_blocking(
                    self.password_verifier.verify, password, record.password_hash
                )
                if not valid:
                    logger.info("invalid_password", file_id=file_id)
                    raise InvalidPasswordError()
                password_checked = True

            remaining = record.downloads_remaining
            if remaining is not None:
                remaining -= 1
            is_final = remaining is not None and remaining <= 0
            updated = record.model_copy(update={"downloads_remaining": remaining})

            if await self._commit_download(key, raw, updated, is_final, now):
                break

            logger.debug(f"Download counter for {file_id} changed concurrently, retrying (attempt {attempt + 1})")
        else:
            logger.warning("download_contention", file_id=file_id, attempts=self.cas_max_attempts)
            raise StoreUnavailableError("Too much concurrent activity on this file, try again")

        chunks = await self.blob_store.get(updated.blob_key)
        if chunks is None:
            if not is_final:
                await self.metadata_store.delete(key)
            logger.error("blob_missing", file_id=file_id, blob_key=updated.blob_key)
            raise FileMissingError()

        logger.info(
            "download_started",
            file_id=file_id,
            downloads_remaining=updated.downloads_remaining,
            is_final=is_final,
        )

        blob_key = updated.blob_key
        return Download(
            updated,
            is_final,
            chunks,
            on_delivered=lambda: self.deletion_queue.schedule(blob_key),
        )

    async def revoke(self, file_id: str) -> bool:
        """
        Delete a file explicitly. Idempotent.

        Returns:
            True if a pending or active record existed
        """
        found = False
        for key in (active_key(file_id), pending_key(file_id)):
            loaded = await self._load(key)
            if loaded is None:
                continue
            _, record = loaded
            found = True
            await self.metadata_store.delete(key)
            await self._delete_blob_quietly(record.blob_key)

        if found:
            logger.info("file_revoked", file_id=file_id)
        return found

    async def _commit_download(
        self, key: str, raw: str, updated: FileRecord, is_final: bool, now: int
    ) -> bool:
        """
        Persist the post-download state of a record

        Returns:
            False if the record changed since it was read (strict mode only)
        """
        if updated.downloads_remaining is None:
            # Unlimited: nothing changes
            return True

        ttl = max(updated.expires_at - now, 1)
        new_value = None if is_final else encode_record(updated)

        if self.strict_download_limit:
            return await self.metadata_store.compare_and_swap(key, raw, new_value, ttl)

        # Read-then-write: concurrent finals may each serve one extra download
        if new_value is None:
            await self.metadata_store.delete(key)
        else:
            await self.metadata_store.put(key, new_value, ttl)
        return True

    async def _load(self, key: str) -> Optional[Tuple[str, FileRecord]]:
        """Read and decode a record; undecodable entries are removed and treated as absent"""
        raw = await self.metadata_store.get(key)
        if raw is None:
            return None
        try:
            return raw, decode_record(raw)
        except RecordDecodeError as e:
            logger.error(f"Discarding undecodable record {key}: {e}")
            await self.metadata_store.delete(key)
            return None

    async def _delete_blob_quietly(self, blob_key: str):
        try:
            await self.blob_store.delete(blob_key)
        except Exception as e:
            logger.error(f"Failed to delete blob {blob_key}: {e}")

    @staticmethod
    async def _run_blocking(func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)
