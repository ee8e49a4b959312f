"""Cleanup Service for blobs that outlived their metadata"""

import asyncio
import time
from typing import Callable, Optional

from tempcloud.services.blob_store import LocalBlobStore
from tempcloud.services.lifecycle_engine import active_key, pending_key
from tempcloud.services.metadata_store import MetadataStore
from tempcloud.utils.file_security import file_id_from_blob_key
from tempcloud.utils.logger import get_logger

logger = get_logger(__name__)


class CleanupService:
    """
    Periodically removes orphaned blobs

    A blob is orphaned when neither a pending nor an active record refers to
    its upload id, which happens when a deferred deletion was lost or a
    store TTL reclaimed the metadata first.
    """

    def __init__(
        self,
        blob_store: LocalBlobStore,
        metadata_store: MetadataStore,
        interval_minutes: int = 30,
        grace_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self._blob_store = blob_store
        self._metadata_store = metadata_store
        self._interval_minutes = interval_minutes
        self._grace_seconds = grace_seconds
        self._clock = clock
        self._running = False
        self._cleanup_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the cleanup service with periodic execution"""
        if self._running:
            logger.warning("Cleanup service is already running")
            return

        self._running = True
        self._cleanup_task = asyncio.create_task(self._periodic_cleanup())
        logger.info(f"Cleanup service started (interval: {self._interval_minutes} minutes)")

    async def stop(self):
        """Stop the cleanup service"""
        if not self._running:
            return

        self._running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass

        logger.info("Cleanup service stopped")

    async def _periodic_cleanup(self):
        interval_seconds = self._interval_minutes * 60

        while self._running:
            try:
                await asyncio.sleep(interval_seconds)
                await self.cleanup_orphaned_blobs()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic cleanup: {e}", exc_info=True)

    async def cleanup_orphaned_blobs(self) -> int:
        """
        Delete blobs older than the grace period that no record refers to

        Returns:
            Number of blobs deleted
        """
        cutoff = self._clock() - self._grace_seconds
        cleaned_count = 0

        for blob_key, mtime in list(self._blob_store.list_blobs()):
            if mtime > cutoff:
                continue

            file_id = file_id_from_blob_key(blob_key)
            if file_id is None:
                logger.debug(f"Skipping foreign blob {blob_key}")
                continue

            if await self._metadata_store.get(active_key(file_id)) is not None:
                continue
            if await self._metadata_store.get(pending_key(file_id)) is not None:
                continue

            try:
                await self._blob_store.delete(blob_key)
                cleaned_count += 1
                logger.debug(f"Cleaned up orphaned blob: {blob_key}")
            except Exception as e:
                logger.warning(f"Failed to clean up {blob_key}: {e}")

        if cleaned_count > 0:
            logger.info(f"Cleaned up {cleaned_count} orphaned blob(s)")

        return cleaned_count
