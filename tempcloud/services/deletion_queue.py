"""Deferred, fire-and-forget blob deletion"""

import asyncio
from typing import Optional

from tempcloud.services.blob_store import BlobStore
from tempcloud.utils.logger import get_logger

logger = get_logger(__name__)


class DeletionQueue:
    """
    Background worker that deletes blobs after their last download

    Delivery is best-effort: failures are logged and dropped, and anything
    still queued when the process dies is lost. Orphaned blobs left behind
    that way are picked up by the cleanup service.
    """

    def __init__(self, blob_store: BlobStore):
        self._blob_store = blob_store
        self._queue: asyncio.Queue = asyncio.Queue()
        self._running = False
        self._worker_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the deletion worker"""
        if self._running:
            logger.warning("Deletion queue is already running")
            return

        self._running = True
        self._worker_task = asyncio.create_task(self._process_queue())
        logger.info("Deletion queue started")

    async def stop(self):
        """Stop the deletion worker after draining what is already queued"""
        if not self._running:
            return

        await self.join()
        self._running = False
        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        logger.info("Deletion queue stopped")

    def schedule(self, blob_key: str):
        """Queue a blob for deletion without waiting for it"""
        if not self._running:
            logger.warning(f"Deletion queue not running, {blob_key} will wait until it starts")
        self._queue.put_nowait(blob_key)
        logger.debug(f"Scheduled blob deletion: {blob_key}")

    async def join(self):
        """Wait until every scheduled deletion has been attempted"""
        await self._queue.join()

    def pending(self) -> int:
        return self._queue.qsize()

    async def _process_queue(self):
        while self._running:
            try:
                try:
                    blob_key = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self._blob_store.delete(blob_key)
                    logger.info("blob_deleted", blob_key=blob_key)
                except Exception as e:
                    logger.error(f"Deferred deletion of {blob_key} failed: {e}")
                finally:
                    self._queue.task_done()

            except asyncio.CancelledError:
                break
