"""
In-memory state shared by the HTTP routes: the known file list, the last
listing error and per-upload progress.

The store is refreshed by ``ListingPoller`` and updated optimistically after
uploads. Replacing the list is wholesale, so whichever fetch finishes last
wins.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from .models import FileRecord, UploadProgress

logger = logging.getLogger(__name__)


class FileStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._files: List[FileRecord] = []
        self._uploads: Dict[str, UploadProgress] = {}
        self.loading = True
        self.error: Optional[str] = None

    @property
    def files(self) -> List[FileRecord]:
        with self._lock:
            return list(self._files)

    @property
    def total_size(self) -> int:
        with self._lock:
            return sum(record.size for record in self._files)

    def add_file(self, record: FileRecord) -> None:
        with self._lock:
            self._files = [record] + [f for f in self._files if f.name != record.name]

    def update_files(self, records: List[FileRecord]) -> None:
        with self._lock:
            self._files = list(records)
            self.loading = False
            self.error = None

    def set_error(self, message: str) -> None:
        with self._lock:
            self.loading = False
            self.error = message

    # Upload progress

    @property
    def uploads(self) -> List[UploadProgress]:
        with self._lock:
            return [entry.model_copy() for entry in self._uploads.values()]

    def start_upload(self, upload_id: str, name: str, total: int) -> None:
        with self._lock:
            self._uploads[upload_id] = UploadProgress(upload_id=upload_id, name=name, total=total)

    def record_progress(self, upload_id: str, sent: int, total: int) -> None:
        with self._lock:
            entry = self._uploads.get(upload_id)
            if entry is None:
                return
            entry.sent = sent
            entry.total = total

    def finish_upload(self, upload_id: str, error: Optional[str] = None) -> None:
        with self._lock:
            entry = self._uploads.get(upload_id)
            if entry is None:
                return
            if error:
                entry.status = "failed"
                entry.error = error
            else:
                entry.status = "done"
                entry.sent = entry.total

    def clear_finished_uploads(self) -> int:
        with self._lock:
            finished = [key for key, entry in self._uploads.items() if entry.status != "uploading"]
            for key in finished:
                del self._uploads[key]
            return len(finished)


class ListingPoller:
    """Refresh a ``FileStore`` from ``fetch`` every ``interval`` seconds."""

    def __init__(self, store: FileStore, fetch: Callable[[], List[FileRecord]], interval: float):
        self.store = store
        self.fetch = fetch
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def refresh_once(self) -> bool:
        try:
            records = self.fetch()
        except Exception as exc:
            logger.error("Error fetching files: %s", exc)
            self.store.set_error(str(exc) or "Failed to load files")
            return False
        self.store.update_files(records)
        logger.debug("Refreshed listing with %s files", len(records))
        return True

    async def _run(self) -> None:
        while True:
            await run_in_threadpool(self.refresh_once)
            await asyncio.sleep(self.interval)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info("Starting listing poller (interval=%ss)", self.interval)
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
