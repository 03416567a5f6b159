"""Watch the hook directory and feed new drop files to the detection service.

A watchdog observer reacts to created and modified files; a polling loop on
a fixed interval covers events the observer misses. Both run passes on the
same asyncio loop through ``DetectionService.process_pending``.
"""

import asyncio
import logging
from pathlib import Path

from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .detection import DetectionService
from .hooks import SKIP_FILES, is_prompt_file, is_response_file

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


def is_drop_file(path: str) -> bool:
    name = Path(path).name
    return name not in SKIP_FILES and (is_prompt_file(name) or is_response_file(name))


class _HookDirHandler(FileSystemEventHandler):
    """Runs on the observer thread; hands every relevant change to the loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, trigger):
        super().__init__()
        self._loop = loop
        self._trigger = trigger

    def on_created(self, event):
        if isinstance(event, FileCreatedEvent) and is_drop_file(event.src_path):
            self._loop.call_soon_threadsafe(self._trigger)

    def on_modified(self, event):
        if isinstance(event, FileModifiedEvent) and is_drop_file(event.src_path):
            self._loop.call_soon_threadsafe(self._trigger)

    def on_moved(self, event):
        # Writers that rename a temp file into place
        if isinstance(event, FileMovedEvent) and is_drop_file(event.dest_path):
            self._loop.call_soon_threadsafe(self._trigger)


class HookWatcher:
    def __init__(self, service: DetectionService, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.service = service
        self.poll_interval = poll_interval
        self._observer = None
        self._poll_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        if self.running:
            return
        self.service.initialize()
        loop = asyncio.get_running_loop()

        observer = Observer()
        observer.schedule(_HookDirHandler(loop, self.trigger), str(self.service.processor.hook_dir), recursive=False)
        try:
            observer.start()
        except OSError as e:
            logger.warning("File watcher unavailable, polling only: %s", e)
        else:
            self._observer = observer

        self.service.watching = True
        await self.service.process_pending()
        self._poll_task = asyncio.create_task(self._poll())
        logger.info("Watching %s (poll every %.1fs)", self.service.processor.hook_dir, self.poll_interval)

    async def stop(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self.service.watching = False
        self.service.emit_status()
        logger.info("Stopped watching %s", self.service.processor.hook_dir)

    def trigger(self) -> None:
        """Schedule a pass; must be called on the event loop thread."""
        task = asyncio.ensure_future(self.service.process_pending())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def run_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    # ── Private helpers ──────────────────────────────────────────────

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.service.process_pending()
            except Exception:
                logger.exception("Hook poll failed")
