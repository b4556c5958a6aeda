"""Watchdog bridge — feed real file system events into a ChangeRouter.

Watchdog delivers events on its own observer thread; each one is
translated to a ``FileChange`` and handed to the event loop with
``call_soon_threadsafe`` so the index manager is only ever touched from
the loop. Requires the ``watch`` extra (``pip install promptindex[watch]``).
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from promptindex.scanner.events import (
    DIR_CREATED,
    DIR_DELETED,
    DIR_MOVED,
    FILE_CHANGED,
    FILE_CREATED,
    FILE_DELETED,
    FileChange,
)
from promptindex.scanner.manager import ChangeRouter

logger = logging.getLogger(__name__)

_FILE_KINDS = {
    "created": FILE_CREATED,
    "modified": FILE_CHANGED,
    "deleted": FILE_DELETED,
    "moved": FILE_CHANGED,
}
_DIR_KINDS = {
    "created": DIR_CREATED,
    "deleted": DIR_DELETED,
    "moved": DIR_MOVED,
}


def _as_path(raw: Any) -> Path:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return Path(raw)


def translate_event(event: FileSystemEvent) -> Optional[FileChange]:
    """Map a watchdog event to a FileChange, or None if it is irrelevant."""
    kinds = _DIR_KINDS if event.is_directory else _FILE_KINDS
    kind = kinds.get(event.event_type)
    if kind is None:
        return None
    dest = getattr(event, "dest_path", None) or None
    return FileChange(
        kind=kind,
        path=_as_path(event.src_path),
        dest_path=_as_path(dest) if dest else None,
    )


class _Handler(FileSystemEventHandler):
    def __init__(self, router: ChangeRouter, loop: asyncio.AbstractEventLoop) -> None:
        self.router = router
        self.loop = loop

    def on_any_event(self, event: FileSystemEvent) -> None:
        change = translate_event(event)
        if change is None or self.loop.is_closed():
            return
        try:
            self.loop.call_soon_threadsafe(self.router.submit, change)
        except RuntimeError as exc:
            logger.debug("Dropping %s for %s: %s", change.kind, change.path, exc)


class PromptDirectoryWatcher:
    """Watch a prompt root recursively and route changes to the index."""

    def __init__(
        self,
        root: Path,
        router: ChangeRouter,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.root = Path(root)
        self.router = router
        self.loop = loop or asyncio.get_running_loop()
        self._observer: Optional[Observer] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(_Handler(self.router, self.loop), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.debug("Watching %s for prompt changes", self.root)

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=2.0)

    def __enter__(self) -> "PromptDirectoryWatcher":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
