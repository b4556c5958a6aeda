"""Notifications flowing in and out of the index manager.

``RefreshEvents`` is the outgoing side: subscribers hear once per
installed rebuild. ``FileChange`` is the incoming side: a watcher or
editor command reports what changed and a ``ChangeRouter`` decides how
the index reacts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

REASON_INITIAL = "initial"
REASON_MANUAL = "manual"
REASON_FILE_CHANGE = "file-change"

# FileChange kinds
FILE_CREATED = "file.created"
FILE_CHANGED = "file.changed"
FILE_DELETED = "file.deleted"
DIR_CREATED = "directory.created"
DIR_DELETED = "directory.deleted"
DIR_MOVED = "directory.moved"

CHANGE_KINDS = (
    FILE_CREATED, FILE_CHANGED, FILE_DELETED,
    DIR_CREATED, DIR_DELETED, DIR_MOVED,
)


@dataclass(frozen=True)
class RefreshEvent:
    """A fresh structure was installed."""

    reason: str


@dataclass(frozen=True)
class FileChange:
    """Something under the prompt root was created, changed, removed or moved."""

    kind: str
    path: Path
    dest_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.kind not in CHANGE_KINDS:
            raise ValueError(f"Unknown change kind '{self.kind}'")

    @property
    def is_directory(self) -> bool:
        return self.kind.startswith("directory.")


RefreshListener = Callable[[RefreshEvent], None]


class RefreshEvents:
    """Publish/subscribe for the ``refreshed`` signal."""

    def __init__(self) -> None:
        self._listeners: List[RefreshListener] = []

    def subscribe(self, listener: RefreshListener) -> Callable[[], None]:
        """Register *listener*; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: RefreshEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Refresh listener %r failed", listener)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
