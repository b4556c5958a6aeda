"""Index manager — owns the current PromptStructure and decides when to rebuild.

State machine::

    EMPTY ──get_structure()/build()──▶ BUILDING ──▶ READY
      ▲                                   ▲           │
      │                                   │ timer     │ invalidate()
      └──────────── PENDING_DEBOUNCE ◀────┴───────────┘

* At most one scan runs at a time. Concurrent ``build()``/``get_structure()``
  callers share the in-flight task instead of starting another scan.
* ``invalidate()`` drops the snapshot and (re)starts a debounce timer, so a
  burst of change notifications collapses into one rebuild. Everyone who
  invalidated inside the same window awaits the same result.
* ``rebuild_now()`` cancels the pending timer and rebuilds immediately; the
  superseded debounce waiters get the forced result.
* ``get_structure()`` during a pending debounce serves that window at once
  rather than leaving the timer armed for a second scan.
* A build that is already running is never cancelled. If an invalidation
  arrives mid-build, the finished build resolves its own callers but its
  snapshot is not installed; a later build produces the fresh one.
* Missing roots and scan failures are absorbed into the empty structure and
  logged. Only ``IndexContractError`` (a caller bug) propagates.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from pathlib import Path
from typing import Callable, Optional, Set

from promptindex.scanner.errors import IndexContractError, PromptIndexError
from promptindex.scanner.events import (
    DIR_MOVED,
    REASON_FILE_CHANGE,
    REASON_INITIAL,
    REASON_MANUAL,
    FileChange,
    RefreshEvent,
    RefreshEvents,
    RefreshListener,
)
from promptindex.scanner.fs import FileAccess, RootResolver
from promptindex.scanner.organizer import PromptOrganizer
from promptindex.scanner.types import PromptStructure, ScanOptions
from promptindex.scanner.walker import FilesystemWalker

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 250


class IndexState(str, enum.Enum):
    EMPTY = "empty"
    BUILDING = "building"
    READY = "ready"
    PENDING_DEBOUNCE = "pending-debounce"


class ScheduledRebuild:
    """A resettable timer plus the future shared by everyone waiting on it."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay: float,
        callback: Callable[["ScheduledRebuild"], None],
        reason: str,
    ) -> None:
        self._loop = loop
        self._delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self.reason = reason
        self.future: asyncio.Future[PromptStructure] = loop.create_future()
        self.reset()

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def reset(self) -> None:
        """Restart the quiet period from now."""
        self.cancel()
        self._handle = self._loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def resolve(self, structure: PromptStructure) -> None:
        if not self.future.done():
            self.future.set_result(structure)

    def fail(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)

    def abandon(self) -> None:
        self.cancel()
        if not self.future.done():
            self.future.cancel()

    def _fire(self) -> None:
        self._handle = None
        self._callback(self)


class IndexManager:
    """In-memory index of a prompt directory tree."""

    def __init__(
        self,
        file_access: FileAccess,
        root_resolver: RootResolver,
        *,
        walker: Optional[FilesystemWalker] = None,
        organizer: Optional[PromptOrganizer] = None,
        scan_options: Optional[ScanOptions] = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        events: Optional[RefreshEvents] = None,
    ) -> None:
        if debounce_ms < 0:
            raise IndexContractError("debounce_ms must be >= 0")
        self.fs = file_access
        self.resolve_root = root_resolver
        self.scan_options = scan_options or ScanOptions()
        self.walker = walker or FilesystemWalker(file_access)
        self.organizer = organizer or PromptOrganizer(file_access, self.scan_options)
        self.debounce_seconds = debounce_ms / 1000.0
        self.events = events or RefreshEvents()

        self._structure: Optional[PromptStructure] = None
        self._installed_once = False
        self._generation = 0
        self._build: Optional[asyncio.Task] = None
        self._build_generation = 0
        self._scheduled: Optional[ScheduledRebuild] = None
        self._debounce_tasks: Set[asyncio.Task] = set()
        self._closed = False

    # ── Inspection ────────────────────────────────────────────────

    @property
    def state(self) -> IndexState:
        if self._build is not None:
            return IndexState.BUILDING
        if self._scheduled is not None:
            return IndexState.PENDING_DEBOUNCE
        if self._structure is not None:
            return IndexState.READY
        return IndexState.EMPTY

    @property
    def cached(self) -> Optional[PromptStructure]:
        """The installed snapshot, or None. Never triggers I/O."""
        return self._structure

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: RefreshListener) -> Callable[[], None]:
        """Listen for ``RefreshEvent``s; returns an unsubscribe function."""
        return self.events.subscribe(listener)

    # ── Reads and builds ──────────────────────────────────────────

    async def get_structure(self) -> PromptStructure:
        """Return the cached snapshot, building it first if needed."""
        self._check_open()
        if self._structure is not None:
            return self._structure
        if self._scheduled is not None:
            # Serve the pending window now instead of scanning twice.
            scheduled, self._scheduled = self._scheduled, None
            return await self._build_for(scheduled, scheduled.reason)
        reason = REASON_FILE_CHANGE if self._installed_once else REASON_INITIAL
        return await self.build(reason)

    async def build(self, reason: str = REASON_MANUAL) -> PromptStructure:
        """Scan now, or join the scan already in flight."""
        self._check_open()
        if self._build is None:
            self._build_generation = self._generation
            self._build = asyncio.ensure_future(
                self._run_build(self._generation, reason)
            )
        return await asyncio.shield(self._build)

    def invalidate(self, reason: str = REASON_FILE_CHANGE) -> "asyncio.Future[PromptStructure]":
        """Drop the snapshot and schedule a debounced rebuild.

        Must be called from the event loop. Returns the future every caller
        in the current debounce window shares.
        """
        self._check_open()
        self._generation += 1
        self._structure = None
        if self._scheduled is None:
            self._scheduled = ScheduledRebuild(
                asyncio.get_running_loop(),
                self.debounce_seconds,
                self._on_debounce_elapsed,
                reason,
            )
        else:
            self._scheduled.reset()
        return self._scheduled.future

    async def rebuild(self, reason: str = REASON_FILE_CHANGE) -> PromptStructure:
        """Debounced rebuild; resolves once the coalesced rebuild finishes."""
        return await asyncio.shield(self.invalidate(reason))

    async def rebuild_now(self, reason: str = REASON_MANUAL) -> PromptStructure:
        """Rebuild immediately, superseding any pending debounced rebuild."""
        self._check_open()
        self._generation += 1
        self._structure = None
        superseded, self._scheduled = self._scheduled, None
        return await self._build_for(superseded, reason)

    async def invalidate_force(self, reason: str = REASON_MANUAL) -> PromptStructure:
        """Same as :meth:`rebuild_now`."""
        return await self.rebuild_now(reason)

    # ── Lifecycle ─────────────────────────────────────────────────

    async def close(self) -> None:
        """Cancel pending work, wait for a running scan and drop the snapshot."""
        if self._closed:
            return
        self._closed = True
        scheduled, self._scheduled = self._scheduled, None
        if scheduled is not None:
            scheduled.abandon()
        for task in list(self._debounce_tasks):
            task.cancel()
        pending = set(self._debounce_tasks)
        if self._build is not None:
            pending.add(self._build)
        if pending:
            await asyncio.wait(pending)
        self._structure = None
        self.events.clear()

    async def __aenter__(self) -> "IndexManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Internals ─────────────────────────────────────────────────

    def _check_open(self) -> None:
        if self._closed:
            raise PromptIndexError("IndexManager is closed")

    async def _build_for(
        self,
        superseded: Optional[ScheduledRebuild],
        reason: str,
    ) -> PromptStructure:
        """Build now and hand the result to a superseded debounce window."""
        if superseded is not None:
            superseded.cancel()
        try:
            structure = await self._build_current(reason)
        except asyncio.CancelledError:
            if superseded is not None:
                self._complete_in_background(superseded)
            raise
        except Exception as exc:
            if superseded is not None:
                superseded.fail(exc)
            raise
        if superseded is not None:
            superseded.resolve(structure)
        return structure

    async def _build_current(self, reason: str) -> PromptStructure:
        """Build a snapshot that reflects every invalidation issued so far."""
        while self._build is not None and self._build_generation != self._generation:
            # Let the stale scan finish; it is never cancelled.
            await asyncio.wait({self._build})
        return await self.build(reason)

    async def _run_build(self, generation: int, reason: str) -> PromptStructure:
        try:
            structure = await self._scan()
        finally:
            if self._build is asyncio.current_task():
                self._build = None

        if generation != self._generation:
            logger.debug("Index build superseded by a newer invalidation; not installing")
            return structure

        self._structure = structure
        self._installed_once = True
        self.events.emit(RefreshEvent(reason))
        return structure

    async def _scan(self) -> PromptStructure:
        try:
            root = self.resolve_root()
        except Exception:
            logger.exception("Could not resolve the prompt root")
            return PromptStructure.empty()
        if root is None:
            logger.debug("No prompt root available; index is empty")
            return PromptStructure.empty()

        root_path = Path(root).expanduser().absolute()
        logger.debug("Building prompt index for %s", root_path)
        try:
            if not await self.fs.exists(root_path):
                logger.debug("Prompt root %s does not exist; index is empty", root_path)
                return PromptStructure.empty()
            prompts = await self.walker.scan(root_path, self.scan_options)
            structure = await self.organizer.organize(prompts, root_path)
        except IndexContractError:
            raise
        except Exception:
            logger.exception("Failed to build prompt index for %s", root_path)
            return PromptStructure.empty()

        logger.debug(
            "Index built: %d folders, %d root prompts",
            len(structure.folders), len(structure.root_prompts),
        )
        return structure

    def _on_debounce_elapsed(self, scheduled: ScheduledRebuild) -> None:
        if self._scheduled is scheduled:
            self._scheduled = None
        self._complete_in_background(scheduled)

    def _complete_in_background(self, scheduled: ScheduledRebuild) -> None:
        task = asyncio.ensure_future(self._complete_scheduled(scheduled))
        self._debounce_tasks.add(task)
        task.add_done_callback(self._debounce_tasks.discard)

    async def _complete_scheduled(self, scheduled: ScheduledRebuild) -> None:
        try:
            structure = await self._build_current(scheduled.reason)
        except asyncio.CancelledError:
            scheduled.abandon()
            raise
        except Exception as exc:
            logger.exception("Debounced index rebuild failed")
            scheduled.fail(exc)
            return
        scheduled.resolve(structure)


class ChangeRouter:
    """Turn ``FileChange`` notifications into index rebuilds.

    File changes that cannot affect the index (wrong extension) are
    ignored. Directory moves rebuild immediately so whoever moved the
    folder sees the new layout; everything else goes through the debounce.
    """

    def __init__(
        self,
        manager: IndexManager,
        scan_options: Optional[ScanOptions] = None,
    ) -> None:
        self.manager = manager
        self.scan_options = scan_options or manager.scan_options
        self._tasks: Set[asyncio.Task] = set()

    def is_relevant(self, change: FileChange) -> bool:
        if change.is_directory:
            return True
        names = [change.path.name]
        if change.dest_path is not None:
            names.append(change.dest_path.name)
        return any(self.scan_options.matches_extension(name) for name in names)

    async def dispatch(self, change: FileChange) -> Optional[PromptStructure]:
        if not self.is_relevant(change):
            logger.debug("Ignoring %s for %s", change.kind, change.path)
            return None
        logger.debug("Rebuilding index after %s for %s", change.kind, change.path)
        if change.kind == DIR_MOVED:
            return await self.manager.rebuild_now(REASON_FILE_CHANGE)
        return await self.manager.rebuild(REASON_FILE_CHANGE)

    def submit(self, change: FileChange) -> asyncio.Task:
        """Dispatch without awaiting; for callers such as file watchers."""
        task = asyncio.ensure_future(self.dispatch(change))
        self._tasks.add(task)
        task.add_done_callback(self._on_dispatch_done)
        return task

    def _on_dispatch_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Index rebuild after file change failed: %s", exc)
