"""File access port used by the walker and organizer.

The index never touches the disk directly: everything goes through a
``FileAccess`` implementation so tests (and hosts with their own virtual
file systems) can substitute one. ``LocalFileAccess`` is the default and
runs the blocking calls in a worker thread so the event loop stays free.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Union, runtime_checkable


PathLike = Union[str, "os.PathLike[str]"]

# Returns the current prompt root, or None when there is none yet.
RootResolver = Callable[[], Optional[PathLike]]


@dataclass(frozen=True)
class DirEntry:
    """One child of a listed directory."""

    name: str
    is_file: bool
    is_directory: bool


@runtime_checkable
class FileAccess(Protocol):
    """Asynchronous file system primitives consumed by the index."""

    async def exists(self, path: Path) -> bool:
        ...

    async def read_file(self, path: Path) -> str:
        ...

    async def stat_size(self, path: Path) -> int:
        ...

    async def list_directory(self, path: Path) -> List[DirEntry]:
        ...


def _scan_dir(path: Path) -> List[DirEntry]:
    with os.scandir(path) as it:
        return [
            DirEntry(
                name=entry.name,
                is_file=entry.is_file(),
                is_directory=entry.is_dir(),
            )
            for entry in it
        ]


class LocalFileAccess:
    """``FileAccess`` backed by the local disk."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(Path(path).exists)

    async def read_file(self, path: Path) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding=self.encoding)

    async def stat_size(self, path: Path) -> int:
        stat = await asyncio.to_thread(Path(path).stat)
        return stat.st_size

    async def list_directory(self, path: Path) -> List[DirEntry]:
        return await asyncio.to_thread(_scan_dir, Path(path))


def static_root(path: Optional[PathLike]) -> RootResolver:
    """Resolver that always returns *path* (or always None)."""
    root = Path(path).expanduser() if path is not None else None
    return lambda: root
