"""Filesystem walker — turn matching files under a root into PromptFiles.

The walker knows nothing about folders or caching; grouping is the
organizer's job and deciding when to scan is the index manager's.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from pathlib import Path, PurePosixPath
from typing import List, Optional, Sequence, Tuple

from promptindex.scanner.errors import IndexContractError
from promptindex.scanner.fs import FileAccess, PathLike
from promptindex.scanner.parser import parse_prompt
from promptindex.scanner.types import PromptFile, ScanOptions

logger = logging.getLogger(__name__)

README_STEM = "readme"
DEFAULT_READ_CONCURRENCY = 32


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def matches_any(relative: str, patterns: Sequence[str]) -> bool:
    """Match a POSIX relative path against exclude globs.

    ``**/x`` also matches ``x`` at the root, as it would in a glob walker.
    """
    for pattern in patterns:
        if fnmatch.fnmatchcase(relative, pattern):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatchcase(relative, pattern[3:]):
            return True
    return False


def file_stem(name: str, extensions: Sequence[str]) -> str:
    """Strip the matching configured extension (``a.prompt.md`` keeps ``.prompt``)."""
    lower = name.lower()
    for ext in sorted(extensions, key=len, reverse=True):
        if lower.endswith(ext):
            return name[: len(name) - len(ext)]
    return Path(name).stem


class FilesystemWalker:
    """Scan a directory tree for prompt files."""

    def __init__(
        self,
        file_access: FileAccess,
        *,
        read_concurrency: int = DEFAULT_READ_CONCURRENCY,
    ) -> None:
        self.fs = file_access
        self.read_concurrency = max(1, read_concurrency)

    async def scan(
        self,
        root: PathLike,
        options: Optional[ScanOptions] = None,
    ) -> List[PromptFile]:
        """Return a PromptFile for every matching file under *root*.

        A missing root yields ``[]``. Unreadable files are logged and left
        out. A failing directory listing propagates. Order is unspecified.
        """
        if root is None:
            raise IndexContractError("scan root must not be None")
        options = options or ScanOptions()
        root_path = Path(root).expanduser().absolute()

        if not await self.fs.exists(root_path):
            logger.debug("Scan root %s does not exist", root_path)
            return []

        candidates: List[Tuple[Path, str]] = []
        await self._collect(root_path, PurePosixPath(), 0, options, candidates)

        semaphore = asyncio.Semaphore(self.read_concurrency)

        async def _bounded(path: Path, name: str) -> Optional[PromptFile]:
            async with semaphore:
                return await self._read_prompt(path, name)

        results = await asyncio.gather(*(_bounded(p, n) for p, n in candidates))
        prompts = [r for r in results if r is not None]
        logger.debug(
            "Scanned %s: %d candidates, %d prompts",
            root_path, len(candidates), len(prompts),
        )
        return prompts

    async def _collect(
        self,
        directory: Path,
        relative: PurePosixPath,
        depth: int,
        options: ScanOptions,
        out: List[Tuple[Path, str]],
    ) -> None:
        entries = await self.fs.list_directory(directory)
        subdirs: List[Tuple[Path, PurePosixPath]] = []

        for entry in entries:
            if not options.include_hidden and is_hidden(entry.name):
                continue
            rel = relative / entry.name
            if matches_any(rel.as_posix(), options.exclude_patterns):
                continue
            if entry.is_directory:
                if depth < options.max_depth:
                    subdirs.append((directory / entry.name, rel))
                continue
            if not entry.is_file or not options.matches_extension(entry.name):
                continue
            stem = file_stem(entry.name, options.file_extensions)
            if stem.lower() == README_STEM:
                continue
            out.append((directory / entry.name, stem))

        for subdir, rel in subdirs:
            await self._collect(subdir, rel, depth + 1, options, out)

    async def _read_prompt(
        self,
        path: Path,
        name: str,
    ) -> Optional[PromptFile]:
        try:
            size = await self.fs.stat_size(path)
            text = await self.fs.read_file(path)
            parsed = parse_prompt(text, name)
        except Exception as exc:
            logger.warning("Skipping unreadable prompt file %s: %s", path, exc)
            return None

        return PromptFile(
            name=name,
            title=parsed.title,
            path=path,
            description=parsed.description,
            tags=parsed.tags,
            file_size=size,
        )
