"""Prompt organizer — group scanned PromptFiles into a PromptStructure.

Every distinct directory that holds prompts becomes its own PromptFolder,
keyed by its path relative to the root, so ``a/b/x.md`` lands in folder
``a/b`` rather than being flattened into ``a``. A separate listing pass
adds folders that contain no prompts so a tree view can still show them.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional

from promptindex.scanner.errors import IndexContractError
from promptindex.scanner.fs import FileAccess, PathLike
from promptindex.scanner.types import (
    PromptFile,
    PromptFolder,
    PromptStructure,
    ScanOptions,
    sort_key,
)
from promptindex.scanner.walker import is_hidden, matches_any

logger = logging.getLogger(__name__)


def _by_title(prompt: PromptFile):
    return (sort_key(prompt.title), str(prompt.path))


def _by_name(folder: PromptFolder):
    return (sort_key(folder.name), folder.relative_path)


class PromptOrganizer:
    """Build a PromptStructure from a flat list of PromptFiles."""

    def __init__(
        self,
        file_access: FileAccess,
        options: Optional[ScanOptions] = None,
    ) -> None:
        self.fs = file_access
        self.options = options or ScanOptions()

    async def organize(
        self,
        prompts: Iterable[PromptFile],
        root: PathLike,
    ) -> PromptStructure:
        if prompts is None or root is None:
            raise IndexContractError("organize() needs prompts and a root path")
        root_path = Path(root).expanduser().absolute()

        root_prompts: List[PromptFile] = []
        grouped: Dict[str, List[PromptFile]] = {}

        for prompt in prompts:
            try:
                relative = PurePosixPath(Path(prompt.path).relative_to(root_path).as_posix())
            except ValueError as exc:
                raise IndexContractError(
                    f"{prompt.path} is not inside the scanned root {root_path}"
                ) from exc
            parent = relative.parent.as_posix()
            if parent in ("", "."):
                root_prompts.append(prompt)
            else:
                grouped.setdefault(parent, []).append(prompt)

        for relative_dir in await self._list_folders(root_path):
            grouped.setdefault(relative_dir, [])

        folders = [
            PromptFolder(
                name=PurePosixPath(relative_dir).name,
                path=root_path.joinpath(*PurePosixPath(relative_dir).parts),
                relative_path=relative_dir,
                prompts=tuple(sorted(members, key=_by_title)),
            )
            for relative_dir, members in grouped.items()
        ]
        folders.sort(key=_by_name)

        return PromptStructure(
            folders=tuple(folders),
            root_prompts=tuple(sorted(root_prompts, key=_by_title)),
        )

    async def _list_folders(self, root: Path) -> List[str]:
        """Relative paths of every visible directory below *root*."""
        found: List[str] = []
        pending = [(root, PurePosixPath(), 0)]
        while pending:
            directory, relative, depth = pending.pop()
            if depth >= self.options.max_depth:
                continue
            for entry in await self.fs.list_directory(directory):
                if not entry.is_directory:
                    continue
                if not self.options.include_hidden and is_hidden(entry.name):
                    continue
                rel = relative / entry.name
                if matches_any(rel.as_posix(), self.options.exclude_patterns):
                    continue
                found.append(rel.as_posix())
                pending.append((directory / entry.name, rel, depth + 1))
        logger.debug("Found %d folders under %s", len(found), root)
        return found
