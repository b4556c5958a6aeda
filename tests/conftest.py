"""Shared fixtures: a sample prompt tree and instrumented file access."""

from __future__ import annotations

import asyncio
from collections import Counter
from pathlib import Path
from typing import Iterable, List

import pytest

from promptindex.scanner.fs import DirEntry, LocalFileAccess
from promptindex.scanner.walker import FilesystemWalker


class RecordingFileAccess(LocalFileAccess):
    """LocalFileAccess that counts calls and can be told to fail."""

    def __init__(
        self,
        fail_reads: Iterable[str] = (),
        fail_listing: Iterable[str] = (),
    ) -> None:
        super().__init__()
        self.calls: Counter = Counter()
        self.fail_reads = set(fail_reads)
        self.fail_listing = set(fail_listing)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def exists(self, path: Path) -> bool:
        self.calls["exists"] += 1
        return await super().exists(path)

    async def read_file(self, path: Path) -> str:
        self.calls["read_file"] += 1
        if Path(path).name in self.fail_reads:
            raise PermissionError(f"cannot read {path}")
        return await super().read_file(path)

    async def stat_size(self, path: Path) -> int:
        self.calls["stat_size"] += 1
        return await super().stat_size(path)

    async def list_directory(self, path: Path) -> List[DirEntry]:
        self.calls["list_directory"] += 1
        if Path(path).name in self.fail_listing:
            raise OSError(f"cannot list {path}")
        return await super().list_directory(path)


class CountingWalker(FilesystemWalker):
    """Walker that counts scans and can linger so scans overlap."""

    def __init__(self, file_access, delay: float = 0.0) -> None:
        super().__init__(file_access)
        self.scans = 0
        self.delay = delay

    async def scan(self, root, options=None):
        self.scans += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return await super().scan(root, options)


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def prompt_tree(tmp_path: Path) -> Path:
    """A prompt root with prompts at depth 0, 1 and 2 plus an empty folder.

    root/
      alpha.md              (front matter title "Alpha")
      zulu-notes.md         (no header, no heading)
      README.md             (always excluded)
      notes.txt             (wrong extension)
      team/
        banana.md           "Banana"
        apple.md            "apple"
        cherry.md           "Cherry"
        deep/nested.md      "# Nested Heading"
      empty/
      .hidden/secret.md
    """
    root = tmp_path / "prompts"
    write(root / "alpha.md", "---\ntitle: Alpha\ntags: [one, two]\n---\nBody\n")
    write(root / "zulu-notes.md", "just text\n")
    write(root / "README.md", "# Readme\n")
    write(root / "notes.txt", "# Not a prompt\n")
    write(root / "team" / "banana.md", "---\ntitle: Banana\n---\n")
    write(root / "team" / "apple.md", "---\ntitle: apple\n---\n")
    write(root / "team" / "cherry.md", "---\ntitle: Cherry\n---\n")
    write(root / "team" / "deep" / "nested.md", "# Nested Heading\n\ntext\n")
    (root / "empty").mkdir()
    write(root / ".hidden" / "secret.md", "# Secret\n")
    return root


@pytest.fixture
def recording_fs() -> type:
    return RecordingFileAccess


@pytest.fixture
def counting_walker() -> type:
    return CountingWalker
