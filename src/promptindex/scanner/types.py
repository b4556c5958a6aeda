"""Records produced by one index build.

A build turns every matching file into a ``PromptFile``, groups them into
``PromptFolder``s keyed by their directory relative to the scanned root,
and returns the whole thing as one ``PromptStructure`` snapshot. All three
are frozen: a snapshot handed out by the index manager is shared by every
reader and is never modified in place.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple


DEFAULT_EXTENSIONS: Tuple[str, ...] = (".md",)
DEFAULT_MAX_DEPTH = 10


def sort_key(text: str) -> Tuple[str, str, str]:
    """Locale-style collation key: accents and case only break ties."""
    decomposed = unicodedata.normalize("NFKD", text)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return (base.casefold(), text.casefold(), text)


@dataclass(frozen=True)
class ScanOptions:
    """Which files a scan picks up."""

    include_hidden: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH
    file_extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    exclude_patterns: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        exts = tuple(
            (ext if ext.startswith(".") else f".{ext}").lower()
            for ext in self.file_extensions
            if ext
        )
        object.__setattr__(self, "file_extensions", exts)
        object.__setattr__(self, "exclude_patterns", tuple(self.exclude_patterns))

    def matches_extension(self, name: str) -> bool:
        lower = name.lower()
        return any(lower.endswith(ext) for ext in self.file_extensions)


@dataclass(frozen=True)
class PromptFile:
    """A single prompt document found on disk."""

    name: str
    title: str
    path: Path
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()
    file_size: int = 0
    is_directory: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "title": self.title,
            "path": str(self.path),
            "tags": list(self.tags),
            "file_size": self.file_size,
            "is_directory": self.is_directory,
        }
        if self.description is not None:
            d["description"] = self.description
        return d


@dataclass(frozen=True)
class PromptFolder:
    """Prompts whose immediate parent directory is ``path``.

    Nested directories are sibling folders, not children; ``parent_path``
    lets a tree view put them back together.
    """

    name: str
    path: Path
    relative_path: str
    prompts: Tuple[PromptFile, ...] = ()

    @property
    def parent_path(self) -> Path:
        return self.path.parent

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "relative_path": self.relative_path,
            "prompts": [p.to_dict() for p in self.prompts],
        }


@dataclass(frozen=True)
class PromptStructure:
    """Complete result of one index build."""

    folders: Tuple[PromptFolder, ...] = field(default_factory=tuple)
    root_prompts: Tuple[PromptFile, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls) -> "PromptStructure":
        return EMPTY_STRUCTURE

    @property
    def is_empty(self) -> bool:
        return not self.folders and not self.root_prompts

    @property
    def prompt_count(self) -> int:
        return len(self.root_prompts) + sum(len(f.prompts) for f in self.folders)

    def all_prompts(self) -> Iterator[PromptFile]:
        """Yield root prompts first, then each folder's prompts in order."""
        yield from self.root_prompts
        for folder in self.folders:
            yield from folder.prompts

    def find_prompt(self, path: Path) -> Optional[PromptFile]:
        target = Path(path)
        for prompt in self.all_prompts():
            if prompt.path == target:
                return prompt
        return None

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "folders": [f.to_dict() for f in self.folders],
            "root_prompts": [p.to_dict() for p in self.root_prompts],
        }


EMPTY_STRUCTURE = PromptStructure()
