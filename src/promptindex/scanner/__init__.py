"""Prompt index core: walker, organizer and the caching index manager.

File access → walker → organizer → manager. The watchdog bridge lives in
``promptindex.scanner.watcher`` and is imported on demand.
"""

from .errors import IndexContractError, PromptIndexError
from .events import FileChange, RefreshEvent, RefreshEvents
from .fs import DirEntry, FileAccess, LocalFileAccess, RootResolver, static_root
from .manager import ChangeRouter, IndexManager, IndexState
from .organizer import PromptOrganizer
from .parser import ParsedPrompt, clear_parse_cache, parse_cache_size, parse_prompt
from .types import PromptFile, PromptFolder, PromptStructure, ScanOptions
from .walker import FilesystemWalker

__all__ = [
    "ChangeRouter",
    "DirEntry",
    "FileAccess",
    "FileChange",
    "FilesystemWalker",
    "IndexContractError",
    "IndexManager",
    "IndexState",
    "LocalFileAccess",
    "ParsedPrompt",
    "PromptFile",
    "PromptFolder",
    "PromptIndexError",
    "PromptOrganizer",
    "PromptStructure",
    "RefreshEvent",
    "RefreshEvents",
    "RootResolver",
    "ScanOptions",
    "clear_parse_cache",
    "parse_cache_size",
    "parse_prompt",
    "static_root",
]
