"""Two-tier configuration system for promptindex.

Resolution order (later overrides earlier):
  1. Built-in defaults
  2. Global user config:  ~/.promptindex/config.json
  3. Project config:      .promptindex.config.json (searched cwd → parents)
  4. CLI flags (--hidden, --max-depth, --ext, ...)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from promptindex.scanner.fs import RootResolver
from promptindex.scanner.manager import DEFAULT_DEBOUNCE_MS
from promptindex.scanner.types import DEFAULT_EXTENSIONS, DEFAULT_MAX_DEPTH, ScanOptions

logger = logging.getLogger(__name__)

GLOBAL_DIR = Path.home() / ".promptindex"
GLOBAL_CONFIG = GLOBAL_DIR / "config.json"
PROJECT_CONFIG_NAME = ".promptindex.config.json"
DEFAULT_PROMPTS_DIRNAME = "prompts"


@dataclass
class PromptIndexConfig:
    """Resolved configuration for promptindex."""

    prompts_dir: Optional[Path] = None
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    include_hidden: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH
    file_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    exclude_patterns: List[str] = field(default_factory=list)

    # Provenance tracking (which files contributed)
    _global_path: Optional[Path] = field(default=None, repr=False)
    _project_path: Optional[Path] = field(default=None, repr=False)

    def effective_prompts_dir(self, cwd: Optional[Path] = None) -> Optional[Path]:
        """Configured prompts dir, else ./prompts/ if cwd has one, else None."""
        if self.prompts_dir is not None:
            return self.prompts_dir
        if cwd is None:
            cwd = Path.cwd()
        default_dir = cwd / DEFAULT_PROMPTS_DIRNAME
        if default_dir.is_dir():
            return default_dir
        return None

    def root_resolver(self, cwd: Optional[Path] = None) -> RootResolver:
        """Resolver that re-evaluates the prompts dir on every build."""
        return lambda: self.effective_prompts_dir(cwd)

    def scan_options(self) -> ScanOptions:
        return ScanOptions(
            include_hidden=self.include_hidden,
            max_depth=self.max_depth,
            file_extensions=tuple(self.file_extensions),
            exclude_patterns=tuple(self.exclude_patterns),
        )


def _find_project_config(start: Optional[Path] = None) -> Optional[Path]:
    """Walk from *start* up to the filesystem root looking for project config."""
    current = (start or Path.cwd()).resolve()
    for _ in range(50):  # safety limit
        candidate = current / PROJECT_CONFIG_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


def _load_json(path: Path) -> Dict[str, Any]:
    """Load a JSON object from *path*, returning {} on any error."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level is not an object", path)
        return {}
    return data


def _str_list(raw: Any) -> Optional[List[str]]:
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list):
        return [str(item) for item in raw if item]
    return None


def _apply_dict(config: PromptIndexConfig, data: Dict[str, Any], base_dir: Path) -> None:
    """Merge a raw JSON dict into a config object."""
    if "prompts_dir" in data and data["prompts_dir"]:
        p = Path(str(data["prompts_dir"])).expanduser()
        if not p.is_absolute():
            p = (base_dir / p).resolve()
        config.prompts_dir = p
    if "debounce_ms" in data:
        try:
            config.debounce_ms = max(0, int(data["debounce_ms"]))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid debounce_ms %r", data["debounce_ms"])
    if "include_hidden" in data:
        config.include_hidden = bool(data["include_hidden"])
    if "max_depth" in data:
        try:
            config.max_depth = max(0, int(data["max_depth"]))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid max_depth %r", data["max_depth"])
    exts = _str_list(data.get("file_extensions"))
    if exts:
        config.file_extensions = exts
    excludes = _str_list(data.get("exclude_patterns"))
    if excludes is not None:
        config.exclude_patterns = excludes


def load_config(
    project_dir: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> PromptIndexConfig:
    """Load and merge the two-tier configuration.

    Parameters
    ----------
    project_dir : Path, optional
        Starting directory for project config search (defaults to cwd).
    overrides : dict, optional
        Values from CLI flags, same keys as the JSON files. Relative
        ``prompts_dir`` values resolve against *project_dir*.
    """
    config = PromptIndexConfig()

    # 1. Global
    if GLOBAL_CONFIG.is_file():
        _apply_dict(config, _load_json(GLOBAL_CONFIG), GLOBAL_DIR)
        config._global_path = GLOBAL_CONFIG

    # 2. Project (overrides global)
    proj = _find_project_config(project_dir)
    if proj:
        _apply_dict(config, _load_json(proj), proj.parent)
        config._project_path = proj

    # 3. CLI overrides
    if overrides:
        _apply_dict(config, overrides, (project_dir or Path.cwd()).resolve())

    return config


def print_env(config: PromptIndexConfig, cwd: Optional[Path] = None) -> str:
    """Return a formatted string describing the resolved environment."""
    if cwd is None:
        cwd = Path.cwd()
    root = config.effective_prompts_dir(cwd)
    lines = []
    lines.append("promptindex environment")
    lines.append("=" * 50)
    lines.append("")
    lines.append(f"  Global config:   {config._global_path or '(not found)'}")
    lines.append(f"  Project config:  {config._project_path or '(not found)'}")
    if root is None:
        lines.append("  Prompts dir:     (none)")
    else:
        exists = "✓" if root.is_dir() else "✗"
        lines.append(f"  Prompts dir:     {exists} {root}")
    lines.append(f"  Extensions:      {', '.join(config.file_extensions)}")
    lines.append(f"  Max depth:       {config.max_depth}")
    lines.append(f"  Hidden files:    {'included' if config.include_hidden else 'skipped'}")
    lines.append(f"  Excludes:        {', '.join(config.exclude_patterns) or '(none)'}")
    lines.append(f"  Debounce:        {config.debounce_ms} ms")
    lines.append("")
    return "\n".join(lines)
