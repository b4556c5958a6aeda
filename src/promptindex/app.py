"""promptindex — CLI entry point.

Indexes a directory of prompt files and prints the resulting structure.

Usage:
    promptindex                          # ./prompts or the configured dir
    promptindex path/to/prompts          # explicit root
    promptindex --json                   # structure as JSON
    promptindex --watch                  # reprint on every change
    promptindex --env                    # show resolved configuration
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.logging import RichHandler

from promptindex.config import PromptIndexConfig, load_config, print_env
from promptindex.scanner.events import RefreshEvent
from promptindex.scanner.fs import LocalFileAccess
from promptindex.scanner.manager import ChangeRouter, IndexManager
from promptindex.ui import IndexUI

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Argument parsing
# ------------------------------------------------------------------

def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="promptindex",
        description="Index a directory tree of prompt files and show its structure.",
    )

    parser.add_argument(
        "prompts_dir",
        nargs="?",
        type=Path,
        help="Prompt root directory (default: configured prompts_dir or ./prompts)",
    )

    # Output
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the structure as JSON instead of a tree",
    )
    parser.add_argument(
        "--env",
        action="store_true",
        help="Print the resolved configuration and exit",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep running and reprint after every change (requires promptindex[watch])",
    )

    # Scan options
    parser.add_argument(
        "--hidden",
        action="store_true",
        default=None,
        help="Include hidden files and directories",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        metavar="N",
        help="Maximum directory depth to scan (default: 10)",
    )
    parser.add_argument(
        "--ext",
        action="append",
        metavar="EXT",
        help="File extension to index (repeatable, default: .md)",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        metavar="GLOB",
        help="Glob of relative paths to skip (repeatable)",
    )
    parser.add_argument(
        "--debounce-ms",
        type=int,
        metavar="MS",
        help="Quiet period before rebuilding after changes (default: 250)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug logging",
    )
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """CLI flags in config-file form."""
    values: Dict[str, Any] = {
        "prompts_dir": args.prompts_dir,
        "include_hidden": args.hidden,
        "max_depth": args.max_depth,
        "file_extensions": args.ext,
        "exclude_patterns": args.exclude,
        "debounce_ms": args.debounce_ms,
    }
    return {k: v for k, v in values.items() if v is not None}


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def build_manager(config: PromptIndexConfig, cwd: Optional[Path] = None) -> IndexManager:
    return IndexManager(
        LocalFileAccess(),
        config.root_resolver(cwd),
        scan_options=config.scan_options(),
        debounce_ms=config.debounce_ms,
    )


# ------------------------------------------------------------------
# Modes
# ------------------------------------------------------------------

async def run_show(ui: IndexUI, config: PromptIndexConfig, as_json: bool) -> int:
    """Build the index once and print it."""
    root = config.effective_prompts_dir()
    async with build_manager(config) as manager:
        structure = await manager.get_structure()

    if as_json:
        print(json.dumps(structure.to_dict(), indent=2, ensure_ascii=False))
        return 0
    if root is None:
        ui.show_error("No prompt directory. Pass one, create ./prompts/ or set prompts_dir.")
        return 1
    ui.show_structure(structure, root)
    return 0


async def run_watch(ui: IndexUI, config: PromptIndexConfig) -> int:
    """Print the index, then reprint whenever the watched tree changes."""
    try:
        from promptindex.scanner.watcher import PromptDirectoryWatcher
    except ImportError:
        ui.show_error(
            "watchdog is required for --watch. "
            "Install with: [bright_cyan]pip install promptindex\\[watch][/]"
        )
        return 1

    root = config.effective_prompts_dir()
    if root is None or not root.is_dir():
        ui.show_error(f"Prompt directory [bright_cyan]'{root}'[/] not found.")
        return 1

    async with build_manager(config) as manager:
        def _on_refresh(event: RefreshEvent) -> None:
            ui.show_refresh(event)
            if manager.cached is not None:
                ui.show_structure(manager.cached, root)

        ui.show_structure(await manager.get_structure(), root)
        manager.subscribe(_on_refresh)

        with PromptDirectoryWatcher(root, ChangeRouter(manager)):
            ui.show_step("👀", f"[info]Watching {root}, Ctrl+C to stop[/info]")
            await asyncio.Event().wait()
    return 0


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

def cli(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the promptindex command."""
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    ui = IndexUI()
    config = load_config(project_dir=Path.cwd(), overrides=_overrides(args))

    # --env: print environment and exit
    if args.env:
        ui.console.print(print_env(config))
        sys.exit(0)

    try:
        if args.watch:
            exit_code = asyncio.run(run_watch(ui, config))
        else:
            exit_code = asyncio.run(run_show(ui, config, args.json))
    except KeyboardInterrupt:
        ui.console.print("\n[dim]Interrupted. 👋[/]")
        exit_code = 130

    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
