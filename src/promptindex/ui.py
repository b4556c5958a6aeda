"""Rich-based rendering of a PromptStructure.

The structure is a flat list of folders; the tree is rebuilt here by
hanging each folder under the folder whose path is its parent directory.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.theme import Theme
from rich.tree import Tree

from promptindex.scanner.events import RefreshEvent
from promptindex.scanner.types import PromptFile, PromptFolder, PromptStructure, sort_key

INDEX_THEME = Theme({
    "folder": "bold #FFD700",
    "prompt": "bright_cyan",
    "tag": "dim #FFA500",
    "info": "dim",
    "success": "bold bright_green",
    "warn": "bold bright_yellow",
    "error": "bold red",
})


def _prompt_label(prompt: PromptFile) -> str:
    label = f"[prompt]{escape(prompt.title)}[/prompt]"
    if prompt.title != prompt.name:
        label += f" [info]({escape(prompt.name)})[/info]"
    if prompt.tags:
        label += " " + " ".join(f"[tag]#{escape(tag)}[/tag]" for tag in prompt.tags)
    return label


def _depth(folder: PromptFolder) -> int:
    return len(PurePosixPath(folder.relative_path).parts)


def build_tree(structure: PromptStructure, root: Optional[Path] = None) -> Tree:
    """Nest the flat folder list into a rich Tree, folders before prompts."""
    label = escape(str(root)) if root is not None else "prompts"
    tree = Tree(f"[folder]📂 {label}[/folder]", guide_style="info")

    nodes: Dict[Path, Tree] = {}
    ordered: List[PromptFolder] = sorted(
        structure.folders, key=lambda f: (_depth(f), sort_key(f.name))
    )
    for folder in ordered:
        parent = nodes.get(folder.parent_path, tree)
        suffix = "" if folder.prompts else " [info](empty)[/info]"
        nodes[folder.path] = parent.add(f"[folder]📁 {escape(folder.name)}[/folder]{suffix}")

    for folder in ordered:
        node = nodes[folder.path]
        for prompt in folder.prompts:
            node.add(_prompt_label(prompt))
    for prompt in structure.root_prompts:
        tree.add(_prompt_label(prompt))
    return tree


class IndexUI:
    """Console output for the promptindex CLI."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console(theme=INDEX_THEME)

    def show_step(self, icon: str, message: str) -> None:
        self.console.print(f"  {icon}  {message}")

    def show_structure(self, structure: PromptStructure, root: Optional[Path] = None) -> None:
        if structure.is_empty:
            self.show_step("📭", "[warn]No prompts found.[/warn]")
            return
        self.console.print(build_tree(structure, root))
        self.show_step(
            "📊",
            f"[info]{structure.prompt_count} prompts in {len(structure.folders)} "
            f"folder{'' if len(structure.folders) == 1 else 's'}[/info]",
        )

    def show_refresh(self, event: RefreshEvent) -> None:
        self.show_step("🔄", f"[success]Index refreshed[/success] [info]({event.reason})[/info]")

    def show_error(self, message: str) -> None:
        self.console.print(f"  [error]✗[/error] {message}")
