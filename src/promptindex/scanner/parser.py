"""Prompt parser — extract title, description and tags from a prompt file.

A prompt may start with a YAML front matter block::

    ---
    title: Code Review
    description: Review a diff for bugs
    tags: [review, python]
    ---
    # Body heading
    ...

The title comes from the front matter, then the first markdown heading in
the body, then the file name. Malformed front matter never raises: the
whole file is treated as body text instead.
"""

from __future__ import annotations

import hashlib
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

import yaml


_FRONT_MATTER_OPEN = "---"
_FRONT_MATTER_CLOSE = ("---", "...")
_HEADING = re.compile(r"^[ \t]{0,3}#{1,6}[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$", re.MULTILINE)
_NAME_SEPARATORS = re.compile(r"[-_]+")

PARSE_CACHE_SIZE = 5000


@dataclass(frozen=True)
class ParsedPrompt:
    """Metadata extracted from a prompt's text."""

    title: str
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()
    body: str = ""


def _normalize(text: str) -> str:
    return text.lstrip("\ufeff").replace("\r\n", "\n")


def _read_front_matter(normalized: str) -> Tuple[Dict[str, Any], int]:
    """Return the header mapping and the offset where the body starts."""
    lines = normalized.split("\n")
    if lines[0].rstrip() != _FRONT_MATTER_OPEN:
        return {}, 0

    end = None
    for i in range(1, len(lines)):
        if lines[i].rstrip() in _FRONT_MATTER_CLOSE:
            end = i
            break
    if end is None:
        return {}, 0

    # SafeConstructor raises plain ValueError/TypeError for values such as
    # an impossible date or ``!!int abc``.
    try:
        data = yaml.safe_load("\n".join(lines[1:end]))
    except (yaml.YAMLError, ValueError, TypeError):
        return {}, 0
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return {}, 0
    return data, sum(len(line) + 1 for line in lines[: end + 1])


def split_front_matter(text: str) -> Tuple[Dict[str, Any], str]:
    """Separate the front matter mapping from the body.

    Returns ``({}, text)`` when there is no header block or it cannot be
    parsed as a YAML mapping.
    """
    normalized = _normalize(text)
    data, body_start = _read_front_matter(normalized)
    return data, normalized[body_start:]


def normalize_tags(raw: Any) -> Tuple[str, ...]:
    """Turn a list or comma-separated string into unique, trimmed tags."""
    if raw is None:
        return ()
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = raw
    else:
        items = [raw]
    tags = (str(item).strip() for item in items if item is not None)
    return tuple(dict.fromkeys(tag for tag in tags if tag))


def first_heading(body: str) -> str:
    """Return the first markdown heading in *body*, or ``""``."""
    match = _HEADING.search(body)
    return match.group(1).strip() if match else ""


def title_from_name(name: str) -> str:
    title = _NAME_SEPARATORS.sub(" ", name).strip()
    return title or "Untitled"


def _text_field(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def content_digest(text: str) -> str:
    """SHA-1 hex digest of a prompt's text."""
    return hashlib.sha1(text.encode("utf-8", "surrogatepass")).hexdigest()


@dataclass(frozen=True)
class _ParsedHeader:
    title: str
    description: Optional[str]
    tags: Tuple[str, ...]
    body_start: int


# (digest, fallback_name) -> header fields; bodies are never held here.
_parse_cache: "OrderedDict[Tuple[str, str], _ParsedHeader]" = OrderedDict()


def _parse_header(normalized: str, fallback_name: str) -> _ParsedHeader:
    front_matter, body_start = _read_front_matter(normalized)
    title = (
        _text_field(front_matter, "title")
        or first_heading(normalized[body_start:])
        or title_from_name(fallback_name)
    )
    return _ParsedHeader(
        title=title,
        description=_text_field(front_matter, "description"),
        tags=normalize_tags(front_matter.get("tags")),
        body_start=body_start,
    )


def parse_prompt(text: str, fallback_name: str = "") -> ParsedPrompt:
    """Parse a prompt's text. Pure and deterministic; never raises.

    Header fields are memoised per content digest and name, so an edited
    file never sees a stale entry.
    """
    normalized = _normalize(text)
    key = (content_digest(normalized), fallback_name)
    header = _parse_cache.get(key)
    if header is None:
        header = _parse_header(normalized, fallback_name)
        _parse_cache[key] = header
        if len(_parse_cache) > PARSE_CACHE_SIZE:
            _parse_cache.popitem(last=False)
    else:
        _parse_cache.move_to_end(key)

    return ParsedPrompt(
        title=header.title,
        description=header.description,
        tags=header.tags,
        body=normalized[header.body_start:].strip(),
    )


def parse_cache_size() -> int:
    return len(_parse_cache)


def clear_parse_cache() -> None:
    _parse_cache.clear()
