"""Exceptions raised by the prompt index."""

from __future__ import annotations


class PromptIndexError(Exception):
    """Base class for prompt index errors."""


class IndexContractError(PromptIndexError, ValueError):
    """A walker, organizer or manager was called with invalid arguments.

    This signals a caller bug rather than an environment condition, so the
    index manager lets it propagate instead of degrading to an empty
    structure.
    """
