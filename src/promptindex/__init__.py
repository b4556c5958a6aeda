"""promptindex — in-memory, self-refreshing index of a prompt directory tree."""

__version__ = "0.1.0"
