"""
Core domain package.

This package holds the catalog logic (ingestion, store access, queries) and
stays independent of the CLI. Consumers should usually import from the
specific module they need (e.g. `thrasher.core.scanner`).
"""

from __future__ import annotations

__all__: list[str] = [
    "CoreError",
    "TagReadError",
    "NoPictureError",
    "CatalogError",
    "FilterError",
]


class CoreError(Exception):
    """Base class for core-layer exceptions."""


class TagReadError(CoreError):
    """Raised when an audio file's tag cannot be parsed."""

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(f"'{path}': {cause}")
        self.path = path
        self.cause = cause


class NoPictureError(CoreError):
    """Raised when a tag carries no attached-picture frame."""

    def __init__(self, directory: str) -> None:
        super().__init__(f"{directory} :: no APIC tags")
        self.directory = directory


class CatalogError(CoreError):
    """Raised on catalog misuse (unopened database, query without filter, ...)."""


class FilterError(CatalogError):
    """Raised when a filter expression cannot be parsed."""
