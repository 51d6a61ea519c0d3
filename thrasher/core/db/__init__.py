"""
Internal DB subpackage.

Split into focused units: models, schema, filter/ordering SQL builders and
the scan-time store adapter. The public read and write facades are
`thrasher.core.catalog.Catalog` and `thrasher.core.updater.Updater`.
"""

from __future__ import annotations

# Models / DTOs
from .models import NewTrack, TrackInfo

# Schema
from .schema import SCHEMA_VERSION, ensure_schema

# Scan-time writer
from .store import ScanStore

__all__ = [
    # models
    "NewTrack",
    "TrackInfo",
    # schema
    "SCHEMA_VERSION",
    "ensure_schema",
    # store
    "ScanStore",
]
