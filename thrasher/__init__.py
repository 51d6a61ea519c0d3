"""
Thrasher - a command-line catalog for a local MP3 library.

Thrasher walks a music directory, records each track's ID3 metadata in a
SQLite database, extracts album cover art, and answers filter queries over
the resulting catalog.
"""

__version__ = "0.1.0"
__author__ = "Thrasher Contributors"
__license__ = "GPL-2.0"

from thrasher.core.catalog import Catalog
from thrasher.core.scanner import scan_library

__all__ = ["Catalog", "scan_library", "__version__"]
