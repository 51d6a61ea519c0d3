"""
Thrasher catalog tool - Entry Point

Run with: python -m thrasher (or the `tmctool` script)
"""

import argparse
import asyncio
import logging
import os
import sys
import tomllib
from pathlib import Path
from typing import TextIO

from thrasher import __version__
from thrasher.config import Config, ConfigError, default_config_path, load_config
from thrasher.core import CatalogError, FilterError
from thrasher.core.catalog import Catalog
from thrasher.core.db.models import TrackInfo
from thrasher.core.scanner import scan_library
from thrasher.core.updater import Updater

# Exit codes
EXIT_USAGE = 1
EXIT_DB = 2
EXIT_SCAN = 3

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="tmctool",
        description="Thrasher music catalog - scan, tag and query a local MP3 library",
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", type=Path, default=None, help="Config file (TOML)")
    parser.add_argument("--db", type=str, default="", help="Database file to use")
    parser.add_argument("-m", "--music-dir", type=str, default="", help="Music directory to scan")

    ops = parser.add_mutually_exclusive_group()
    ops.add_argument("-c", "--create", action="store_true", help="Create a new database")
    ops.add_argument("-s", "--scan", action="store_true", help="Scan for new tracks efficiently")
    ops.add_argument(
        "-S", "--scan-all", action="store_true", help="Scan, forcing processing of all dirs"
    )
    ops.add_argument("-q", "--query", action="store_true", help="Query and print track paths")
    ops.add_argument(
        "-Q", "--query-details", action="store_true", help="Query and print track details"
    )
    ops.add_argument(
        "-R", "--recent", action="store_true", help="Print tracks of recently added albums"
    )
    ops.add_argument(
        "-A", "--artists", action="store_true", help="Print artists with at least --cutoff tracks"
    )
    ops.add_argument("--facets", action="store_true", help="Print all facets with track counts")
    ops.add_argument("-a", "--add-facet", metavar="FACET", help="Add facet to filtered tracks")
    ops.add_argument(
        "-r", "--remove-facet", metavar="FACET", help="Remove facet from filtered tracks"
    )

    parser.add_argument("-f", "--filter", default="", help="Filter expression to operate on")
    parser.add_argument(
        "-l", "--limit", type=int, default=0, help="Query limit (default: size of filter set)"
    )
    parser.add_argument("-o", "--offset", type=int, default=0, help="Query offset (default: 0)")
    parser.add_argument(
        "--order-by", default="", help="Comma-separated list of attributes to order query by"
    )
    parser.add_argument("-t", "--trim", default="", help="Prefix to remove from track paths")
    parser.add_argument(
        "--cutoff", type=int, default=0, help="Track count minimum for artist list inclusion"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return parser.parse_args(argv)


def _truncate(value: str, width: int) -> str:
    if len(value) > width:
        return value[: width - 1] + "…"
    return value


def format_details(info: TrackInfo) -> str:
    """One fixed-width line per track, as printed by --query-details."""
    return (
        f"{info.num:3d} | {_truncate(info.artist, 30):<30} | "
        f"{_truncate(info.title, 50):<50} | {_truncate(info.album, 30):<30} | "
        f"{info.year} |\t{', '.join(info.facets)}"
    )


async def run_create(config: Config, out: TextIO) -> int:
    upd = Updater(config.db_file)
    try:
        await upd.open()
        await upd.create_db()
    except Exception as e:
        print(f"couldn't create db: {e}", file=out)
        return EXIT_DB
    finally:
        await upd.close()
    print(f"database initialized in {config.db_file}", file=out)
    return 0


async def run_scan(config: Config, *, force: bool, verbose: bool, out: TextIO) -> int:
    music_dir = config.music_dir
    if not music_dir:
        print("music directory must be specified; see --help", file=out)
        return EXIT_USAGE
    if not os.path.exists(music_dir):
        print(f"can't access musicdir '{music_dir}'", file=out)
        return EXIT_SCAN
    if not os.path.isdir(music_dir):
        print(f"{music_dir} is not a directory", file=out)
        return EXIT_SCAN

    try:
        await scan_library(config, force=force, out=out, verbose=verbose)
    except Exception as e:
        logger.debug("scan failed", exc_info=True)
        print(f"error during scan: {e}", file=out)
        return EXIT_SCAN
    return 0


async def run_catalog_op(args: argparse.Namespace, config: Config, out: TextIO) -> int:
    catalog = Catalog(config.db_file, trim_prefix=args.trim, recent_albums=config.recent_albums)
    try:
        await catalog.open()
    except CatalogError as e:
        print(f"error creating catalog: {e}", file=out)
        return EXIT_USAGE

    try:
        if args.filter:
            try:
                await catalog.set_filter(args.filter)
            except FilterError as e:
                print(f"error parsing filter: {e}", file=out)
                return EXIT_SCAN
            logger.debug(
                "filter: '%s', %s, %d",
                catalog.filter.where if catalog.filter else "",
                catalog.filter.values if catalog.filter else (),
                catalog.filter_count,
            )

        if args.recent:
            for path in await catalog.query_recent():
                print(path, file=out)
            return 0

        if args.artists:
            for name, count in await catalog.artists(config.artist_cutoff):
                print(f"{count:5d}  {name}", file=out)
            return 0

        if args.facets:
            for name, count in await catalog.facets():
                print(f"{count:5d}  {name}", file=out)
            return 0

        if catalog.filter is None:
            print("running a query requires a filter to be set; exiting", file=out)
            return EXIT_USAGE

        if args.add_facet or args.remove_facet:
            paths = [catalog.full_path(p) for p in await catalog.query()]
            upd = Updater(config.db_file)
            await upd.open()
            try:
                if args.add_facet:
                    changed = await upd.add_facet(paths, args.add_facet)
                else:
                    changed = await upd.remove_facet(paths, args.remove_facet)
            finally:
                await upd.close()
            print(f"{changed} of {len(paths)} tracks updated", file=out)
            return 0

        try:
            paths = await catalog.query(args.order_by, args.limit, args.offset)
        except (CatalogError, ValueError) as e:
            print(f"error querying catalog: {e}", file=out)
            return EXIT_DB

        for path in paths:
            if args.query_details:
                info = await catalog.track_info(path)
                if info is not None:
                    print(format_details(info), file=out)
            else:
                print(path, file=out)
        return 0
    finally:
        await catalog.close()


async def run(args: argparse.Namespace, config: Config, out: TextIO) -> int:
    """Dispatch the requested operation."""
    if args.create:
        return await run_create(config, out)
    if args.scan or args.scan_all:
        return await run_scan(config, force=args.scan_all, verbose=args.verbose, out=out)
    if (
        args.query
        or args.query_details
        or args.recent
        or args.artists
        or args.facets
        or args.add_facet
        or args.remove_facet
    ):
        return await run_catalog_op(args, config, out)

    print("No op requested", file=out)
    return 0


def main(argv: list[str] | None = None, out: TextIO | None = None) -> int:
    """Main entry point for the application."""
    out = out if out is not None else sys.stdout
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    config_path = args.config if args.config is not None else default_config_path()
    if args.config is None and not config_path.exists():
        config = Config()
    else:
        try:
            config = load_config(config_path)
        except (OSError, tomllib.TOMLDecodeError, ConfigError) as e:
            print(f"error reading config: '{e}'; continuing with null config...", file=out)
            config = Config()

    config = config.with_overrides(
        db_file=args.db, music_dir=args.music_dir, artist_cutoff=args.cutoff
    )
    try:
        config.require_db_file()
    except ConfigError as e:
        print(e, file=out)
        return EXIT_USAGE

    logger.debug(
        "Config: db_file=%s music_dir=%s artist_cutoff=%d",
        config.db_file,
        config.music_dir,
        config.artist_cutoff,
    )

    try:
        return asyncio.run(run(args, config, out))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
