"""
Command line entry point.

    facet-catalog init-db
    facet-catalog import path/to/feed.xml [--skip-index]
    facet-catalog rebuild-index
    facet-catalog serve [--host 0.0.0.0] [--port 8000]

Run rebuilds one at a time (cron / a single worker); they are not locked.
"""

import argparse
import sys
from typing import List, Optional

from facet_catalog.config import get_config
from facet_catalog.errors import CatalogError
from facet_catalog.logger import get_logger, set_level

logger = get_logger("cli")


def _session():
    from facet_catalog.database import SessionLocal
    if SessionLocal is None:
        raise CatalogError("Database is not configured (check DATABASE_URL)")
    return SessionLocal()


def _builder():
    from facet_catalog.index_builder import FacetIndexBuilder
    from facet_catalog.index_store import FacetIndexStore

    config = get_config()
    return FacetIndexBuilder(FacetIndexStore.from_config(config), config)


def cmd_init_db(args) -> int:
    from facet_catalog import models  # noqa: F401  (registers tables)
    from facet_catalog.database import Base, engine

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")
    return 0


def cmd_import(args) -> int:
    from facet_catalog.importer import FeedImporter

    db = _session()
    try:
        builder = None if args.skip_index else _builder()
        stats = FeedImporter(db, get_config()).run(args.feed, builder=builder)
    finally:
        db.close()
    print(f"Imported {stats.products} products, {stats.categories} categories "
          f"({stats.skipped_offers} offers skipped)")
    if stats.index is not None:
        print(f"Index rebuilt: {stats.index.total_keys} facet keys for {stats.index.products} products")
    return 0


def cmd_rebuild_index(args) -> int:
    db = _session()
    try:
        stats = _builder().rebuild(db)
    finally:
        db.close()
    print(f"Index rebuilt: {stats.total_keys} facet keys for {stats.products} products "
          f"in {stats.elapsed_seconds:.2f}s")
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    uvicorn.run("facet_catalog.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="facet-catalog",
        description="Product catalog import, facet index and API",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_db = subparsers.add_parser("init-db", help="Create database tables")
    init_db.set_defaults(func=cmd_init_db)

    import_cmd = subparsers.add_parser("import", help="Import a product feed (XML)")
    import_cmd.add_argument("feed", help="Path to the feed file")
    import_cmd.add_argument("--skip-index", action="store_true",
                            help="Do not rebuild the facet index after importing")
    import_cmd.set_defaults(func=cmd_import)

    rebuild = subparsers.add_parser("rebuild-index", help="Rebuild the facet index from the database")
    rebuild.set_defaults(func=cmd_rebuild_index)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_level("DEBUG")
    try:
        return args.func(args)
    except CatalogError as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
