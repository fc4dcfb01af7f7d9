"""
reslib CLI — Inspect and Maintain the Local Encrypted Catalog

Commands:
    reslib info                          — backend, snapshots, metadata
    reslib list categories|resources|tags [--category ID]
    reslib show <id>                     — display one category or resource
    reslib export [-o FILE]              — plaintext JSON backup → stdout/FILE
    reslib import FILE [--dry-run]       — replace catalog from a JSON backup
    reslib clear --yes                   — delete catalog and every snapshot

Environment variables:
    RESLIB_DATA_DIR        Data directory (default: ~/.reslib)
    RESLIB_BACKEND         auto|filesystem|kv (default: auto)
    RESLIB_CONFIG          Path to a JSON config file
    RESLIB_KDF_ITERATIONS  PBKDF2 iterations (default: 100000)

Precedence (invariant):
    CLI --flag  >  RESLIB_* env var  >  config file  >  compiled default

Exit codes:
    0  Success (including idempotent no-op)
    1  Operational error (bad args, unreadable data, missing item)
    2  Internal failure (unexpected exception, I/O error)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional

from reslib.config import ResLibConfig, ValidationError, load_config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Defensive env parsing (never crash on bad export)
# ---------------------------------------------------------------------------


def _env_int(name: str, default: int) -> int:
    """Parse integer env var with fallback. Never raises on bad input."""
    v = os.environ.get(name)
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    """Parse string env var with fallback."""
    return os.environ.get(name, default)


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _resolve_config(args: Optional[argparse.Namespace] = None) -> ResLibConfig:
    """Build config: --flag > RESLIB_* > config file > defaults."""
    path = getattr(args, "config", None) or _env_str("RESLIB_CONFIG", None)
    cfg = load_config(path)

    data_dir = getattr(args, "data_dir", None) or _env_str("RESLIB_DATA_DIR", None)
    if data_dir:
        cfg.store.data_dir = data_dir
    backend = getattr(args, "backend", None) or _env_str("RESLIB_BACKEND", None)
    if backend:
        cfg.store.backend = backend
    cfg.crypto.kdf_iterations = _env_int(
        "RESLIB_KDF_ITERATIONS", cfg.crypto.kdf_iterations
    )

    errors = cfg.validate()
    if errors:
        raise ValidationError(f"Config validation failed: {'; '.join(errors)}")
    return cfg


# ---------------------------------------------------------------------------
# Store factory
# ---------------------------------------------------------------------------


async def _open_store(args: argparse.Namespace):
    """Open and load a DocumentStore. Exits 1 if the config is invalid."""
    from reslib.store import DocumentStore

    try:
        cfg = _resolve_config(args)
    except ValidationError as e:
        _warn(str(e))
        sys.exit(1)
    store = DocumentStore(cfg)
    await store.load_database()
    return store


def _require_readable(store) -> None:
    """Exit 1 when data exists but could not be loaded."""
    if store.last_error is not None:
        _warn(f"Database present but unreadable: {store.last_error}")
        store.close()
        sys.exit(1)


# ---------------------------------------------------------------------------
# Stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


# ===========================================================================
# Command: info
# ===========================================================================


async def cmd_info(args: argparse.Namespace) -> None:
    """Show backend, snapshot and metadata information."""
    store = await _open_store(args)
    stats = await store.stats()
    stats["load_error"] = str(store.last_error) if store.last_error else None

    if getattr(args, "json", False):
        stats["status"] = "ok" if store.last_error is None else "unreadable"
        print(json.dumps(stats, indent=2, ensure_ascii=False))
    else:
        storage = stats["storage"]
        meta = stats["metadata"]
        print("Resource Library")
        print("=" * 40)
        print(f"  Backend:    {storage['backend_kind']}")
        if storage.get("location"):
            print(f"  Location:   {storage['location']}")
        if storage.get("quota_bytes"):
            print(f"  Quota:      {storage['quota_bytes']} bytes")
        print(f"  Snapshots:  {stats['snapshots']}")
        if stats["latest_snapshot"]:
            print(f"  Latest:     {stats['latest_snapshot']}")
        print(f"  Categories: {stats['categories']} ({stats['subcategories']} sub)")
        print(f"  Resources:  {stats['resources']}")
        print(f"  Tags:       {stats['tags']}")
        print(f"  Links:      {stats['resource_tags']}")
        print(f"  Version:    {meta['version']} (encryption {meta['encryption_version']})")
        print(f"  Updated:    {meta['last_updated']}")
        if stats["load_error"]:
            print(f"  LOAD ERROR: {stats['load_error']}")

    store.close()
    if store.last_error is not None:
        sys.exit(1)


# ===========================================================================
# Command: list
# ===========================================================================


async def cmd_list(args: argparse.Namespace) -> None:
    """List one collection."""
    store = await _open_store(args)
    _require_readable(store)

    if args.collection == "categories":
        rows = await store.get_categories()
    elif args.collection == "tags":
        rows = await store.get_tags()
    elif args.category:
        rows = await store.get_resources_by_category(args.category)
        rows += await store.get_resources_by_subcategory(args.category)
    else:
        rows = await store.get_resources()

    if getattr(args, "json", False):
        print(json.dumps([r.to_dict() for r in rows], indent=2, ensure_ascii=False))
    else:
        for r in rows:
            label = getattr(r, "title", None) or getattr(r, "name", "")
            print(f"{r.id}  {label}")
        _info(f"{len(rows)} {args.collection}")

    store.close()


# ===========================================================================
# Command: show
# ===========================================================================


async def cmd_show(args: argparse.Namespace) -> None:
    """Show a category or resource by ID."""
    store = await _open_store(args)
    _require_readable(store)

    match = None
    for row in (await store.get_categories()) + (await store.get_resources()):
        if row.id == args.id:
            match = row
            break
    if match is None:
        _warn(f"Item not found: {args.id}")
        store.close()
        sys.exit(1)

    if getattr(args, "json", False):
        print(json.dumps(match.to_dict(), indent=2, ensure_ascii=False))
    else:
        for key, value in match.to_dict().items():
            if value in (None, "", [], {}):
                continue
            print(f"{key + ':':16s}{value}")

    store.close()


# ===========================================================================
# Command: export
# ===========================================================================


async def cmd_export(args: argparse.Namespace) -> None:
    """Write a plaintext JSON backup."""
    from reslib.export_import import export_to_file

    store = await _open_store(args)
    _require_readable(store)
    await export_to_file(store, args.output or sys.stdout, log=_info)
    store.close()


# ===========================================================================
# Command: import
# ===========================================================================


async def cmd_import(args: argparse.Namespace) -> None:
    """Replace the catalog from a JSON backup."""
    from reslib.errors import EnvelopeFormatError
    from reslib.export_import import import_from_file

    store = await _open_store(args)
    try:
        result = await import_from_file(
            store, args.file, dry_run=args.dry_run, log=_info,
        )
    except (EnvelopeFormatError, FileNotFoundError) as e:
        _warn(f"Import failed: {e}")
        store.close()
        sys.exit(1)

    if getattr(args, "json", False):
        print(json.dumps(result.to_dict(), indent=2))
    store.close()


# ===========================================================================
# Command: clear
# ===========================================================================


async def cmd_clear(args: argparse.Namespace) -> None:
    """Delete the catalog and all snapshots."""
    if not args.yes:
        _warn("Refusing to clear without --yes")
        sys.exit(1)
    store = await _open_store(args)
    await store.clear_database()
    _info("Database cleared")
    store.close()


# ===========================================================================
# Entry point
# ===========================================================================


def main() -> None:
    """CLI entry point: reslib <command> [args]."""
    global _quiet

    # Shared parent: flags work before or after the subcommand.
    # SUPPRESS defaults keep subparser defaults from overriding
    # values parsed at the main-parser level (argparse parents quirk).
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--data-dir", default=argparse.SUPPRESS,
        help="Data directory (default: RESLIB_DATA_DIR or ~/.reslib)",
    )
    _common.add_argument(
        "--backend", choices=["auto", "filesystem", "kv"], default=argparse.SUPPRESS,
        help="Storage backend (default: RESLIB_BACKEND or auto)",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="JSON config file (default: RESLIB_CONFIG)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="reslib",
        description="reslib — local encrypted resource library",
        parents=[_common],
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- info --------------------------------------------------------------
    p_info = sub.add_parser("info", parents=[_common], help="Storage and catalog summary")
    p_info.set_defaults(func=cmd_info)

    # -- list --------------------------------------------------------------
    p_list = sub.add_parser("list", parents=[_common], help="List a collection")
    p_list.add_argument("collection", choices=["categories", "resources", "tags"])
    p_list.add_argument(
        "--category", default=None,
        help="Only resources filed under this category or subcategory ID",
    )
    p_list.set_defaults(func=cmd_list)

    # -- show --------------------------------------------------------------
    p_show = sub.add_parser("show", parents=[_common], help="Show a category or resource")
    p_show.add_argument("id", help="Category or resource ID")
    p_show.set_defaults(func=cmd_show)

    # -- export ------------------------------------------------------------
    p_export = sub.add_parser("export", parents=[_common], help="Plaintext JSON backup")
    p_export.add_argument("-o", "--output", default=None, help="Output file (default: stdout)")
    p_export.set_defaults(func=cmd_export)

    # -- import ------------------------------------------------------------
    p_import = sub.add_parser("import", parents=[_common], help="Restore from JSON backup")
    p_import.add_argument("file", help="JSON file produced by export")
    p_import.add_argument("--dry-run", action="store_true", help="Validate and count only")
    p_import.set_defaults(func=cmd_import)

    # -- clear -------------------------------------------------------------
    p_clear = sub.add_parser("clear", parents=[_common], help="Delete catalog and snapshots")
    p_clear.add_argument("--yes", action="store_true", help="Confirm deletion")
    p_clear.set_defaults(func=cmd_clear)

    # -- Parse and dispatch ------------------------------------------------
    args = parser.parse_args()

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(args.func(args))
    except BrokenPipeError:
        # Handle broken pipe gracefully (e.g. reslib export | head)
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
