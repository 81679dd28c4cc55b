"""
Command-line interface for the Memorable photo library.
"""

import argparse
import json
import sys
from typing import Any, List, Optional

from .config import AppConfig, load_config
from .logging_setup import setup_logging, get_logger
from .metadata_store import MetadataStore
from .sync_orchestrator import SyncOrchestrator

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="memorable",
        description="Manage photo library metadata and sync it with EXIF"
    )

    parser.add_argument(
        "--config",
        default="config.json",
        help="Path to configuration JSON file (default: config.json, optional)"
    )
    parser.add_argument(
        "--db",
        help="Override the library database path from the config file"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode regardless of config setting"
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bars"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import image files into the library")
    import_parser.add_argument("paths", nargs="+", help="Image files to import")

    subparsers.add_parser("list", help="List photos, newest first")

    show_parser = subparsers.add_parser("show", help="Show one photo with its collections and custom metadata")
    show_parser.add_argument("photo_id", type=int)

    write_parser = subparsers.add_parser("write-exif", help="Write stored metadata into JPEG originals")
    write_parser.add_argument("photo_ids", nargs="+", type=int)

    location_parser = subparsers.add_parser("set-location", help="Set the position of photos")
    location_parser.add_argument("photo_ids", nargs="+", type=int)
    location_parser.add_argument("--lat", type=float, required=True, help="Latitude in decimal degrees")
    location_parser.add_argument("--lon", type=float, required=True, help="Longitude in decimal degrees")
    location_parser.add_argument("--name", help="Place name")

    geocode_parser = subparsers.add_parser("geocode", help="Look up the address of a coordinate")
    geocode_parser.add_argument("lat", type=float)
    geocode_parser.add_argument("lon", type=float)
    geocode_parser.add_argument("--timeout", type=float, help="Request timeout in seconds")

    nearby_parser = subparsers.add_parser("nearby", help="List points of interest around a coordinate")
    nearby_parser.add_argument("lat", type=float)
    nearby_parser.add_argument("lon", type=float)
    nearby_parser.add_argument("--radius", type=int, help="Search radius in meters (default from config)")
    nearby_parser.add_argument("--timeout", type=float, help="Request timeout in seconds")

    return parser


def process_arguments(args: argparse.Namespace, config: AppConfig) -> AppConfig:
    """
    Override config values from command-line arguments.

    Args:
        args: Parsed arguments
        config: Loaded configuration

    Returns:
        Updated configuration
    """
    if args.debug:
        config.debug_mode = True
        config.log_level = "DEBUG"
    if args.db:
        config.database_path = args.db
    if args.no_progress:
        config.show_progress = False
    return config


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def run_command(args: argparse.Namespace, orchestrator: SyncOrchestrator) -> int:
    """
    Execute one subcommand.

    Returns:
        Exit code (0 when every item succeeded)
    """
    store = orchestrator.store

    if args.command == "import":
        results = orchestrator.import_photos(args.paths)
        _print_json({'results': results, 'stats': orchestrator.stats.to_dict()})
        return 0 if all(r['success'] for r in results) else 1

    if args.command == "list":
        _print_json([photo.to_dict() for photo in store.get_photos()])
        return 0

    if args.command == "show":
        photo = store.get_photo(args.photo_id)
        if photo is None:
            logger.error(f"Photo {args.photo_id} not found")
            return 1
        payload = photo.to_dict()
        payload['collections'] = [c.to_dict() for c in store.get_photo_collections(args.photo_id)]
        payload['custom_metadata'] = store.get_custom_metadata(args.photo_id)
        _print_json(payload)
        return 0

    if args.command == "write-exif":
        results = orchestrator.write_exif_batch(args.photo_ids)
        _print_json(results)
        return 0 if all(r['success'] for r in results) else 1

    if args.command == "set-location":
        outcome = orchestrator.bulk_set_location(args.photo_ids, args.lat, args.lon, args.name)
        _print_json(outcome.to_dict())
        return 0 if outcome.success else 1

    if args.command == "geocode":
        outcome = orchestrator.reverse_geocode(args.lat, args.lon, timeout=args.timeout)
        _print_json(outcome.to_dict())
        return 0 if outcome.success else 1

    if args.command == "nearby":
        result = orchestrator.find_nearby_places(args.lat, args.lon, args.radius, timeout=args.timeout)
        _print_json(result.to_dict())
        return 0 if result.success else 1

    logger.error(f"Unknown command: {args.command}")
    return 2


def run_cli(argv: Optional[List[str]] = None) -> int:
    """
    Run the command-line interface.

    Args:
        argv: Argument list (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    args = build_parser().parse_args(argv)
    config = None
    try:
        config = load_config(args.config)
        config = process_arguments(args, config)
        setup_logging(config, log_prefix="memorable")

        store = MetadataStore(config.database_path, config)
        orchestrator = SyncOrchestrator(store, config)
        try:
            return run_command(args, orchestrator)
        finally:
            orchestrator.shutdown()

    except (RuntimeError, ValueError) as e:
        logger.error(f"Command failed: {str(e)}")
        if config is not None and config.debug_mode:
            import traceback
            logger.error(f"Traceback: {traceback.format_exc()}")
        return 1


def main() -> None:
    sys.exit(run_cli())
