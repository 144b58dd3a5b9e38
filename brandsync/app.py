import argparse
import json
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .config import Settings
from .database import SqlStore
from .env import load_env
from .errors import BrandSyncError, InvalidInputError
from .hubspot import RemoteClient
from .logger import StructuredLogger, get_logger
from .normalize import brand_from_remote, partnership_from_remote
from .resolver import PARTNERSHIP_PROPERTIES, EntityResolver
from .scoring import POOL_LIMITS, TOP_K, match_partnerships, stratify_brand_pool
from .storage import JsonFileStore
from .sync import NOT_BUILT, CacheSynchronizer, parse_events, subscribe_to_changes

POOL_PROPERTIES = [
    "brand_name",
    "main_category",
    "new_product_main_category",
    "target_gen",
    "target_age_group__multi_",
    "client_status",
    "partnership_count",
]

# Remote bucket values; "Pending (Prospect)" is folded into Pending locally
POOL_BUCKETS = [("Active", 150), ("Inactive", 75), ("Pending", 200)]


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_context(settings: Settings, logger: StructuredLogger) -> Dict[str, Any]:
    if settings.store_path.suffix == ".json":
        store = JsonFileStore(settings.store_path)
    else:
        store = SqlStore(settings.store_path)
    client = RemoteClient.from_settings(settings, logger=logger)
    return {
        "settings": settings,
        "store": store,
        "client": client,
        "logger": logger,
    }


def _synchronizer(ctx: Dict[str, Any]) -> CacheSynchronizer:
    return CacheSynchronizer(
        ctx["client"],
        ctx["store"],
        object_type=ctx["settings"].brand_object,
        logger=ctx["logger"],
    )


def cmd_rebuild(args: argparse.Namespace, ctx: Dict[str, Any]) -> None:
    result = _synchronizer(ctx).rebuild()
    print(f"Pages fetched: {result['pagesFetched']}")
    print(f"Records cached: {result['recordCount']}")
    purged = ctx["store"].purge_expired()
    if purged:
        print(f"Expired cache entries purged: {purged}")
    if result["warning"]:
        print(f"Warning: {result['warning']}")


def cmd_list(args: argparse.Namespace, ctx: Dict[str, Any]) -> None:
    result = _synchronizer(ctx).query()
    if result is NOT_BUILT:
        print("Brand cache has not been built. Run `brandsync rebuild` first.")
        return
    if args.json:
        _print_json(result)
        return
    if not result["records"]:
        print("Brand cache is empty.")
        return
    print(f"Found {result['total']} brands (cache age: {result['cacheAgeMinutes']} min):\n")
    for row in result["records"]:
        print(f"ID: {row['id']}")
        print(f"  Name: {row['name']}")
        print(f"  Category: {row['category']}")
        print(f"  Status: {row['status']}")
        print(f"  Partnerships: {row['partnershipCount']}")
        if row["recordUrl"]:
            print(f"  URL: {row['recordUrl']}")
        print()
    if result["warning"]:
        print(f"Warning: {result['warning']}")


def cmd_apply_events(args: argparse.Namespace, ctx: Dict[str, Any]) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    try:
        with input_path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"Input file {input_path} is not valid JSON: {e}") from e

    events = parse_events(payload)
    if not events:
        print("No events with a record id in input.")
        return
    result = _synchronizer(ctx).apply_events(events)
    print(f"Added: {result['added']}  Updated: {result['updated']}  Removed: {result['removed']}")
    print(f"Total: {result['total']}")
    if not result["changed"]:
        print("No changes; cache left untouched.")
    if result["warning"]:
        print(f"Warning: {result['warning']}")


def cmd_resolve(args: argparse.Namespace, ctx: Dict[str, Any]) -> None:
    resolver = EntityResolver(
        ctx["client"],
        ctx["store"],
        object_type=ctx["settings"].partnership_object,
        logger=ctx["logger"],
    )
    if args.refresh:
        resolver.invalidate(args.name)
    payload = resolver.resolve_or_raise(args.name)
    _print_json(payload)


def cmd_subscribe(args: argparse.Namespace, ctx: Dict[str, Any]) -> None:
    settings = ctx["settings"]
    app_id = args.app_id or settings.app_id
    target_url = args.target_url or settings.webhook_url
    if not app_id:
        raise SystemExit("HUBSPOT_APP_ID not set. Set env var or pass --app-id.")
    if not target_url:
        raise SystemExit("WEBHOOK_URL not set. Set env var or pass --target-url.")

    results = subscribe_to_changes(
        ctx["client"],
        app_id,
        target_url,
        object_type=settings.brand_object,
        logger=ctx["logger"],
    )
    for r in results:
        label = r["property"] or r["eventType"]
        print(f"[{r['status']}] {label}")


def fetch_upcoming_partnerships(client: RemoteClient, object_type: str, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Partnerships starting or releasing today or later."""
    today_iso = (today or date.today()).isoformat()
    filter_groups = [
        {"filters": [{"propertyName": "start_date", "operator": "GTE", "value": today_iso}]},
        {"filters": [{"propertyName": "release__est__date", "operator": "GTE", "value": today_iso}]},
    ]
    page_result = client.search_all(
        object_type,
        filter_groups=filter_groups,
        properties=PARTNERSHIP_PROPERTIES,
        max_pages=4,
    )
    return page_result.records


def cmd_match(args: argparse.Namespace, ctx: Dict[str, Any]) -> None:
    settings = ctx["settings"]
    client = ctx["client"]
    raw_partnerships = fetch_upcoming_partnerships(client, settings.partnership_object)
    partnerships = [partnership_from_remote(r) for r in raw_partnerships]

    if args.from_cache:
        sync = _synchronizer(ctx)
        if sync.load_snapshot() is None:
            raise SystemExit("Brand cache has not been built. Run `brandsync rebuild` first.")
        candidates = sync.members()
    else:
        raw_brands = client.fetch_brand_pool(settings.brand_object, POOL_BUCKETS, properties=POOL_PROPERTIES)
        candidates = [brand_from_remote(r) for r in raw_brands]
    brands = stratify_brand_pool(candidates, POOL_LIMITS)
    ctx["logger"].info("Scoring brand pool", partnerships=len(partnerships), brands=len(brands))
    if not partnerships:
        print("No upcoming partnerships found.")
        return

    results = match_partnerships(partnerships, brands, top_k=args.top_k)
    _print_json([r.to_dict() for r in results])


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    parser = argparse.ArgumentParser(prog="brandsync", description="Brand cache sync, name resolution and matching")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--debug", action="store_true", help="Verbose logging and full tracebacks")
    parser.add_argument("--store", help="Store path; .json uses a JSON file, anything else SQLite (default: BRANDSYNC_STORE or data/brandsync.db)")

    subparsers = parser.add_subparsers(dest="command")
    reb = subparsers.add_parser("rebuild", help="Rebuild the brand cache from a full remote fetch")
    reb.set_defaults(func=cmd_rebuild)

    lst = subparsers.add_parser("list", help="List cached brands")
    lst.add_argument("--json", action="store_true", help="Print the raw query result as JSON")
    lst.set_defaults(func=cmd_list)

    evt = subparsers.add_parser("apply-events", help="Apply a JSON batch of change events to the brand cache")
    evt.add_argument("--input", required=True, help="Path to JSON file (event object or list of events)")
    evt.set_defaults(func=cmd_apply_events)

    res = subparsers.add_parser("resolve", help="Resolve a production name to a partnership record")
    res.add_argument("--name", required=True, help="Free-text production name")
    res.add_argument("--refresh", action="store_true", help="Ignore any cached resolution")
    res.set_defaults(func=cmd_resolve)

    mat = subparsers.add_parser("match", help="Score upcoming partnerships against the brand pool")
    mat.add_argument("--top-k", type=int, default=TOP_K, help=f"Brands kept per partnership (default: {TOP_K})")
    mat.add_argument("--from-cache", action="store_true", help="Score cached member brands instead of fetching the brand pool")
    mat.set_defaults(func=cmd_match)

    sub = subparsers.add_parser("subscribe", help="Register change subscriptions for the brand object")
    sub.add_argument("--app-id", help="App id (or set HUBSPOT_APP_ID)")
    sub.add_argument("--target-url", help="Webhook target URL (or set WEBHOOK_URL)")
    sub.set_defaults(func=cmd_subscribe)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return 0

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    settings = Settings.from_env()
    if args.store:
        settings.store_path = Path(args.store)
    debug = args.debug or settings.debug
    logger = get_logger(level="DEBUG" if debug else settings.log_level)

    try:
        ctx = build_context(settings, logger)
        args.func(args, ctx)
    except BrandSyncError as e:
        if debug:
            raise
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1
    finally:
        logger.log_metrics_summary()
    return 0


if __name__ == "__main__":
    sys.exit(main())
