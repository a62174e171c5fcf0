"""CLI entry point for safeplate."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .backend import BackendClient, create_backend_client
from .config import SafeplateConfig, load_config
from .display import format_history_item, format_stats, safety_badge
from .history import GUEST_NAMESPACE, ScanHistoryOptions, ScanHistoryStore
from .models import LocationCoordinates, Product, ProductSafetyAssessment
from .offline import OfflineCache
from .storage import KeyValueStorage, create_storage

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)
    code = asyncio.run(_run(config, args))
    if code:
        sys.exit(code)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="safeplate",
        description="Scan history, favorites and offline safety data for restricted diets",
    )
    parser.add_argument("--config", "-c", type=str, default=None, help="Path to a TOML config file")
    parser.add_argument(
        "--user", type=str, default=None,
        help="History namespace to use (defaults to the signed-in user, or guest)",
    )
    parser.add_argument("--json", action="store_true", help="Output JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    sub = parser.add_subparsers(dest="command")

    # history
    history = sub.add_parser("history", help="Scan history").add_subparsers(dest="action", required=True)
    p = history.add_parser("list", help="List scanned products, most recent first")
    p.add_argument("--limit", type=int, default=None)
    p = history.add_parser("add", help="Record a scan by barcode or from a JSON product file")
    p.add_argument("barcode", nargs="?", default=None)
    p.add_argument("--file", type=str, default=None, help="JSON file with a product (and optional assessment)")
    p = history.add_parser("remove", help="Remove a product from history")
    p.add_argument("product_id")
    history.add_parser("clear", help="Delete the whole history")
    p = history.add_parser("search", help="Search history by name, brand, category or barcode")
    p.add_argument("query")
    p = history.add_parser("safe", help="Most recent products assessed as safe")
    p.add_argument("--limit", type=int, default=10)
    history.add_parser("stats", help="History statistics")

    # favorites
    favorites = sub.add_parser("favorites", help="Favorite products").add_subparsers(dest="action", required=True)
    favorites.add_parser("list", help="List favorites")
    for name, help_text in (
        ("add", "Mark a scanned product as favorite"),
        ("remove", "Remove a favorite"),
        ("toggle", "Toggle favorite status of a scanned product"),
    ):
        favorites.add_parser(name, help=help_text).add_argument("product_id")

    # cache
    cache = sub.add_parser("cache", help="Offline product cache").add_subparsers(dest="action", required=True)
    cache.add_parser("stats", help="Cache statistics")
    cache.add_parser("cleanup", help="Evict expired products")
    cache.add_parser("clear", help="Delete the offline cache")

    # auth
    p = sub.add_parser("login", help="Sign in to the backend")
    p.add_argument("--email", required=True)
    p.add_argument("--password", default=None, help="Prompted for when omitted")
    sub.add_parser("logout", help="Sign out")
    sub.add_parser("whoami", help="Show the signed-in user")

    # restaurants
    restaurants = sub.add_parser("restaurants", help="Restaurant discovery").add_subparsers(dest="action", required=True)
    p = restaurants.add_parser("search", help="Search restaurants near a location")
    p.add_argument("--lat", type=float, required=True)
    p.add_argument("--lon", type=float, required=True)
    p.add_argument("--radius", type=float, default=5.0, help="Radius in km")
    p.add_argument("--sort", choices=["distance", "rating", "safety_rating", "price"], default="distance")
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--cuisine", action="append", default=[], help="Cuisine type (repeatable)")
    p.add_argument("--min-safety", type=float, default=None)
    p.add_argument("--verified", action="store_true")

    # scheduler
    sub.add_parser("scheduler", help="Run offline cache maintenance jobs until interrupted")

    return parser


async def _run(config: SafeplateConfig, args) -> int:
    storage = create_storage(config)
    client = _maybe_backend(config, storage)
    try:
        match args.command:
            case "history" | "favorites":
                return await _cmd_history(config, args, storage, client)
            case "cache":
                return await _cmd_cache(config, args, storage)
            case "login":
                return await _cmd_login(args, _require_backend(client))
            case "logout":
                return await _cmd_logout(_require_backend(client))
            case "whoami":
                return await _cmd_whoami(args, _require_backend(client))
            case "restaurants":
                return await _cmd_restaurants(args, _require_backend(client), storage)
            case "scheduler":
                return await _cmd_scheduler(config, storage, client)
        return 1
    except _UsageError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        if client is not None:
            await client.aclose()
        storage.close()


class _UsageError(Exception):
    pass


def _maybe_backend(config: SafeplateConfig, storage: KeyValueStorage) -> BackendClient | None:
    if not config.backend.url or not config.backend.anon_key:
        return None
    return create_backend_client(config, storage)


def _require_backend(client: BackendClient | None) -> BackendClient:
    if client is None:
        raise _UsageError(
            "Backend is not configured: set SUPABASE_URL and SUPABASE_ANON_KEY"
        )
    return client


async def _resolve_user(args, client: BackendClient | None) -> str | None:
    if args.user is not None:
        return None if args.user == GUEST_NAMESPACE else args.user
    if client is None:
        return None
    session = await client.get_session()
    return session.user_id if session else None


def _make_cache(config: SafeplateConfig, storage: KeyValueStorage) -> OfflineCache:
    return OfflineCache(
        storage,
        max_products=config.offline.max_products,
        max_age_days=config.offline.max_age_days,
    )


# -- history / favorites -----------------------------------------------------


async def _cmd_history(config, args, storage, client) -> int:
    hc = config.history
    store = ScanHistoryStore(
        storage,
        user_id=await _resolve_user(args, client),
        options=ScanHistoryOptions(
            max_history_items=hc.max_history_items,
            max_favorites=hc.max_favorites,
            auto_save_offline=hc.auto_save_offline,
        ),
        offline_cache=_make_cache(config, storage),
    )
    await store.load()
    if store.error:
        print(store.error, file=sys.stderr)
        return 1

    if args.command == "history":
        code = await _history_action(store, args, client)
    else:
        code = await _favorites_action(store, args)

    await store.wait_for_background()
    if store.error:
        print(store.error, file=sys.stderr)
        return 1
    return code


async def _history_action(store: ScanHistoryStore, args, client) -> int:
    match args.action:
        case "list":
            items = store.history
            _print_items(items[: args.limit] if args.limit else items, args.json, "No scans yet.")
        case "add":
            product, assessment = await _load_product(args, client, store.user_id)
            await store.add_to_history(product, assessment)
            if not store.error:
                _print_items(store.history[:1], args.json, "")
        case "remove":
            await store.remove_from_history(args.product_id)
        case "clear":
            await store.clear_history()
        case "search":
            _print_items(store.search_history(args.query), args.json, "No matching products.")
        case "safe":
            _print_items(store.get_recent_safe_products(args.limit), args.json, "No safe products yet.")
        case "stats":
            stats = store.get_history_stats()
            if args.json:
                print(json.dumps(stats.to_dict(), indent=2))
            else:
                print(format_stats(stats))
    return 0


async def _favorites_action(store: ScanHistoryStore, args) -> int:
    match args.action:
        case "list":
            _print_items(store.favorites, args.json, "No favorites yet.")
        case "add":
            item = store.get_history_item(args.product_id)
            if item is None:
                print("Product not found in history", file=sys.stderr)
                return 1
            await store.add_to_favorites(item.product, item.safety_assessment)
        case "remove":
            await store.remove_from_favorites(args.product_id)
        case "toggle":
            await store.toggle_favorite(args.product_id)
            if not store.error and not args.json:
                state = "added to" if store.is_favorite(args.product_id) else "removed from"
                print(f"{args.product_id} {state} favorites")
    return 0


def _product_from_document(
    data: Any,
) -> tuple[Product, ProductSafetyAssessment | None]:
    """Accept either a bare product record or ``{"product": ..., "safetyAssessment": ...}``."""
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    if "product" not in data:
        return Product.from_dict(data), None
    raw_product = data["product"]
    raw_assessment = data.get("safetyAssessment") or data.get("assessment")
    if not isinstance(raw_product, dict):
        raise ValueError("product must be a JSON object")
    if raw_assessment is not None and not isinstance(raw_assessment, dict):
        raise ValueError("safetyAssessment must be a JSON object")
    assessment = ProductSafetyAssessment.from_dict(raw_assessment) if raw_assessment else None
    return Product.from_dict(raw_product), assessment


async def _load_product(
    args, client: BackendClient | None, user_id: str | None
) -> tuple[Product, ProductSafetyAssessment | None]:
    if args.file:
        try:
            data = json.loads(Path(args.file).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise _UsageError(f"Cannot read product file {args.file}: {e}") from e
        try:
            return _product_from_document(data)
        except ValueError as e:
            raise _UsageError(f"Invalid product file {args.file}: {e}") from e

    if not args.barcode:
        raise _UsageError("history add needs a barcode or --file")

    from .services.products import ProductService

    products = ProductService(_require_backend(client))
    found = await products.find_by_barcode(args.barcode)
    if found.error:
        raise _UsageError(f"Product lookup failed: {found.error.message}")
    if found.data is None:
        raise _UsageError(f"No product found for barcode {args.barcode}")
    assessment = None
    if user_id:
        latest = await products.get_latest_assessment(found.data.id, user_id=user_id)
        assessment = latest.data if latest.ok else None
    return found.data, assessment


def _print_items(items, as_json: bool, empty: str) -> None:
    if as_json:
        print(json.dumps([i.to_dict() for i in items], ensure_ascii=False, indent=2))
        return
    if not items:
        if empty:
            print(empty)
        return
    for item in items:
        print(format_history_item(item))


# -- offline cache ------------------------------------------------------------


async def _cmd_cache(config, args, storage) -> int:
    cache = _make_cache(config, storage)
    match args.action:
        case "stats":
            stats = await cache.get_cache_stats()
            if args.json:
                print(json.dumps(
                    {
                        "productCount": stats.product_count,
                        "lastSync": stats.last_sync,
                        "cacheSize": stats.cache_size,
                    },
                    indent=2,
                ))
            else:
                print(f"Cached products: {stats.product_count}")
                print(f"Last sync:       {stats.last_sync}")
                print(f"Cache size:      {stats.cache_size}")
        case "cleanup":
            removed = await cache.cleanup_expired()
            print(f"Removed {removed} expired products")
        case "clear":
            await cache.clear_cache()
            print("Offline cache cleared")
    return 0


# -- auth ---------------------------------------------------------------------


async def _cmd_login(args, client: BackendClient) -> int:
    password = args.password or getpass.getpass("Password: ")
    result = await client.sign_in_with_password(args.email, password)
    if result.error:
        print(f"Sign in failed: {result.error.message}", file=sys.stderr)
        return 1
    print(f"Signed in as {result.data['user'].get('email', args.email)}")
    return 0


async def _cmd_logout(client: BackendClient) -> int:
    result = await client.sign_out()
    if result.error:
        print(f"Sign out failed: {result.error.message}", file=sys.stderr)
        return 1
    print("Signed out")
    return 0


async def _cmd_whoami(args, client: BackendClient) -> int:
    session = await client.get_session()
    if session is None:
        print("Not signed in", file=sys.stderr)
        return 1
    if args.json:
        print(json.dumps(session.user, ensure_ascii=False, indent=2))
    else:
        print(f"{session.user.get('email', '')} ({session.user_id})")
    return 0


# -- restaurants --------------------------------------------------------------


async def _cmd_restaurants(args, client: BackendClient, storage) -> int:
    from .services.restaurants import (
        RestaurantFilters,
        RestaurantSearch,
        RestaurantSearchParams,
        RestaurantService,
        SortBy,
    )

    search = RestaurantSearch(RestaurantService(client), storage, initial_radius=args.radius)
    filters = None
    if args.cuisine or args.min_safety is not None or args.verified:
        filters = RestaurantFilters(
            cuisine_types=args.cuisine,
            safety_rating_min=args.min_safety,
            has_verified_safety=args.verified,
        )
    await search.search(
        RestaurantSearchParams(
            location=LocationCoordinates(latitude=args.lat, longitude=args.lon),
            radius_km=args.radius,
            filters=filters,
            sort_by=SortBy(args.sort),
            limit=args.limit,
        )
    )
    if search.error:
        print(search.error, file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(search.restaurants, ensure_ascii=False, indent=2, default=str))
        return 0
    if not search.restaurants:
        print("No restaurants found.")
        return 0
    print(f"{search.total_count} restaurants within {search.search_radius:g} km")
    for r in search.restaurants:
        star = "★" if r.get("is_favorite") else " "
        badge = safety_badge(r.get("safety_level"))
        print(f"{star} {r.get('name', '?'):<30} {r['distance_km']:.1f} km  {badge.icon}  [{r.get('id')}]")
    return 0


# -- scheduler ----------------------------------------------------------------


async def _cmd_scheduler(config, storage, client) -> int:
    from .scheduler import MaintenanceScheduler

    profile_service = None
    if client is not None and config.scheduler.sync_restrictions:
        from .auth import AuthContext
        from .services.profile import UserProfileService

        auth = AuthContext(client)
        await auth.initialize()
        profile_service = UserProfileService(client, auth)

    cache = _make_cache(config, storage)
    await cache.initialize()
    scheduler = MaintenanceScheduler(config, cache, profile_service)
    scheduler.start()
    for job in scheduler.get_jobs():
        print(f"  {job['id']}: next run {job['next_run']}")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
    return 0
