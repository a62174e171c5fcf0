"""Scan history and favorites store.

Keeps two bounded, most-recent-first lists per user namespace:

* history: one entry per product id; re-scanning moves the entry to the
  front, overflow drops the least recently scanned entries.
* favorites: one entry per product id; adding an existing favorite is
  ignored, overflow drops the oldest added entries.

Every mutation waits for a running load, updates the in-memory lists
before its next ``await`` and then writes the full list to storage. Failures never raise: they are logged
and reported through :attr:`ScanHistoryStore.error`. In-memory state is
authoritative for the running session; storage is only the restore point.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Protocol

from .models import (
    HistoryStats,
    Product,
    ProductSafetyAssessment,
    SafetyLevel,
    ScanHistoryItem,
)
from .storage.base import KeyValueStorage

if TYPE_CHECKING:
    from .auth import AuthContext

logger = logging.getLogger(__name__)

GUEST_NAMESPACE = "guest"

# Number of most recent history entries mirrored into the offline cache
OFFLINE_HISTORY_WINDOW = 10


def history_key(user_id: str | None) -> str:
    return f"@scanHistory_{user_id or GUEST_NAMESPACE}"


def favorites_key(user_id: str | None) -> str:
    return f"@favorites_{user_id or GUEST_NAMESPACE}"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class OfflineProductCache(Protocol):
    async def cache_product(
        self,
        product: Product,
        assessment: ProductSafetyAssessment | None = None,
    ) -> None:
        ...


@dataclass
class ScanHistoryOptions:
    max_history_items: int = 100
    max_favorites: int = 50
    auto_save_offline: bool = True

    def __post_init__(self) -> None:
        if self.max_history_items < 1:
            raise ValueError("max_history_items must be at least 1")
        if self.max_favorites < 1:
            raise ValueError("max_favorites must be at least 1")


def _parse_items(raw: str | None) -> list[ScanHistoryItem]:
    if not raw:
        return []
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("stored list is not a JSON array")
    return [ScanHistoryItem.from_dict(entry) for entry in data]


def _dump_items(items: list[ScanHistoryItem]) -> str:
    return json.dumps([item.to_dict() for item in items], ensure_ascii=False)


class ScanHistoryStore:
    """Per-user scan history and favorites with local persistence."""

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        user_id: str | None = None,
        options: ScanHistoryOptions | None = None,
        offline_cache: OfflineProductCache | None = None,
        log: logging.Logger | None = None,
        clock: Callable[[], str] | None = None,
    ) -> None:
        self._storage = storage
        self._user_id = user_id
        self._options = options or ScanHistoryOptions()
        self._offline_cache = offline_cache
        self._logger = log or logger
        self._now = clock or _utc_now_iso

        self._history: list[ScanHistoryItem] = []
        self._favorites: list[ScanHistoryItem] = []
        self._error: str | None = None
        self._in_flight = 0
        self._load_generation = 0
        self._load_task: asyncio.Future | None = None
        self._loaded = False
        self._background: set[asyncio.Task] = set()

    # -- state ---------------------------------------------------------------

    @property
    def history(self) -> list[ScanHistoryItem]:
        return list(self._history)

    @property
    def favorites(self) -> list[ScanHistoryItem]:
        return list(self._favorites)

    @property
    def loading(self) -> bool:
        """True until the first load completes, and while any storage call runs."""
        return self._in_flight > 0 or not self._loaded

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def namespace(self) -> str:
        return self._user_id or GUEST_NAMESPACE

    @property
    def options(self) -> ScanHistoryOptions:
        return self._options

    def clear_error(self) -> None:
        self._error = None

    # -- loading and identity ------------------------------------------------

    async def load(self) -> None:
        """(Re)load both lists from the current namespace.

        A load superseded by a later load or user switch is discarded.
        Mutations issued while a load is running wait for it to finish.
        """
        self._load_generation += 1
        hkey, fkey = history_key(self._user_id), favorites_key(self._user_id)
        self._error = None
        self._in_flight += 1
        task = asyncio.ensure_future(self._read_lists(self._load_generation, hkey, fkey))
        self._load_task = task
        await task

    async def _read_lists(self, generation: int, hkey: str, fkey: str) -> None:
        try:
            raw_history, raw_favorites = await asyncio.gather(
                self._storage.get_item(hkey),
                self._storage.get_item(fkey),
            )
            history = _parse_items(raw_history)
            favorites = _parse_items(raw_favorites)
        except Exception:
            self._logger.exception("Failed to load scan history for %s", self.namespace)
            history, favorites = [], []
            if generation == self._load_generation:
                self._error = "Failed to load scan history"
        finally:
            self._in_flight -= 1

        if generation != self._load_generation:
            return
        self._favorites = favorites
        self._history = history
        self._sync_favorite_flags()
        self._loaded = True

    async def set_user(self, user_id: str | None) -> None:
        """Switch namespace and reload; the previous user's lists are dropped, never written."""
        if self._loaded and user_id == self._user_id:
            return
        self._user_id = user_id
        self._history = []
        self._favorites = []
        await self.load()

    async def _wait_for_load(self) -> None:
        """Let a running load land before a mutation touches the lists."""
        while self._load_task is not None and not self._load_task.done():
            await asyncio.shield(self._load_task)

    def bind(self, auth: AuthContext) -> Callable[[], None]:
        """Follow the signed-in identity of an auth context.

        Returns the unsubscribe callable.
        """

        async def _on_auth_change(event: str, session: Any) -> None:
            await self.set_user(auth.user_id)

        return auth.subscribe(_on_auth_change)

    # -- history operations --------------------------------------------------

    async def add_to_history(
        self,
        product: Product,
        assessment: ProductSafetyAssessment | None = None,
    ) -> None:
        await self._wait_for_load()
        self._error = None
        item = ScanHistoryItem(
            product=product,
            scanned_at=self._now(),
            safety_assessment=assessment,
            safety_level=assessment.overall_safety_level if assessment else None,
            is_favorite=self.is_favorite(product.id),
        )
        remaining = [i for i in self._history if i.product.id != product.id]
        self._history = [item, *remaining][: self._options.max_history_items]
        await self._save_history(history_key(self._user_id), self.history)

    async def remove_from_history(self, product_id: str) -> None:
        await self._wait_for_load()
        self._error = None
        if not self.is_in_history(product_id):
            return
        self._history = [i for i in self._history if i.product.id != product_id]
        await self._save_history(history_key(self._user_id), self.history)

    async def clear_history(self) -> None:
        await self._wait_for_load()
        self._error = None
        self._history = []
        key = history_key(self._user_id)
        self._in_flight += 1
        try:
            await self._storage.remove_item(key)
        except Exception:
            self._logger.exception("Failed to clear history")
            self._error = "Failed to clear history"
        finally:
            self._in_flight -= 1

    # -- favorites operations ------------------------------------------------

    async def add_to_favorites(
        self,
        product: Product,
        assessment: ProductSafetyAssessment | None = None,
    ) -> None:
        await self._wait_for_load()
        self._error = None
        if self.is_favorite(product.id):
            return
        item = ScanHistoryItem(
            product=product,
            scanned_at=self._now(),
            safety_assessment=assessment,
            safety_level=assessment.overall_safety_level if assessment else None,
            is_favorite=True,
        )
        self._favorites = [item, *self._favorites][: self._options.max_favorites]
        self._sync_favorite_flags()
        await self._save_both()

    async def remove_from_favorites(self, product_id: str) -> None:
        await self._wait_for_load()
        self._error = None
        if not self.is_favorite(product_id):
            return
        self._favorites = [i for i in self._favorites if i.product.id != product_id]
        self._sync_favorite_flags()
        await self._save_both()

    async def toggle_favorite(self, product_id: str) -> None:
        await self._wait_for_load()
        item = self.get_history_item(product_id)
        if item is None:
            self._logger.warning("Cannot toggle favorite, %s is not in history", product_id)
            self._error = "Product not found in history"
            return
        if self.is_favorite(product_id):
            await self.remove_from_favorites(product_id)
        else:
            await self.add_to_favorites(item.product, item.safety_assessment)

    # -- lookups -------------------------------------------------------------

    def get_history_item(self, product_id: str) -> ScanHistoryItem | None:
        for item in self._history:
            if item.product.id == product_id:
                return item
        return None

    def is_in_history(self, product_id: str) -> bool:
        return self.get_history_item(product_id) is not None

    def is_favorite(self, product_id: str) -> bool:
        return any(item.product.id == product_id for item in self._favorites)

    def search_history(self, query: str) -> list[ScanHistoryItem]:
        lower = query.lower()
        return [
            item
            for item in self._history
            if lower in (item.product.name or "").lower()
            or lower in (item.product.brand or "").lower()
            or query in (item.product.barcode or "")
            or lower in (item.product.category or "").lower()
        ]

    def get_recent_safe_products(self, limit: int = 10) -> list[ScanHistoryItem]:
        safe = [i for i in self._history if i.safety_level is SafetyLevel.SAFE]
        return safe[:limit]

    def get_history_stats(self) -> HistoryStats:
        return HistoryStats(
            total_scans=len(self._history),
            safe_products=sum(
                1 for i in self._history if i.safety_level is SafetyLevel.SAFE
            ),
            dangerous_products=sum(
                1
                for i in self._history
                if i.safety_level in (SafetyLevel.DANGER, SafetyLevel.WARNING)
            ),
            favorite_count=len(self._favorites),
        )

    # -- background work -----------------------------------------------------

    async def wait_for_background(self) -> None:
        """Wait until all detached offline-cache writes have finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- internals -----------------------------------------------------------

    def _sync_favorite_flags(self) -> None:
        """Make every history entry's is_favorite mirror favorites membership.

        This is the only place history flags are written.
        """
        favorite_ids = {item.product.id for item in self._favorites}
        self._history = [
            item if item.is_favorite == (item.product.id in favorite_ids)
            else replace(item, is_favorite=item.product.id in favorite_ids)
            for item in self._history
        ]

    async def _save_both(self) -> None:
        hkey, fkey = history_key(self._user_id), favorites_key(self._user_id)
        history, favorites = self.history, self.favorites
        await self._save_favorites(fkey, favorites)
        await self._save_history(hkey, history)

    async def _save_history(self, key: str, items: list[ScanHistoryItem]) -> None:
        saved = await self._persist(key, items, "Failed to save history")
        if saved:
            self._mirror_offline(items[:OFFLINE_HISTORY_WINDOW])

    async def _save_favorites(self, key: str, items: list[ScanHistoryItem]) -> None:
        saved = await self._persist(key, items, "Failed to save favorites")
        if saved:
            self._mirror_offline(items)

    async def _persist(self, key: str, items: list[ScanHistoryItem], failure: str) -> bool:
        payload = _dump_items(items)
        self._in_flight += 1
        try:
            await self._storage.set_item(key, payload)
        except Exception:
            self._logger.exception("%s (%s)", failure, key)
            self._error = failure
            return False
        finally:
            self._in_flight -= 1
        return True

    def _mirror_offline(self, items: list[ScanHistoryItem]) -> None:
        if not self._options.auto_save_offline or self._offline_cache is None:
            return
        if not items:
            return
        task = asyncio.create_task(self._write_offline(list(items)))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _write_offline(self, items: list[ScanHistoryItem]) -> None:
        cache = self._offline_cache
        if cache is None:
            return
        for item in items:
            try:
                await cache.cache_product(item.product, item.safety_assessment)
            except Exception:
                self._logger.exception("Failed to cache product %s offline", item.product.id)
