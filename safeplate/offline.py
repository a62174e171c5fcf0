"""Offline product cache for safety lookups without connectivity.

The cache is a single JSON document in the key-value store. Every public
method is best-effort: failures are logged and a neutral value is returned,
so callers can treat it as fire-and-forget.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from .models import Product, ProductSafetyAssessment, SafetyLevel
from .storage.base import KeyValueStorage

logger = logging.getLogger(__name__)

CACHE_KEY = "@restrictedDietApp/offlineCache"
CACHE_VERSION = 1

# restriction, ingredient keywords, allergen keywords, level, warning
_OFFLINE_RULES: list[tuple[str, tuple[str, ...], tuple[str, ...], SafetyLevel, str]] = [
    (
        "nut_allergy",
        ("peanut", "almond", "cashew", "walnut"),
        ("nut", "peanut"),
        SafetyLevel.DANGER,
        "Contains nuts - severe allergy risk",
    ),
    (
        "gluten_sensitivity",
        ("wheat", "gluten"),
        ("gluten",),
        SafetyLevel.WARNING,
        "Contains gluten",
    ),
    (
        "lactose_intolerance",
        ("milk", "dairy", "lactose"),
        ("milk",),
        SafetyLevel.CAUTION,
        "Contains dairy/lactose",
    ),
]


@dataclass
class OfflineAssessment:
    safety_level: SafetyLevel
    warnings: list[str]


@dataclass
class CacheStats:
    product_count: int
    last_sync: str
    cache_size: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime | None:
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class OfflineCache:
    """Caches product records and the user's restrictions for offline use."""

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        max_products: int = 100,
        max_age_days: int = 30,
    ) -> None:
        self._storage = storage
        self._max_products = max_products
        self._max_age = timedelta(days=max_age_days)
        self._cache: dict[str, Any] | None = None

    async def initialize(self) -> None:
        try:
            await self._load()
            await self.cleanup_expired()
        except Exception:
            logger.exception("Failed to initialize offline cache")
            await self._reset()

    async def cache_product(
        self,
        product: Product,
        assessment: ProductSafetyAssessment | None = None,
    ) -> None:
        try:
            cache = await self._ensure_loaded()
            key = product.barcode or product.id
            entry = product.to_dict()
            entry["safetyAssessment"] = assessment.to_dict() if assessment else None
            entry["lastUpdated"] = _iso(_utc_now())
            cache["products"][key] = entry
            self._enforce_max_size(cache)
            await self._save()
            logger.debug("Cached product: %s (%s)", product.name, key)
        except Exception:
            logger.exception("Failed to cache product %s", product.id)

    async def get_cached_product(self, barcode: str) -> dict[str, Any] | None:
        try:
            cache = await self._ensure_loaded()
            entry = cache["products"].get(barcode)
            if entry is None:
                return None
            if self._is_expired(entry):
                await self.remove_cached_product(barcode)
                return None
            return entry
        except Exception:
            logger.exception("Failed to get cached product %s", barcode)
            return None

    async def remove_cached_product(self, barcode: str) -> None:
        try:
            cache = await self._ensure_loaded()
            if cache["products"].pop(barcode, None) is not None:
                await self._save()
        except Exception:
            logger.exception("Failed to remove cached product %s", barcode)

    async def get_all_cached_products(self) -> list[dict[str, Any]]:
        try:
            cache = await self._ensure_loaded()
            return list(cache["products"].values())
        except Exception:
            logger.exception("Failed to list cached products")
            return []

    async def search_cached_products(self, query: str) -> list[dict[str, Any]]:
        lower = query.lower()
        return [
            p
            for p in await self.get_all_cached_products()
            if lower in (p.get("name") or "").lower()
            or lower in (p.get("brand") or "").lower()
            or query in (p.get("barcode") or "")
        ]

    async def cache_user_restrictions(self, restrictions: list[str]) -> None:
        try:
            cache = await self._ensure_loaded()
            cache["userRestrictions"] = list(restrictions)
            cache["lastSync"] = _iso(_utc_now())
            await self._save()
        except Exception:
            logger.exception("Failed to cache user restrictions")

    async def get_cached_user_restrictions(self) -> list[str]:
        try:
            cache = await self._ensure_loaded()
            return list(cache.get("userRestrictions") or [])
        except Exception:
            logger.exception("Failed to read cached user restrictions")
            return []

    async def assess_offline(
        self,
        product: dict[str, Any],
        restrictions: list[str] | None = None,
    ) -> OfflineAssessment:
        """Assess a cached product against the user's restrictions.

        A cached assessment wins; otherwise a keyword rule table is applied.
        """
        try:
            if restrictions is None:
                restrictions = await self.get_cached_user_restrictions()
            assessment_raw = product.get("safetyAssessment")
            if isinstance(assessment_raw, dict):
                assessment = ProductSafetyAssessment.from_dict(assessment_raw)
                return OfflineAssessment(
                    safety_level=assessment.overall_safety_level,
                    warnings=_warnings_from_assessment(assessment),
                )
            return _basic_assessment(product, restrictions)
        except Exception:
            logger.exception("Failed to perform offline safety assessment")
            return OfflineAssessment(
                safety_level=SafetyLevel.CAUTION,
                warnings=["Unable to assess safety offline. Please check connection."],
            )

    async def cleanup_expired(self) -> int:
        """Drop entries older than the maximum age; returns how many were removed."""
        try:
            cache = await self._ensure_loaded()
            expired = [
                key for key, entry in cache["products"].items()
                if self._is_expired(entry)
            ]
            for key in expired:
                del cache["products"][key]
            if expired:
                await self._save()
            return len(expired)
        except Exception:
            logger.exception("Failed to clean up expired cache entries")
            return 0

    async def get_cache_stats(self) -> CacheStats:
        try:
            cache = await self._ensure_loaded()
            size_kb = round(len(json.dumps(cache, ensure_ascii=False)) / 1024)
            return CacheStats(
                product_count=len(cache["products"]),
                last_sync=cache.get("lastSync", ""),
                cache_size=f"{size_kb} KB",
            )
        except Exception:
            logger.exception("Failed to get cache stats")
            return CacheStats(product_count=0, last_sync="Error", cache_size="0 KB")

    async def clear_cache(self) -> None:
        try:
            await self._storage.remove_item(CACHE_KEY)
            self._cache = None
            logger.info("Offline cache cleared")
        except Exception:
            logger.exception("Failed to clear offline cache")

    # -- internals -----------------------------------------------------------

    def _is_expired(self, entry: dict[str, Any]) -> bool:
        updated = _parse_iso(entry.get("lastUpdated", ""))
        return updated is None or _utc_now() - updated > self._max_age

    def _enforce_max_size(self, cache: dict[str, Any]) -> None:
        products = cache["products"]
        overflow = len(products) - self._max_products
        if overflow <= 0:
            return
        oldest = sorted(products, key=lambda k: products[k].get("lastUpdated", ""))
        for key in oldest[:overflow]:
            del products[key]

    async def _ensure_loaded(self) -> dict[str, Any]:
        if self._cache is None:
            return await self._load()
        return self._cache

    async def _load(self) -> dict[str, Any]:
        try:
            raw = await self._storage.get_item(CACHE_KEY)
        except Exception:
            logger.exception("Failed to load offline cache")
            raw = None
        data = None
        if raw:
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Offline cache is malformed, resetting")
        if (
            not isinstance(data, dict)
            or data.get("version") != CACHE_VERSION
            or not isinstance(data.get("products"), dict)
        ):
            return await self._reset()
        self._cache = data
        return data

    async def _save(self) -> None:
        if self._cache is None:
            return
        await self._storage.set_item(
            CACHE_KEY, json.dumps(self._cache, ensure_ascii=False)
        )

    async def _reset(self) -> dict[str, Any]:
        cache = self._cache = {
            "products": {},
            "userRestrictions": [],
            "lastSync": _iso(_utc_now()),
            "version": CACHE_VERSION,
        }
        try:
            await self._save()
        except Exception:
            logger.exception("Failed to save reset offline cache")
        return cache


def _warnings_from_assessment(assessment: ProductSafetyAssessment) -> list[str]:
    warnings: list[str] = []
    if assessment.dangerous_ingredients_count > 0:
        warnings.append(
            f"{assessment.dangerous_ingredients_count} dangerous ingredient(s) found"
        )
    if assessment.warning_ingredients_count > 0:
        warnings.append(
            f"{assessment.warning_ingredients_count} ingredient(s) may cause reactions"
        )
    if isinstance(assessment.risk_factors, dict):
        for risk in assessment.risk_factors.get("risks") or []:
            level = risk.get("risk_level")
            if level in ("danger", "warning"):
                warnings.append(f"{risk.get('ingredient_name')}: {level}")
    return warnings


def _basic_assessment(product: dict[str, Any], restrictions: list[str]) -> OfflineAssessment:
    ingredients = (product.get("ingredients_list") or "").lower()
    allergens = [a.lower() for a in product.get("allergen_warnings") or []]
    level = SafetyLevel.SAFE
    warnings: list[str] = []

    for restriction, ingredient_keys, allergen_keys, raised_to, message in _OFFLINE_RULES:
        if restriction not in restrictions:
            continue
        hit = any(k in ingredients for k in ingredient_keys) or any(
            k in allergen for k in allergen_keys for allergen in allergens
        )
        if not hit:
            continue
        # Only the first matching rule sets the level
        if level is SafetyLevel.SAFE:
            level = raised_to
        warnings.append(message)

    return OfflineAssessment(safety_level=level, warnings=warnings)
