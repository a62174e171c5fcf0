"""Tests for the offline product cache."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from safeplate.models import Product, ProductSafetyAssessment, SafetyLevel
from safeplate.offline import CACHE_KEY, CACHE_VERSION, OfflineCache
from safeplate.storage import MemoryStorage


def _product(barcode: str, name: str = "Crackers", **kwargs) -> Product:
    return Product(id=f"id-{barcode}", barcode=barcode, name=name, **kwargs)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


class BrokenStorage(MemoryStorage):
    async def get_item(self, key):
        raise OSError("disk gone")

    async def set_item(self, key, value):
        raise OSError("disk gone")


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def cache(storage):
    return OfflineCache(storage, max_products=3, max_age_days=30)


class TestProducts:
    @pytest.mark.asyncio
    async def test_cache_and_get(self, cache, storage):
        await cache.cache_product(_product("111", brand="Acme"))
        entry = await cache.get_cached_product("111")
        assert entry["name"] == "Crackers"
        assert entry["brand"] == "Acme"
        assert entry["safetyAssessment"] is None
        assert "lastUpdated" in entry

        stored = json.loads(await storage.get_item(CACHE_KEY))
        assert stored["version"] == CACHE_VERSION
        assert "111" in stored["products"]

    @pytest.mark.asyncio
    async def test_keyed_by_id_without_barcode(self, cache):
        await cache.cache_product(Product(id="p1", name="Loose apples"))
        assert (await cache.get_cached_product("p1"))["name"] == "Loose apples"

    @pytest.mark.asyncio
    async def test_missing_product(self, cache):
        assert await cache.get_cached_product("nope") is None

    @pytest.mark.asyncio
    async def test_max_size_evicts_oldest(self, storage):
        now = datetime.now(timezone.utc)
        products = {
            str(n): {"id": str(n), "barcode": str(n), "name": f"P{n}",
                     "lastUpdated": _iso(now - timedelta(hours=10 - n))}
            for n in range(3)
        }
        await storage.set_item(CACHE_KEY, json.dumps({
            "products": products, "userRestrictions": [],
            "lastSync": _iso(now), "version": CACHE_VERSION,
        }))
        cache = OfflineCache(storage, max_products=3)
        await cache.cache_product(_product("new"))
        barcodes = {p["barcode"] for p in await cache.get_all_cached_products()}
        assert barcodes == {"1", "2", "new"}

    @pytest.mark.asyncio
    async def test_expired_entry_removed_on_read(self, storage):
        old = _iso(datetime.now(timezone.utc) - timedelta(days=31))
        await storage.set_item(CACHE_KEY, json.dumps({
            "products": {"9": {"id": "9", "barcode": "9", "name": "Old", "lastUpdated": old}},
            "userRestrictions": [], "lastSync": old, "version": CACHE_VERSION,
        }))
        cache = OfflineCache(storage)
        assert await cache.get_cached_product("9") is None
        assert await cache.get_all_cached_products() == []

    @pytest.mark.asyncio
    async def test_cleanup_expired_counts(self, storage):
        now = datetime.now(timezone.utc)
        await storage.set_item(CACHE_KEY, json.dumps({
            "products": {
                "a": {"id": "a", "lastUpdated": _iso(now - timedelta(days=40))},
                "b": {"id": "b", "lastUpdated": _iso(now - timedelta(days=31))},
                "c": {"id": "c", "lastUpdated": _iso(now - timedelta(days=1))},
            },
            "userRestrictions": [], "lastSync": _iso(now), "version": CACHE_VERSION,
        }))
        cache = OfflineCache(storage)
        assert await cache.cleanup_expired() == 2
        assert await cache.cleanup_expired() == 0

    @pytest.mark.asyncio
    async def test_search(self, cache):
        await cache.cache_product(_product("4901", name="Soy Sauce", brand="Kikko"))
        await cache.cache_product(_product("4902", name="Miso"))
        assert [p["barcode"] for p in await cache.search_cached_products("soy")] == ["4901"]
        assert [p["barcode"] for p in await cache.search_cached_products("kikko")] == ["4901"]
        assert [p["barcode"] for p in await cache.search_cached_products("4902")] == ["4902"]

    @pytest.mark.asyncio
    async def test_remove(self, cache):
        await cache.cache_product(_product("1"))
        await cache.remove_cached_product("1")
        assert await cache.get_cached_product("1") is None


class TestVersioning:
    @pytest.mark.asyncio
    async def test_version_mismatch_resets(self, storage):
        await storage.set_item(CACHE_KEY, json.dumps({
            "products": {"x": {"id": "x"}}, "version": CACHE_VERSION + 1,
        }))
        cache = OfflineCache(storage)
        await cache.initialize()
        assert await cache.get_all_cached_products() == []
        stored = json.loads(await storage.get_item(CACHE_KEY))
        assert stored["version"] == CACHE_VERSION

    @pytest.mark.asyncio
    async def test_malformed_document_resets(self, storage):
        await storage.set_item(CACHE_KEY, "not json")
        cache = OfflineCache(storage)
        assert await cache.get_all_cached_products() == []

    @pytest.mark.asyncio
    async def test_first_use_loads_without_initialize(self, storage):
        await storage.set_item(CACHE_KEY, json.dumps({
            "products": {"x": {"id": "x", "name": "Rice"}},
            "userRestrictions": ["gluten"],
            "version": CACHE_VERSION,
        }))
        cache = OfflineCache(storage)
        assert await cache.get_cached_user_restrictions() == ["gluten"]
        assert [p["id"] for p in await cache.get_all_cached_products()] == ["x"]

        empty = OfflineCache(MemoryStorage())
        await empty.cache_user_restrictions(["nuts"])
        assert await empty.get_cached_user_restrictions() == ["nuts"]


class TestRestrictions:
    @pytest.mark.asyncio
    async def test_round_trip_updates_last_sync(self, cache):
        await cache.cache_user_restrictions(["nut_allergy", "gluten_sensitivity"])
        assert await cache.get_cached_user_restrictions() == [
            "nut_allergy", "gluten_sensitivity",
        ]
        stats = await cache.get_cache_stats()
        assert stats.last_sync


class TestAssessOffline:
    @pytest.mark.asyncio
    async def test_cached_assessment_wins(self, cache):
        assessment = ProductSafetyAssessment(
            overall_safety_level=SafetyLevel.WARNING,
            dangerous_ingredients_count=1,
            warning_ingredients_count=2,
            risk_factors={"risks": [
                {"ingredient_name": "whey", "risk_level": "warning"},
                {"ingredient_name": "salt", "risk_level": "safe"},
            ]},
        )
        await cache.cache_product(_product("1", ingredients_list="peanuts"), assessment)
        product = await cache.get_cached_product("1")
        result = await cache.assess_offline(product, ["nut_allergy"])
        assert result.safety_level is SafetyLevel.WARNING
        assert result.warnings == [
            "1 dangerous ingredient(s) found",
            "2 ingredient(s) may cause reactions",
            "whey: warning",
        ]

    @pytest.mark.asyncio
    async def test_nut_rule_from_ingredients(self, cache):
        product = {"ingredients_list": "Roasted PEANUTS, salt"}
        result = await cache.assess_offline(product, ["nut_allergy"])
        assert result.safety_level is SafetyLevel.DANGER
        assert result.warnings == ["Contains nuts - severe allergy risk"]

    @pytest.mark.asyncio
    async def test_rule_from_allergen_warnings(self, cache):
        product = {"ingredients_list": "", "allergen_warnings": ["Contains Milk"]}
        result = await cache.assess_offline(product, ["lactose_intolerance"])
        assert result.safety_level is SafetyLevel.CAUTION

    @pytest.mark.asyncio
    async def test_first_matching_rule_sets_level(self, cache):
        product = {"ingredients_list": "wheat flour, milk, almonds"}
        result = await cache.assess_offline(
            product, ["gluten_sensitivity", "lactose_intolerance", "nut_allergy"]
        )
        assert result.safety_level is SafetyLevel.DANGER
        assert len(result.warnings) == 3

    @pytest.mark.asyncio
    async def test_unrelated_restriction_is_safe(self, cache):
        product = {"ingredients_list": "wheat flour"}
        result = await cache.assess_offline(product, ["nut_allergy"])
        assert result.safety_level is SafetyLevel.SAFE
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_uses_cached_restrictions_by_default(self, cache):
        await cache.cache_user_restrictions(["gluten_sensitivity"])
        result = await cache.assess_offline({"ingredients_list": "gluten"})
        assert result.safety_level is SafetyLevel.WARNING

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_caution(self, cache):
        result = await cache.assess_offline({"ingredients_list": 42}, [])
        assert result.safety_level is SafetyLevel.CAUTION
        assert "Unable to assess safety offline" in result.warnings[0]


class TestStatsAndClear:
    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.cache_product(_product("1"))
        await cache.cache_product(_product("2"))
        stats = await cache.get_cache_stats()
        assert stats.product_count == 2
        assert stats.cache_size.endswith(" KB")

    @pytest.mark.asyncio
    async def test_clear(self, cache, storage):
        await cache.cache_product(_product("1"))
        await cache.clear_cache()
        assert await storage.get_item(CACHE_KEY) is None
        assert await cache.get_all_cached_products() == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_broken_storage_never_raises(self):
        cache = OfflineCache(BrokenStorage())
        await cache.initialize()
        await cache.cache_product(_product("1"))
        assert await cache.get_cached_product("missing") is None
        assert await cache.cleanup_expired() == 0
        stats = await cache.get_cache_stats()
        assert stats.product_count >= 0
