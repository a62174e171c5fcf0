"""Restaurant discovery, details and favourites."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..models import LocationCoordinates
from .location import bounding_box, calculate_distance

if TYPE_CHECKING:
    from ..backend.client import BackendClient
    from ..storage.base import KeyValueStorage

logger = logging.getLogger(__name__)

RECENT_SEARCH_KEY = "recent_restaurant_search"
DEFAULT_PAGE_SIZE = 20


class SortBy(str, Enum):
    DISTANCE = "distance"
    RATING = "rating"
    SAFETY_RATING = "safety_rating"
    PRICE = "price"


class RestaurantServiceError(Exception):
    """A restaurant query failed; ``code`` classifies the failure."""

    def __init__(self, code: str, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


@dataclass
class RestaurantFilters:
    cuisine_types: list[str] = field(default_factory=list)
    price_range: list[int] = field(default_factory=list)
    safety_rating_min: float | None = None
    has_verified_safety: bool = False
    wheelchair_accessible: bool = False
    delivery_available: bool = False
    takeout_available: bool = False


@dataclass
class RestaurantSearchParams:
    location: LocationCoordinates
    radius_km: float = 5.0
    filters: RestaurantFilters | None = None
    sort_by: SortBy | None = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    def cache_key(self) -> str:
        # Coordinates rounded to ~100 m so nearby searches share a cache entry
        return json.dumps(
            {
                "lat": round(self.location.latitude, 3),
                "lng": round(self.location.longitude, 3),
                "radius": self.radius_km,
                "filters": asdict(self.filters) if self.filters else None,
                "sort": self.sort_by.value if self.sort_by else None,
                "limit": self.limit,
                "offset": self.offset,
            },
            sort_keys=True,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": asdict(self.location),
            "radius_km": self.radius_km,
            "filters": asdict(self.filters) if self.filters else None,
            "sort_by": self.sort_by.value if self.sort_by else None,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass
class RestaurantSearchResult:
    restaurants: list[dict[str, Any]]
    total_count: int
    has_more: bool
    search_center: LocationCoordinates
    search_radius_km: float


class RestaurantService:
    """Backend queries for restaurants. Failures raise RestaurantServiceError."""

    def __init__(self, client: BackendClient) -> None:
        self._client = client
        self._search_cache: dict[str, RestaurantSearchResult] = {}

    async def search_restaurants(self, params: RestaurantSearchParams) -> RestaurantSearchResult:
        key = params.cache_key()
        cached = self._search_cache.get(key)
        if cached is not None:
            return cached

        min_lat, max_lat, min_lon, max_lon = bounding_box(params.location, params.radius_km)
        query = (
            self._client.table("restaurants")
            .select("*, restaurant_reviews(id, rating, safety_rating, created_at)", count="exact")
            .eq("is_active", True)
            .gte("latitude", min_lat)
            .lte("latitude", max_lat)
            .gte("longitude", min_lon)
            .lte("longitude", max_lon)
        )
        if params.filters:
            query = _apply_filters(query, params.filters)

        match params.sort_by:
            case SortBy.RATING:
                query = query.order("average_rating", ascending=False)
            case SortBy.SAFETY_RATING:
                query = query.order("safety_rating", ascending=False)
            case SortBy.PRICE:
                query = query.order("price_range")
            case _:
                # distance is sorted after the precise distance check
                pass
        query = query.range(params.offset, params.offset + params.limit - 1)

        response = await query.execute()
        if response.error:
            raise RestaurantServiceError(
                "DATABASE_ERROR", "Failed to search restaurants", response.error
            )

        rows = response.data or []
        favorite_ids = await self._favorite_ids()
        restaurants = []
        for row in rows:
            coords = LocationCoordinates(
                latitude=row.get("latitude") or 0.0,
                longitude=row.get("longitude") or 0.0,
            )
            distance = calculate_distance(params.location, coords)
            if distance > params.radius_km:
                continue
            restaurants.append(
                {
                    **row,
                    "distance_km": distance,
                    "is_favorite": row.get("id") in favorite_ids,
                    "recent_reviews": (row.get("restaurant_reviews") or [])[:3],
                }
            )
        if params.sort_by in (None, SortBy.DISTANCE):
            restaurants.sort(key=lambda r: r["distance_km"])

        total = response.count if response.count is not None else len(restaurants)
        result = RestaurantSearchResult(
            restaurants=restaurants,
            total_count=total,
            has_more=params.offset + len(rows) < total,
            search_center=params.location,
            search_radius_km=params.radius_km,
        )
        self._search_cache[key] = result
        return result

    async def get_restaurant_details(self, restaurant_id: str) -> dict[str, Any]:
        response = await (
            self._client.table("restaurants")
            .select(
                "*, restaurant_reviews(*, user_profiles!restaurant_reviews_user_id_fkey(full_name, is_verified))"
            )
            .eq("id", restaurant_id)
            .maybe_single()
            .execute()
        )
        if response.error:
            raise RestaurantServiceError(
                "DATABASE_ERROR", "Failed to get restaurant details", response.error
            )
        if not response.data:
            raise RestaurantServiceError("NOT_FOUND", "Restaurant not found")

        details = dict(response.data)
        details["is_favorite"] = await self.is_favorite(restaurant_id)
        user_id = await self._user_id()
        if user_id:
            reviews = await (
                self._client.table("restaurant_reviews")
                .select("*")
                .eq("restaurant_id", restaurant_id)
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
            details["user_review"] = (reviews.data or [None])[0] if reviews.ok else None
        return details

    async def get_restaurant_menu(
        self,
        restaurant_id: str,
        user_restrictions: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Active menu items, each with the assessments for the given restrictions."""
        restrictions = set(user_restrictions or [])
        response = await (
            self._client.table("menu_items")
            .select(
                "*, menu_item_safety_assessments(restriction_id, safety_level, risk_factors, customer_notes)"
            )
            .eq("restaurant_id", restaurant_id)
            .eq("is_active", True)
            .order("category_id")
            .execute()
        )
        if response.error:
            raise RestaurantServiceError(
                "DATABASE_ERROR", "Failed to get restaurant menu", response.error
            )
        return [
            {
                **item,
                "safety_assessment": [
                    a for a in item.get("menu_item_safety_assessments") or []
                    if a.get("restriction_id") in restrictions
                ],
            }
            for item in response.data or []
        ]

    # -- favourites ----------------------------------------------------------

    async def add_to_favorites(self, restaurant_id: str, notes: str | None = None) -> None:
        user_id = await self._user_id()
        if not user_id:
            raise RestaurantServiceError(
                "PERMISSION_DENIED", "User must be logged in to add favorites"
            )
        response = await (
            self._client.table("user_favorite_restaurants")
            .insert({"user_id": user_id, "restaurant_id": restaurant_id, "notes": notes or None})
            .execute()
        )
        if response.error:
            raise RestaurantServiceError(
                "DATABASE_ERROR", "Failed to add restaurant to favorites", response.error
            )
        self.clear_cache()

    async def remove_from_favorites(self, restaurant_id: str) -> None:
        user_id = await self._user_id()
        if not user_id:
            raise RestaurantServiceError(
                "PERMISSION_DENIED", "User must be logged in to manage favorites"
            )
        response = await (
            self._client.table("user_favorite_restaurants")
            .delete()
            .eq("user_id", user_id)
            .eq("restaurant_id", restaurant_id)
            .execute()
        )
        if response.error:
            raise RestaurantServiceError(
                "DATABASE_ERROR", "Failed to remove restaurant from favorites", response.error
            )
        self.clear_cache()

    async def get_favorite_restaurants(self) -> list[dict[str, Any]]:
        user_id = await self._user_id()
        if not user_id:
            return []
        response = await (
            self._client.table("user_favorite_restaurants")
            .select("notes, created_at, restaurants(*)")
            .eq("user_id", user_id)
            .order("created_at", ascending=False)
            .execute()
        )
        if response.error:
            raise RestaurantServiceError(
                "DATABASE_ERROR", "Failed to get favorite restaurants", response.error
            )
        return [
            {**fav["restaurants"], "is_favorite": True, "distance_km": None}
            for fav in response.data or []
            if fav.get("restaurants")
        ]

    async def is_favorite(self, restaurant_id: str) -> bool:
        user_id = await self._user_id()
        if not user_id:
            return False
        response = await (
            self._client.table("user_favorite_restaurants")
            .select("id")
            .eq("user_id", user_id)
            .eq("restaurant_id", restaurant_id)
            .limit(1)
            .execute()
        )
        if response.error:
            logger.error("Check favorite status error: %s", response.error.message)
            return False
        return bool(response.data)

    def clear_cache(self) -> None:
        self._search_cache.clear()

    # -- internals -----------------------------------------------------------

    async def _user_id(self) -> str | None:
        session = await self._client.get_session()
        return session.user_id if session else None

    async def _favorite_ids(self) -> set[str]:
        user_id = await self._user_id()
        if not user_id:
            return set()
        response = await (
            self._client.table("user_favorite_restaurants")
            .select("restaurant_id")
            .eq("user_id", user_id)
            .execute()
        )
        if response.error:
            logger.error("Failed to load favorite restaurant ids: %s", response.error.message)
            return set()
        return {row["restaurant_id"] for row in response.data or []}


def _apply_filters(query, filters: RestaurantFilters):
    if filters.cuisine_types:
        query = query.overlaps("cuisine_types", filters.cuisine_types)
    if filters.price_range:
        query = query.in_("price_range", filters.price_range)
    if filters.safety_rating_min is not None:
        query = query.gte("safety_rating", filters.safety_rating_min)
    if filters.has_verified_safety:
        query = query.eq("is_verified", True)
    if filters.wheelchair_accessible:
        query = query.eq("wheelchair_accessible", True)
    if filters.delivery_available:
        query = query.eq("delivery_available", True)
    if filters.takeout_available:
        query = query.eq("takeout_available", True)
    return query


class RestaurantSearch:
    """Paged search state over a RestaurantService."""

    def __init__(
        self,
        service: RestaurantService,
        storage: KeyValueStorage | None = None,
        *,
        initial_radius: float = 5.0,
    ) -> None:
        self._service = service
        self._storage = storage
        self._initial_radius = initial_radius
        self.restaurants: list[dict[str, Any]] = []
        self.loading = False
        self.error: str | None = None
        self.has_more = False
        self.search_center: LocationCoordinates | None = None
        self.search_radius = initial_radius
        self.total_count = 0
        self._params: RestaurantSearchParams | None = None

    @property
    def current_params(self) -> RestaurantSearchParams | None:
        return self._params

    async def search(self, params: RestaurantSearchParams) -> None:
        self.loading = True
        self.error = None
        try:
            result = await self._service.search_restaurants(params)
        except RestaurantServiceError as exc:
            logger.error("Restaurant search error: %s", exc.message)
            self.error = exc.message or "Failed to search restaurants"
            return
        except Exception:
            logger.exception("Restaurant search error")
            self.error = "Failed to search restaurants"
            return
        finally:
            self.loading = False

        self.restaurants = result.restaurants
        self.has_more = result.has_more
        self.search_center = result.search_center
        self.search_radius = result.search_radius_km
        self.total_count = result.total_count
        self._params = params
        await self._remember(params)

    async def load_more(self) -> None:
        if self._params is None or not self.has_more or self.loading:
            return
        next_params = replace(self._params, offset=self._params.offset + self._params.limit)
        self.loading = True
        try:
            result = await self._service.search_restaurants(next_params)
        except RestaurantServiceError as exc:
            logger.error("Load more restaurants error: %s", exc.message)
            self.error = exc.message or "Failed to load more restaurants"
            return
        except Exception:
            logger.exception("Load more restaurants error")
            self.error = "Failed to load more restaurants"
            return
        finally:
            self.loading = False
        self.restaurants = [*self.restaurants, *result.restaurants]
        self.has_more = result.has_more
        self._params = next_params

    async def refresh(self) -> None:
        if self._params is None:
            return
        self._service.clear_cache()
        await self.search(replace(self._params, offset=0))

    async def update_filters(self, filters: RestaurantFilters) -> None:
        if self._params is None:
            return
        await self.search(replace(self._params, filters=filters, offset=0))

    def clear_results(self) -> None:
        self.restaurants = []
        self.loading = False
        self.error = None
        self.has_more = False
        self.search_center = None
        self.search_radius = self._initial_radius
        self.total_count = 0
        self._params = None

    async def _remember(self, params: RestaurantSearchParams) -> None:
        if self._storage is None:
            return
        try:
            await self._storage.set_object(
                RECENT_SEARCH_KEY,
                {"params": params.to_dict(), "timestamp": int(time.time() * 1000)},
            )
        except Exception:
            logger.exception("Failed to save recent restaurant search")
