"""Domain data services built on the backend client."""

from .family import FamilyMembersService
from .location import calculate_distance
from .products import ProductService
from .profile import UserProfileService
from .restaurants import (
    RestaurantFilters,
    RestaurantSearch,
    RestaurantSearchParams,
    RestaurantService,
    RestaurantServiceError,
    SortBy,
)

__all__ = [
    "FamilyMembersService",
    "ProductService",
    "RestaurantFilters",
    "RestaurantSearch",
    "RestaurantSearchParams",
    "RestaurantService",
    "RestaurantServiceError",
    "SortBy",
    "UserProfileService",
    "calculate_distance",
]
