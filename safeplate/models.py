"""Data models for products, safety assessments and scan history entries."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class SafetyLevel(str, Enum):
    SAFE = "safe"
    CAUTION = "caution"
    WARNING = "warning"
    DANGER = "danger"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> SafetyLevel | None:
        """Map a raw value onto a level; unrecognised strings become UNKNOWN."""
        if value is None or value == "":
            return None
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class Severity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"
    LIFE_THREATENING = "life_threatening"


class AccountType(str, Enum):
    INDIVIDUAL = "individual"
    FAMILY = "family"
    CAREGIVER = "caregiver"


# Severities that count as "critical" for profile and family safety flags
CRITICAL_SEVERITIES: frozenset[str] = frozenset(
    {Severity.SEVERE.value, Severity.LIFE_THREATENING.value}
)


def _split_known(cls: type, data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    names = {f.name for f in fields(cls) if f.name != "extra"}
    known = {k: v for k, v in data.items() if k in names}
    extra = {k: v for k, v in data.items() if k not in names}
    return known, extra


@dataclass
class Product:
    """A scanned product row.

    Only the identifying and searchable columns are modelled; everything else
    the backend returns is carried through ``extra`` untouched.
    """

    id: str
    barcode: str = ""
    name: str = ""
    brand: str | None = None
    category: str | None = None
    ingredients_list: str | None = None
    allergen_warnings: list[str] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Product:
        if "id" not in data:
            raise ValueError("product record has no id")
        known, extra = _split_known(cls, data)
        known["id"] = str(known["id"])
        known.setdefault("barcode", "")
        known.setdefault("name", "")
        return cls(**known, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = dict(self.extra)
        d.update(
            id=self.id,
            barcode=self.barcode,
            name=self.name,
            brand=self.brand,
            category=self.category,
            ingredients_list=self.ingredients_list,
            allergen_warnings=self.allergen_warnings,
        )
        return d


@dataclass
class ProductSafetyAssessment:
    """Computed safety verdict for a product and a user (or family member)."""

    overall_safety_level: SafetyLevel
    id: str = ""
    product_id: str = ""
    safe_ingredients_count: int = 0
    warning_ingredients_count: int = 0
    dangerous_ingredients_count: int = 0
    confidence_score: float = 0.0
    risk_factors: Any = None
    assessment_date: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProductSafetyAssessment:
        known, extra = _split_known(cls, data)
        level = SafetyLevel.parse(known.get("overall_safety_level"))
        known["overall_safety_level"] = level or SafetyLevel.UNKNOWN
        return cls(**known, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = dict(self.extra)
        d.update(
            id=self.id,
            product_id=self.product_id,
            overall_safety_level=self.overall_safety_level.value,
            safe_ingredients_count=self.safe_ingredients_count,
            warning_ingredients_count=self.warning_ingredients_count,
            dangerous_ingredients_count=self.dangerous_ingredients_count,
            confidence_score=self.confidence_score,
            risk_factors=self.risk_factors,
            assessment_date=self.assessment_date,
        )
        return d


@dataclass
class ScanHistoryItem:
    """One entry of the scan history or favorites list."""

    product: Product
    scanned_at: str
    safety_assessment: ProductSafetyAssessment | None = None
    safety_level: SafetyLevel | None = None
    is_favorite: bool = False

    @property
    def product_id(self) -> str:
        return self.product.id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanHistoryItem:
        assessment_raw = data.get("safetyAssessment")
        assessment = (
            ProductSafetyAssessment.from_dict(assessment_raw)
            if isinstance(assessment_raw, dict)
            else None
        )
        return cls(
            product=Product.from_dict(data["product"]),
            scanned_at=str(data.get("scannedAt", "")),
            safety_assessment=assessment,
            safety_level=SafetyLevel.parse(data.get("safetyLevel")),
            is_favorite=bool(data.get("isFavorite", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product": self.product.to_dict(),
            "safetyAssessment": (
                self.safety_assessment.to_dict() if self.safety_assessment else None
            ),
            "scannedAt": self.scanned_at,
            "safetyLevel": self.safety_level.value if self.safety_level else None,
            "isFavorite": self.is_favorite,
        }


@dataclass
class HistoryStats:
    total_scans: int = 0
    safe_products: int = 0
    dangerous_products: int = 0
    favorite_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalScans": self.total_scans,
            "safeProducts": self.safe_products,
            "dangerousProducts": self.dangerous_products,
            "favoriteCount": self.favorite_count,
        }


@dataclass
class LocationCoordinates:
    latitude: float
    longitude: float
