"""Presentation lookup tables and text formatting for the CLI."""

from __future__ import annotations

from dataclasses import dataclass

from .models import HistoryStats, SafetyLevel, ScanHistoryItem, Severity


@dataclass(frozen=True)
class SafetyBadge:
    icon: str
    label: str
    description: str
    color: str
    background_color: str


SAFETY_BADGES: dict[SafetyLevel, SafetyBadge] = {
    SafetyLevel.SAFE: SafetyBadge("✅", "SAFE", "Safe for consumption", "#FFFFFF", "#10B981"),
    SafetyLevel.CAUTION: SafetyBadge("⚠️", "CAUTION", "Use with caution", "#000000", "#F59E0B"),
    SafetyLevel.WARNING: SafetyBadge("⚠️", "WARNING", "May cause reaction", "#FFFFFF", "#F97316"),
    SafetyLevel.DANGER: SafetyBadge("🚫", "DANGER", "Do not consume", "#FFFFFF", "#EF4444"),
    SafetyLevel.UNKNOWN: SafetyBadge("❓", "UNKNOWN", "Safety unknown", "#000000", "#6B7280"),
}


@dataclass(frozen=True)
class SeverityLabel:
    title: str
    description: str


SEVERITY_LABELS: dict[Severity, SeverityLabel] = {
    Severity.MILD: SeverityLabel("Mild", "Minor discomfort or digestive issues"),
    Severity.MODERATE: SeverityLabel(
        "Moderate", "Noticeable symptoms affecting daily activities"
    ),
    Severity.SEVERE: SeverityLabel("Severe", "Serious symptoms requiring medical attention"),
    Severity.LIFE_THREATENING: SeverityLabel(
        "Life-Threatening", "Anaphylaxis or other life-threatening reactions"
    ),
}

# Sort weight, most severe first
SEVERITY_ORDER: dict[Severity, int] = {
    Severity.LIFE_THREATENING: 4,
    Severity.SEVERE: 3,
    Severity.MODERATE: 2,
    Severity.MILD: 1,
}


def safety_badge(level: SafetyLevel | str | None) -> SafetyBadge:
    """Badge for a level; anything unrecognised gets the unknown badge."""
    parsed = SafetyLevel.parse(level)
    return SAFETY_BADGES.get(parsed or SafetyLevel.UNKNOWN, SAFETY_BADGES[SafetyLevel.UNKNOWN])


def severity_label(severity: Severity | str) -> str:
    try:
        return SEVERITY_LABELS[Severity(severity)].title
    except ValueError:
        return str(severity)


def format_history_item(item: ScanHistoryItem) -> str:
    badge = safety_badge(item.safety_level)
    star = "★" if item.is_favorite else " "
    name = item.product.name or item.product.barcode or item.product.id
    brand = f" ({item.product.brand})" if item.product.brand else ""
    return f"{star} {badge.icon} {badge.label:<8} {name}{brand}  [{item.product.id}]  {item.scanned_at}"


def format_stats(stats: HistoryStats) -> str:
    return "\n".join(
        [
            f"Total scans:        {stats.total_scans}",
            f"Safe products:      {stats.safe_products}",
            f"Dangerous products: {stats.dangerous_products}",
            f"Favorites:          {stats.favorite_count}",
        ]
    )
