"""Tests for badge lookups and text formatting."""

from safeplate.display import (
    SAFETY_BADGES,
    SEVERITY_ORDER,
    format_history_item,
    format_stats,
    safety_badge,
    severity_label,
)
from safeplate.models import HistoryStats, Product, SafetyLevel, ScanHistoryItem, Severity


def test_every_level_has_a_badge():
    assert set(SAFETY_BADGES) == set(SafetyLevel)


def test_badge_lookup():
    assert safety_badge(SafetyLevel.DANGER).label == "DANGER"
    assert safety_badge("safe").background_color == "#10B981"
    assert safety_badge(None).label == "UNKNOWN"
    assert safety_badge("bogus").label == "UNKNOWN"


def test_severity_labels():
    assert severity_label(Severity.LIFE_THREATENING) == "Life-Threatening"
    assert severity_label("mild") == "Mild"
    assert severity_label("extreme") == "extreme"
    assert max(SEVERITY_ORDER, key=SEVERITY_ORDER.get) is Severity.LIFE_THREATENING


def test_format_history_item():
    item = ScanHistoryItem(
        product=Product(id="p1", barcode="4901", name="Natto", brand="Mito"),
        scanned_at="2024-03-01T08:00:00Z",
        safety_level=SafetyLevel.SAFE,
        is_favorite=True,
    )
    line = format_history_item(item)
    assert line.startswith("★ ✅ SAFE")
    assert "Natto (Mito)" in line
    assert "[p1]" in line
    assert line.endswith("2024-03-01T08:00:00Z")


def test_format_history_item_without_name_or_level():
    item = ScanHistoryItem(product=Product(id="p2", barcode="4902"), scanned_at="")
    line = format_history_item(item)
    assert line.startswith("  ❓ UNKNOWN")
    assert "4902" in line


def test_format_stats():
    text = format_stats(HistoryStats(total_scans=7, safe_products=3, dangerous_products=2, favorite_count=1))
    lines = text.splitlines()
    assert lines[0].endswith("7")
    assert lines[1].startswith("Safe products:")
    assert lines[2].endswith("2")
    assert lines[3] == "Favorites:          1"
