"""Scan history, favorites and offline safety data for the restricted diet app."""

from .auth import AuthContext
from .backend import BackendClient, BackendError, BackendResponse, create_backend_client
from .config import (
    BackendConfig,
    HistoryConfig,
    OfflineConfig,
    SafeplateConfig,
    SchedulerConfig,
    StorageConfig,
    load_config,
)
from .history import (
    ScanHistoryOptions,
    ScanHistoryStore,
    favorites_key,
    history_key,
)
from .models import (
    AccountType,
    HistoryStats,
    LocationCoordinates,
    Product,
    ProductSafetyAssessment,
    SafetyLevel,
    ScanHistoryItem,
    Severity,
)
from .offline import OfflineCache
from .storage import KeyValueStorage, MemoryStorage, SQLiteStorage, create_storage

__all__ = [
    "AccountType",
    "AuthContext",
    "BackendClient",
    "BackendConfig",
    "BackendError",
    "BackendResponse",
    "HistoryConfig",
    "HistoryStats",
    "KeyValueStorage",
    "LocationCoordinates",
    "MemoryStorage",
    "OfflineCache",
    "OfflineConfig",
    "Product",
    "ProductSafetyAssessment",
    "SQLiteStorage",
    "SafeplateConfig",
    "SafetyLevel",
    "ScanHistoryItem",
    "ScanHistoryOptions",
    "ScanHistoryStore",
    "SchedulerConfig",
    "Severity",
    "StorageConfig",
    "create_backend_client",
    "create_storage",
    "favorites_key",
    "history_key",
    "load_config",
]
