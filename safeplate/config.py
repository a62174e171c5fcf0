"""TOML configuration loader for safeplate."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None  # type: ignore[assignment]


@dataclass
class BackendConfig:
    url: str = ""
    anon_key: str = ""
    timeout: float = 10.0
    application_name: str = "restricted-diet-app"


@dataclass
class StorageConfig:
    backend: str = "sqlite"
    path: str = "~/.config/safeplate/storage.db"


@dataclass
class HistoryConfig:
    max_history_items: int = 100
    max_favorites: int = 50
    auto_save_offline: bool = True


@dataclass
class OfflineConfig:
    max_products: int = 100
    max_age_days: int = 30


@dataclass
class SchedulerConfig:
    cache_cleanup_schedule: str = "0 3 * * *"
    sync_restrictions: bool = False
    sync_schedule: str = "0 */6 * * *"


@dataclass
class SafeplateConfig:
    backend: BackendConfig = field(default_factory=BackendConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    offline: OfflineConfig = field(default_factory=OfflineConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


def _env_first(*names: str) -> str:
    for name in names:
        value = os.environ.get(name, "")
        if value:
            return value
    return ""


def load_config(path: str | Path | None = None, *, dotenv: bool = True) -> SafeplateConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if no path is given or the file doesn't exist.
    Backend credentials can be overridden via environment variables, which
    are also read from a ``.env`` file in the working directory.
    """
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))

    raw: dict = {}

    if path is not None:
        p = Path(path)
        if p.exists():
            if tomllib is None:
                raise ImportError(
                    "tomli is required on Python < 3.11: pip install tomli"
                )
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    bck = raw.get("backend", {})
    sto = raw.get("storage", {})
    his = raw.get("history", {})
    off = raw.get("offline", {})
    sch = raw.get("scheduler", {})

    # Resolve credentials: config file → environment variable
    url = bck.get("url", "") or _env_first(
        "EXPO_PUBLIC_SUPABASE_URL", "SUPABASE_URL"
    )
    anon_key = bck.get("anon_key", "") or _env_first(
        "EXPO_PUBLIC_SUPABASE_ANON_KEY", "SUPABASE_ANON_KEY"
    )

    return SafeplateConfig(
        backend=BackendConfig(
            url=url,
            anon_key=anon_key,
            timeout=float(bck.get("timeout", 10.0)),
            application_name=bck.get("application_name", "restricted-diet-app"),
        ),
        storage=StorageConfig(
            backend=sto.get("backend", "sqlite"),
            path=sto.get("path", "~/.config/safeplate/storage.db"),
        ),
        history=HistoryConfig(
            max_history_items=his.get("max_history_items", 100),
            max_favorites=his.get("max_favorites", 50),
            auto_save_offline=his.get("auto_save_offline", True),
        ),
        offline=OfflineConfig(
            max_products=off.get("max_products", 100),
            max_age_days=off.get("max_age_days", 30),
        ),
        scheduler=SchedulerConfig(
            cache_cleanup_schedule=sch.get("cache_cleanup_schedule", "0 3 * * *"),
            sync_restrictions=sch.get("sync_restrictions", False),
            sync_schedule=sch.get("sync_schedule", "0 */6 * * *"),
        ),
    )
