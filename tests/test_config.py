"""Tests for safeplate config loading."""

import os

import pytest

from safeplate.config import SafeplateConfig, load_config

_ENV_NAMES = (
    "EXPO_PUBLIC_SUPABASE_URL",
    "SUPABASE_URL",
    "EXPO_PUBLIC_SUPABASE_ANON_KEY",
    "SUPABASE_ANON_KEY",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_load_config_defaults():
    """Loading with no path returns all defaults."""
    config = load_config(dotenv=False)
    assert isinstance(config, SafeplateConfig)
    assert config.backend.url == ""
    assert config.backend.timeout == 10.0
    assert config.storage.backend == "sqlite"
    assert config.history.max_history_items == 100
    assert config.history.max_favorites == 50
    assert config.history.auto_save_offline is True
    assert config.offline.max_products == 100
    assert config.offline.max_age_days == 30
    assert config.scheduler.cache_cleanup_schedule == "0 3 * * *"
    assert config.scheduler.sync_restrictions is False


def test_load_config_nonexistent_file():
    """Loading a nonexistent file returns defaults."""
    config = load_config("/nonexistent/path.toml", dotenv=False)
    assert config.storage.backend == "sqlite"


def test_load_config_from_toml(tmp_path):
    """Loading a valid TOML file populates config."""
    path = tmp_path / "safeplate.toml"
    path.write_text(
        """\
[backend]
url = "https://example.supabase.co"
anon_key = "anon-123"
timeout = 5

[storage]
backend = "memory"

[history]
max_history_items = 20
max_favorites = 5
auto_save_offline = false

[offline]
max_products = 10
max_age_days = 7

[scheduler]
cache_cleanup_schedule = "30 2 * * *"
sync_restrictions = true
""",
        encoding="utf-8",
    )
    config = load_config(path, dotenv=False)
    assert config.backend.url == "https://example.supabase.co"
    assert config.backend.anon_key == "anon-123"
    assert config.backend.timeout == 5.0
    assert config.storage.backend == "memory"
    assert config.history.max_history_items == 20
    assert config.history.max_favorites == 5
    assert config.history.auto_save_offline is False
    assert config.offline.max_products == 10
    assert config.offline.max_age_days == 7
    assert config.scheduler.cache_cleanup_schedule == "30 2 * * *"
    assert config.scheduler.sync_restrictions is True
    assert config.scheduler.sync_schedule == "0 */6 * * *"


def test_env_credentials(monkeypatch):
    """Backend credentials fall back to environment variables."""
    monkeypatch.setenv("EXPO_PUBLIC_SUPABASE_URL", "https://env.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "env-key")
    config = load_config(dotenv=False)
    assert config.backend.url == "https://env.supabase.co"
    assert config.backend.anon_key == "env-key"


def test_file_credentials_win_over_env(tmp_path, monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
    path = tmp_path / "c.toml"
    path.write_text('[backend]\nurl = "https://file.supabase.co"\n', encoding="utf-8")
    config = load_config(path, dotenv=False)
    assert config.backend.url == "https://file.supabase.co"


def test_dotenv_file_is_read(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("SUPABASE_URL=https://dotenv.supabase.co\n")
    monkeypatch.chdir(tmp_path)
    try:
        config = load_config()
        assert config.backend.url == "https://dotenv.supabase.co"
    finally:
        os.environ.pop("SUPABASE_URL", None)
