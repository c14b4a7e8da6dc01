"""Tests for core configuration classes."""

from __future__ import annotations

import pytest

from eventsync.core.config import CatalogConfig, FetchConfiguration
from eventsync.core.types import ConfigurationError


class TestCatalogConfig:
    """Tests for CatalogConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with required fields."""
        config = CatalogConfig(server_url="https://example.com", token="test-token")
        assert config.server_url == "https://example.com"
        assert config.token == "test-token"
        assert config.timeout == 30.0
        assert config.verify_ssl is True

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from server URL."""
        config = CatalogConfig(server_url="https://example.com/", token="test-token")
        assert config.server_url == "https://example.com"

    def test_is_secure_https(self) -> None:
        """Should return True for HTTPS URLs."""
        config = CatalogConfig(server_url="https://example.com", token="test-token")
        assert config.is_secure is True

    def test_is_secure_http(self) -> None:
        """Should return False for HTTP URLs."""
        config = CatalogConfig(server_url="http://localhost:8000", token="test-token")
        assert config.is_secure is False


class TestFetchConfigurationDefaults:
    """Tests for FetchConfiguration defaults and validation."""

    def test_defaults(self) -> None:
        """Should use the documented defaults."""
        config = FetchConfiguration()
        assert config.fetching_mode == "smart"
        assert config.batch_size == 200
        assert config.min_batch_size == 10
        assert config.max_batch_size == 1000
        assert config.num_threads == 2
        assert config.date_chunk_days == 90
        assert config.min_chunk_days == 7
        assert config.error_threshold == 5
        assert config.cache_ttl == 3600
        assert config.enable_incremental is True
        assert config.fast_mode_safety_margin == 500

    def test_is_immutable(self) -> None:
        """Should not allow settings to change after creation."""
        config = FetchConfiguration()
        with pytest.raises(AttributeError):
            config.batch_size = 10  # type: ignore[misc]

    def test_unknown_mode(self) -> None:
        """Should reject unknown fetching modes."""
        with pytest.raises(ConfigurationError, match="fetching mode"):
            FetchConfiguration(fetching_mode="turbo")

    @pytest.mark.parametrize(
        "settings",
        [
            {"batch_size": 5},
            {"batch_size": 2000},
            {"min_batch_size": 0},
            {"date_chunk_days": 3},
            {"min_chunk_days": 0},
            {"error_threshold": 0},
            {"num_threads": -1},
            {"retry_delay_base": -1.0},
        ],
    )
    def test_invalid_settings(self, settings: dict[str, object]) -> None:
        """Should reject inconsistent settings."""
        with pytest.raises(ConfigurationError):
            FetchConfiguration(**settings)  # type: ignore[arg-type]


class TestFetchConfigurationResolve:
    """Tests for layered resolution."""

    def test_no_sources_gives_defaults(self) -> None:
        """Should return the defaults without settings or overrides."""
        assert FetchConfiguration.resolve() == FetchConfiguration()

    def test_global_settings_are_coerced(self) -> None:
        """Should convert settings-file strings to the default's type."""
        config = FetchConfiguration.resolve(
            {
                "batch_size": "300",
                "retry_delay_base": "0.5",
                "date_chunk_fallback": "no",
                "fetching_mode": "smart",
            }
        )
        assert config.batch_size == 300
        assert config.retry_delay_base == 0.5
        assert config.date_chunk_fallback is False

    def test_overrides_win(self) -> None:
        """Should apply overrides after global settings."""
        config = FetchConfiguration.resolve({"batch_size": 300}, {"batch_size": 400})
        assert config.batch_size == 400

    def test_unknown_global_keys_are_ignored(self) -> None:
        """Should skip settings it does not know."""
        config = FetchConfiguration.resolve({"server_url": "http://x", "batch_size": 50})
        assert config.batch_size == 50

    def test_unknown_override_keys_fail(self) -> None:
        """Should reject unknown override keys."""
        with pytest.raises(ConfigurationError, match="bogus"):
            FetchConfiguration.resolve(overrides={"bogus": 1})

    def test_invalid_global_value(self) -> None:
        """Should raise ConfigurationError for values of the wrong type."""
        with pytest.raises(ConfigurationError, match="batch_size"):
            FetchConfiguration.resolve({"batch_size": "lots"})

    @pytest.mark.parametrize(
        ("mode", "incremental"),
        [("classic", False), ("parallel", False), ("smart", True), ("fast", True)],
    )
    def test_mode_decides_incremental(self, mode: str, incremental: bool) -> None:
        """Should enable incremental fetching only in smart and fast modes."""
        config = FetchConfiguration.resolve({"fetching_mode": mode})
        assert config.enable_incremental is incremental

    def test_settings_without_mode_are_classic(self) -> None:
        """Should treat settings without a mode as classic (no incremental)."""
        config = FetchConfiguration.resolve({"batch_size": 100})
        assert config.enable_incremental is False

    def test_explicit_incremental_flag_wins(self) -> None:
        """Should keep an explicit incremental flag regardless of mode."""
        config = FetchConfiguration.resolve(
            {"fetching_mode": "classic", "enable_incremental": "true"}
        )
        assert config.enable_incremental is True


class TestDerivedConfigurations:
    """Tests for worker and recovery variants."""

    def test_with_overrides(self) -> None:
        """Should return a modified copy."""
        base = FetchConfiguration()
        changed = base.with_overrides(batch_size=500)
        assert changed.batch_size == 500
        assert base.batch_size == 200

    def test_with_overrides_unknown_key(self) -> None:
        """Should reject unknown keys."""
        with pytest.raises(ConfigurationError):
            FetchConfiguration().with_overrides(nope=1)

    def test_worker_config(self) -> None:
        """Should use the worker-scoped batch size with incremental enabled."""
        config = FetchConfiguration(chunk_size=75, enable_incremental=False).worker_config()
        assert config.batch_size == 75
        assert config.enable_incremental is True
        assert config.adaptive_batch_sizing is True

    def test_worker_config_clamps_batch_size(self) -> None:
        """Should keep the worker batch size inside the allowed range."""
        config = FetchConfiguration(chunk_size=5000).worker_config()
        assert config.batch_size == 1000

    def test_recovery_config(self) -> None:
        """Should use small batches, forced chunking and more retries."""
        config = FetchConfiguration(date_chunk_fallback=False).recovery_config()
        assert config.batch_size == 50
        assert config.max_batch_size == 100
        assert config.date_chunk_fallback is True
        assert config.date_chunk_days == 30
        assert config.max_api_retries == 5
        assert config.enable_incremental is False
