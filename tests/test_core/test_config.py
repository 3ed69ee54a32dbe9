"""
Tests for arcrepo.core.config
===============================

These tests verify that the configuration system works correctly:
    - Default values are sensible and complete
    - Environment variables override defaults, including nested sections
    - YAML files are parsed correctly
    - Validation catches invalid values

All tests are unit tests; they need no repository service or Redis.
"""

import pytest
import yaml
from pydantic import ValidationError

from arcrepo.core.config import (
    CacheConfig,
    IteratorConfig,
    RepositoryClientConfig,
    load_config,
)
from arcrepo.core.exceptions import ConfigurationError


# =============================================================================
# Test: Default Configuration
# =============================================================================
class TestDefaultConfig:
    """Tests for default configuration values."""

    def test_default_config_creates_successfully(self) -> None:
        """RepositoryClientConfig() should work with no arguments."""
        config = RepositoryClientConfig()
        assert config.base_url == "http://localhost:24610"

    def test_default_iterator_settings(self) -> None:
        """The iterator buffers 3 pages and waits 60s for each."""
        config = RepositoryClientConfig()
        assert config.iterator.queue_len == 3
        assert config.iterator.queue_get_timeout_seconds == 60.0
        assert config.iterator.page_sizes is None

    def test_default_cache_settings(self) -> None:
        """Cache defaults: 500 artifacts, 20 ArtifactData, standard topic."""
        config = RepositoryClientConfig()
        assert config.cache.max_artifacts == 500
        assert config.cache.max_artifact_data == 20
        assert config.cache.topic == "ArtifactCacheTopic"

    def test_default_fetch_behavior(self) -> None:
        """The framed HTTP response endpoint is the default fetch path."""
        config = RepositoryClientConfig()
        assert config.use_multipart_endpoint is False
        assert config.bulk_timeout_seconds is None
        assert config.configure_logging is False


# =============================================================================
# Test: Validation
# =============================================================================
class TestConfigValidation:
    """Tests for field validators."""

    def test_trailing_slash_stripped(self) -> None:
        """base_url is normalized so paths can be appended directly."""
        config = RepositoryClientConfig(base_url="http://repo:24610///")
        assert config.base_url == "http://repo:24610"

    def test_empty_base_url_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RepositoryClientConfig(base_url="")

    def test_log_level_normalized(self) -> None:
        """Log level names are case-insensitive and stored upper-case."""
        config = RepositoryClientConfig(log_level="debug")
        assert config.log_level == "DEBUG"

    def test_unknown_log_level_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RepositoryClientConfig(log_level="CHATTY")

    def test_page_sizes_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            IteratorConfig(page_sizes=[10, 0])

    def test_page_sizes_must_not_be_empty(self) -> None:
        with pytest.raises(ValidationError):
            IteratorConfig(page_sizes=[])

    def test_queue_len_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            IteratorConfig(queue_len=0)

    def test_cache_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            CacheConfig(max_artifacts=0)


# =============================================================================
# Test: Environment Variable Overrides
# =============================================================================
class TestEnvironmentOverrides:
    """Tests for ARCREPO_ environment variables."""

    def test_top_level_override(self, monkeypatch) -> None:
        monkeypatch.setenv("ARCREPO_BASE_URL", "http://env-repo:8080/")
        config = RepositoryClientConfig()
        assert config.base_url == "http://env-repo:8080"

    def test_nested_override(self, monkeypatch) -> None:
        """Double underscore reaches into nested sections."""
        monkeypatch.setenv("ARCREPO_CACHE__MAX_ARTIFACTS", "42")
        monkeypatch.setenv("ARCREPO_REDIS__URL", "redis://bus:6379/1")
        config = RepositoryClientConfig()
        assert config.cache.max_artifacts == 42
        assert config.redis.url == "redis://bus:6379/1"

    def test_explicit_argument_beats_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("ARCREPO_BASE_URL", "http://env-repo:8080")
        config = RepositoryClientConfig(base_url="http://explicit:1")
        assert config.base_url == "http://explicit:1"


# =============================================================================
# Test: YAML Loading
# =============================================================================
class TestLoadConfig:
    """Tests for load_config()."""

    def test_load_from_yaml(self, tmp_path) -> None:
        """Values from a YAML file, including nested sections, are applied."""
        path = tmp_path / "arcrepo.yaml"
        path.write_text(yaml.safe_dump({
            "base_url": "http://yaml-repo:24610",
            "use_multipart_endpoint": True,
            "iterator": {"page_sizes": [10, 100]},
        }))

        config = load_config(str(path))

        assert config.base_url == "http://yaml-repo:24610"
        assert config.use_multipart_endpoint is True
        assert config.iterator.page_sizes == [10, 100]

    def test_missing_explicit_file_raises(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml_raises_configuration_error(self, tmp_path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("base_url: [unclosed\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(path))

        assert exc_info.value.error_code == "INVALID_YAML"

    def test_default_file_in_working_directory(self, tmp_path, monkeypatch) -> None:
        """Without a path, ./arcrepo.yaml is picked up when present."""
        (tmp_path / "arcrepo.yaml").write_text("timeout_seconds: 7\n")
        monkeypatch.chdir(tmp_path)

        config = load_config()

        assert config.timeout_seconds == 7.0

    def test_no_file_falls_back_to_defaults(self, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        config = load_config()
        assert config.base_url == "http://localhost:24610"

    def test_empty_yaml_file_uses_defaults(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        config = load_config(str(path))
        assert config.cache.max_artifact_data == 20
