"""
arcrepo.core.config - Configuration Management
================================================

Configuration for the repository client. Values are resolved with the
following priority (highest first):

    1. Explicit constructor arguments
    2. Environment variables (prefixed with ARCREPO_)
    3. YAML configuration file (arcrepo.yaml)
    4. Default values defined in the models below

Structure:

    RepositoryClientConfig
        ├── CacheConfig     → ArtifactCache, CacheEnabler
        ├── IteratorConfig  → PagingIterator
        ├── RedisConfig     → RedisMessageBus (cache invalidation topic)
        └── (top level)     → HttpTransport, RestRepositoryClient

Usage:
    # From environment variables:
    config = RepositoryClientConfig()

    # From a YAML file:
    config = load_config("arcrepo.yaml")

    # Explicit overrides:
    config = RepositoryClientConfig(base_url="http://repo:24610")

Environment Variables:
    ARCREPO_BASE_URL=http://repo.example.org:24610
    ARCREPO_USERNAME=lockss-u
    ARCREPO_PASSWORD=...
    ARCREPO_CACHE__MAX_ARTIFACTS=1000
    ARCREPO_ITERATOR__QUEUE_GET_TIMEOUT_SECONDS=120
    ARCREPO_REDIS__URL=redis://cache-bus:6379/0
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from arcrepo.core.exceptions import ConfigurationError


# =============================================================================
# Artifact Cache Configuration
# =============================================================================
# The cache has two independently bounded LRU parts. ArtifactData entries hold
# buffered payloads, so their bound is much smaller than the metadata bound.
# =============================================================================
class CacheConfig(BaseModel):
    """Configuration for the artifact cache and its enablement handshake.

    Attributes:
        max_artifacts: Capacity of the Artifact metadata part.
        max_artifact_data: Capacity of the ArtifactData (payload) part.
        max_content_bytes: Payload size above which ArtifactData is cached
            without content.
        topic: Pub/sub topic carrying invalidation messages.
        echo_interval_seconds: Delay between Echo probes while waiting for
            the matching EchoResp.
        connect_retry_initial_seconds: First delay after a failed connect.
        connect_retry_max_seconds: Upper bound of the exponential backoff.
    """

    max_artifacts: int = Field(
        default=500,
        ge=1,
        description="Maximum number of cached Artifact metadata entries",
    )
    max_artifact_data: int = Field(
        default=20,
        ge=1,
        description="Maximum number of cached ArtifactData entries",
    )
    max_content_bytes: int = Field(
        default=1024 * 1024,
        ge=0,
        description="Larger payloads are cached without content",
    )
    topic: str = Field(
        default="ArtifactCacheTopic",
        description="Pub/sub topic for cache invalidation messages",
    )
    echo_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between Echo probes during enablement",
    )
    connect_retry_initial_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Initial backoff after a failed pub/sub connect",
    )
    connect_retry_max_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Maximum backoff between pub/sub connect attempts",
    )


# =============================================================================
# Paging Iterator Configuration
# =============================================================================
class IteratorConfig(BaseModel):
    """Configuration for paging iterators.

    Attributes:
        queue_len: Number of pages the producer may buffer ahead.
        queue_get_timeout_seconds: How long the consumer waits for a page
            before raising IteratorTimeoutError.
        page_sizes: Default page-size schedule. The last entry repeats once
            the schedule is exhausted. None lets the server choose.
    """

    queue_len: int = Field(
        default=3,
        ge=1,
        description="Bounded queue capacity, in pages",
    )
    queue_get_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Consumer wait limit per page, in seconds",
    )
    page_sizes: Optional[list[int]] = Field(
        default=None,
        description="Page-size schedule; last size repeats",
    )

    @field_validator("page_sizes")
    @classmethod
    def _positive_sizes(cls, value: Optional[list[int]]) -> Optional[list[int]]:
        if value is not None:
            if not value:
                raise ValueError("page_sizes must not be empty")
            if any(size <= 0 for size in value):
                raise ValueError("page sizes must be positive")
        return value


# =============================================================================
# Redis Configuration
# =============================================================================
# Only used when the cache is enabled with the Redis-backed message bus.
# =============================================================================
class RedisConfig(BaseModel):
    """Configuration for the Redis pub/sub connection.

    Attributes:
        url: Redis connection URL. Format: redis://[password@]host:port/db
        socket_timeout: Timeout in seconds for Redis socket operations.
    """

    url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (redis://host:port/db)",
    )
    socket_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Socket timeout in seconds for Redis operations",
    )


# =============================================================================
# Main Configuration
# =============================================================================
# Environment Variable Mapping:
#   ARCREPO_BASE_URL               → config.base_url
#   ARCREPO_CACHE__MAX_ARTIFACTS   → config.cache.max_artifacts
#   ARCREPO_REDIS__URL             → config.redis.url
# =============================================================================
class RepositoryClientConfig(BaseSettings):
    """Top-level configuration for ``RestRepositoryClient``.

    Attributes:
        base_url: Root URL of the repository REST service. Also used as the
            client's identity in the cache Echo handshake.
        username: Basic auth user (None disables auth).
        password: Basic auth password.
        timeout_seconds: Per-request timeout for ordinary calls.
        bulk_timeout_seconds: Read timeout for ``finish_bulk_store``. None
            waits indefinitely since the server folds the bulk index first.
        use_multipart_endpoint: Fetch ArtifactData from the multipart
            endpoint instead of the framed HTTP response endpoint.
        small_content_threshold: Payload size (bytes) at or below which
            IF_SMALL content is considered small.
        spool_max_bytes: Payloads larger than this spill to a temp file
            while being read from the network.
        log_level: Level applied by ``configure_logging``.
        configure_logging: Whether the client installs a structlog
            configuration on construction.
        cache: Artifact cache settings (see CacheConfig).
        iterator: Paging iterator settings (see IteratorConfig).
        redis: Redis pub/sub settings (see RedisConfig).

    Example:
        >>> config = RepositoryClientConfig(
        ...     base_url="http://localhost:24610",
        ...     cache=CacheConfig(max_artifacts=100),
        ... )
    """

    # -------------------------------------------------------------------------
    # Connection Settings
    # -------------------------------------------------------------------------
    base_url: str = Field(
        default="http://localhost:24610",
        description="Repository REST service root URL",
    )
    username: Optional[str] = Field(
        default=None,
        description="Basic auth username",
    )
    password: Optional[str] = Field(
        default=None,
        description="Basic auth password",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Request timeout in seconds",
    )
    bulk_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Read timeout for finish_bulk_store (None = unbounded)",
    )

    # -------------------------------------------------------------------------
    # Fetch Behavior
    # -------------------------------------------------------------------------
    use_multipart_endpoint: bool = Field(
        default=False,
        description="Fetch ArtifactData via the multipart endpoint",
    )
    small_content_threshold: int = Field(
        default=4096,
        ge=0,
        description="IF_SMALL size limit in bytes",
    )
    spool_max_bytes: int = Field(
        default=1024 * 1024,
        ge=0,
        description="In-memory limit before payloads spill to disk",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    configure_logging: bool = Field(
        default=False,
        description="Install a structlog configuration for log_level",
    )

    # -------------------------------------------------------------------------
    # Nested Configurations
    # -------------------------------------------------------------------------
    cache: CacheConfig = Field(
        default_factory=CacheConfig,
        description="Artifact cache configuration",
    )
    iterator: IteratorConfig = Field(
        default_factory=IteratorConfig,
        description="Paging iterator configuration",
    )
    redis: RedisConfig = Field(
        default_factory=RedisConfig,
        description="Redis pub/sub configuration",
    )

    model_config = {
        "env_prefix": "ARCREPO_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        if not value:
            raise ValueError("base_url must not be empty")
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level


# =============================================================================
# Configuration Loader
# =============================================================================
def load_config(path: Optional[str] = None) -> RepositoryClientConfig:
    """Load configuration from a YAML file and/or environment variables.

    Args:
        path: Path to a YAML configuration file. If None, looks for
            'arcrepo.yaml' in the current directory and falls back to
            defaults plus environment variables.

    Returns:
        A fully validated RepositoryClientConfig.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ConfigurationError: If the file is not valid YAML.
    """
    if path is None:
        default_path = Path("arcrepo.yaml")
        if default_path.exists():
            path = str(default_path)

    yaml_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(config_path) as f:
            try:
                raw_data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    message=f"Invalid YAML in configuration file: {path}",
                    error_code="INVALID_YAML",
                    details={"path": str(path), "error": str(exc)},
                ) from exc
            if isinstance(raw_data, dict):
                yaml_data = raw_data

    return RepositoryClientConfig(**yaml_data)


def configure_logging(level: str = "INFO") -> None:
    """Install structlog's filtering bound logger for ``level``.

    Only called when ``RepositoryClientConfig.configure_logging`` is set;
    otherwise the host application's structlog setup is left alone.
    """
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[level.upper()]
        ),
    )
