"""Configuration management for exicon_enricher.

This module provides a centralized configuration system that supports:
- Default values for all settings
- Loading from TOML configuration files
- Environment variable overrides
- CLI argument overrides
- Validation of configuration values

Configuration priority (highest to lowest):
1. CLI arguments (passed through update())
2. Environment variables (EXICON_ENRICHER_*)
3. Project config file (.exicon-enricher.toml)
4. User config file (~/.config/exicon-enricher/config.toml)
5. Default values

MongoDB connection settings additionally honour the MONGODB_URI and
MONGODB_DB_NAME variables used by the web app.

Example:
    >>> config = EnrichmentConfig.load()
    >>> config.update(batch_size=10)
    >>> config.save("~/.config/exicon-enricher/config.toml")
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError

ENV_PREFIX = "EXICON_ENRICHER_"
TOML_SECTION = "exicon-enricher"


@dataclass
class EnrichmentConfig:
    """Configuration for the fetch/enrich/store pipeline.

    Attributes:
        Model Settings:
            model: OpenAI model used for enrichment
            batch_size: Number of items sent in one LLM call
            batch_delay: Pause between batches (seconds)
            llm_retry_attempts: Total attempts per batch before defaults are used
            initial_retry_delay: First backoff delay for LLM retries (seconds)

        Cost Settings:
            prompt_cost_per_1k: USD per 1000 prompt tokens
            completion_cost_per_1k: USD per 1000 completion tokens

        Content API Settings:
            api_base_url: Base URL of the blog content API
            location_id: Location the blogs belong to
            blog_id: Blog holding the Exicon
            lexicon_blog_id: Blog holding the Lexicon
            base_post_url: Public URL prefix for Exicon posts
            page_size: Posts requested per list page
            request_delay: Pause between uncached detail requests (seconds)
            request_timeout: HTTP timeout (seconds)

        Storage Settings:
            data_dir: Root for caches, snapshots and debug dumps
            mongodb_uri: MongoDB connection string
            mongodb_db: Database name
            collection_name: Collection for enriched exercises
            lexicon_collection_name: Collection for lexicon terms
            store_batch_size: Documents per bulk_write call

        debug_mode: Write request/response dumps for every batch
    """

    # Model settings
    model: str = "o4-mini"
    batch_size: int = 20
    batch_delay: float = 2.0
    llm_retry_attempts: int = 1
    initial_retry_delay: float = 1.0

    # Cost settings
    prompt_cost_per_1k: float = 0.005
    completion_cost_per_1k: float = 0.015

    # Content API settings
    api_base_url: str = "https://backend.leadconnectorhq.com"
    location_id: str = "SrfvOYstGSlBjAXxhvwX"
    blog_id: str = "dp77Q982leCiEPAWzEpt"
    lexicon_blog_id: str = "WGtBa9FCWpEgar0Eam2a"
    base_post_url: str = "https://f3nation.com/exicon/"
    page_size: int = 10000
    request_delay: float = 0.1
    request_timeout: float = 30.0

    # Storage settings
    data_dir: Path = field(default_factory=lambda: Path("data"))
    mongodb_uri: str = field(
        default_factory=lambda: os.environ.get("MONGODB_URI", "mongodb://localhost:27017")
    )
    mongodb_db: str = field(default_factory=lambda: os.environ.get("MONGODB_DB_NAME", "exicon"))
    collection_name: str = "exicon-items"
    lexicon_collection_name: str = "lexicon"
    store_batch_size: int = 100

    debug_mode: bool = False

    def __post_init__(self) -> None:
        """Validate configuration values after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigurationError: If any configuration value is invalid
        """
        for name in ("model", "api_base_url", "location_id", "blog_id", "lexicon_blog_id"):
            if not getattr(self, name):
                raise ConfigurationError(f"{name} must not be empty", **{name: getattr(self, name)})

        for name in ("batch_size", "page_size", "store_batch_size", "llm_retry_attempts"):
            if getattr(self, name) < 1:
                raise ConfigurationError(
                    f"{name} must be at least 1", **{name: getattr(self, name)}
                )

        for name in ("batch_delay", "request_delay", "prompt_cost_per_1k", "completion_cost_per_1k"):
            if getattr(self, name) < 0:
                raise ConfigurationError(
                    f"{name} must be non-negative", **{name: getattr(self, name)}
                )

        if self.initial_retry_delay <= 0:
            raise ConfigurationError(
                "initial_retry_delay must be positive",
                initial_retry_delay=self.initial_retry_delay,
            )

        if self.request_timeout <= 0:
            raise ConfigurationError(
                "request_timeout must be positive",
                request_timeout=self.request_timeout,
            )

        # Ensure data_dir is a Path (may receive str from config/env)
        if not isinstance(self.data_dir, Path):
            self.data_dir = Path(self.data_dir)

    @property
    def cache_dir(self) -> Path:
        """Directory holding cached API responses."""
        return self.data_dir / "cache" / "api"

    @property
    def debug_dir(self) -> Path:
        """Directory holding per-batch request/response dumps."""
        return self.data_dir / "debug"

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        load_user_config: bool = True,
        load_env: bool = True,
    ) -> "EnrichmentConfig":
        """Load configuration from file(s) and environment variables.

        Configuration is loaded in this order (later overrides earlier):
        1. Default values
        2. User config file (~/.config/exicon-enricher/config.toml)
        3. Project config file (.exicon-enricher.toml or specified path)
        4. Environment variables (EXICON_ENRICHER_*)

        Args:
            config_path: Path to project config file (optional)
            load_user_config: Whether to load user config file
            load_env: Whether to load environment variables

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config_dict: dict[str, Any] = {}

        if load_user_config:
            user_config_path = Path.home() / ".config" / "exicon-enricher" / "config.toml"
            if user_config_path.exists():
                config_dict.update(cls._load_toml(user_config_path))

        if config_path:
            project_path = Path(config_path)
            if project_path.exists():
                config_dict.update(cls._load_toml(project_path))
        else:
            default_path = Path(".exicon-enricher.toml")
            if default_path.exists():
                config_dict.update(cls._load_toml(default_path))

        if load_env:
            config_dict.update(cls._load_env())

        unknown = set(config_dict) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(
                "Unknown configuration keys",
                keys=", ".join(sorted(unknown)),
            )

        return cls(**config_dict)

    @staticmethod
    def _load_toml(path: Path) -> dict[str, Any]:
        """Load configuration from TOML file.

        Raises:
            ConfigurationError: If TOML file is invalid
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(
                f"Failed to load configuration from {path}",
                path=str(path),
                error=str(e),
            ) from e

        if TOML_SECTION in data:
            return data[TOML_SECTION]
        return data

    @staticmethod
    def _load_env() -> dict[str, Any]:
        """Load configuration from environment variables.

        Environment variables are prefixed with EXICON_ENRICHER_ and use
        uppercase snake_case. For example:
        - EXICON_ENRICHER_MODEL=o4-mini
        - EXICON_ENRICHER_BATCH_SIZE=10
        - EXICON_ENRICHER_DEBUG_MODE=true

        Returns:
            Dictionary of configuration values from environment
        """
        config: dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            config_key = key[len(ENV_PREFIX) :].lower()

            if value.lower() in ("true", "yes"):
                config[config_key] = True
            elif value.lower() in ("false", "no"):
                config[config_key] = False
            elif value.isdigit():
                config[config_key] = int(value)
            elif value.replace(".", "", 1).isdigit():
                config[config_key] = float(value)
            else:
                config[config_key] = value

        return config

    def save(self, path: str | Path) -> None:
        """Save configuration to TOML file.

        Raises:
            ConfigurationError: If save fails
        """
        try:
            import tomli_w

            path = Path(path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(path, "wb") as f:
                tomli_w.dump({TOML_SECTION: self.to_dict()}, f)

        except ImportError:
            raise ConfigurationError(
                "tomli_w package required to save configuration. Install with: pip install tomli-w"
            ) from None
        except (OSError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Failed to save configuration to {path}",
                path=str(path),
                error=str(e),
            ) from e

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Example:
            >>> EnrichmentConfig().to_dict()["model"]
            'o4-mini'
        """
        result: dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if isinstance(value, Path):
                result[key] = str(value)
            else:
                result[key] = value
        return result

    def update(self, **kwargs: Any) -> None:
        """Update configuration values.

        Raises:
            ConfigurationError: If a key is unknown or updated values are invalid
        """
        for key, value in kwargs.items():
            if key in self.__dataclass_fields__:
                setattr(self, key, value)
            else:
                raise ConfigurationError(
                    f"Unknown configuration key: {key}",
                    key=key,
                    valid_keys=", ".join(self.__dataclass_fields__.keys()),
                )

        self._validate()
