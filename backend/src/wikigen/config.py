# backend/src/wikigen/config.py
"""Configuration system for the wikigen backend.

This module handles loading settings from environment variables and INI files,
providing sensible defaults, and computing derived paths for logs.
"""

from configparser import ConfigParser
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional
import os

from wikigen.constants.llm import PROVIDER_DEFAULT_MODELS


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# Schema: section -> key -> (type, default, min, max, description)
CONFIG_SCHEMA: dict[str, dict[str, tuple[type, Any, Any, Any, str]]] = {
    "generation": {
        "heartbeat_interval": (float, 2.0, 0.1, 60.0, "Seconds between keep-alive pings"),
        "max_retries": (int, 3, 0, 10, "Retries for rate-limited model calls"),
        "base_delay": (float, 2.0, 0.0, 120.0, "Base backoff delay in seconds"),
        "cache_ttl_seconds": (int, 3600, 60, 86400, "Context cache time-to-live"),
        "parallel_limit": (int, 0, 0, 50, "Concurrent page calls per level (0 = unbounded)"),
        "summary_length": (int, 200, 20, 2000, "Max characters in a page summary"),
        "schedule_mode": (str, "levels", None, None, "Scheduling mode: levels or linear"),
    },
    "llm": {
        "max_tokens": (int, 8192, 256, 65536, "Max response tokens"),
        "default_temperature": (float, 0.7, 0.0, 2.0, "Default LLM temperature"),
        "json_temperature": (float, 0.3, 0.0, 1.0, "Temperature for structured output"),
    },
    "paths": {
        "logs_dir": (str, "logs", None, None, "Logs directory name under the data dir"),
    },
}

SCHEDULE_MODES = ("levels", "linear")


@dataclass(frozen=True)
class GenerationConfig:
    """Pipeline configuration."""

    heartbeat_interval: float
    max_retries: int
    base_delay: float
    cache_ttl_seconds: int
    parallel_limit: int
    summary_length: int
    schedule_mode: str


@dataclass(frozen=True)
class LLMConfig:
    """LLM client configuration."""

    max_tokens: int
    default_temperature: float
    json_temperature: float


@dataclass(frozen=True)
class PathsConfig:
    """Path names configuration."""

    logs_dir: str


def _defaults(section: str) -> dict[str, Any]:
    return {key: default for key, (_, default, _, _, _) in CONFIG_SCHEMA[section].items()}


def _load_section(
    parser: ConfigParser, section: str, schema: dict[str, tuple[type, Any, Any, Any, str]]
) -> dict[str, Any]:
    """Load and validate a configuration section.

    Args:
        parser: ConfigParser instance with loaded config
        section: Section name to load
        schema: Schema definition for the section

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigError: If validation fails
    """
    result = {}

    for key, (typ, default, min_val, max_val, _) in schema.items():
        if parser.has_option(section, key):
            raw_value = parser.get(section, key)
            value: bool | int | float | str
            try:
                if typ is bool:
                    value = raw_value.lower() in ("true", "1", "yes", "on")
                elif typ is int:
                    value = int(raw_value)
                elif typ is float:
                    value = float(raw_value)
                else:
                    value = raw_value.strip()
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for [{section}].{key}: {raw_value!r} (expected {typ.__name__})"
                ) from e
        else:
            value = default

        if typ in (int, float) and value is not None:
            if min_val is not None and value < min_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but minimum is {min_val}"
                )
            if max_val is not None and value > max_val:
                raise ConfigError(
                    f"Value for [{section}].{key} is {value}, but maximum is {max_val}"
                )

        result[key] = value

    return result


def _load_config(config_path: Optional[Path] = None) -> "Config":
    """Load configuration from an INI file (internal use only).

    Args:
        config_path: Path to config file. If None, uses defaults from schema.

    Returns:
        Config object with all sections populated and default provider settings.

    Raises:
        ConfigError: If validation fails
    """
    parser = ConfigParser()

    if config_path and config_path.exists():
        parser.read(config_path)

    generation_values = _load_section(parser, "generation", CONFIG_SCHEMA["generation"])
    if generation_values["schedule_mode"] not in SCHEDULE_MODES:
        raise ConfigError(
            f"Value for [generation].schedule_mode is {generation_values['schedule_mode']!r}, "
            f"but must be one of {', '.join(SCHEDULE_MODES)}"
        )
    llm_values = _load_section(parser, "llm", CONFIG_SCHEMA["llm"])
    paths_values = _load_section(parser, "paths", CONFIG_SCHEMA["paths"])

    return Config(
        generation=GenerationConfig(**generation_values),
        llm=LLMConfig(**llm_values),
        paths=PathsConfig(**paths_values),
    )


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    data_dir: Path = None  # type: ignore[assignment]  # Set in __post_init__ if None
    active_provider: str = "ollama"
    active_model: str = "llama3"
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    ollama_endpoint: str = "http://localhost:11434"

    generation: GenerationConfig = None  # type: ignore[assignment]
    llm: LLMConfig = None  # type: ignore[assignment]
    paths: PathsConfig = None  # type: ignore[assignment]

    def __post_init__(self):
        """Initialize section configs with defaults if not provided."""
        # Since frozen=True, we need to use object.__setattr__
        if self.data_dir is None:
            object.__setattr__(self, "data_dir", Path.home() / ".wikigen")
        if self.generation is None:
            object.__setattr__(self, "generation", GenerationConfig(**_defaults("generation")))
        if self.llm is None:
            object.__setattr__(self, "llm", LLMConfig(**_defaults("llm")))
        if self.paths is None:
            object.__setattr__(self, "paths", PathsConfig(**_defaults("paths")))

    @property
    def logs_path(self) -> Path:
        """Path to the logs directory."""
        return self.data_dir / self.paths.logs_dir

    @property
    def llm_log_path(self) -> Path:
        """Path to LLM query log file."""
        return self.logs_path / "llm-queries.jsonl"

    @property
    def llm_provider(self) -> str:
        """LLM provider name."""
        return self.active_provider

    @property
    def llm_model(self) -> str:
        """LLM model name."""
        return self.active_model

    @property
    def llm_api_key(self) -> Optional[str]:
        """API key for the active LLM provider."""
        provider_keys = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.google_api_key,
        }
        return provider_keys.get(self.active_provider)

    @property
    def llm_endpoint(self) -> Optional[str]:
        """Endpoint for LLM provider (mainly for Ollama)."""
        if self.active_provider == "ollama":
            return self.ollama_endpoint
        return None


def _detect_provider_from_keys() -> tuple[str, str]:
    """Auto-detect provider from available API keys.

    Google is checked first because it is the only provider with an explicit
    cached-content API.

    Returns:
        Tuple of (provider, model) based on available keys.
        Falls back to ollama if no keys are found.
    """
    for provider, env_var in (
        ("google", "GOOGLE_API_KEY"),
        ("openai", "OPENAI_API_KEY"),
        ("anthropic", "ANTHROPIC_API_KEY"),
    ):
        if os.getenv(env_var):
            return (provider, PROVIDER_DEFAULT_MODELS[provider])
    return ("ollama", PROVIDER_DEFAULT_MODELS["ollama"])


@lru_cache(maxsize=1)
def load_settings() -> Config:
    """Load settings from environment variables and config file.

    Settings are cached for the lifetime of the application.
    Use load_settings.cache_clear() to reload settings.

    Returns:
        Config object populated from environment variables and config file.

    Raises:
        ConfigError: If the config file contains invalid values.
    """
    config_path_str = os.getenv("WIKIGEN_CONFIG")
    config_path = Path(config_path_str) if config_path_str else None
    if config_path is not None and not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    base_config = _load_config(config_path)

    active_provider = os.getenv("ACTIVE_PROVIDER")
    active_model = os.getenv("ACTIVE_MODEL")

    if not active_provider:
        detected_provider, detected_model = _detect_provider_from_keys()
        active_provider = detected_provider
        if not active_model:
            active_model = detected_model
    elif not active_model:
        active_model = PROVIDER_DEFAULT_MODELS.get(active_provider, PROVIDER_DEFAULT_MODELS["ollama"])

    data_dir_str = os.getenv("WIKIGEN_DATA_DIR")
    data_dir = Path(data_dir_str) if data_dir_str else Path.home() / ".wikigen"

    return Config(
        data_dir=data_dir,
        active_provider=active_provider,
        active_model=active_model,
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        google_api_key=os.getenv("GOOGLE_API_KEY"),
        ollama_endpoint=os.getenv("OLLAMA_ENDPOINT", "http://localhost:11434"),
        generation=base_config.generation,
        llm=base_config.llm,
        paths=base_config.paths,
    )
