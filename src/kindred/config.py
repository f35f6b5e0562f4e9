"""Kindred configuration management.

Loads configuration from .env files and YAML config files, merges them,
and provides validated settings via pydantic models.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)


class ModelProvider(str, Enum):
    """Supported chat-completion providers."""
    OLLAMA = "ollama"
    OPENAI = "openai"
    OPENROUTER = "openrouter"


DEFAULT_BASE_URLS = {
    ModelProvider.OPENAI: "https://api.openai.com/v1",
    ModelProvider.OPENROUTER: "https://openrouter.ai/api/v1",
}


class LLMConfig(BaseModel):
    """Configuration for the generative model collaborator."""

    provider: ModelProvider = ModelProvider.OLLAMA
    model: str = "qwen3:8b"
    host: str = "http://localhost:11434"
    api_key: str = ""
    base_url: str = ""
    temperature: float = 0.85
    reply_temperature: float = 0.8
    max_tokens: int = 512
    timeout: float = 120.0

    @field_validator("temperature", "reply_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Ensure temperature is in valid range."""
        if not 0.0 <= v <= 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")
        return v

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, v: int) -> int:
        """Ensure max_tokens is positive."""
        if v <= 0:
            raise ValueError("max_tokens must be positive")
        return v

    @model_validator(mode="after")
    def set_default_base_url(self) -> "LLMConfig":
        """Set default base URL based on provider."""
        if not self.base_url:
            if self.provider == ModelProvider.OLLAMA:
                self.base_url = f"{self.host.rstrip('/')}/v1"
            else:
                self.base_url = DEFAULT_BASE_URLS[self.provider]
        return self


class MemoryConfig(BaseModel):
    """Configuration for the memory engine."""

    bot_id: str = "DEFAULT"
    seed_user_id: str = "__seed__"
    owner_id: str = ""

    db_path: str = "data/memory.db"
    data_dir: str = "data"

    stm_max_entries: int = 30
    distill_interval: int = 12
    distill_temperature: float = 0.9
    distill_max_tokens: int = 1500
    emotional_distillation: bool = False

    scan_chunk_size: int = 1000
    archival_limit: int = 3
    block_limit: int = 2

    max_prompt_memories: int = 30
    max_prompt_stm: int = 40
    max_archival_chars: int = 500
    max_block_chars: int = 400

    @field_validator(
        "stm_max_entries",
        "distill_interval",
        "distill_max_tokens",
        "scan_chunk_size",
        "max_prompt_memories",
        "max_prompt_stm",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Ensure sizes and intervals are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("distill_temperature")
    @classmethod
    def validate_distill_temperature(cls, v: float) -> float:
        """Ensure distill_temperature is in valid range."""
        if not 0.0 <= v <= 2.0:
            raise ValueError("distill_temperature must be between 0.0 and 2.0")
        return v


class AffectConfig(BaseModel):
    """Keyword lists for the default affect classifiers."""

    emotional_keywords: list[str] = Field(
        default_factory=lambda: [
            "sad", "cry", "crying", "hurt", "scared", "afraid", "lonely",
            "angry", "upset", "anxious", "grief", "heartbroken", "overwhelmed",
            "tired of", "lost",
        ]
    )
    intimacy_keywords: list[str] = Field(
        default_factory=lambda: [
            "love", "miss you", "hold me", "hug", "close to you", "trust you",
            "safe with you", "need you", "together", "care about",
        ]
    )


class KindredConfig(BaseSettings):
    """
    Kindred's main configuration.

    Loads from:
    1. .env file (via pydantic-settings)
    2. YAML config files (via load() classmethod)
    3. Environment variables with KINDRED_ prefix

    Environment variables override YAML values.
    """

    model_config = SettingsConfigDict(
        env_prefix="KINDRED_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    name: str = "Kindred"
    user_name: str = "Friend"
    log_level: str = "INFO"
    version: str = "0.1.0"

    llm: LLMConfig = Field(default_factory=LLMConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    affect: AffectConfig = Field(default_factory=AffectConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log_level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def expand_paths(self) -> "KindredConfig":
        """Expand user home directory in memory paths."""
        self.memory.data_dir = str(Path(self.memory.data_dir).expanduser())
        if self.memory.db_path != ":memory:":
            self.memory.db_path = str(Path(self.memory.db_path).expanduser())
        return self

    @classmethod
    def load(cls, yaml_path: Path | str | None = None) -> "KindredConfig":
        """
        Load configuration from YAML and environment.

        The YAML file mirrors the model layout: top-level scalars plus
        ``llm``, ``memory`` and ``affect`` sections. A ``kindred`` section,
        if present, is merged into the top level.

        Args:
            yaml_path: Path to YAML config file. If None, searches default locations.

        Returns:
            Validated KindredConfig instance.
        """
        yaml_file = cls._find_yaml_config(yaml_path)

        yaml_data: dict[str, Any] = {}
        if yaml_file and yaml_file.exists():
            yaml_data = cls._load_yaml_file(yaml_file)
            logger.debug(f"Loaded config from {yaml_file}")

        if "kindred" in yaml_data:
            merged_data = dict(yaml_data["kindred"] or {})
            merged_data.update({k: v for k, v in yaml_data.items() if k != "kindred"})
            yaml_data = merged_data

        # YAML arrives as init kwargs; see settings_customise_sources for precedence
        return cls(**yaml_data)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Give environment variables priority over YAML/init values."""
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def _find_yaml_config(cls, yaml_path: Path | str | None) -> Path | None:
        """Find the YAML config file to load."""
        if yaml_path:
            return Path(yaml_path)

        default_locations = [
            Path("config/default.yaml"),
            Path("config/default.yml"),
            Path.home() / ".kindred" / "config.yaml",
        ]

        for location in default_locations:
            if location.exists():
                return location

        return None

    @classmethod
    def _load_yaml_file(cls, path: Path) -> dict[str, Any]:
        """Load YAML file and return parsed data."""
        try:
            with path.open("r") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Failed to parse YAML file {path}: {e}")
            return {}

    def get_log_config(self) -> dict[str, Any]:
        """Get logging configuration dict for use with logging.config."""
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": self.log_level,
                    "formatter": "standard",
                },
            },
            "root": {
                "level": self.log_level,
                "handlers": ["console"],
            },
        }
