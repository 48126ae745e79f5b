"""
Configuration module for Hybrid Memory.

Loads settings from config.yaml and secrets from environment variables.
Set HYBRID_MEMORY_CONFIG to point at a different YAML file.
"""

import contextvars
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv

from .memory.embeddings import MODEL_DIMENSIONS
from .models import DEFAULT_MEMORY_CATEGORIES

# Load environment variables from .env file
load_dotenv()

# Context variable for session id logging
session_context = contextvars.ContextVar("session_id", default=None)


class SessionLogFilter(logging.Filter):
    """Filter to inject the current memory session id into log records."""
    def filter(self, record):
        session_id = session_context.get()
        if session_id is not None:
            record.session_info = f" [Session {session_id}]"
        else:
            record.session_info = ""
        return True


# Default config file path
CONFIG_FILE = Path(os.getenv("HYBRID_MEMORY_CONFIG", Path(__file__).parent.parent / "config.yaml"))


def _load_yaml_config() -> dict:
    """Load configuration from YAML file."""
    if CONFIG_FILE.exists():
        with open(CONFIG_FILE) as f:
            return yaml.safe_load(f) or {}
    return {}


# Load YAML config once at module import
_yaml_config = _load_yaml_config()


def _get_yaml(section: str, key: str, default=None):
    """Get a value from the YAML config."""
    return (_yaml_config.get(section) or {}).get(key, default)


def _get_yaml_section(section: str, default=None):
    """Get an entire section from the YAML config."""
    return _yaml_config.get(section, default or {})


@dataclass
class EmbeddingConfig:
    """Embedding provider settings."""
    provider: Literal["openai", "local"] = field(
        default_factory=lambda: _get_yaml("embedding", "provider", "openai")
    )
    # "text-embedding-3-small" (1536d), "text-embedding-3-large" (3072d) or "all-MiniLM-L6-v2" (384d)
    model: str = field(
        default_factory=lambda: _get_yaml("embedding", "model", "text-embedding-3-small")
    )
    # Secret from .env
    api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))

    @property
    def dimension(self) -> int | None:
        return MODEL_DIMENSIONS.get(self.model)


@dataclass
class StorageConfig:
    """Where each store lives on disk. The paths are independent."""
    sqlite_path: str = field(
        default_factory=lambda: _get_yaml("storage", "sqlite_path", "./data/facts.db")
    )
    vector_path: str = field(
        default_factory=lambda: _get_yaml("storage", "vector_path", "./data/vectors")
    )
    # Empty disables the write-ahead log
    wal_path: str = field(
        default_factory=lambda: _get_yaml("storage", "wal_path", "./data/memory.wal")
    )
    wal_max_age_seconds: int = field(
        default_factory=lambda: _get_yaml("storage", "wal_max_age_seconds", 300)
    )


@dataclass
class ClassificationConfig:
    """LLM judgment settings for ADD/UPDATE/DELETE/NOOP."""
    enabled: bool = field(
        default_factory=lambda: _get_yaml("classification", "enabled", True)
    )
    provider: Literal["openai"] = field(
        default_factory=lambda: _get_yaml("classification", "provider", "openai")
    )
    model: str = field(
        default_factory=lambda: _get_yaml("classification", "model", "gpt-4o-mini")
    )
    # Secret from .env
    api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    candidate_limit: int = field(
        default_factory=lambda: _get_yaml("classification", "candidate_limit", 5)
    )


@dataclass
class StoreConfig:
    """Fact store behavior."""
    fuzzy_dedupe: bool = field(
        default_factory=lambda: _get_yaml("store", "fuzzy_dedupe", False)
    )
    # Extra categories on top of the built-in ones
    categories: list[str] = field(
        default_factory=lambda: _get_yaml("store", "categories", []) or []
    )
    min_score: float = field(
        default_factory=lambda: _get_yaml("store", "min_score", 0.3)
    )
    duplicate_threshold: float = field(
        default_factory=lambda: _get_yaml("store", "duplicate_threshold", 0.95)
    )

    @property
    def all_categories(self) -> list[str]:
        return list(dict.fromkeys([*DEFAULT_MEMORY_CATEGORIES, *self.categories]))


@dataclass
class AppConfig:
    """Application settings from YAML."""
    log_level: str = field(
        default_factory=lambda: _get_yaml("logging", "level", "INFO")
    )


@dataclass
class Config:
    """Main configuration container."""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    app: AppConfig = field(default_factory=AppConfig)

    def setup_logging(self) -> logging.Logger:
        """Configure and return the application logger."""
        # Reset existing handlers to ensure clean configuration
        root = logging.getLogger()
        if root.handlers:
            for handler in list(root.handlers):
                root.removeHandler(handler)

        logging.basicConfig(
            level=getattr(logging, self.app.log_level.upper()),
            format="%(asctime)s - %(name)s - %(levelname)s%(session_info)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Add filter to the handler created by basicConfig
        for handler in logging.getLogger().handlers:
            handler.addFilter(SessionLogFilter())

        return logging.getLogger("hybrid_memory")

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of missing/invalid settings.

        Returns:
            List of validation error messages, empty if all valid.
        """
        errors = []

        if self.embedding.provider not in ("openai", "local"):
            errors.append(f"Unknown embedding provider: {self.embedding.provider}")
        if self.embedding.dimension is None:
            errors.append(
                f"Unsupported embedding model: {self.embedding.model} "
                f"(expected one of {', '.join(MODEL_DIMENSIONS)})"
            )
        if self.embedding.provider == "openai" and not self.embedding.api_key:
            errors.append("OPENAI_API_KEY is required when using OpenAI embeddings")

        if self.classification.enabled and not self.classification.api_key:
            errors.append("OPENAI_API_KEY is required when classification is enabled")
        if self.classification.candidate_limit < 1:
            errors.append("classification.candidate_limit must be at least 1")

        if not self.storage.sqlite_path:
            errors.append("storage.sqlite_path is required")
        if not self.storage.vector_path:
            errors.append("storage.vector_path is required")

        if not 0.0 <= self.store.min_score <= 1.0:
            errors.append(f"store.min_score must be in [0, 1], got {self.store.min_score}")
        if not 0.0 <= self.store.duplicate_threshold <= 1.0:
            errors.append(f"store.duplicate_threshold must be in [0, 1], got {self.store.duplicate_threshold}")

        return errors


# Global configuration instance
config = Config()
