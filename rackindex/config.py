"""
Configuration management for context index stores.

The configuration is stored as a TOML file in the store directory.
It specifies the embedding provider, chunking parameters, index dimension
and search tuning.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .chunking import ChunkingConfig
from .errors import ConfigurationError


CONFIG_FILENAME = "rackindex.toml"
CONFIG_VERSION = 1

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_DIMENSION = 384


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexConfig:
    """Vector index settings. The dimension is fixed for the life of an index."""
    dimension: int = DEFAULT_DIMENSION
    filename: str = "vectors.faiss"
    database: str = "rackindex.db"
    busy_timeout_ms: int = 5000

    def validate(self) -> "IndexConfig":
        if self.dimension <= 0:
            raise ConfigurationError(f"index dimension must be positive, got {self.dimension}")
        if not self.filename or not self.database:
            raise ConfigurationError("index filename and database must not be empty")
        if self.busy_timeout_ms < 0:
            raise ConfigurationError("busy_timeout_ms must not be negative")
        return self


@dataclass
class SearchConfig:
    """Retrieval tuning. Over-fetch factors absorb post-filtering loss."""
    default_top_k: int = 10
    overfetch: int = 2
    inherit_overfetch: int = 3
    embed_timeout: Optional[float] = 30.0

    def validate(self) -> "SearchConfig":
        if self.default_top_k <= 0:
            raise ConfigurationError("default_top_k must be positive")
        if self.overfetch < 1 or self.inherit_overfetch < 1:
            raise ConfigurationError("over-fetch factors must be at least 1")
        if self.embed_timeout is not None and self.embed_timeout <= 0:
            raise ConfigurationError("embed_timeout must be positive when set")
        return self


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    embedding: ProviderConfig = field(
        default_factory=lambda: ProviderConfig("sentence-transformers", {"model": DEFAULT_EMBEDDING_MODEL})
    )
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        return self.path / self.index.database

    @property
    def index_path(self) -> Path:
        return self.path / self.index.filename

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def validate(self) -> "StoreConfig":
        """Validate every section; raises ConfigurationError."""
        if not self.embedding.name:
            raise ConfigurationError("embedding provider name must not be empty")
        self.chunking.validate()
        self.index.validate()
        self.search.validate()
        return self


def get_default_store_path() -> Path:
    """Store directory from RACKINDEX_STORE_PATH, else ~/.rackindex."""
    env = os.environ.get("RACKINDEX_STORE_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / ".rackindex"


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with defaults."""
    return StoreConfig(path=store_path)


def _section(data: dict, name: str) -> dict:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"[{name}] must be a table")
    return section


def _build(cls, section: dict, name: str):
    try:
        return cls(**section)
    except TypeError as e:
        raise ConfigurationError(f"Invalid [{name}] section: {e}") from e


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ConfigurationError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

    store = _section(data, "store")
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ConfigurationError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    embedding = dict(_section(data, "embedding")) or {"name": "sentence-transformers"}
    search = dict(_section(data, "search"))
    # TOML has no null; a zero timeout means "no timeout"
    if search.get("embed_timeout") == 0:
        search["embed_timeout"] = None

    config = StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        embedding=ProviderConfig(
            name=embedding.get("name", ""),
            params={k: v for k, v in embedding.items() if k != "name"},
        ),
        chunking=_build(ChunkingConfig, _section(data, "chunking"), "chunking"),
        index=_build(IndexConfig, _section(data, "index"), "index"),
        search=_build(SearchConfig, search, "search"),
    )
    return config.validate()


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.validate()
    config.path.mkdir(parents=True, exist_ok=True)

    embedding = {"name": config.embedding.name}
    embedding.update(config.embedding.params)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "embedding": embedding,
        "chunking": {
            "max_chunk_size": config.chunking.max_chunk_size,
            "overlap_size": config.chunking.overlap_size,
            "separator": config.chunking.separator,
        },
        "index": {
            "dimension": config.index.dimension,
            "filename": config.index.filename,
            "database": config.index.database,
            "busy_timeout_ms": config.index.busy_timeout_ms,
        },
        "search": {
            "default_top_k": config.search.default_top_k,
            "overfetch": config.search.overfetch,
            "inherit_overfetch": config.search.inherit_overfetch,
            "embed_timeout": config.search.embed_timeout or 0,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = create_default_config(store_path)
    save_config(config)
    return config
