"""
Configuration management for episodic memory.

The configuration is stored as a TOML file in the config directory.
It names the exchange database, the embedding provider and search defaults.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w


CONFIG_FILENAME = "episodic-memory.toml"
CONFIG_VERSION = 1
DB_FILENAME = "conversations.db"

DEFAULT_LIMIT = 10
DEFAULT_MODE = "both"
# Per-concept over-fetch factor for multi-concept search (k = limit * factor + offset)
CONCEPT_OVERFETCH = 5


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchConfig:
    """Search defaults."""
    default_limit: int = DEFAULT_LIMIT
    default_mode: str = DEFAULT_MODE
    concept_overfetch: int = CONCEPT_OVERFETCH


@dataclass
class MemoryConfig:
    """Complete configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    db_path: Path | None = None

    embedding: ProviderConfig = field(
        default_factory=lambda: ProviderConfig("sentence-transformers", {"model": "all-MiniLM-L6-v2"})
    )
    search: SearchConfig = field(default_factory=SearchConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def resolved_db_path(self) -> Path:
        """Database path: EPISODIC_MEMORY_DB_PATH, then config, then default."""
        env_path = os.environ.get("EPISODIC_MEMORY_DB_PATH")
        if env_path:
            return Path(env_path).expanduser()
        if self.db_path is not None:
            return self.db_path
        return self.path / DB_FILENAME


def get_config_dir() -> Path:
    """Config directory: EPISODIC_MEMORY_CONFIG_DIR or ~/.config/episodic-memory."""
    env_dir = os.environ.get("EPISODIC_MEMORY_CONFIG_DIR")
    if env_dir:
        return Path(env_dir).expanduser().resolve()
    return Path.home() / ".config" / "episodic-memory"


def load_config(config_dir: Path) -> MemoryConfig:
    """
    Load configuration from a config directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = config_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    embedding = data.get("embedding", {"name": "sentence-transformers"})
    search = data.get("search", {})

    concept_overfetch = int(search.get("concept_overfetch", CONCEPT_OVERFETCH))
    if concept_overfetch < 1:
        raise ValueError(f"search.concept_overfetch must be >= 1, got {concept_overfetch}")

    db_path = store.get("db_path")
    return MemoryConfig(
        path=config_dir,
        version=version,
        created=store.get("created", ""),
        db_path=Path(db_path).expanduser() if db_path else None,
        embedding=ProviderConfig(
            name=embedding.get("name", ""),
            params={k: v for k, v in embedding.items() if k != "name"},
        ),
        search=SearchConfig(
            default_limit=int(search.get("default_limit", DEFAULT_LIMIT)),
            default_mode=search.get("default_mode", DEFAULT_MODE),
            concept_overfetch=concept_overfetch,
        ),
    )


def save_config(config: MemoryConfig) -> None:
    """
    Save configuration to the config directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    store: dict[str, Any] = {
        "version": config.version,
        "created": config.created,
    }
    if config.db_path is not None:
        store["db_path"] = str(config.db_path)

    embedding = {"name": config.embedding.name}
    embedding.update(config.embedding.params)

    data = {
        "store": store,
        "embedding": embedding,
        "search": {
            "default_limit": config.search.default_limit,
            "default_mode": config.search.default_mode,
            "concept_overfetch": config.search.concept_overfetch,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(config_dir: Path) -> MemoryConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    if (config_dir / CONFIG_FILENAME).exists():
        return load_config(config_dir)
    config = MemoryConfig(path=config_dir)
    save_config(config)
    return config
