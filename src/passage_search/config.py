"""Configuration management for passage search using Hydra.

All configuration is loaded from YAML files in conf/passage_search/.
This module provides typed config objects, validation, and logging setup.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, TextIO

from hydra import compose, initialize_config_dir
from loguru import logger
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

from passage_search.cache import CacheConfig
from passage_search.chunking import ChunkingConfig
from passage_search.embedding import EmbeddingConfig
from passage_search.index import IndexConfig
from passage_search.search import SearchOptions

MiB = 1024 * 1024


def _search_cache_defaults() -> CacheConfig:
    return CacheConfig(max_entries=500, max_memory_bytes=25 * MiB)


class CachesConfig(BaseModel):
    """Independently sized caches for search results and embeddings.

    Attributes:
        search: Cache for ranked result lists (``search:`` keys)
        embedding: Cache for embedding vectors (``embedding:`` keys)
    """

    search: CacheConfig = Field(default_factory=_search_cache_defaults)
    embedding: CacheConfig = Field(default_factory=CacheConfig)


class LoggingConfig(BaseModel):
    level: str = Field(
        default="INFO", pattern="^(TRACE|DEBUG|INFO|SUCCESS|WARNING|ERROR|CRITICAL)$"
    )


class PassageSearchConfig(BaseModel):
    """Top-level configuration for the passage search system.

    Attributes:
        chunking: Text chunking configuration
        embedding: Embedding model configuration
        index: Vector index configuration
        search: Search pipeline options
        cache: Cache sizing for search results and embeddings
        logging: Log level for the loguru sink
    """

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    search: SearchOptions = Field(default_factory=SearchOptions)
    cache: CachesConfig = Field(default_factory=CachesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> PassageSearchConfig:
    """Load passage search configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/passage_search/)
        overrides: List of config overrides (e.g., ["chunking.chunk_size=256"])

    Returns:
        Validated configuration object

    Example:
        >>> config = load_config("default")
        >>> config.chunking.chunk_size
        512

        >>> config = load_config("default", overrides=["search.max_results=25"])
        >>> config.search.max_results
        25
    """
    if config_path is None:
        # Default to conf/passage_search/ relative to repo root
        repo_root = Path(__file__).parent.parent.parent
        config_path = repo_root / "conf" / "passage_search"

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    # Initialize Hydra with config directory
    with initialize_config_dir(
        config_dir=str(config_path), version_base=None, job_name="passage_search"
    ):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    # Convert OmegaConf to dict and validate with Pydantic
    config_dict = OmegaConf.to_container(cfg, resolve=True)
    return PassageSearchConfig.model_validate(config_dict)


def create_default_config() -> dict[str, dict[str, Any]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to YAML
    """
    return {
        "chunking": {
            "chunk_size": 512,
            "chunk_overlap": 50,
            "preserve_sentences": True,
            "preserve_paragraphs": True,
        },
        "embedding": {
            "model": "openai/text-embedding-3-small",
            "version": "v1",
            "dimensions": 1536,
            "batch_size": 100,
            "max_retries": 3,
            "timeout_seconds": 30.0,
            "max_input_chars": 8000,
            "api_key": "${oc.env:OPENAI_API_KEY,null}",
        },
        "index": {
            "backend": "local",
            "path": "data/index",
            "index_name": None,
            "namespace": None,
            "api_key": "${oc.env:PINECONE_API_KEY,null}",
        },
        "search": {
            "enable_prefiltering": True,
            "enable_result_caching": True,
            "enable_query_rewriting": True,
            "max_results": 10,
            "slow_query_ms": 1000.0,
        },
        "cache": {
            "search": {
                "max_entries": 500,
                "max_memory_bytes": 25 * MiB,
                "default_ttl": 1800.0,
                "sweep_interval": 300.0,
            },
            "embedding": {
                "max_entries": 1000,
                "max_memory_bytes": 100 * MiB,
                "default_ttl": 1800.0,
                "sweep_interval": 300.0,
            },
        },
        "logging": {"level": "INFO"},
    }


def configure_logging(level: str = "INFO", *, sink: TextIO | Any = sys.stderr) -> None:
    """Replace loguru's handlers with a single sink at the given level."""
    logger.remove()
    logger.add(sink, level=level.upper())
