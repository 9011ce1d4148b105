"""Unit tests for configuration loading.

Tests cover:
- Hydra config loading from YAML
- Environment variable interpolation
- Config validation
- Override mechanism
- Logging setup
"""

import io
import os

import pytest
from loguru import logger

from passage_search.config import (
    CachesConfig,
    LoggingConfig,
    PassageSearchConfig,
    configure_logging,
    create_default_config,
    load_config,
)


class TestConfigCreation:
    """Tests for default config creation."""

    def test_create_default_config(self) -> None:
        config_dict = create_default_config()

        assert config_dict["chunking"]["chunk_size"] == 512
        assert config_dict["chunking"]["chunk_overlap"] == 50
        assert config_dict["embedding"]["model"] == "openai/text-embedding-3-small"
        assert config_dict["index"]["backend"] == "local"

    def test_default_config_has_all_sections(self) -> None:
        config_dict = create_default_config()

        required_sections = ["chunking", "embedding", "index", "search", "cache", "logging"]
        assert all(section in config_dict for section in required_sections)


class TestConfigModels:
    """Tests for config model validation."""

    def test_cache_defaults_are_independent(self) -> None:
        caches = CachesConfig()

        assert caches.search.max_entries == 500
        assert caches.search.max_memory_bytes == 25 * 1024 * 1024
        assert caches.embedding.max_entries == 1000
        assert caches.embedding.max_memory_bytes == 100 * 1024 * 1024

    def test_logging_level_validated(self) -> None:
        LoggingConfig(level="DEBUG")

        with pytest.raises(ValueError):
            LoggingConfig(level="LOUD")

    def test_search_max_results_ceiling(self) -> None:
        with pytest.raises(ValueError):
            PassageSearchConfig.model_validate({"search": {"max_results": 101}})

    def test_chunking_section_from_dict(self) -> None:
        config = PassageSearchConfig.model_validate({"chunking": {"chunk_size": 128}})

        assert config.chunking.chunk_size == 128
        assert config.chunking.chunk_overlap == 50


class TestConfigLoading:
    """Tests for loading config from Hydra YAML."""

    def test_load_default_config(self) -> None:
        config = load_config("default")

        assert isinstance(config, PassageSearchConfig)
        assert config.chunking.chunk_size == 512
        assert config.search.enable_prefiltering is True
        assert config.cache.search.sweep_interval == 300.0
        assert config.index.backend == "local"

    def test_load_config_with_overrides(self) -> None:
        config = load_config(
            "default",
            overrides=["chunking.chunk_size=256", "search.max_results=25"],
        )

        assert config.chunking.chunk_size == 256
        assert config.search.max_results == 25

    def test_load_config_env_var_interpolation(self) -> None:
        os.environ["TEST_OPENAI_KEY"] = "test-key-123"

        try:
            config = load_config(
                "default",
                overrides=["embedding.api_key=${oc.env:TEST_OPENAI_KEY}"],
            )

            assert config.embedding.api_key == "test-key-123"
        finally:
            del os.environ["TEST_OPENAI_KEY"]

    def test_load_config_missing_directory_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            load_config("nonexistent", config_path="/nonexistent/path")

    def test_load_config_custom_directory(self, tmp_path) -> None:
        (tmp_path / "small.yaml").write_text("chunking:\n  chunk_size: 64\n")

        config = load_config("small", config_path=tmp_path)

        assert config.chunking.chunk_size == 64
        assert config.embedding.model == "openai/text-embedding-3-small"


class TestConfigureLogging:
    def test_sink_receives_messages_at_level(self) -> None:
        sink = io.StringIO()
        try:
            configure_logging("WARNING", sink=sink)
            logger.info("quiet message")
            logger.warning("loud message")
        finally:
            configure_logging("INFO")

        output = sink.getvalue()
        assert "loud message" in output
        assert "quiet message" not in output
