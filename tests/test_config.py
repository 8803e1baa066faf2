"""Tests for configuration module."""

import pytest
from pydantic import ValidationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Run from an empty directory and clear relevant env vars."""
    monkeypatch.chdir(tmp_path)
    for var in [
        "SERPER_API_KEY", "ANTHROPIC_API_KEY", "DATABASE_PATH", "LOG_LEVEL",
        "MAX_RETRY_ATTEMPTS", "LLM_MODEL", "MODULE_CONCURRENCY",
        "FETCH_TIMEOUT_SECONDS", "SEARCH_COUNTRY", "SEARCH_LANGUAGE",
    ]:
        monkeypatch.delenv(var, raising=False)


def _load_config():
    from succession_research.config import Config
    return Config(_env_file=None)


class TestConfig:
    def test_defaults_without_credentials(self):
        config = _load_config()
        assert config.serper_api_key is None
        assert config.anthropic_api_key is None
        assert config.search_available is False
        assert config.llm_enabled is False
        assert config.search_country == "de"
        assert config.search_language == "de"
        assert config.llm_max_tokens == 1500
        assert config.llm_temperature == 0.3
        assert config.fetch_timeout_seconds == 15.0
        assert config.fetch_max_chars == 10000
        assert config.module_concurrency == 1
        assert config.cors_allow_origins == ["*"]

    def test_credentials_enable_services(self, monkeypatch):
        monkeypatch.setenv("SERPER_API_KEY", "serper-key")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        config = _load_config()
        assert config.search_available is True
        assert config.llm_enabled is True

    def test_blank_key_treated_as_missing(self, monkeypatch):
        monkeypatch.setenv("SERPER_API_KEY", "   ")
        config = _load_config()
        assert config.serper_api_key is None
        assert config.search_available is False

    def test_log_level_upper_cased(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert _load_config().log_level == "DEBUG"

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "VERBOSE")
        with pytest.raises(ValidationError):
            _load_config()

    @pytest.mark.parametrize("value", ["-1", "6"])
    def test_retry_attempts_out_of_range(self, monkeypatch, value):
        monkeypatch.setenv("MAX_RETRY_ATTEMPTS", value)
        with pytest.raises(ValidationError):
            _load_config()

    @pytest.mark.parametrize("value", ["0", "4"])
    def test_module_concurrency_out_of_range(self, monkeypatch, value):
        monkeypatch.setenv("MODULE_CONCURRENCY", value)
        with pytest.raises(ValidationError):
            _load_config()

    def test_module_concurrency_tunable(self, monkeypatch):
        monkeypatch.setenv("MODULE_CONCURRENCY", "2")
        assert _load_config().module_concurrency == 2

    def test_non_positive_timeout_rejected(self, monkeypatch):
        monkeypatch.setenv("FETCH_TIMEOUT_SECONDS", "0")
        with pytest.raises(ValidationError):
            _load_config()

    def test_database_parent_dir_created(self, monkeypatch, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "research.db"
        monkeypatch.setenv("DATABASE_PATH", str(db_path))
        config = _load_config()
        assert config.database_path == str(db_path)
        assert db_path.parent.is_dir()
