"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from codeloom.config import Environment, Settings, clear_settings_cache, get_settings


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {"CODELOOM_ENV": "test"}
    defaults.update(overrides)
    return Settings(**defaults)


class TestDefaults:
    def test_generation_defaults(self):
        s = _make_settings()
        assert s.codeloom_env == Environment.TEST
        assert s.daily_request_limit == 20
        assert s.llm_max_retries == 3
        assert s.llm_retry_base_delay_ms == 2000
        assert s.max_prompt_chars == 1_000_000
        assert s.max_stored_sessions == 20
        assert s.database_url is None
        assert s.is_deployed is False

    def test_overrides_accepted(self):
        s = _make_settings(DAILY_REQUEST_LIMIT=5, LLM_MAX_RETRIES=0, CODELOOM_DEFAULT_MODEL="m")
        assert s.daily_request_limit == 5
        assert s.llm_max_retries == 0
        assert s.default_model == "m"


class TestValidation:
    @pytest.mark.parametrize("env", ["staging", "prod"])
    def test_api_key_required_when_deployed(self, env):
        with pytest.raises(ValidationError, match="GEMINI_API_KEY is required"):
            _make_settings(CODELOOM_ENV=env)

    def test_deployed_with_key(self):
        s = _make_settings(CODELOOM_ENV="prod", GEMINI_API_KEY="k")
        assert s.is_deployed is True

    def test_zero_limit_rejected(self):
        with pytest.raises(ValidationError, match="DAILY_REQUEST_LIMIT"):
            _make_settings(DAILY_REQUEST_LIMIT=0)

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError, match="LLM_MAX_RETRIES"):
            _make_settings(LLM_MAX_RETRIES=-1)


class TestSettingsCache:
    def test_env_is_read_once_per_cache(self, monkeypatch):
        monkeypatch.setenv("DAILY_REQUEST_LIMIT", "7")
        clear_settings_cache()
        assert get_settings().daily_request_limit == 7

        monkeypatch.setenv("DAILY_REQUEST_LIMIT", "8")
        assert get_settings().daily_request_limit == 7

        clear_settings_cache()
        assert get_settings().daily_request_limit == 8
