"""Application settings loaded from environment variables.

Environment Configuration:
    CODELOOM_ENV: Deployment environment (local | test | staging | prod)
    GEMINI_API_KEY: Generative model API key (required in staging/prod)
    CODELOOM_DEFAULT_MODEL: Model identifier used when a session does not pick one

Generation Configuration:
    DAILY_REQUEST_LIMIT: Requests per day for non-privileged users
    LLM_MAX_RETRIES: Retries after a rate-limited attempt (attempts = retries + 1)
    LLM_RETRY_BASE_DELAY_MS: Base of the exponential backoff (delay n = base * 2^n)
    LLM_TIMEOUT_S: Provider request timeout
    MAX_ATTACHMENT_BYTES: Per-attachment size ceiling
    MAX_PROMPT_CHARS: Ceiling for the rendered request text

Persistence Configuration:
    DATABASE_URL: SQLAlchemy URL for sessions and users (in-memory when unset)
    MAX_STORED_SESSIONS: Most-recent sessions kept by the bundled stores
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Process-wide configuration, read once from the environment (and .env).

    A deployed environment without GEMINI_API_KEY fails to start. Sizes, limits
    and delays must be at least 1; LLM_MAX_RETRIES may be 0.
    """

    codeloom_env: Environment = Field(default=Environment.LOCAL, alias="CODELOOM_ENV")

    # Model provider
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    default_model: str = Field(default="gemini-2.5-flash", alias="CODELOOM_DEFAULT_MODEL")

    # Quota
    daily_request_limit: int = Field(default=20, alias="DAILY_REQUEST_LIMIT")

    # Dispatch / retry
    llm_max_retries: int = Field(default=3, alias="LLM_MAX_RETRIES")
    llm_retry_base_delay_ms: int = Field(default=2000, alias="LLM_RETRY_BASE_DELAY_MS")
    llm_timeout_s: int = Field(default=120, alias="LLM_TIMEOUT_S")

    # Request building
    max_attachment_bytes: int = Field(default=20 * 1024 * 1024, alias="MAX_ATTACHMENT_BYTES")
    max_prompt_chars: int = Field(default=1_000_000, alias="MAX_PROMPT_CHARS")

    # Persistence
    database_url: str | None = Field(default=None, alias="DATABASE_URL")
    max_stored_sessions: int = Field(default=20, alias="MAX_STORED_SESSIONS")

    # Logging
    log_json: bool = Field(default=True, alias="LOG_JSON")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def check_key_and_limits(self) -> "Settings":
        if self.is_deployed and not self.gemini_api_key:
            raise ValueError(
                f"GEMINI_API_KEY is required for CODELOOM_ENV={self.codeloom_env.value}"
            )

        positive = {
            "DAILY_REQUEST_LIMIT": self.daily_request_limit,
            "LLM_RETRY_BASE_DELAY_MS": self.llm_retry_base_delay_ms,
            "LLM_TIMEOUT_S": self.llm_timeout_s,
            "MAX_ATTACHMENT_BYTES": self.max_attachment_bytes,
            "MAX_PROMPT_CHARS": self.max_prompt_chars,
            "MAX_STORED_SESSIONS": self.max_stored_sessions,
        }
        invalid = [name for name, value in positive.items() if value < 1]
        if invalid:
            raise ValueError(f"Settings must be >= 1: {', '.join(invalid)}")

        if self.llm_max_retries < 0:
            raise ValueError("LLM_MAX_RETRIES must be >= 0")

        return self

    @property
    def is_deployed(self) -> bool:
        """Whether this is a staging/prod deployment."""
        return self.codeloom_env in (Environment.STAGING, Environment.PROD)


@lru_cache
def get_settings() -> Settings:
    """Settings for this process, built on first use.

    Raises:
        ValidationError: On a missing key in a deployed environment or a bad limit.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Forget cached settings so the next get_settings() rereads the environment."""
    get_settings.cache_clear()
