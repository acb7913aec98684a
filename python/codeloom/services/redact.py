"""Log guard for generation events.

Prompts, system policy text, message bodies, artifact code, attachment bytes
and API keys never reach a log line. Callers log their size (`*_chars`,
`*_length`) or digest (`*_sha256`, `*_hash`) instead, and route keyword
fields through safe_kv so a slip is caught in local runs and tests.
"""

import hashlib
import os

import structlog

FORBIDDEN_KEYS = frozenset(
    {
        "prompt",
        "content",
        "code",
        "artifact",
        "api_key",
        "token",
        "secret",
        "system_instruction",
        "message_text",
        "attachment_data",
        "raw_body",
    }
)

REDACTED_SUFFIXES = ("_sha256", "_hash", "_length", "_chars")

# Environments where a forbidden key is a bug to fail on rather than warn about.
_STRICT_ENVS = frozenset({"local", "test"})


def hash_text(value: str) -> str:
    """Hex SHA-256 of value, for correlating identical texts across log lines."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def safe_kv(*, _env: str | None = None, **fields) -> dict:
    """Return fields unchanged after checking none of them carries raw content.

        logger.info("llm.request.started", **safe_kv(prompt_chars=len(text)))

    A key listed in FORBIDDEN_KEYS is rejected unless it ends in one of
    REDACTED_SUFFIXES. In local and test environments that raises ValueError;
    deployed environments log a warning and carry on.
    """
    violations = [
        key
        for key in fields
        if key in FORBIDDEN_KEYS and not key.endswith(REDACTED_SUFFIXES)
    ]
    if not violations:
        return fields

    env = _env or os.environ.get("CODELOOM_ENV", "local")
    if env in _STRICT_ENVS:
        raise ValueError(f"Forbidden log keys without redacted suffix: {violations}")
    structlog.get_logger(__name__).warning("log.forbidden_keys", forbidden_keys=violations)
    return fields
