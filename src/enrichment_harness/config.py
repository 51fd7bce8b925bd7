# config.py
# Run configuration. Resolved once per run, read-only afterwards.
#
# Resolution order (later wins): field defaults → environment (.env is
# loaded first) → explicit overrides passed by the caller.

import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from enrichment_harness.prompts import MAIN_PROMPT

# Env var → field name.
ENV_VARS: dict[str, str] = {
    "ENRICHMENT_MODEL": "model",
    "ENRICHMENT_MAX_LOOPS": "max_loops",
    "ENRICHMENT_MAX_SEARCH_RESULTS": "max_search_results",
    "ENRICHMENT_MAX_CONCURRENT_ACTIONS": "max_concurrent_actions",
    "ENRICHMENT_ACTION_TIMEOUT": "action_timeout",
    "ENRICHMENT_REASONING_TIMEOUT": "reasoning_timeout",
}


class ConfigurationError(ValueError):
    """Raised when configuration values fail validation."""


class Configuration(BaseModel):
    """The complete configuration for one run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    model: str = Field(
        default="anthropic/claude-3.5-sonnet",
        description="Model identifier in the form provider/model-name.",
    )
    prompt: str = Field(
        default=MAIN_PROMPT,
        description="Main prompt template. Expects {info} and {topic}.",
    )
    max_loops: int = Field(default=6, ge=1, description="Decision budget per run.")
    max_search_results: int = Field(default=5, ge=1)
    max_concurrent_actions: int = Field(default=4, ge=1)
    max_consecutive_corrections: int = Field(
        default=3,
        ge=0,
        description="Back-to-back protocol violations tolerated before forcing termination.",
    )
    action_timeout: float = Field(default=60.0, gt=0)
    reasoning_timeout: float = Field(default=120.0, gt=0)
    fetch_max_chars: int = Field(default=50_000, ge=1)
    quiet: bool = False


def ensure_configuration(overrides: dict[str, Any] | None = None) -> Configuration:
    """
    Build a Configuration from the environment plus explicit overrides.

    Raises ConfigurationError on unknown keys or out-of-range values.
    """
    load_dotenv()

    values: dict[str, Any] = {}
    for env_name, field_name in ENV_VARS.items():
        raw = os.getenv(env_name)
        if raw:
            values[field_name] = raw
    values.update(overrides or {})

    try:
        return Configuration.model_validate(values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
