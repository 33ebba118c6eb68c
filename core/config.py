"""
Configuration for the command pipeline.

Module-level defaults for model parameters, limits and timeouts, plus
:class:`PipelineSettings` which carries the credentials of each backing
system.  Settings are read once from the environment (``.env`` supported)
and passed explicitly to the gateways and the model at construction time;
changing them only affects commands started afterwards.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# OpenAI Configuration
OPENAI_MODEL = "gpt-4.1"
OPENAI_TEMPERATURE = 0.0  # Deterministic extraction and selection
OPENAI_MAX_TOKENS = 1200

# Resolution
MAX_CANDIDATES = 50
DEFAULT_LOOKUP_LIMIT = 50

# Execution
DEFAULT_MAX_CONCURRENCY = 1
MAX_CONCURRENCY_CAP = 8

# Network timeouts (seconds)
MODEL_TIMEOUT = 60.0
LOOKUP_TIMEOUT = 15.0
MUTATION_TIMEOUT = 30.0

# Read-only calls are retried at most once on a transient failure
READ_ATTEMPTS = 2

MONDAY_API_URL = "https://api.monday.com/v2"
MONDAY_API_VERSION = "2024-01"

DEFAULT_DB_PATH = os.path.join("data", "crm.sqlite")


@dataclass(frozen=True)
class PipelineSettings:
    """Credentials and endpoints threaded into the external collaborators."""
    openai_api_key: Optional[str] = None
    openai_model: str = OPENAI_MODEL
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    monday_api_token: Optional[str] = None
    db_path: str = DEFAULT_DB_PATH
    model_timeout: float = MODEL_TIMEOUT
    lookup_timeout: float = LOOKUP_TIMEOUT
    mutation_timeout: float = MUTATION_TIMEOUT
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    extra: dict = field(default_factory=dict)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def load_settings() -> PipelineSettings:
    """Build settings from the process environment."""
    return PipelineSettings(
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_model=os.getenv("COMMAND_OPENAI_MODEL", OPENAI_MODEL),
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=os.getenv("SUPABASE_KEY"),
        monday_api_token=os.getenv("MONDAY_API_TOKEN"),
        db_path=os.getenv("COMMAND_DB_PATH", DEFAULT_DB_PATH),
        model_timeout=_float_env("COMMAND_MODEL_TIMEOUT", MODEL_TIMEOUT),
        lookup_timeout=_float_env("COMMAND_LOOKUP_TIMEOUT", LOOKUP_TIMEOUT),
        mutation_timeout=_float_env("COMMAND_MUTATION_TIMEOUT", MUTATION_TIMEOUT),
        max_concurrency=int(_float_env("COMMAND_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY)),
    )
