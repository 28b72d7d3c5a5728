"""Centralized configuration for the WhatsApp advisor.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/asesor-whatsapp/<VARIABLE_NAME>``.

Nothing here is read at import time: ``load_settings()`` builds an immutable
``Settings`` object once at start-up and it is passed explicitly to the
components that need it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace

from dotenv import load_dotenv

from asesor.prompts import (
    CONTEXTUAL_INSTRUCTIONS,
    DIRECT_INSTRUCTIONS,
    FALLBACK_REPLY,
    SUMMARY_INSTRUCTIONS,
)

logger = logging.getLogger(__name__)

SSM_PREFIX = "/asesor-whatsapp"
DEFAULT_MODEL_NAME = "claude-haiku-4-5"
DEFAULT_MAX_TOOL_ITERATIONS = 6


# ── Secret resolution ────────────────────────────────────────────────

def _on_aws() -> bool:
    return bool(os.getenv("AWS_EXECUTION_ENV"))


def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 (optional dependency, ``aws`` extra)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _on_aws():
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value
    return default


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _optional_env(name)
    if value:
        return value
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store {SSM_PREFIX}/{name} (AWS)."
    )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ── Agent policy ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class AgentPolicy:
    """Everything that distinguishes one conversational variant from another.

    One agent loop serves every variant; only this object changes.
    """

    name: str
    system_instructions: str
    history_limit: int = 10
    model_name: str = DEFAULT_MODEL_NAME
    max_tokens: int = 300
    greeting_fast_path: bool = True
    random_greeting: bool = False
    include_transcript: bool = False
    max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS
    fallback_text: str = FALLBACK_REPLY


POLICIES: dict[str, AgentPolicy] = {
    "contextual": AgentPolicy(
        name="contextual",
        system_instructions=CONTEXTUAL_INSTRUCTIONS,
        history_limit=10,
    ),
    "resumen": AgentPolicy(
        name="resumen",
        system_instructions=SUMMARY_INSTRUCTIONS,
        history_limit=20,
        random_greeting=True,
        include_transcript=True,
    ),
    "directo": AgentPolicy(
        name="directo",
        system_instructions=DIRECT_INSTRUCTIONS,
        history_limit=6,
        greeting_fast_path=False,
    ),
}


def get_policy(name: str) -> AgentPolicy:
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown agent policy {name!r}. Choose one of: {', '.join(sorted(POLICIES))}"
        ) from None


# ── Settings ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration, built once by ``load_settings()``."""

    anthropic_api_key: str
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_whatsapp_number: str
    policy: AgentPolicy = field(default_factory=lambda: POLICIES["contextual"])

    google_access_token: str | None = None
    google_sheet_id: str | None = None
    google_docs_id: str | None = None
    google_calendar_id: str | None = None
    knowledge_file: str | None = None

    llm_timeout_seconds: float = 30.0
    llm_max_retries: int = 2
    http_timeout_seconds: float = 15.0
    serialize_per_sender: bool = True

    server_host: str = "0.0.0.0"
    server_port: int = 8000


def load_settings() -> Settings:
    """Read ``.env`` / environment / SSM and build the ``Settings`` object."""
    load_dotenv()

    policy = get_policy(os.getenv("AGENT_POLICY", "contextual"))
    overrides: dict[str, object] = {}
    if os.getenv("HISTORY_LIMIT"):
        overrides["history_limit"] = int(os.environ["HISTORY_LIMIT"])
    if os.getenv("MODEL_NAME"):
        overrides["model_name"] = os.environ["MODEL_NAME"]
    if os.getenv("MAX_TOOL_ITERATIONS"):
        overrides["max_tool_iterations"] = int(os.environ["MAX_TOOL_ITERATIONS"])
    if overrides:
        policy = replace(policy, **overrides)

    return Settings(
        anthropic_api_key=_require_env("ANTHROPIC_API_KEY"),
        twilio_account_sid=_require_env("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=_require_env("TWILIO_AUTH_TOKEN"),
        twilio_whatsapp_number=_require_env("TWILIO_WHATSAPP_NUMBER"),
        policy=policy,
        google_access_token=_optional_env("GOOGLE_ACCESS_TOKEN"),
        google_sheet_id=_optional_env("GOOGLE_SHEET_ID"),
        google_docs_id=_optional_env("GOOGLE_DOCS_ID"),
        google_calendar_id=_optional_env("GOOGLE_CALENDAR_ID"),
        knowledge_file=os.getenv("KNOWLEDGE_FILE"),
        llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30")),
        llm_max_retries=int(os.getenv("LLM_MAX_RETRIES", "2")),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "15")),
        serialize_per_sender=_env_bool("SERIALIZE_PER_SENDER", True),
        server_host=os.getenv("SERVER_HOST", "0.0.0.0"),
        server_port=int(os.getenv("SERVER_PORT", "8000")),
    )
