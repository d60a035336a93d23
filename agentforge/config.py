"""Environment-driven runtime settings for the agent builder."""

from __future__ import annotations

import logging
import os
from types import SimpleNamespace
from typing import Optional

DEFAULT_API_BASE_URL = "http://api:8000"
_VERSION_SUFFIXES = ("/api/v1", "/v1", "/api")


def _env_str(
    name: str,
    default: Optional[str] = None,
    *,
    alias: Optional[str] = None,
    empty_to_none: bool = True,
) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    value = raw.strip()
    if not value and empty_to_none:
        return None if default is None else default
    return value if value else default


def _env_bool(name: str, default: bool, *, alias: Optional[str] = None) -> bool:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, *, alias: Optional[str] = None) -> float:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _api_base_url(raw: str) -> str:
    base = raw.strip().rstrip("/")
    for suffix in _VERSION_SUFFIXES:
        if base.endswith(suffix):
            logging.getLogger(__name__).warning("API_BASE_URL should not include '%s'; normalizing value %s", suffix, raw)
            base = base[: -len(suffix)]
            break
    return base or DEFAULT_API_BASE_URL


class Settings(SimpleNamespace):
    """Simple attribute container used throughout the codebase."""

CONFIG = Settings()


def _compute_values() -> tuple[dict[str, object], dict[str, object]]:
    # -----------------------------------------------------------------------
    # RUNTIME ENVIRONMENT
    # -----------------------------------------------------------------------
    environment = _env_str("ENV", "prod", empty_to_none=False).lower()
    if environment not in {"dev", "test", "prod"}:
        environment = "prod"
    is_development = environment == "dev"

    # -----------------------------------------------------------------------
    # BUILD PIPELINE LIMITS
    # -----------------------------------------------------------------------
    build_deadline_seconds = _env_float("BUILD_DEADLINE_SECONDS", 270.0)
    if build_deadline_seconds <= 0:
        build_deadline_seconds = 270.0
    generator_max_retries = max(0, _env_int("GENERATOR_MAX_RETRIES", 3))
    generator_backoff_seconds = max(0.0, _env_float("GENERATOR_BACKOFF_SECONDS", 2.0))
    persistence_retries = max(1, _env_int("PERSISTENCE_RETRIES", 1))
    reject_concurrent_builds = _env_bool("REJECT_CONCURRENT_BUILDS", False)

    # -----------------------------------------------------------------------
    # DOCUMENT STORE
    # -----------------------------------------------------------------------
    supabase_url = _env_str("SUPABASE_URL", None)
    supabase_anon_key = _env_str("SUPABASE_ANON_KEY", None)
    supabase_service_role_key = _env_str("SUPABASE_SERVICE_ROLE_KEY", None)
    supabase_configured = bool(supabase_url) and bool(supabase_service_role_key or supabase_anon_key)
    documents_table = _env_str("DOCUMENTS_TABLE", "agent_documents", empty_to_none=False)

    allowed_backends = {"memory", "supabase"}
    requested_backend = _env_str("DOCUMENT_STORE_BACKEND", None, empty_to_none=False)
    if requested_backend and requested_backend.lower() in allowed_backends:
        document_store_backend = requested_backend.lower()
    elif supabase_configured and not is_development:
        document_store_backend = "supabase"
    else:
        document_store_backend = "memory"

    # -----------------------------------------------------------------------
    # GENERATOR (LLM-BACKED FRAGMENT PRODUCTION)
    # -----------------------------------------------------------------------
    generator_model = _env_str("GENERATOR_MODEL", "gpt-5-mini", empty_to_none=False)
    generator_temperature = _env_float("GENERATOR_TEMPERATURE", 0.0)
    generator_system_prompt = _env_str("GENERATOR_SYSTEM_PROMPT", None)

    # -----------------------------------------------------------------------
    # WORKER / API WIRING
    # -----------------------------------------------------------------------
    build_queue = _env_str("BUILD_QUEUE", "builds", empty_to_none=False)
    relay_events = _env_bool("RELAY_BUILD_EVENTS", True)
    api_base_url = _api_base_url(_env_str("API_BASE_URL", DEFAULT_API_BASE_URL, empty_to_none=False))
    build_lock_enabled = _env_bool("BUILD_LOCK_ENABLED", True)
    build_lock_url = _env_str("BUILD_LOCK_URL", None, alias="CELERY_BROKER_URL") or "redis://localhost:6379/0"

    globals_map = {
        "ENVIRONMENT": environment,
        "IS_DEVELOPMENT": is_development,
        "BUILD_DEADLINE_SECONDS": build_deadline_seconds,
        "GENERATOR_MAX_RETRIES": generator_max_retries,
        "GENERATOR_BACKOFF_SECONDS": generator_backoff_seconds,
        "PERSISTENCE_RETRIES": persistence_retries,
        "REJECT_CONCURRENT_BUILDS": reject_concurrent_builds,
        "SUPABASE_URL": supabase_url,
        "SUPABASE_ANON_KEY": supabase_anon_key,
        "SUPABASE_SERVICE_ROLE_KEY": supabase_service_role_key,
        "DOCUMENTS_TABLE": documents_table,
        "DOCUMENT_STORE_BACKEND": document_store_backend,
        "GENERATOR_MODEL": generator_model,
        "GENERATOR_TEMPERATURE": generator_temperature,
        "GENERATOR_SYSTEM_PROMPT": generator_system_prompt,
        "BUILD_QUEUE": build_queue,
        "RELAY_BUILD_EVENTS": relay_events,
        "API_BASE_URL": api_base_url,
        "BUILD_LOCK_ENABLED": build_lock_enabled,
        "BUILD_LOCK_URL": build_lock_url,
    }

    config_map = {
        "environment": environment,
        "is_development": is_development,
        "build_deadline_seconds": build_deadline_seconds,
        "generator_max_retries": generator_max_retries,
        "generator_backoff_seconds": generator_backoff_seconds,
        "persistence_retries": persistence_retries,
        "reject_concurrent_builds": reject_concurrent_builds,
        "supabase_url": supabase_url,
        "supabase_anon_key": supabase_anon_key,
        "supabase_service_role_key": supabase_service_role_key,
        "supabase_configured": supabase_configured,
        "documents_table": documents_table,
        "document_store_backend": document_store_backend,
        "generator_model": generator_model,
        "generator_temperature": generator_temperature,
        "generator_system_prompt": generator_system_prompt,
        "build_queue": build_queue,
        "relay_events": relay_events,
        "api_base_url": api_base_url,
        "build_lock_enabled": build_lock_enabled,
        "build_lock_url": build_lock_url,
    }

    return globals_map, config_map


def reload_config() -> None:
    globals_map, config_map = _compute_values()
    globals().update(globals_map)
    CONFIG.__dict__.update(config_map)


def load_envs(global_dir: str) -> None:
    """Load environment variables from the project .env file."""
    from dotenv import load_dotenv

    load_dotenv(os.path.join(global_dir, ".env"))

    # Reload configuration after environment changes
    reload_config()


# Load once on import so downstream modules can use CONFIG immediately.
reload_config()
