"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration."""

    database_path: str = "./data/gvflow.db"
    log_level: str = "INFO"

    # Variable resolution
    resolver_max_depth: int = 5
    deduplicate_variables: bool = False

    # Live client connections
    heartbeat_seconds: float = 15.0
    client_cleanup_seconds: float = 60.0
    client_idle_timeout_seconds: float = 180.0

    # Orphaned variable reconciliation
    reconcile_seconds: float = 600.0

    # Workflow execution
    max_node_dispatches: int = 200

    # AI chat collaborator
    anthropic_api_key: str | None = None
    ai_model: str = "claude-sonnet-4-5"
    ai_timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        return cls(
            database_path=os.getenv("DATABASE_PATH", cls.database_path),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            resolver_max_depth=_env_int("GV_RESOLVER_MAX_DEPTH", cls.resolver_max_depth),
            deduplicate_variables=_env_bool(
                "GV_DEDUPLICATE_VARIABLES", cls.deduplicate_variables
            ),
            heartbeat_seconds=_env_float("GV_HEARTBEAT_SECONDS", cls.heartbeat_seconds),
            client_cleanup_seconds=_env_float(
                "GV_CLIENT_CLEANUP_SECONDS", cls.client_cleanup_seconds
            ),
            client_idle_timeout_seconds=_env_float(
                "GV_CLIENT_IDLE_TIMEOUT_SECONDS", cls.client_idle_timeout_seconds
            ),
            reconcile_seconds=_env_float("GV_RECONCILE_SECONDS", cls.reconcile_seconds),
            max_node_dispatches=_env_int("GV_MAX_NODE_DISPATCHES", cls.max_node_dispatches),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            ai_model=os.getenv("GV_AI_MODEL", cls.ai_model),
            ai_timeout_seconds=_env_float("GV_AI_TIMEOUT_SECONDS", cls.ai_timeout_seconds),
        )
