import os
from dataclasses import dataclass

from dotenv import load_dotenv

ENV_PREFIX = "FLOWGRAPH_"


@dataclass
class EngineSettings:
    log_level: str = "INFO"
    branch_tracking: bool = True
    check_types_on_connect: bool = False
    undo_limit: int | None = None
    max_concurrency: int | None = None


def _env(name: str) -> str | None:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _env_positive_int(name: str) -> int | None:
    value = _env(name)
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from e
    if parsed <= 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be positive, got {parsed}")
    return parsed


def load_settings() -> EngineSettings:
    """
    Loads engine settings from FLOWGRAPH_* environment variables (and a .env file, if present).
    """
    load_dotenv()

    return EngineSettings(
        log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        branch_tracking=_env_bool("BRANCH_TRACKING", True),
        check_types_on_connect=_env_bool("CHECK_TYPES_ON_CONNECT", False),
        undo_limit=_env_positive_int("UNDO_LIMIT"),
        max_concurrency=_env_positive_int("MAX_CONCURRENCY"),
    )
