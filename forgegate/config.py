import os
from dataclasses import dataclass

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    data_path: str = "forgegate_data.json"
    # Used for merges on repositories that do not configure their own count
    default_required_approvals: int = 1
    # Let collaborators with write access keep commenting on locked threads
    locked_comments_allow_writers: bool = True
    conflict_retries: int = 3


def _env_int(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in _TRUTHY


def load_settings() -> Settings:
    data_path = os.getenv("FORGEGATE_DATA_PATH", "").strip()
    return Settings(
        data_path=data_path or Settings.data_path,
        default_required_approvals=_env_int("FORGEGATE_REQUIRED_APPROVALS", 1, 1),
        locked_comments_allow_writers=_env_bool(
            "FORGEGATE_LOCKED_COMMENTS_ALLOW_WRITERS", True
        ),
        conflict_retries=_env_int("FORGEGATE_CONFLICT_RETRIES", 3, 0),
    )
