"""Configuration for the breakdown editor.

Defaults mirror the original editor; every value can be overridden through
``BREAKDOWN_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

# Card stacking used for new sub-steps: x = CARD_MARGIN, y = count * CARD_SPACING + CARD_MARGIN
CARD_MARGIN = 10
CARD_SPACING = 90

DEFAULT_CANVAS_WIDTH = 1200
DEFAULT_CANVAS_HEIGHT = 800

MAX_ATTACHMENT_MB = 5
MEBIBYTE = 1024 * 1024

# Missing dates sort after every concrete ISO date
DATE_SENTINEL = "9999-12-31"

DEFAULT_SUB_STEP_TEXT = "New sub-step"
DEFAULT_ACTION_ITEM_TEXT = "New action item"

STORAGE_DIR_ENV = "BREAKDOWN_STORAGE_DIR"
PROJECT_ROOT_ENV = "BREAKDOWN_PROJECT_ROOT"
DEFAULT_STORAGE_DIR = ".breakdown"


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got '{raw}'")
    if value <= 0:
        raise ValueError(f"Environment variable {name} must be positive, got {value}")
    return value


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime settings for editing sessions and the MCP server."""

    max_attachment_bytes: int = MAX_ATTACHMENT_MB * MEBIBYTE
    canvas_width: int = DEFAULT_CANVAS_WIDTH
    canvas_height: int = DEFAULT_CANVAS_HEIGHT
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    storage_dir: str = DEFAULT_STORAGE_DIR

    @property
    def max_attachment_mb(self) -> float:
        return self.max_attachment_bytes / MEBIBYTE

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables."""
        env = os.environ if env is None else env
        log_file = env.get("BREAKDOWN_LOG_FILE")
        return cls(
            max_attachment_bytes=_env_int(env, "BREAKDOWN_MAX_ATTACHMENT_MB", MAX_ATTACHMENT_MB) * MEBIBYTE,
            canvas_width=_env_int(env, "BREAKDOWN_CANVAS_WIDTH", DEFAULT_CANVAS_WIDTH),
            canvas_height=_env_int(env, "BREAKDOWN_CANVAS_HEIGHT", DEFAULT_CANVAS_HEIGHT),
            log_level=(env.get("BREAKDOWN_LOG_LEVEL") or "INFO").upper(),
            log_file=Path(log_file).expanduser() if log_file else None,
            storage_dir=env.get(STORAGE_DIR_ENV) or DEFAULT_STORAGE_DIR,
        )
