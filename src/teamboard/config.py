"""Load optional board configuration from `.teamboard/config.yaml`."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .constants import (
    CONFIG_FILE,
    DEFAULT_API_BASE,
    DEFAULT_CONFLICT_WINDOW_MINUTES,
    DEFAULT_IMPORT_MAX_PAGES,
    DEFAULT_IMPORT_PAGE_SIZE,
    DEFAULT_TIMEOUT_SECONDS,
    ENV_API_BASE,
    ENV_WEBHOOK_SECRET,
    STATE_DIR_NAME,
)
from .io_utils import _load_data_with_error


def load_board_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional board config file.

    Args:
        project_dir: Directory holding the ``.teamboard/`` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _as_int(raw: Any, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class BoardSettings:
    """Resolved settings for the sync engine and webhook endpoint."""

    api_base: str = DEFAULT_API_BASE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    conflict_window_minutes: int = DEFAULT_CONFLICT_WINDOW_MINUTES
    auto_push: bool = True
    import_page_size: int = DEFAULT_IMPORT_PAGE_SIZE
    import_max_pages: int = DEFAULT_IMPORT_MAX_PAGES
    webhook_secret: Optional[str] = None

    @property
    def conflict_window(self) -> timedelta:
        return timedelta(minutes=self.conflict_window_minutes)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "BoardSettings":
        """Build settings from a config mapping, then apply environment overrides."""
        sync = _get_nested(config, "sync")
        sync = sync if isinstance(sync, dict) else {}
        auto_push = sync.get("auto_push", True)
        try:
            timeout = float(sync.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
        except (TypeError, ValueError):
            timeout = DEFAULT_TIMEOUT_SECONDS

        secret = _get_nested(config, "webhook", "secret")
        return cls(
            api_base=os.getenv(ENV_API_BASE) or str(sync.get("api_base") or DEFAULT_API_BASE),
            timeout_seconds=timeout,
            conflict_window_minutes=_as_int(sync.get("conflict_window_minutes"), DEFAULT_CONFLICT_WINDOW_MINUTES),
            auto_push=auto_push if isinstance(auto_push, bool) else True,
            import_page_size=_as_int(sync.get("import_page_size"), DEFAULT_IMPORT_PAGE_SIZE),
            import_max_pages=_as_int(sync.get("import_max_pages"), DEFAULT_IMPORT_MAX_PAGES),
            webhook_secret=os.getenv(ENV_WEBHOOK_SECRET) or (str(secret) if secret else None),
        )


def load_settings(project_dir: Path) -> BoardSettings:
    config, err = load_board_config(project_dir)
    if err:
        logger.warning("Ignoring unreadable board config: {}", err)
    return BoardSettings.from_config(config)
