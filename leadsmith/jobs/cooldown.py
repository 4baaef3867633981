"""
Error-spike cooldown.

Outbound failures are recorded in a sliding 60 second window kept in
``<data_dir>/cooldown-state.json``. When the window holds
``cooldown.errorThreshold`` errors, scraping pauses for
``cooldown.pauseDuration`` seconds. The pause expires on its own the next
time it is checked.

Everything is a no-op while ``cooldown.enabled`` is false.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from leadsmith.config import Settings, load_settings
from leadsmith.utils.file_lock import locked
from leadsmith.utils.storage import FileStore, parse_z

logger = logging.getLogger(__name__)

COOLDOWN_FILE = "cooldown-state.json"
ERROR_WINDOW_SECONDS = 60


class CooldownState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_paused: bool = Field(False, alias="isPaused")
    paused_at: Optional[str] = Field(None, alias="pausedAt")
    pause_duration: int = Field(0, alias="pauseDuration")  # seconds
    error_count: int = Field(0, alias="errorCount")
    error_window: List[int] = Field(default_factory=list, alias="errorWindow")  # epoch ms
    last_error_at: Optional[str] = Field(None, alias="lastErrorAt")


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CooldownManager:
    """File-backed error window shared by every run using the same data directory."""

    def __init__(
        self,
        store: Optional[FileStore] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store or FileStore()
        self._settings = settings
        self._clock = clock

    @property
    def settings(self) -> Settings:
        return self._settings if self._settings is not None else load_settings()

    def _lock_target(self) -> str:
        return str(self.store.path(COOLDOWN_FILE))

    def _load(self) -> CooldownState:
        data = self.store.read_json(COOLDOWN_FILE)
        if not isinstance(data, dict):
            return CooldownState()
        try:
            return CooldownState.model_validate(data)
        except ValidationError:
            logger.warning("Unreadable cooldown state, starting fresh")
            return CooldownState()

    def _save(self, state: CooldownState) -> None:
        self.store.write_json(COOLDOWN_FILE, state.model_dump(by_alias=True, exclude_none=True))

    def record_error(self) -> None:
        """Add one error to the window and pause when the threshold is reached."""
        cooldown = self.settings.cooldown
        if not cooldown.enabled:
            return

        now = self._clock()
        now_ms = int(now * 1000)
        window_start = now_ms - ERROR_WINDOW_SECONDS * 1000

        with locked(self._lock_target()):
            state = self._load()
            state.error_window = [ts for ts in state.error_window if ts > window_start]
            state.error_window.append(now_ms)
            state.error_count = len(state.error_window)
            state.last_error_at = _iso(now)

            if state.error_count >= cooldown.error_threshold and not state.is_paused:
                state.is_paused = True
                state.paused_at = _iso(now)
                state.pause_duration = cooldown.pause_duration
                logger.warning(
                    f"{state.error_count} errors in {ERROR_WINDOW_SECONDS}s, "
                    f"pausing for {cooldown.pause_duration}s"
                )

            self._save(state)

    def _remaining(self, state: CooldownState) -> float:
        paused_at = parse_z(state.paused_at) if state.paused_at else None
        if paused_at is None:
            return 0.0
        elapsed = self._clock() - paused_at.timestamp()
        return max(0.0, state.pause_duration - elapsed)

    def is_in_cooldown(self) -> bool:
        """True while paused. An expired pause is cleared as a side effect."""
        if not self.settings.cooldown.enabled:
            return False

        state = self._load()
        if not state.is_paused:
            return False

        if self._remaining(state) <= 0:
            logger.info("Cooldown expired, resuming")
            self.clear()
            return False
        return True

    def status(self) -> dict:
        state = self._load()
        if not state.is_paused or not state.paused_at:
            return {"isPaused": False, "errorCount": state.error_count}
        return {
            "isPaused": True,
            "pausedAt": state.paused_at,
            "remainingSeconds": math.ceil(self._remaining(state)),
            "errorCount": state.error_count,
        }

    def clear(self) -> None:
        with locked(self._lock_target()):
            self._save(CooldownState())
