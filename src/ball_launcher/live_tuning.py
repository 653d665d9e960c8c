# live_tuning.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Tuple

from ball_launcher.planner import CommandPlanner

logger = logging.getLogger(__name__)

# JSON key -> planner setter
PLANNER_KEYS = {
    "ball_speed_mph": "set_ball_speed",
    "spin": "set_spin",
    "launch_interval_s": "set_launch_interval",
    "feed_percent": "set_feed",
    "active": "set_active",
    "mode": "set_mode",
}


class RuntimeParamWatcher:
    """Watch a JSON file and hot-reload its contents when it changes."""

    def __init__(self, path: str | Path = "runtime_params.json") -> None:
        self.path = Path(path).expanduser().resolve()
        self._stamp: Tuple[float, int] = (0.0, -1)  # (mtime, size)
        self.params: Dict[str, Any] = {}

        logger.info(f"Watching {self.path}")
        self._load(initial=True)

    # ------------------------------------------------------------------
    #   Internal helpers
    # ------------------------------------------------------------------
    def _load(self, *, initial: bool = False) -> None:
        try:
            with self.path.open("r", encoding="utf-8") as fp:
                params = json.load(fp)
            stat = self.path.stat()
            self._stamp = (stat.st_mtime, stat.st_size)
        except FileNotFoundError:
            if initial:
                logger.info(f"{self.path} not found – live-tuning disabled (create the file to enable)")
            else:
                logger.warning(f"{self.path} was deleted – keeping old params")
            return
        except json.JSONDecodeError as exc:
            logger.warning(f"JSON error in {self.path}: {exc}")
            return
        if not isinstance(params, dict):
            logger.warning(f"{self.path} must hold a JSON object, got {type(params).__name__}")
            return
        self.params = params
        if not initial:
            logger.info(f"Reloaded parameters from {self.path}")

    # ------------------------------------------------------------------
    #   Public API
    # ------------------------------------------------------------------
    def maybe_reload(self) -> bool:
        """
        If the watched file changed since the last call reload it and
        return **True**, else return **False**.
        """
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return False

        mtime, fsize = self._stamp
        # Coarse filesystem timestamps: treat a size change or >=1 s as modified
        if stat.st_size != fsize or stat.st_mtime - mtime >= 1.0:
            self._load()
            return True
        return False

    def get(self, key: str, default: Any | None = None) -> Any:
        return self.params.get(key, default)

    def apply_to(self, planner: CommandPlanner) -> int:
        """Push every known key into ``planner``; returns how many applied."""
        applied = 0
        for key, setter in PLANNER_KEYS.items():
            if key not in self.params:
                continue
            try:
                getattr(planner, setter)(self.params[key])
                applied += 1
            except (TypeError, ValueError) as exc:
                logger.warning(f"Ignoring {key}={self.params[key]!r}: {exc}")
        return applied
