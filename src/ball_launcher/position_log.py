"""Throttled CSV log of projected player positions."""
from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Optional

from ball_launcher.common import Point
from ball_launcher.config import PositionLogConfig

logger = logging.getLogger(__name__)

HEADER = ("timestamp", "x", "y")


class PositionCsvLog:
    def __init__(self, cfg: PositionLogConfig):
        self.cfg = cfg
        self.path: Optional[Path] = Path(cfg.path).expanduser() if cfg.path else None
        self._last: Optional[float] = None

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def record(self, point: Point, timestamp: float) -> bool:
        """Append a row unless one was written less than ``min_interval_s`` ago."""
        if self.path is None:
            return False
        if self._last is not None and timestamp - self._last < self.cfg.min_interval_s:
            return False
        self._last = timestamp

        new_file = not self.path.exists()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", newline="", encoding="utf-8") as fp:
                writer = csv.writer(fp)
                if new_file:
                    writer.writerow(HEADER)
                writer.writerow((f"{timestamp:.3f}", f"{point[0]:.3f}", f"{point[1]:.3f}"))
        except OSError as exc:
            logger.error(f"CSV write error: {exc}")
            return False
        return True

    def reset(self) -> None:
        """Start a fresh file (called after every calibration)."""
        self._last = None
        if self.path is not None and self.path.exists():
            self.path.unlink()
            logger.info(f"Deleted {self.path} to start fresh")
