"""Decides when to launch a ball and where to aim it."""
from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Deque, List, Optional, Protocol

from ball_launcher.codec import MachineCommand, SpinMode, build_command, quantize_speed
from ball_launcher.common import (
    CommandResult,
    PlannerMode,
    PlannerSnapshot,
    Point,
    PositionSample,
)
from ball_launcher.config import CourtConfig, PlannerConfig
from ball_launcher.errors import LinkError
from ball_launcher.zones import zone_id

logger = logging.getLogger(__name__)

MIN_LAUNCH_INTERVAL_S = 2.0
MAX_LAUNCH_INTERVAL_S = 9.0
# Averaging window = min(interval * fraction, cap); plain arithmetic mean over it
AVERAGING_WINDOW_FRACTION = 1.0 / 3.0
AVERAGING_WINDOW_CAP_S = 1.0
BUFFER_MAX_SAMPLES = 512


def averaging_window(launch_interval_s: float) -> float:
    return min(launch_interval_s * AVERAGING_WINDOW_FRACTION, AVERAGING_WINDOW_CAP_S)


class CommandSink(Protocol):
    def send(self, command: MachineCommand, on_complete: Optional[Callable[[CommandResult], None]] = None) -> None: ...


class CommandPlanner:
    """
    Buffers smoothed positions and turns them into launcher commands.

    In interactive mode a command goes out on the first sample that arrives
    at least ``launch_interval_s`` after the previous send, aimed at the mean
    of the samples inside the averaging window. In manual mode the operator
    picks the target and the buffer is bypassed.
    """

    def __init__(self, link: CommandSink, court: CourtConfig, cfg: Optional[PlannerConfig] = None):
        cfg = cfg or PlannerConfig()
        self.link = link
        self.court = court

        self._buffer: Deque[PositionSample] = deque(maxlen=BUFFER_MAX_SAMPLES)
        self._mode = PlannerMode.INTERACTIVE if cfg.interactive else PlannerMode.MANUAL
        self._active = cfg.start_active
        self._speed = quantize_speed(cfg.ball_speed_mph)
        self._spin = SpinMode.parse(cfg.spin)
        self._feed = int(cfg.feed_percent)
        self._interval = self._check_interval(cfg.launch_interval_s)
        self._window = averaging_window(self._interval)

        self._last_send: Optional[float] = None
        self._last_zone: Optional[int] = None
        self._last_target: Optional[Point] = None
        self._last_result: Optional[CommandResult] = None
        self._commands_sent = 0
        self._observers: List[Callable[[PlannerSnapshot], None]] = []

    # ---------------- Observable state ----------------
    @property
    def mode(self) -> PlannerMode:
        return self._mode

    @property
    def active(self) -> bool:
        return self._active

    @property
    def launch_interval_s(self) -> float:
        return self._interval

    @property
    def averaging_window_s(self) -> float:
        return self._window

    @property
    def ball_speed_mph(self) -> int:
        return self._speed

    @property
    def spin(self) -> SpinMode:
        return self._spin

    @property
    def last_zone(self) -> Optional[int]:
        return self._last_zone

    @property
    def last_result(self) -> Optional[CommandResult]:
        return self._last_result

    @property
    def buffered_samples(self) -> int:
        return len(self._buffer)

    def snapshot(self) -> PlannerSnapshot:
        return PlannerSnapshot(
            mode=self._mode,
            active=self._active,
            ball_speed_mph=self._speed,
            spin=self._spin.label,
            launch_interval_s=self._interval,
            averaging_window_s=self._window,
            feed_percent=self._feed,
            last_zone=self._last_zone,
            last_target=self._last_target,
            last_outcome=self._last_result.outcome if self._last_result else None,
            commands_sent=self._commands_sent,
        )

    def add_observer(self, callback: Callable[[PlannerSnapshot], None]) -> None:
        self._observers.append(callback)

    def _notify(self) -> None:
        if not self._observers:
            return
        snap = self.snapshot()
        for cb in self._observers:
            cb(snap)

    # ---------------- Operator settings ----------------
    @staticmethod
    def _check_interval(seconds: float) -> float:
        seconds = float(seconds)
        if not MIN_LAUNCH_INTERVAL_S <= seconds <= MAX_LAUNCH_INTERVAL_S:
            raise ValueError(
                f"Launch interval {seconds}s outside "
                f"{MIN_LAUNCH_INTERVAL_S:g}-{MAX_LAUNCH_INTERVAL_S:g}s"
            )
        return seconds

    def set_launch_interval(self, seconds: float) -> None:
        self._interval = self._check_interval(seconds)
        self._window = averaging_window(self._interval)
        logger.info(f"Launch interval {self._interval:.1f}s, averaging window {self._window:.2f}s")
        self._notify()

    def set_ball_speed(self, mph: float) -> None:
        self._speed = quantize_speed(mph)
        self._notify()

    def set_spin(self, spin: "SpinMode | str | int") -> None:
        self._spin = SpinMode.parse(spin)
        self._notify()

    def set_feed(self, percent: int) -> None:
        self._feed = max(0, min(100, int(percent)))
        self._notify()

    def set_active(self, active: bool) -> None:
        # "false" from a hand-edited JSON file must not switch the launcher on
        if not isinstance(active, bool):
            raise TypeError(f"active must be true or false, got {active!r}")
        if active != self._active:
            logger.info(f"Launcher {'activated' if active else 'paused'}")
        self._active = bool(active)
        self._notify()

    def set_mode(self, mode: "PlannerMode | str") -> None:
        mode = PlannerMode(mode)
        if mode is not self._mode:
            logger.info(f"Planner mode {self._mode.value} -> {mode.value}")
        # Never average samples gathered under the other mode
        self._buffer.clear()
        self._mode = mode
        self._notify()

    def clear(self) -> None:
        self._buffer.clear()

    # ---------------- Interactive ----------------
    def _prune(self, now: float) -> None:
        while self._buffer and now - self._buffer[0].timestamp > self._window:
            self._buffer.popleft()

    def estimate(self) -> Optional[Point]:
        if not self._buffer:
            return None
        n = len(self._buffer)
        return (
            sum(s.point[0] for s in self._buffer) / n,
            sum(s.point[1] for s in self._buffer) / n,
        )

    def on_position(self, point: Point, timestamp: float) -> Optional[MachineCommand]:
        """Feed one smoothed position; returns the command if one was sent."""
        if self._mode is not PlannerMode.INTERACTIVE:
            return None
        self._buffer.append(PositionSample((float(point[0]), float(point[1])), timestamp))
        self._prune(timestamp)

        if not self._active:
            return None
        if self._last_send is not None and timestamp - self._last_send < self._interval:
            return None

        target = self.estimate()
        if target is None:
            logger.warning("No recent positions to average")
            return None
        return self._dispatch(target, timestamp)

    # ---------------- Manual ----------------
    def send_manual(self, point: Point, timestamp: Optional[float] = None) -> Optional[MachineCommand]:
        """Aim straight at ``point`` and send now."""
        return self._dispatch((float(point[0]), float(point[1])), timestamp)

    # ---------------- Shared send path ----------------
    def build(self, target: Point) -> MachineCommand:
        return build_command(target, self._speed, self._spin, self.court, feed=self._feed)

    def _dispatch(self, target: Point, timestamp: Optional[float]) -> Optional[MachineCommand]:
        zone = zone_id(target, self.court)
        command = self.build(target)
        try:
            self.link.send(command, self._on_complete)
        except LinkError as exc:
            logger.debug(f"Send skipped: {exc}")
            return None

        if timestamp is not None:
            self._last_send = timestamp
        self._last_zone = zone
        self._last_target = target
        self._commands_sent += 1
        logger.info(
            f"Target ({target[0]:.2f}m, {target[1]:.2f}m) zone "
            f"{zone if zone is not None else 'none'} -> {command}"
        )
        self._notify()
        return command

    def _on_complete(self, result: CommandResult) -> None:
        # Failures are not retried; the next launch slot simply comes round
        self._last_result = result
        self._notify()
