"""Glue logic that wires detections → homography → filter → planner → link."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from ball_launcher.codec import MachineCommand
from ball_launcher.common import CommandResult, PlannerSnapshot, Point
from ball_launcher.config import (
    CourtConfig,
    FilterConfig,
    HomographyConfig,
    LinkConfig,
    PlannerConfig,
    PositionLogConfig,
)
from ball_launcher.errors import CalibrationError, LinkError, ProjectionError
from ball_launcher.homography import CalibrationSet, HomographyEngine
from ball_launcher.link import LinkSession, LinkState, Scheduler, Transport
from ball_launcher.live_tuning import RuntimeParamWatcher
from ball_launcher.planner import CommandPlanner
from ball_launcher.position_log import PositionCsvLog
from ball_launcher.tracker import build_position_filter

logger = logging.getLogger(__name__)

Detection = Tuple[float, Optional[Point]]


@dataclass(frozen=True)
class CalibrationResult:
    ok: bool
    calibration: Optional[CalibrationSet] = None
    error: Optional[CalibrationError] = None
    max_error_m: Optional[float] = None


@dataclass(frozen=True)
class ControllerStatus:
    link_state: LinkState
    last_command_outcome: Optional[str]
    calibrated: bool
    position: Optional[Point]
    velocity: Optional[Tuple[float, float]]
    planner: PlannerSnapshot


class LauncherController:
    """The main high-level orchestrator. Everything runs on one event loop."""

    def __init__(
        self,
        transport: Transport,
        scheduler: Scheduler,
        court_cfg: Optional[CourtConfig] = None,
        homography_cfg: Optional[HomographyConfig] = None,
        filter_cfg: Optional[FilterConfig] = None,
        planner_cfg: Optional[PlannerConfig] = None,
        link_cfg: Optional[LinkConfig] = None,
        log_cfg: Optional[PositionLogConfig] = None,
    ):
        # Save configs
        self.court_cfg = court_cfg or CourtConfig()
        self.filter_cfg = filter_cfg or FilterConfig()

        # Build sub-systems
        self.engine = HomographyEngine(self.court_cfg, homography_cfg)
        self.filter = build_position_filter(self.filter_cfg)
        self.link = LinkSession(transport, scheduler, link_cfg)
        self.planner = CommandPlanner(self.link, self.court_cfg, planner_cfg)
        self.position_log = PositionCsvLog(log_cfg or PositionLogConfig())

        # Runtime bookkeeping
        self.raw_position: Optional[Point] = None
        self.position: Optional[Point] = None
        self.frames_seen = 0
        self.frames_used = 0

    # ---------------------------------------------------------------------
    #                         Setup / teardown
    # ---------------------------------------------------------------------
    def start(self) -> None:
        self.link.start()

    def shutdown(self) -> None:
        logger.info(
            f"Shutting down: {self.frames_used}/{self.frames_seen} frames used, "
            f"{self.link.commands_sent} command(s) sent"
        )
        self.link.close()

    # ---------------------------------------------------------------------
    #                            Calibration
    # ---------------------------------------------------------------------
    def calibrate(self, taps: Sequence[Point]) -> CalibrationResult:
        """Four corner taps, or four corners plus the T-point."""
        try:
            if len(taps) == 4:
                calibration = CalibrationSet.from_corners(taps, self.court_cfg)
            else:
                calibration = CalibrationSet.from_taps(taps, self.court_cfg)
        except CalibrationError as exc:
            logger.error(f"Calibration failed: {exc}")
            return CalibrationResult(ok=False, error=exc)
        return self.calibrate_set(calibration)

    def calibrate_set(self, calibration: CalibrationSet) -> CalibrationResult:
        try:
            self.engine.calibrate(calibration)
        except CalibrationError as exc:
            logger.error(f"Calibration failed: {exc}")
            return CalibrationResult(ok=False, calibration=calibration, error=exc)

        # Old court positions mean nothing under the new transform
        self.filter.reset()
        self.planner.clear()
        self.position_log.reset()
        self.raw_position = self.position = None
        return CalibrationResult(
            ok=True, calibration=calibration, max_error_m=self.engine.reprojection_error()
        )

    # ---------------------------------------------------------------------
    #                        Per-detection pipeline
    # ---------------------------------------------------------------------
    def on_detection(self, pixel: Optional[Point], timestamp: float) -> Optional[Point]:
        """
        One vision result. ``None`` means nothing was detected in that
        frame and leaves all state untouched.
        """
        self.frames_seen += 1
        if pixel is None:
            return None
        if not self.engine.is_calibrated:
            logger.debug("Detection ignored: court not calibrated")
            return None
        try:
            raw = self.engine.project(pixel)
        except ProjectionError as exc:
            logger.warning(f"Detection dropped: {exc}")
            return None

        smoothed = self.filter.update(raw, timestamp)
        self.raw_position, self.position = raw, smoothed
        self.frames_used += 1
        self.position_log.record(raw, timestamp)
        logger.debug(
            f"Player ({smoothed[0]:.2f}m, {smoothed[1]:.2f}m) "
            f"speed {self.filter.speed:.2f} m/s"
        )
        self.planner.on_position(smoothed, timestamp)
        return smoothed

    def manual_target(self, point: Point, timestamp: Optional[float] = None) -> Optional[MachineCommand]:
        return self.planner.send_manual(point, timestamp)

    def status(self) -> ControllerStatus:
        return ControllerStatus(
            link_state=self.link.state,
            last_command_outcome=self.link.last_outcome,
            calibrated=self.engine.is_calibrated,
            position=self.position,
            velocity=self.filter.velocity if self.filter.initialized else None,
            planner=self.planner.snapshot(),
        )

    # ---------------------------------------------------------------------
    #                          Event-loop glue
    # ---------------------------------------------------------------------
    def post_detection(
        self, loop: asyncio.AbstractEventLoop, pixel: Optional[Point], timestamp: float
    ) -> None:
        """Thread-safe entry point for a vision thread."""
        loop.call_soon_threadsafe(self.on_detection, pixel, timestamp)

    async def wait_connected(self, timeout: float) -> bool:
        if self.link.state is LinkState.CONNECTED_IDLE:
            return True
        ready = asyncio.Event()
        self.link.add_state_listener(
            lambda _old, new: ready.set() if new is LinkState.CONNECTED_IDLE else None
        )
        try:
            await asyncio.wait_for(ready.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait_idle(self, timeout: float) -> None:
        """Give an in-flight command the chance to resolve."""
        deadline = asyncio.get_running_loop().time() + timeout
        while self.link.state is LinkState.AWAITING_ACK and asyncio.get_running_loop().time() < deadline:
            await asyncio.sleep(0.02)

    async def send_manual_and_wait(self, point: Point) -> Optional[CommandResult]:
        command = self.planner.build(point)
        try:
            return await self.link.submit(command)
        except LinkError as exc:
            logger.error(f"Manual send refused: {exc}")
            return None

    async def replay(
        self,
        detections: Iterable[Detection],
        *,
        pace: bool = True,
        watcher: Optional[RuntimeParamWatcher] = None,
        reload_every_s: float = 0.5,
    ) -> int:
        """
        Feed recorded ``(timestamp, pixel | None)`` pairs through the
        pipeline, optionally at their original pace. Returns frames fed.
        """
        loop = asyncio.get_running_loop()
        t0_wall = loop.time()
        t0_rec: Optional[float] = None
        last_reload = t0_wall
        fed = 0
        for ts, pixel in detections:
            if t0_rec is None:
                t0_rec = ts
            if pace:
                delay = (ts - t0_rec) - (loop.time() - t0_wall)
                if delay > 0:
                    await asyncio.sleep(delay)
            else:
                await asyncio.sleep(0)

            if watcher is not None and loop.time() - last_reload >= reload_every_s:
                last_reload = loop.time()
                if watcher.maybe_reload():
                    watcher.apply_to(self.planner)

            self.on_detection(pixel, ts)
            fed += 1
        return fed
