"""Objects that are shared across multiple modules."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple

from ball_launcher.errors import CommandFailure

if TYPE_CHECKING:
    from ball_launcher.codec import AckFrame, MachineCommand

Point = Tuple[float, float]


@dataclass(frozen=True)
class PositionSample:
    """A smoothed court position (meters) and the time it was measured."""
    point: Point
    timestamp: float


@dataclass(frozen=True)
class CommandResult:
    """
    Outcome of one command sent over the link.
    Exactly one of ``ack`` (success) or ``error`` (failure) is meaningful.
    """
    command: "MachineCommand"
    ack: Optional["AckFrame"] = None
    error: Optional[CommandFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def outcome(self) -> str:
        if self.error is None:
            return self.ack.code.name.lower() if self.ack else "ok"
        return type(self.error).__name__


class PlannerMode(str, Enum):
    MANUAL = "manual"
    INTERACTIVE = "interactive"


@dataclass(frozen=True)
class PlannerSnapshot:
    """Read-only view of the planner for status displays."""
    mode: PlannerMode
    active: bool
    ball_speed_mph: int
    spin: str
    launch_interval_s: float
    averaging_window_s: float
    feed_percent: int
    last_zone: Optional[int]
    last_target: Optional[Point]
    last_outcome: Optional[str]
    commands_sent: int
