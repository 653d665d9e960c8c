"""
Shared fixtures: a hand-cranked scheduler, a scripted transport and a
synthetic camera looking at the court.
"""
from typing import Any, Callable, List, Optional, Tuple

import numpy as np
import pytest

from ball_launcher.codec import AckCode, encode_ack
from ball_launcher.config import CourtConfig
from ball_launcher.homography import reference_court_points
from ball_launcher.link import Characteristic

COMMAND_CHAR = Characteristic("cmd")
NOTIFY_CHAR = Characteristic("notify")

# Court (metres) -> image (pixels): camera behind the baseline, horizon at v=-800
COURT_TO_IMAGE = np.array(
    [
        [50.0, -19.2, 434.25],
        [0.0, 24.0, 200.0],
        [0.0, -0.03, 1.0],
    ]
)


def to_image(point: Tuple[float, float]) -> Tuple[float, float]:
    u, v, w = COURT_TO_IMAGE @ np.array([point[0], point[1], 1.0])
    return float(u / w), float(v / w)


class _Timer:
    def __init__(self, when: float, callback: Callable[..., Any], args: tuple):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """``call_later`` on a clock that only moves when the test says so."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: List[_Timer] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> _Timer:
        timer = _Timer(self.now + delay, callback, args)
        self._timers.append(timer)
        return timer

    @property
    def armed(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    def advance_to(self, when: float) -> None:
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= when]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback(*timer.args)
        self._timers = [t for t in self._timers if not t.cancelled]
        self.now = max(self.now, when)

    def advance(self, dt: float) -> None:
        self.advance_to(self.now + dt)


class FakeTransport:
    """
    Transport that connects instantly and, if ``auto_ack`` is set, answers
    every write through the scheduler after ``ack_delay`` seconds.
    """

    def __init__(
        self,
        scheduler: Optional[ManualScheduler] = None,
        auto_ack: Optional[AckCode] = None,
        ack_delay: float = 0.05,
        auto_connect: bool = True,
    ):
        self.scheduler = scheduler
        self.auto_ack = auto_ack
        self.ack_delay = ack_delay
        self.auto_connect = auto_connect
        self.listener = None
        self.calls: List[str] = []
        self.writes: List[bytes] = []
        self.write_times: List[float] = []
        self.notify_enabled: Optional[Characteristic] = None

    def bind(self, listener) -> None:
        self.listener = listener

    def start_scan(self) -> None:
        self.calls.append("scan")
        if self.auto_connect:
            self.listener.on_device_found("launcher-01")

    def stop_scan(self) -> None:
        self.calls.append("stop_scan")

    def connect(self, device: str) -> None:
        self.calls.append(f"connect:{device}")
        if self.auto_connect:
            self.listener.on_connected()

    def discover(self) -> None:
        self.calls.append("discover")
        if self.auto_connect:
            self.listener.on_discovered(COMMAND_CHAR, NOTIFY_CHAR)

    def enable_notify(self, characteristic: Characteristic) -> None:
        self.notify_enabled = characteristic

    def write(self, characteristic: Characteristic, data: bytes) -> None:
        assert characteristic == COMMAND_CHAR
        self.writes.append(bytes(data))
        if self.scheduler is not None:
            self.write_times.append(self.scheduler.time())
            if self.auto_ack is not None:
                self.scheduler.call_later(self.ack_delay, self.listener.on_notify, encode_ack(self.auto_ack))

    def disconnect(self) -> None:
        self.calls.append("disconnect")

    # Test helpers
    def deliver(self, data: bytes) -> None:
        self.listener.on_notify(data)

    def drop(self, reason: str = "out of range") -> None:
        self.listener.on_disconnected(reason)


@pytest.fixture
def court():
    return CourtConfig()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def transport(scheduler):
    return FakeTransport(scheduler)


@pytest.fixture
def image_reference_points(court):
    """Exact image positions of the eight court reference points."""
    return tuple(to_image(p) for p in reference_court_points(court))


@pytest.fixture
def taps(image_reference_points):
    """The five operator taps: four corners and the T-point."""
    return image_reference_points[:5]
