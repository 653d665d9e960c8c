"""
Binary frames exchanged with the launcher firmware.

Outbound command (10 bytes)::

    5A A5 83 | upper% lower% pitch° yaw° feed% control | crc

Inbound acknowledgement (5 bytes)::

    5A A5 82 | code | crc

``crc`` is the low byte of CRC16/MODBUS over every preceding byte.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Tuple

from ball_launcher.checksum import crc_low_byte
from ball_launcher.common import Point
from ball_launcher.config import CourtConfig
from ball_launcher.errors import ChecksumMismatch, MalformedFrame

HEADER = (0x5A, 0xA5)
COMMAND_SOURCE = 0x83
ACK_SOURCE = 0x82
COMMAND_LENGTH = 10
ACK_LENGTH = 5

MAX_SPEED_MPH = 80
MIN_SPEED_MPH = 20
SPEED_STEP_MPH = 10
DEFAULT_FEED_PERCENT = 50
MAX_ANGLE_DEG = 90

_TOPSPIN_BOOST = 0.5
_TOPSPIN_CUT = 0.3


# ------------------- Enums -------------------
class SpinMode(Enum):
    FLAT = 0
    TOPSPIN = 1
    EXTREME_TOPSPIN = 2
    BACKSPIN = -1
    EXTREME_BACKSPIN = -2

    @property
    def code(self) -> int:
        return self.value

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()

    @classmethod
    def parse(cls, value: "SpinMode | str | int") -> "SpinMode":
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        key = str(value).strip().upper().replace(" ", "_").replace("-", "_")
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Unknown spin mode {value!r}") from None


class AckCode(IntEnum):
    REJECTED = 0
    ACCEPTED = 1
    COMPLETED = 2

    @property
    def success(self) -> bool:
        return self is not AckCode.REJECTED


# ------------------- Frames -------------------
@dataclass(frozen=True)
class MachineCommand:
    upper_wheel: int
    lower_wheel: int
    pitch: int
    yaw: int
    feed: int = DEFAULT_FEED_PERCENT
    control: int = 1
    crc: int = field(init=False)

    def __post_init__(self) -> None:
        for name, hi in (
            ("upper_wheel", 100),
            ("lower_wheel", 100),
            ("pitch", MAX_ANGLE_DEG),
            ("yaw", MAX_ANGLE_DEG),
            ("feed", 100),
            ("control", 1),
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= hi:
                raise ValueError(f"{name}={value!r} outside 0..{hi}")
        object.__setattr__(self, "crc", crc_low_byte(self._payload()))

    def _payload(self) -> bytes:
        return bytes(
            (
                *HEADER,
                COMMAND_SOURCE,
                self.upper_wheel,
                self.lower_wheel,
                self.pitch,
                self.yaw,
                self.feed,
                self.control,
            )
        )

    def to_bytes(self) -> bytes:
        return self._payload() + bytes((self.crc,))

    def __str__(self) -> str:
        return (
            f"wheels={self.upper_wheel}/{self.lower_wheel}% "
            f"pitch={self.pitch}° yaw={self.yaw}° feed={self.feed}% "
            f"{'start' if self.control else 'stop'}"
        )


@dataclass(frozen=True)
class AckFrame:
    code: AckCode
    crc: int

    @property
    def success(self) -> bool:
        return self.code.success


def encode_ack(code: AckCode | int) -> bytes:
    """Firmware side of the protocol; used by loopback rigs and tests."""
    body = bytes((*HEADER, ACK_SOURCE, int(code)))
    return body + bytes((crc_low_byte(body),))


def decode_ack(frame: bytes) -> AckFrame:
    frame = bytes(frame)
    if len(frame) != ACK_LENGTH:
        raise MalformedFrame(f"Expected {ACK_LENGTH} bytes, got {len(frame)}: {frame.hex()}")
    if tuple(frame[:2]) != HEADER or frame[2] != ACK_SOURCE:
        raise MalformedFrame(f"Bad header: {frame.hex()}")
    expected = crc_low_byte(frame[:4])
    if frame[4] != expected:
        raise ChecksumMismatch(f"CRC {frame[4]:#04x} != {expected:#04x} in {frame.hex()}")
    try:
        code = AckCode(frame[3])
    except ValueError:
        raise MalformedFrame(f"Unknown response code {frame[3]}") from None
    return AckFrame(code=code, crc=frame[4])


# ------------------- Parameter mapping -------------------
def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def quantize_speed(mph: float) -> int:
    """Snap to the 20..80 mph ladder in 10 mph steps."""
    steps = _round_half_up((_clamp(mph, MIN_SPEED_MPH, MAX_SPEED_MPH) - MIN_SPEED_MPH) / SPEED_STEP_MPH)
    return MIN_SPEED_MPH + steps * SPEED_STEP_MPH


def speed_to_wheel(mph: float) -> int:
    return _round_half_up(_clamp(mph / MAX_SPEED_MPH * 100.0, 0.0, 100.0))


def apply_spin(upper: float, lower: float, spin: SpinMode) -> Tuple[int, int]:
    """Differential wheel speeds; topspin favours the upper wheel, backspin the lower."""
    s = spin.code
    if s > 0:
        upper, lower = upper * (1 + s * _TOPSPIN_BOOST), lower * (1 - s * _TOPSPIN_CUT)
    elif s < 0:
        m = -s
        upper, lower = upper * (1 - m * _TOPSPIN_CUT), lower * (1 + m * _TOPSPIN_BOOST)
    return (
        _round_half_up(_clamp(upper, 0.0, 100.0)),
        _round_half_up(_clamp(lower, 0.0, 100.0)),
    )


def position_to_angles(point: Point, court: CourtConfig) -> Tuple[int, int]:
    """Return ``(yaw, pitch)`` in whole degrees for a court position."""
    nx = _clamp(point[0] / court.width_m, 0.0, 1.0)
    ny = _clamp(point[1] / court.length_m, 0.0, 1.0)
    yaw = _round_half_up(nx * MAX_ANGLE_DEG)
    pitch = _round_half_up(ny * MAX_ANGLE_DEG)
    return int(_clamp(yaw, 0, MAX_ANGLE_DEG)), int(_clamp(pitch, 0, MAX_ANGLE_DEG))


def build_command(
    point: Point,
    speed_mph: float,
    spin: SpinMode,
    court: CourtConfig,
    *,
    feed: int = DEFAULT_FEED_PERCENT,
    start: bool = True,
) -> MachineCommand:
    base = speed_to_wheel(speed_mph)
    upper, lower = apply_spin(base, base, spin)
    yaw, pitch = position_to_angles(point, court)
    return MachineCommand(
        upper_wheel=upper,
        lower_wheel=lower,
        pitch=pitch,
        yaw=yaw,
        feed=int(_clamp(feed, 0, 100)),
        control=1 if start else 0,
    )
