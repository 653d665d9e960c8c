"""
Tests for the checksum and the command / acknowledgement frames.
"""
import pytest

from ball_launcher.checksum import crc16_modbus, crc_low_byte, verify
from ball_launcher.codec import (
    AckCode,
    MachineCommand,
    SpinMode,
    apply_spin,
    build_command,
    decode_ack,
    encode_ack,
    position_to_angles,
    quantize_speed,
    speed_to_wheel,
)
from ball_launcher.errors import ChecksumMismatch, MalformedFrame

REFERENCE_PAYLOAD = bytes([0x5A, 0xA5, 0x83, 50, 50, 45, 45, 50, 1])


# ============================================================================
# Checksum
# ============================================================================

def test_crc16_modbus_check_value():
    # Catalogue check value for CRC-16/MODBUS
    assert crc16_modbus(b"123456789") == 0x4B37
    assert crc_low_byte(b"123456789") == 0x37


def test_crc_is_deterministic():
    first = crc_low_byte(REFERENCE_PAYLOAD)
    assert all(crc_low_byte(REFERENCE_PAYLOAD) == first for _ in range(10))
    assert MachineCommand(50, 50, 45, 45, 50, 1).crc == first


def test_single_bit_flip_changes_crc():
    reference = crc_low_byte(REFERENCE_PAYLOAD)
    for i in range(len(REFERENCE_PAYLOAD)):
        for bit in range(8):
            corrupted = bytearray(REFERENCE_PAYLOAD)
            corrupted[i] ^= 1 << bit
            assert crc_low_byte(corrupted) != reference, (i, bit)


def test_verify():
    frame = REFERENCE_PAYLOAD + bytes([crc_low_byte(REFERENCE_PAYLOAD)])
    assert verify(frame)
    assert not verify(frame[:-1] + bytes([frame[-1] ^ 0x01]))
    assert not verify(b"\x5a")


# ============================================================================
# Outbound command
# ============================================================================

def test_command_layout():
    cmd = MachineCommand(upper_wheel=70, lower_wheel=30, pitch=20, yaw=80, feed=55, control=1)
    raw = cmd.to_bytes()
    assert len(raw) == 10
    assert list(raw[:9]) == [0x5A, 0xA5, 0x83, 70, 30, 20, 80, 55, 1]
    assert raw[9] == cmd.crc == crc_low_byte(raw[:9])


def test_command_is_immutable():
    cmd = MachineCommand(50, 50, 45, 45)
    with pytest.raises(AttributeError):
        cmd.yaw = 10


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(upper_wheel=101, lower_wheel=0, pitch=0, yaw=0),
        dict(upper_wheel=0, lower_wheel=0, pitch=91, yaw=0),
        dict(upper_wheel=0, lower_wheel=0, pitch=0, yaw=-1),
        dict(upper_wheel=0, lower_wheel=0, pitch=0, yaw=0, control=2),
    ],
)
def test_command_rejects_out_of_range_fields(kwargs):
    with pytest.raises(ValueError):
        MachineCommand(**kwargs)


def test_speed_mapping():
    assert speed_to_wheel(80) == 100
    assert speed_to_wheel(20) == 25
    assert speed_to_wheel(50) == 63
    assert speed_to_wheel(120) == 100
    assert speed_to_wheel(0) == 0


@pytest.mark.parametrize("mph,expected", [(57, 60), (54, 50), (10, 20), (100, 80), (80, 80)])
def test_speed_quantization(mph, expected):
    assert quantize_speed(mph) == expected


def test_spin_differential():
    assert apply_spin(63, 63, SpinMode.FLAT) == (63, 63)
    assert apply_spin(63, 63, SpinMode.TOPSPIN) == (95, 44)
    assert apply_spin(63, 63, SpinMode.EXTREME_TOPSPIN) == (100, 25)
    assert apply_spin(63, 63, SpinMode.BACKSPIN) == (44, 95)
    assert apply_spin(63, 63, SpinMode.EXTREME_BACKSPIN) == (25, 100)


def test_spin_parse():
    assert SpinMode.parse("extreme_topspin") is SpinMode.EXTREME_TOPSPIN
    assert SpinMode.parse("Extreme Backspin") is SpinMode.EXTREME_BACKSPIN
    assert SpinMode.parse(-1) is SpinMode.BACKSPIN
    with pytest.raises(ValueError):
        SpinMode.parse("sidespin")


def test_position_to_angles(court):
    assert position_to_angles((court.width_m / 2, court.length_m / 2), court) == (45, 45)
    assert position_to_angles((0.0, 0.0), court) == (0, 0)
    assert position_to_angles((court.width_m, court.length_m), court) == (90, 90)
    # Outside the court: clamped
    assert position_to_angles((-1.0, court.length_m + 3.0), court) == (0, 90)


def test_build_command(court):
    cmd = build_command((court.width_m / 2, court.length_m / 2), 80, SpinMode.FLAT, court)
    assert (cmd.upper_wheel, cmd.lower_wheel, cmd.yaw, cmd.pitch) == (100, 100, 45, 45)
    assert cmd.feed == 50 and cmd.control == 1

    stop = build_command((0.0, 0.0), 40, SpinMode.FLAT, court, feed=30, start=False)
    assert stop.control == 0 and stop.feed == 30


# ============================================================================
# Inbound acknowledgement
# ============================================================================

@pytest.mark.parametrize("code", list(AckCode))
def test_ack_decode(code):
    frame = encode_ack(code)
    assert len(frame) == 5
    ack = decode_ack(frame)
    assert ack.code is code
    assert ack.success == (code is not AckCode.REJECTED)


def test_ack_wrong_length():
    with pytest.raises(MalformedFrame):
        decode_ack(encode_ack(AckCode.ACCEPTED)[:4])
    with pytest.raises(MalformedFrame):
        decode_ack(encode_ack(AckCode.ACCEPTED) + b"\x00")


def test_ack_wrong_header():
    frame = bytearray(encode_ack(AckCode.ACCEPTED))
    frame[2] = 0x83
    frame[4] = crc_low_byte(frame[:4])
    with pytest.raises(MalformedFrame):
        decode_ack(bytes(frame))


def test_ack_checksum_mismatch():
    frame = bytearray(encode_ack(AckCode.COMPLETED))
    frame[4] ^= 0xFF
    with pytest.raises(ChecksumMismatch):
        decode_ack(bytes(frame))


def test_ack_unknown_code():
    # Valid CRC, but code 3 is not part of the protocol
    with pytest.raises(MalformedFrame):
        decode_ack(encode_ack(3))
