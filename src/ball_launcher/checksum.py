"""CRC16/MODBUS, truncated to the low byte the machine firmware checks."""
from typing import Iterable

CRC16_SEED = 0xFFFF
CRC16_POLY = 0xA001  # reflected 0x8005


def crc16_modbus(data: Iterable[int]) -> int:
    crc = CRC16_SEED
    for byte in data:
        crc ^= byte & 0xFF
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ CRC16_POLY
            else:
                crc >>= 1
    return crc


def crc_low_byte(data: Iterable[int]) -> int:
    """Low byte of the CRC16/MODBUS of ``data``. Not a security measure."""
    return crc16_modbus(data) & 0xFF


def verify(frame: bytes) -> bool:
    """True if the last byte of ``frame`` is the low CRC byte of the rest."""
    if len(frame) < 2:
        return False
    return crc_low_byte(frame[:-1]) == frame[-1]
