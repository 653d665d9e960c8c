"""Serial (USB or Bluetooth SPP) transport for the launcher link."""
from __future__ import annotations

import logging
import re
import threading
from typing import Any, Callable, List, Optional

import serial
from serial.tools import list_ports

from ball_launcher.codec import ACK_LENGTH, ACK_SOURCE, HEADER
from ball_launcher.config import SerialConfig
from ball_launcher.link import Characteristic, TransportListener

logger = logging.getLogger(__name__)

COMMAND_CHANNEL = Characteristic("serial-tx")
NOTIFY_CHANNEL = Characteristic("serial-rx")

Dispatch = Callable[..., Any]


def _direct(callback: Callable[..., Any], *args: Any) -> None:
    callback(*args)


# ---------------------------------------------------------------------------
#   Byte stream → ACK frames
# ---------------------------------------------------------------------------
class FrameAssembler:
    """
    Cut a serial byte stream into 5-byte ACK frames.
    Bytes before a ``5A A5 82`` header are discarded; a full frame is
    emitted as-is, so CRC checking stays with the codec.
    """

    _PREFIX = bytes((*HEADER, ACK_SOURCE))

    def __init__(self) -> None:
        self._buf = bytearray()

    def feed(self, data: bytes) -> List[bytes]:
        self._buf.extend(data)
        frames: List[bytes] = []
        while True:
            start = self._buf.find(self._PREFIX)
            if start < 0:
                # Keep a possible partial header at the tail
                keep = len(self._PREFIX) - 1
                if len(self._buf) > keep:
                    del self._buf[: len(self._buf) - keep]
                return frames
            if start:
                logger.debug(f"Skipping {start} stray byte(s): {bytes(self._buf[:start]).hex()}")
                del self._buf[:start]
            if len(self._buf) < ACK_LENGTH:
                return frames
            frames.append(bytes(self._buf[:ACK_LENGTH]))
            del self._buf[:ACK_LENGTH]

    def clear(self) -> None:
        self._buf.clear()


# ---------------------------------------------------------------------------
#   Transport
# ---------------------------------------------------------------------------
class SerialTransport:
    """
    ``Transport`` over pyserial.

    Scanning lists the serial ports (or takes ``cfg.port`` as-is), connecting
    opens the port, discovery starts the reader thread and reports the fixed
    TX/RX channels. Every listener call goes through ``dispatch`` so that it
    runs on the owner's event loop, e.g. ``loop.call_soon_threadsafe``.
    """

    def __init__(self, cfg: SerialConfig, dispatch: Optional[Dispatch] = None):
        self.cfg = cfg
        self._dispatch = dispatch or _direct
        self._listener: Optional[TransportListener] = None
        self._ser: Optional[serial.SerialBase] = None
        self._reader: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._write_lock = threading.Lock()
        self._assembler = FrameAssembler()

    def bind(self, listener: TransportListener) -> None:
        self._listener = listener

    def _emit(self, name: str, *args: Any) -> None:
        if self._listener is not None:
            self._dispatch(getattr(self._listener, name), *args)

    # ---------------- Scanning ----------------
    def candidate_ports(self) -> List[str]:
        if self.cfg.port:
            return [self.cfg.port]
        pattern = re.compile(self.cfg.description_pattern)
        found = []
        for info in list_ports.comports():
            text = f"{info.device} {info.description or ''} {info.hwid or ''}"
            if pattern.search(text):
                found.append(info.device)
        return sorted(found)

    def start_scan(self) -> None:
        ports = self.candidate_ports()
        if not ports:
            logger.warning("No launcher serial port found")
            self._emit("on_disconnected", "no serial port found")
            return
        logger.info(f"Serial candidates: {', '.join(ports)}")
        self._emit("on_device_found", ports[0])

    def stop_scan(self) -> None:
        pass

    # ---------------- Serial plumbing ----------------
    def connect(self, device: str) -> None:
        if self._ser is not None:
            self.disconnect()
        try:
            self._ser = serial.serial_for_url(
                device,
                baudrate=self.cfg.baudrate,
                timeout=self.cfg.timeout,
                write_timeout=self.cfg.write_timeout,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
            )
            self._ser.reset_input_buffer()
        except (serial.SerialException, ValueError) as exc:
            logger.error(f"Could not open {device!r}: {exc}")
            self._ser = None
            self._emit("on_disconnected", f"open failed: {exc}")
            return
        self._emit("on_connected")

    def discover(self) -> None:
        if not self.is_open():
            self._emit("on_disconnected", "port closed before discovery")
            return
        self._emit("on_discovered", COMMAND_CHANNEL, NOTIFY_CHANNEL)

    def enable_notify(self, characteristic: Characteristic) -> None:
        if self._reader is not None and self._reader.is_alive():
            return
        self._stop.clear()
        self._assembler.clear()
        self._reader = threading.Thread(target=self._read_loop, name="launcher-rx", daemon=True)
        self._reader.start()

    def write(self, characteristic: Characteristic, data: bytes) -> None:
        if not self.is_open():
            raise serial.SerialException("Serial port is not open")
        with self._write_lock:
            self._ser.write(data)
            self._ser.flush()

    def disconnect(self) -> None:
        self._stop.set()
        reader, self._reader = self._reader, None
        ser, self._ser = self._ser, None
        if ser is not None and ser.is_open:
            ser.close()
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=1.0)

    def is_open(self) -> bool:
        return bool(self._ser and self._ser.is_open)

    # ---------------- Reader thread ----------------
    def _read_loop(self) -> None:
        while not self._stop.is_set():
            ser = self._ser
            if ser is None:
                break
            try:
                chunk = ser.read(max(1, ser.in_waiting))
            except (serial.SerialException, OSError) as exc:
                if not self._stop.is_set():
                    logger.error(f"Serial read failed: {exc}")
                    self._emit("on_disconnected", f"read failed: {exc}")
                break
            if not chunk:
                continue
            for frame in self._assembler.feed(chunk):
                self._emit("on_notify", frame)

    def __repr__(self) -> str:
        state = "open" if self.is_open() else "closed"
        return f"<SerialTransport port={self.cfg.port!r} ({state})>"
