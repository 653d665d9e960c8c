"""
Command link to the launcher: one command in flight, ACK or timeout.

All methods, transport events and timer callbacks are expected to run on
the same event loop. The session never blocks; "waiting for an ACK" is
the ``AWAITING_ACK`` state plus a single-shot timer.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol

from ball_launcher.codec import MachineCommand, decode_ack
from ball_launcher.common import CommandResult
from ball_launcher.config import LinkConfig
from ball_launcher.errors import (
    Busy,
    Cancelled,
    CommandFailure,
    CommandTimeout,
    FrameError,
    LinkLost,
    NotConnected,
    Rejected,
)

logger = logging.getLogger(__name__)

Completion = Callable[[CommandResult], None]


# ------------------- Enums / records -------------------
class LinkState(str, Enum):
    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED_IDLE = "connected"
    AWAITING_ACK = "awaiting_ack"

    @property
    def connected(self) -> bool:
        return self in (LinkState.CONNECTED_IDLE, LinkState.AWAITING_ACK)


@dataclass(frozen=True)
class Characteristic:
    """A writable or notifying endpoint discovered on the device."""
    uuid: str
    handle: Any = field(default=None, compare=False)


# ------------------- Collaborator protocols -------------------
class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with ``call_later``; an asyncio event loop qualifies."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class TransportListener(Protocol):
    def on_device_found(self, device: str) -> None: ...
    def on_connected(self) -> None: ...
    def on_discovered(self, command: Optional[Characteristic], notify: Optional[Characteristic]) -> None: ...
    def on_notify(self, data: bytes) -> None: ...
    def on_disconnected(self, reason: str) -> None: ...


class Transport(Protocol):
    def bind(self, listener: TransportListener) -> None: ...
    def start_scan(self) -> None: ...
    def stop_scan(self) -> None: ...
    def connect(self, device: str) -> None: ...
    def discover(self) -> None: ...
    def enable_notify(self, characteristic: Characteristic) -> None: ...
    def write(self, characteristic: Characteristic, data: bytes) -> None: ...
    def disconnect(self) -> None: ...


@dataclass
class _Pending:
    command: MachineCommand
    on_complete: Optional[Completion]
    timer: Optional[TimerHandle] = None


# ---------------------------------------------------------------------------
#   Session
# ---------------------------------------------------------------------------
class LinkSession:
    def __init__(
        self,
        transport: Transport,
        scheduler: Scheduler,
        cfg: Optional[LinkConfig] = None,
    ):
        self.transport = transport
        self.scheduler = scheduler
        self.cfg = cfg or LinkConfig()

        self._state = LinkState.DISCONNECTED
        self._device: Optional[str] = None
        self._command_char: Optional[Characteristic] = None
        self._notify_char: Optional[Characteristic] = None
        self._pending: Optional[_Pending] = None
        self._reconnect_timer: Optional[TimerHandle] = None
        self._closed = False
        self._listeners: List[Callable[[LinkState, LinkState], None]] = []

        self.last_result: Optional[CommandResult] = None
        self.commands_sent = 0

        transport.bind(self)

    # ---------------- Observable state ----------------
    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def device(self) -> Optional[str]:
        return self._device

    @property
    def pending_command(self) -> Optional[MachineCommand]:
        return self._pending.command if self._pending else None

    @property
    def last_outcome(self) -> Optional[str]:
        return self.last_result.outcome if self.last_result else None

    def add_state_listener(self, callback: Callable[[LinkState, LinkState], None]) -> None:
        self._listeners.append(callback)

    def _set_state(self, new: LinkState) -> None:
        old, self._state = self._state, new
        if old is new:
            return
        logger.info(f"Link {old.value} -> {new.value}")
        for cb in self._listeners:
            cb(old, new)

    # ---------------- Lifecycle ----------------
    def start(self) -> None:
        """Begin scanning for the launcher (no-op unless disconnected)."""
        self._closed = False
        if self._state is not LinkState.DISCONNECTED:
            return
        self._set_state(LinkState.SCANNING)
        self.transport.start_scan()

    def close(self) -> None:
        """Cancel any pending command and drop the connection."""
        self._closed = True
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        self._fail_pending(Cancelled("Link session closed"), LinkState.DISCONNECTED)
        self._clear_characteristics()
        self._set_state(LinkState.DISCONNECTED)
        self.transport.disconnect()

    # ---------------- Transport events ----------------
    def on_device_found(self, device: str) -> None:
        if self._state is not LinkState.SCANNING:
            logger.debug(f"Ignoring discovery of {device!r} while {self._state.value}")
            return
        logger.info(f"Found launcher {device!r}, connecting")
        self.transport.stop_scan()
        self._device = device
        self._set_state(LinkState.CONNECTING)
        self.transport.connect(device)

    def on_connected(self) -> None:
        if self._state is not LinkState.CONNECTING:
            return
        self.transport.discover()

    def on_discovered(
        self, command: Optional[Characteristic], notify: Optional[Characteristic]
    ) -> None:
        if self._state is not LinkState.CONNECTING:
            return
        if command is None:
            logger.error("Launcher exposes no command characteristic, disconnecting")
            self.on_disconnected("command characteristic missing")
            return
        self._command_char = command
        self._notify_char = notify
        if notify is not None:
            self.transport.enable_notify(notify)
        else:
            logger.warning("No notify characteristic; every command will time out")
        self._set_state(LinkState.CONNECTED_IDLE)

    def on_notify(self, data: bytes) -> None:
        try:
            ack = decode_ack(data)
        except FrameError as exc:
            # Leave the timer armed; a good frame may still follow
            logger.warning(f"Dropped inbound frame: {exc}")
            return

        pending = self._pending
        if pending is None:
            logger.warning(f"Unsolicited ACK {ack.code.name} ignored")
            return
        error = None if ack.success else Rejected(f"Launcher rejected {pending.command}")
        self._resolve(pending, CommandResult(pending.command, ack=ack, error=error), LinkState.CONNECTED_IDLE)

    def on_disconnected(self, reason: str) -> None:
        was = self._state
        self._fail_pending(LinkLost(f"Link lost: {reason}"), LinkState.DISCONNECTED)
        self._clear_characteristics()
        self._set_state(LinkState.DISCONNECTED)
        # Release whatever the failed connection still holds before reconnecting
        self.transport.disconnect()
        if was is not LinkState.DISCONNECTED:
            logger.warning(f"Launcher disconnected ({reason})")
        if self.cfg.auto_reconnect and not self._closed and self._reconnect_timer is None:
            self._reconnect_timer = self.scheduler.call_later(self.cfg.reconnect_delay_s, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_timer = None
        if not self._closed and self._state is LinkState.DISCONNECTED:
            logger.info("Reconnecting to launcher")
            self.start()

    # ---------------- Commands ----------------
    def send(self, command: MachineCommand, on_complete: Optional[Completion] = None) -> None:
        """
        Write ``command`` and arm the ACK timer.
        Raises ``Busy`` or ``NotConnected`` without touching the wire.
        """
        if self._state is LinkState.AWAITING_ACK:
            raise Busy(f"Still waiting for ACK of {self._pending.command if self._pending else '?'}")
        if self._state is not LinkState.CONNECTED_IDLE or self._command_char is None:
            raise NotConnected(f"Cannot send while {self._state.value}")

        pending = _Pending(command=command, on_complete=on_complete)
        pending.timer = self.scheduler.call_later(self.cfg.ack_timeout_s, self._on_timeout, pending)
        self._pending = pending
        self._set_state(LinkState.AWAITING_ACK)
        self.commands_sent += 1
        logger.info(f"Sending {command} [{command.to_bytes().hex(' ')}]")
        try:
            self.transport.write(self._command_char, command.to_bytes())
        except OSError as exc:
            logger.error(f"Write failed: {exc}")
            self.on_disconnected(f"write failed: {exc}")

    def submit(self, command: MachineCommand) -> "asyncio.Future[CommandResult]":
        """``send`` for coroutines: the future resolves with the result."""
        future: asyncio.Future[CommandResult] = asyncio.get_running_loop().create_future()

        def _done(result: CommandResult) -> None:
            if not future.done():
                future.set_result(result)

        self.send(command, _done)
        return future

    def _on_timeout(self, pending: _Pending) -> None:
        if self._pending is not pending:
            return
        logger.warning(f"No ACK within {self.cfg.ack_timeout_s:.1f}s for {pending.command}")
        self._resolve(
            pending,
            CommandResult(pending.command, error=CommandTimeout(f"No ACK within {self.cfg.ack_timeout_s}s")),
            LinkState.CONNECTED_IDLE,
        )

    def _fail_pending(self, error: CommandFailure, next_state: LinkState) -> None:
        pending = self._pending
        if pending is not None:
            self._resolve(pending, CommandResult(pending.command, error=error), next_state)

    def _resolve(self, pending: _Pending, result: CommandResult, next_state: LinkState) -> bool:
        # First resolver wins; the other path finds the slot already empty
        if self._pending is not pending:
            return False
        self._pending = None
        if pending.timer is not None:
            pending.timer.cancel()
        self.last_result = result
        if result.ok:
            logger.info(f"Command acknowledged ({result.outcome})")
        else:
            logger.warning(f"Command failed: {result.error}")
        self._set_state(next_state)
        if pending.on_complete is not None:
            pending.on_complete(result)
        return True

    def _clear_characteristics(self) -> None:
        self._command_char = None
        self._notify_char = None

    def __repr__(self) -> str:
        return f"<LinkSession device={self._device!r} ({self._state.value})>"
