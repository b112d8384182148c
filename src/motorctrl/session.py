"""
Connection lifecycle for a single motor controller peripheral.

All state lives on the asyncio event loop. Transport events are pushed into
a queue with :meth:`SessionStateMachine.post` (safe from any thread) and
applied one at a time by :meth:`SessionStateMachine.run`, or directly with
:meth:`SessionStateMachine.handle` when already on the loop.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

from .core import Settings
from .transport import (
    Connected,
    ConnectFailed,
    Disconnected,
    DiscoveryFailed,
    EndpointsReady,
    Notification,
    NotifyFailed,
    Peer,
    PeerDiscovered,
    ScanFailed,
    ScanFinished,
    Subscribed,
    Transport,
    TransportEvent,
    WriteAck,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    SCAN_TIMED_OUT = "scan_timed_out"
    CONNECTING = "connecting"
    DISCOVERING = "discovering"
    READY = "ready"
    DISCONNECTED = "disconnected"


# States from which a fresh scan may start
_SCANNABLE = (SessionState.IDLE, SessionState.SCAN_TIMED_OUT)


@dataclass
class Session:
    """The bound peer and its endpoint handles."""

    peer: Peer
    write_endpoint: Optional[str] = None
    notify_endpoint: Optional[str] = None
    subscribed: bool = False


@dataclass(frozen=True)
class ErrorLogEntry:
    timestamp: datetime
    message: str

    def __str__(self) -> str:
        return f"[{self.timestamp:%H:%M:%S}] {self.message}"


class SessionStateMachine:
    """Owns the transport, the peer list and the active Session."""

    def __init__(self, transport: Transport, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()
        self._transport = transport
        self._transport.bind(self.post)

        self._state = SessionState.IDLE
        self._status = "Idle"
        self._session: Optional[Session] = None
        self._peers: Dict[str, Peer] = {}
        self._errors: Deque[ErrorLogEntry] = deque(maxlen=self.settings.error_log_size)

        self._queue: "asyncio.Queue[TransportEvent]" = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        # Callbacks
        self._on_state: List[Callable[[SessionState], None]] = []
        self._on_status: List[Callable[[str], None]] = []
        self._on_telemetry: List[Callable[[str], None]] = []

    # ========== Observable state ==========

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> str:
        return self._status

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def is_connected(self) -> bool:
        return self._state in (SessionState.DISCOVERING, SessionState.READY)

    @property
    def can_scan(self) -> bool:
        return self._state in _SCANNABLE

    @property
    def peers(self) -> List[Peer]:
        """Peers seen in the current scan, in first-seen order."""
        return list(self._peers.values())

    @property
    def discovered_devices(self) -> List[str]:
        """Display lines for the current scan's peers."""
        return [
            peer.describe()
            for peer in self._peers.values()
            if peer.name or not self.settings.skip_anonymous
        ]

    @property
    def error_log(self) -> List[ErrorLogEntry]:
        return list(self._errors)

    def clear_errors(self) -> None:
        self._errors.clear()

    def add_state_listener(self, callback: Callable[[SessionState], None]) -> None:
        self._on_state.append(callback)

    def add_status_listener(self, callback: Callable[[str], None]) -> None:
        self._on_status.append(callback)

    def add_telemetry_listener(self, callback: Callable[[str], None]) -> None:
        self._on_telemetry.append(callback)

    # ========== Requests ==========

    def start_scan(self) -> bool:
        """Begin discovery.

        Returns:
            True if a scan was started, False if the machine is busy
        """
        if self._state not in _SCANNABLE:
            logger.warning(f"Cannot scan while {self._state.value}")
            return False

        self._peers.clear()
        self._session = None
        self._set_state(SessionState.SCANNING)
        self._set_status(
            f"Scanning for nearby BLE devices (looking for "
            f"{self.settings.target_name} or NUS service) - "
            f"{self.settings.scan_window:g}s timeout"
        )
        self._transport.scan(self.settings.scan_window)
        return True

    def disconnect(self) -> None:
        """Drop the link or abandon the current scan/connection attempt."""
        if self._state in (SessionState.IDLE, SessionState.SCAN_TIMED_OUT):
            return
        if self._state is SessionState.SCANNING:
            self._transport.stop_scan()
            self._set_state(SessionState.IDLE)
            self._set_status("Scan cancelled")
            return
        self._transport.disconnect()
        self._enter_disconnected("Disconnected")

    def send_text(self, text: str) -> bool:
        """Write a text message to the bound write endpoint.

        Returns:
            False if no session is ready to carry it
        """
        session = self._session
        if not self.is_ready or session is None or session.write_endpoint is None:
            return False
        self._transport.write(session.write_endpoint, text.encode("utf-8"))
        self._set_status(f"Sent: {text}")
        return True

    def report_error(self, message: str) -> None:
        """Record a failure in the status text and the error log."""
        logger.error(message)
        self._errors.append(ErrorLogEntry(datetime.now(), message))
        self._set_status(message)

    # ========== Event pump ==========

    def post(self, event: TransportEvent) -> None:
        """Queue a transport event. Safe to call from any thread."""
        loop = self._loop
        if loop is not None and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(self._queue.put_nowait, event)
                return
        self._queue.put_nowait(event)

    async def run(self) -> None:
        """Apply queued events until cancelled."""
        self._loop = asyncio.get_running_loop()
        while True:
            event = await self._queue.get()
            try:
                self.handle(event)
            except Exception as e:
                logger.exception(f"Error handling {type(event).__name__}: {e}")

    def process_pending(self) -> int:
        """Apply every event already queued; returns how many were handled."""
        count = 0
        while not self._queue.empty():
            self.handle(self._queue.get_nowait())
            count += 1
        return count

    def handle(self, event: TransportEvent) -> None:
        """Apply one transport event to the state machine."""
        if isinstance(event, PeerDiscovered):
            self._on_peer(event.peer)
        elif isinstance(event, ScanFinished):
            self._on_scan_finished()
        elif isinstance(event, ScanFailed):
            if self._state is SessionState.SCANNING:
                self._set_state(SessionState.IDLE)
            self.report_error(f"Scan failed: {event.reason}")
        elif isinstance(event, Connected):
            self._on_connected()
        elif isinstance(event, ConnectFailed):
            if self._state is SessionState.CONNECTING:
                self.report_error(f"Failed to connect: {event.reason}")
                self._enter_disconnected(self._status)
        elif isinstance(event, Disconnected):
            self._on_link_lost(event.reason)
        elif isinstance(event, EndpointsReady):
            self._on_endpoints(event.endpoints)
        elif isinstance(event, DiscoveryFailed):
            if self._state is SessionState.DISCOVERING:
                self.report_error(f"Service discover error: {event.reason}")
                self._fail_discovery()
        elif isinstance(event, Subscribed):
            self._on_subscribed(event.endpoint)
        elif isinstance(event, NotifyFailed):
            self.report_error(f"Notify error: {event.reason}")
            if self._state is SessionState.DISCOVERING:
                # Without notifications the link can never become ready
                self._fail_discovery()
        elif isinstance(event, Notification):
            self._on_notification(event)
        elif isinstance(event, WriteAck):
            if event.ok:
                self._set_status("Write OK")
            else:
                self.report_error(f"Write error: {event.reason}")
        else:
            logger.debug(f"Ignoring unknown event {event!r}")

    # ========== Transitions ==========

    def _matches_target(self, peer: Peer) -> bool:
        if peer.name and self.settings.target_name in peer.name:
            return True
        return self.settings.service_uuid.lower() in peer.services

    def _on_peer(self, peer: Peer) -> None:
        if self._state is not SessionState.SCANNING:
            return

        self._peers[peer.identity] = peer
        logger.debug(f"Discovered peripheral: {peer.describe()} {peer.identity}")

        if not self._matches_target(peer):
            self._set_status(f"Scanning... last seen: {peer.describe()}")
            return

        logger.info(f"Target match: {peer.describe()} ({peer.identity})")
        self._transport.stop_scan()
        self._session = Session(peer=peer)
        self._set_state(SessionState.CONNECTING)
        self._set_status(f"Found target: {peer.describe()}. Connecting...")
        self._transport.connect(peer.identity)

    def _on_scan_finished(self) -> None:
        if self._state is not SessionState.SCANNING:
            return

        self._set_state(SessionState.SCAN_TIMED_OUT)
        if not self._peers:
            self._set_status("Scan timed out - no matching devices found")
        else:
            self._set_status(
                "Scan timed out before connecting. Devices seen:\n"
                + "\n".join(self.discovered_devices)
            )
        logger.info(f"Scan timed out. Devices seen: {self.discovered_devices}")

    def _on_connected(self) -> None:
        if self._state is not SessionState.CONNECTING or self._session is None:
            logger.debug(f"Unexpected connect while {self._state.value}; dropping link")
            self._transport.disconnect()
            return

        self._set_state(SessionState.DISCOVERING)
        self._set_status(f"Connected to {self._session.peer.display_name}")
        self._transport.discover_endpoints(self.settings.service_uuid)

    def _on_endpoints(self, endpoints: frozenset) -> None:
        session = self._session
        if self._state is not SessionState.DISCOVERING or session is None:
            return

        endpoints = frozenset(e.lower() for e in endpoints)
        has_write = self.settings.write_uuid.lower() in endpoints
        has_notify = self.settings.notify_uuid.lower() in endpoints
        if self.settings.lenient_ready:
            usable = has_write or has_notify
        else:
            usable = has_write and has_notify
        if not usable:
            self.report_error("Char discover error: required endpoints not found")
            self._fail_discovery()
            return

        if has_write:
            session.write_endpoint = self.settings.write_uuid
        if has_notify:
            session.notify_endpoint = self.settings.notify_uuid
            self._transport.subscribe(session.notify_endpoint)

        self._check_ready()

    def _fail_discovery(self) -> None:
        self._transport.disconnect()
        self._enter_disconnected(self._status)

    def _on_subscribed(self, endpoint: str) -> None:
        session = self._session
        if session is None or endpoint != session.notify_endpoint:
            return
        session.subscribed = True
        self._check_ready()

    def _check_ready(self) -> None:
        session = self._session
        if self._state is not SessionState.DISCOVERING or session is None:
            return

        if self.settings.lenient_ready:
            ready = session.write_endpoint is not None or session.notify_endpoint is not None
        else:
            ready = session.write_endpoint is not None and session.subscribed

        if ready:
            self._set_state(SessionState.READY)
            self._set_status("Ready")
            return

        missing = []
        if session.write_endpoint is None:
            missing.append("write endpoint")
        if not session.subscribed:
            missing.append("notifications")
        self._set_status(f"Waiting for {' and '.join(missing)}")

    def _on_notification(self, event: Notification) -> None:
        if self._session is None:
            return
        text = event.data.decode("utf-8", errors="replace").strip()
        for callback in list(self._on_telemetry):
            try:
                callback(text)
            except Exception as e:
                logger.error(f"Telemetry callback error: {e}")

    def _on_link_lost(self, reason: Optional[str]) -> None:
        if self._state in (SessionState.IDLE, SessionState.SCANNING, SessionState.SCAN_TIMED_OUT):
            return
        message = f"Disconnected: {reason}" if reason else "Disconnected"
        self.report_error(message)
        self._enter_disconnected(message)

    def _enter_disconnected(self, status: str) -> None:
        # Handles go first so nothing can be written to a dead session
        self._session = None
        self._set_state(SessionState.DISCONNECTED)
        self._set_status(status)
        self._set_state(SessionState.IDLE)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug(f"Session state {self._state.value} -> {state.value}")
        self._state = state
        for callback in list(self._on_state):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"State callback error: {e}")

    def _set_status(self, status: str) -> None:
        self._status = status
        for callback in list(self._on_status):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Status callback error: {e}")
