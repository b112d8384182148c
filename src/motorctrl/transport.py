"""
BLE transport for the motor controller.

Operations on the transport only *initiate* work; every outcome is reported
back as an event object pushed into the sink registered with :meth:`bind`.
The session state machine consumes those events on the event loop thread.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Optional, Set, Tuple, Union

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .core import CONNECT_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Peer:
    """A device seen while scanning."""

    identity: str
    name: Optional[str] = None
    rssi: int = 0
    services: Tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        return self.name or "Unknown"

    def describe(self) -> str:
        return f"{self.display_name} (RSSI: {self.rssi})"


# ========== Events ==========


@dataclass(frozen=True)
class PeerDiscovered:
    peer: Peer


@dataclass(frozen=True)
class ScanFinished:
    """The scan window elapsed or the scan was stopped."""


@dataclass(frozen=True)
class ScanFailed:
    reason: str


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class ConnectFailed:
    reason: str


@dataclass(frozen=True)
class Disconnected:
    reason: Optional[str] = None


@dataclass(frozen=True)
class EndpointsReady:
    endpoints: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class DiscoveryFailed:
    reason: str


@dataclass(frozen=True)
class Subscribed:
    endpoint: str


@dataclass(frozen=True)
class NotifyFailed:
    reason: str


@dataclass(frozen=True)
class Notification:
    endpoint: str
    data: bytes


@dataclass(frozen=True)
class WriteAck:
    ok: bool
    reason: Optional[str] = None


TransportEvent = Union[
    PeerDiscovered,
    ScanFinished,
    ScanFailed,
    Connected,
    ConnectFailed,
    Disconnected,
    EndpointsReady,
    DiscoveryFailed,
    Subscribed,
    NotifyFailed,
    Notification,
    WriteAck,
]

EventSink = Callable[[TransportEvent], None]


class Transport:
    """Interface the session state machine drives.

    Subclasses implement the operations; none of them may block or raise for
    transport failures, which are reported as events instead.
    """

    def __init__(self) -> None:
        self._sink: Optional[EventSink] = None

    def bind(self, sink: EventSink) -> None:
        """Register the sink that receives all transport events."""
        self._sink = sink

    def emit(self, event: TransportEvent) -> None:
        if self._sink is None:
            logger.debug(f"Dropping event with no sink: {event}")
            return
        self._sink(event)

    def scan(self, window: float) -> None:
        raise NotImplementedError

    def stop_scan(self) -> None:
        raise NotImplementedError

    def connect(self, peer_id: str) -> None:
        raise NotImplementedError

    def disconnect(self) -> None:
        raise NotImplementedError

    def discover_endpoints(self, service_id: str) -> None:
        raise NotImplementedError

    def subscribe(self, endpoint_id: str) -> None:
        raise NotImplementedError

    def write(self, endpoint_id: str, data: bytes) -> None:
        raise NotImplementedError


class BleakTransport(Transport):
    """Transport backed by bleak's BleakScanner and BleakClient."""

    def __init__(self, connect_timeout: float = CONNECT_TIMEOUT) -> None:
        super().__init__()
        self.connect_timeout = connect_timeout
        self._client: Optional[BleakClient] = None
        self._devices: Dict[str, BLEDevice] = {}
        self._scan_stop: Optional[asyncio.Event] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def _spawn(self, coro) -> None:  # type: ignore[no-untyped-def]
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        """Cancel outstanding operations and drop the link."""
        if self._scan_stop is not None:
            self._scan_stop.set()
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            await asyncio.wait(pending, timeout=2.0)
        client = self._client
        self._client = None
        if client is not None and client.is_connected:
            try:
                await client.disconnect()
            except BleakError as e:
                logger.warning(f"Disconnect during close failed: {e}")
        for task in list(self._tasks):
            task.cancel()

    # ========== Scanning ==========

    def scan(self, window: float) -> None:
        self._devices.clear()
        self._scan_stop = asyncio.Event()
        self._spawn(self._scan(window, self._scan_stop))

    def stop_scan(self) -> None:
        if self._scan_stop is not None:
            self._scan_stop.set()

    async def _scan(self, window: float, stop: asyncio.Event) -> None:
        def _on_detection(device: BLEDevice, adv: AdvertisementData) -> None:
            self._devices[device.address] = device
            peer = Peer(
                identity=device.address,
                name=device.name or adv.local_name,
                rssi=adv.rssi,
                services=tuple(uuid.lower() for uuid in adv.service_uuids),
            )
            self.emit(PeerDiscovered(peer))

        # No service filter: the firmware does not always put the NUS UUID
        # in its advertisement packet.
        scanner = BleakScanner(detection_callback=_on_detection)
        logger.info(f"Scanning for BLE devices ({window:g}s window)...")
        try:
            await scanner.start()
        except (BleakError, OSError) as e:
            logger.error(f"Scan failed: {e}")
            self.emit(ScanFailed(str(e)))
            return

        try:
            await asyncio.wait_for(stop.wait(), timeout=window)
        except asyncio.TimeoutError:
            pass
        finally:
            try:
                await scanner.stop()
            except (BleakError, OSError) as e:
                logger.warning(f"Stopping scanner failed: {e}")

        self.emit(ScanFinished())

    # ========== Connection ==========

    def connect(self, peer_id: str) -> None:
        self._spawn(self._connect(peer_id))

    async def _connect(self, peer_id: str) -> None:
        target: Union[BLEDevice, str] = self._devices.get(peer_id, peer_id)
        client = BleakClient(
            target,
            disconnected_callback=self._on_disconnect,
            timeout=self.connect_timeout,
        )
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Connection to {peer_id} failed: {e}")
            self.emit(ConnectFailed(str(e) or type(e).__name__))
            return

        self._client = client
        logger.info(f"Connected to {peer_id}")
        self.emit(Connected())

    def disconnect(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        self._spawn(self._disconnect(client))

    async def _disconnect(self, client: BleakClient) -> None:
        try:
            await client.disconnect()
        except BleakError as e:
            logger.error(f"Disconnect failed: {e}")

    def _on_disconnect(self, client: BleakClient) -> None:
        # Requested disconnects clear _client first and report nothing
        if self._client is not client:
            return
        self._client = None
        logger.warning("Device disconnected")
        self.emit(Disconnected("link lost"))

    # ========== GATT ==========

    def discover_endpoints(self, service_id: str) -> None:
        client = self._client
        if client is None:
            self.emit(DiscoveryFailed("Not connected"))
            return

        # bleak resolves the GATT table while connecting
        service = client.services.get_service(service_id)
        if service is None:
            self.emit(DiscoveryFailed(f"Service {service_id} not found"))
            return
        endpoints = frozenset(char.uuid.lower() for char in service.characteristics)
        logger.debug(f"Service {service_id} endpoints: {sorted(endpoints)}")
        self.emit(EndpointsReady(endpoints))

    def subscribe(self, endpoint_id: str) -> None:
        self._spawn(self._subscribe(endpoint_id))

    async def _subscribe(self, endpoint_id: str) -> None:
        client = self._client
        if client is None:
            self.emit(NotifyFailed("Not connected"))
            return

        def _on_notify(_characteristic: object, data: bytearray) -> None:
            self.emit(Notification(endpoint_id, bytes(data)))

        try:
            await client.start_notify(endpoint_id, _on_notify)
        except (BleakError, OSError) as e:
            self.emit(NotifyFailed(str(e)))
            return
        self.emit(Subscribed(endpoint_id))

    def write(self, endpoint_id: str, data: bytes) -> None:
        self._spawn(self._write(endpoint_id, data))

    async def _write(self, endpoint_id: str, data: bytes) -> None:
        client = self._client
        if client is None:
            self.emit(WriteAck(False, "Not connected"))
            return
        try:
            await client.write_gatt_char(endpoint_id, data, response=True)
        except (BleakError, OSError) as e:
            self.emit(WriteAck(False, str(e)))
            return
        self.emit(WriteAck(True))
