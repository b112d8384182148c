"""Shared fakes for unit tests that run without a radio."""

from typing import List, Optional

import pytest

from motorctrl.core import NUS_RX_UUID, NUS_TX_UUID, TARGET_DEVICE_NAME, Settings
from motorctrl.session import SessionStateMachine
from motorctrl.transport import (
    Connected,
    EndpointsReady,
    Peer,
    PeerDiscovered,
    Subscribed,
    Transport,
    WriteAck,
)

TARGET_PEER = Peer(identity="AA:BB:CC:DD:EE:01", name=TARGET_DEVICE_NAME, rssi=-52)


class FakeTransport(Transport):
    """Records every request.

    With ``auto=True`` it also answers each request with the event a healthy
    device would produce, so the controller's event pump can be exercised.
    """

    def __init__(self, auto: bool = False, peers: Optional[List[Peer]] = None) -> None:
        super().__init__()
        self.auto = auto
        self.peers = peers if peers is not None else [TARGET_PEER]
        self.calls: list = []
        self.writes: List[str] = []

    def scan(self, window: float) -> None:
        self.calls.append(("scan", window))
        if self.auto:
            for peer in self.peers:
                self.emit(PeerDiscovered(peer))

    def stop_scan(self) -> None:
        self.calls.append(("stop_scan",))

    def connect(self, peer_id: str) -> None:
        self.calls.append(("connect", peer_id))
        if self.auto:
            self.emit(Connected())

    def disconnect(self) -> None:
        self.calls.append(("disconnect",))

    def discover_endpoints(self, service_id: str) -> None:
        self.calls.append(("discover_endpoints", service_id))
        if self.auto:
            self.emit(EndpointsReady(frozenset({NUS_RX_UUID, NUS_TX_UUID})))

    def subscribe(self, endpoint_id: str) -> None:
        self.calls.append(("subscribe", endpoint_id))
        if self.auto:
            self.emit(Subscribed(endpoint_id))

    def write(self, endpoint_id: str, data: bytes) -> None:
        self.calls.append(("write", endpoint_id, data))
        self.writes.append(data.decode("utf-8"))
        if self.auto:
            self.emit(WriteAck(True))

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


def drive_to_ready(session: SessionStateMachine) -> None:
    """Feed a healthy scan/connect/discover sequence straight into the machine."""
    assert session.start_scan()
    session.handle(PeerDiscovered(TARGET_PEER))
    session.handle(Connected())
    session.handle(EndpointsReady(frozenset({NUS_RX_UUID, NUS_TX_UUID})))
    session.handle(Subscribed(NUS_TX_UUID))
    assert session.is_ready


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def settings() -> Settings:
    # A long tick interval keeps the integration timer from firing on its own;
    # tests step the tracker explicitly.
    return Settings(tick_interval=3600.0)


@pytest.fixture
def session(transport: FakeTransport, settings: Settings) -> SessionStateMachine:
    return SessionStateMachine(transport, settings)


@pytest.fixture
def ready():
    return drive_to_ready
