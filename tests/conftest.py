"""Shared fakes for the scan tests. Nothing here touches the network."""

import asyncio
import time
from typing import Dict, List, Optional, Tuple

import pytest

from device import DeviceInfo, NetworkInterface, PendingProbe, ScanReport
from events import ProbeEvent, ScanEvent
from liveness import LivenessSession
from probes.base import AddressDiscoveryProbe


class StaticProbe(AddressDiscoveryProbe):
    """Discovery probe that reports a fixed list of hosts, or fails."""

    def __init__(self, hosts: List[Tuple[str, str]], error: Optional[Exception] = None):
        super().__init__()
        self.hosts = hosts
        self.error = error
        self.calls = []

    async def discover(self, network_interface, broadcast_address, timeout_ms):
        self.calls.append((network_interface, broadcast_address, timeout_ms))
        if self.error is not None:
            raise self.error
        return [PendingProbe(ip, mac) for ip, mac in self.hosts]


class ScriptedProbe(AddressDiscoveryProbe):
    """Emits an arbitrary sequence of events, bypassing the usual filtering.

    Steps: ("response", ip, mac), ("complete",), ("sleep", seconds), ("fail", exc).
    """

    def __init__(self, steps):
        super().__init__()
        self.steps = steps

    async def discover(self, network_interface, broadcast_address, timeout_ms):
        return []

    async def start(self, network_interface, broadcast_address, timeout_ms=3000):
        found = []
        for step in self.steps:
            if step[0] == "response":
                found.append(step[1])
                self.events.emit(ProbeEvent.RESPONSE, PendingProbe(step[1], step[2]))
            elif step[0] == "complete":
                self.events.emit(ProbeEvent.COMPLETE, ScanReport.for_discovery(found, 0))
            elif step[0] == "sleep":
                await asyncio.sleep(step[1])
            elif step[0] == "fail":
                raise step[1]
        return found


class FakeSession(LivenessSession):
    """Liveness session answering from a table after an optional delay."""

    def __init__(self, reachable: Optional[Dict[str, bool]] = None, delay: float = 0.0,
                 error: Optional[Exception] = None):
        super().__init__()
        self.reachable = reachable or {}
        self.delay = delay
        self.error = error
        self.calls: List[Tuple[str, float]] = []
        self.outstanding = 0
        self.max_outstanding = 0

    async def probe(self, address, timeout_ms):
        self._ensure_open()
        self.calls.append((address, time.monotonic()))
        self.outstanding += 1
        self.max_outstanding = max(self.max_outstanding, self.outstanding)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return self.reachable.get(address, True)
        finally:
            self.outstanding -= 1


class SessionFactory:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.sessions: List[FakeSession] = []

    def __call__(self) -> FakeSession:
        session = FakeSession(**self.kwargs)
        self.sessions.append(session)
        return session

    @property
    def last(self) -> FakeSession:
        return self.sessions[-1]


class FakeResolver:
    def __init__(self, hostnames: Optional[Dict[str, str]] = None, error: Optional[Exception] = None):
        self.hostnames = hostnames or {}
        self.error = error
        self.calls = []

    async def resolve(self, address, link_address=None):
        self.calls.append((address, link_address))
        if self.error is not None:
            raise self.error
        return DeviceInfo(hostname=self.hostnames.get(address))


class EventRecorder:
    def __init__(self, channel):
        self.events = []
        self.scope = channel.scope()
        for kind in ScanEvent:
            self.scope.subscribe(kind, lambda payload, kind=kind: self.events.append((kind, payload)))

    def of(self, kind):
        return [payload for k, payload in self.events if k is kind]

    def kinds(self):
        return [k for k, _ in self.events]


@pytest.fixture
def interface():
    return NetworkInterface(name="eth0", cidr="192.168.1.23/24")


@pytest.fixture
def scan_config(interface):
    return {"network_interface": interface, "timeout_ms": 500, "interval_ms": 0}
