import asyncio
import socket

import pytest

import resolver
from device import DeviceInfo
from resolver import DeviceInfoResolver


class FakeMacLookup:
    def __init__(self, vendors=None):
        self.vendors = vendors or {}
        self.calls = []
        self.loads = 0

    async def load_vendors(self):
        self.loads += 1

    async def lookup(self, mac):
        self.calls.append(mac)
        if mac not in self.vendors:
            raise KeyError(mac)
        return self.vendors[mac]


@pytest.mark.asyncio
async def test_hostname_strips_trailing_dot(monkeypatch):
    monkeypatch.setattr(resolver.socket, "gethostbyaddr",
                        lambda ip: ("printer.lan.", [], [ip]))
    assert await DeviceInfoResolver().hostname("192.168.1.9") == "printer.lan"


@pytest.mark.asyncio
async def test_unknown_host_has_no_hostname(monkeypatch):
    def fail(ip):
        raise socket.herror(1, "Unknown host")

    monkeypatch.setattr(resolver.socket, "gethostbyaddr", fail)
    assert await DeviceInfoResolver().hostname("192.168.1.9") is None


@pytest.mark.asyncio
async def test_resolve_combines_hostname_and_vendor(monkeypatch):
    monkeypatch.setattr(resolver.socket, "gethostbyaddr",
                        lambda ip: ("pi.lan", [], [ip]))
    lookup = FakeMacLookup({"98:17:3c:01:e8:f2": "Raspberry Pi Trading Ltd"})
    info = await DeviceInfoResolver(mac_lookup=lookup).resolve("192.168.1.10", "98:17:3c:01:e8:f2")
    assert info == DeviceInfo(hostname="pi.lan", vendor="Raspberry Pi Trading Ltd")


@pytest.mark.asyncio
async def test_unknown_vendor_is_none():
    lookup = FakeMacLookup()
    assert await DeviceInfoResolver(mac_lookup=lookup).vendor("00:00:00:00:00:01") is None
    assert lookup.calls == ["00:00:00:00:00:01"]


@pytest.mark.asyncio
async def test_vendor_lookup_can_be_disabled():
    lookup = FakeMacLookup({"00:00:00:00:00:01": "Acme"})
    resolver_ = DeviceInfoResolver(lookup_vendors=False, mac_lookup=lookup)
    assert await resolver_.vendor("00:00:00:00:00:01") is None
    assert lookup.calls == []


@pytest.mark.asyncio
async def test_no_link_address_skips_vendor(monkeypatch):
    monkeypatch.setattr(resolver.socket, "gethostbyaddr",
                        lambda ip: ("pi.lan", [], [ip]))
    lookup = FakeMacLookup()
    info = await DeviceInfoResolver(mac_lookup=lookup).resolve("192.168.1.10")
    assert info.vendor is None
    assert lookup.calls == []


class HangingMacLookup(FakeMacLookup):
    async def lookup(self, mac):
        await asyncio.sleep(5)
        return "Never"


@pytest.mark.asyncio
async def test_hanging_vendor_lookup_times_out(monkeypatch):
    monkeypatch.setattr(resolver.socket, "gethostbyaddr",
                        lambda ip: ("pi.lan", [], [ip]))
    resolver_ = DeviceInfoResolver(timeout_ms=100, mac_lookup=HangingMacLookup())

    info = await asyncio.wait_for(resolver_.resolve("192.168.1.10", "98:17:3c:01:e8:f2"), 1)

    assert info == DeviceInfo(hostname="pi.lan", vendor=None)


@pytest.mark.asyncio
async def test_vendor_list_loaded_once_for_concurrent_lookups():
    lookup = FakeMacLookup({"00:00:00:00:00:01": "Acme", "00:00:00:00:00:02": "Initech"})
    resolver_ = DeviceInfoResolver(mac_lookup=lookup)

    vendors = await asyncio.gather(resolver_.vendor("00:00:00:00:00:01"),
                                   resolver_.vendor("00:00:00:00:00:02"))

    assert vendors == ["Acme", "Initech"]
    assert lookup.loads == 1
