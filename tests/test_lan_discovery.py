import argparse
import logging

import pytest

import lan_discovery
from device import Device, NetworkInterface
from errors import ConfigurationError


def make_args(**overrides):
    values = dict(interface=None, cidr=None, timeout_ms=None, interval_ms=None, method=None,
                  output=None, no_vendor=True, update_mac_db=False, verbose=False, debug=False)
    values.update(overrides)
    return argparse.Namespace(**values)


class TestResolveInterface:
    def test_command_line_wins(self, monkeypatch):
        monkeypatch.setattr(lan_discovery, "get_default_interface",
                            lambda: pytest.fail("default route should not be consulted"))
        settings = {"network_interface": {"name": "wlan0", "cidr": "10.0.0.5/24"}}
        interface = lan_discovery.resolve_interface(
            make_args(interface="eth0", cidr="192.168.1.23/24"), settings)
        assert interface == NetworkInterface("eth0", "192.168.1.23/24")

    def test_settings_used_when_flags_absent(self):
        settings = {"network_interface": {"name": "wlan0", "cidr": "10.0.0.5/24"}}
        interface = lan_discovery.resolve_interface(make_args(), settings)
        assert interface == NetworkInterface("wlan0", "10.0.0.5/24")

    def test_missing_values_come_from_default_route(self, monkeypatch):
        monkeypatch.setattr(lan_discovery, "get_default_interface",
                            lambda: NetworkInterface("enp3s0", "172.16.0.9/16"))
        interface = lan_discovery.resolve_interface(make_args(interface="br0"), {})
        assert interface == NetworkInterface("br0", "172.16.0.9/16")


class TestBuildScanConfig:
    def test_flags_override_settings(self):
        settings = {"general": {"timeout_ms": 1500, "interval_ms": 20}}
        config = lan_discovery.build_scan_config(
            make_args(timeout_ms=800), settings, NetworkInterface("eth0", "192.168.1.23/24"))
        assert config.timeout_ms == 800
        assert config.interval_ms == 20

    def test_defaults_without_settings(self):
        config = lan_discovery.build_scan_config(
            make_args(), {}, NetworkInterface("eth0", "192.168.1.23/24"))
        assert config.timeout_ms == 3000
        assert config.interval_ms == 0

    def test_invalid_timeout(self):
        with pytest.raises(ConfigurationError):
            lan_discovery.build_scan_config(
                make_args(timeout_ms=0), {}, NetworkInterface("eth0", "192.168.1.23/24"))


def test_report_changes_logs_new_and_gone(caplog):
    previous = [Device("10.0.0.1", "aa:aa:aa:aa:aa:01"), Device("10.0.0.2", "aa:aa:aa:aa:aa:02")]
    current = [Device("10.0.0.2", "aa:aa:aa:aa:aa:02"), Device("10.0.0.3", "aa:aa:aa:aa:aa:03")]
    with caplog.at_level(logging.INFO, logger="lan_discovery"):
        lan_discovery.report_changes(previous, current)
    assert "New device: IP=10.0.0.3" in caplog.text
    assert "Device went offline: IP=10.0.0.1" in caplog.text


def test_main_returns_2_on_configuration_error(monkeypatch):
    def broken(args):
        raise ConfigurationError("network_interface.cidr is required")

    monkeypatch.setattr(lan_discovery, "run_scan", broken)
    assert lan_discovery.main(["--method", "router", "--no-vendor"]) == 2
