import pytest

from device import Device, NetworkInterface, ScanConfig, ScanKind, ScanReport
from errors import ConfigurationError


class TestScanConfig:
    def test_defaults(self):
        config = ScanConfig.from_mapping({"network_interface": {"name": "eth0", "cidr": "192.168.1.23/24"}})
        assert config.network_interface == NetworkInterface("eth0", "192.168.1.23/24")
        assert config.timeout_ms == 3000
        assert config.interval_ms == 0
        assert config.verbose is False

    @pytest.mark.parametrize("interface", [
        None,
        "eth0",
        {"name": "eth0"},
        {"cidr": "192.168.1.23/24"},
        {"name": "eth0", "cidr": "not-a-network"},
        {"name": "eth0", "cidr": "192.168.1.23"},
        {"name": "eth0", "cidr": "fe80::1/64"},
        {"name": "eth0", "cidr": 3232235777},
        {"name": 5, "cidr": "192.168.1.23/24"},
    ])
    def test_invalid_interface(self, interface):
        with pytest.raises(ConfigurationError):
            ScanConfig.from_mapping({"network_interface": interface})

    @pytest.mark.parametrize("key,value", [
        ("timeout_ms", 0),
        ("timeout_ms", "3000"),
        ("interval_ms", -1),
        ("interval_ms", True),
    ])
    def test_invalid_timing(self, key, value):
        with pytest.raises(ConfigurationError):
            ScanConfig.from_mapping({
                "network_interface": {"name": "eth0", "cidr": "10.0.0.2/24"},
                key: value,
            })

    def test_missing_config(self):
        with pytest.raises(ConfigurationError):
            ScanConfig.from_mapping(None)


class TestScanReport:
    def test_target_list_counts_attempted(self):
        report = ScanReport.for_target_list(["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4"],
                                            ["10.0.0.2"], elapsed_ms=1000)
        assert report.kind is ScanKind.TARGET_LIST
        assert report.count == 4
        assert report.targets == ["10.0.0.2"]
        assert report.average_ms == 250

    def test_discovery_counts_found(self):
        report = ScanReport.for_discovery(["10.0.0.2", "10.0.0.9", "10.0.0.7"], elapsed_ms=1000)
        assert report.kind is ScanKind.DISCOVERY
        assert report.count == 3
        assert report.average_ms == 333

    def test_empty_report_has_zero_average(self):
        assert ScanReport.for_discovery([], elapsed_ms=2500).average_ms == 0
        assert ScanReport.for_target_list([], [], elapsed_ms=2500).average_ms == 0

    def test_to_dict_uses_kind_value(self):
        data = ScanReport.for_discovery(["10.0.0.2"], elapsed_ms=10).to_dict()
        assert data == {"kind": "discovery", "targets": ["10.0.0.2"], "count": 1,
                        "elapsed_ms": 10, "average_ms": 10}


class TestDevice:
    def test_dict_round_trip_keeps_nulls(self):
        device = Device(address="10.0.0.2", link_address=None, hostname=None, reachable=True)
        assert Device.from_dict(device.to_dict()) == device
