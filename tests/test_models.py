"""
Unit tests for printlink/models.py — targets, file records, listings.

Pure logic tests, no sockets.

Run:
    pytest tests/test_models.py -v
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from printlink.core.errors import InvalidTarget
from printlink.models import (
    FileListing,
    JobProgress,
    PrinterFileRecord,
    PrinterProtocol,
    PrinterState,
    PrinterStatusReport,
    PrinterTarget,
    utc_from_unix,
)


class TestPrinterProtocol:
    def test_default_ports(self):
        assert PrinterProtocol.ACT.default_port == 6000
        assert PrinterProtocol.OCTOPRINT.default_port == 80
        assert PrinterProtocol.ANYCUBIC_HTTP.default_port == 18910

    def test_only_octoprint_needs_key(self):
        assert PrinterProtocol.OCTOPRINT.requires_api_key
        assert not PrinterProtocol.ACT.requires_api_key
        assert not PrinterProtocol.ANYCUBIC_HTTP.requires_api_key

    def test_parse_value_and_name(self):
        assert PrinterProtocol.parse("act") is PrinterProtocol.ACT
        assert PrinterProtocol.parse("anycubicHTTP") is PrinterProtocol.ANYCUBIC_HTTP
        assert PrinterProtocol.parse("ANYCUBIC_HTTP") is PrinterProtocol.ANYCUBIC_HTTP
        assert PrinterProtocol.parse(PrinterProtocol.OCTOPRINT) is PrinterProtocol.OCTOPRINT

    def test_parse_unknown(self):
        with pytest.raises(InvalidTarget):
            PrinterProtocol.parse("klipper")


class TestPrinterTargetFromConfig:
    def test_missing_port_uses_default(self):
        assert PrinterTarget.from_config("192.168.1.40", None, "act").port == 6000
        assert PrinterTarget.from_config("192.168.1.40", "", "anycubicHTTP").port == 18910

    def test_numeric_string_port(self):
        target = PrinterTarget.from_config(" 192.168.1.40 ", " 6001 ", "act")
        assert target.address == "192.168.1.40"
        assert target.port == 6001

    def test_unparsable_port_is_invalid_not_defaulted(self):
        with pytest.raises(InvalidTarget):
            PrinterTarget.from_config("192.168.1.40", "abc", "act")

    def test_bool_port_rejected(self):
        with pytest.raises(InvalidTarget):
            PrinterTarget.from_config("192.168.1.40", True, "act")

    @pytest.mark.parametrize("port", [0, 65536, -1, "70000"])
    def test_port_out_of_range(self, port):
        with pytest.raises(InvalidTarget):
            PrinterTarget.from_config("192.168.1.40", port, "act")

    @pytest.mark.parametrize("address", ["", "printer.local", "192.168.1", "300.1.1.1", "::1"])
    def test_address_must_be_ipv4(self, address):
        with pytest.raises(InvalidTarget):
            PrinterTarget.from_config(address, 6000, "act")

    def test_octoprint_requires_key(self):
        with pytest.raises(InvalidTarget):
            PrinterTarget.from_config("10.0.0.5", 80, "octoprint")
        with pytest.raises(InvalidTarget):
            PrinterTarget.from_config("10.0.0.5", 80, "octoprint", "   ")

    def test_octoprint_key_optional_for_connection_test(self):
        target = PrinterTarget.from_config("10.0.0.5", 80, "octoprint", require_api_key=False)
        assert target.api_key is None

    def test_api_key_tolerated_for_act(self):
        target = PrinterTarget.from_config("192.168.1.40", None, "act", api_key="unused")
        assert target.protocol is PrinterProtocol.ACT


class TestPrinterTarget:
    def test_api_key_not_in_repr(self):
        target = PrinterTarget("10.0.0.5", 80, PrinterProtocol.OCTOPRINT, api_key="s3cret")
        assert "s3cret" not in repr(target)
        assert "s3cret" not in str(target)

    def test_str(self):
        assert str(PrinterTarget("10.0.0.5", 6000, PrinterProtocol.ACT)) == "act://10.0.0.5:6000"

    def test_cache_key_excludes_api_key(self):
        a = PrinterTarget("10.0.0.5", 80, PrinterProtocol.OCTOPRINT, api_key="a")
        b = PrinterTarget("10.0.0.5", 80, PrinterProtocol.OCTOPRINT, api_key="b")
        assert a.key == b.key

    def test_frozen(self):
        target = PrinterTarget("10.0.0.5", 6000, PrinterProtocol.ACT)
        with pytest.raises(FrozenInstanceError):
            target.port = 6001


class TestFileRecords:
    def test_empty_filename_rejected(self):
        with pytest.raises(ValueError):
            PrinterFileRecord("")

    def test_negative_size_rejected(self):
        with pytest.raises(ValueError):
            PrinterFileRecord("cube.pwmx", size=-1)

    def test_listing_unique_by_filename(self):
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        listing = FileListing([
            PrinterFileRecord("cube.pwmx", 10),
            PrinterFileRecord("ring.pwmx", 20, when),
            PrinterFileRecord("cube.pwmx", 99),
        ])
        assert len(listing) == 2
        assert listing.filenames == {"cube.pwmx", "ring.pwmx"}
        assert listing.get("cube.pwmx").size == 10
        assert listing.get("ring.pwmx").modified == when
        assert "ring.pwmx" in listing
        assert "missing.pwmx" not in listing

    def test_listing_equality_ignores_order(self):
        a = FileListing([PrinterFileRecord("a", 1), PrinterFileRecord("b", 2)])
        b = FileListing([PrinterFileRecord("b", 2), PrinterFileRecord("a", 1)])
        assert a == b

    def test_empty_listing(self):
        listing = FileListing()
        assert len(listing) == 0
        assert not listing
        assert list(listing) == []


class TestPrinterState:
    def test_busy_states(self):
        assert PrinterState.PRINTING.is_busy
        assert PrinterState.PAUSED.is_busy
        assert PrinterState.STOPPING.is_busy
        assert not PrinterState.IDLE.is_busy
        assert not PrinterState.OFFLINE.is_busy


class TestUtcFromUnix:
    def test_seconds(self):
        assert utc_from_unix(1700000000) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_float_seconds(self):
        assert utc_from_unix(0.5) == datetime(1970, 1, 1, 0, 0, 0, 500000, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "1700000000", True, 10 ** 20])
    def test_malformed_is_none(self, value):
        assert utc_from_unix(value) is None


class TestResults:
    def test_status_temperatures_default_absent(self):
        report = PrinterStatusReport(state=PrinterState.IDLE)
        assert report.tool_temperature is None
        assert report.bed_target is None

    def test_job_progress_raw_ignored_in_equality(self):
        a = JobProgress(PrinterState.PRINTING, "Printing", "cube.gcode", 10.0, raw={"x": 1})
        b = JobProgress(PrinterState.PRINTING, "Printing", "cube.gcode", 10.0)
        assert a == b
