"""
PrintLink Test Suite — Shared Fixtures

Every test runs against in-process fake printers bound to 127.0.0.1;
no live hardware or network is needed.

Usage:
    pip install -e ".[test]"
    pytest tests/ -v --tb=short
"""

import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from helpers import FakeActPrinter, FakeAnycubicPrinter, FakeOctoPrint, HOST  # noqa: E402
from printlink.client import PrinterClient  # noqa: E402
from printlink.core.config import Settings  # noqa: E402
from printlink.models import PrinterProtocol, PrinterTarget  # noqa: E402


# ---------------------------------------------------------------------------
# Settings / client
# ---------------------------------------------------------------------------

@pytest.fixture
def fast_settings():
    """Short budgets so failure paths finish quickly."""
    return Settings(
        connection_test_timeout=2.0,
        list_files_timeout=3.0,
        delete_file_timeout=3.0,
        start_print_timeout=3.0,
        status_timeout=3.0,
        job_control_timeout=3.0,
        retry_backoff=0.05,
        act_max_frame_bytes=1024,
        max_workers=8,
    )


@pytest.fixture
def client(fast_settings):
    c = PrinterClient(fast_settings)
    yield c
    c.close()


# ---------------------------------------------------------------------------
# Fake printers
# ---------------------------------------------------------------------------

@pytest.fixture
def act_printer():
    printer = FakeActPrinter().start()
    yield printer
    printer.stop()


@pytest.fixture
def act_target(act_printer):
    return PrinterTarget(HOST, act_printer.port, PrinterProtocol.ACT)


@pytest.fixture
def octoprint():
    server = FakeOctoPrint().start()
    yield server
    server.stop()


@pytest.fixture
def octoprint_target(octoprint):
    return PrinterTarget(HOST, octoprint.port, PrinterProtocol.OCTOPRINT, api_key=FakeOctoPrint.API_KEY)


@pytest.fixture
def anycubic():
    server = FakeAnycubicPrinter().start()
    yield server
    server.stop()


@pytest.fixture
def anycubic_target(anycubic):
    return PrinterTarget(HOST, anycubic.port, PrinterProtocol.ANYCUBIC_HTTP)
