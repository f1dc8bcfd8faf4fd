"""
PrintLink — Unified printer communication layer.

One command surface (test connection, list/delete files, start print,
status, job progress, job control) over three printer protocols:

- ACT           — text frames over raw TCP (Anycubic Photon resin printers)
- OctoPrint     — REST API with X-Api-Key auth
- Anycubic HTTP — vendor HTTP endpoint on port 18910

Usage:
    from printlink import PrinterClient, PrinterTarget, PrinterProtocol

    target = PrinterTarget("192.168.1.40", 6000, PrinterProtocol.ACT)
    with PrinterClient() as client:
        if client.test_connection(target).reachable:
            for record in client.list_files(target):
                print(record.filename, record.size)
"""

from printlink.core.errors import (
    PrinterError,
    InvalidTarget,
    Unsupported,
    Timeout,
    TransportFailure,
    AuthRequired,
    AuthRejected,
    NotFound,
    DeviceBusy,
    ProtocolError,
    Cancelled,
)
from printlink.models import (
    PrinterProtocol,
    PrinterTarget,
    PrinterFileRecord,
    PrinterState,
    ConnectionTestResult,
    FileListing,
    PrintStarted,
    FileDeleted,
    PrinterStatusReport,
    JobControlled,
    JobProgress,
)
from printlink.client import PrinterClient, PrinterCommand, CommandHandle

__version__ = "1.0.0"

__all__ = [
    "PrinterClient",
    "PrinterCommand",
    "CommandHandle",
    "PrinterProtocol",
    "PrinterTarget",
    "PrinterFileRecord",
    "PrinterState",
    "ConnectionTestResult",
    "FileListing",
    "PrintStarted",
    "FileDeleted",
    "PrinterStatusReport",
    "JobControlled",
    "JobProgress",
    "PrinterError",
    "InvalidTarget",
    "Unsupported",
    "Timeout",
    "TransportFailure",
    "AuthRequired",
    "AuthRejected",
    "NotFound",
    "DeviceBusy",
    "ProtocolError",
    "Cancelled",
]
