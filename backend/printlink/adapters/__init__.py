"""
Printer backends package.

Backend implementations:
- act.py       — ActBackend (raw TCP, text frames; codec in act_codec.py)
- octoprint.py — OctoPrintBackend (REST, X-Api-Key)
- anycubic.py  — AnycubicBackend (vendor HTTP on port 18910)

HTTP backends share the requests-based transport in http_transport.py but
nothing else: paths, payloads and status semantics are protocol-specific.

Every method receives the CommandContext of the running command and the
target. Results flow back unchanged; every failure is raised as a
printlink.core.errors.PrinterError subclass.
"""

from abc import ABC, abstractmethod
from typing import Optional

from printlink.core.context import CommandContext
from printlink.core.errors import Unsupported
from printlink.models import (
    FileDeleted,
    FileListing,
    JobControlled,
    JobProgress,
    PrinterProtocol,
    PrinterStatusReport,
    PrinterTarget,
    PrintStarted,
)


class PrinterBackend(ABC):
    """Base interface for all printer protocol backends."""

    protocol: PrinterProtocol

    @abstractmethod
    def test_connection(self, ctx: CommandContext, target: PrinterTarget) -> Optional[str]:
        """
        Minimal protocol handshake.

        Returns:
            A short printer identity string (model, firmware) if known.
        """

    @abstractmethod
    def start_print(self, ctx: CommandContext, target: PrinterTarget, filename: str) -> PrintStarted:
        """Begin printing a file already stored on the printer."""

    @abstractmethod
    def get_status(self, ctx: CommandContext, target: PrinterTarget) -> PrinterStatusReport:
        """Current printer state."""

    # ============== Optional Methods (override if supported) ==============

    def list_files(self, ctx: CommandContext, target: PrinterTarget) -> FileListing:
        raise Unsupported(f"{self.protocol.value} printers do not expose file storage")

    def delete_file(self, ctx: CommandContext, target: PrinterTarget, filename: str) -> FileDeleted:
        raise Unsupported(f"{self.protocol.value} printers do not expose file storage")

    def pause_print(self, ctx: CommandContext, target: PrinterTarget) -> JobControlled:
        raise Unsupported(f"Pause not supported for {self.protocol.value} printers")

    def resume_print(self, ctx: CommandContext, target: PrinterTarget) -> JobControlled:
        raise Unsupported(f"Resume not supported for {self.protocol.value} printers")

    def cancel_print(self, ctx: CommandContext, target: PrinterTarget) -> JobControlled:
        raise Unsupported(f"Cancel not supported for {self.protocol.value} printers")

    def get_job_status(self, ctx: CommandContext, target: PrinterTarget) -> JobProgress:
        raise Unsupported(f"Job progress not reported by {self.protocol.value} printers")

    def close(self):
        """Release backend-held resources. Most backends hold none."""
