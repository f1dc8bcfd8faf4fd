"""
Unified printer error taxonomy.

Every backend translates its transport and application failures into one of
these before returning. Raw OSError / requests / JSON exceptions never cross
the backend boundary; they are chained as __cause__ for diagnostics.

Only TransportFailure is retryable. The client retries it at most once.
"""

from typing import Any, Dict, Optional


class PrinterError(Exception):
    """Base class for every error surfaced by the communication layer."""

    error_code = "printer_error"
    default_detail = "Printer command failed."
    retryable = False

    def __init__(self, detail: Optional[str] = None, *, extra: Optional[Dict[str, Any]] = None):
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.error_code, "detail": self.detail}
        if self.extra:
            payload["extra"] = dict(self.extra)
        return payload


class InvalidTarget(PrinterError):
    """Malformed address/port, missing API key or empty filename. Detected before any I/O."""

    error_code = "invalid_target"
    default_detail = "Invalid printer target."


class Unsupported(PrinterError):
    """Protocol or firmware state does not allow the requested command."""

    error_code = "unsupported"
    default_detail = "Command not supported by this printer."


class Timeout(PrinterError):
    """Command did not complete within its overall time budget."""

    error_code = "timeout"
    default_detail = "Printer did not respond in time."


class TransportFailure(PrinterError):
    """Connection refused/reset, DNS failure, socket error or HTTP 5xx."""

    error_code = "transport_failure"
    default_detail = "Could not communicate with the printer."
    retryable = True


class AuthRequired(PrinterError):
    error_code = "auth_required"
    default_detail = "Printer requires credentials."


class AuthRejected(PrinterError):
    error_code = "auth_rejected"
    default_detail = "Printer rejected the API key."


class NotFound(PrinterError):
    error_code = "not_found"
    default_detail = "File not found on printer."


class DeviceBusy(PrinterError):
    error_code = "device_busy"
    default_detail = "Printer is busy with another job."


class ProtocolError(PrinterError):
    """Corrupt frame, invalid JSON or an unexpected status from the device."""

    error_code = "protocol_error"
    default_detail = "Unexpected response from printer."


class Cancelled(PrinterError):
    """Caller abandoned the command before it completed."""

    error_code = "cancelled"
    default_detail = "Command was cancelled."
