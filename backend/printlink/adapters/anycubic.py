"""
Anycubic HTTP Backend — vendor HTTP API on LAN-mode Anycubic printers.

Port: 18910
Auth: None (LAN mode)
Endpoints:
    GET  /info           identity + state (plain JSON object)
    GET  /files          {"code": 0, "msg": "ok", "data": {"files": [...]}}
    POST /print          {"filename": name}
    POST /files/delete   {"filename": name}

File endpoints wrap results in a vendor envelope and report application
errors with HTTP 200 and a non-zero code:

    0 ok | 2 file not found | 3 busy | 4 unsupported

The firmware has no job control and reports no job progress over HTTP.
"""

import logging
from typing import Any, Dict, Optional

import requests

from printlink.adapters import PrinterBackend
from printlink.adapters.http_transport import HttpTransport
from printlink.core.context import CommandContext
from printlink.core.errors import (
    AuthRequired,
    DeviceBusy,
    NotFound,
    ProtocolError,
    Unsupported,
)
from printlink.models import (
    FileDeleted,
    FileListing,
    PrinterFileRecord,
    PrinterProtocol,
    PrinterState,
    PrinterStatusReport,
    PrinterTarget,
    PrintStarted,
    utc_from_unix,
)

log = logging.getLogger("printlink.anycubic")

IDENTITY_FIELDS = ("modelName", "deviceId", "cn")

CODE_OK = 0
CODE_NOT_FOUND = 2
CODE_BUSY = 3
CODE_UNSUPPORTED = 4

ANYCUBIC_STATE_MAP = {
    "free": PrinterState.IDLE,
    "idle": PrinterState.IDLE,
    "ready": PrinterState.IDLE,
    "printing": PrinterState.PRINTING,
    "busy": PrinterState.PRINTING,
    "paused": PrinterState.PAUSED,
    "pausing": PrinterState.PAUSED,
    "stopping": PrinterState.STOPPING,
    "offline": PrinterState.OFFLINE,
}


class AnycubicBackend(PrinterBackend):
    """Client for the Anycubic LAN HTTP API."""

    protocol = PrinterProtocol.ANYCUBIC_HTTP

    def __init__(self, transport: Optional[HttpTransport] = None):
        self.transport = transport or HttpTransport()

    # ==================== Requests ====================

    def _request(self, ctx: CommandContext, target: PrinterTarget, method: str, path: str, **kwargs) -> requests.Response:
        resp = self.transport.request(ctx, target, method, path, **kwargs)
        code = resp.status_code
        if code in (401, 403):
            raise AuthRequired(
                f"{target} refused {path} (HTTP {code}); LAN mode may be disabled",
                extra={"status_code": code},
            )
        if code == 404:
            raise Unsupported(f"{target} firmware has no {path} endpoint", extra={"status_code": code})
        if not 200 <= code < 300:
            raise ProtocolError(f"{target} returned HTTP {code} for {path}", extra={"status_code": code})
        return resp

    def _envelope(self, resp: requests.Response, target: PrinterTarget, filename: Optional[str] = None) -> Any:
        body = self.transport.json_body(resp)
        code = body.get("code")
        if isinstance(code, bool) or not isinstance(code, int):
            raise ProtocolError(f"{target} reply has no integer 'code': {body!r}")
        msg = body.get("msg") or ""
        subject = f"{filename!r}" if filename else "request"

        if code == CODE_OK:
            return body.get("data")
        if code == CODE_NOT_FOUND:
            raise NotFound(f"{subject} not found on {target}", extra={"code": code, "msg": msg})
        if code == CODE_BUSY:
            raise DeviceBusy(f"{target} is busy: {msg}", extra={"code": code})
        if code == CODE_UNSUPPORTED:
            raise Unsupported(f"{target} does not support {subject}: {msg}", extra={"code": code})
        raise ProtocolError(f"{target} error code {code}: {msg}", extra={"code": code, "msg": msg})

    def _info(self, ctx: CommandContext, target: PrinterTarget) -> Dict[str, Any]:
        resp = self._request(ctx, target, "GET", "/info")
        return self.transport.json_body(resp)

    # ==================== Connection ====================

    def test_connection(self, ctx: CommandContext, target: PrinterTarget) -> Optional[str]:
        info = self._info(ctx, target)
        if not any(info.get(field) for field in IDENTITY_FIELDS):
            raise ProtocolError(f"{target} /info has no identity fields")
        name = info.get("modelName") or info.get("deviceId") or info.get("cn")
        firmware = info.get("firmwareVersion")
        log.info(f"[anycubic] {target} reachable: {name} (fw {firmware or '?'})")
        return f"{name} {firmware}" if firmware else str(name)

    # ==================== Status ====================

    def get_status(self, ctx: CommandContext, target: PrinterTarget) -> PrinterStatusReport:
        info = self._info(ctx, target)
        raw_state = info.get("state")
        text = raw_state if isinstance(raw_state, str) else ""
        return PrinterStatusReport(
            state=ANYCUBIC_STATE_MAP.get(text.lower(), PrinterState.UNKNOWN),
            state_text=text,
            printer_name=info.get("modelName"),
            firmware_version=info.get("firmwareVersion"),
            raw=info,
        )

    # ==================== Files ====================

    def list_files(self, ctx: CommandContext, target: PrinterTarget) -> FileListing:
        resp = self._request(ctx, target, "GET", "/files")
        data = self._envelope(resp, target)
        files = data.get("files") if isinstance(data, dict) else None
        if not isinstance(files, list):
            raise ProtocolError(f"{target} /files has no 'files' array")

        records = []
        for entry in files:
            if not isinstance(entry, dict):
                raise ProtocolError(f"Anycubic file entry is not an object: {entry!r}")
            name = entry.get("filename")
            if not isinstance(name, str) or not name:
                raise ProtocolError(f"Anycubic file entry without a filename: {entry!r}")
            size = entry.get("size")
            mtime = entry.get("mtime")
            records.append(PrinterFileRecord(
                filename=name,
                size=size if isinstance(size, int) and not isinstance(size, bool) and size >= 0 else None,
                modified=utc_from_unix(mtime),
            ))
        log.debug(f"[anycubic] {target}: {len(records)} file(s)")
        return FileListing(records)

    def delete_file(self, ctx: CommandContext, target: PrinterTarget, filename: str) -> FileDeleted:
        resp = self._request(ctx, target, "POST", "/files/delete", json={"filename": filename})
        self._envelope(resp, target, filename)
        log.info(f"[anycubic] {target}: deleted {filename!r}")
        return FileDeleted(filename)

    # ==================== Print Control ====================

    def start_print(self, ctx: CommandContext, target: PrinterTarget, filename: str) -> PrintStarted:
        status = self.get_status(ctx, target)
        if status.state.is_busy:
            raise DeviceBusy(f"{target} is {status.state_text!r}; cannot start {filename!r}")

        resp = self._request(ctx, target, "POST", "/print", json={"filename": filename})
        self._envelope(resp, target, filename)
        log.info(f"[anycubic] {target}: started {filename!r}")
        return PrintStarted(filename)

