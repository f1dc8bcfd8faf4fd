"""
OctoPrint Backend — REST API client for OctoPrint-compatible printers.

Protocol: OctoPrint REST API
Auth: X-Api-Key header
Endpoints:
    GET    /api/version                    connection test
    GET    /api/files/local?recursive=true file listing
    POST   /api/files/local/{path}         {"command": "select", "print": true}
    DELETE /api/files/local/{path}         delete
    GET    /api/printer                    status + temperatures
    GET    /api/job                        job progress
    POST   /api/job                        pause / resume / cancel

Reference:
  - https://docs.octoprint.org/en/master/api/index.html

Status mapping (transport mapping lives in http_transport.py):
    401 -> AuthRejected if a key was sent, AuthRequired otherwise
    403 -> AuthRejected
    404 -> NotFound
    409 -> DeviceBusy (start/delete), Unsupported (job control)
    other 4xx -> ProtocolError
"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests

from printlink.adapters import PrinterBackend
from printlink.adapters.http_transport import HttpTransport
from printlink.core.context import CommandContext
from printlink.core.errors import (
    AuthRejected,
    AuthRequired,
    DeviceBusy,
    NotFound,
    ProtocolError,
    Unsupported,
)
from printlink.models import (
    FileDeleted,
    FileListing,
    JobControlled,
    JobProgress,
    PrinterFileRecord,
    PrinterProtocol,
    PrinterState,
    PrinterStatusReport,
    PrinterTarget,
    PrintStarted,
    utc_from_unix,
)

log = logging.getLogger("printlink.octoprint")

API_KEY_HEADER = "X-Api-Key"


def _file_path(filename: str) -> str:
    return "/api/files/local/" + quote(filename, safe="/")


def _size(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _temperature(data: Dict[str, Any], sensor: str, key: str) -> Optional[float]:
    """Read temperature.<sensor>.<key> ("actual" or "target") from /api/printer."""
    temps = data.get("temperature")
    reading = temps.get(sensor) if isinstance(temps, dict) else None
    return _number(reading.get(key)) if isinstance(reading, dict) else None


# /api/job reports the state as text only ("Printing from SD", "Offline after error", ...)
JOB_STATE_PREFIXES = (
    ("cancelling", PrinterState.STOPPING),
    ("printing", PrinterState.PRINTING),
    ("starting", PrinterState.PRINTING),
    ("resuming", PrinterState.PRINTING),
    ("finishing", PrinterState.PRINTING),
    ("paus", PrinterState.PAUSED),
    ("offline", PrinterState.OFFLINE),
    ("error", PrinterState.OFFLINE),
    ("closed", PrinterState.OFFLINE),
    ("operational", PrinterState.IDLE),
    ("ready", PrinterState.IDLE),
)


def job_state(text: str) -> PrinterState:
    lowered = text.strip().lower()
    for prefix, state in JOB_STATE_PREFIXES:
        if lowered.startswith(prefix):
            return state
    return PrinterState.UNKNOWN


def parse_file_list(payload: Dict[str, Any]) -> List[PrinterFileRecord]:
    """
    Flatten an OctoPrint /api/files response into records.

    Folders are walked through their "children". Files are identified by
    "path" (relative to the storage root), falling back to "name". Missing
    or malformed size/date are left absent.
    """
    files = payload.get("files")
    if not isinstance(files, list):
        raise ProtocolError("OctoPrint file list has no 'files' array")

    records: List[PrinterFileRecord] = []

    def walk(entries: Iterable[Any]):
        for entry in entries:
            if not isinstance(entry, dict):
                raise ProtocolError(f"OctoPrint file entry is not an object: {entry!r}")
            if entry.get("type") == "folder":
                children = entry.get("children") or []
                if not isinstance(children, list):
                    raise ProtocolError(f"OctoPrint folder children is not an array: {entry.get('path')!r}")
                walk(children)
                continue
            name = entry.get("path") or entry.get("name")
            if not isinstance(name, str) or not name:
                raise ProtocolError(f"OctoPrint file entry without a name: {entry!r}")
            records.append(PrinterFileRecord(
                filename=name,
                size=_size(entry.get("size")),
                modified=utc_from_unix(entry.get("date")),
            ))

    walk(files)
    return records


class OctoPrintBackend(PrinterBackend):
    """
    Client for the OctoPrint REST API.

    No persistent connection needed. Each call is a simple HTTP request,
    optionally over a cached session.
    """

    protocol = PrinterProtocol.OCTOPRINT

    def __init__(self, transport: Optional[HttpTransport] = None):
        self.transport = transport or HttpTransport()

    # ==================== Requests ====================

    def _request(self, ctx: CommandContext, target: PrinterTarget, method: str, path: str, **kwargs) -> requests.Response:
        headers = {}
        if target.api_key:
            headers[API_KEY_HEADER] = target.api_key
        return self.transport.request(ctx, target, method, path, headers=headers, **kwargs)

    def _raise_for_status(
        self,
        resp: requests.Response,
        target: PrinterTarget,
        *,
        filename: Optional[str] = None,
        conflict: type = DeviceBusy,
    ):
        code = resp.status_code
        if 200 <= code < 300:
            return
        subject = f"{filename!r}" if filename else resp.request.path_url
        if code == 401:
            if target.api_key:
                raise AuthRejected(f"{target} rejected the API key", extra={"status_code": code})
            raise AuthRequired(f"{target} requires an API key", extra={"status_code": code})
        if code == 403:
            raise AuthRejected(f"{target} denied access (HTTP 403)", extra={"status_code": code})
        if code == 404:
            raise NotFound(f"{subject} not found on {target}", extra={"status_code": code})
        if code == 409:
            raise conflict(f"{target} refused {subject}: {_error_text(resp)}", extra={"status_code": code})
        raise ProtocolError(
            f"{target} returned HTTP {code} for {subject}: {_error_text(resp)}",
            extra={"status_code": code},
        )

    # ==================== Connection ====================

    def test_connection(self, ctx: CommandContext, target: PrinterTarget) -> Optional[str]:
        resp = self._request(ctx, target, "GET", "/api/version")
        self._raise_for_status(resp, target)
        data = self.transport.json_body(resp)
        if "api" not in data or "server" not in data:
            raise ProtocolError(f"{target} /api/version lacks api/server fields")
        identity = data.get("text") or f"OctoPrint {data['server']}"
        log.info(f"[octoprint] {target} reachable: {identity} (API {data['api']})")
        return identity

    # ==================== Status ====================

    def get_status(self, ctx: CommandContext, target: PrinterTarget) -> PrinterStatusReport:
        resp = self._request(ctx, target, "GET", "/api/printer")
        if resp.status_code == 409:
            # OctoPrint is up but not connected to the printer
            return PrinterStatusReport(state=PrinterState.OFFLINE, state_text=_error_text(resp))
        self._raise_for_status(resp, target)
        data = self.transport.json_body(resp)

        state_info = data.get("state")
        if not isinstance(state_info, dict):
            raise ProtocolError(f"{target} /api/printer has no state object")
        text = state_info.get("text") or ""
        flags = state_info.get("flags") or {}

        if flags.get("cancelling"):
            state = PrinterState.STOPPING
        elif flags.get("printing"):
            state = PrinterState.PRINTING
        elif flags.get("paused") or flags.get("pausing"):
            state = PrinterState.PAUSED
        elif flags.get("error") or flags.get("closedOrError"):
            state = PrinterState.OFFLINE
        elif flags.get("ready") or flags.get("operational"):
            state = PrinterState.IDLE
        else:
            state = PrinterState.UNKNOWN

        return PrinterStatusReport(
            state=state,
            state_text=text,
            tool_temperature=_temperature(data, "tool0", "actual"),
            tool_target=_temperature(data, "tool0", "target"),
            bed_temperature=_temperature(data, "bed", "actual"),
            bed_target=_temperature(data, "bed", "target"),
            raw=data,
        )

    def get_job_status(self, ctx: CommandContext, target: PrinterTarget) -> JobProgress:
        resp = self._request(ctx, target, "GET", "/api/job")
        self._raise_for_status(resp, target)
        data = self.transport.json_body(resp)

        text = data.get("state")
        if not isinstance(text, str):
            raise ProtocolError(f"{target} /api/job has no state")
        job = data.get("job") if isinstance(data.get("job"), dict) else {}
        file_info = job.get("file") if isinstance(job.get("file"), dict) else {}
        progress = data.get("progress") if isinstance(data.get("progress"), dict) else {}
        filename = file_info.get("path") or file_info.get("name")

        return JobProgress(
            state=job_state(text),
            state_text=text,
            filename=filename if isinstance(filename, str) and filename else None,
            completion=_number(progress.get("completion")),
            print_time=_number(progress.get("printTime")),
            print_time_left=_number(progress.get("printTimeLeft")),
            raw=data,
        )

    # ==================== Files ====================

    def list_files(self, ctx: CommandContext, target: PrinterTarget) -> FileListing:
        resp = self._request(ctx, target, "GET", "/api/files/local", params={"recursive": "true"})
        self._raise_for_status(resp, target)
        records = parse_file_list(self.transport.json_body(resp))
        log.debug(f"[octoprint] {target}: {len(records)} file(s)")
        return FileListing(records)

    def delete_file(self, ctx: CommandContext, target: PrinterTarget, filename: str) -> FileDeleted:
        resp = self._request(ctx, target, "DELETE", _file_path(filename))
        self._raise_for_status(resp, target, filename=filename)
        log.info(f"[octoprint] {target}: deleted {filename!r}")
        return FileDeleted(filename)

    # ==================== Print Control ====================

    def start_print(self, ctx: CommandContext, target: PrinterTarget, filename: str) -> PrintStarted:
        resp = self._request(
            ctx, target, "POST", _file_path(filename),
            json={"command": "select", "print": True},
        )
        self._raise_for_status(resp, target, filename=filename)
        log.info(f"[octoprint] {target}: started {filename!r}")
        return PrintStarted(filename)

    def _job_command(self, ctx: CommandContext, target: PrinterTarget, body: Dict[str, str], action: str) -> JobControlled:
        resp = self._request(ctx, target, "POST", "/api/job", json=body)
        self._raise_for_status(resp, target, conflict=Unsupported)
        log.info(f"[octoprint] {target}: {action} accepted")
        return JobControlled(action)

    def pause_print(self, ctx: CommandContext, target: PrinterTarget) -> JobControlled:
        return self._job_command(ctx, target, {"command": "pause", "action": "pause"}, "pause")

    def resume_print(self, ctx: CommandContext, target: PrinterTarget) -> JobControlled:
        return self._job_command(ctx, target, {"command": "pause", "action": "resume"}, "resume")

    def cancel_print(self, ctx: CommandContext, target: PrinterTarget) -> JobControlled:
        return self._job_command(ctx, target, {"command": "cancel"}, "cancel")


def _error_text(resp: requests.Response) -> str:
    """OctoPrint puts a human-readable reason in {"error": ...} or the body."""
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:200]
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return (resp.text or "").strip()[:200]
