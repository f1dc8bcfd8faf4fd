"""
ACT Backend — TCP client for Anycubic Photon resin printers.

Supports: Photon Mono X, Mono X 6K, Mono SE and other ACT firmware
Protocol: comma-delimited text frames over raw TCP (see act_codec.py)
Transport: one fresh TCP connection per command on port 6000
Auth: None

Each command runs one ActSession through the states

    disconnected -> connecting -> connected -> awaiting_response -> closed
                                                                 \\-> failed

Any socket error or deadline expiry moves the session to failed and closes
the socket. The firmware accepts concurrent connections, so sessions are
never shared or cached.
"""

import logging
import socket
from enum import Enum
from typing import Optional

from printlink.adapters import PrinterBackend
from printlink.adapters.act_codec import (
    ActFrameDecoder,
    ActResponse,
    DEFAULT_MAX_FRAME_BYTES,
    encode_request,
    parse_file_entries,
)
from printlink.core.context import CommandContext
from printlink.core.errors import (
    DeviceBusy,
    NotFound,
    PrinterError,
    ProtocolError,
    Timeout,
    TransportFailure,
    Unsupported,
)
from printlink.models import (
    FileDeleted,
    FileListing,
    JobControlled,
    JobProgress,
    PrinterProtocol,
    PrinterState,
    PrinterStatusReport,
    PrinterTarget,
    PrintStarted,
)

log = logging.getLogger("printlink.act")

# Seconds of silence after a bare ",end" before the frame is accepted
END_SETTLE = 0.2


class ActSessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AWAITING_RESPONSE = "awaiting_response"
    CLOSED = "closed"
    FAILED = "failed"


# getstatus values reported by ACT firmware
ACT_STATUS_MAP = {
    "stop": PrinterState.IDLE,
    "idle": PrinterState.IDLE,
    "print": PrinterState.PRINTING,
    "printing": PrinterState.PRINTING,
    "pause": PrinterState.PAUSED,
    "paused": PrinterState.PAUSED,
    "stopping": PrinterState.STOPPING,
}


class ActSession:
    """One request/response exchange over a dedicated TCP connection."""

    def __init__(
        self,
        ctx: CommandContext,
        target: PrinterTarget,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        read_chunk_bytes: int = 8192,
        end_settle: float = END_SETTLE,
    ):
        self.ctx = ctx
        self.target = target
        self.max_frame_bytes = max_frame_bytes
        self.read_chunk_bytes = read_chunk_bytes
        self.end_settle = end_settle
        self.state = ActSessionState.DISCONNECTED
        self._sock: Optional[socket.socket] = None

    def _transition(self, state: ActSessionState):
        log.debug(f"[act] {self.target}: {self.state.value} -> {state.value}")
        self.state = state

    # ==================== Exchange ====================

    def exchange(self, command: str, *params: str) -> ActResponse:
        """Connect, send one frame, read one frame, close."""
        try:
            frame = encode_request(command, *params)
        except ValueError as e:
            raise Unsupported(f"Cannot express request in ACT framing: {e}") from e

        try:
            self._connect()
            with self.ctx.closing(self._abort):
                self._send(frame)
                response = self._receive(command)
        except PrinterError:
            self._fail()
            raise
        self._close()
        return response

    def _connect(self):
        self._transition(ActSessionState.CONNECTING)
        address = (self.target.address, self.target.port)
        try:
            self._sock = socket.create_connection(address, timeout=self.ctx.remaining())
        except socket.timeout as e:
            raise Timeout(f"Timed out connecting to {self.target}") from e
        except OSError as e:
            raise TransportFailure(f"Cannot connect to {self.target}: {e}") from e
        self._transition(ActSessionState.CONNECTED)

    def _send(self, frame: bytes):
        try:
            self._sock.settimeout(self.ctx.remaining())
            self._sock.sendall(frame)
        except socket.timeout as e:
            raise Timeout(f"Timed out sending to {self.target}") from e
        except OSError as e:
            self._raise_io(e, "sending to")
        self._transition(ActSessionState.AWAITING_RESPONSE)

    def _receive(self, command: str) -> ActResponse:
        decoder = ActFrameDecoder(command, self.max_frame_bytes)
        while True:
            settling = decoder.awaiting_line_end
            try:
                wait = self.ctx.remaining()
                if settling:
                    wait = min(wait, self.end_settle)
                self._sock.settimeout(wait)
                chunk = self._sock.recv(self.read_chunk_bytes)
            except socket.timeout as e:
                if settling:
                    # nothing followed the bare ",end", so it closed the frame
                    log.debug(f"[act] {self.target}: {command} reply ended without CRLF")
                    return decoder.decode()
                raise Timeout(
                    f"No complete ACT response from {self.target} "
                    f"({decoder.buffered} bytes received)"
                ) from e
            except OSError as e:
                self._raise_io(e, "reading from")

            if not chunk:
                self.ctx.check()
                if settling:
                    return decoder.decode()
                raise TransportFailure(
                    f"{self.target} closed the connection before responding to {command!r}",
                    extra={"received": decoder.buffered},
                )
            if decoder.feed(chunk):
                return decoder.decode()

    def _raise_io(self, error: OSError, action: str):
        # A socket shut down by cancel() surfaces here as an OSError
        self.ctx.check()
        raise TransportFailure(f"Socket error {action} {self.target}: {error}") from error

    # ==================== Teardown ====================

    def _abort(self):
        """Cancellation closer: unblock a pending recv/send immediately."""
        sock = self._sock
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()

    def _close(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        self._transition(ActSessionState.CLOSED)

    def _fail(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        self._transition(ActSessionState.FAILED)


class ActBackend(PrinterBackend):
    """ACT protocol backend. Stateless: every command opens its own session."""

    protocol = PrinterProtocol.ACT

    def __init__(
        self,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        read_chunk_bytes: int = 8192,
        end_settle: float = END_SETTLE,
    ):
        self.max_frame_bytes = max_frame_bytes
        self.read_chunk_bytes = read_chunk_bytes
        self.end_settle = end_settle

    def _send_command(self, ctx: CommandContext, target: PrinterTarget, command: str, *params: str) -> ActResponse:
        session = ActSession(ctx, target, self.max_frame_bytes, self.read_chunk_bytes, self.end_settle)
        log.debug(f"[act] {target} <- {command}")
        response = session.exchange(command, *params)
        log.debug(f"[act] {target} -> {command} {list(response.values)}")
        return response

    def _query_state(self, ctx: CommandContext, target: PrinterTarget):
        response = self._send_command(ctx, target, "getstatus")
        if not response.values or not response.ok:
            raise ProtocolError(f"Unexpected getstatus reply from {target}: {list(response.values)}")
        raw = response.values[0]
        return ACT_STATUS_MAP.get(raw.lower(), PrinterState.UNKNOWN), raw

    # ==================== Connection ====================

    def test_connection(self, ctx: CommandContext, target: PrinterTarget) -> Optional[str]:
        state, raw = self._query_state(ctx, target)
        if state is PrinterState.UNKNOWN:
            raise ProtocolError(f"Unrecognized getstatus value from {target}: {raw!r}", extra={"status": raw})
        log.info(f"[act] {target} reachable, status {raw!r}")
        return f"status: {raw}"

    # ==================== Status ====================

    def get_status(self, ctx: CommandContext, target: PrinterTarget) -> PrinterStatusReport:
        state, raw = self._query_state(ctx, target)

        # sysinfo is supplementary; some firmware answers it with fewer fields
        model = firmware = None
        info = {}
        try:
            response = self._send_command(ctx, target, "sysinfo")
            if response.ok and len(response.values) >= 4:
                model, firmware, serial, wifi = response.values[:4]
                info = {"model": model, "firmware": firmware, "serial": serial, "wifi": wifi}
            else:
                log.debug(f"[act] {target}: short sysinfo reply {list(response.values)}")
        except (ProtocolError, TransportFailure, Unsupported) as e:
            log.debug(f"[act] {target}: sysinfo unavailable: {e}")

        return PrinterStatusReport(
            state=state,
            state_text=raw,
            printer_name=model,
            firmware_version=firmware,
            raw={"status": raw, **info},
        )

    def get_job_status(self, ctx: CommandContext, target: PrinterTarget) -> JobProgress:
        # ACT firmware reports no file, percentage or timing for the running job
        state, raw = self._query_state(ctx, target)
        return JobProgress(state=state, state_text=raw, raw={"status": raw})

    # ==================== Files ====================

    def list_files(self, ctx: CommandContext, target: PrinterTarget) -> FileListing:
        response = self._send_command(ctx, target, "getfile")
        if not response.ok:
            raise ProtocolError(f"getfile rejected by {target}: {response.error_code}")
        return FileListing(parse_file_entries(response.values))

    def delete_file(self, ctx: CommandContext, target: PrinterTarget, filename: str) -> FileDeleted:
        response = self._send_command(ctx, target, "delfile", filename)
        error = response.error_code
        if error is None:
            log.info(f"[act] {target}: deleted {filename!r}")
            return FileDeleted(filename)
        if error == "ERROR1":
            raise NotFound(f"{filename!r} not found on {target}")
        raise ProtocolError(f"delfile failed on {target}: {error}")

    # ==================== Print Control ====================

    def start_print(self, ctx: CommandContext, target: PrinterTarget, filename: str) -> PrintStarted:
        state, raw = self._query_state(ctx, target)
        if state.is_busy:
            raise DeviceBusy(f"{target} is {raw!r}; cannot start {filename!r}")

        response = self._send_command(ctx, target, "goprint", filename)
        error = response.error_code
        if error is None:
            log.info(f"[act] {target}: started {filename!r}")
            return PrintStarted(filename)
        if error == "ERROR1":
            raise DeviceBusy(f"{target} refused to start {filename!r}: printer busy")
        if error == "ERROR2":
            raise NotFound(f"{filename!r} not found on {target}")
        raise Unsupported(f"{target} refused to start {filename!r}: {error}")

    def _job_command(self, ctx: CommandContext, target: PrinterTarget, command: str, action: str) -> JobControlled:
        response = self._send_command(ctx, target, command)
        if not response.ok:
            raise Unsupported(f"{target} has no print to {action} ({response.error_code})")
        log.info(f"[act] {target}: {action} accepted")
        return JobControlled(action)

    def pause_print(self, ctx: CommandContext, target: PrinterTarget) -> JobControlled:
        return self._job_command(ctx, target, "gopause", "pause")

    def resume_print(self, ctx: CommandContext, target: PrinterTarget) -> JobControlled:
        return self._job_command(ctx, target, "goresume", "resume")

    def cancel_print(self, ctx: CommandContext, target: PrinterTarget) -> JobControlled:
        return self._job_command(ctx, target, "gostop", "cancel")
