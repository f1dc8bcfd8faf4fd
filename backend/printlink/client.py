"""
PrinterClient — single entry point for every printer command.

Dispatch:
    validate target -> select backend by protocol -> run on the worker pool

Each command gets one CommandContext whose deadline covers queueing, every
attempt and the retry backoff. A TransportFailure is retried once after
retry_backoff when the remaining budget allows; application-level errors
(auth, not found, busy, malformed payload) are raised as-is.

Usage:
    client = PrinterClient()
    handle = client.submit(PrinterCommand.LIST_FILES, target)
    ...
    handle.cancel()            # or handle.result()
"""

import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, Optional

from printlink.adapters import PrinterBackend
from printlink.adapters.act import ActBackend
from printlink.adapters.anycubic import AnycubicBackend
from printlink.adapters.http_transport import HttpTransport
from printlink.adapters.octoprint import OctoPrintBackend
from printlink.connection_cache import ConnectionCache
from printlink.core.config import Settings
from printlink.core.context import CommandContext
from printlink.core.errors import Cancelled, InvalidTarget, PrinterError, Timeout, Unsupported
from printlink.models import (
    ConnectionTestResult,
    FileDeleted,
    FileListing,
    JobControlled,
    JobProgress,
    PrinterProtocol,
    PrinterStatusReport,
    PrinterTarget,
    PrintStarted,
)

log = logging.getLogger("printlink.client")

# Slack for the worker to deliver a result that raced the deadline
RESULT_GRACE = 0.25


class PrinterCommand(str, Enum):
    TEST_CONNECTION = "test_connection"
    LIST_FILES = "list_files"
    START_PRINT = "start_print"
    DELETE_FILE = "delete_file"
    GET_STATUS = "get_status"
    PAUSE_PRINT = "pause_print"
    RESUME_PRINT = "resume_print"
    CANCEL_PRINT = "cancel_print"
    GET_JOB_STATUS = "get_job_status"

    def timeout(self, settings: Settings) -> float:
        return getattr(settings, _TIMEOUT_SETTINGS[self])


_TIMEOUT_SETTINGS = {
    PrinterCommand.TEST_CONNECTION: "connection_test_timeout",
    PrinterCommand.LIST_FILES: "list_files_timeout",
    PrinterCommand.START_PRINT: "start_print_timeout",
    PrinterCommand.DELETE_FILE: "delete_file_timeout",
    PrinterCommand.GET_STATUS: "status_timeout",
    PrinterCommand.PAUSE_PRINT: "job_control_timeout",
    PrinterCommand.RESUME_PRINT: "job_control_timeout",
    PrinterCommand.CANCEL_PRINT: "job_control_timeout",
    PrinterCommand.GET_JOB_STATUS: "job_status_timeout",
}

# Commands whose single argument names a file stored on the printer
FILE_COMMANDS = frozenset({PrinterCommand.START_PRINT, PrinterCommand.DELETE_FILE})


class CommandHandle:
    """A submitted command. result() blocks; cancel() abandons it."""

    def __init__(
        self,
        command: PrinterCommand,
        target: PrinterTarget,
        future: Future,
        ctx: CommandContext,
        recover: Optional[Callable[[PrinterError], Any]] = None,
    ):
        self.command = command
        self.target = target
        self._future = future
        self._ctx = ctx
        self._recover = recover
        self._settled = threading.Event()
        self._expired: Optional[Timeout] = None
        future.add_done_callback(lambda _: self._settled.set())

    def done(self) -> bool:
        return self._settled.is_set()

    def cancel(self):
        """Cancel the command. Pending result() calls raise Cancelled at once."""
        if self._future.done():
            return
        log.debug(f"[client] cancelling {self._ctx.label}")
        self._future.cancel()
        self._ctx.cancel()
        self._settled.set()

    def result(self, timeout: Optional[float] = None) -> Any:
        """
        Wait for the command's result.

        Without a timeout, waits until the command's own deadline (plus a
        short grace) and then cancels it with Timeout. A shorter caller
        timeout raises Timeout but leaves the command running.
        """
        if self._expired is None:
            budget = self._ctx.time_left() + RESULT_GRACE
            wait = budget if timeout is None else min(timeout, budget)
            if not self._settled.wait(wait):
                if timeout is not None and timeout < budget:
                    raise Timeout(f"{self._ctx.label} still running after {timeout:g}s")
                self._expired = Timeout(f"{self._ctx.label} exceeded {self._ctx.timeout:g}s budget")
                log.warning(f"[client] {self._expired.detail}")
                self._future.cancel()
                self._ctx.cancel()

        if self._expired is not None:
            return self._fail(self._expired)
        if self._ctx.cancelled:
            raise Cancelled(f"{self._ctx.label} was cancelled")
        try:
            return self._future.result(timeout=0)
        except CancelledError:
            raise Cancelled(f"{self._ctx.label} was cancelled") from None
        except Cancelled:
            raise
        except PrinterError as e:
            return self._fail(e)

    def _fail(self, error: PrinterError) -> Any:
        if self._recover is not None:
            return self._recover(error)
        raise error

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<CommandHandle {self.command.value} {self.target} {state}>"


class PrinterClient:
    """
    Unified client over the ACT, OctoPrint and Anycubic HTTP backends.

    Construct once and pass it to whatever needs to talk to printers.
    Commands against different or identical targets run concurrently on
    the client's thread pool.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        backends: Optional[Dict[PrinterProtocol, PrinterBackend]] = None,
        cache: Optional[ConnectionCache] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.settings = settings or Settings()

        if cache is None and self.settings.cache_enabled:
            cache = ConnectionCache(idle_timeout=self.settings.cache_idle_timeout)
        self.cache = cache

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="printlink",
        )

        self._backends: Dict[PrinterProtocol, PrinterBackend] = {}
        if backends is None:
            backends = self._default_backends()
        for protocol, backend in backends.items():
            self.register_backend(protocol, backend)

    def _default_backends(self) -> Dict[PrinterProtocol, PrinterBackend]:
        transport = HttpTransport(self.cache)
        return {
            PrinterProtocol.ACT: ActBackend(
                max_frame_bytes=self.settings.act_max_frame_bytes,
                read_chunk_bytes=self.settings.act_read_chunk_bytes,
                end_settle=self.settings.act_end_settle,
            ),
            PrinterProtocol.OCTOPRINT: OctoPrintBackend(transport),
            PrinterProtocol.ANYCUBIC_HTTP: AnycubicBackend(transport),
        }

    # ==================== Backend registry ====================

    def register_backend(self, protocol: PrinterProtocol, backend: PrinterBackend):
        protocol = PrinterProtocol.parse(protocol)
        self._backends[protocol] = backend
        log.debug(f"[client] registered {type(backend).__name__} for {protocol.value}")

    def backend_for(self, protocol: PrinterProtocol) -> PrinterBackend:
        backend = self._backends.get(protocol)
        if backend is None:
            raise Unsupported(f"No backend registered for protocol {getattr(protocol, 'value', protocol)!r}")
        return backend

    # ==================== Dispatch ====================

    def submit(self, command: PrinterCommand, target: PrinterTarget, *args) -> CommandHandle:
        """
        Validate and queue a command. Raises InvalidTarget or Unsupported
        immediately; everything else is reported through the handle.
        """
        command = PrinterCommand(command)
        target.validate(require_api_key=command is not PrinterCommand.TEST_CONNECTION)
        if command in FILE_COMMANDS:
            filename = args[0] if args else None
            if not isinstance(filename, str) or not filename.strip():
                raise InvalidTarget(f"{command.value} needs a non-empty filename, got {filename!r}")
        backend = self.backend_for(target.protocol)

        if self.cache is not None:
            self.cache.evict_idle()

        ctx = CommandContext(command.timeout(self.settings), label=f"{command.value} {target}")
        future = self._executor.submit(self._execute, command, backend, ctx, target, args)

        recover = None
        if command is PrinterCommand.TEST_CONNECTION:
            recover = _unreachable
        return CommandHandle(command, target, future, ctx, recover)

    def _execute(self, command: PrinterCommand, backend: PrinterBackend, ctx: CommandContext, target: PrinterTarget, args: tuple) -> Any:
        ctx.check()
        method = getattr(backend, command.value)
        attempt = 0
        while True:
            try:
                result = method(ctx, target, *args)
                break
            except PrinterError as e:
                if not self._should_retry(e, attempt, ctx):
                    if not isinstance(e, Cancelled):
                        log.warning(f"[client] {ctx.label} failed: {e.error_code}: {e.detail}")
                    raise
                attempt += 1
                log.info(
                    f"[client] {ctx.label}: {e.detail}; retrying in {self.settings.retry_backoff:g}s "
                    f"(attempt {attempt + 1})"
                )
                ctx.sleep(self.settings.retry_backoff)

        if command is PrinterCommand.TEST_CONNECTION:
            return ConnectionTestResult(reachable=True, detail=result)
        return result

    def _should_retry(self, error: PrinterError, attempt: int, ctx: CommandContext) -> bool:
        if not error.retryable or attempt >= self.settings.max_retries or ctx.cancelled:
            return False
        if ctx.time_left() <= self.settings.retry_backoff:
            log.debug(f"[client] {ctx.label}: no budget left for a retry")
            return False
        return True

    # ==================== Commands ====================

    def test_connection(self, target: PrinterTarget) -> ConnectionTestResult:
        return self.submit(PrinterCommand.TEST_CONNECTION, target).result()

    def list_files(self, target: PrinterTarget) -> FileListing:
        return self.submit(PrinterCommand.LIST_FILES, target).result()

    def start_print(self, target: PrinterTarget, filename: str) -> PrintStarted:
        return self.submit(PrinterCommand.START_PRINT, target, filename).result()

    def delete_file(self, target: PrinterTarget, filename: str) -> FileDeleted:
        return self.submit(PrinterCommand.DELETE_FILE, target, filename).result()

    def get_status(self, target: PrinterTarget) -> PrinterStatusReport:
        return self.submit(PrinterCommand.GET_STATUS, target).result()

    def pause_print(self, target: PrinterTarget) -> JobControlled:
        return self.submit(PrinterCommand.PAUSE_PRINT, target).result()

    def resume_print(self, target: PrinterTarget) -> JobControlled:
        return self.submit(PrinterCommand.RESUME_PRINT, target).result()

    def cancel_print(self, target: PrinterTarget) -> JobControlled:
        return self.submit(PrinterCommand.CANCEL_PRINT, target).result()

    def get_job_status(self, target: PrinterTarget) -> JobProgress:
        return self.submit(PrinterCommand.GET_JOB_STATUS, target).result()

    # ==================== Lifecycle ====================

    def close(self):
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        for backend in self._backends.values():
            backend.close()
        if self.cache is not None:
            self.cache.clear()

    def __enter__(self) -> "PrinterClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def _unreachable(error: PrinterError) -> ConnectionTestResult:
    if isinstance(error, Cancelled):
        raise error
    return ConnectionTestResult(reachable=False, error=error)
