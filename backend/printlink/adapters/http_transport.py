"""
HTTP transport shared by the OctoPrint and Anycubic backends.

Owns session handling and the transport half of error normalization:

- connect/read timeouts       -> Timeout
- refused/reset/DNS failures  -> TransportFailure (retryable)
- HTTP 5xx                    -> TransportFailure (retryable)
- unparsable JSON body        -> ProtocolError

Everything below 500 is returned to the backend, which maps 4xx codes with
its own protocol semantics.

Sessions come from the ConnectionCache when one is configured, keyed by
(address, port, protocol). Without a cache each request uses a throwaway
session.

Cancellation: every session mounts a CancellableAdapter whose urllib3 pool
reports the connection carrying the current request. While the request is
in flight the command's context holds a closer that shuts that socket down,
so a cancelled command frees its worker at once instead of waiting out the
read timeout.
"""

import logging
import socket
import threading
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection
from urllib3.connectionpool import HTTPConnectionPool

from printlink.connection_cache import ConnectionCache
from printlink.core.context import CommandContext
from printlink.core.errors import ProtocolError, Timeout, TransportFailure
from printlink.models import PrinterTarget

log = logging.getLogger("printlink.http")

USER_AGENT = "printlink/1.0"

# Request tracker of the command running on this worker thread
_active = threading.local()


def _shutdown(conn: HTTPConnection):
    sock = getattr(conn, "sock", None)
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


class RequestTracker:
    """Remembers the connection of one in-flight request so cancel can sever it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._conn: Optional[HTTPConnection] = None
        self.aborted = False

    def attach(self, conn: HTTPConnection):
        with self._lock:
            self._conn = conn
            aborted = self.aborted
        if aborted:
            _shutdown(conn)

    def abort(self):
        with self._lock:
            self.aborted = True
            conn = self._conn
        if conn is not None:
            _shutdown(conn)


def _current_tracker() -> Optional[RequestTracker]:
    return getattr(_active, "tracker", None)


class _TrackedConnection(HTTPConnection):

    def connect(self):
        super().connect()
        # cancelled while the TCP handshake was in progress
        tracker = _current_tracker()
        if tracker is not None and tracker.aborted:
            _shutdown(self)


class _TrackedConnectionPool(HTTPConnectionPool):
    ConnectionCls = _TrackedConnection

    def _make_request(self, conn, *args, **kwargs):
        tracker = _current_tracker()
        if tracker is not None:
            tracker.attach(conn)
        return super()._make_request(conn, *args, **kwargs)


class CancellableAdapter(HTTPAdapter):
    """HTTPAdapter whose plain-HTTP pools report connections to the active tracker."""

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        # copy: the default mapping is shared by every PoolManager
        self.poolmanager.pool_classes_by_scheme = {
            **self.poolmanager.pool_classes_by_scheme,
            "http": _TrackedConnectionPool,
        }


class HttpTransport:

    def __init__(self, cache: Optional[ConnectionCache] = None):
        self.cache = cache

    @staticmethod
    def base_url(target: PrinterTarget) -> str:
        if target.port == 80:
            return f"http://{target.address}"
        return f"http://{target.address}:{target.port}"

    @staticmethod
    def _new_session() -> requests.Session:
        session = requests.Session()
        session.headers["User-Agent"] = USER_AGENT
        # LAN printers: ignore proxy settings from the environment
        session.trust_env = False
        session.mount("http://", CancellableAdapter())
        return session

    def request(
        self,
        ctx: CommandContext,
        target: PrinterTarget,
        method: str,
        path: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> requests.Response:
        """Perform one request within the command's remaining budget."""
        url = f"{self.base_url(target)}{path}"
        timeout = ctx.remaining()

        if self.cache is not None:
            session = self.cache.acquire(target.key, self._new_session)
            owned = False
        else:
            session = self._new_session()
            owned = True

        tracker = RequestTracker()
        _active.tracker = tracker
        log.debug(f"[http] {method} {url}")
        try:
            with ctx.closing(tracker.abort):
                resp = session.request(
                    method, url, headers=headers, params=params, json=json, timeout=timeout,
                )
        except requests.exceptions.Timeout as e:
            self._drop(target, session)
            ctx.check()
            raise Timeout(f"{method} {path} on {target} timed out") from e
        except requests.exceptions.ConnectionError as e:
            self._drop(target, session)
            ctx.check()
            raise TransportFailure(f"Cannot reach {target}: {e}") from e
        except requests.exceptions.RequestException as e:
            self._drop(target, session)
            ctx.check()
            raise TransportFailure(f"{method} {path} on {target} failed: {e}") from e
        finally:
            _active.tracker = None
            if owned:
                session.close()

        # Result of an abandoned command is discarded
        if ctx.cancelled:
            self._drop(target, session)
        ctx.check()

        log.debug(f"[http] {method} {url} -> {resp.status_code}")
        if resp.status_code >= 500:
            self._drop(target, session)
            raise TransportFailure(
                f"{target} returned HTTP {resp.status_code} for {method} {path}",
                extra={"status_code": resp.status_code},
            )
        return resp

    def _drop(self, target: PrinterTarget, session: requests.Session):
        if self.cache is not None:
            self.cache.invalidate(target.key, session)

    @staticmethod
    def json_body(resp: requests.Response, expect: type = dict) -> Any:
        """Decode a JSON body, requiring the top-level type to be expect."""
        try:
            data = resp.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON from {resp.url}: {e}") from e
        if not isinstance(data, expect):
            raise ProtocolError(
                f"Expected JSON {expect.__name__} from {resp.url}, got {type(data).__name__}"
            )
        return data
