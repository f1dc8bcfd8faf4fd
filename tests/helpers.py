"""
In-process fake printers for the PrintLink test suite.

- FakeActPrinter       — threaded socketserver speaking ACT text frames
- FakeOctoPrint        — http.server implementing the OctoPrint endpoints we use
- FakeAnycubicPrinter  — http.server implementing the Anycubic LAN endpoints

All bind to 127.0.0.1 on an ephemeral port. Each keeps its printer state
(stored files, print state) in plain attributes so tests can arrange and
inspect it directly.
"""

import json
import socket
import socketserver
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, unquote, urlsplit

HOST = "127.0.0.1"


def closed_port() -> int:
    """A local port with nothing listening on it."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind((HOST, 0))
    port = s.getsockname()[1]
    s.close()
    return port


# ---------------------------------------------------------------------------
# ACT
# ---------------------------------------------------------------------------

class _ActHandler(socketserver.StreamRequestHandler):

    def handle(self):
        printer: "FakeActPrinter" = self.server.printer
        printer.connections += 1

        if printer.mode == "close":
            return

        line = self.rfile.readline()
        if not line:
            return
        request = line.decode("utf-8").rstrip("\r\n")
        printer.requests.append(request)

        if printer.mode == "silent":
            printer.stop_event.wait(10)
            return

        command, *params = request.split(",")
        if printer.mode == "oversized":
            payload = f"{command}," + "x" * printer.oversize_bytes
            reply = payload.encode()
        elif printer.mode == "mismatch":
            reply = b"wrongcommand,stop,end\r\n"
        elif printer.mode == "garbage":
            reply = b"\xff\xfe\xfd,end"
        else:
            reply = (printer.respond(command, params) + "\r\n").encode("utf-8")

        try:
            if printer.mode == "chunked":
                for i in range(0, len(reply), 3):
                    self.wfile.write(reply[i:i + 3])
                    self.wfile.flush()
                    time.sleep(0.005)
            elif printer.mode == "split_end":
                # break the reply right after the first ",end" that is not the terminator
                cut = reply.find(b",end") + len(b",end")
                self.wfile.write(reply[:cut])
                self.wfile.flush()
                time.sleep(printer.split_pause)
                self.wfile.write(reply[cut:])
            elif printer.mode == "no_crlf":
                self.wfile.write(reply.rstrip(b"\r\n"))
                self.wfile.flush()
                printer.stop_event.wait(printer.hold_open)
            else:
                self.wfile.write(reply)
        except OSError:
            pass


class _ThreadingTCPServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


class FakeActPrinter:
    """
    Modes:
        normal     reply per command
        chunked    same replies, dribbled out three bytes at a time
        close      accept, then close without reading
        silent     read the request, never reply
        oversized  reply without terminator, oversize_bytes long
        mismatch   reply echoes the wrong command
        garbage    reply is not UTF-8
        split_end  reply split after its first ",end", with split_pause between writes
        no_crlf    reply without CRLF, connection held open for hold_open seconds
    """

    SYSINFO = ("Photon Mono X 6K", "V0.2.2", "00001A9F00030034", "LabWifi")

    def __init__(self, mode: str = "normal"):
        self.mode = mode
        self.files = {}
        self.status = "stop"
        self.requests = []
        self.connections = 0
        self.oversize_bytes = 4096
        self.split_pause = 0.05
        self.hold_open = 2.0
        self.stop_event = threading.Event()
        self._server = _ThreadingTCPServer((HOST, 0), _ActHandler)
        self._server.printer = self
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    @property
    def commands(self):
        return [r.split(",")[0] for r in self.requests]

    def start(self) -> "FakeActPrinter":
        self._thread.start()
        return self

    def stop(self):
        self.stop_event.set()
        self._server.shutdown()
        self._server.server_close()

    def respond(self, command: str, params) -> str:
        if command == "getstatus":
            return f"getstatus,{self.status},end"
        if command == "sysinfo":
            return "sysinfo," + ",".join(self.SYSINFO) + ",end"
        if command == "getwifi":
            return f"getwifi,{self.SYSINFO[3]},end"
        if command == "getfile":
            entries = [f"{name}/{size}" for name, size in self.files.items()]
            return ",".join(["getfile"] + entries + ["end"])
        if command == "goprint":
            name = params[0] if params else ""
            if self.status != "stop":
                return "goprint,ERROR1,end"
            if name not in self.files:
                return "goprint,ERROR2,end"
            self.status = "print"
            return "goprint,OK,end"
        if command == "delfile":
            name = params[0] if params else ""
            if self.files.pop(name, None) is None:
                return "delfile,ERROR1,end"
            return "delfile,OK,end"
        if command == "gopause":
            if self.status != "print":
                return "gopause,ERROR1,end"
            self.status = "pause"
            return "gopause,OK,end"
        if command == "goresume":
            if self.status != "pause":
                return "goresume,ERROR1,end"
            self.status = "print"
            return "goresume,OK,end"
        if command == "gostop":
            if self.status not in ("print", "pause"):
                return "gostop,ERROR1,end"
            self.status = "stop"
            return "gostop,OK,end"
        return f"{command},ERROR,end"


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class _JsonHandler(BaseHTTPRequestHandler):
    """Routes requests to the owning fake's handle(method, path, query, body, headers)."""

    def _dispatch(self, method: str):
        fake = self.server.fake
        parts = urlsplit(self.path)
        path = unquote(parts.path)
        query = {k: v[0] for k, v in parse_qs(parts.query).items()}
        length = int(self.headers.get("Content-Length") or 0)
        raw = self.rfile.read(length) if length else b""
        body = json.loads(raw) if raw else None

        fake.requests.append((method, path))
        if fake.delay:
            time.sleep(fake.delay)

        if fake.fail_5xx > 0:
            fake.fail_5xx -= 1
            status, payload = 503, {"error": "Service Unavailable"}
        else:
            status, payload = fake.handle(method, path, query, body, self.headers)

        data = json.dumps(payload).encode() if payload is not None else b""
        try:
            self.send_response(status)
            if data:
                self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            if data:
                self.wfile.write(data)
        except OSError:
            pass

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def do_DELETE(self):
        self._dispatch("DELETE")

    def log_message(self, format, *args):
        pass


class _FakeHttpServer:

    def __init__(self):
        self.requests = []
        self.delay = 0.0
        self.fail_5xx = 0
        self._server = ThreadingHTTPServer((HOST, 0), _JsonHandler)
        self._server.daemon_threads = True
        self._server.fake = self
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    def start(self):
        self._thread.start()
        return self

    def stop(self):
        self._server.shutdown()
        self._server.server_close()

    def handle(self, method, path, query, body, headers):
        raise NotImplementedError


class FakeOctoPrint(_FakeHttpServer):
    """OctoPrint subset: version, files, select+print, delete, printer, job status and control."""

    API_KEY = "good-key"

    def __init__(self, api_key: str = API_KEY):
        super().__init__()
        self.api_key = api_key
        self.files = {}          # path -> size
        self.connected = True
        self.state = "Operational"
        self.current_file = None
        self.progress = {"completion": None, "printTime": None, "printTimeLeft": None}
        self.temperature = {
            "tool0": {"actual": 214.8, "target": 215.0, "offset": 0},
            "bed": {"actual": 59.6, "target": 60.0, "offset": 0},
        }

    def _flags(self):
        return {
            "operational": self.connected,
            "printing": self.state == "Printing",
            "paused": self.state == "Paused",
            "cancelling": False,
            "pausing": False,
            "error": False,
            "ready": self.state == "Operational",
            "closedOrError": not self.connected,
        }

    def _file_tree(self):
        top, folders = [], {}
        for path, size in sorted(self.files.items()):
            entry = {"name": path.rsplit("/", 1)[-1], "path": path, "type": "machinecode",
                     "size": size, "date": 1700000000}
            if "/" in path:
                folder = path.split("/", 1)[0]
                folders.setdefault(folder, []).append(entry)
            else:
                top.append(entry)
        for folder, children in folders.items():
            top.append({"name": folder, "path": folder, "type": "folder", "children": children})
        return top

    def handle(self, method, path, query, body, headers):
        if self.api_key and headers.get("X-Api-Key") != self.api_key:
            return 401, {"error": "Invalid API key"}

        if method == "GET" and path == "/api/version":
            return 200, {"api": "0.1", "server": "1.9.3", "text": "OctoPrint 1.9.3"}

        if method == "GET" and path == "/api/files/local":
            return 200, {"files": self._file_tree(), "free": 1024 ** 3}

        if path.startswith("/api/files/local/"):
            name = path[len("/api/files/local/"):]
            if name not in self.files:
                return 404, {"error": "File not found"}
            if method == "DELETE":
                if self.state != "Operational":
                    return 409, {"error": "Trying to delete a file that is currently in use"}
                del self.files[name]
                return 204, None
            if method == "POST" and body == {"command": "select", "print": True}:
                if self.state != "Operational":
                    return 409, {"error": "Printer is already printing"}
                self.state = "Printing"
                self.current_file = name
                return 204, None
            return 400, {"error": "Bad request"}

        if method == "GET" and path == "/api/printer":
            if not self.connected:
                return 409, {"error": "Printer is not operational"}
            return 200, {"state": {"text": self.state, "flags": self._flags()}, "temperature": self.temperature}

        if method == "GET" and path == "/api/job":
            file_info = {"name": None, "path": None, "size": None}
            if self.current_file:
                file_info = {"name": self.current_file.rsplit("/", 1)[-1], "path": self.current_file,
                             "size": self.files.get(self.current_file)}
            return 200, {"job": {"file": file_info, "estimatedPrintTime": None},
                         "progress": dict(self.progress), "state": self.state}

        if method == "POST" and path == "/api/job":
            command = (body or {}).get("command")
            action = (body or {}).get("action")
            if command == "pause" and action == "pause" and self.state == "Printing":
                self.state = "Paused"
                return 204, None
            if command == "pause" and action == "resume" and self.state == "Paused":
                self.state = "Printing"
                return 204, None
            if command == "cancel" and self.state in ("Printing", "Paused"):
                self.state = "Operational"
                return 204, None
            return 409, {"error": "Printer is not printing"}

        return 404, {"error": "Not found"}


class FakeAnycubicPrinter(_FakeHttpServer):
    """Anycubic LAN HTTP subset: /info, /files, /print, /files/delete."""

    def __init__(self):
        super().__init__()
        self.files = {}          # filename -> size
        self.state = "free"

    def handle(self, method, path, query, body, headers):
        if method == "GET" and path == "/info":
            return 200, {
                "modelId": "20024",
                "modelName": "Anycubic Photon Mono M5s",
                "deviceId": "b1f0e5c6",
                "cn": "CN0123456789",
                "firmwareVersion": "1.1.29",
                "ip": HOST,
                "state": self.state,
            }

        if method == "GET" and path == "/files":
            files = [{"filename": n, "size": s, "mtime": 1700000000} for n, s in self.files.items()]
            return 200, {"code": 0, "msg": "ok", "data": {"files": files}}

        name = (body or {}).get("filename")
        if method == "POST" and path == "/print":
            if self.state in ("printing", "paused"):
                return 200, {"code": 3, "msg": "busy", "data": None}
            if name not in self.files:
                return 200, {"code": 2, "msg": "file not found", "data": None}
            self.state = "printing"
            return 200, {"code": 0, "msg": "ok", "data": None}

        if method == "POST" and path == "/files/delete":
            if self.files.pop(name, None) is None:
                return 200, {"code": 2, "msg": "file not found", "data": None}
            return 200, {"code": 0, "msg": "ok", "data": None}

        return 404, {"code": 404, "msg": "not found"}
