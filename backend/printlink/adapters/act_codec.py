"""
ACT wire codec — text frames for Anycubic Photon printers (TCP port 6000).

Request:   command[,param1,param2,...]\\r\\n
Response:  command,value1,value2,...,end

The first response field echoes the command, the last is the literal "end".
A first value of the form ERRORn is a firmware rejection.

Examples:
    getstatus            -> getstatus,print,end
    sysinfo              -> sysinfo,Photon Mono X 6K,V0.2.2,00001A9F00030034,MyWifi,end
    getfile              -> getfile,cube.pwmx/123456,ring.pwmx/99,end    (empty: getfile,end)
    goprint,cube.pwmx    -> goprint,ok,end | goprint,ERROR1,end (busy) | goprint,ERROR2,end (missing)
    delfile,cube.pwmx    -> delfile,ok,end | delfile,ERROR1,end (missing)

Responses may arrive split over several TCP segments; ActFrameDecoder
accumulates chunks until the terminator and refuses to buffer more than
max_frame_bytes.

The firmware ends every frame with ",end\\r\\n". A buffer ending in a bare
",end" is only a candidate: a read boundary inside "endcap.pwmx/12" looks
the same. The session accepts a candidate only after the line has been
quiet for a short settle time (see ActSession).
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from printlink.core.errors import ProtocolError
from printlink.models import PrinterFileRecord

ENCODING = "utf-8"
REQUEST_TERMINATOR = b"\r\n"
END_MARKER = "end"
DEFAULT_MAX_FRAME_BYTES = 1024 * 1024

# ",end" plus the line break the firmware appends
_TERMINATOR_RE = re.compile(rb",end[ \t]*\r?\n\s*\Z")
# ",end" with nothing after it yet
_CANDIDATE_RE = re.compile(rb",end[ \t]*\Z")
_ERROR_RE = re.compile(r"^ERROR\d*$")
_FORBIDDEN_PARAM_CHARS = (",", "\r", "\n")


@dataclass(frozen=True)
class ActResponse:
    command: str
    values: Tuple[str, ...]

    @property
    def error_code(self) -> Optional[str]:
        """ERRORn token when the firmware rejected the command."""
        if self.values and _ERROR_RE.match(self.values[0]):
            return self.values[0]
        return None

    @property
    def ok(self) -> bool:
        return self.error_code is None


def encode_request(command: str, *params: str) -> bytes:
    """Encode one request frame. Raises ValueError for unframeable input."""
    if not command or any(ch in command for ch in _FORBIDDEN_PARAM_CHARS):
        raise ValueError(f"Invalid ACT command: {command!r}")
    for param in params:
        if not param or any(ch in param for ch in _FORBIDDEN_PARAM_CHARS):
            raise ValueError(f"ACT parameters cannot be empty or contain ',', CR or LF: {param!r}")
    return ",".join((command,) + params).encode(ENCODING) + REQUEST_TERMINATOR


class ActFrameDecoder:
    """Incremental decoder for one response frame."""

    def __init__(self, expected_command: str, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES):
        self.expected_command = expected_command
        self.max_frame_bytes = max_frame_bytes
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def complete(self) -> bool:
        return _TERMINATOR_RE.search(self._buffer) is not None

    @property
    def awaiting_line_end(self) -> bool:
        """Buffer ends in a bare ",end" that may still be part of a name."""
        return _CANDIDATE_RE.search(self._buffer) is not None

    def feed(self, chunk: bytes) -> bool:
        """Append a chunk. Returns True once the CRLF-terminated frame is complete."""
        if len(self._buffer) + len(chunk) > self.max_frame_bytes:
            raise ProtocolError(
                f"ACT response exceeds {self.max_frame_bytes} bytes",
                extra={"command": self.expected_command},
            )
        self._buffer.extend(chunk)
        return self.complete

    def decode(self) -> ActResponse:
        """Parse the buffer. A bare ",end" is accepted once the caller stops reading."""
        if not (self.complete or self.awaiting_line_end):
            raise ProtocolError(
                f"Incomplete ACT response to {self.expected_command!r}",
                extra={"received": len(self._buffer)},
            )
        return parse_frame(bytes(self._buffer), self.expected_command)


def parse_frame(raw: bytes, expected_command: str) -> ActResponse:
    """Parse a complete frame and check the command echo."""
    try:
        text = raw.decode(ENCODING)
    except UnicodeDecodeError as e:
        raise ProtocolError(f"ACT response is not valid UTF-8: {e}") from e

    cleaned = text.replace("\r", "").replace("\n", "").strip()
    parts = cleaned.split(",")
    if len(parts) < 2 or parts[-1] != END_MARKER:
        raise ProtocolError(f"ACT response missing terminator: {cleaned[:80]!r}")

    echoed = parts[0].strip()
    if echoed != expected_command:
        raise ProtocolError(
            f"ACT echo mismatch: sent {expected_command!r}, got {echoed!r}",
            extra={"expected": expected_command, "received": echoed},
        )
    return ActResponse(command=echoed, values=tuple(p.strip() for p in parts[1:-1]))


def parse_file_entries(values: Tuple[str, ...]) -> List[PrinterFileRecord]:
    """
    Parse getfile values: "name/size" entries.

    The size is split on the last '/', so names may contain '/' themselves.
    An entry without a '/' has no size.
    """
    records = []
    for entry in values:
        if not entry:
            continue
        name, sep, size_text = entry.rpartition("/")
        if not sep:
            name, size_text = entry, ""
        size = None
        if size_text:
            if not size_text.isdigit():
                raise ProtocolError(f"Bad ACT file size in {entry!r}")
            size = int(size_text)
        if not name:
            raise ProtocolError(f"ACT file entry without a name: {entry!r}")
        records.append(PrinterFileRecord(filename=name, size=size))
    return records
