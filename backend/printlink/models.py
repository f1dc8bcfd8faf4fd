"""
Printer targets and command results.

Everything here is transient: constructed per call, handed back to the
caller, never persisted by this layer.
"""

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Optional, Tuple, Union

from printlink.core.errors import InvalidTarget, PrinterError


class PrinterProtocol(str, Enum):
    """Control protocol spoken by a printer."""
    ACT = "act"
    OCTOPRINT = "octoprint"
    ANYCUBIC_HTTP = "anycubicHTTP"

    @property
    def default_port(self) -> int:
        return DEFAULT_PORTS[self]

    @property
    def requires_api_key(self) -> bool:
        return self is PrinterProtocol.OCTOPRINT

    @classmethod
    def parse(cls, value: Union[str, "PrinterProtocol"]) -> "PrinterProtocol":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        for proto in cls:
            if proto.value.lower() == text.lower() or proto.name.lower() == text.lower():
                return proto
        raise InvalidTarget(f"Unknown printer protocol: {value!r}")


DEFAULT_PORTS = {
    PrinterProtocol.ACT: 6000,
    PrinterProtocol.OCTOPRINT: 80,
    PrinterProtocol.ANYCUBIC_HTTP: 18910,
}


@dataclass(frozen=True)
class PrinterTarget:
    """Address/port/protocol/credential tuple identifying one printer."""
    address: str
    port: int
    protocol: PrinterProtocol
    api_key: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_config(
        cls,
        address: str,
        port: Union[int, str, None],
        protocol: Union[str, PrinterProtocol],
        api_key: Optional[str] = None,
        require_api_key: bool = True,
    ) -> "PrinterTarget":
        """
        Build a target from user-entered configuration.

        A missing port selects the protocol default. A port that is present
        but unparsable is InvalidTarget and is never silently replaced.
        """
        proto = PrinterProtocol.parse(protocol)

        if port is None or (isinstance(port, str) and not port.strip()):
            port_num = proto.default_port
        elif isinstance(port, bool):
            raise InvalidTarget(f"Invalid port: {port!r}")
        elif isinstance(port, int):
            port_num = port
        else:
            try:
                port_num = int(str(port).strip())
            except ValueError:
                raise InvalidTarget(f"Port is not a number: {port!r}") from None

        key = api_key.strip() if isinstance(api_key, str) else api_key
        target = cls(
            address=(address or "").strip(),
            port=port_num,
            protocol=proto,
            api_key=key or None,
        )
        target.validate(require_api_key)
        return target

    def validate(self, require_api_key: bool = True):
        """Raise InvalidTarget unless the target can be connected to."""
        if not isinstance(self.protocol, PrinterProtocol):
            raise InvalidTarget(f"Unknown printer protocol: {self.protocol!r}")
        try:
            ipaddress.IPv4Address(self.address)
        except (ipaddress.AddressValueError, ValueError, TypeError):
            raise InvalidTarget(f"Not an IPv4 address: {self.address!r}") from None
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 1 <= self.port <= 65535:
            raise InvalidTarget(f"Port out of range 1-65535: {self.port!r}")
        if require_api_key and self.protocol.requires_api_key and not self.api_key:
            raise InvalidTarget(f"{self.protocol.value} printers require an API key")

    @property
    def key(self) -> Tuple[str, int, PrinterProtocol]:
        """Connection cache key."""
        return (self.address, self.port, self.protocol)

    def __str__(self) -> str:
        return f"{self.protocol.value}://{self.address}:{self.port}"


def utc_from_unix(value: Any) -> Optional[datetime]:
    """Unix seconds as an aware UTC datetime; None for missing or malformed values."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


@dataclass(frozen=True)
class PrinterFileRecord:
    """A file stored on the printer. Identity is the filename."""
    filename: str
    size: Optional[int] = None
    modified: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.filename, str) or not self.filename:
            raise ValueError("filename must be a non-empty string")
        if self.size is not None and (isinstance(self.size, bool) or self.size < 0):
            raise ValueError(f"size must be non-negative, got {self.size!r}")


class FileListing:
    """
    Unordered collection of PrinterFileRecord, unique by filename.

    Callers sort; iteration order carries no meaning.
    """

    def __init__(self, records: Iterable[PrinterFileRecord] = ()):
        self._records: Dict[str, PrinterFileRecord] = {}
        for record in records:
            self._records.setdefault(record.filename, record)

    @property
    def filenames(self) -> FrozenSet[str]:
        return frozenset(self._records)

    def get(self, filename: str) -> Optional[PrinterFileRecord]:
        return self._records.get(filename)

    def __iter__(self) -> Iterator[PrinterFileRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, item) -> bool:
        if isinstance(item, PrinterFileRecord):
            return self._records.get(item.filename) == item
        return item in self._records

    def __eq__(self, other) -> bool:
        if not isinstance(other, FileListing):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"FileListing({sorted(self._records)!r})"


@dataclass(frozen=True)
class ConnectionTestResult:
    reachable: bool
    error: Optional[PrinterError] = None
    detail: Optional[str] = None    # printer identity when reachable


@dataclass(frozen=True)
class PrintStarted:
    filename: str


@dataclass(frozen=True)
class FileDeleted:
    filename: str


class PrinterState(str, Enum):
    """Universal printer state."""
    IDLE = "idle"
    PRINTING = "printing"
    PAUSED = "paused"
    STOPPING = "stopping"
    OFFLINE = "offline"
    UNKNOWN = "unknown"

    @property
    def is_busy(self) -> bool:
        return self in (PrinterState.PRINTING, PrinterState.PAUSED, PrinterState.STOPPING)


@dataclass(frozen=True)
class PrinterStatusReport:
    state: PrinterState
    state_text: str = ""
    printer_name: Optional[str] = None
    firmware_version: Optional[str] = None
    # degrees Celsius, where the protocol reports them
    tool_temperature: Optional[float] = None
    tool_target: Optional[float] = None
    bed_temperature: Optional[float] = None
    bed_target: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class JobProgress:
    """
    Current (or most recent) print job.

    completion is a percentage in 0-100. Times are seconds. Any field the
    printer does not report is None.
    """
    state: PrinterState
    state_text: str = ""
    filename: Optional[str] = None
    completion: Optional[float] = None
    print_time: Optional[float] = None
    print_time_left: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class JobControlled:
    action: str    # "pause", "resume" or "cancel"
