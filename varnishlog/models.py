"""VSL record dataclasses, one frozen class per record family.

Every record keeps the tag, the raw value (text after the tag) and the raw
log line it was parsed from, so the original log can be rebuilt verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from ipaddress import IPv4Address, IPv6Address
from urllib.parse import SplitResult, parse_qsl, urlencode

IPAddress = IPv4Address | IPv6Address

_SIZE_UNITS = (
    (1024 ** 5, "PB"),
    (1024 ** 4, "TB"),
    (1024 ** 3, "GB"),
    (1024 ** 2, "MB"),
    (1024, "KB"),
)

_GZIP_ACTIONS = {"G": "Gzip", "U": "Gunzip", "u": "Gunzip-test"}
_GZIP_WHEN = {"F": "Fetch", "D": "Deliver"}
_GZIP_OBJECT = {"E": "ESI", "-": "Plain"}


def format_size(size: int) -> str:
    """Render a byte count as '512B', '1.500KB', '2.000MB', ..."""
    for factor, unit in _SIZE_UNITS:
        if size >= factor:
            return f"{size / factor:.3f}{unit}"
    return f"{size}B"


def format_duration(value: timedelta) -> str:
    """Render a timedelta as seconds, e.g. '0.000215s' or '120s'."""
    seconds = value.total_seconds()
    if seconds == int(seconds):
        return f"{int(seconds)}s"
    return f"{seconds:.6f}".rstrip("0") + "s"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BaseRecord:
    tag: str
    raw_value: str
    raw_line: str

    def __str__(self) -> str:
        return f"{self.tag} {self.raw_value}".rstrip()


@dataclass(frozen=True)
class GenericRecord(BaseRecord):
    """Record for a tag without a dedicated parser."""


# ---------------------------------------------------------------------------
# Transaction structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BeginRecord(BaseRecord):
    record_type: str  # sess, req, bereq
    parent_vxid: int
    esi_level: int  # 0 when not an ESI subrequest
    reason: str


@dataclass(frozen=True)
class EndRecord(BaseRecord):
    pass


@dataclass(frozen=True)
class LinkRecord(BaseRecord):
    child_type: str  # sess, req, bereq
    child_vxid: int
    reason: str
    esi_level: int

    @property
    def txid(self) -> str:
        return build_txid(self.child_vxid, self.child_type, self.esi_level)


def build_txid(vxid: int, record_type: str, esi_level: int = 0) -> str:
    """Composite transaction id: '{vxid}_{type}' or '{vxid}_{type}_esi_{level}'."""
    if esi_level > 0:
        return f"{vxid}_{record_type}_esi_{esi_level}"
    return f"{vxid}_{record_type}"


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HeaderRecord(BaseRecord):
    name: str  # canonical
    value: str
    direction: str  # request, response, backend-request, backend-response, object

    @property
    def is_response(self) -> bool:
        return self.direction in ("response", "backend-response")


@dataclass(frozen=True)
class HeaderUnsetRecord(BaseRecord):
    name: str
    value: str
    direction: str

    @property
    def is_response(self) -> bool:
        return self.direction in ("response", "backend-response")


# ---------------------------------------------------------------------------
# Request / response line
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MethodRecord(BaseRecord):
    pass


@dataclass(frozen=True)
class ProtocolRecord(BaseRecord):
    pass


@dataclass(frozen=True)
class ReasonRecord(BaseRecord):
    pass


@dataclass(frozen=True)
class StatusRecord(BaseRecord):
    code: int


@dataclass(frozen=True)
class URLRecord(BaseRecord):
    url: SplitResult

    @property
    def path(self) -> str:
        return self.url.path

    @property
    def query_string(self) -> str:
        """Query string re-encoded with sorted keys."""
        return urlencode(sorted(parse_qsl(self.url.query, keep_blank_values=True)))


# ---------------------------------------------------------------------------
# Accounting and timing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcctRecord(BaseRecord):
    header_tx: int
    body_tx: int
    total_tx: int
    header_rx: int
    body_rx: int
    total_rx: int

    def __str__(self) -> str:
        return (
            f"Tx(hdr {format_size(self.header_tx)}, body {format_size(self.body_tx)}, "
            f"total {format_size(self.total_tx)}) | "
            f"Rx(hdr {format_size(self.header_rx)}, body {format_size(self.body_rx)}, "
            f"total {format_size(self.total_rx)})"
        )


@dataclass(frozen=True)
class PipeAcctRecord(BaseRecord):
    client_request_headers: int
    backend_request_headers: int
    piped_from_client: int
    piped_to_client: int


@dataclass(frozen=True)
class TimestampRecord(BaseRecord):
    event_label: str  # Start, Req, Fetch, Process, Resp, ...
    absolute_time: datetime
    since_start: timedelta
    since_last: timedelta

    @property
    def start_time(self) -> datetime:
        return self.absolute_time - self.since_last

    def __str__(self) -> str:
        return (
            f"{self.event_label} | Elapsed: {format_duration(self.since_last)} "
            f"| Total: {format_duration(self.since_start)}"
        )


@dataclass(frozen=True)
class ReqStartRecord(BaseRecord):
    client_ip: IPAddress
    client_port: int
    listener: str


# ---------------------------------------------------------------------------
# Sessions and backends
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessOpenRecord(BaseRecord):
    remote_addr: IPAddress
    remote_port: int
    socket_name: str
    local_addr: IPAddress
    local_port: int
    session_start: datetime
    file_descriptor: int

    def __str__(self) -> str:
        return (
            f"{self.remote_addr}:{self.remote_port} {self.socket_name} "
            f"{self.local_addr}:{self.local_port} ({self.session_start.isoformat()}) "
            f"{self.file_descriptor}"
        )


@dataclass(frozen=True)
class SessCloseRecord(BaseRecord):
    reason: str
    duration: timedelta

    def __str__(self) -> str:
        return f"{self.reason} {format_duration(self.duration)}"


@dataclass(frozen=True)
class BackendOpenRecord(BaseRecord):
    file_descriptor: int
    name: str
    remote_addr: IPAddress
    remote_port: int
    local_addr: IPAddress
    local_port: int
    reason: str  # connect, reuse or '-'

    def __str__(self) -> str:
        return f"{self.name} ({self.remote_addr}:{self.remote_port}) {self.reason}"


@dataclass(frozen=True)
class BackendStartRecord(BaseRecord):
    remote_addr: IPAddress
    remote_port: int


@dataclass(frozen=True)
class BackendCloseRecord(BaseRecord):
    file_descriptor: int
    name: str
    reason: str  # close, recycle, ...


# ---------------------------------------------------------------------------
# Cache / object
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HitRecord(BaseRecord):
    object_vxid: int
    ttl: timedelta
    grace: timedelta | None = None
    keep: timedelta | None = None

    def __str__(self) -> str:
        parts = [str(self.object_vxid), f"TTL: {format_duration(self.ttl)}"]
        if self.grace is not None:
            parts.append(f"Grace: {format_duration(self.grace)}")
        if self.keep is not None:
            parts.append(f"Keep: {format_duration(self.keep)}")
        return " | ".join(parts)


@dataclass(frozen=True)
class TTLRecord(BaseRecord):
    source: str  # RFC, VCL or HFP
    ttl: timedelta
    grace: timedelta
    keep: timedelta
    reference: datetime
    cache_status: str  # cacheable / uncacheable
    age: datetime | None = None
    date: datetime | None = None
    expires: datetime | None = None
    max_age: timedelta | None = None

    def __str__(self) -> str:
        base = (
            f"{self.source} | TTL {format_duration(self.ttl)}, "
            f"Grace {format_duration(self.grace)}, Keep {format_duration(self.keep)}, "
            f"Reference {int(self.reference.timestamp())}"
        )
        if self.source == "RFC" and self.age is not None:
            base += (
                f", Age {int(self.age.timestamp())}, Date {int(self.date.timestamp())}, "
                f"Expires {int(self.expires.timestamp())}, "
                f"Max-Age {format_duration(self.max_age)}"
            )
        return f"{base} | {self.cache_status}"


@dataclass(frozen=True)
class StorageRecord(BaseRecord):
    storage_type: str  # malloc, file, ...
    name: str


@dataclass(frozen=True)
class LengthRecord(BaseRecord):
    size: int

    def __str__(self) -> str:
        return format_size(self.size)


@dataclass(frozen=True)
class GzipRecord(BaseRecord):
    action: str  # G, U, u
    when: str  # F, D
    object: str  # E, -
    input_bytes: int
    output_bytes: int
    bit_first: int
    bit_last: int
    bit_length: int

    def __str__(self) -> str:
        return (
            f"{_GZIP_ACTIONS.get(self.action, self.action)} on "
            f"{_GZIP_WHEN.get(self.when, self.when)} for "
            f"{_GZIP_OBJECT.get(self.object, self.object)} object | "
            f"{format_size(self.input_bytes)} input | {format_size(self.output_bytes)} output | "
            f"{self.bit_first} {self.bit_last} {self.bit_length}"
        )


@dataclass(frozen=True)
class FiltersRecord(BaseRecord):
    filters: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class FetchBodyRecord(BaseRecord):
    mode: int
    description: str
    stream: bool


@dataclass(frozen=True)
class FetchErrorRecord(BaseRecord):
    pass


@dataclass(frozen=True)
class ErrorRecord(BaseRecord):
    pass


# ---------------------------------------------------------------------------
# VCL
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VCLCallRecord(BaseRecord):
    pass


@dataclass(frozen=True)
class VCLReturnRecord(BaseRecord):
    pass


@dataclass(frozen=True)
class VCLUseRecord(BaseRecord):
    pass


@dataclass(frozen=True)
class VCLLogRecord(BaseRecord):
    key: str  # empty unless the line looks like 'Key: value'
    value: str

    def __str__(self) -> str:
        if self.key:
            return f"{self.key}: {self.value}"
        return self.value
