"""Per-tag field grammars and the tag dispatcher.

A body line looks like ``--  ReqHeader      Host: www.example.com``: a marker,
the tag, then a free-form value. ``dispatch`` maps the tag to the parser that
knows the value grammar. Unknown tags degrade to ``GenericRecord``; a known
tag whose value does not follow its grammar raises ``ParseError``.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable
from urllib.parse import urlsplit

from varnishlog import tags
from varnishlog.headers import canonical_header_name
from varnishlog.models import (
    AcctRecord,
    BackendCloseRecord,
    BackendOpenRecord,
    BackendStartRecord,
    BaseRecord,
    BeginRecord,
    EndRecord,
    ErrorRecord,
    FetchBodyRecord,
    FetchErrorRecord,
    FiltersRecord,
    GenericRecord,
    GzipRecord,
    HeaderRecord,
    HeaderUnsetRecord,
    HitRecord,
    LengthRecord,
    LinkRecord,
    MethodRecord,
    PipeAcctRecord,
    ProtocolRecord,
    ReasonRecord,
    ReqStartRecord,
    SessCloseRecord,
    SessOpenRecord,
    StatusRecord,
    StorageRecord,
    TimestampRecord,
    TTLRecord,
    URLRecord,
    VCLCallRecord,
    VCLLogRecord,
    VCLReturnRecord,
    VCLUseRecord,
)

logger = logging.getLogger(__name__)

_INT_RE = re.compile(r"^[+-]?\d+$", re.ASCII)
_UINT_RE = re.compile(r"^\d+$", re.ASCII)

VXID_MAX = 2 ** 32 - 1


class ParseError(Exception):
    """Raised when the log is malformed and parsing cannot continue."""

    def __init__(self, message: str, line: str = "", expected: str | None = None):
        super().__init__(message)
        self.line = line
        self.expected = expected


# ---------------------------------------------------------------------------
# Field converters
# ---------------------------------------------------------------------------


def parse_vxid(value: str) -> int:
    """Parse an unsigned 32-bit transaction id. Raises ValueError."""
    if not _UINT_RE.match(value):
        raise ValueError(f"invalid VXID {value!r}")
    vxid = int(value)
    if vxid > VXID_MAX:
        raise ValueError(f"VXID {value!r} out of range")
    return vxid


def parse_unix_time(value: str) -> datetime:
    """Convert '1730491198.123456' to an aware UTC datetime, microsecond precision."""
    seconds = float(value)
    whole = int(seconds)
    micros = round((seconds - whole) * 1e6)
    return datetime.fromtimestamp(whole, tz=timezone.utc) + timedelta(microseconds=micros)


def parse_seconds(value: str) -> timedelta:
    return timedelta(seconds=float(value))


def _error(record_name: str, problem: str, line: str) -> ParseError:
    return ParseError(f"conversion to {record_name} failed, {problem} on line {line!r}", line=line)


def _int(value: str, record_name: str, what: str, line: str) -> int:
    if not _INT_RE.match(value):
        raise _error(record_name, f"bad field {what}", line)
    return int(value)


def _vxid(value: str, record_name: str, line: str) -> int:
    try:
        return parse_vxid(value)
    except ValueError as exc:
        raise _error(record_name, f"bad VXID ({exc})", line) from exc


def _ip(value: str, record_name: str, what: str, line: str):
    try:
        return ipaddress.ip_address(value)
    except ValueError as exc:
        raise _error(record_name, f"bad {what}", line) from exc


def _duration(value: str, record_name: str, what: str, line: str) -> timedelta:
    try:
        return parse_seconds(value)
    except (ValueError, OverflowError) as exc:
        raise _error(record_name, f"bad field {what}", line) from exc


def _time(value: str, record_name: str, what: str, line: str) -> datetime:
    try:
        return parse_unix_time(value)
    except (ValueError, OverflowError, OSError) as exc:
        raise _error(record_name, f"bad field {what}", line) from exc


def _split_key_value(value: str) -> tuple[str, str] | None:
    """Split 'Name: value' at the first colon; None when there is no colon."""
    name, sep, rest = value.partition(":")
    if not sep:
        return None
    return name.strip(" \t"), rest.lstrip(" \t")


# ---------------------------------------------------------------------------
# Family parsers, each takes (tag, value, line)
# ---------------------------------------------------------------------------


def _parse_begin(tag: str, value: str, line: str) -> BeginRecord:
    parts = value.split()
    if len(parts) not in (3, 4):
        raise _error("BeginRecord", "incorrect len", line)
    parent = _vxid(parts[1], "BeginRecord", line)
    esi_level = 0
    if len(parts) == 4:
        if parts[2] != "esi":
            raise _error("BeginRecord", "len is 4 but it is not an ESI", line)
        esi_level = _int(parts[3], "BeginRecord", "esi level", line)
    return BeginRecord(tag, value, line, record_type=parts[0], parent_vxid=parent,
                       esi_level=esi_level, reason=parts[2])


def _parse_link(tag: str, value: str, line: str) -> LinkRecord:
    parts = value.split()
    if len(parts) not in (3, 4):
        raise _error("LinkRecord", "incorrect len", line)
    child = _vxid(parts[1], "LinkRecord", line)
    esi_level = 0
    if len(parts) == 4:
        if parts[2] != "esi":
            raise _error("LinkRecord", "len is 4 but it is not an ESI", line)
        esi_level = _int(parts[3], "LinkRecord", "esi level", line)
    return LinkRecord(tag, value, line, child_type=parts[0], child_vxid=child,
                      reason=parts[2], esi_level=esi_level)


def _parse_header(tag: str, value: str, line: str) -> HeaderRecord:
    kv = _split_key_value(value)
    if kv is None:
        raise _error("HeaderRecord", "missing ':' separator", line)
    name, header_value = kv
    return HeaderRecord(tag, value, line, name=canonical_header_name(name),
                        value=header_value, direction=tags.DIRECTIONS[tag])


def _parse_unset(tag: str, value: str, line: str) -> HeaderUnsetRecord:
    kv = _split_key_value(value)
    if kv is None:
        raise _error("HeaderUnsetRecord", "missing ':' separator", line)
    name, header_value = kv
    return HeaderUnsetRecord(tag, value, line, name=canonical_header_name(name),
                             value=header_value, direction=tags.DIRECTIONS[tag])


def _parse_status(tag: str, value: str, line: str) -> StatusRecord:
    return StatusRecord(tag, value, line, code=_int(value, "StatusRecord", "status", line))


def _parse_url(tag: str, value: str, line: str) -> URLRecord:
    try:
        url = urlsplit(value)
    except ValueError as exc:
        raise _error("URLRecord", "could not parse URL", line) from exc
    return URLRecord(tag, value, line, url=url)


def _parse_acct(tag: str, value: str, line: str) -> AcctRecord:
    parts = value.split()
    if len(parts) != 6:
        raise _error("AcctRecord", "incorrect len", line)
    counters = [_int(p, "AcctRecord", f"part[{i}]", line) for i, p in enumerate(parts)]
    return AcctRecord(tag, value, line, *counters)


def _parse_pipe_acct(tag: str, value: str, line: str) -> PipeAcctRecord:
    parts = value.split()
    if len(parts) != 4:
        raise _error("PipeAcctRecord", "incorrect len", line)
    counters = [_int(p, "PipeAcctRecord", f"part[{i}]", line) for i, p in enumerate(parts)]
    return PipeAcctRecord(tag, value, line, *counters)


def _parse_timestamp(tag: str, value: str, line: str) -> TimestampRecord:
    parts = value.split()
    if len(parts) != 4:
        raise _error("TimestampRecord", "incorrect len", line)
    return TimestampRecord(
        tag, value, line,
        event_label=parts[0].rstrip(":"),
        absolute_time=_time(parts[1], "TimestampRecord", "absolute time", line),
        since_start=_duration(parts[2], "TimestampRecord", "since start", line),
        since_last=_duration(parts[3], "TimestampRecord", "since last", line),
    )


def _parse_req_start(tag: str, value: str, line: str) -> ReqStartRecord:
    parts = value.split()
    if len(parts) != 3:
        raise _error("ReqStartRecord", "incorrect len", line)
    return ReqStartRecord(
        tag, value, line,
        client_ip=_ip(parts[0], "ReqStartRecord", "client address", line),
        client_port=_int(parts[1], "ReqStartRecord", "client port", line),
        listener=parts[2],
    )


def _parse_sess_open(tag: str, value: str, line: str) -> SessOpenRecord:
    # 192.168.65.1 38144 a0 172.17.0.2 8001 1730491198.071549 24
    parts = value.split()
    if len(parts) != 7:
        raise _error("SessOpenRecord", "incorrect len", line)
    return SessOpenRecord(
        tag, value, line,
        remote_addr=_ip(parts[0], "SessOpenRecord", "remote address", line),
        remote_port=_int(parts[1], "SessOpenRecord", "remote port", line),
        socket_name=parts[2],
        local_addr=_ip(parts[3], "SessOpenRecord", "local address", line),
        local_port=_int(parts[4], "SessOpenRecord", "local port", line),
        session_start=_time(parts[5], "SessOpenRecord", "session start", line),
        file_descriptor=_int(parts[6], "SessOpenRecord", "file descriptor", line),
    )


def _parse_sess_close(tag: str, value: str, line: str) -> SessCloseRecord:
    parts = value.split()
    if len(parts) != 2:
        raise _error("SessCloseRecord", "invalid len", line)
    return SessCloseRecord(tag, value, line, reason=parts[0],
                           duration=_duration(parts[1], "SessCloseRecord", "duration", line))


def _parse_backend_open(tag: str, value: str, line: str) -> BackendOpenRecord:
    # 29 default 192.168.50.11 80 192.168.50.10 51776 connect
    parts = value.split()
    if len(parts) < 6:
        raise _error("BackendOpenRecord", "incorrect len", line)
    return BackendOpenRecord(
        tag, value, line,
        file_descriptor=_int(parts[0], "BackendOpenRecord", "file descriptor", line),
        name=parts[1],
        remote_addr=_ip(parts[2], "BackendOpenRecord", "remote address", line),
        remote_port=_int(parts[3], "BackendOpenRecord", "remote port", line),
        local_addr=_ip(parts[4], "BackendOpenRecord", "local address", line),
        local_port=_int(parts[5], "BackendOpenRecord", "local port", line),
        reason=parts[6] if len(parts) >= 7 else "-",
    )


def _parse_backend_start(tag: str, value: str, line: str) -> BackendStartRecord:
    parts = value.split()
    if len(parts) < 2:
        raise _error("BackendStartRecord", "incorrect len", line)
    return BackendStartRecord(
        tag, value, line,
        remote_addr=_ip(parts[0], "BackendStartRecord", "remote address", line),
        remote_port=_int(parts[1], "BackendStartRecord", "remote port", line),
    )


def _parse_backend_close(tag: str, value: str, line: str) -> BackendCloseRecord:
    parts = value.split()
    if len(parts) < 2:
        raise _error("BackendCloseRecord", "incorrect len", line)
    return BackendCloseRecord(
        tag, value, line,
        file_descriptor=_int(parts[0], "BackendCloseRecord", "file descriptor", line),
        name=parts[1],
        reason=parts[2] if len(parts) >= 3 else "unknown",
    )


def _parse_hit(tag: str, value: str, line: str) -> HitRecord:
    # Hit carries ttl, grace and keep; HitMiss / HitPass only guarantee the ttl
    parts = value.split()
    required = 4 if tag == tags.HIT else 2
    if len(parts) < required:
        raise _error("HitRecord", "incorrect len", line)
    grace = keep = None
    if len(parts) >= 4:
        grace = _duration(parts[2], "HitRecord", "grace", line)
        keep = _duration(parts[3], "HitRecord", "keep", line)
    return HitRecord(
        tag, value, line,
        object_vxid=_vxid(parts[0], "HitRecord", line),
        ttl=_duration(parts[1], "HitRecord", "TTL", line),
        grace=grace,
        keep=keep,
    )


def _parse_ttl(tag: str, value: str, line: str) -> TTLRecord:
    # RFC 120 10 0 1606398419 1606398419 1606398419 0 0 cacheable
    # VCL 120 10 0 1606400537 uncacheable
    # HFP 10 0 0 1606402666 uncacheable
    parts = value.split()
    if len(parts) not in (6, 10):
        raise _error("TTLRecord", "incorrect len (wanted 6 or 10)", line)
    common = dict(
        source=parts[0],
        ttl=_duration(parts[1], "TTLRecord", "ttl", line),
        grace=_duration(parts[2], "TTLRecord", "grace", line),
        keep=_duration(parts[3], "TTLRecord", "keep", line),
        reference=_time(parts[4], "TTLRecord", "reference", line),
    )
    if len(parts) == 6:
        return TTLRecord(tag, value, line, cache_status=parts[5], **common)
    return TTLRecord(
        tag, value, line,
        cache_status=parts[9],
        age=_time(parts[5], "TTLRecord", "age", line),
        date=_time(parts[6], "TTLRecord", "date", line),
        expires=_time(parts[7], "TTLRecord", "expires", line),
        max_age=_duration(parts[8], "TTLRecord", "max age", line),
        **common,
    )


def _parse_storage(tag: str, value: str, line: str) -> StorageRecord:
    parts = value.split()
    if len(parts) < 2:
        raise _error("StorageRecord", "incorrect len", line)
    return StorageRecord(tag, value, line, storage_type=parts[0], name=parts[1])


def _parse_length(tag: str, value: str, line: str) -> LengthRecord:
    return LengthRecord(tag, value, line, size=_int(value, "LengthRecord", "size", line))


def _parse_gzip(tag: str, value: str, line: str) -> GzipRecord:
    parts = value.split()
    if len(parts) != 8:
        raise _error("GzipRecord", "incorrect len", line)
    numbers = [_int(p, "GzipRecord", f"part[{i}]", line) for i, p in enumerate(parts[3:], start=3)]
    return GzipRecord(tag, value, line, parts[0], parts[1], parts[2], *numbers)


def _parse_filters(tag: str, value: str, line: str) -> FiltersRecord:
    return FiltersRecord(tag, value, line, filters=tuple(value.split()))


def _parse_fetch_body(tag: str, value: str, line: str) -> FetchBodyRecord:
    parts = value.split()
    if len(parts) != 3:
        raise _error("FetchBodyRecord", "incorrect len", line)
    if parts[2] not in ("stream", "-"):
        raise _error("FetchBodyRecord", "unknown value for stream", line)
    return FetchBodyRecord(tag, value, line,
                           mode=_int(parts[0], "FetchBodyRecord", "mode", line),
                           description=parts[1], stream=parts[2] == "stream")


def _parse_vcl_log(tag: str, value: str, line: str) -> VCLLogRecord:
    kv = _split_key_value(value)
    if kv is None:
        return VCLLogRecord(tag, value, line, key="", value=value)
    return VCLLogRecord(tag, value, line, key=kv[0], value=kv[1])


def _plain(cls) -> Callable[[str, str, str], BaseRecord]:
    def build(tag: str, value: str, line: str) -> BaseRecord:
        return cls(tag, value, line)
    return build


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

_PARSERS: dict[str, Callable[[str, str, str], BaseRecord]] = {
    tags.BEGIN: _parse_begin,
    tags.END: _plain(EndRecord),
    tags.LINK: _parse_link,
    tags.TIMESTAMP: _parse_timestamp,
    tags.REQ_START: _parse_req_start,
    tags.REQ_ACCT: _parse_acct,
    tags.BEREQ_ACCT: _parse_acct,
    tags.PIPE_ACCT: _parse_pipe_acct,
    tags.REQ_URL: _parse_url,
    tags.BEREQ_URL: _parse_url,
    tags.REQ_METHOD: _plain(MethodRecord),
    tags.BEREQ_METHOD: _plain(MethodRecord),
    tags.RESP_STATUS: _parse_status,
    tags.BERESP_STATUS: _parse_status,
    tags.OBJ_STATUS: _parse_status,
    tags.RESP_REASON: _plain(ReasonRecord),
    tags.BERESP_REASON: _plain(ReasonRecord),
    tags.OBJ_REASON: _plain(ReasonRecord),
    tags.SESS_OPEN: _parse_sess_open,
    tags.SESS_CLOSE: _parse_sess_close,
    tags.BACKEND_OPEN: _parse_backend_open,
    tags.BACKEND_START: _parse_backend_start,
    tags.BACKEND_CLOSE: _parse_backend_close,
    tags.BACKEND_REUSE: _parse_backend_close,
    tags.HIT: _parse_hit,
    tags.HIT_MISS: _parse_hit,
    tags.HIT_PASS: _parse_hit,
    tags.TTL: _parse_ttl,
    tags.STORAGE: _parse_storage,
    tags.LENGTH: _parse_length,
    tags.GZIP: _parse_gzip,
    tags.FILTERS: _parse_filters,
    tags.FETCH_BODY: _parse_fetch_body,
    tags.FETCH_ERROR: _plain(FetchErrorRecord),
    tags.ERROR: _plain(ErrorRecord),
    tags.VCL_ERROR: _plain(ErrorRecord),
    tags.BROTLI: _plain(GenericRecord),
    tags.MSE4_NEW_OBJECT: _plain(GenericRecord),
    tags.MSE4_OBJ_ITER: _plain(GenericRecord),
    tags.MSE4_CHUNK_FAULT: _plain(GenericRecord),
    tags.VCL_CALL: _plain(VCLCallRecord),
    tags.VCL_RETURN: _plain(VCLReturnRecord),
    tags.VCL_USE: _plain(VCLUseRecord),
    tags.VCL_LOG: _parse_vcl_log,
}
_PARSERS.update({t: _parse_header for t in tags.HEADER_TAGS})
_PARSERS.update({t: _parse_unset for t in tags.UNSET_TAGS})
for _t in (tags.REQ_PROTOCOL, tags.RESP_PROTOCOL, tags.BEREQ_PROTOCOL,
           tags.BERESP_PROTOCOL, tags.OBJ_PROTOCOL):
    _PARSERS[_t] = _plain(ProtocolRecord)


def is_known_tag(tag: str) -> bool:
    return tag in _PARSERS


def dispatch(tag: str, raw_value: str, raw_line: str) -> BaseRecord:
    """Build the record for *tag*. Unknown tags become a GenericRecord."""
    parser = _PARSERS.get(tag)
    if parser is None:
        logger.warning("Unknown tag %r on line %r", tag, raw_line)
        return GenericRecord(tag, raw_value, raw_line)
    return parser(tag, raw_value, raw_line)


def split_line(line: str) -> tuple[str, str]:
    """Split '--  ReqURL   /index.html' into ('ReqURL', '/index.html').

    Raises ParseError for lines with fewer than two fields.
    """
    stripped = line.strip()
    fields = stripped.split(maxsplit=2)
    if len(fields) < 2:
        raise ParseError(f"could not parse line {line!r}", line=line)
    if len(fields) == 2:
        return fields[1], ""
    return fields[1], fields[2]


def parse_record(line: str) -> BaseRecord:
    """Parse one body line of a transaction into its record."""
    stripped = line.strip()
    tag, value = split_line(stripped)
    return dispatch(tag, value, stripped)
