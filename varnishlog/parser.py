"""Streaming VSL parser: log lines in, TransactionSet out.

A transaction starts with a marker line (``**  << Request  >> 4``) that must
be followed by a Begin record, and ends at its End record:

    *   << Session  >> 1
    -   Begin          sess 0 HTTP/1
    -   SessOpen       192.168.65.1 38144 a0 172.17.0.2 8001 1730491198.071549 24
    -   Link           req 2 rxreq
    -   End

Varnish also has core C code that modifies some request headers (e.g.
X-Forwarded-For, Via) before any VCL is called, so it is not obvious whether
such a header came from the client or from Varnish. Those headers are kept
aside until the first VCL_call and merged then, leaving only what the client
really sent in the received values.
Ref: https://github.com/varnishcache/varnish-cache/blob/9f02342b455469349e24a88e49550f23c262baaf/bin/varnishd/cache/cache_req_fsm.c#L908-L909
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from varnishlog import tags
from varnishlog.header_state import is_proxy_managed
from varnishlog.headers import HdrState, Headers
from varnishlog.models import (
    BaseRecord,
    BeginRecord,
    EndRecord,
    HeaderRecord,
    HeaderUnsetRecord,
    LinkRecord,
    StatusRecord,
    VCLCallRecord,
    build_txid,
)
from varnishlog.parsers import ParseError, parse_record
from varnishlog.transaction import MAX_PARENT_DEPTH, Transaction, TransactionSet, is_start_line

logger = logging.getLogger(__name__)


def add_processed_header(headers: Headers, name: str, value: str) -> None:
    """Add a header touched by VCL or varnishd: ADDED if new, MODIFIED otherwise.

    VCL ``set`` removes every previous value, which MODIFIED takes care of.
    """
    if headers.get(name) == "":
        headers.add(name, value, HdrState.ADDED)
    else:
        headers.add(name, value, HdrState.MODIFIED)


def merge_temp_headers(headers: Headers, temp_headers: Headers) -> None:
    """Fold the buffered varnishd-managed headers into *headers* and clear the buffer.

    Example, 'Via: a' sent by the client:

        -   ReqHeader      Via: a
        -   ReqHeader      X-Forwarded-For: 192.168.65.1
        -   ReqUnset       Via: a
        -   ReqHeader      Via: a, 1.1 53d4be3da396 (Varnish/7.5)
        -   VCL_call       RECV

    'a' is kept as the received value and the rewritten one as MODIFIED.
    """
    for header in temp_headers.sorted_headers():
        for v in header.received_values:
            if v.state is HdrState.RECEIVED:
                headers.add(header.name, v.value, HdrState.RECEIVED)
        for v in header.values:
            if v.state is HdrState.DELETED:
                headers.delete(header.name)
            else:
                headers.add(header.name, v.value, v.state)
    temp_headers.clear()


class TransactionBuilder:
    """Accumulates the records of one transaction and its header sets."""

    def __init__(self, tx: Transaction):
        self.tx = tx
        self._client_headers = True
        self._last_header: HeaderRecord | None = None
        self._temp_headers = Headers()

    def begin(self, record: BaseRecord, line: str) -> None:
        if not isinstance(record, BeginRecord):
            raise ParseError(
                f"parser error: expected {tags.BEGIN} tag, found {record.tag!r} on line {line!r}",
                line=line,
                expected=tags.BEGIN,
            )
        tx = self.tx
        tx.parent_id = record.parent_vxid or None
        tx.esi_level = record.esi_level
        tx.reason = record.reason
        tx.txid = build_txid(tx.vxid, record.record_type, record.esi_level)
        tx.records.append(record)

    def feed(self, record: BaseRecord) -> bool:
        """Append a body record. Returns True once the End record is reached."""
        tx = self.tx
        if isinstance(record, BeginRecord):
            raise ParseError(
                f"parser error: duplicate {tags.BEGIN!r} tag found in the middle of transaction {tx.vxid}",
                line=record.raw_line,
                expected=tags.END,
            )
        tx.records.append(record)

        if isinstance(record, VCLCallRecord):
            self._on_vcl_call()
        elif isinstance(record, StatusRecord):
            # Resp / Beresp headers start over in their pristine state
            self._client_headers = True
        elif isinstance(record, LinkRecord):
            self._on_link(record)
        elif isinstance(record, HeaderRecord):
            self._on_header(record)
        elif isinstance(record, HeaderUnsetRecord):
            self._on_unset(record)
        elif isinstance(record, EndRecord):
            self._finish()
            return True
        return False

    def _headers_for(self, record: HeaderRecord | HeaderUnsetRecord) -> Headers | None:
        if record.direction == "object":
            return None
        return self.tx.response_headers if record.is_response else self.tx.request_headers

    def _on_vcl_call(self) -> None:
        if not self._client_headers:
            return
        self._client_headers = False
        if self._last_header is None:
            self._temp_headers.clear()
            return
        # The last header seen tells which set was being received
        merge_temp_headers(self._headers_for(self._last_header), self._temp_headers)

    def _on_link(self, record: LinkRecord) -> None:
        if record.child_vxid in self.tx.children:
            logger.warning("Duplicate child %s linked from transaction %s", record.txid, self.tx.txid)
            return
        self.tx.children.append(record.child_vxid)

    def _on_header(self, record: HeaderRecord) -> None:
        headers = self._headers_for(record)
        if headers is None:
            return
        self._last_header = record

        if not self._client_headers:
            add_processed_header(headers, record.name, record.value)
        elif is_proxy_managed(record.name, record.tag):
            add_processed_header(self._temp_headers, record.name, record.value)
        else:
            headers.add(record.name, record.value, HdrState.RECEIVED)

    def _on_unset(self, record: HeaderUnsetRecord) -> None:
        headers = self._headers_for(record)
        if headers is None:
            return

        if self._client_headers:
            if is_proxy_managed(record.name, record.tag):
                # varnishd core at work: the unset value is the one the client sent
                self._temp_headers.add(record.name, record.value, HdrState.RECEIVED)
            else:
                logger.warning("Unset found for non-tracked header %s in %s", record.name, self.tx.txid)
        headers.delete(record.name)
        self._temp_headers.delete(record.name, received=False)

    def _finish(self) -> None:
        if len(self._temp_headers):
            merge_temp_headers(self.tx.request_headers, self._temp_headers)


class TransactionParser:
    """Parses a complete VSL log (any iterable of lines) into a TransactionSet."""

    def __init__(self, stream: Iterable[str], max_parent_depth: int = MAX_PARENT_DEPTH):
        self._lines: Iterator[str] = iter(stream)
        self._max_parent_depth = max_parent_depth

    def parse(self) -> TransactionSet:
        """Consume the stream. The first malformed transaction raises ParseError."""
        ts = TransactionSet(max_parent_depth=self._max_parent_depth)
        for raw in self._lines:
            line = raw.strip()
            if not is_start_line(line):
                continue
            tx = Transaction.from_start_line(line)
            self._parse_transaction(tx)
            ts.add(tx)
            logger.debug("Parsed transaction %s with %d records", tx.txid, len(tx.records))
        return ts

    def _parse_transaction(self, tx: Transaction) -> None:
        builder = TransactionBuilder(tx)

        raw = next(self._lines, None)
        if raw is None:
            raise ParseError(
                f"parser error: expected {tags.BEGIN} tag, found EOF after {tx.raw_start_line!r}",
                line=tx.raw_start_line,
                expected=tags.BEGIN,
            )
        line = raw.strip()
        if not line:
            raise ParseError(
                f"parser error: expected {tags.BEGIN} tag, found empty line after {tx.raw_start_line!r}",
                line=tx.raw_start_line,
                expected=tags.BEGIN,
            )
        builder.begin(parse_record(line), line)

        for raw in self._lines:
            line = raw.strip()
            # Skip empty or invalid lines
            if len(line.split(maxsplit=1)) < 2:
                continue
            if builder.feed(parse_record(line)):
                return

        raise ParseError(
            f"parser error: transaction {tx.raw_start_line!r} finished without {tags.END} tag at EOF",
            line=tx.raw_start_line,
            expected=tags.END,
        )


def parse(source: str | Iterable[str], max_parent_depth: int = MAX_PARENT_DEPTH) -> TransactionSet:
    """Parse VSL text (a string or an iterable of lines)."""
    lines = source.splitlines() if isinstance(source, str) else source
    return TransactionParser(lines, max_parent_depth=max_parent_depth).parse()
