"""Transactions and the TransactionSet graph built from a VSL log.

Parent/child edges are stored as vxids and resolved through the owning
TransactionSet, so cyclic or dangling links never create reference cycles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from varnishlog import tags
from varnishlog.header_state import HeaderStates, build_header_states
from varnishlog.headers import Headers
from varnishlog.models import BaseRecord, EndRecord, GenericRecord, LinkRecord, build_txid
from varnishlog.parsers import ParseError, parse_vxid

logger = logging.getLogger(__name__)

MAX_PARENT_DEPTH = 100

MISSING_MESSAGE = "This transaction is not present in the provided VSL logs"


class TxType(str, Enum):
    SESSION = "Session"
    REQUEST = "Request"
    BEREQ = "BeReq"


_LINK_TYPES = {
    tags.LINK_TYPE_SESSION: TxType.SESSION,
    tags.LINK_TYPE_REQUEST: TxType.REQUEST,
    tags.LINK_TYPE_BEREQ: TxType.BEREQ,
}


def parse_level(marker: str) -> int:
    """Nesting level from the start marker: '**' -> 2, '*12*' -> 12."""
    stars = marker.count("*")
    if stars == len(marker):
        return stars
    digits = marker.replace("*", "")
    if not digits.isascii() or not digits.isdigit():
        raise ParseError(f"invalid level marker {marker!r}", line=marker)
    return int(digits)


def is_start_line(line: str) -> bool:
    """'*   << Session  >> 16812342' and friends."""
    parts = line.split()
    return len(parts) == 5 and parts[0].startswith("*") and parts[1].startswith("<")


@dataclass
class Transaction:
    vxid: int
    tx_type: TxType
    level: int
    raw_start_line: str
    esi_level: int = 0
    txid: str = ""
    reason: str = ""
    parent_id: int | None = None
    records: list[BaseRecord] = field(default_factory=list)
    request_headers: Headers = field(default_factory=Headers)
    response_headers: Headers = field(default_factory=Headers)
    children: list[int] = field(default_factory=list)
    missing: bool = False

    @classmethod
    def from_start_line(cls, line: str) -> "Transaction":
        """Create a transaction from its start marker line. Raises ParseError."""
        parts = line.split()
        if len(parts) != 5:
            raise ParseError(f"invalid transaction start line {line!r}", line=line)

        try:
            tx_type = TxType(parts[2])
        except ValueError as exc:
            known = [t.value for t in TxType]
            raise ParseError(
                f"unknown transaction type {parts[2]!r} on line {line!r}, known types: {known}",
                line=line,
            ) from exc

        try:
            vxid = parse_vxid(parts[4])
        except ValueError as exc:
            raise ParseError(f"incorrect vxid found on line {line!r}: {exc}", line=line) from exc

        return cls(vxid=vxid, tx_type=tx_type, level=parse_level(parts[0]), raw_start_line=line)

    @classmethod
    def placeholder(cls, link: LinkRecord) -> "Transaction":
        """Stand-in for a linked transaction that is absent from the log."""
        return cls(
            vxid=link.child_vxid,
            tx_type=_LINK_TYPES.get(link.child_type, TxType.REQUEST),
            level=0,
            raw_start_line="",
            esi_level=link.esi_level,
            txid=link.txid,
            reason=link.reason,
            records=[GenericRecord(tags.MISSING, MISSING_MESSAGE, "")],
            missing=True,
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.records) and isinstance(self.records[-1], EndRecord)

    def record_by_tag(self, tag: str, first: bool = True) -> BaseRecord | None:
        """First (or last) record with the given tag, None when absent."""
        found = None
        for record in self.records:
            if record.tag != tag:
                continue
            found = record
            if first:
                break
        return found

    def record_value_by_tag(self, tag: str, first: bool = True) -> str:
        record = self.record_by_tag(tag, first)
        return record.raw_value if record is not None else ""

    def records_of(self, record_cls: type) -> list[BaseRecord]:
        return [r for r in self.records if isinstance(r, record_cls)]

    def header_states(self, response: bool = False) -> HeaderStates:
        return build_header_states(self.records, response=response)

    def raw_lines(self) -> list[str]:
        return [self.raw_start_line] + [r.raw_line for r in self.records]

    def __repr__(self) -> str:
        return f"Transaction(txid={self.txid!r}, type={self.tx_type.value}, records={len(self.records)})"


class TransactionSet:
    """All transactions of a log, keyed by vxid, in the order they were parsed."""

    def __init__(self, max_parent_depth: int = MAX_PARENT_DEPTH):
        self.max_parent_depth = max_parent_depth
        self._txs: dict[int, Transaction] = {}

    def add(self, tx: Transaction) -> None:
        if tx.vxid in self._txs:
            logger.warning("Duplicate transaction vxid %d (%s), replacing previous one", tx.vxid, tx.txid)
        self._txs[tx.vxid] = tx

    def get(self, vxid: int) -> Transaction | None:
        return self._txs.get(vxid)

    def transactions(self) -> list[Transaction]:
        """All transactions sorted by vxid, level and ESI level."""
        return sorted(self._txs.values(), key=lambda t: (t.vxid, t.level, t.esi_level))

    def children_sorted(self, tx: Transaction) -> list[Transaction]:
        """Children present in the set, sorted by vxid."""
        found = (self._txs.get(vxid) for vxid in tx.children)
        return sorted((c for c in found if c is not None), key=lambda t: t.vxid)

    def resolve_child(self, link: LinkRecord) -> Transaction:
        """The linked transaction, or a placeholder when the log lacks it."""
        child = self._txs.get(link.child_vxid)
        if child is None:
            logger.debug("Linked transaction %s not found, using placeholder", link.txid)
            return Transaction.placeholder(link)
        return child

    def root_parent(self, tx: Transaction, include_sessions: bool = True) -> Transaction:
        """Walk parent links upward and return the topmost transaction.

        With ``include_sessions=False`` the walk stops below Session
        transactions. Loops are cut after ``max_parent_depth`` hops.
        """
        current = tx
        depth = 0
        while True:
            parent_id = current.parent_id
            if parent_id is None or parent_id == current.vxid:
                return current

            parent = self._txs.get(parent_id)
            if parent is None:
                logger.debug("Parent %d of %s not in the log, treating it as root", parent_id, current.txid)
                return current
            if not include_sessions and parent.tx_type is TxType.SESSION:
                return current

            depth += 1
            if depth > self.max_parent_depth:
                logger.warning("Possible loop detected at transaction %s - depth: %d", current.txid, depth)
                return current
            current = parent

    def unique_root_parents(self, include_sessions: bool = True) -> list[Transaction]:
        roots: dict[str, Transaction] = {}
        for tx in self.transactions():
            root = self.root_parent(tx, include_sessions)
            roots[root.txid] = root
        return sorted(roots.values(), key=lambda t: (t.vxid, t.txid))

    def group_related_transactions(self, include_sessions: bool = True) -> list[list[Transaction]]:
        """One group per root: the root followed by its descendants, depth first."""
        return [self._collect_group(root) for root in self.unique_root_parents(include_sessions)]

    def _collect_group(self, root: Transaction) -> list[Transaction]:
        visited: set[int] = set()
        group = []
        stack = [root]
        while stack:
            tx = stack.pop()
            if tx.vxid in visited:
                continue
            visited.add(tx.vxid)
            group.append(tx)
            stack.extend(reversed(self.children_sorted(tx)))
        return group

    def raw_log(self) -> str:
        """Rebuild the log text from the stored raw lines."""
        chunks = []
        for i, tx in enumerate(self._txs.values()):
            if i != 0 and tx.tx_type is TxType.SESSION:
                chunks.append("\n")
            chunks.append("".join(f"{line}\n" for line in tx.raw_lines()))
            chunks.append("\n")
        return "".join(chunks)

    def __contains__(self, vxid: int) -> bool:
        return vxid in self._txs

    def __iter__(self) -> Iterator[Transaction]:
        return iter(self._txs.values())

    def __len__(self) -> int:
        return len(self._txs)
