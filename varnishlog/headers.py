"""HTTP header bookkeeping for a transaction.

The RFCs allow several headers with the same name, while both ``set`` and
``unset`` in VCL act on every header with the given name. Each header keeps
two value lists: ``values`` (state after VCL processing) and
``received_values`` (as sent by the client or backend).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def canonical_header_name(name: str) -> str:
    """'accept-encoding' -> 'Accept-Encoding'.

    Names containing characters that are not valid in a header token are
    returned unchanged.
    """
    if not _TOKEN_RE.match(name):
        return name
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


HOST = canonical_header_name("Host")


class HdrState(Enum):
    RECEIVED = "Received"
    # Header-state diffs call received headers "original"
    ORIGINAL = "Received"
    ADDED = "Added"
    MODIFIED = "Modified"
    DELETED = "Deleted"

    def __str__(self) -> str:
        return self.value


@dataclass
class HeaderValue:
    value: str
    state: HdrState


@dataclass
class Header:
    name: str
    values: list[HeaderValue] = field(default_factory=list)
    received_values: list[HeaderValue] = field(default_factory=list)

    def get_values(self, received: bool = False) -> list[HeaderValue]:
        return self.received_values if received else self.values


class Headers:
    """Ordered mapping of canonical header name -> Header."""

    def __init__(self):
        self._headers: dict[str, Header] = {}

    def add(self, name: str, value: str, state: HdrState) -> None:
        """Append a value to the header, creating it when missing.

        MODIFIED replaces every previous processed value (VCL ``set``
        semantics), and Host only ever holds one value.
        """
        name = canonical_header_name(name)
        header = self._headers.get(name)
        if header is None:
            header = Header(name=name)
            self._headers[name] = header

        if state is HdrState.MODIFIED or name == HOST:
            header.values = []

        header.values.append(HeaderValue(value, state))
        if state is HdrState.RECEIVED:
            header.received_values.append(HeaderValue(value, state))

    def delete(self, name: str, received: bool = True) -> None:
        """Mark every value of the header as DELETED; values are never removed.

        With ``received=False`` only the processed values are marked.
        """
        header = self._headers.get(canonical_header_name(name))
        if header is None:
            return
        for v in header.values:
            v.state = HdrState.DELETED
        if received:
            for v in header.received_values:
                v.state = HdrState.DELETED

    def values(self, name: str, received: bool = False) -> list[HeaderValue]:
        header = self._headers.get(canonical_header_name(name))
        if header is None:
            return []
        return header.get_values(received)

    def live_values(self, name: str, received: bool = False) -> list[HeaderValue]:
        """Values whose state is not DELETED."""
        return [v for v in self.values(name, received) if v.state is not HdrState.DELETED]

    def get(self, name: str, received: bool = False) -> str:
        """First value of the header, or '' when it has none."""
        values = self.values(name, received)
        if not values:
            return ""
        return values[0].value

    def sorted_headers(self) -> list[Header]:
        """Headers in the order they were first seen."""
        return list(self._headers.values())

    def names(self) -> list[str]:
        return list(self._headers)

    def clear(self) -> None:
        self._headers.clear()

    def __contains__(self, name: str) -> bool:
        return canonical_header_name(name) in self._headers

    def __iter__(self) -> Iterator[Header]:
        return iter(self._headers.values())

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return f"Headers({list(self._headers)!r})"
