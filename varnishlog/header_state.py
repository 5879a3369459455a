"""Per-header diff of a transaction: original value, final value and state.

Headers seen before the first VCL_call are original (as sent by the client,
or as received from the backend). After the call, a header that was not seen
before is ADDED; one with an original value is MODIFIED, and an unset
original header is DELETED. Headers added and then removed in VCL leave no
trace.

Varnish core code rewrites a handful of request headers (X-Forwarded-For,
Via, ...) before any VCL runs. Those pre-VCL mutations are buffered and
folded into a single original entry, so the original view shows what the
client sent and the final value shows what Varnish made of it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from varnishlog import tags
from varnishlog.headers import HdrState, canonical_header_name
from varnishlog.models import (
    BaseRecord,
    HeaderRecord,
    HeaderUnsetRecord,
    StatusRecord,
    VCLCallRecord,
)

# Headers that varnishd modifies in C before the first VCL_call
PROXY_MANAGED_HEADERS = frozenset(
    canonical_header_name(name)
    for name in (
        "Via",
        "X-Forwarded-For",
        "X-Varnish",
        "Age",
        "Connection",
        "Keep-Alive",
        "Proxy-Authenticate",
        "Proxy-Authorization",
        "TE",
        "Trailer",
        "Transfer-Encoding",
        "Upgrade",
    )
)

# Only these calls open the response headers to VCL changes
_RESPONSE_CALLS = frozenset({tags.VCL_CALL_DELIVER, tags.VCL_CALL_BACKEND_RESPONSE})


def is_proxy_managed(name: str, tag: str) -> bool:
    """True for client request headers that varnishd rewrites before VCL runs."""
    if not name or tag not in (tags.REQ_HEADER, tags.REQ_UNSET):
        return False
    return canonical_header_name(name) in PROXY_MANAGED_HEADERS


@dataclass(frozen=True)
class HeaderPair:
    name: str
    value: str


@dataclass(frozen=True)
class HeaderState:
    name: str
    original_value: str
    final_value: str
    state: HdrState

    @property
    def is_original(self) -> bool:
        return self.state is not HdrState.ADDED


class HeaderStates(list):
    """List of HeaderState with the views renderers need."""

    def original_headers(self) -> list[HeaderPair]:
        """Headers as originally sent, before VCL processing."""
        return [HeaderPair(hs.name, hs.original_value) for hs in self if hs.is_original]

    def final_headers(self) -> list[HeaderPair]:
        """Headers after VCL processing; deleted headers are left out."""
        return [HeaderPair(hs.name, hs.final_value) for hs in self if hs.state is not HdrState.DELETED]

    def find_header(self, name: str, original: bool = False, ignore_case: bool = False) -> HeaderPair | None:
        headers = self.original_headers() if original else self.final_headers()
        for header in headers:
            if header.name == name or (ignore_case and header.name.lower() == name.lower()):
                return header
        return None


def build_header_states(records: Iterable[BaseRecord], response: bool = False) -> HeaderStates:
    """Compute the header diff of one transaction.

    ``response`` selects the Resp/Beresp track instead of the Req/Bereq one.
    """
    track = tags.RESPONSE_HEADER_TAGS if response else tags.REQUEST_HEADER_TAGS
    history: list[HeaderState | None] = []
    seen: dict[str, HeaderState] = {}
    # name -> (history slot reserved on first arrival, buffered state)
    pending: dict[str, tuple[int, HeaderState]] = {}
    processing = False

    def record_state(state: HeaderState) -> None:
        history.append(state)
        seen[state.name] = state

    def hold(state: HeaderState) -> None:
        if state.name in pending:
            slot = pending[state.name][0]
        else:
            slot = len(history)
            history.append(None)
        pending[state.name] = (slot, state)

    def flush_pending() -> None:
        for slot, state in pending.values():
            history[slot] = state
            seen[state.name] = state
        pending.clear()

    for record in records:
        if isinstance(record, VCLCallRecord):
            if response and record.raw_value not in _RESPONSE_CALLS:
                continue
            if not processing:
                flush_pending()
            processing = True

        elif isinstance(record, StatusRecord):
            processing = False

        elif isinstance(record, HeaderRecord):
            if record.tag not in track:
                continue
            name = record.name
            previous = seen.get(name)

            if not processing and previous is None and is_proxy_managed(name, record.tag):
                buffered = pending.get(name)
                original = buffered[1].original_value if buffered else record.value
                hold(HeaderState(name, original, record.value, HdrState.ORIGINAL))
                continue

            original = previous.original_value if previous else record.value
            if not processing:
                record_state(HeaderState(name, original, record.value, HdrState.ORIGINAL))
            elif previous is not None and previous.is_original:
                record_state(HeaderState(name, original, record.value, HdrState.MODIFIED))
            else:
                record_state(HeaderState(name, original, record.value, HdrState.ADDED))

        elif isinstance(record, HeaderUnsetRecord):
            if record.tag not in track:
                continue
            name = record.name
            previous = seen.get(name)

            if not processing and previous is None and is_proxy_managed(name, record.tag):
                # The unset value is what the client sent, coalesced into one line
                hold(HeaderState(name, record.value, record.value, HdrState.DELETED))
                continue

            if previous is None:
                continue
            if previous.is_original:
                record_state(HeaderState(name, previous.original_value, record.value, HdrState.DELETED))
            else:
                del seen[name]

    flush_pending()
    return _consolidate(history, seen)


def _consolidate(history: list[HeaderState | None], seen: dict[str, HeaderState]) -> HeaderStates:
    """Keep the last state of each header, in chronological order."""
    included: set[str] = set()
    results = []
    for state in reversed(history):
        if state.name in seen and state.name not in included:
            results.append(state)
            included.add(state.name)
    results.reverse()
    return HeaderStates(results)
