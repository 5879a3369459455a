"""Shared pytest fixtures: varnishlog -g request dumps."""

from __future__ import annotations

import pytest

from varnishlog.parser import parse
from varnishlog.transaction import TransactionSet

FULL_LOG = """\
*   << Session  >> 1
-   Begin          sess 0 HTTP/1
-   SessOpen       192.168.65.1 38144 a0 172.17.0.2 8001 1730491198.071549 24
-   Link           req 2 rxreq
-   SessClose      REM_CLOSE 0.004
-   End

**  << Request  >> 2
--  Begin          req 1 rxreq
--  Timestamp      Start: 1730491198.071680 0.000000 0.000000
--  ReqStart       192.168.65.1 38144 a0
--  ReqMethod      GET
--  ReqURL         /index.html?b=2&a=1
--  ReqProtocol    HTTP/1.1
--  ReqHeader      Host: www.example1.org
--  ReqHeader      secret:1234
--  ReqHeader      X-Forwarded-For: 1.1.1.1
--  ReqUnset       X-Forwarded-For: 1.1.1.1
--  ReqHeader      X-Forwarded-For: 1.1.1.1, 192.168.65.1
--  ReqHeader      Via: 1.1 varnish (Varnish/7.5)
--  VCL_call       RECV
--  ReqHeader      xid: 2
--  ReqHeader      X-Test-Header: Test Value
--  ReqUnset       X-Test-Header: Test Value
--  VCL_return     hash
--  VCL_call       HASH
--  VCL_return     lookup
--  VCL_call       MISS
--  VCL_return     fetch
--  Link           bereq 3 fetch
--  Timestamp      Fetch: 1730491198.072000 0.000320 0.000320
--  RespProtocol   HTTP/1.1
--  RespStatus     200
--  RespReason     OK
--  RespHeader     Content-Type: text/html
--  RespHeader     Content-Length: 612
--  RespHeader     X-Varnish: 2
--  VCL_call       DELIVER
--  RespUnset      Content-Length: 612
--  RespHeader     X-Cache: MISS
--  VCL_return     deliver
--  Link           req 4 esi 1
--  Timestamp      Resp: 1730491198.072500 0.000820 0.000500
--  ReqAcct        120 0 120 250 612 862
--  End

*** << BeReq    >> 3
--- Begin          bereq 2 fetch
--- Timestamp      Start: 1730491198.071900 0.000000 0.000000
--- BereqMethod    GET
--- BereqURL       /index.html?b=2&a=1
--- BereqProtocol  HTTP/1.1
--- BereqHeader    Host: www.example1.org
--- BereqHeader    X-Varnish: 3
--- VCL_call       BACKEND_FETCH
--- BereqUnset     X-Varnish: 3
--- VCL_return     fetch
--- BackendOpen    26 default 172.17.0.3 80 172.17.0.2 46388 connect
--- BerespProtocol HTTP/1.1
--- BerespStatus   200
--- BerespReason   OK
--- BerespHeader   Content-Type: text/html
--- BerespHeader   Content-Length: 612
--- TTL            RFC 120 10 0 1730491198 1730491198 1730491198 0 0 cacheable
--- VCL_call       BACKEND_RESPONSE
--- BerespHeader   X-Backend: default
--- TTL            VCL 120 10 0 1730491198 cacheable
--- VCL_return     deliver
--- Storage        malloc s0
--- Fetch_Body     3 length stream
--- BackendClose   26 default recycle
--- BereqAcct      180 0 180 210 612 822
--- End

*** << Request  >> 4
--- Begin          req 2 esi 1
--- ReqURL         /esi/fragment.html
--- ReqHeader      Host: www.example1.org
--- VCL_call       RECV
--- VCL_return     hash
--- RespStatus     200
--- RespHeader     Content-Length: 10
--- VCL_call       DELIVER
--- VCL_return     deliver
--- End

"""

# Session 10 links request 11, which is not in the log
MISSING_LINK_LOG = """\
*   << Session  >> 10
-   Begin          sess 0 HTTP/1
-   Link           req 11 rxreq
-   End
"""

# Requests 5 and 7 claim each other as parent
CYCLE_LOG = """\
**  << Request  >> 5
--  Begin          req 7 rxreq
--  Link           req 7 rxreq
--  End

**  << Request  >> 7
--  Begin          req 5 rxreq
--  Link           req 5 rxreq
--  End
"""

# The client sends X-Forwarded-For twice; varnishd folds both into one line
# before appending the client address
MULTI_FORWARDED_FOR_LOG = """\
**  << Request  >> 262
--  Begin          req 261 rxreq
--  ReqMethod      GET
--  ReqURL         /esi
--  ReqProtocol    HTTP/1.1
--  ReqHeader      Host: www.example1.org
--  ReqHeader      User-Agent: curl/8.7.1
--  ReqHeader      Accept: */*
--  ReqHeader      secret:1234
--  ReqHeader      X-Forwarded-For: 1.1.1.1
--  ReqHeader      X-Forwarded-For: 2.2.2.2
--  ReqUnset       X-Forwarded-For: 1.1.1.1, 2.2.2.2
--  ReqHeader      X-Forwarded-For: 1.1.1.1, 2.2.2.2, 192.168.65.1
--  ReqHeader      Via: 1.1 b736436225f7 (Varnish/7.5)
--  VCL_call       RECV
--  VCL_Log        custom VCL recv
--  ReqHeader      xid: 262
--  ReqHeader      X-Test-Header: Test Value
--  ReqUnset       X-Test-Header: Test Value
--  VCL_return     hash
--  End
"""

DUPLICATE_LINK_LOG = """\
*   << Session  >> 20
-   Begin          sess 0 HTTP/1
-   Link           req 21 rxreq
-   Link           req 21 rxreq
-   End
"""


@pytest.fixture()
def full_log() -> str:
    return FULL_LOG


@pytest.fixture()
def full_set() -> TransactionSet:
    """Session 1 -> request 2 -> (bereq 3, ESI request 4)."""
    return parse(FULL_LOG)


@pytest.fixture()
def missing_link_set() -> TransactionSet:
    return parse(MISSING_LINK_LOG)


@pytest.fixture()
def cycle_set() -> TransactionSet:
    return parse(CYCLE_LOG)


@pytest.fixture()
def multi_forwarded_for_set() -> TransactionSet:
    return parse(MULTI_FORWARDED_FOR_LOG)
