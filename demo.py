#!/usr/bin/env python3
"""One-shot demo: parses a built-in varnishlog sample and optionally files."""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from varnishlog.config import load_config, setup_logging
from varnishlog.parser import parse
from varnishlog.parsers import ParseError
from varnishlog.reader import parse_file
from varnishlog.transaction import TxType

logger = logging.getLogger("demo")

SAMPLE_LOG = """\
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
--  ReqHeader      Host: www.example.com
--  ReqHeader      X-Forwarded-For: 10.0.0.1
--  ReqUnset       X-Forwarded-For: 10.0.0.1
--  ReqHeader      X-Forwarded-For: 10.0.0.1, 192.168.65.1
--  ReqHeader      Via: 1.1 varnish (Varnish/7.5)
--  VCL_call       RECV
--  ReqHeader      X-Debug: 1
--  VCL_return     hash
--  VCL_call       HASH
--  VCL_return     lookup
--  VCL_call       MISS
--  VCL_return     fetch
--  Link           bereq 3 fetch
--  RespProtocol   HTTP/1.1
--  RespStatus     200
--  RespReason     OK
--  RespHeader     Content-Type: text/html
--  RespHeader     Content-Length: 612
--  VCL_call       DELIVER
--  RespUnset      Content-Length: 612
--  RespHeader     X-Cache: MISS
--  VCL_return     deliver
--  ReqAcct        120 0 120 250 612 862
--  End

*** << BeReq    >> 3
--- Begin          bereq 2 fetch
--- BereqMethod    GET
--- BereqURL       /index.html?b=2&a=1
--- BereqHeader    Host: www.example.com
--- VCL_call       BACKEND_FETCH
--- VCL_return     fetch
--- BerespStatus   200
--- BerespHeader   Content-Type: text/html
--- VCL_call       BACKEND_RESPONSE
--- TTL            VCL 120 10 0 1730491198 cacheable
--- VCL_return     deliver
--- End
"""


def describe(ts, include_sessions: bool):
    """Print one line per related group, then the header diff of each request."""
    groups = ts.group_related_transactions(include_sessions=include_sessions)
    print(f"{len(ts)} transactions in {len(groups)} group(s)")
    for group in groups:
        print("  " + " -> ".join(tx.txid for tx in group))

    for tx in ts.transactions():
        if tx.tx_type is TxType.SESSION:
            continue
        print(f"\n--- {tx.txid} ---")
        for response in (False, True):
            label = "response" if response else "request"
            for hs in tx.header_states(response=response):
                print(f"  [{label}] {hs.name}: {hs.original_value!r} -> {hs.final_value!r} ({hs.state})")


def main():
    parser = argparse.ArgumentParser(description="Varnishlog Parsing Demo")
    parser.add_argument("files", nargs="*", help="varnishlog -g raw dumps (.log or .gz)")
    parser.add_argument("--config", "-c", help="Path to a YAML config file")
    args = parser.parse_args()

    config = load_config(args.config)
    setup_logging(config)

    print("=" * 60)
    print("Varnishlog Parser — Demo")
    print("=" * 60)

    if not args.files:
        describe(parse(SAMPLE_LOG, max_parent_depth=config.max_parent_depth), config.include_sessions)
        return

    for path in args.files:
        print(f"\nParsing file: {path}")
        try:
            ts = parse_file(path, config)
        except (FileNotFoundError, ParseError) as exc:
            logger.error("%s", exc)
            sys.exit(1)
        describe(ts, config.include_sessions)


if __name__ == "__main__":
    main()
