"""Tests for varnishlog.parsers and record rendering."""

from __future__ import annotations

import logging
from datetime import timedelta
from ipaddress import IPv4Address

import pytest

from varnishlog.models import (
    AcctRecord,
    BackendCloseRecord,
    BackendOpenRecord,
    BeginRecord,
    FetchBodyRecord,
    GenericRecord,
    HeaderRecord,
    HeaderUnsetRecord,
    HitRecord,
    LengthRecord,
    LinkRecord,
    SessOpenRecord,
    StatusRecord,
    TimestampRecord,
    TTLRecord,
    URLRecord,
    VCLLogRecord,
    build_txid,
    format_duration,
    format_size,
)
from varnishlog.parsers import ParseError, is_known_tag, parse_record, parse_vxid, split_line


# ---------------------------------------------------------------------------
# Line splitting and converters
# ---------------------------------------------------------------------------


class TestSplitLine:

    def test_tag_and_value(self) -> None:
        assert split_line("--  ReqURL         /index.html") == ("ReqURL", "/index.html")

    def test_value_keeps_inner_spaces(self) -> None:
        tag, value = split_line("-   SessOpen       192.168.65.1 38144 a0")
        assert tag == "SessOpen"
        assert value == "192.168.65.1 38144 a0"

    def test_tag_without_value(self) -> None:
        assert split_line("--  End") == ("End", "")

    def test_single_field_raises(self) -> None:
        with pytest.raises(ParseError):
            split_line("--")


class TestParseVxid:

    def test_valid(self) -> None:
        assert parse_vxid("262") == 262

    def test_upper_bound(self) -> None:
        assert parse_vxid("4294967295") == 2 ** 32 - 1
        with pytest.raises(ValueError):
            parse_vxid("4294967296")

    @pytest.mark.parametrize("value", ["-1", "abc", "1.5", ""])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_vxid(value)


# ---------------------------------------------------------------------------
# Transaction structure records
# ---------------------------------------------------------------------------


class TestBeginAndLink:

    def test_begin_three_fields(self) -> None:
        record = parse_record("--  Begin          req 1 rxreq")
        assert isinstance(record, BeginRecord)
        assert record.record_type == "req"
        assert record.parent_vxid == 1
        assert record.reason == "rxreq"
        assert record.esi_level == 0

    def test_begin_esi(self) -> None:
        record = parse_record("--- Begin          req 2 esi 1")
        assert record.reason == "esi"
        assert record.esi_level == 1

    def test_begin_four_fields_without_esi_raises(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_record("--  Begin          req 1 rxreq 1")
        assert "Begin" in exc_info.value.line

    @pytest.mark.parametrize("value", ["req", "req 1", "req x rxreq", "req 1 esi x"])
    def test_begin_malformed(self, value: str) -> None:
        with pytest.raises(ParseError):
            parse_record(f"--  Begin          {value}")

    def test_link_txid(self) -> None:
        record = parse_record("--  Link           bereq 3 fetch")
        assert isinstance(record, LinkRecord)
        assert record.child_vxid == 3
        assert record.txid == "3_bereq"

    def test_link_esi_txid(self) -> None:
        record = parse_record("--  Link           req 4 esi 1")
        assert record.esi_level == 1
        assert record.txid == "4_req_esi_1"

    def test_build_txid(self) -> None:
        assert build_txid(7, "sess") == "7_sess"
        assert build_txid(7, "req", 2) == "7_req_esi_2"


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------


class TestHeaderRecords:

    def test_name_is_canonical(self) -> None:
        record = parse_record("--  ReqHeader      x-forwarded-for: 1.1.1.1")
        assert isinstance(record, HeaderRecord)
        assert record.name == "X-Forwarded-For"
        assert record.value == "1.1.1.1"
        assert record.direction == "request"
        assert not record.is_response

    def test_value_without_space_after_colon(self) -> None:
        record = parse_record("--  ReqHeader      secret:1234")
        assert record.name == "Secret"
        assert record.value == "1234"

    def test_value_keeps_later_colons(self) -> None:
        record = parse_record("--  ReqHeader      Host: example.com:8080")
        assert record.value == "example.com:8080"

    def test_response_direction(self) -> None:
        assert parse_record("--  RespHeader     X-Cache: MISS").is_response
        assert parse_record("--- BerespHeader   X-Cache: MISS").is_response
        assert not parse_record("--- BereqHeader    Host: a").is_response

    def test_unset(self) -> None:
        record = parse_record("--  RespUnset      Content-Length: 612")
        assert isinstance(record, HeaderUnsetRecord)
        assert record.name == "Content-Length"
        assert record.is_response

    def test_missing_colon_raises(self) -> None:
        with pytest.raises(ParseError):
            parse_record("--  ReqHeader      NoColonHere")


# ---------------------------------------------------------------------------
# Other families
# ---------------------------------------------------------------------------


class TestRecordFamilies:

    def test_status(self) -> None:
        record = parse_record("--  RespStatus     200")
        assert isinstance(record, StatusRecord)
        assert record.code == 200

    def test_status_not_a_number(self) -> None:
        with pytest.raises(ParseError):
            parse_record("--  RespStatus     OK")

    def test_url_query_string_sorted(self) -> None:
        record = parse_record("--  ReqURL         /index.html?b=2&a=1")
        assert isinstance(record, URLRecord)
        assert record.path == "/index.html"
        assert record.query_string == "a=1&b=2"

    def test_acct(self) -> None:
        record = parse_record("--  ReqAcct        120 0 120 250 612 862")
        assert isinstance(record, AcctRecord)
        assert record.total_tx == 120
        assert record.total_rx == 862

    def test_acct_wrong_length(self) -> None:
        with pytest.raises(ParseError):
            parse_record("--  ReqAcct        1 2 3")

    def test_timestamp(self) -> None:
        record = parse_record("--  Timestamp      Resp: 1730491198.072500 0.000820 0.000500")
        assert isinstance(record, TimestampRecord)
        assert record.event_label == "Resp"
        assert record.absolute_time.microsecond == 72500
        assert record.since_start == timedelta(microseconds=820)
        assert record.start_time.microsecond == 72000
        assert str(record) == "Resp | Elapsed: 0.0005s | Total: 0.00082s"

    def test_timestamp_wrong_length(self) -> None:
        with pytest.raises(ParseError):
            parse_record("--  Timestamp      Start: 1730491198.071680 0.000000")

    def test_sess_open(self) -> None:
        record = parse_record(
            "-   SessOpen       192.168.65.1 38144 a0 172.17.0.2 8001 1730491198.071549 24"
        )
        assert isinstance(record, SessOpenRecord)
        assert record.remote_addr == IPv4Address("192.168.65.1")
        assert record.local_port == 8001
        assert record.file_descriptor == 24

    def test_sess_open_bad_address(self) -> None:
        with pytest.raises(ParseError):
            parse_record("-   SessOpen       not-an-ip 38144 a0 172.17.0.2 8001 1730491198.071549 24")

    def test_backend_open_default_reason(self) -> None:
        record = parse_record("--- BackendOpen    26 default 172.17.0.3 80 172.17.0.2 46388")
        assert isinstance(record, BackendOpenRecord)
        assert record.reason == "-"
        assert record.name == "default"

    def test_backend_close_default_reason(self) -> None:
        record = parse_record("--- BackendClose   26 default")
        assert isinstance(record, BackendCloseRecord)
        assert record.reason == "unknown"

    def test_ttl_short_form(self) -> None:
        record = parse_record("--- TTL            VCL 120 10 0 1730491198 cacheable")
        assert isinstance(record, TTLRecord)
        assert record.ttl == timedelta(seconds=120)
        assert record.cache_status == "cacheable"
        assert record.age is None

    def test_ttl_rfc_form(self) -> None:
        record = parse_record(
            "--- TTL            RFC 120 10 0 1730491198 1730491198 1730491198 0 0 cacheable"
        )
        assert record.source == "RFC"
        assert record.max_age == timedelta(0)
        assert int(record.date.timestamp()) == 1730491198

    def test_ttl_wrong_length(self) -> None:
        with pytest.raises(ParseError):
            parse_record("--- TTL            VCL 120 10 0")

    def test_hit(self) -> None:
        record = parse_record("--  Hit            5 119.872 10.000 0.000")
        assert isinstance(record, HitRecord)
        assert record.object_vxid == 5
        assert record.grace == timedelta(seconds=10)

    def test_hit_miss_only_needs_ttl(self) -> None:
        record = parse_record("--  HitMiss        5 119.872")
        assert record.grace is None
        assert record.keep is None

    def test_hit_requires_four_fields(self) -> None:
        with pytest.raises(ParseError):
            parse_record("--  Hit            5 119.872")

    def test_fetch_body(self) -> None:
        record = parse_record("--- Fetch_Body     3 length stream")
        assert isinstance(record, FetchBodyRecord)
        assert record.stream is True
        assert not parse_record("--- Fetch_Body     3 length -").stream

    def test_fetch_body_bad_stream_flag(self) -> None:
        with pytest.raises(ParseError):
            parse_record("--- Fetch_Body     3 length maybe")

    def test_length_rendering(self) -> None:
        record = parse_record("--- Length         1536")
        assert isinstance(record, LengthRecord)
        assert str(record) == "1.500KB"

    def test_vcl_log_key_value(self) -> None:
        record = parse_record("--  VCL_Log        cache: miss")
        assert isinstance(record, VCLLogRecord)
        assert record.key == "cache"
        assert record.value == "miss"

    def test_vcl_log_plain(self) -> None:
        record = parse_record("--  VCL_Log        just a message")
        assert record.key == ""
        assert str(record) == "just a message"


class TestUnknownTags:

    def test_unknown_tag_is_generic(self, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            record = parse_record("--  MadeUpTag      some value")
        assert isinstance(record, GenericRecord)
        assert record.tag == "MadeUpTag"
        assert record.raw_value == "some value"
        assert "MadeUpTag" in caplog.text

    def test_known_tags(self) -> None:
        assert is_known_tag("ReqHeader")
        assert is_known_tag("VCL_call")
        assert not is_known_tag("MadeUpTag")

    @pytest.mark.parametrize("tag", ["Brotli", "MSE4_NewObject", "MSE4_ObjIter", "MSE4_ChunkFault"])
    def test_known_tags_without_grammar(self, tag: str, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            record = parse_record(f"--- {tag}  some fields 1 2")
        assert is_known_tag(tag)
        assert isinstance(record, GenericRecord)
        assert record.raw_value == "some fields 1 2"
        assert caplog.text == ""


class TestFormatting:

    @pytest.mark.parametrize(
        "size,expected",
        [(512, "512B"), (1536, "1.500KB"), (2 * 1024 ** 2, "2.000MB")],
    )
    def test_format_size(self, size: int, expected: str) -> None:
        assert format_size(size) == expected

    def test_format_duration(self) -> None:
        assert format_duration(timedelta(seconds=120)) == "120s"
        assert format_duration(timedelta(microseconds=215)) == "0.000215s"
