"""Tests for bulk loading in :mod:`nicindex.services.loader`."""

import logging

import pytest
from sqlalchemy import insert
from sqlmodel import col, select

from nicindex.db import get_engine, read_session, rebuild_store, write_session
from nicindex.errors import LookupStatus, ParseFailure
from nicindex.models.store import (
    AsNameRecord,
    AsnIndex,
    AssociationIndex,
    RowRecord,
    V4Index,
    V6Index,
    association_key,
    decode_uint32,
    encode_uint32,
)
from nicindex.services.loader import RowCounter, read_stream, rebuild_index
from nicindex.services.query import (
    find_all,
    find_associated,
    find_by_country,
    find_by_ip,
    walk_rows,
)

from utils import (
    INDEXED_LINES,
    MALFORMED_LINES,
    SAMPLE_DELEGATIONS,
    build_store,
    delegation_file,
    delegation_line,
    write_plain,
)


def _count(engine, model):
    with read_session(engine) as session:
        return len(session.exec(select(model)).all())


def test_row_counter_starts_at_one():
    counter = RowCounter()

    assert counter.next() == b"\x00\x00\x00\x01"
    assert counter.next() == b"\x00\x00\x00\x02"
    assert counter.value == 2


def test_row_counter_refuses_to_wrap():
    counter = RowCounter(start=0xFFFFFFFF)
    with pytest.raises(OverflowError):
        counter.next()


def test_row_counter_peek_does_not_consume():
    counter = RowCounter()

    assert counter.peek() == counter.peek() == b"\x00\x00\x00\x01"
    counter.advance()
    assert counter.next() == b"\x00\x00\x00\x02"


def test_only_allocated_and_assigned_records_are_stored(store):
    assert [line for _, line in walk_rows(store)] == INDEXED_LINES


def test_row_indexes_are_dense_in_load_order(store):
    assert [ix for ix, _ in walk_rows(store)] == list(range(1, len(INDEXED_LINES) + 1))


def test_load_stats(store_stats):
    delegations, names = store_stats

    assert delegations.lines == len(SAMPLE_DELEGATIONS.splitlines())
    assert delegations.indexed == len(INDEXED_LINES)
    assert delegations.failed == len(MALFORMED_LINES)
    assert names.indexed == 5
    assert names.skipped == 1


def test_malformed_lines_are_logged_and_skipped(tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="nicindex.services.loader"):
        engine, _ = build_store(tmp_path)

    reported = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert len(reported) == len(MALFORMED_LINES)
    for number, message in zip(MALFORMED_LINES, reported):
        assert f"|line {number}|" in message
    assert "invalid ASN number" in reported[0]

    # the record after the failures still committed
    assert INDEXED_LINES[-1] in [line for _, line in walk_rows(engine)]


def test_ip_index_holds_block_starts(store):
    assert _count(store, V4Index) == 6
    assert _count(store, V6Index) == 2


def test_asn_index_has_one_entry_per_member(store):
    # 173 plus the 4608..5631 block
    assert _count(store, AsnIndex) == 1 + 1024

    with read_session(store) as session:
        first = session.get(AsnIndex, encode_uint32(4608))
        last = session.get(AsnIndex, encode_uint32(5631))
        past = session.get(AsnIndex, encode_uint32(5632))
        assert first.row_ix == last.row_ix == encode_uint32(2)
        assert past is None


def test_association_index_groups_organisation_rows(store):
    bucket = association_key("apnic", "A92E1062")
    with read_session(store) as session:
        stmt = select(AssociationIndex.row_ix).where(col(AssociationIndex.bucket) == bucket)
        members = sorted(decode_uint32(ix) for ix in session.exec(stmt))

    assert members == [2, 4, 7, 8]


def test_rows_without_org_id_are_not_associated(store):
    with read_session(store) as session:
        buckets = {a.bucket for a in session.exec(select(AssociationIndex))}
    assert all(not b.endswith(b"\x00") for b in buckets)


def test_as_names_loaded(store):
    assert _count(store, AsNameRecord) == 5
    with read_session(store) as session:
        record = session.get(AsNameRecord, encode_uint32(4610))
        assert record.name == b"APNIC-LABS Research, AU"


def test_files_share_one_counter(tmp_path):
    first = write_plain(
        tmp_path / "a.txt",
        delegation_file([delegation_line("AA", "asn", "1", 1, "ORG1")]),
    )
    second = write_plain(
        tmp_path / "b.txt",
        delegation_file([delegation_line("BB", "asn", "2", 1, "ORG2")]),
    )
    rebuild_index(tmp_path / "store.db", [first, second], show_progress=False)

    rows = list(walk_rows(get_engine(tmp_path / "store.db")))
    assert [ix for ix, _ in rows] == [1, 2]
    assert "|BB|" in rows[1][1]


def test_header_skipped_per_file(tmp_path):
    # a header that would otherwise parse as a valid ASN record
    header = "test|ZZ|asn|99|1|20200101|allocated|HDR"
    paths = [
        write_plain(tmp_path / f"{n}.txt", f"{header}\n{delegation_line('AA', 'asn', str(n), 1)}\n")
        for n in (1, 2)
    ]
    rebuild_index(tmp_path / "store.db", paths, show_progress=False)

    lines = [line for _, line in walk_rows(get_engine(tmp_path / "store.db"))]
    assert len(lines) == 2
    assert not any("HDR" in line for line in lines)


def test_rebuild_discards_previous_contents(tmp_path):
    engine, _ = build_store(tmp_path)
    assert _count(engine, RowRecord) == len(INDEXED_LINES)

    engine, _ = build_store(
        tmp_path, delegations=delegation_file([delegation_line("AA", "asn", "7", 1)]), as_names=None
    )
    assert _count(engine, RowRecord) == 1
    assert _count(engine, AsNameRecord) == 0


def test_read_stream_isolates_failing_lines(tmp_path):
    engine = rebuild_store(tmp_path / "store.db")

    def put(ix, line):
        def write(session):
            session.connection().execute(insert(RowRecord.__table__), {"ix": encode_uint32(ix), "line": line})

        return write

    def handler(line):
        if line == b"oops":
            raise ParseFailure("not a number")
        if line == b"bad":
            # second insert collides with row 1, the first must roll back too
            def write(session):
                put(99, b"partial")(session)
                put(1, b"duplicate")(session)

            return write
        number = int(line)
        return put(number, line) if number % 2 else None

    lines = [b"1\n", b"bad\n", b"\n", b"2\n", b"oops\n", b"3\n"]
    with write_session(engine) as session:
        stats = read_stream(session, lines, handler, source_name="mem")

    assert (stats.lines, stats.indexed, stats.skipped, stats.failed) == (6, 2, 1, 2)
    assert list(walk_rows(engine)) == [(1, "1"), (3, "3")]


def test_read_stream_opens_savepoints_only_for_writes(tmp_path, monkeypatch):
    engine = rebuild_store(tmp_path / "store.db")
    opened = []

    def handler(line):
        if line.startswith(b"#"):
            return None
        if line == b"junk":
            raise ParseFailure("junk")
        return lambda session: None

    with write_session(engine) as session:
        begin_nested = session.begin_nested
        monkeypatch.setattr(session, "begin_nested", lambda: opened.append(1) or begin_nested())
        stats = read_stream(session, [b"# a\n", b"# b\n", b"junk\n", b"x\n"], handler, source_name="mem")

    assert stats.indexed == 1
    assert len(opened) == 1


def test_read_stream_reports_progress(tmp_path):
    engine = rebuild_store(tmp_path / "store.db")
    calls = []
    lines = [b"a\n", b"bb\n", b"ccc\n", b"dddd\n", b"eeeee\n"]

    with write_session(engine) as session:
        read_stream(
            session,
            lines,
            lambda line: None,
            source_name="mem",
            total_bytes=20,
            progress=lambda done, total: calls.append((done, total)),
            progress_interval=2,
        )

    assert calls == [(5, 20), (14, 20), (20, 20)]


def test_unexpandable_ip_blocks_fail_at_load(tmp_path, caplog):
    lines = [
        delegation_line("AU", "ipv4", "10.0.0.0", 256, "ORG-A"),
        delegation_line("AU", "ipv4", "255.255.255.0", 512, "ORG-A"),
        delegation_line("AU", "ipv6", "2001:db8::", 200, "ORG-A"),
    ]
    with caplog.at_level(logging.WARNING, logger="nicindex.services.loader"):
        engine, (stats,) = build_store(tmp_path, delegations=delegation_file(lines), as_names=None)

    assert (stats.indexed, stats.failed) == (1, 2)
    reported = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert "|line 3|" in reported[0] and "ip deaggregation failure" in reported[0]
    assert "|line 4|" in reported[1] and "invalid IPv6 prefix length" in reported[1]

    assert _count(engine, V4Index) == 1
    assert _count(engine, V6Index) == 0
    assert [row.range_start for row in find_by_country(engine, "AU").rows] == ["10.0.0.0"]
    assert [row.range_start for row in find_all(engine).rows] == ["10.0.0.0"]
    assert len(find_associated(engine, "test", "ORG-A").rows) == 1
    assert find_by_ip(engine, "255.255.255.7").status is LookupStatus.NOT_FOUND
    assert find_by_ip(engine, "10.0.0.7").row.range_start == "10.0.0.0"
