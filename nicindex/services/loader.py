"""Bulk loading of delegation and ASN-name feeds into the index store.

Each source file is loaded inside one write transaction. A line that fails
to parse or to write is logged with its file name and line number and
skipped; everything else from that file commits together.
"""

from __future__ import annotations

import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Union

from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from tqdm import tqdm

from nicindex.db import rebuild_store, write_session
from nicindex.errors import ParseFailure
from nicindex.models.row import (
    MAX_ASN,
    RECORD_TYPES,
    RecordType,
    Row,
    parse_row,
    split_fields,
)
from nicindex.models.store import (
    AsNameRecord,
    AsnIndex,
    AssociationIndex,
    RowRecord,
    association_key,
    asn_keys,
    encode_address,
    encode_uint32,
    ip_table,
)
from nicindex.services.sources import SourceStream
from nicindex.settings import get_settings

logger = logging.getLogger(__name__)

INDEXED_STATUSES = frozenset({"assigned", "allocated"})
SUMMARY_SUFFIX = b"|summary"
COMMENT_PREFIX = b"#"
MAX_ROW_INDEX = 0xFFFFFFFF

LineWriter = Callable[[Session], None]
LineHandler = Callable[[bytes], Optional[LineWriter]]
ProgressCallback = Callable[[int, int], None]

_AS_NAME_LINE = re.compile(rb"^\s*([0-9]+)\s+(.+?)\s*$")


class RowCounter:
    """RowIndex generator scoped to one rebuild session."""

    def __init__(self, start: int = 0) -> None:
        self.value = start

    def peek(self) -> bytes:
        """Encoded value the next accepted row will take."""
        if self.value >= MAX_ROW_INDEX:
            raise OverflowError("RowIndex space exhausted")
        return encode_uint32(self.value + 1)

    def advance(self) -> None:
        self.value += 1

    def next(self) -> bytes:
        row_ix = self.peek()
        self.advance()
        return row_ix


@dataclass
class LoadStats:
    source: str
    lines: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0


def _upsert(session: Session, model, values, conflict_cols: Sequence[str], update_cols: Sequence[str]) -> None:
    stmt = insert(model.__table__)
    if update_cols:
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_cols),
            set_={col: stmt.excluded[col] for col in update_cols},
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_cols))
    session.connection().execute(stmt, values)


def read_stream(
    session: Session,
    lines: Iterable[bytes],
    handler: LineHandler,
    *,
    source_name: str,
    total_bytes: int = 0,
    progress: Optional[ProgressCallback] = None,
    progress_interval: Optional[int] = None,
) -> LoadStats:
    """Feed every non-blank line of ``lines`` to ``handler``.

    The handler parses and filters without touching the store. It returns
    ``None`` for a line that is skipped, or a writer that is run inside a
    SAVEPOINT so a failing write leaves nothing behind.
    """

    if progress_interval is None:
        progress_interval = get_settings().progress_interval
    progress_interval = max(1, progress_interval)

    stats = LoadStats(source=source_name)
    bytes_read = 0
    for raw in lines:
        stats.lines += 1
        bytes_read += len(raw.rstrip(b"\r\n")) + 1

        if progress and stats.lines % progress_interval == 0:
            progress(bytes_read, total_bytes)

        line = raw.strip()
        if not line:
            continue

        try:
            write = handler(line)
            if write is None:
                stats.skipped += 1
                continue
            with session.begin_nested():
                write(session)
        except (ParseFailure, SQLAlchemyError) as exc:
            stats.failed += 1
            logger.warning(
                '%s|line %d|"%s"|%s',
                source_name,
                stats.lines,
                line.decode("utf-8", errors="replace"),
                exc,
            )
            continue

        stats.indexed += 1

    if progress and stats.lines:
        progress(bytes_read, total_bytes)
    return stats


class DelegationLoader:
    """Populates the index namespaces from RIR feeds."""

    def __init__(
        self,
        engine: Engine,
        counter: Optional[RowCounter] = None,
        show_progress: Optional[bool] = None,
    ) -> None:
        self.engine = engine
        self.counter = counter or RowCounter()
        if show_progress is None:
            show_progress = get_settings().show_progress and sys.stderr.isatty()
        self.show_progress = show_progress
        self._skip_header = True

    def _load(self, source: SourceStream, handler: LineHandler) -> LoadStats:
        total = source.total_bytes
        logger.info("Indexing %s", source.name)
        with tqdm(
            total=total,
            unit="B",
            unit_scale=True,
            desc=source.path.name,
            disable=not self.show_progress,
        ) as bar:

            def report(done: int, expected: int) -> None:
                bar.update(done - bar.n)
                logger.debug("%s: %d/%d bytes", source.name, done, expected)

            with write_session(self.engine) as session, source.open_lines() as lines:
                stats = read_stream(
                    session,
                    lines,
                    handler,
                    source_name=source.name,
                    total_bytes=total,
                    progress=report,
                )

        logger.info(
            "Indexed %s: %d lines, %d rows, %d skipped, %d failed",
            source.name,
            stats.lines,
            stats.indexed,
            stats.skipped,
            stats.failed,
        )
        return stats

    def load_delegations(self, path: Union[str, Path]) -> LoadStats:
        self._skip_header = True
        return self._load(SourceStream(Path(path)), self.handle_delegation)

    def load_as_names(self, path: Union[str, Path]) -> LoadStats:
        return self._load(SourceStream(Path(path)), handle_as_name)

    def handle_delegation(self, line: bytes) -> Optional[LineWriter]:
        if line.startswith(COMMENT_PREFIX):
            return None

        # first data line is the registry's version header
        if self._skip_header:
            self._skip_header = False
            return None

        if line.endswith(SUMMARY_SUFFIX):
            return None

        fields = split_fields(line)
        if fields[6] not in INDEXED_STATUSES or fields[2] not in RECORD_TYPES:
            return None

        # a block whose range cannot be expanded fails on this line
        row = parse_row(line, fill_range=True)

        def write(session: Session) -> None:
            insert_row(session, self.counter.peek(), line, row)
            self.counter.advance()

        return write


def insert_row(session: Session, row_ix: bytes, line: bytes, row: Row) -> None:
    """Write a parsed row and all of its secondary index entries."""

    _upsert(session, RowRecord, [{"ix": row_ix, "line": line}], ["ix"], ["line"])

    if row.registry and row.org_reg_id:
        _upsert(
            session,
            AssociationIndex,
            [{"bucket": association_key(row.registry, row.org_reg_id), "row_ix": row_ix}],
            ["bucket", "row_ix"],
            [],
        )

    if row.record_type is RecordType.ASN:
        if row.count > 0:
            _upsert(
                session,
                AsnIndex,
                [{"key": key, "row_ix": row_ix} for key in asn_keys(row.asn, row.count)],
                ["key"],
                ["row_ix"],
            )
    else:
        _upsert(
            session,
            ip_table(row.ip_start.version),
            [{"key": encode_address(row.ip_start), "row_ix": row_ix}],
            ["key"],
            ["row_ix"],
        )


def handle_as_name(line: bytes) -> Optional[LineWriter]:
    match = _AS_NAME_LINE.match(line)
    if not match:
        return None
    asn = int(match.group(1))
    if asn > MAX_ASN:
        return None
    values = [{"key": encode_uint32(asn), "name": match.group(2)}]

    def write(session: Session) -> None:
        _upsert(session, AsNameRecord, values, ["key"], ["name"])

    return write


def rebuild_index(
    store_path: Union[str, Path],
    delegation_paths: Iterable[Union[str, Path]],
    asn_names_path: Optional[Union[str, Path]] = None,
    show_progress: Optional[bool] = None,
) -> list[LoadStats]:
    """Wipe the store and load every feed, one transaction per file."""

    engine = rebuild_store(store_path)
    loader = DelegationLoader(engine, show_progress=show_progress)
    results = [loader.load_delegations(path) for path in delegation_paths]
    if asn_names_path is not None:
        results.append(loader.load_as_names(asn_names_path))
    return results
