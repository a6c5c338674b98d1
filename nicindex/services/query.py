"""Read-only lookups against a built index store.

Every public function opens its own read transaction and returns a
:class:`~nicindex.errors.LookupResult`; malformed input is reported through
the result status without touching the store.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from nicindex.db import read_session
from nicindex.errors import LookupResult, StoreFailure
from nicindex.models.row import MAX_ASN, IPAddress, RecordType, Row, parse_row
from nicindex.models.store import (
    AsNameRecord,
    AsnIndex,
    AssociationIndex,
    RowRecord,
    association_key,
    decode_uint32,
    encode_address,
    encode_uint32,
    ip_table,
)

logger = logging.getLogger(__name__)

_COUNTRY_CODE = re.compile(r"^[A-Za-z]{2}$")


class IndexCursor:
    """Ordered navigation over one ``key -> row_ix`` index table."""

    def __init__(self, session: Session, table) -> None:
        self.session = session
        self.table = table
        self.key: Optional[bytes] = None
        self.value: Optional[bytes] = None

    def _position(self, entry) -> Optional[bytes]:
        if entry is None:
            self.key = self.value = None
        else:
            self.key, self.value = entry.key, entry.row_ix
        return self.key

    def seek(self, target: bytes) -> Optional[bytes]:
        """Move to the first key ``>= target``."""
        key = col(self.table.key)
        stmt = select(self.table).where(key >= target).order_by(key).limit(1)
        return self._position(self.session.exec(stmt).first())

    def last(self) -> Optional[bytes]:
        key = col(self.table.key)
        stmt = select(self.table).order_by(key.desc()).limit(1)
        return self._position(self.session.exec(stmt).first())

    def prev(self) -> Optional[bytes]:
        """Move to the greatest key below the current one."""
        if self.key is None:
            return None
        key = col(self.table.key)
        stmt = select(self.table).where(key < self.key).order_by(key.desc()).limit(1)
        return self._position(self.session.exec(stmt).first())


def _raw_row(session: Session, row_ix: bytes) -> bytes:
    record = session.get(RowRecord, row_ix)
    if record is None:
        raise StoreFailure(
            f"index references missing row {decode_uint32(row_ix)}"
        )
    return record.line


def _load_row(session: Session, row_ix: bytes, fill_range: bool = False) -> Row:
    return parse_row(_raw_row(session, row_ix), fill_range=fill_range)


def _as_name(session: Session, asn: int) -> Optional[str]:
    record = session.get(AsNameRecord, encode_uint32(asn))
    if record is None:
        return None
    return record.name.decode("utf-8", errors="replace")


def _coerce_asn(value: Union[int, str]) -> Optional[int]:
    if isinstance(value, str):
        value = value.strip()
        if value[:2].upper() == "AS":
            value = value[2:]
        if not (value.isascii() and value.isdigit()):
            return None
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if not 0 <= value <= MAX_ASN:
        return None
    return value


def _coerce_address(value: Union[str, IPAddress]) -> Optional[IPAddress]:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    try:
        return ipaddress.ip_address(str(value).strip())
    except ValueError:
        return None


def find_by_asn(engine: Engine, asn: Union[int, str]) -> LookupResult:
    """Exact lookup of the delegation row covering ``asn``."""

    number = _coerce_asn(asn)
    if number is None:
        return LookupResult.invalid_query()

    with read_session(engine) as session:
        entry = session.get(AsnIndex, encode_uint32(number))
        if entry is None:
            return LookupResult.not_found()
        return LookupResult.found([_load_row(session, entry.row_ix)])


def find_by_ip(engine: Engine, address: Union[str, IPAddress]) -> LookupResult:
    """Find the delegated block containing ``address``.

    The index holds block start addresses only. Seek to the first start at
    or above the address; when there is none, only the last block can hold
    it. Otherwise test the block at the seek position and, failing that, the
    one immediately before it. No further backtracking is done.
    """

    target = _coerce_address(address)
    if target is None:
        return LookupResult.invalid_address()

    with read_session(engine) as session:
        cursor = IndexCursor(session, ip_table(target.version))
        try_previous = True
        if cursor.seek(encode_address(target)) is None:
            if cursor.last() is None:
                return LookupResult.not_found()
            try_previous = False

        while True:
            row = _load_row(session, cursor.value, fill_range=True)
            if row.contains(target):
                return LookupResult.found([row])
            if not try_previous or cursor.prev() is None:
                return LookupResult.not_found()
            logger.debug("%s not in block at seek position, trying previous", target)
            try_previous = False


def find_associated(engine: Engine, registry: str, org_reg_id: str) -> LookupResult:
    """Every row sharing ``(registry, org_reg_id)``, in load order."""

    if not registry or not org_reg_id:
        return LookupResult.not_found()

    bucket = association_key(registry, org_reg_id)
    with read_session(engine) as session:
        stmt = (
            select(AssociationIndex.row_ix)
            .where(col(AssociationIndex.bucket) == bucket)
            .order_by(col(AssociationIndex.row_ix))
        )
        rows = [_load_row(session, row_ix, fill_range=True) for row_ix in session.exec(stmt)]
    return LookupResult.found(rows)


def find_associated_to(engine: Engine, row: Row) -> LookupResult:
    return find_associated(engine, row.registry, row.org_reg_id)


def walk_rows(engine: Engine) -> Iterator[Tuple[int, str]]:
    """Yield ``(row_index, raw_line)`` pairs in load order."""

    with read_session(engine) as session:
        stmt = select(RowRecord).order_by(col(RowRecord.ix))
        for record in session.exec(stmt):
            yield decode_uint32(record.ix), record.line.decode("utf-8", errors="replace")


def iter_rows(engine: Engine, needle: Optional[str] = None) -> Iterator[Row]:
    """Parsed rows in load order, optionally pre-filtered by a raw substring."""

    for _, line in walk_rows(engine):
        if needle is not None and needle not in line:
            continue
        yield parse_row(line, fill_range=True)


def find_all(engine: Engine) -> LookupResult:
    return LookupResult.found(list(iter_rows(engine)))


def find_by_country(engine: Engine, country_code: str) -> LookupResult:
    """Linear scan for every row delegated to ``country_code``."""

    if not _COUNTRY_CODE.match(country_code or ""):
        return LookupResult.invalid_query()

    cc = country_code.upper()
    rows = [
        row
        for row in iter_rows(engine, needle=f"|{cc}|")
        if row.country_code == cc
    ]
    return LookupResult.found(rows)


def find_by_name(engine: Engine, pattern: str) -> LookupResult:
    """Rows of every ASN whose registered name matches ``pattern``.

    Members of a multi-ASN block resolve to the same row; only the block's
    own first ASN is kept so each block is reported once.
    """

    if not pattern:
        return LookupResult.invalid_query()
    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error:
        return LookupResult.invalid_query()

    rows: List[Row] = []
    with read_session(engine) as session:
        stmt = select(AsNameRecord).order_by(col(AsNameRecord.key))
        for record in session.exec(stmt).all():
            name = record.name.decode("utf-8", errors="replace")
            if not regex.search(name):
                continue
            entry = session.get(AsnIndex, record.key)
            if entry is None:
                continue
            row = _load_row(session, entry.row_ix)
            if row.asn != decode_uint32(record.key):
                continue
            rows.append(row.with_as_name(name))
    return LookupResult.found(rows)


def find_as_name(engine: Engine, asn: int) -> Optional[str]:
    with read_session(engine) as session:
        return _as_name(session, asn)


def attach_as_names(engine: Engine, rows: Sequence[Row]) -> List[Row]:
    """Fill ``as_name`` on ASN rows that do not carry one yet."""

    with read_session(engine) as session:
        return [
            row.with_as_name(_as_name(session, row.asn))
            if row.record_type is RecordType.ASN and row.as_name is None
            else row
            for row in rows
        ]


def unique_reg_ids(rows: Sequence[Row]) -> List[Tuple[str, str]]:
    """Distinct ``(registry, org_reg_id)`` pairs, in first-seen order."""

    seen: Dict[Tuple[str, str], None] = {}
    for row in rows:
        if row.registry and row.org_reg_id:
            seen.setdefault((row.registry, row.org_reg_id), None)
    return list(seen)
