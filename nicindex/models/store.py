"""SQLModel tables backing the six index namespaces.

Every namespace is a table keyed by a ``BLOB``. SQLite compares blobs with
``memcmp``, so big-endian integers and network-order addresses sort by
numeric value and range scans over the primary key behave like cursor
seeks over an ordered key/value map.
"""

from __future__ import annotations

import ipaddress
import struct
from typing import Iterable, Tuple, Union

from sqlalchemy import Column, LargeBinary
from sqlmodel import Field, SQLModel

ASSOC_SEPARATOR = b"\x00"
_UINT32 = struct.Struct(">I")


class RowRecord(SQLModel, table=True):
    """Primary row store: RowIndex -> raw delegation line."""

    __tablename__ = "rows"

    ix: bytes = Field(sa_column=Column("ix", LargeBinary, primary_key=True))
    line: bytes = Field(sa_column=Column("line", LargeBinary, nullable=False))


class AsnIndex(SQLModel, table=True):
    __tablename__ = "asn"

    key: bytes = Field(sa_column=Column("key", LargeBinary, primary_key=True))
    row_ix: bytes = Field(sa_column=Column("row_ix", LargeBinary, nullable=False))


class V4Index(SQLModel, table=True):
    __tablename__ = "v4"

    key: bytes = Field(sa_column=Column("key", LargeBinary, primary_key=True))
    row_ix: bytes = Field(sa_column=Column("row_ix", LargeBinary, nullable=False))


class V6Index(SQLModel, table=True):
    __tablename__ = "v6"

    key: bytes = Field(sa_column=Column("key", LargeBinary, primary_key=True))
    row_ix: bytes = Field(sa_column=Column("row_ix", LargeBinary, nullable=False))


class AssociationIndex(SQLModel, table=True):
    """Organisation membership: ``registry 0x00 orgRegId`` -> set of RowIndex."""

    __tablename__ = "id2ix"

    bucket: bytes = Field(sa_column=Column("bucket", LargeBinary, primary_key=True))
    row_ix: bytes = Field(sa_column=Column("row_ix", LargeBinary, primary_key=True))


class AsNameRecord(SQLModel, table=True):
    __tablename__ = "asname"

    key: bytes = Field(sa_column=Column("key", LargeBinary, primary_key=True))
    name: bytes = Field(sa_column=Column("name", LargeBinary, nullable=False))


NAMESPACES = (RowRecord, AsnIndex, V4Index, V6Index, AssociationIndex, AsNameRecord)


def encode_uint32(value: int) -> bytes:
    return _UINT32.pack(value)


def decode_uint32(raw: bytes) -> int:
    return _UINT32.unpack(raw)[0]


def encode_address(address: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]) -> bytes:
    """Network-order bytes of an address (4 or 16 bytes)."""
    return address.packed


def ip_table(version: int):
    return V4Index if version == 4 else V6Index


def association_key(registry: Union[str, bytes], org_reg_id: Union[str, bytes]) -> bytes:
    if isinstance(registry, str):
        registry = registry.encode("utf-8")
    if isinstance(org_reg_id, str):
        org_reg_id = org_reg_id.encode("utf-8")
    return registry + ASSOC_SEPARATOR + org_reg_id


def split_association_key(bucket: bytes) -> Tuple[str, str]:
    registry, _, org_reg_id = bucket.partition(ASSOC_SEPARATOR)
    return registry.decode("utf-8"), org_reg_id.decode("utf-8")


def asn_keys(first: int, count: int) -> Iterable[bytes]:
    """Keys for every ASN of a block ``[first, first + count)``."""
    last = min(first + count, 0xFFFFFFFF + 1)
    return (encode_uint32(asn) for asn in range(first, last))
