"""Delegation record model and line parser.

A delegation line looks like::

    apnic|AU|ipv4|1.0.0.0|256|20110811|assigned|A91872ED

The eight positional fields are registry, country code, record type, range
start, count, date, status and the registry's organisation id. Extended
files may carry further fields; they are ignored.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple, Union

from nicindex.errors import ParseFailure

FIELD_SEPARATOR = "|"
FIELD_COUNT = 8
MAX_ASN = 0xFFFFFFFF

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class RecordType(str, Enum):
    ASN = "asn"
    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @property
    def is_ip(self) -> bool:
        return self is not RecordType.ASN


RECORD_TYPES = frozenset(t.value for t in RecordType)


@dataclass(frozen=True)
class Row:
    registry: str
    country_code: str
    record_type: RecordType
    range_start: str
    count: int
    date: str
    status: str
    org_reg_id: str

    asn: Optional[int] = None
    ip_start: Optional[IPAddress] = None
    ip_prefixes: Tuple[IPNetwork, ...] = field(default=(), compare=False)
    as_name: Optional[str] = field(default=None, compare=False)

    @property
    def asn_last(self) -> Optional[int]:
        """Last ASN covered by an ASN block, ``None`` for single ASNs."""
        if self.asn is None or self.count <= 1:
            return None
        return self.asn + self.count - 1

    def contains(self, address: IPAddress) -> bool:
        return any(address in prefix for prefix in self.ip_prefixes)

    def with_as_name(self, name: Optional[str]) -> "Row":
        return replace(self, as_name=name)

    def fields(self) -> Tuple[str, ...]:
        return (
            self.registry,
            self.country_code,
            self.record_type.value,
            self.range_start,
            str(self.count),
            self.date,
            self.status,
            self.org_reg_id,
        )

    def serialize(self) -> str:
        return FIELD_SEPARATOR.join(self.fields())


def _is_decimal(text: str) -> bool:
    return text.isascii() and text.isdigit()


def split_fields(line: Union[str, bytes]) -> list[str]:
    """Split a raw line into exactly eight trimmed positional fields."""

    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    parts = [part.strip() for part in line.split(FIELD_SEPARATOR)]
    parts = parts[:FIELD_COUNT]
    parts.extend([""] * (FIELD_COUNT - len(parts)))
    return parts


def parse_row(line: Union[str, bytes], fill_range: bool = False) -> Row:
    """Parse one delegation line into a :class:`Row`.

    With ``fill_range`` the CIDR prefixes covering an IP block are computed
    as well; loading skips this, lookups need it for containment tests.
    Raises :class:`ParseFailure` on any structural problem.
    """

    registry, cc, type_token, start, value, date, status, reg_id = split_fields(line)

    if not _is_decimal(value):
        raise ParseFailure("col 5, number expected")
    count = int(value)

    try:
        record_type = RecordType(type_token)
    except ValueError:
        raise ParseFailure(f"unknown record type {type_token!r}") from None

    asn: Optional[int] = None
    ip_start: Optional[IPAddress] = None
    prefixes: Tuple[IPNetwork, ...] = ()

    if record_type is RecordType.ASN:
        if not _is_decimal(start) or int(start) > MAX_ASN:
            raise ParseFailure("invalid ASN number")
        asn = int(start)
    else:
        try:
            ip_start = ipaddress.ip_address(start)
        except ValueError:
            raise ParseFailure("col 4, ip addr expected") from None

        expected = 4 if record_type is RecordType.IPV4 else 6
        if ip_start.version != expected:
            raise ParseFailure("ip address / label version mismatch")

        if fill_range:
            prefixes = ip_prefixes(ip_start, count)

    return Row(
        registry=registry,
        country_code=cc,
        record_type=record_type,
        range_start=start,
        count=count,
        date=date,
        status=status,
        org_reg_id=reg_id,
        asn=asn,
        ip_start=ip_start,
        ip_prefixes=prefixes,
    )


def ip_prefixes(start: IPAddress, count: int) -> Tuple[IPNetwork, ...]:
    """Network prefixes covering a delegated block.

    IPv6 delegations carry a prefix length in their count column; IPv4
    delegations carry a host count that need not be a power of two.
    """

    if start.version == 6:
        if count > 128:
            raise ParseFailure(f"invalid IPv6 prefix length {count}")
        return (ipaddress.ip_network(f"{start}/{count}", strict=False),)

    if count == 0:
        return ()
    try:
        last = start + (count - 1)
    except ipaddress.AddressValueError as exc:
        raise ParseFailure(f"ip deaggregation failure: {exc}") from None
    return tuple(ipaddress.summarize_address_range(start, last))
