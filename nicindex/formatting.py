"""Tabular and JSON rendering of query results."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import IO, Any, Dict, Iterable, List, Optional, Sequence

import click

from nicindex.models.row import RecordType, Row
from nicindex.services.rdap import EmailContact, OrgNetwork

GROUP_ORDER = (RecordType.IPV4, RecordType.IPV6, RecordType.ASN)


@dataclass(frozen=True)
class Column:
    title: str = ""
    width: int = 0
    right: bool = False


ASN_COLUMNS = (
    Column("RIR", 9),
    Column("CC", 3),
    Column("TYPE", 4),
    Column("FROM", 10, right=True),
    Column("TO", 10, right=True),
    Column("DATE", 10),
    Column("STS", 10),
    Column("NAME"),
)

IP_COLUMNS = (
    Column("RIR", 9),
    Column("CC", 3),
    Column("TYPE", 4),
    Column("SUBNET", 23, right=True),
    Column("DATE", 10),
    Column("STS", 10),
)

NETWORK_COLUMNS = (
    Column(width=9),
    Column(width=4),
    Column(width=23, right=True),
    Column(width=10),
    Column(width=10),
    Column(width=10),
)

EMAIL_COLUMNS = (Column(width=16), Column(width=16), Column())
EMAIL_SPACER = "@@"


class ColumnWriter:
    """Joins values with a spacer, padding to fixed widths when asked.

    Padded columns are truncated to their width; the spacer gets a blank on
    either side.
    """

    def __init__(self, columns: Sequence[Column], spacer: str = "|", pad: bool = False) -> None:
        self.columns = tuple(columns)
        self.spacer = spacer
        self.pad = pad

    def format(self, *values: Any) -> str:
        parts = []
        for column, value in zip(self.columns, values):
            text = "" if value is None else str(value)
            if self.pad and column.width:
                text = text[: column.width]
                text = text.rjust(column.width) if column.right else text.ljust(column.width)
            parts.append(text)
        spacer = f" {self.spacer} " if self.pad else self.spacer
        return spacer.join(parts)

    def header(self) -> str:
        return self.format(*(column.title for column in self.columns))


def pretty_date(value: str) -> str:
    """``20110811`` -> ``2011-08-11``; anything else is returned unchanged."""
    if len(value) < 8 or not value[:8].isdigit():
        return value
    return f"{value[:4]}-{value[4:6]}-{value[6:]}"


def group_rows(rows: Iterable[Row]) -> Dict[RecordType, List[Row]]:
    grouped: Dict[RecordType, List[Row]] = {kind: [] for kind in GROUP_ORDER}
    for row in rows:
        grouped[row.record_type].append(row)
    return grouped


def ansi_message(
    title: str,
    message: str = "",
    *,
    query: str = "",
    color: bool = False,
    fg: Optional[str] = None,
) -> str:
    parts = []
    if query:
        parts.extend([query, " | "])
    parts.append(click.style(title, fg=fg, bold=True) if color and fg else title)
    if message:
        parts.extend([": ", message])
    return "".join(parts)


class RowPrinter:
    def __init__(
        self,
        out: Optional[IO[str]] = None,
        *,
        pretty: bool = False,
        color: bool = False,
        prepend_query: bool = False,
        query: str = "",
        query_width: int = 0,
    ) -> None:
        self.out = out
        self.pretty = pretty
        self.color = color
        self.prepend_query = prepend_query
        self.query = query
        self.query_width = max(query_width, len(query))

    def _columns(self, columns: Sequence[Column]) -> List[Column]:
        if self.prepend_query:
            return [Column("QRY", self.query_width), *columns]
        return list(columns)

    def _writer(self, columns: Sequence[Column], spacer: str = "|") -> ColumnWriter:
        return ColumnWriter(self._columns(columns), spacer=spacer, pad=self.pretty)

    def _fields(self, *values: Any) -> List[Any]:
        if self.prepend_query:
            return [self.query, *values]
        return list(values)

    def _date(self, value: str) -> str:
        return pretty_date(value) if self.pretty else value

    def emit(self, line: str) -> None:
        click.echo(line, file=self.out)

    def format_row(self, row: Row) -> List[str]:
        """Output lines for one row; IP blocks give one line per prefix."""

        if row.record_type is RecordType.ASN:
            last = row.asn_last
            writer = self._writer(ASN_COLUMNS)
            return [
                writer.format(
                    *self._fields(
                        row.registry,
                        row.country_code,
                        row.record_type.value,
                        row.asn,
                        "" if last is None else last,
                        self._date(row.date),
                        row.status,
                        row.as_name or "",
                    )
                )
            ]

        writer = self._writer(IP_COLUMNS)
        return [
            writer.format(
                *self._fields(
                    row.registry,
                    row.country_code,
                    row.record_type.value,
                    prefix,
                    self._date(row.date),
                    row.status,
                )
            )
            for prefix in row.ip_prefixes
        ]

    def print_row(self, row: Row) -> None:
        for line in self.format_row(row):
            self.emit(line)

    def print_rows(self, rows: Iterable[Row]) -> int:
        """Print rows grouped IPv4, IPv6 then ASN. Returns rows printed."""
        printed = 0
        for members in group_rows(rows).values():
            for row in members:
                self.print_row(row)
                printed += 1
        return printed

    def print_json(self, payload: Any) -> None:
        if self.pretty:
            self.emit(json.dumps(payload, indent="\t"))
        else:
            self.emit(json.dumps(payload, separators=(",", ":")))

    def print_emails(self, contacts: Iterable[EmailContact]) -> None:
        writer = self._writer(EMAIL_COLUMNS, spacer=EMAIL_SPACER)
        for contact in contacts:
            self.emit(writer.format(*self._fields(contact.role, contact.handle, contact.address)))

    def print_networks(self, networks: Iterable[OrgNetwork]) -> None:
        writer = self._writer(NETWORK_COLUMNS)
        for net in networks:
            self.emit(
                writer.format(
                    *self._fields(
                        net.registry,
                        net.version,
                        net.prefix,
                        net.registered,
                        net.last_changed,
                        net.status,
                    )
                )
            )

    def message(self, title: str, message: str = "", fg: Optional[str] = None) -> None:
        query = self.query if self.prepend_query else ""
        click.echo(
            ansi_message(title, message, query=query, color=self.color, fg=fg),
            err=True,
            color=self.color,
        )

    def error(self, message: str) -> None:
        self.message("error", message, fg="red")
