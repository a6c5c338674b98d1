"""Query command grammar and execution.

Commands (keywords are case-insensitive, a trailing `` +`` expands the
result to every resource registered to the same organisation)::

    as ASN [+]              lookup by autonomous system number
    ip ADDRESS [+]          lookup by IPv4 / IPv6 address
    na REGEX [+]            lookup by AS name pattern
    cc CC                   every resource of a country
    all                     dump every local record
    email ADDRESS           RDAP e-mail contacts for an address
    rdap.ip RIR ADDRESS     raw RDAP reply for an address
    rdap.org RIR ORGID      raw RDAP reply for an organisation
    rdap.orgnets RIR ORGID  networks of an organisation, as a table
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Pattern, Tuple, Union

from sqlalchemy.engine import Engine

from nicindex.errors import LookupStatus, RdapError
from nicindex.formatting import RowPrinter
from nicindex.models.row import MAX_ASN, IPAddress, Row
from nicindex.services import query, rdap


@dataclass(frozen=True)
class AsnCommand:
    asn: int
    assoc: bool = False


@dataclass(frozen=True)
class IpCommand:
    address: IPAddress
    assoc: bool = False


@dataclass(frozen=True)
class NameCommand:
    pattern: str
    assoc: bool = False


@dataclass(frozen=True)
class CountryCommand:
    country_code: str


@dataclass(frozen=True)
class AllCommand:
    pass


@dataclass(frozen=True)
class EmailCommand:
    address: IPAddress


@dataclass(frozen=True)
class RdapIpCommand:
    rir: rdap.Rir
    address: IPAddress


@dataclass(frozen=True)
class RdapOrgCommand:
    rir: rdap.Rir
    org_id: str
    nets_only: bool = False


Command = Union[
    AsnCommand,
    IpCommand,
    NameCommand,
    CountryCommand,
    AllCommand,
    EmailCommand,
    RdapIpCommand,
    RdapOrgCommand,
]


@dataclass(frozen=True)
class ParsedCommand:
    status: LookupStatus
    command: Optional[Command] = None

    def __bool__(self) -> bool:
        return self.command is not None


_ASSOC = r"(?P<assoc>\s+\+)?"

_GRAMMAR: List[Tuple[str, Pattern[str]]] = [
    (name, re.compile(r"^\s*" + body + r"\s*$", re.IGNORECASE))
    for name, body in (
        ("as", r"ASN?\s+(?:AS)?(?P<arg>\S+?)" + _ASSOC),
        ("ip", r"IP\s+(?P<arg>\S+?)" + _ASSOC),
        ("na", r"NA(?:ME)?\s+(?P<arg>.+?)" + _ASSOC),
        ("cc", r"CC\s+(?P<arg>\S+)"),
        ("all", r"ALL"),
        ("email", r"(?:RDAP\.)?EMAIL\s+(?P<arg>\S+)"),
        ("rdap.ip", r"RDAP\.IP\s+(?P<rir>\S+)\s+(?P<arg>\S+)"),
        ("rdap.org", r"RDAP\.ORG\s+(?P<rir>\S+)\s+(?P<arg>\S+)"),
        ("rdap.orgnets", r"RDAP\.ORGNETS\s+(?P<rir>\S+)\s+(?P<arg>\S+)"),
    )
]

_INVALID_QUERY = ParsedCommand(LookupStatus.INVALID_QUERY)
_INVALID_ADDRESS = ParsedCommand(LookupStatus.INVALID_ADDRESS)


def _address(text: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def parse_command(text: str) -> ParsedCommand:
    """Turn one query line into a :class:`ParsedCommand`.

    Nothing here touches the store; malformed input is reported through the
    returned status.
    """

    for name, pattern in _GRAMMAR:
        match = pattern.match(text or "")
        if match is None:
            continue

        groups = match.groupdict()
        arg = groups.get("arg") or ""
        assoc = bool(groups.get("assoc"))

        if name == "as":
            if not (arg.isascii() and arg.isdigit()) or int(arg) > MAX_ASN:
                return _INVALID_QUERY
            return ParsedCommand(LookupStatus.FOUND, AsnCommand(int(arg), assoc))

        if name == "na":
            try:
                re.compile(arg)
            except re.error:
                return _INVALID_QUERY
            return ParsedCommand(LookupStatus.FOUND, NameCommand(arg, assoc))

        if name == "cc":
            if not re.fullmatch(r"[A-Za-z]{2}", arg):
                return _INVALID_QUERY
            return ParsedCommand(LookupStatus.FOUND, CountryCommand(arg.upper()))

        if name == "all":
            return ParsedCommand(LookupStatus.FOUND, AllCommand())

        if name in ("rdap.org", "rdap.orgnets"):
            try:
                rir = rdap.registry_key(groups["rir"])
            except RdapError:
                return _INVALID_QUERY
            command = RdapOrgCommand(rir, arg.upper(), nets_only=name == "rdap.orgnets")
            return ParsedCommand(LookupStatus.FOUND, command)

        # remaining commands take an address
        address = _address(arg)
        if address is None:
            return _INVALID_ADDRESS
        if name == "ip":
            return ParsedCommand(LookupStatus.FOUND, IpCommand(address, assoc))
        if name == "email":
            return ParsedCommand(LookupStatus.FOUND, EmailCommand(address))
        try:
            rir = rdap.registry_key(groups["rir"])
        except RdapError:
            return _INVALID_QUERY
        return ParsedCommand(LookupStatus.FOUND, RdapIpCommand(rir, address))

    return _INVALID_QUERY


def _expand(engine: Engine, rows: List[Row]) -> List[Row]:
    expanded: List[Row] = []
    for registry, org_reg_id in query.unique_reg_ids(rows):
        expanded.extend(query.find_associated(engine, registry, org_reg_id).rows)
    # rows without an organisation id are kept as they are
    expanded.extend(row for row in rows if not (row.registry and row.org_reg_id))
    return expanded


def _print_result(engine: Engine, printer: RowPrinter, result, assoc: bool) -> LookupStatus:
    if not result:
        return result.status
    rows = _expand(engine, result.rows) if assoc else result.rows
    printer.print_rows(query.attach_as_names(engine, rows))
    return LookupStatus.FOUND


def _exec_asn(engine: Engine, command: AsnCommand, printer: RowPrinter) -> LookupStatus:
    return _print_result(engine, printer, query.find_by_asn(engine, command.asn), command.assoc)


def _exec_ip(engine: Engine, command: IpCommand, printer: RowPrinter) -> LookupStatus:
    return _print_result(engine, printer, query.find_by_ip(engine, command.address), command.assoc)


def _exec_name(engine: Engine, command: NameCommand, printer: RowPrinter) -> LookupStatus:
    return _print_result(engine, printer, query.find_by_name(engine, command.pattern), command.assoc)


def _exec_country(engine: Engine, command: CountryCommand, printer: RowPrinter) -> LookupStatus:
    result = query.find_by_country(engine, command.country_code)
    for row in result.rows:
        printer.print_row(row)
    return result.status


def _exec_all(engine: Engine, command: AllCommand, printer: RowPrinter) -> LookupStatus:
    printed = 0
    for row in query.iter_rows(engine):
        printer.print_row(row)
        printed += 1
    return LookupStatus.FOUND if printed else LookupStatus.NOT_FOUND


def _exec_email(engine: Engine, command: EmailCommand, printer: RowPrinter) -> LookupStatus:
    result = query.find_by_ip(engine, command.address)
    if not result:
        return result.status
    printer.print_emails(rdap.contacts_for_address(result.row, command.address))
    return LookupStatus.FOUND


def _exec_rdap_ip(engine: Engine, command: RdapIpCommand, printer: RowPrinter) -> LookupStatus:
    printer.print_json(rdap.query_by_ip(command.rir, command.address))
    return LookupStatus.FOUND


def _exec_rdap_org(engine: Engine, command: RdapOrgCommand, printer: RowPrinter) -> LookupStatus:
    entity = rdap.query_by_org(command.rir, command.org_id)
    if command.nets_only:
        printer.print_networks(rdap.org_networks(command.rir, entity))
    else:
        printer.print_json(entity)
    return LookupStatus.FOUND


_HANDLERS: Dict[type, Callable[..., LookupStatus]] = {
    AsnCommand: _exec_asn,
    IpCommand: _exec_ip,
    NameCommand: _exec_name,
    CountryCommand: _exec_country,
    AllCommand: _exec_all,
    EmailCommand: _exec_email,
    RdapIpCommand: _exec_rdap_ip,
    RdapOrgCommand: _exec_rdap_org,
}


def execute(engine: Engine, command: Command, printer: RowPrinter) -> LookupStatus:
    """Run ``command`` and print its results; returns the lookup status."""
    return _HANDLERS[type(command)](engine, command, printer)
