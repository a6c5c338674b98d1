#!/usr/bin/env python3
"""Offline lookup of IPs and ASNs against locally indexed RIR data.

Queries can be given as arguments or typed at the interactive prompt. See
:mod:`nicindex.commands` for the query grammar.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from sqlalchemy.engine import Engine

from nicindex import commands
from nicindex.config import asn_names_item, delegation_items
from nicindex.db import get_engine, store_exists
from nicindex.errors import LookupStatus, NicIndexError
from nicindex.formatting import RowPrinter, ansi_message
from nicindex.services.loader import rebuild_index
from nicindex.services.sources import ensure_sources
from nicindex.settings import get_settings

log = logging.getLogger("nicindex")


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def _notice(title: str, message: str, color: bool, fg: str) -> None:
    click.echo(ansi_message(title, message, color=color, fg=fg), err=True, color=color)


def prepare_store(
    data_dir: Path,
    *,
    reindex: bool = False,
    download: bool = False,
    color: bool = False,
) -> Engine:
    """Make sure sources and index exist, rebuilding when needed."""

    data_dir.mkdir(parents=True, exist_ok=True)
    if ensure_sources(data_dir, force=download):
        reindex = True

    store_path = data_dir / get_settings().db_filename
    if not reindex and not store_exists(store_path):
        _notice("NOT FOUND", str(store_path), color, "red")
        reindex = True

    if reindex:
        delegation_paths = [item.dst_path for item in delegation_items(data_dir).values()]
        for path in delegation_paths:
            _notice("INDEXING", str(path), color, "yellow")
        rebuild_index(store_path, delegation_paths, asn_names_item(data_dir).dst_path)

    return get_engine(store_path)


def run_query(
    engine: Engine,
    text: str,
    *,
    pretty: bool = False,
    color: bool = False,
    prepend_query: bool = False,
    query_width: int = 0,
) -> Optional[LookupStatus]:
    """Parse and execute one query, reporting failures on stderr.

    Returns the lookup status, or ``None`` when the store or a remote
    registry failed.
    """

    text = text.strip()
    printer = RowPrinter(
        pretty=pretty,
        color=color,
        prepend_query=prepend_query,
        query=text,
        query_width=query_width,
    )
    parsed = commands.parse_command(text)
    if not parsed:
        printer.error(parsed.status.message)
        return parsed.status

    try:
        status = commands.execute(engine, parsed.command, printer)
    except NicIndexError as exc:
        printer.error(str(exc))
        return None

    if status is not LookupStatus.FOUND:
        printer.error(status.message)
    return status


def _interactive(engine: Engine, **modes) -> None:
    while True:
        try:
            line = click.prompt(">", prompt_suffix=" ", default="", show_default=False)
        except (click.exceptions.Abort, EOFError):
            click.echo(err=True)
            return
        if line.strip():
            run_query(engine, line, **modes)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("queries", nargs=-1)
@click.option("--reindex", is_flag=True, help="Force rebuild of the RIR index")
@click.option("--download", is_flag=True, help="Force download of the RIR databases")
@click.option("--color/--no-color", default=None, help="Force color output on/off")
@click.option("--pretty/--no-pretty", default=None, help="Force pretty print on/off")
@click.option("--prepend-query", is_flag=True,
              help="Prepend the query to each result row in tabular output")
@click.option("--dbpath", type=click.Path(file_okay=False, path_type=Path),
              default=None, help="Override path to RIR data and index")
@click.option("--verbose", is_flag=True, help="Enable verbose logging")
def main(
    queries: Tuple[str, ...],
    reindex: bool,
    download: bool,
    color: Optional[bool],
    pretty: Optional[bool],
    prepend_query: bool,
    dbpath: Optional[Path],
    verbose: bool,
) -> None:
    """Offline lookup by IP/ASN of other IPs/ASNs owned by the same organization.

    \b
    QUERY
      as ASN [+]             query by autonomous system number
      ip IPADDR [+]          query by IPv4 / IPv6 address
      na REGEX [+]           query by ASN name (case-insensitive regex)
      cc COUNTRY_CODE        all IPs & ASNs of a country
      all                    dump all local records
      email IPADDR           RDAP e-mail contacts for IPADDR
      rdap.ip RIR IPADDR     full RDAP reply for an IP address
      rdap.org RIR ORGID     full RDAP reply for an organization
      rdap.orgnets RIR ORGID networks of an organization

    A trailing '+' returns every IP and ASN registered to the same
    organization. rdap.* and email queries need network access.
    """

    settings = get_settings()
    configure_logging(logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO))
    for warning in settings.recommended_warnings():
        log.warning("CONFIG: %s", warning)

    is_tty = sys.stdout.isatty()
    color = is_tty if color is None else color
    pretty = is_tty if pretty is None else pretty
    data_dir = dbpath or settings.db_path

    try:
        engine = prepare_store(data_dir, reindex=reindex, download=download, color=color)
    except NicIndexError as exc:
        _notice("error", str(exc), color, "red")
        sys.exit(1)

    if (reindex or download) and not queries:
        return

    modes = {"pretty": pretty, "color": color, "prepend_query": prepend_query}
    if not queries:
        _interactive(engine, **modes)
        return

    width = max(len(q.strip()) for q in queries)
    for text in queries:
        run_query(engine, text, query_width=width, **modes)


if __name__ == '__main__':
    main()
