# nicindex/services/__init__.py

from .loader import DelegationLoader, LoadStats, RowCounter, read_stream, rebuild_index
from .query import (
    attach_as_names,
    find_all,
    find_as_name,
    find_associated,
    find_by_asn,
    find_by_country,
    find_by_ip,
    find_by_name,
    iter_rows,
    unique_reg_ids,
    walk_rows,
)
from .sources import SourceStream, download_source, ensure_sources

__all__ = [
    "DelegationLoader",
    "LoadStats",
    "RowCounter",
    "read_stream",
    "rebuild_index",
    "attach_as_names",
    "find_all",
    "find_as_name",
    "find_associated",
    "find_by_asn",
    "find_by_country",
    "find_by_ip",
    "find_by_name",
    "iter_rows",
    "unique_reg_ids",
    "walk_rows",
    "SourceStream",
    "download_source",
    "ensure_sources",
]
