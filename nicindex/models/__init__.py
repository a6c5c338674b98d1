# nicindex/models/__init__.py

from .row import RecordType, Row, parse_row
from .store import (
    AsNameRecord,
    AsnIndex,
    AssociationIndex,
    NAMESPACES,
    RowRecord,
    V4Index,
    V6Index,
)

__all__ = [
    "RecordType",
    "Row",
    "parse_row",
    "AsNameRecord",
    "AsnIndex",
    "AssociationIndex",
    "NAMESPACES",
    "RowRecord",
    "V4Index",
    "V6Index",
]
