"""Result kinds and failure types shared by the loader and query engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from nicindex.models.row import Row


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    INVALID_ADDRESS = "invalid_address"
    INVALID_QUERY = "invalid_query"

    @property
    def message(self) -> str:
        return _STATUS_MESSAGES[self]

    @property
    def ok(self) -> bool:
        return self is LookupStatus.FOUND


_STATUS_MESSAGES = {
    LookupStatus.FOUND: "ok",
    LookupStatus.NOT_FOUND: "no matches found",
    LookupStatus.INVALID_ADDRESS: "invalid IP address",
    LookupStatus.INVALID_QUERY: "invalid query",
}


@dataclass(frozen=True)
class LookupResult:
    """Outcome of one query: a status plus zero or more rows."""

    status: LookupStatus
    rows: List["Row"] = field(default_factory=list)

    @classmethod
    def found(cls, rows: List["Row"]) -> "LookupResult":
        if not rows:
            return cls(LookupStatus.NOT_FOUND)
        return cls(LookupStatus.FOUND, list(rows))

    @classmethod
    def not_found(cls) -> "LookupResult":
        return cls(LookupStatus.NOT_FOUND)

    @classmethod
    def invalid_address(cls) -> "LookupResult":
        return cls(LookupStatus.INVALID_ADDRESS)

    @classmethod
    def invalid_query(cls) -> "LookupResult":
        return cls(LookupStatus.INVALID_QUERY)

    @property
    def row(self) -> Optional["Row"]:
        return self.rows[0] if self.rows else None

    def __bool__(self) -> bool:
        return self.status.ok


class NicIndexError(Exception):
    """Base class for nicindex failures."""


class ParseFailure(NicIndexError):
    """A source line violates the delegation grammar or field typing."""


class StoreFailure(NicIndexError):
    """The index store could not be opened, read or committed."""


class SourceError(NicIndexError):
    """A source feed could not be fetched or opened."""


class RdapError(NicIndexError):
    """A remote RDAP lookup failed."""
