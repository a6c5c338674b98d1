# nicindex/services/rdap.py
"""Minimal RDAP client used for details the local index does not hold."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import requests

from nicindex.config import RDAP_URLS
from nicindex.errors import RdapError
from nicindex.models.row import IPAddress, Row
from nicindex.settings import get_settings

logger = logging.getLogger(__name__)


class Rir(str, Enum):
    RIPENCC = "RIPENCC"
    LACNIC = "LACNIC"
    AFRINIC = "AFRINIC"
    APNIC = "APNIC"
    ARIN = "ARIN"

    @property
    def base_url(self) -> str:
        return RDAP_URLS[self.value]


def registry_key(name: str) -> Rir:
    """Map a registry name (``arin``, ``RIPENCC`` ...) to its :class:`Rir`."""

    try:
        return Rir(name.strip().upper())
    except ValueError:
        raise RdapError(f"unknown registry {name!r}") from None


@dataclass(frozen=True)
class EmailContact:
    role: str
    handle: str
    address: str


@dataclass(frozen=True)
class OrgNetwork:
    registry: str
    version: str
    prefix: str
    registered: str
    last_changed: str
    status: str


def _get_json(url: str) -> Dict[str, Any]:
    logger.debug("RDAP GET %s", url)
    try:
        resp = requests.get(
            url,
            timeout=get_settings().rdap_timeout,
            headers={"Accept": "application/rdap+json"},
        )
    except requests.RequestException as exc:
        raise RdapError(f"{url}: {exc}") from exc
    if resp.status_code != 200:
        raise RdapError(f"{resp.status_code} {resp.reason}: {url}")
    try:
        return resp.json()
    except ValueError as exc:
        raise RdapError(f"{url}: invalid JSON reply") from exc


def query_by_ip(rir: Rir, address: Union[str, IPAddress]) -> Dict[str, Any]:
    return _get_json(f"{rir.base_url}/ip/{address}")


def query_by_org(rir: Rir, org_id: str) -> Dict[str, Any]:
    return _get_json(f"{rir.base_url}/entity/{org_id}")


def query_by_row(row: Row, address: Union[str, IPAddress]) -> Dict[str, Any]:
    """Ask the registry that delegated ``row`` about ``address``."""
    return query_by_ip(registry_key(row.registry), address)


def walk_entities(entities: Iterable[Dict[str, Any]], visit: Callable[[Dict[str, Any]], None]) -> None:
    """Depth-first walk, children before their parent."""
    for entity in entities or ():
        walk_entities(entity.get("entities", ()), visit)
        visit(entity)


def _vcard_properties(entity: Dict[str, Any]) -> List[list]:
    vcard = entity.get("vcardArray") or []
    if len(vcard) < 2 or not isinstance(vcard[1], list):
        return []
    return [prop for prop in vcard[1] if isinstance(prop, list) and len(prop) >= 4]


def email_contacts(entity: Dict[str, Any]) -> List[EmailContact]:
    contacts: List[EmailContact] = []

    def visit(ent: Dict[str, Any]) -> None:
        handle = str(ent.get("handle", "")).upper()
        roles = ent.get("roles") or []
        for prop in _vcard_properties(ent):
            if prop[0] != "email":
                continue
            for address in prop[3:]:
                if not isinstance(address, str) or not address:
                    continue
                for role in roles:
                    contacts.append(EmailContact(role.lower(), handle, address))

    walk_entities(entity.get("entities", ()), visit)
    return contacts


def _event_date(events: Iterable[Dict[str, Any]], action: str) -> str:
    for event in events or ():
        if event.get("eventAction") == action:
            return str(event.get("eventDate", "")).partition("T")[0]
    return "-"


def org_networks(rir: Rir, entity: Dict[str, Any]) -> List[OrgNetwork]:
    """Networks attached to an organisation entity, split into CIDR prefixes."""

    networks: List[OrgNetwork] = []
    for net in entity.get("networks") or ():
        try:
            start = ipaddress.ip_address(net.get("startAddress", ""))
            end = ipaddress.ip_address(net.get("endAddress", ""))
            prefixes = list(ipaddress.summarize_address_range(start, end))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping network %s: %s", net.get("handle"), exc)
            continue

        status = ":".join(net.get("status") or []).upper()
        registered = _event_date(net.get("events"), "registration")
        changed = _event_date(net.get("events"), "last changed")
        for prefix in prefixes:
            networks.append(
                OrgNetwork(
                    registry=rir.value,
                    version=f"IPV{prefix.version}",
                    prefix=str(prefix),
                    registered=registered,
                    last_changed=changed,
                    status=status,
                )
            )
    return networks


def contacts_for_address(row: Optional[Row], address: Union[str, IPAddress]) -> List[EmailContact]:
    if row is None:
        return []
    return email_contacts(query_by_row(row, address))
