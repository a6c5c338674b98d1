"""Static source catalogue.

Values here never come from the environment; tunables live in
:mod:`nicindex.settings`.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict

# Registry key as it appears in the first column of delegation files.
RIR_HOSTS: Dict[str, str] = {
    "ripencc": "ftp.ripe.net",
    "lacnic": "ftp.lacnic.net",
    "afrinic": "ftp.afrinic.net",
    "apnic": "ftp.apnic.net",
    "arin": "ftp.arin.net",
}

ASN_NAMES_HOST = "ftp.ripe.net"
ASN_NAMES_PATH = "ripe/asnames/asn.txt"
ASN_NAMES_FILENAME = "asn.txt.gz"

RDAP_URLS: Dict[str, str] = {
    "LACNIC": "https://rdap.lacnic.net/rdap",
    "ARIN": "https://rdap.arin.net/registry",
    "APNIC": "https://rdap.apnic.net",
    "RIPENCC": "https://rdap.db.ripe.net",
    "AFRINIC": "https://rdap.afrinic.net/rdap",
}


@dataclass(frozen=True)
class DownloadItem:
    host: str
    src_path: str
    dst_path: Path

    @property
    def url(self) -> str:
        return f"https://{self.host}/{self.src_path}"


def delegation_item(data_dir: Path, key: str) -> DownloadItem:
    return DownloadItem(
        host=RIR_HOSTS[key],
        src_path=f"pub/stats/{key}/delegated-{key}-extended-latest",
        dst_path=Path(data_dir) / f"delegated-{key}-extended-latest.txt.gz",
    )


def delegation_items(data_dir: Path) -> Dict[str, DownloadItem]:
    return {key: delegation_item(data_dir, key) for key in RIR_HOSTS}


def asn_names_item(data_dir: Path) -> DownloadItem:
    return DownloadItem(
        host=ASN_NAMES_HOST,
        src_path=ASN_NAMES_PATH,
        dst_path=Path(data_dir) / ASN_NAMES_FILENAME,
    )
