import gzip
from pathlib import Path
from typing import Iterable, Optional

from nicindex.config import asn_names_item, delegation_items
from nicindex.db import get_engine
from nicindex.services.loader import rebuild_index


SAMPLE_DELEGATIONS = """\
# delegated-apnic-extended-latest (trimmed)
2|apnic|20240101|14|19830613|20231231|+1000
apnic|*|asn|*|2|summary
apnic|*|ipv4|*|9|summary
apnic|*|ipv6|*|2|summary
apnic|AU|asn|173|1|20020801|allocated|A91A7381
apnic|JP|asn|4608|1024|20000131|allocated|A92E1062
apnic|AU|ipv4|1.0.0.0|256|20110811|assigned|A91872ED
apnic|CN|ipv4|1.0.1.0|256|20110414|allocated|A92E1062
apnic|AU|ipv4|1.0.4.0|1024|20110412|allocated|A92D9378
apnic|CN|ipv4|1.0.8.0|768|20110412|allocated|A92319D5

apnic|JP|ipv4|192.0.2.0|256|20100101|assigned|A92E1062
apnic|AU|ipv4|198.51.100.0|256|20100101|reserved|
apnic|AU|ipv4|203.0.113.0|256||available||
apnic|JP|ipv6|2001:200::|35|19990813|allocated|A92E1062
apnic|AU|ipv6|2001:db8::|32|20000101|allocated|A91872ED
apnic|AU|opaque|1|1|20000101|allocated|A91872ED
apnic|AU|asn|notanumber|1|20000101|allocated|A91872ED
apnic|AU|ipv4|1.2.3.4|abc|20000101|allocated|A91872ED
apnic|AU|ipv4|2001:db8:1::|256|20000101|allocated|A91872ED
apnic|ZZ|ipv4|223.255.255.0|256|20000101|allocated|
"""

# line numbers (1-based) of the three malformed records above
MALFORMED_LINES = (19, 20, 21)

# raw records that must end up in the primary store, in load order
INDEXED_LINES = [
    "apnic|AU|asn|173|1|20020801|allocated|A91A7381",
    "apnic|JP|asn|4608|1024|20000131|allocated|A92E1062",
    "apnic|AU|ipv4|1.0.0.0|256|20110811|assigned|A91872ED",
    "apnic|CN|ipv4|1.0.1.0|256|20110414|allocated|A92E1062",
    "apnic|AU|ipv4|1.0.4.0|1024|20110412|allocated|A92D9378",
    "apnic|CN|ipv4|1.0.8.0|768|20110412|allocated|A92319D5",
    "apnic|JP|ipv4|192.0.2.0|256|20100101|assigned|A92E1062",
    "apnic|JP|ipv6|2001:200::|35|19990813|allocated|A92E1062",
    "apnic|AU|ipv6|2001:db8::|32|20000101|allocated|A91872ED",
    "apnic|ZZ|ipv4|223.255.255.0|256|20000101|allocated|",
]

SAMPLE_AS_NAMES = """\
   173 EXAMPLE-AU Example Networks, AU
  4608 APNIC-SERVICES Asia Pacific Network Information Centre, AU
  4609 APNIC-SERVICES Asia Pacific Network Information Centre, AU
  4610 APNIC-LABS Research, AU
 99999 ORPHAN-NAME No delegation, ZZ
this line has no number
"""

EMPTY_DELEGATIONS = "2|{key}|20240101|0|19830613|20231231|+1000\n"


def write_gzip(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with gzip.open(path, "wb") as handle:
        handle.write(text.encode("utf-8"))
    return path


def write_plain(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def delegation_line(cc: str, kind: str, start: str, count: int, org: str = "", status: str = "allocated") -> str:
    return f"test|{cc}|{kind}|{start}|{count}|20200101|{status}|{org}"


def delegation_file(lines: Iterable[str]) -> str:
    body = "\n".join(lines)
    return f"2|test|20240101|0|19830613|20231231|+0000\n{body}\n"


def build_store(
    tmp_path: Path,
    delegations: str = SAMPLE_DELEGATIONS,
    as_names: Optional[str] = SAMPLE_AS_NAMES,
    name: str = "nicindex.db",
):
    """Write the given feeds under ``tmp_path`` and index them."""

    src = write_gzip(tmp_path / "src" / "delegated.txt.gz", delegations)
    names = None
    if as_names is not None:
        names = write_gzip(tmp_path / "src" / "asn.txt.gz", as_names)
    stats = rebuild_index(tmp_path / name, [src], names, show_progress=False)
    return get_engine(tmp_path / name), stats


def populate_data_dir(data_dir: Path) -> None:
    """Lay out every feed the CLI expects, with the sample in APNIC's slot."""

    for key, item in delegation_items(data_dir).items():
        text = SAMPLE_DELEGATIONS if key == "apnic" else EMPTY_DELEGATIONS.format(key=key)
        write_gzip(item.dst_path, text)
    write_gzip(asn_names_item(data_dir).dst_path, SAMPLE_AS_NAMES)
