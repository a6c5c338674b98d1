"""Source feeds: opening local files as line streams and fetching them."""

from __future__ import annotations

import gzip
import logging
import os
import struct
import sys
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tqdm import tqdm

from nicindex.config import DownloadItem, asn_names_item, delegation_items
from nicindex.errors import SourceError
from nicindex.settings import get_settings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
USER_AGENT = "nicindex/0.1"


def gzip_size(path: Union[str, Path]) -> int:
    """Uncompressed size recorded in a gzip trailer (modulo 2**32)."""

    with open(path, "rb") as handle:
        handle.seek(-4, os.SEEK_END)
        trailer = handle.read(4)
    if len(trailer) != 4:
        raise SourceError(f"{path}: truncated gzip trailer")
    return struct.unpack("<I", trailer)[0]


@dataclass(frozen=True)
class SourceStream:
    """A local source file exposed as raw byte lines plus its expected size."""

    path: Path

    @property
    def name(self) -> str:
        return str(self.path)

    @property
    def compressed(self) -> bool:
        return self.path.suffix == ".gz"

    @property
    def total_bytes(self) -> int:
        try:
            if self.compressed:
                return gzip_size(self.path)
            return self.path.stat().st_size
        except OSError as exc:
            raise SourceError(f"{self.path}: {exc}") from exc

    @contextmanager
    def open_lines(self) -> Iterator[Iterable[bytes]]:
        opener = gzip.open if self.compressed else open
        try:
            handle = opener(self.path, "rb")
        except OSError as exc:
            raise SourceError(f"{self.path}: {exc}") from exc
        with handle:
            yield handle


def _progress_enabled() -> bool:
    return get_settings().show_progress and sys.stderr.isatty()


class _TransientDownloadError(Exception):
    pass


def _fetch(item: DownloadItem, dst_dir: Path, timeout: int) -> Path:
    try:
        resp = requests.get(
            item.url,
            stream=True,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )
    except (requests.ConnectionError, requests.Timeout) as exc:
        raise _TransientDownloadError(str(exc)) from exc

    with resp:
        if resp.status_code >= 500:
            raise _TransientDownloadError(f"{resp.status_code}: {item.url}")
        if resp.status_code != 200:
            raise SourceError(f"{resp.status_code} {resp.reason}: {item.url}")

        total = int(resp.headers.get("Content-Length") or 0) or None
        fd, tmp_name = tempfile.mkstemp(
            prefix="download-", suffix="-" + item.dst_path.name, dir=dst_dir
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as raw, gzip.GzipFile(
                fileobj=raw, mode="wb"
            ) as gz, tqdm(
                total=total,
                unit="B",
                unit_scale=True,
                desc=item.dst_path.name,
                disable=not _progress_enabled(),
            ) as bar:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        gz.write(chunk)
                        bar.update(len(chunk))
        except requests.RequestException as exc:
            tmp_path.unlink(missing_ok=True)
            raise _TransientDownloadError(str(exc)) from exc
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
    return tmp_path


def download_source(item: DownloadItem, dst_dir: Optional[Path] = None) -> Path:
    """Download one feed, gzip it, and move it into place atomically."""

    settings = get_settings()
    dst_dir = Path(dst_dir or item.dst_path.parent)
    dst_dir.mkdir(parents=True, exist_ok=True)

    fetch = retry(
        retry=retry_if_exception_type(_TransientDownloadError),
        stop=stop_after_attempt(max(1, settings.download_retries)),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )(_fetch)

    logger.info("Downloading %s", item.url)
    try:
        tmp_path = fetch(item, dst_dir, settings.http_timeout)
    except _TransientDownloadError as exc:
        raise SourceError(f"download failed: {exc}") from exc

    os.replace(tmp_path, item.dst_path)
    logger.info("Saved %s", item.dst_path)
    return item.dst_path


def source_items(data_dir: Path) -> List[DownloadItem]:
    """Every feed the index is built from, delegation files first."""
    return list(delegation_items(data_dir).values()) + [asn_names_item(data_dir)]


def ensure_sources(data_dir: Path, force: bool = False) -> bool:
    """Fetch missing feeds (or all of them when ``force``).

    Returns ``True`` when anything was downloaded, which means the index is
    stale and must be rebuilt.
    """

    fetched = False
    for item in source_items(data_dir):
        if force or not item.dst_path.exists():
            if not force:
                logger.warning("Source not found: %s", item.dst_path)
            download_source(item, data_dir)
            fetched = True
    return fetched
