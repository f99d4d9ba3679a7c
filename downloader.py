from __future__ import annotations

from pathlib import Path
from typing import Collection, Dict
import itertools
import logging
import time

import requests

from events import EventHub
from exceptions import HashMismatchError, SizeMismatchError
from http_utils import RetryPolicy, check_response, run_with_retry
from storage import safe_unlink
from utils import compute_xxhash, ensure_dir

_CHUNK_SIZE = 1024 * 1024


class FileDownloader:
    """Per-run download cache keyed by source URL.

    A URL is transferred at most once per run; later calls get the cached
    path back. Everything downloaded is deleted by ``cleanup()``.
    """

    def __init__(
        self,
        session: requests.Session,
        policy: RetryPolicy,
        temp_dir: Path,
        events: EventHub | None = None,
    ) -> None:
        self.session = session
        self.policy = policy
        self.temp_dir = temp_dir
        self.events = events or EventHub()
        self._downloaded: Dict[str, Path] = {}
        self._counter = itertools.count(1)

    def fetch(
        self,
        url: str,
        expected_size: int | None = None,
        expected_hashes: Collection[str] | None = None,
    ) -> Path:
        cached = self._downloaded.get(url)
        if cached is not None:
            logging.debug("File %s found in cache: %s", url, cached)
            return cached

        ensure_dir(self.temp_dir)
        target = self.temp_dir / (
            f"updater_downloaded_file_{time.time_ns()}_{next(self._counter)}"
        )
        try:
            run_with_retry(
                lambda: self._transfer(url, target),
                self.policy,
                description=url,
                on_retry=self.events.retry_hook(),
            )

            if expected_size is not None:
                actual_size = target.stat().st_size
                if actual_size != expected_size:
                    raise SizeMismatchError(url, expected_size, actual_size)

            if expected_hashes is not None:
                actual_hash = compute_xxhash(target)
                if actual_hash not in expected_hashes:
                    raise HashMismatchError(url, actual_hash)
        except BaseException:
            safe_unlink(target)
            raise

        logging.debug("Download of %s to %s finished", url, target)
        self._downloaded[url] = target
        return target

    def _transfer(self, url: str, target: Path) -> None:
        logging.debug("Starting download of %s to %s", url, target)
        temp_path = target.with_name(f"{target.name}.part")
        response = self.session.get(url, stream=True, timeout=self.policy.timeout)
        try:
            check_response(response, self.policy)
            with temp_path.open("wb") as handle:
                for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        handle.write(chunk)
            temp_path.replace(target)
        finally:
            response.close()
            safe_unlink(temp_path)

    def cleanup(self) -> None:
        for url, path in self._downloaded.items():
            logging.debug("Cleaning up downloaded file %s (%s)", path, url)
            safe_unlink(path)
        self._downloaded.clear()

    def __contains__(self, url: str) -> bool:
        return url in self._downloaded
