from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict
import logging

from storage import YamlCodec

STATE_VERSION = 1
FULL_PAGE_SIZE_RANGE = (40, 50)
INCREMENTAL_PAGE_SIZE_RANGE = (1, 50)


@dataclass
class CrawlState:
    """Watermarks and page-size counters carried from one run to the next."""

    most_recent_updated_dates: Dict[str, int] = field(default_factory=dict)
    full_page_size: int = FULL_PAGE_SIZE_RANGE[0]
    incremental_page_size: int = 0

    def advance_page_sizes(self) -> None:
        self.incremental_page_size += 1
        if self.incremental_page_size > INCREMENTAL_PAGE_SIZE_RANGE[1]:
            self.incremental_page_size = INCREMENTAL_PAGE_SIZE_RANGE[0]
        self.full_page_size += 1
        if self.full_page_size > FULL_PAGE_SIZE_RANGE[1]:
            self.full_page_size = FULL_PAGE_SIZE_RANGE[0]

    def to_dict(self) -> Dict[str, object]:
        return {
            "Version": STATE_VERSION,
            "MostRecentUpdatedDates": dict(self.most_recent_updated_dates),
            "FullPageSize": self.full_page_size,
            "IncrementalPageSize": self.incremental_page_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "CrawlState":
        dates = data.get("MostRecentUpdatedDates") or {}
        return cls(
            most_recent_updated_dates={str(k): int(v) for k, v in dict(dates).items()},
            full_page_size=int(data.get("FullPageSize", FULL_PAGE_SIZE_RANGE[0])),
            incremental_page_size=int(data.get("IncrementalPageSize", 0)),
        )


def load_state(path: Path, codec: YamlCodec) -> CrawlState:
    logging.info("Loading update checker state")
    data = codec.load_file(path)
    if not data:
        return CrawlState()
    if not isinstance(data, dict) or data.get("Version") != STATE_VERSION:
        raise ValueError(f"Unsupported update checker state format in {path}")
    return CrawlState.from_dict(data)


def save_state(path: Path, state: CrawlState, codec: YamlCodec) -> None:
    logging.info("Saving update checker state")
    codec.dump_file(state.to_dict(), path)


def commit_state(temp_path: Path, path: Path) -> None:
    logging.info("Committing update checker state")
    temp_path.replace(path)
