from __future__ import annotations

from pathlib import Path
from typing import IO, Any
import logging
import threading

import yaml


class _NoFloatsLoader(yaml.SafeLoader):
    """Safe loader that keeps floats as their source text ("1.10" stays "1.10")."""


_NoFloatsLoader.add_constructor(
    "tag:yaml.org,2002:float", yaml.SafeLoader.construct_yaml_str
)


class YamlCodec:
    """Shared YAML reader/writer.

    Every load and dump goes through one lock so event subscribers running on
    other threads can persist data without interleaving with the crawl.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def load(self, source: str | bytes | IO[Any]) -> Any:
        with self._lock:
            return yaml.load(source, Loader=yaml.SafeLoader)

    def load_no_floats(self, source: str | bytes | IO[Any]) -> Any:
        with self._lock:
            return yaml.load(source, Loader=_NoFloatsLoader)

    def dumps(self, data: Any) -> str:
        with self._lock:
            return yaml.safe_dump(
                data,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
            )

    def load_file(self, path: Path, default: Any = None) -> Any:
        if not path.exists():
            return default
        with path.open("rb") as handle:
            data = self.load(handle)
        return default if data is None else data

    def dump_file(self, data: Any, path: Path) -> None:
        """Overwrite ``path`` in place with a full snapshot."""
        path.parent.mkdir(parents=True, exist_ok=True)
        text = self.dumps(data)
        with path.open("w", encoding="utf-8") as handle:
            handle.write(text)

    def dump_file_atomic(self, data: Any, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f"{path.name}.tmp")
        self.dump_file(data, temp_path)
        temp_path.replace(path)


def safe_unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logging.warning("Failed to remove %s: %s", path, exc)
