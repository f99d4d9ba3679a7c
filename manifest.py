from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List
import zipfile

import yaml

from archive import find_manifest
from exceptions import ManifestError
from storage import YamlCodec

NO_VERSION = "NoVersion"

# errors raised by a manifest that cannot be decoded into entries
MANIFEST_ERRORS = (yaml.YAMLError, ManifestError, UnicodeDecodeError)


@dataclass
class Dependency:
    name: str
    version: str = NO_VERSION


@dataclass
class ManifestEntry:
    name: str
    version: str = NO_VERSION
    dependencies: List[Dependency] = field(default_factory=list)
    optional_dependencies: List[Dependency] = field(default_factory=list)


def _require_name(entry: Any, what: str) -> str:
    if not isinstance(entry, dict) or entry.get("Name") is None:
        raise ManifestError(f"{what} has no Name field: {entry!r}")
    return str(entry["Name"])


def _parse_dependencies(raw: Any) -> List[Dependency]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ManifestError(f"Dependency list is not a list: {raw!r}")
    result = []
    for entry in raw:
        name = _require_name(entry, "Dependency")
        version = entry.get("Version")
        result.append(Dependency(name, NO_VERSION if version is None else str(version)))
    return result


def parse_manifest(raw: bytes, codec: YamlCodec) -> List[ManifestEntry]:
    """Decode an everest.yaml document; floats such as ``1.10`` stay strings."""
    document = codec.load_no_floats(raw)
    if not isinstance(document, list):
        raise ManifestError(f"Manifest is not a list of mods: {type(document).__name__}")

    entries = []
    for entry in document:
        name = _require_name(entry, "Manifest entry")
        version = entry.get("Version")
        entries.append(
            ManifestEntry(
                name=name,
                version=NO_VERSION if version is None else str(version),
                dependencies=_parse_dependencies(entry.get("Dependencies")),
                optional_dependencies=_parse_dependencies(
                    entry.get("OptionalDependencies")
                ),
            )
        )
    return entries


def read_manifest(archive: zipfile.ZipFile, codec: YamlCodec) -> List[ManifestEntry] | None:
    """Manifest entries of an opened archive, or None when it ships no manifest."""
    name = find_manifest(archive)
    if name is None:
        return None
    return parse_manifest(archive.read(name), codec)


def merge_dependencies(
    entries: List[ManifestEntry],
) -> tuple[Dict[str, str], Dict[str, str]]:
    """Collect dependencies of every entry, skipping mods defined by the same manifest.

    The first occurrence of a dependency name wins.
    """
    defined = {entry.name for entry in entries}
    dependencies: Dict[str, str] = {}
    optional: Dict[str, str] = {}
    for entry in entries:
        _add_dependencies(dependencies, entry.dependencies, defined)
        _add_dependencies(optional, entry.optional_dependencies, defined)
    return dependencies, optional


def _add_dependencies(
    target: Dict[str, str], dependencies: List[Dependency], defined: set[str]
) -> None:
    for dependency in dependencies:
        if dependency.name in target or dependency.name in defined:
            continue
        target[dependency.name] = dependency.version
