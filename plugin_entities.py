from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List
import re
import zipfile

AHORN_PREFIX = "Ahorn/"
AHORN_ENTITIES_PREFIX = "Ahorn/entities/"
AHORN_TRIGGERS_PREFIX = "Ahorn/triggers/"
AHORN_EFFECTS_PREFIX = "Ahorn/effects/"
LOENN_LANG_FILE = "Loenn/lang/en_gb.lang"

AHORN_VANILLA_SOURCES = (
    (
        "https://raw.githubusercontent.com/CelestialCartographers/Maple/master/src/entity.jl",
        "Ahorn/entities/vanilla.jl",
    ),
    (
        "https://raw.githubusercontent.com/CelestialCartographers/Maple/master/src/trigger.jl",
        "Ahorn/triggers/vanilla.jl",
    ),
    (
        "https://raw.githubusercontent.com/CelestialCartographers/Maple/master/src/style.jl",
        "Ahorn/effects/vanilla.jl",
    ),
)
LOENN_VANILLA_SOURCE = (
    "https://raw.githubusercontent.com/CelestialCartographers/Loenn/master/src/lang/en_gb.lang"
)

_AHORN_MAPDEF = re.compile(r'.*@mapdef(?:data)? [A-Za-z]+ "([^"]+)".*')
_AHORN_ENTITY = re.compile(r'.*Entity\("([^"]+)".*')
_LOENN_LANG_LINE = re.compile(r"^(entities|triggers|style\.effects)\.([^.]+)\..*$")


@dataclass
class PluginEntities:
    entities: List[str] = field(default_factory=list)
    triggers: List[str] = field(default_factory=list)
    effects: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "Entities": list(self.entities),
            "Triggers": list(self.triggers),
            "Effects": list(self.effects),
        }

    def counts(self) -> tuple[int, int, int]:
        return len(self.entities), len(self.triggers), len(self.effects)


def extract_ahorn_entities(lines: Iterable[str], file_path: str, into: PluginEntities) -> None:
    """Add ids declared by one Ahorn plugin file, classified by its directory."""
    for line in lines:
        entity_id = None
        match = _AHORN_MAPDEF.fullmatch(line)
        if match:
            entity_id = match.group(1)
        match = _AHORN_ENTITY.fullmatch(line)
        if match:
            entity_id = match.group(1)
        if entity_id is None:
            continue

        if file_path.startswith(AHORN_EFFECTS_PREFIX):
            into.effects.append(entity_id)
        elif file_path.startswith(AHORN_ENTITIES_PREFIX):
            into.entities.append(entity_id)
        elif file_path.startswith(AHORN_TRIGGERS_PREFIX):
            into.triggers.append(entity_id)


def extract_loenn_entities(lines: Iterable[str]) -> PluginEntities:
    """Ids named by a Lönn language file; each id is kept once."""
    result = PluginEntities()
    buckets = {
        "entities": result.entities,
        "triggers": result.triggers,
        "style.effects": result.effects,
    }
    for line in lines:
        match = _LOENN_LANG_LINE.fullmatch(line)
        if not match:
            continue
        bucket = buckets[match.group(1)]
        if match.group(2) not in bucket:
            bucket.append(match.group(2))
    return result


def has_ahorn_plugins(file_list: List[str]) -> bool:
    return any(path.startswith(AHORN_PREFIX) for path in file_list)


def has_loenn_plugins(file_list: List[str]) -> bool:
    return LOENN_LANG_FILE in file_list


def _read_lines(archive: zipfile.ZipFile, name: str) -> List[str]:
    return archive.read(name).decode("utf-8", errors="replace").splitlines()


def scan_ahorn_archive(archive: zipfile.ZipFile, file_list: List[str]) -> PluginEntities:
    result = PluginEntities()
    for path in file_list:
        if path.startswith(AHORN_PREFIX) and path.endswith(".jl"):
            extract_ahorn_entities(_read_lines(archive, path), path, result)
    return result


def scan_loenn_archive(archive: zipfile.ZipFile) -> PluginEntities:
    return extract_loenn_entities(_read_lines(archive, LOENN_LANG_FILE))
