from __future__ import annotations

from pathlib import Path
from typing import BinaryIO
import re
import shutil

import xxhash

GAMEBANANA_FILE_PREFIX = "https://gamebanana.com/mmdl/"
GAMEBANANA_IMAGES_PREFIX = "https://images.gamebanana.com/"
GAMEBANANA_FILE_PATTERN = re.compile(r"https://gamebanana\.com/mmdl/([0-9]+)")
GAMEBANANA_LINK_IN_TEXT = re.compile(r".*(https://gamebanana\.com/mmdl/[0-9]+).*")

_HASH_CHUNK_SIZE = 1024 * 1024


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def remove_tree(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path)


def format_xxhash(value: int) -> str:
    return format(value, "016x")


def compute_xxhash_stream(stream: BinaryIO) -> str:
    hasher = xxhash.xxh64(seed=0)
    for chunk in iter(lambda: stream.read(_HASH_CHUNK_SIZE), b""):
        hasher.update(chunk)
    return format_xxhash(hasher.intdigest())


def compute_xxhash(path: Path) -> str:
    """64-bit xxHash of a file, as 16 zero-padded lowercase hex digits."""
    with path.open("rb") as handle:
        return compute_xxhash_stream(handle)


def to_download_url(catalog_url: str) -> str:
    return catalog_url.replace("dl", "mmdl")


def file_id_from_url(url: str) -> str | None:
    match = GAMEBANANA_FILE_PATTERN.fullmatch(url or "")
    if not match:
        return None
    return match.group(1)


def file_url(file_id: str | int) -> str:
    return f"{GAMEBANANA_FILE_PREFIX}{file_id}"


def to_mirror_url(url: str, mirror_base: str) -> str | None:
    file_id = file_id_from_url(url)
    if file_id is None:
        return None
    return f"{mirror_base.rstrip('/')}/{file_id}.zip"


def from_mirror_url(mirror_url: str, mirror_base: str) -> str | None:
    base = mirror_base.rstrip("/") + "/"
    if not mirror_url.startswith(base) or not mirror_url.endswith(".zip"):
        return None
    file_id = mirror_url[len(base) : -len(".zip")]
    if not file_id.isdigit():
        return None
    return file_url(file_id)


def screenshot_id(screenshot_url: str) -> str:
    path = screenshot_url[len(GAMEBANANA_IMAGES_PREFIX) : screenshot_url.rindex(".")]
    return path.replace("/", "_") + ".png"


def linked_file_url(text: str) -> str | None:
    match = GAMEBANANA_LINK_IN_TEXT.fullmatch(text or "")
    if not match:
        return None
    return match.group(1)
