from __future__ import annotations

from pathlib import Path
from typing import List
import logging
import struct
import zipfile
import zlib

import chardet

from events import ARCHIVE_IS_NOT_UTF8, EventHub
from exceptions import ArchiveError, BadZipSignatureError, ContentValidationError

ZIP_LOCAL_HEADER = b"PK\x03\x04"
MANIFEST_NAMES = ("everest.yaml", "everest.yml")

MIN_DETECTION_CONFIDENCE = 0.8
FALLBACK_NAME_ENCODINGS = ("shift_jis",)

# errors meaning the archive content cannot be trusted, as opposed to network failures
UNREADABLE_ARCHIVE_ERRORS = (
    ContentValidationError,
    zipfile.BadZipFile,
    zlib.error,
    UnicodeDecodeError,
    LookupError,
    NotImplementedError,
    EOFError,
    # encrypted entries
    RuntimeError,
)

# offsets inside a local file header, relative to the signature
_COMPRESSED_SIZE_OFFSET = 18
_NAME_LENGTH_OFFSET = 26
_HEADER_SIZE = 30


def open_archive(
    path: Path,
    events: EventHub | None = None,
    source_url: str | None = None,
) -> zipfile.ZipFile:
    """Open a ZIP archive, guessing the name encoding when it is not UTF-8.

    When ``source_url`` is given, a non-UTF-8 archive is reported once
    through ``events``.
    """
    try:
        return _open(path, "utf-8")
    except UnicodeDecodeError as exc:
        encoding = detect_name_encoding(path)
        if encoding is None:
            raise
        logging.info("Archive %s does not use UTF-8 names, reopening as %s", path, encoding)
        archive = _open(path, encoding)
        if source_url is not None and events is not None:
            events.emit(ARCHIVE_IS_NOT_UTF8, url=source_url, encoding=encoding, error=exc)
        return archive


def _open(path: Path, encoding: str) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(path, metadata_encoding=encoding)
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"Could not open {path.name} as a ZIP file: {exc}") from exc


def raw_file_names(data: bytes) -> List[bytes]:
    """Pull entry names out of local file headers without parsing the archive."""
    names: List[bytes] = []
    position = data.find(ZIP_LOCAL_HEADER)
    while position != -1:
        if position + _HEADER_SIZE > len(data):
            break
        (compressed_size,) = struct.unpack_from(
            "<I", data, position + _COMPRESSED_SIZE_OFFSET
        )
        name_length, extra_length = struct.unpack_from(
            "<HH", data, position + _NAME_LENGTH_OFFSET
        )
        name_start = position + _HEADER_SIZE
        name_end = name_start + name_length
        if name_end > len(data):
            break
        names.append(data[name_start:name_end])
        position = data.find(
            ZIP_LOCAL_HEADER, name_end + extra_length + compressed_size
        )
    return names


def detect_name_encoding(path: Path) -> str | None:
    """Guess the encoding of the entry names, or ``None`` when nothing decodes them.

    A confident chardet guess is tried first, then Shift-JIS.
    """
    names = raw_file_names(path.read_bytes())
    if not names:
        return None

    candidates = []
    result = chardet.detect(b"".join(names))
    if result.get("encoding") and (result.get("confidence") or 0) >= MIN_DETECTION_CONFIDENCE:
        candidates.append(result["encoding"])
    candidates.extend(FALLBACK_NAME_ENCODINGS)

    for encoding in candidates:
        if _decodes_all(names, encoding):
            return encoding
    return None


def _decodes_all(names: List[bytes], encoding: str) -> bool:
    try:
        for name in names:
            name.decode(encoding)
    except (UnicodeDecodeError, LookupError):
        return False
    return True


def check_zip_signature(path: Path) -> None:
    with path.open("rb") as handle:
        signature = handle.read(4)
    if signature != ZIP_LOCAL_HEADER:
        raise BadZipSignatureError("Bad ZIP signature!")


def find_manifest(archive: zipfile.ZipFile) -> str | None:
    for name in MANIFEST_NAMES:
        try:
            archive.getinfo(name)
        except KeyError:
            continue
        return name
    return None


def list_files(archive: zipfile.ZipFile) -> List[str]:
    return [info.filename for info in archive.infolist() if not info.is_dir()]
