from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Protocol, Set
import asyncio
import io
import json
import logging

import aiohttp
import paramiko
from PIL import Image

from archive import UNREADABLE_ARCHIVE_ERRORS, open_archive
from config import MirrorConfig
from context import UpdaterContext
from events import (
    DELETED_ICON_FROM_MIRROR,
    DELETED_IMAGE_FROM_MIRROR,
    DELETED_MOD_FROM_MIRROR,
    UPLOADED_ICON_TO_MIRROR,
    UPLOADED_IMAGE_TO_MIRROR,
    UPLOADED_MOD_TO_MIRROR,
    EventHub,
)
from exceptions import MirrorNotConfiguredError
from http_utils import RETRYABLE_ERRORS, RetryPolicy, run_with_retry
from storage import safe_unlink
from telemetry import start_span
from utils import (
    compute_xxhash_stream,
    ensure_dir,
    file_id_from_url,
    file_url,
    from_mirror_url,
    screenshot_id,
)

THUMBNAIL_SIZE = (220, 220)
MIRRORED_SCREENSHOTS = 2
ICON_PREFIX = "Graphics/Atlases/Gui/"
AREA_ICON_PREFIX = "Graphics/Atlases/Gui/areas/"
ICON_LIST_NAME = "list.json"

SFTP_ERRORS = RETRYABLE_ERRORS + (paramiko.SSHException,)


class RemoteStore(Protocol):
    def put(self, local_path: Path, remote_name: str, directory: str) -> None: ...

    def remove(self, remote_name: str, directory: str) -> None: ...


class SftpStore:
    """Remote store on an SFTP server.

    Every action opens its own connection, changes to the target directory,
    does one thing and disconnects. The whole sequence is retried on failure.
    """

    def __init__(
        self,
        config: MirrorConfig,
        policy: RetryPolicy,
        events: EventHub | None = None,
    ) -> None:
        self.config = config
        self.policy = policy
        self.events = events or EventHub()

    def put(self, local_path: Path, remote_name: str, directory: str) -> None:
        self._run(
            directory,
            lambda sftp: sftp.put(str(local_path), remote_name),
            f"put {directory}/{remote_name}",
        )

    def remove(self, remote_name: str, directory: str) -> None:
        def action(sftp: paramiko.SFTPClient) -> None:
            try:
                sftp.remove(remote_name)
            except FileNotFoundError:
                logging.debug("%s/%s is already gone from the mirror", directory, remote_name)

        self._run(directory, action, f"remove {directory}/{remote_name}")

    def _run(
        self,
        directory: str,
        action: Callable[[paramiko.SFTPClient], Any],
        description: str,
    ) -> None:
        def task() -> None:
            client = paramiko.SSHClient()
            try:
                if self.config.known_hosts:
                    client.load_host_keys(self.config.known_hosts)
                else:
                    client.load_system_host_keys()
                client.set_missing_host_key_policy(paramiko.RejectPolicy())
                client.connect(
                    self.config.host,
                    port=self.config.port,
                    username=self.config.username,
                    password=self.config.password,
                    timeout=self.policy.connect_timeout,
                    allow_agent=False,
                    look_for_keys=False,
                )
                sftp = client.open_sftp()
                try:
                    sftp.chdir(directory)
                    action(sftp)
                finally:
                    sftp.close()
            finally:
                client.close()

        with start_span("mirror.sftp", {"mirror.action": description}):
            run_with_retry(
                task,
                self.policy,
                description=description,
                retry_on=SFTP_ERRORS,
                on_retry=self.events.retry_hook(),
            )


def build_remote_store(context: UpdaterContext) -> SftpStore:
    if context.config.mirror is None:
        raise MirrorNotConfiguredError("MIRROR_HOST is not set, the mirror is disabled")
    return SftpStore(context.config.mirror, context.policy, context.events)


class ArchiveMirror:
    """Keeps one ``<file id>.zip`` on the mirror per file referenced by the mod database."""

    def __init__(self, context: UpdaterContext, store: RemoteStore, directory: str) -> None:
        self.context = context
        self.store = store
        self.directory = directory
        self.index_path = context.paths.archive_mirror_index
        self.mirrored: List[str] = [
            str(file_id) for file_id in context.codec.load_file(self.index_path, []) or []
        ]

    def _source_url(self, record: Dict[str, Any]) -> str | None:
        config = self.context.config
        if config.main_server_is_mirror:
            return from_mirror_url(str(record.get("MirrorURL") or ""), config.mirror_url)
        return str(record.get("URL") or "")

    def run(self) -> None:
        database = self.context.codec.load_file(self.context.paths.mod_database, {}) or {}
        to_delete = set(self.mirrored)

        for name, record in database.items():
            url = self._source_url(record)
            file_id = file_id_from_url(url or "")
            if file_id is None:
                logging.warning("Not mirroring %s (%s): not a catalog download link", name, url)
                continue

            if file_id in self.mirrored:
                to_delete.discard(file_id)
                continue

            logging.info("File %s is not mirrored yet, uploading it", file_id)
            hashes = [str(value) for value in record.get("xxHash") or []]
            path = self.context.downloader.fetch(file_url(file_id), expected_hashes=hashes)
            self._upload(path, file_id)

        for file_id in sorted(to_delete):
            logging.info("File %s is mirrored but no longer exists, deleting it", file_id)
            self._delete(file_id)

    def _upload(self, path: Path, file_id: str) -> None:
        self.store.put(path, f"{file_id}.zip", self.directory)
        self.mirrored.append(file_id)
        self.context.codec.dump_file_atomic(self.mirrored, self.index_path)
        logging.info("Uploaded %s.zip to the mirror", file_id)
        self.context.events.emit(UPLOADED_MOD_TO_MIRROR, name=f"{file_id}.zip")

    def _delete(self, file_id: str) -> None:
        self.store.remove(f"{file_id}.zip", self.directory)
        self.mirrored.remove(file_id)
        self.context.codec.dump_file_atomic(self.mirrored, self.index_path)
        logging.info("Deleted %s.zip from the mirror", file_id)
        self.context.events.emit(DELETED_MOD_FROM_MIRROR, name=f"{file_id}.zip")


class ImageMirror:
    """Mirrors 220x220 PNG thumbnails of the first screenshots of every searchable mod."""

    def __init__(self, context: UpdaterContext, store: RemoteStore, directory: str) -> None:
        self.context = context
        self.store = store
        self.directory = directory
        self.index_path = context.paths.image_mirror_index
        self.mirrored: List[str] = [
            str(image_id) for image_id in context.codec.load_file(self.index_path, []) or []
        ]

    def run(self) -> None:
        entries = self.context.codec.load_file(self.context.paths.search_database, []) or []
        to_delete = set(self.mirrored)

        for entry in entries:
            for url in (entry.get("Screenshots") or [])[:MIRRORED_SCREENSHOTS]:
                image_id = screenshot_id(url)
                if image_id in self.mirrored:
                    to_delete.discard(image_id)
                    continue
                logging.info("Image %s is not mirrored yet, uploading it", image_id)
                self._upload(url, image_id)

        for image_id in sorted(to_delete):
            logging.info("Image %s is mirrored but no longer exists, deleting it", image_id)
            self._delete(image_id)

    def download(self, url: str) -> bytes:
        return run_with_retry(
            lambda: asyncio.run(self._fetch(url)),
            self.context.policy,
            description=url,
            on_retry=self.context.events.retry_hook(),
        )

    async def _fetch(self, url: str) -> bytes:
        policy = self.context.policy
        timeout = aiohttp.ClientTimeout(
            connect=policy.connect_timeout, sock_read=policy.read_timeout
        )
        headers = {"User-Agent": self.context.config.user_agent}
        async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                return await response.read()

    def _upload(self, url: str, image_id: str) -> None:
        data = self.download(url)

        ensure_dir(self.context.temp_dir)
        thumbnail_path = self.context.temp_dir / f"updater_thumb_{image_id}"
        try:
            with Image.open(io.BytesIO(data)) as image:
                if image.mode not in ("1", "L", "LA", "P", "RGB", "RGBA"):
                    image = image.convert("RGBA")
                image.thumbnail(THUMBNAIL_SIZE)
                image.save(thumbnail_path, format="PNG")

            self.store.put(thumbnail_path, image_id, self.directory)
        finally:
            safe_unlink(thumbnail_path)

        self.mirrored.append(image_id)
        self.context.codec.dump_file_atomic(self.mirrored, self.index_path)
        logging.info("Uploaded %s to the mirror", image_id)
        self.context.events.emit(UPLOADED_IMAGE_TO_MIRROR, name=image_id)

    def _delete(self, image_id: str) -> None:
        self.store.remove(image_id, self.directory)
        self.mirrored.remove(image_id)
        self.context.codec.dump_file_atomic(self.mirrored, self.index_path)
        logging.info("Deleted %s from the mirror", image_id)
        self.context.events.emit(DELETED_IMAGE_FROM_MIRROR, name=image_id)


def find_icons(file_list: List[str]) -> List[str]:
    """Paths of a file listing that look like map icons usable for rich presence."""
    files = set(file_list)
    icons = []
    for name in file_list:
        if not name.startswith(ICON_PREFIX) or not name.endswith(".png"):
            continue
        if name.endswith("_back.png") or name.endswith("hover.png"):
            continue
        if name.startswith(AREA_ICON_PREFIX) or f"{name[:-4]}_back.png" in files:
            icons.append(name)
    return icons


class RichPresenceIconMirror:
    """Mirrors map icons found in the file listings, deduplicated by content hash.

    ``FilesToHashes`` holds every completely processed file id;
    ``HashesToFiles`` holds every hash present on the mirror with its owners.
    """

    def __init__(self, context: UpdaterContext, store: RemoteStore, directory: str) -> None:
        self.context = context
        self.store = store
        self.directory = directory
        self.index_path = context.paths.icon_mirror_index

        index = context.codec.load_file(self.index_path, {}) or {}
        self.files_to_hashes: Dict[str, Set[str]] = _to_sets(index.get("FilesToHashes"))
        self.hashes_to_files: Dict[str, Set[str]] = _to_sets(index.get("HashesToFiles"))
        self.changes_happened = False

    def run(self) -> None:
        codec = self.context.codec
        files_database = self.context.paths.files_database
        deleted = set(self.files_to_hashes)
        nsfw_mods = set(codec.load_file(self.context.paths.nsfw_mods, []) or [])

        for mod_key in codec.load_file(files_database / "list.yaml", []) or []:
            if mod_key in nsfw_mods:
                logging.debug("Skipping %s as it has restricted content", mod_key)
                continue

            info = codec.load_file(files_database / mod_key / "info.yaml", {}) or {}
            for file_id in [str(value) for value in info.get("Files") or []]:
                if file_id in self.files_to_hashes:
                    deleted.discard(file_id)
                    continue

                listing = codec.load_file(files_database / mod_key / f"{file_id}.yaml", []) or []
                icons = find_icons(listing)
                if icons:
                    logging.debug("Icons found in file %s: %s", file_id, icons)
                    self._process_new_file(file_id, icons)

        for file_id in sorted(deleted):
            logging.info("File %s was deleted, deleting its icons", file_id)
            self._process_deleted_file(file_id)

        if self.changes_happened:
            self._publish_list()

    def _process_new_file(self, file_id: str, icons: List[str]) -> None:
        path = self.context.downloader.fetch(file_url(file_id))
        hashes: Set[str] = set()

        try:
            with open_archive(path, self.context.events) as archive:
                for icon in icons:
                    with archive.open(icon) as stream:
                        icon_hash = compute_xxhash_stream(stream)
                    hashes.add(icon_hash)

                    if icon_hash not in self.hashes_to_files:
                        logging.info("New icon %s with hash %s, uploading it", icon, icon_hash)
                        self._upload(file_id, archive.read(icon), icon_hash)
                    else:
                        logging.debug("Icon %s with hash %s is already mirrored", icon, icon_hash)
                        self.hashes_to_files[icon_hash].add(file_id)
                        self._save()
        except UNREADABLE_ARCHIVE_ERRORS as exc:
            logging.warning("Could not read the icons of file %s, skipping it: %s", file_id, exc)

        self.files_to_hashes[file_id] = hashes
        self._save()

    def _upload(self, file_id: str, data: bytes, icon_hash: str) -> None:
        ensure_dir(self.context.temp_dir)
        remote_name = f"{icon_hash}.png"
        local_path = self.context.temp_dir / remote_name
        try:
            local_path.write_bytes(data)
            self.store.put(local_path, remote_name, self.directory)
        finally:
            safe_unlink(local_path)

        self.context.events.emit(UPLOADED_ICON_TO_MIRROR, name=remote_name, file_id=file_id)
        self.changes_happened = True
        self.hashes_to_files[icon_hash] = {file_id}
        self._save()

    def _process_deleted_file(self, file_id: str) -> None:
        for icon_hash in sorted(self.files_to_hashes.get(file_id, set())):
            owners = self.hashes_to_files.get(icon_hash)
            if owners is None:
                logging.warning(
                    "Hash %s is already gone from the mirror, an earlier deletion was interrupted",
                    icon_hash,
                )
                continue

            owners.discard(file_id)
            if owners:
                continue

            logging.info("Hash %s is no longer used, deleting it", icon_hash)
            remote_name = f"{icon_hash}.png"
            self.store.remove(remote_name, self.directory)
            self.context.events.emit(DELETED_ICON_FROM_MIRROR, name=remote_name, file_id=file_id)
            self.changes_happened = True
            del self.hashes_to_files[icon_hash]
            self._save()

        self.files_to_hashes.pop(file_id, None)
        self._save()

    def _publish_list(self) -> None:
        ensure_dir(self.context.temp_dir)
        list_path = self.context.temp_dir / "updater_icon_list.json"
        try:
            list_path.write_text(json.dumps(sorted(self.hashes_to_files)), encoding="utf-8")
            self.store.put(list_path, ICON_LIST_NAME, self.directory)
        finally:
            safe_unlink(list_path)

    def _save(self) -> None:
        self.context.codec.dump_file_atomic(
            {
                "FilesToHashes": _to_lists(self.files_to_hashes),
                "HashesToFiles": _to_lists(self.hashes_to_files),
            },
            self.index_path,
        )


def _to_sets(data: Dict[str, List[str]] | None) -> Dict[str, Set[str]]:
    return {str(key): {str(value) for value in values or []} for key, values in (data or {}).items()}


def _to_lists(data: Dict[str, Set[str]]) -> Dict[str, List[str]]:
    return {key: sorted(values) for key, values in sorted(data.items())}


def run_mirrors(context: UpdaterContext, store: RemoteStore | None = None) -> None:
    """Bring the archive, image and icon mirrors in line with the saved databases."""
    mirror = context.config.mirror
    if mirror is None:
        raise MirrorNotConfiguredError("MIRROR_HOST is not set, the mirror is disabled")
    if store is None:
        store = build_remote_store(context)

    with start_span("mirror.archives"):
        ArchiveMirror(context, store, mirror.directory).run()
    with start_span("mirror.images"):
        ImageMirror(context, store, mirror.images_directory).run()
    with start_span("mirror.icons"):
        RichPresenceIconMirror(context, store, mirror.icons_directory).run()
