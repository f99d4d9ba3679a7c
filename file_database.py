from __future__ import annotations

from pathlib import Path
from typing import List
import logging
import shutil

from archive import (
    UNREADABLE_ARCHIVE_ERRORS,
    check_zip_signature,
    list_files,
    open_archive,
)
from context import UpdaterContext
from events import (
    AHORN_PLUGIN_SCAN_ERROR,
    ARCHIVE_IS_UNREADABLE_FOR_LISTING,
    LOENN_PLUGIN_SCAN_ERROR,
    SCANNED_AHORN_ENTITIES,
    SCANNED_LOENN_ENTITIES,
    SCANNED_ZIP_CONTENTS,
)
from http_utils import get_text
from models import CatalogFile
from plugin_entities import (
    AHORN_VANILLA_SOURCES,
    LOENN_VANILLA_SOURCE,
    PluginEntities,
    extract_ahorn_entities,
    extract_loenn_entities,
    has_ahorn_plugins,
    has_loenn_plugins,
    scan_ahorn_archive,
    scan_loenn_archive,
)
from telemetry import start_span
from utils import ensure_dir, file_id_from_url, file_url, remove_tree


class FilesDatabaseBuilder:
    """Builds the ``modfilesdatabase`` tree: one listing per archive plus plugin indexes.

    Everything is written to ``modfilesdatabase_temp`` first and swapped in by
    ``save_to_disk``. Listings and plugin indexes already present in the
    committed tree are copied instead of being computed again.
    """

    def __init__(self, context: UpdaterContext) -> None:
        self.context = context
        self.codec = context.codec
        self.database_dir = context.paths.files_database
        self.temp_dir = context.paths.files_database_temp
        self.mods: List[str] = []
        self.file_ids: List[str] = []
        remove_tree(self.temp_dir)

    def add_mod(
        self, item_type: str, item_id: int, name: str, files: List[CatalogFile]
    ) -> None:
        if not files:
            return

        mod_key = f"{item_type}/{item_id}"
        mod_dir = self.temp_dir / item_type / str(item_id)
        ensure_dir(mod_dir)
        self.mods.append(mod_key)

        created: List[str] = []
        for entry in files:
            file_id = file_id_from_url(entry.url)
            if file_id is None:
                logging.warning("Not listing %s as it is not a catalog download link", entry.url)
                continue
            created.append(file_id)
            self.file_ids.append(file_id)

            listing_path = mod_dir / f"{file_id}.yaml"
            cached_path = self.database_dir / item_type / str(item_id) / f"{file_id}.yaml"
            if cached_path.exists():
                logging.debug("Copying file listing from %s for url %s", cached_path, entry.url)
                shutil.copyfile(cached_path, listing_path)
                continue

            logging.debug("Downloading %s to get its file listing...", entry.url)
            listing = self._list_archive(item_type, item_id, entry)
            self.codec.dump_file(listing, listing_path)

        self.codec.dump_file({"Name": name, "Files": created}, mod_dir / "info.yaml")

    def _list_archive(self, item_type: str, item_id: int, entry: CatalogFile) -> List[str]:
        try:
            path = self.context.downloader.fetch(entry.url, entry.size)
            with open_archive(path, self.context.events, source_url=entry.url) as archive:
                check_zip_signature(path)
                listing = list_files(archive)
        except UNREADABLE_ARCHIVE_ERRORS as exc:
            logging.warning("Could not analyze zip from %s: %s", entry.url, exc)
            self.context.events.emit(
                ARCHIVE_IS_UNREADABLE_FOR_LISTING,
                item_type=item_type,
                item_id=item_id,
                url=entry.url,
                error=exc,
            )
            return []

        logging.info("Found %s file(s) in %s.", len(listing), entry.url)
        self.context.events.emit(SCANNED_ZIP_CONTENTS, url=entry.url, file_count=len(listing))
        return listing

    def listing_path(self, item_type: str, item_id: int, file_id: str) -> Path:
        return self.temp_dir / item_type / str(item_id) / f"{file_id}.yaml"

    def save_to_disk(self, full: bool) -> None:
        with start_span(
            "files_database.save",
            {"updater.full": full, "files_database.mods": len(self.mods)},
        ):
            if not full:
                self._fill_in_gaps_for_incremental_update()

            ensure_dir(self.temp_dir)
            self.codec.dump_file(self.file_ids, self.temp_dir / "file_ids.yaml")
            self.codec.dump_file(self.mods, self.temp_dir / "list.yaml")

            self._check_plugins()

            remove_tree(self.database_dir)
            self.temp_dir.rename(self.database_dir)

    def _fill_in_gaps_for_incremental_update(self) -> None:
        seen = set(self.mods)
        previous = self.codec.load_file(self.database_dir / "list.yaml", [])
        for mod_key in previous:
            if mod_key in seen:
                continue
            info = self.codec.load_file(self.database_dir / mod_key / "info.yaml", {})
            logging.debug("Carrying over %s from the previous files database", mod_key)
            shutil.copytree(
                self.database_dir / mod_key,
                self.temp_dir / mod_key,
                dirs_exist_ok=True,
            )
            self.file_ids.extend(str(file_id) for file_id in info.get("Files") or [])
            self.mods.append(mod_key)

    def _check_plugins(self) -> None:
        self._save_vanilla_entities()
        for mod_key in self.mods:
            mod_dir = self.temp_dir / mod_key
            info = self.codec.load_file(mod_dir / "info.yaml", {})
            for file_id in info.get("Files") or []:
                self._check_ahorn_plugins(mod_key, mod_dir, str(file_id))
                self._check_loenn_plugins(mod_key, mod_dir, str(file_id))

    def _save_vanilla_entities(self) -> None:
        on_retry = self.context.events.retry_hook()
        ahorn = PluginEntities()
        for url, category_path in AHORN_VANILLA_SOURCES:
            text = get_text(self.context.session, url, self.context.policy, on_retry=on_retry)
            extract_ahorn_entities(text.splitlines(), category_path, ahorn)
        self.codec.dump_file(ahorn.to_dict(), self.temp_dir / "ahorn_vanilla.yaml")

        text = get_text(
            self.context.session, LOENN_VANILLA_SOURCE, self.context.policy, on_retry=on_retry
        )
        loenn = extract_loenn_entities(text.splitlines())
        self.codec.dump_file(loenn.to_dict(), self.temp_dir / "loenn_vanilla.yaml")

    def _check_ahorn_plugins(self, mod_key: str, mod_dir: Path, file_id: str) -> None:
        old_path = self.database_dir / mod_key / f"ahorn_{file_id}.yaml"
        target_path = mod_dir / f"ahorn_{file_id}.yaml"
        if old_path.exists():
            if not target_path.exists():
                shutil.copyfile(old_path, target_path)
            return

        file_list = self.codec.load_file(mod_dir / f"{file_id}.yaml", [])
        if not has_ahorn_plugins(file_list):
            return

        url = file_url(file_id)
        entities = PluginEntities()
        try:
            path = self.context.downloader.fetch(url)
            with open_archive(path, self.context.events) as archive:
                check_zip_signature(path)
                entities = scan_ahorn_archive(archive, file_list)
        except UNREADABLE_ARCHIVE_ERRORS + (KeyError,) as exc:
            logging.warning("Could not analyze Ahorn plugins from %s: %s", url, exc)
            self.context.events.emit(AHORN_PLUGIN_SCAN_ERROR, url=url, error=exc)
        else:
            logging.info(
                "Found %s Ahorn entities, %s triggers, %s effects in %s.",
                *entities.counts(),
                url,
            )
            self.context.events.emit(SCANNED_AHORN_ENTITIES, url=url, counts=entities.counts())
        self.codec.dump_file(entities.to_dict(), target_path)

    def _check_loenn_plugins(self, mod_key: str, mod_dir: Path, file_id: str) -> None:
        old_path = self.database_dir / mod_key / f"loenn_{file_id}.yaml"
        target_path = mod_dir / f"loenn_{file_id}.yaml"
        if old_path.exists():
            if not target_path.exists():
                shutil.copyfile(old_path, target_path)
            return

        file_list = self.codec.load_file(mod_dir / f"{file_id}.yaml", [])
        if not has_loenn_plugins(file_list):
            return

        url = file_url(file_id)
        try:
            path = self.context.downloader.fetch(url)
            with open_archive(path, self.context.events) as archive:
                check_zip_signature(path)
                entities = scan_loenn_archive(archive)
        except UNREADABLE_ARCHIVE_ERRORS + (KeyError,) as exc:
            logging.warning("Could not analyze Lönn plugins from %s: %s", url, exc)
            self.context.events.emit(LOENN_PLUGIN_SCAN_ERROR, url=url, error=exc)
            return

        logging.info(
            "Found %s Lönn entities, %s triggers, %s effects in %s.",
            *entities.counts(),
            url,
        )
        self.context.events.emit(SCANNED_LOENN_ENTITIES, url=url, counts=entities.counts())
        self.codec.dump_file(entities.to_dict(), target_path)
