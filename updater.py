from __future__ import annotations

from typing import Dict, List, Set
import logging
import time
import traceback

from archive import (
    UNREADABLE_ARCHIVE_ERRORS,
    check_zip_signature,
    find_manifest,
    open_archive,
)
from context import UpdaterContext
from dependency_graph import update_dependency_graph
from events import (
    ARCHIVE_IS_UNREADABLE,
    BELONGS_TO_ANOTHER_MOD,
    ENDED_SEARCHING_FOR_UPDATES,
    MANIFEST_IS_UNREADABLE,
    MOD_DELETED_FROM_DATABASE,
    MOD_DELETED_FROM_EXCLUDED,
    MOD_DELETED_FROM_NO_MANIFEST,
    MOD_HAS_NO_MANIFEST,
    MOD_IS_EXCLUDED_BY_NAME,
    MOD_UPDATED_INCREMENTALLY,
    MORE_RECENT_FILE_EXISTS,
    SAVED_NEW_INFORMATION,
    STARTED_SEARCHING_FOR_UPDATES,
)
from file_database import FilesDatabaseBuilder
from manifest import MANIFEST_ERRORS, parse_manifest
from mirror import run_mirrors
from models import CandidateFiles, CatalogItem, ModRecord
from search_database import SearchDatabaseBuilder
from state import CrawlState, commit_state, load_state, save_state
from telemetry import start_span
from utils import GAMEBANANA_LINK_IN_TEXT, compute_xxhash, file_url


class DatabaseUpdater:
    """Walks the catalog and keeps the mod database in sync with it.

    The databases are only read from disk when a sweep actually needs them,
    so an incremental run that finds nothing new never touches them.
    """

    def __init__(self, context: UpdaterContext, state: CrawlState) -> None:
        self.context = context
        self.state = state
        self.events = context.events
        self.codec = context.codec
        self.paths = context.paths

        self.database: Dict[str, ModRecord] = {}
        self.excluded: Dict[str, str] = {}
        self.no_manifest: Set[str] = set()
        self.loaded = False
        self.downloaded_count = 0

        self.files_database = FilesDatabaseBuilder(context)
        self.search_database = SearchDatabaseBuilder(context, self.files_database)

    @property
    def changed(self) -> bool:
        return self.loaded and bool(self.database)

    def run(self, full: bool) -> None:
        self.state.advance_page_sizes()
        logging.info(
            "Page sizes for this run: full = %s, incremental = %s",
            self.state.full_page_size,
            self.state.incremental_page_size,
        )

        if full:
            self.run_full_sweep()
        else:
            self.run_incremental_sweep()

        if not self.loaded:
            logging.info("Nothing changed on the catalog since last run")
            return

        # the files database merges the carried-over mods, deletion checks need that
        self.files_database.save_to_disk(full)
        self.search_database.save(full)
        self.check_for_mod_deletion()
        self.save_databases()

    # databases

    def load_databases(self) -> None:
        if self.loaded:
            return
        logging.info("Loading mod database")
        raw_database = self.codec.load_file(self.paths.mod_database, {}) or {}
        self.database = {
            str(name): ModRecord.from_dict(str(name), data)
            for name, data in raw_database.items()
        }
        self.excluded = {
            str(url): str(reason)
            for url, reason in (self.codec.load_file(self.paths.excluded_files, {}) or {}).items()
        }
        self.no_manifest = {
            str(url) for url in self.codec.load_file(self.paths.no_manifest_files, []) or []
        }
        self.loaded = True

    def save_databases(self) -> None:
        logging.info(
            "Saving mod database (%s mods, %s excluded files, %s files without manifest)",
            len(self.database),
            len(self.excluded),
            len(self.no_manifest),
        )
        mirror_base = self.context.config.mirror_url
        self.codec.dump_file(
            {name: self.database[name].to_dict(mirror_base) for name in sorted(self.database)},
            self.paths.mod_database,
        )
        self.codec.dump_file(
            {url: self.excluded[url] for url in sorted(self.excluded)},
            self.paths.excluded_files,
        )
        self.codec.dump_file(sorted(self.no_manifest), self.paths.no_manifest_files)

    # sweeps

    def run_full_sweep(self) -> None:
        self.load_databases()
        for category in self.context.config.categories:
            with start_span("updater.full_sweep", {"catalog.category": category}):
                self._crawl_category_fully(category)

    def run_incremental_sweep(self) -> None:
        for category in self.context.config.categories:
            with start_span("updater.incremental_sweep", {"catalog.category": category}):
                self._crawl_category_incrementally(category)

    def _crawl_category_fully(self, category: str) -> None:
        catalog = self.context.catalog
        recent = catalog.list_recently_modified(category, 1, self.state.incremental_page_size)
        if recent:
            watermark = int(recent[0].get("_tsDateModified") or 0)
            self.state.most_recent_updated_dates[category] = watermark
            logging.info("Most recent modification of %s is now %s", category, watermark)

        page = 1
        while True:
            logging.info("Loading page %s of %s...", page, category)
            items = catalog.list_items(category, page, self.state.full_page_size)
            if not items:
                break
            for data in items:
                self.read_mod_info(CatalogItem.from_json(category, data))
            page += 1

    def _crawl_category_incrementally(self, category: str) -> None:
        watermark = self.state.most_recent_updated_dates.get(category)
        if watermark is None:
            logging.warning(
                "No last modification date known for %s, waiting for a full sweep", category
            )
            return

        catalog = self.context.catalog
        most_recent = watermark
        page = 1
        while True:
            records = catalog.list_recently_modified(
                category, page, self.state.incremental_page_size
            )
            if not records:
                break

            for record in records:
                modified = int(record.get("_tsDateModified") or 0)
                if modified <= watermark:
                    self.state.most_recent_updated_dates[category] = most_recent
                    return

                item_id = int(record.get("_idRow") or 0)
                logging.info("%s %s was modified at %s, checking it", category, item_id, modified)
                most_recent = max(most_recent, modified)
                self.load_databases()
                details = catalog.get_item(category, item_id)
                self.read_mod_info(CatalogItem.from_json(category, details))
                self.events.emit(
                    MOD_UPDATED_INCREMENTALLY,
                    item_type=category,
                    item_id=item_id,
                    modified=modified,
                )
            page += 1

        self.state.most_recent_updated_dates[category] = most_recent

    # items and files

    def read_mod_info(self, item: CatalogItem) -> None:
        collected = CandidateFiles.collect(item.files, self.no_manifest)
        if collected.candidate is None:
            logging.debug("%s has no file worth checking", item.key)
        else:
            for entry in collected.files:
                self.consider_file(
                    entry.date_added, entry.url, entry.size, item.item_type, item.item_id
                )

        self.files_database.add_mod(item.item_type, item.item_id, item.name, item.files)
        self.search_database.add_mod(item)

    def consider_file(
        self, timestamp: int, url: str, size: int, item_type: str, item_id: int
    ) -> None:
        if url in self.excluded:
            logging.debug("Skipping %s: file is excluded", url)
            return
        if url in self.no_manifest:
            logging.debug("Skipping %s: file has no manifest", url)
            return

        matching = [record for record in self.database.values() if record.url == url]
        if matching:
            for record in matching:
                record.update_gamebanana_ids(item_type, item_id, size)
            return

        logging.info("=> Checking %s (%s %s)", url, item_type, item_id)
        self.downloaded_count += 1
        try:
            path = self.context.downloader.fetch(url, size)
            checksum = compute_xxhash(path)
            with open_archive(path, self.events) as archive:
                check_zip_signature(path)
                manifest_name = find_manifest(archive)
                if manifest_name is None:
                    logging.warning("=> %s has no manifest, adding it to the no-manifest list", url)
                    self.no_manifest.add(url)
                    self.events.emit(
                        MOD_HAS_NO_MANIFEST, url=url, item_type=item_type, item_id=item_id
                    )
                    return
                raw_manifest = archive.read(manifest_name)
        except UNREADABLE_ARCHIVE_ERRORS as exc:
            logging.warning("=> Could not read %s, adding it to the excluded files: %s", url, exc)
            self.excluded[url] = traceback.format_exc()
            self.events.emit(
                ARCHIVE_IS_UNREADABLE, url=url, item_type=item_type, item_id=item_id, error=exc
            )
            return

        try:
            entries = parse_manifest(raw_manifest, self.codec)
        except MANIFEST_ERRORS as exc:
            logging.warning("=> Manifest of %s is invalid, excluding the file: %s", url, exc)
            self.excluded[url] = traceback.format_exc()
            self.events.emit(
                MANIFEST_IS_UNREADABLE, url=url, item_type=item_type, item_id=item_id, error=exc
            )
            return

        for entry in entries:
            record = ModRecord(
                name=entry.name,
                version=entry.version,
                url=url,
                last_update=timestamp,
                xx_hash=[checksum],
                gamebanana_type=item_type,
                gamebanana_id=item_id,
                size=size,
            )
            existing = self.database.get(entry.name)

            if existing is not None and existing.last_update > timestamp:
                logging.warning(
                    "=> %s is already known from a more recent file: %s", entry.name, existing
                )
                self.excluded[url] = f"File {existing.url} has same mod ID and is more recent"
                self.events.emit(MORE_RECENT_FILE_EXISTS, url=url, existing=str(existing))
            elif existing is not None and not existing.belongs_to(item_type, item_id):
                logging.warning("=> %s already belongs to another mod: %s", entry.name, existing)
                self.excluded[url] = (
                    f"File {existing.url} is already in the database and belongs to another mod"
                )
                self.events.emit(BELONGS_TO_ANOTHER_MOD, url=url, existing=str(existing))
            elif entry.name in self.excluded:
                logging.warning("=> %s is excluded by name, not saving %s", entry.name, url)
                self.events.emit(MOD_IS_EXCLUDED_BY_NAME, url=url, name=entry.name)
            else:
                self.database[entry.name] = record
                logging.info("=> Saved new information to database: %s", record)
                self.events.emit(SAVED_NEW_INFORMATION, record=str(record))

    # reconciliation

    def check_for_mod_deletion(self) -> None:
        existing = {file_url(file_id) for file_id in self.files_database.file_ids}

        for name in [name for name, record in self.database.items() if record.url not in existing]:
            record = self.database.pop(name)
            logging.warning("%s was deleted from the catalog, removing it from the database", record)
            self.events.emit(MOD_DELETED_FROM_DATABASE, record=str(record))

        removed: List[str] = []
        for key, reason in self.excluded.items():
            if key.startswith(("http://", "https://")) and key not in existing:
                removed.append(key)
                continue
            match = GAMEBANANA_LINK_IN_TEXT.fullmatch(reason)
            if match and match.group(1) not in existing:
                removed.append(key)
        for key in removed:
            logging.warning("Removing %s from the excluded files, its file no longer exists", key)
            del self.excluded[key]
            self.events.emit(MOD_DELETED_FROM_EXCLUDED, url=key)

        for url in sorted(url for url in self.no_manifest if url not in existing):
            logging.warning("Removing %s from the no-manifest list, it no longer exists", url)
            self.no_manifest.discard(url)
            self.events.emit(MOD_DELETED_FROM_NO_MANIFEST, url=url)


def update_database(context: UpdaterContext, full: bool) -> None:
    """Run one complete cycle: sweep, save, mirror, graph and commit the state."""
    logging.info("=== Started searching for updates (full = %s)", full)
    context.events.emit(STARTED_SEARCHING_FOR_UPDATES, full=full)
    started = time.monotonic()

    with start_span("updater.run", {"updater.full": full}):
        paths = context.paths
        state = load_state(paths.state, context.codec)
        updater = DatabaseUpdater(context, state)
        updater.run(full)
        save_state(paths.state_temp, state, context.codec)

        if updater.changed:
            if context.config.mirror is not None:
                run_mirrors(context)
            update_dependency_graph(context)

        context.downloader.cleanup()
        commit_state(paths.state_temp, paths.state)

    elapsed = time.monotonic() - started
    logging.info(
        "=== Ended searching for updates in %.1f s, %s file(s) downloaded",
        elapsed,
        updater.downloaded_count,
    )
    context.events.emit(
        ENDED_SEARCHING_FOR_UPDATES,
        full=full,
        elapsed=elapsed,
        downloaded=updater.downloaded_count,
    )
