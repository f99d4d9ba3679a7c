from __future__ import annotations

from typing import Any, Callable, Dict, List
import logging

Subscriber = Callable[[str, Dict[str, Any]], None]

# Event names emitted by the crawl, the builders and the mirrors.
STARTED_SEARCHING_FOR_UPDATES = "started_searching_for_updates"
ENDED_SEARCHING_FOR_UPDATES = "ended_searching_for_updates"
UPLOADED_MOD_TO_MIRROR = "uploaded_mod_to_mirror"
DELETED_MOD_FROM_MIRROR = "deleted_mod_from_mirror"
UPLOADED_IMAGE_TO_MIRROR = "uploaded_image_to_mirror"
DELETED_IMAGE_FROM_MIRROR = "deleted_image_from_mirror"
UPLOADED_ICON_TO_MIRROR = "uploaded_rich_presence_icon_to_mirror"
DELETED_ICON_FROM_MIRROR = "deleted_rich_presence_icon_from_mirror"
SAVED_NEW_INFORMATION = "saved_new_information_to_database"
SCANNED_ZIP_CONTENTS = "scanned_zip_contents"
SCANNED_AHORN_ENTITIES = "scanned_ahorn_entities"
SCANNED_LOENN_ENTITIES = "scanned_loenn_entities"
SCANNED_MOD_DEPENDENCIES = "scanned_mod_dependencies"
MOD_UPDATED_INCREMENTALLY = "mod_updated_incrementally"
MOD_HAS_NO_MANIFEST = "mod_has_no_manifest"
ARCHIVE_IS_NOT_UTF8 = "archive_is_not_utf8"
ARCHIVE_IS_UNREADABLE = "archive_is_unreadable"
ARCHIVE_IS_UNREADABLE_FOR_LISTING = "archive_is_unreadable_for_file_listing"
MORE_RECENT_FILE_EXISTS = "more_recent_file_already_exists"
BELONGS_TO_ANOTHER_MOD = "current_version_belongs_to_another_mod"
MOD_IS_EXCLUDED_BY_NAME = "mod_is_excluded_by_name"
MANIFEST_IS_UNREADABLE = "manifest_is_unreadable"
MOD_DELETED_FROM_DATABASE = "mod_was_deleted_from_database"
MOD_DELETED_FROM_EXCLUDED = "mod_was_deleted_from_excluded_file_list"
MOD_DELETED_FROM_NO_MANIFEST = "mod_was_deleted_from_no_manifest_list"
RETRIED_IO_ERROR = "retried_io_error"
DEPENDENCY_TREE_SCAN_ERROR = "dependency_tree_scan_error"
AHORN_PLUGIN_SCAN_ERROR = "ahorn_plugin_scan_error"
LOENN_PLUGIN_SCAN_ERROR = "loenn_plugin_scan_error"
UNCAUGHT_ERROR = "uncaught_error"


class EventHub:
    """Fans every event out to the registered subscribers.

    Subscribers are purely observational: their return values are ignored and
    a failing subscriber never interrupts the crawl.
    """

    def __init__(self, subscribers: List[Subscriber] | None = None) -> None:
        self.subscribers: List[Subscriber] = list(subscribers or [])

    def subscribe(self, subscriber: Subscriber) -> None:
        self.subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self.subscribers:
            self.subscribers.remove(subscriber)

    def emit(self, event: str, /, **payload: Any) -> None:
        for subscriber in list(self.subscribers):
            try:
                subscriber(event, payload)
            except Exception:
                logging.exception("Event subscriber failed on %s", event)

    def retry_hook(self) -> Callable[[BaseException], None]:
        def on_retry(exc: BaseException) -> None:
            self.emit(RETRIED_IO_ERROR, error=exc)

        return on_retry


class LoggingSubscriber:
    def __call__(self, name: str, payload: Dict[str, Any]) -> None:
        if payload:
            details = ", ".join(f"{key}={value}" for key, value in payload.items())
            logging.debug("Event %s: %s", name, details)
        else:
            logging.debug("Event %s", name)

