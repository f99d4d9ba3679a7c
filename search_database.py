from __future__ import annotations

from typing import Any, Dict, List, Set
import html
import logging

from archive import MANIFEST_NAMES
from context import UpdaterContext
from file_database import FilesDatabaseBuilder
from models import CatalogFile, CatalogItem
from telemetry import start_span
from utils import screenshot_id

NSFW_PLACEHOLDER = "https://images.gamebanana.com/static/img/DefaultEmbeddables/nsfw.jpg"
MIRRORED_SCREENSHOTS = 2

# root categories whose subcategories are listed separately: (item type, category id)
CATEGORIES_ALLOWED_TO_HAVE_SUBCATEGORIES = {("Mod", 6800)}


class SearchDatabaseBuilder:
    """Collects the metadata of every visited catalog item for ``modsearchdatabase.yaml``."""

    def __init__(self, context: UpdaterContext, files_database: FilesDatabaseBuilder) -> None:
        self.context = context
        self.files_database = files_database
        self.entries: List[Dict[str, Any]] = []
        self.nsfw_mods: Set[str] = set()

    def add_mod(self, item: CatalogItem) -> None:
        content_warning_prefix = ""
        redact_screenshots = False

        if item.is_nsfw:
            profile = self.context.catalog.get_profile_page(item.item_type, item.item_id)
            redact_screenshots = profile.get("_sInitialVisibility") != "show"
            ratings = profile.get("_aContentRatings") or {}
            warnings = [str(value) for value in (ratings.values() if isinstance(ratings, dict) else ratings)]
            plural = "" if len(warnings) == 1 else "s"
            escaped = html.escape(", ".join(warnings), quote=False).replace('"', "&quot;")
            content_warning_prefix = f"<b>Content Warning{plural}: {escaped}</b><br><br>"

        if redact_screenshots:
            screenshots = [NSFW_PLACEHOLDER]
            self.nsfw_mods.add(item.key)
        else:
            screenshots = list(item.screenshots)

        mirror_base = self.context.config.mirror_images_url.rstrip("/")
        self.entries.append(
            {
                "PageURL": item.profile_url,
                "GameBananaType": item.item_type,
                "GameBananaId": item.item_id,
                "Name": item.name,
                "Author": item.author,
                "Description": item.description,
                "Likes": item.likes,
                "Views": item.views,
                "Downloads": item.downloads,
                "Text": content_warning_prefix + item.text,
                "CreatedDate": item.date_added,
                "ModifiedDate": item.date_modified,
                "UpdatedDate": item.date_updated,
                "Screenshots": screenshots,
                "MirroredScreenshots": [
                    f"{mirror_base}/{screenshot_id(url)}"
                    for url in screenshots[:MIRRORED_SCREENSHOTS]
                ],
                "Files": [self._file_info(item, entry) for entry in item.files],
                "CategoryId": item.category_id,
                "CategoryName": None,
            }
        )

    def _file_info(self, item: CatalogItem, entry: CatalogFile) -> Dict[str, Any]:
        listing_path = self.files_database.listing_path(
            item.item_type, item.item_id, str(entry.file_id)
        )
        listing = self.context.codec.load_file(listing_path, [])
        return {
            "URL": entry.catalog_url,
            "Name": entry.name,
            "Size": entry.size,
            "CreatedDate": entry.date_added,
            "Downloads": entry.downloads,
            "Description": entry.description,
            "HasEverestYaml": any(name in listing for name in MANIFEST_NAMES),
        }

    def save(self, full: bool) -> None:
        with start_span("search_database.save", {"updater.full": full}):
            for item_type in sorted({entry["GameBananaType"] for entry in self.entries}):
                self._assign_category_names(item_type)

            for entry in self.entries:
                if entry["CategoryName"] is None:
                    logging.warning(
                        "No category found for %s %s",
                        entry["GameBananaType"],
                        entry["GameBananaId"],
                    )
                    entry["CategoryName"] = "Unknown"

            self._mark_featured()

            database = list(self.entries)
            if not full:
                self._fill_in_gaps_for_incremental_update(database)

            logging.debug("Saving mod search database")
            paths = self.context.paths
            self.context.codec.dump_file(database, paths.search_database)
            self.context.codec.dump_file(sorted(self.nsfw_mods), paths.nsfw_mods)
            self.entries = []

    def _mark_featured(self) -> None:
        logging.debug("Getting list of featured mods...")
        featured = self.context.catalog.get_top_picks()
        if not isinstance(featured, dict):
            return
        for category, picks in featured.items():
            for position, pick in enumerate(picks or []):
                item_type = pick.get("_sModelName")
                item_id = int(pick.get("_idRow") or 0)
                for entry in self.entries:
                    if entry["GameBananaType"] == item_type and entry["GameBananaId"] == item_id:
                        entry["Featured"] = {"Category": category, "Position": position}

    def _assign_category_names(self, item_type: str) -> None:
        logging.debug("Getting %s category names...", item_type)
        categories = self.context.catalog.list_categories(item_type)

        names: Dict[int, str] = {}
        parents: Dict[int, int] = {}
        subcategories: Dict[int, Dict[int, str]] = {}
        for category in categories:
            category_id = int(category.get("_idRow") or 0)
            parent_id = int(category.get("_idParentCategoryRow") or 0)
            name = str(category.get("_sName") or "")
            if parent_id == 0:
                names[category_id] = name
            elif (item_type, parent_id) in CATEGORIES_ALLOWED_TO_HAVE_SUBCATEGORIES:
                subcategories.setdefault(parent_id, {})[category_id] = name
            else:
                parents[category_id] = parent_id

        for parent_id, children in subcategories.items():
            parent_name = names.get(parent_id)
            for child_id, child_name in children.items():
                names[child_id] = f"{parent_name} – {child_name}"
            names[parent_id] = f"{parent_name} – Uncategorized"

        for entry in self.entries:
            if entry["GameBananaType"] != item_type:
                continue
            category_id = entry["CategoryId"]
            visited = {category_id}
            while category_id in parents and parents[category_id] not in visited:
                category_id = parents[category_id]
                visited.add(category_id)
            entry["CategoryId"] = category_id
            entry["CategoryName"] = names.get(category_id)

    def _fill_in_gaps_for_incremental_update(self, database: List[Dict[str, Any]]) -> None:
        logging.debug("Loading old mod search database...")
        codec = self.context.codec
        seen = {(entry["GameBananaType"], entry["GameBananaId"]) for entry in database}
        for old_entry in codec.load_file(self.context.paths.search_database, []):
            key = (old_entry.get("GameBananaType"), old_entry.get("GameBananaId"))
            if key not in seen:
                database.append(old_entry)
        self.nsfw_mods.update(codec.load_file(self.context.paths.nsfw_mods, []))
