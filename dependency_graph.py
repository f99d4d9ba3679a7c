from __future__ import annotations

from typing import Any, Dict
import logging

from archive import UNREADABLE_ARCHIVE_ERRORS, check_zip_signature, open_archive
from context import UpdaterContext
from events import DEPENDENCY_TREE_SCAN_ERROR, SCANNED_MOD_DEPENDENCIES
from exceptions import ManifestError
from manifest import MANIFEST_ERRORS, merge_dependencies, read_manifest
from telemetry import start_span


def update_dependency_graph(context: UpdaterContext) -> None:
    """Rewrite ``moddependencygraph.yaml`` from the current mod database.

    Entries whose name and URL did not change are carried over as they are;
    every other mod gets its archive downloaded and its manifest merged.
    """
    paths = context.paths
    codec = context.codec
    url_field = "MirrorURL" if context.config.main_server_is_mirror else "URL"

    with start_span("dependency_graph.update"):
        logging.debug("Loading mod databases...")
        old_graph: Dict[str, Dict[str, Any]] = codec.load_file(paths.dependency_graph, {}) or {}
        database: Dict[str, Dict[str, Any]] = codec.load_file(paths.mod_database, {}) or {}

        new_graph: Dict[str, Dict[str, Any]] = {}
        for name, record in database.items():
            url = str(record.get(url_field) or record.get("URL"))
            previous = old_graph.get(name)
            if previous is not None and previous.get("URL") == url:
                logging.debug("%s is already in the dependency graph, copying its data", name)
                new_graph[name] = previous
                continue

            dependencies, optional = _scan_dependencies(
                context, name, url, int(record.get("Size") or 0)
            )
            new_graph[name] = {
                "URL": url,
                "Dependencies": dependencies,
                "OptionalDependencies": optional,
            }

        logging.debug("Writing dependency graph...")
        codec.dump_file_atomic(new_graph, paths.dependency_graph)


def _scan_dependencies(
    context: UpdaterContext, name: str, url: str, size: int
) -> tuple[Dict[str, str], Dict[str, str]]:
    try:
        path = context.downloader.fetch(url, size)
        with open_archive(path, context.events) as archive:
            check_zip_signature(path)
            entries = read_manifest(archive, context.codec)
        if entries is None:
            raise ManifestError(f"{url} has no manifest")
        dependencies, optional = merge_dependencies(entries)
    except UNREADABLE_ARCHIVE_ERRORS + MANIFEST_ERRORS as exc:
        logging.warning("Could not analyze dependency tree from %s: %s", name, exc)
        context.events.emit(DEPENDENCY_TREE_SCAN_ERROR, name=name, error=exc)
        return {}, {}

    logging.info(
        "Found %s dependencies and %s optional dependencies for %s.",
        len(dependencies),
        len(optional),
        name,
    )
    context.events.emit(
        SCANNED_MOD_DEPENDENCIES,
        name=name,
        dependencies=len(dependencies),
        optional_dependencies=len(optional),
    )
    return dependencies, optional
