from __future__ import annotations

import io
import json
import struct
import zipfile
from pathlib import Path
from typing import Any, Dict, List

import pytest
import requests

from config import DEFAULT_MIRROR_IMAGES_URL, DEFAULT_MIRROR_URL, Config, MirrorConfig
from context import DataPaths, UpdaterContext
from downloader import FileDownloader
from events import EventHub
from http_utils import RetryPolicy
from storage import YamlCodec


class RecordingSubscriber:
    """Keeps every event it receives, in order."""

    def __init__(self) -> None:
        self.events: List[tuple[str, Dict[str, Any]]] = []

    def __call__(self, name: str, payload: Dict[str, Any]) -> None:
        self.events.append((name, payload))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> List[Dict[str, Any]]:
        return [payload for event, payload in self.events if event == name]


class FakeResponse:
    def __init__(self, url: str, body: bytes = b"", status_code: int = 200) -> None:
        self.url = url
        self.content = body
        self.status_code = status_code
        self.encoding = "utf-8"

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start : start + chunk_size]

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding)

    def json(self) -> Any:
        return json.loads(self.content)

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code} for {self.url}", response=self)

    def close(self) -> None:
        pass


class FakeSession:
    """Serves canned bodies by URL.

    A route may be bytes, an int status code, an exception instance, or a
    list of those consumed one call at a time. Unknown URLs get ``default``.
    """

    def __init__(self, routes: Dict[str, Any] | None = None, default: bytes = b"") -> None:
        self.routes: Dict[str, Any] = dict(routes or {})
        self.default = default
        self.calls: List[str] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(url)
        route = self.routes.get(url, self.default)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, int):
            return FakeResponse(url, b"", route)
        return FakeResponse(url, route)

    def close(self) -> None:
        pass


class FakeCatalog:
    def __init__(self) -> None:
        self.items: Dict[str, List[Dict[str, Any]]] = {}
        self.recent: Dict[str, List[Dict[str, Any]]] = {}
        self.profiles: Dict[tuple[str, int], Dict[str, Any]] = {}
        self.categories: List[Dict[str, Any]] = [
            {"_idRow": 1, "_idParentCategoryRow": 0, "_sName": "Maps"}
        ]
        self.top_picks: Dict[str, List[Dict[str, Any]]] = {}
        self.requested_items: List[tuple[str, int]] = []

    @staticmethod
    def _page(entries: List[Dict[str, Any]], page: int, per_page: int) -> List[Dict[str, Any]]:
        start = (page - 1) * per_page
        return entries[start : start + per_page]

    def list_items(self, category: str, page: int, per_page: int) -> List[Dict[str, Any]]:
        return self._page(self.items.get(category, []), page, per_page)

    def list_recently_modified(
        self, category: str, page: int, per_page: int
    ) -> List[Dict[str, Any]]:
        return self._page(self.recent.get(category, []), page, per_page)

    def get_item(self, category: str, item_id: int) -> Dict[str, Any]:
        self.requested_items.append((category, item_id))
        for item in self.items.get(category, []):
            if item["_idRow"] == item_id:
                return item
        raise KeyError(item_id)

    def get_profile_page(self, item_type: str, item_id: int) -> Dict[str, Any]:
        return self.profiles.get((item_type, item_id), {})

    def list_categories(self, item_type: str) -> List[Dict[str, Any]]:
        return self.categories

    def get_top_picks(self) -> Dict[str, List[Dict[str, Any]]]:
        return self.top_picks


class FakeRemoteStore:
    def __init__(self) -> None:
        self.files: Dict[tuple[str, str], bytes] = {}
        self.puts: List[tuple[str, str]] = []
        self.removes: List[tuple[str, str]] = []

    def put(self, local_path: Path, remote_name: str, directory: str) -> None:
        self.files[(directory, remote_name)] = Path(local_path).read_bytes()
        self.puts.append((remote_name, directory))

    def remove(self, remote_name: str, directory: str) -> None:
        self.files.pop((directory, remote_name), None)
        self.removes.append((remote_name, directory))


def make_zip_bytes(files: Dict[str, bytes | str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def mark_encrypted(data: bytes, name: str) -> bytes:
    """Set the encryption flag of entry ``name`` in the central directory."""
    result = bytearray(data)
    position = result.find(b"PK\x01\x02")
    while position != -1:
        name_length, extra_length, comment_length = struct.unpack_from(
            "<HHH", result, position + 28
        )
        if result[position + 46 : position + 46 + name_length] == name.encode():
            (flags,) = struct.unpack_from("<H", result, position + 8)
            struct.pack_into("<H", result, position + 8, flags | 0x1)
        position = result.find(
            b"PK\x01\x02", position + 46 + name_length + extra_length + comment_length
        )
    return bytes(result)


def mod_zip(manifest: str | None, extra: Dict[str, bytes | str] | None = None) -> bytes:
    files: Dict[str, bytes | str] = dict(extra or {})
    if manifest is not None:
        files["everest.yaml"] = manifest
    if not files:
        files["readme.txt"] = "nothing to see here"
    return make_zip_bytes(files)


def catalog_file(file_id: int, date_added: int, size: int) -> Dict[str, Any]:
    return {
        "_idRow": file_id,
        "_sFile": f"file_{file_id}.zip",
        "_nFilesize": size,
        "_tsDateAdded": date_added,
        "_sDownloadUrl": f"https://gamebanana.com/dl/{file_id}",
        "_nDownloadCount": 0,
        "_sDescription": "",
    }


def catalog_item(
    item_id: int,
    files: List[Dict[str, Any]],
    name: str = "",
    modified: int = 0,
    nsfw: bool = False,
    category_id: int = 1,
    screenshots: List[str] | None = None,
) -> Dict[str, Any]:
    images = [
        {"_sBaseUrl": url.rsplit("/", 1)[0], "_sFile": url.rsplit("/", 1)[1]}
        for url in screenshots or []
    ]
    return {
        "_idRow": item_id,
        "_sName": name or f"Item {item_id}",
        "_aFiles": files,
        "_aSubmitter": {"_sName": "someone"},
        "_sDescription": "",
        "_sText": "text",
        "_aCategory": {"_idRow": category_id},
        "_tsDateAdded": 1,
        "_tsDateModified": modified,
        "_tsDateUpdated": modified,
        "_aPreviewMedia": {"_aImages": images},
        "_sProfileUrl": f"https://gamebanana.com/mods/{item_id}",
        "_bIsNsfw": nsfw,
    }


def make_config(tmp_path: Path, **overrides: Any) -> Config:
    values: Dict[str, Any] = dict(
        data_dir=str(tmp_path / "data"),
        temp_dir=str(tmp_path / "tmp"),
        update_rate=30,
        full_every=1,
        run_once=True,
        log_level="DEBUG",
        game_id=6460,
        categories=["Mod"],
        http_retries=0,
        http_backoff=0.0,
        connect_timeout=1,
        read_timeout=1,
        user_agent="test-agent",
        main_server_is_mirror=False,
        mirror_url=DEFAULT_MIRROR_URL,
        mirror_images_url=DEFAULT_MIRROR_IMAGES_URL,
        mirror=None,
    )
    values.update(overrides)
    return Config(**values)


def make_mirror_config() -> MirrorConfig:
    return MirrorConfig(
        host="mirror.example.org",
        port=22,
        username="updater",
        password="secret",
        known_hosts="/nonexistent/known_hosts",
        directory="banana-mirror",
        images_directory="banana-mirror-images",
        icons_directory="rich-presence-icons",
    )


@pytest.fixture
def recorder() -> RecordingSubscriber:
    return RecordingSubscriber()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def make_context(tmp_path, recorder, session, catalog):
    def factory(**config_overrides: Any) -> UpdaterContext:
        config = make_config(tmp_path, **config_overrides)
        policy = RetryPolicy(retries=config.http_retries, backoff=0.0)
        events = EventHub([recorder])
        return UpdaterContext(
            config=config,
            paths=DataPaths(Path(config.data_dir)),
            events=events,
            codec=YamlCodec(),
            policy=policy,
            session=session,
            downloader=FileDownloader(session, policy, Path(config.temp_dir), events),
            catalog=catalog,
        )

    return factory


@pytest.fixture
def context(make_context) -> UpdaterContext:
    return make_context()
