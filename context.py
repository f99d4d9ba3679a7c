from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import requests

from config import Config
from downloader import FileDownloader
from events import EventHub, LoggingSubscriber
from gamebanana import GameBananaClient
from http_utils import RetryPolicy, build_session
from storage import YamlCodec


@dataclass
class DataPaths:
    root: Path

    @property
    def uploads(self) -> Path:
        return self.root / "uploads"

    @property
    def mod_database(self) -> Path:
        return self.uploads / "everestupdate.yaml"

    @property
    def excluded_files(self) -> Path:
        return self.uploads / "everestupdateexcluded.yaml"

    @property
    def no_manifest_files(self) -> Path:
        return self.uploads / "everestupdatenoyaml.yaml"

    @property
    def dependency_graph(self) -> Path:
        return self.uploads / "moddependencygraph.yaml"

    @property
    def search_database(self) -> Path:
        return self.uploads / "modsearchdatabase.yaml"

    @property
    def nsfw_mods(self) -> Path:
        return self.uploads / "nsfw_mods.yaml"

    @property
    def state(self) -> Path:
        return self.root / "update_checker_state.yaml"

    @property
    def state_temp(self) -> Path:
        return self.root / "update_checker_state_temp.yaml"

    @property
    def files_database(self) -> Path:
        return self.root / "modfilesdatabase"

    @property
    def files_database_temp(self) -> Path:
        return self.root / "modfilesdatabase_temp"

    @property
    def archive_mirror_index(self) -> Path:
        return self.root / "banana_mirror.yaml"

    @property
    def image_mirror_index(self) -> Path:
        return self.root / "banana_mirror_images.yaml"

    @property
    def icon_mirror_index(self) -> Path:
        return self.root / "banana_mirror_rich_presence_icons.yaml"


@dataclass
class UpdaterContext:
    """Everything one run shares: settings, event fan-out, the YAML codec and clients."""

    config: Config
    paths: DataPaths
    events: EventHub
    codec: YamlCodec
    policy: RetryPolicy
    session: requests.Session
    downloader: FileDownloader
    catalog: GameBananaClient

    @property
    def temp_dir(self) -> Path:
        return Path(self.config.temp_dir)

    @classmethod
    def create(cls, config: Config, events: EventHub | None = None) -> "UpdaterContext":
        if events is None:
            events = EventHub([LoggingSubscriber()])
        policy = RetryPolicy(
            retries=config.http_retries,
            backoff=config.http_backoff,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
        )
        session = build_session(config.user_agent)
        temp_dir = Path(config.temp_dir)
        return cls(
            config=config,
            paths=DataPaths(Path(config.data_dir)),
            events=events,
            codec=YamlCodec(),
            policy=policy,
            session=session,
            downloader=FileDownloader(session, policy, temp_dir, events),
            catalog=GameBananaClient(session, policy, config.game_id, events),
        )
