from dataclasses import dataclass
import os
import re

DEFAULT_DATA_DIR = "/data/update-checker"
DEFAULT_TEMP_DIR = "/tmp"
DEFAULT_UPDATE_RATE = 30
DEFAULT_FULL_EVERY = 1
DEFAULT_GAME_ID = 6460
DEFAULT_CATEGORIES = "Mod,Tool,Wip"
DEFAULT_HTTP_RETRIES = 2
DEFAULT_HTTP_BACKOFF = 5.0
DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_READ_TIMEOUT = 30
DEFAULT_USER_AGENT = "Everest-Update-Checker/0.5.0 (+https://github.com/maddie480/EverestUpdateCheckerServer)"
DEFAULT_MIRROR_URL = "https://celestemodupdater.0x0a.de/banana-mirror/"
DEFAULT_MIRROR_IMAGES_URL = "https://celestemodupdater.0x0a.de/banana-mirror-images/"
DEFAULT_MIRROR_PORT = 22
DEFAULT_LOG_LEVEL = "INFO"


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_int(value: str | None, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_list(value: str | None) -> list[str]:
    if not value:
        return []
    parts = re.split(r"[,\s]+", value.strip())
    return [part for part in (p.strip() for p in parts) if part]


@dataclass
class MirrorConfig:
    host: str
    port: int
    username: str
    password: str
    known_hosts: str
    directory: str
    images_directory: str
    icons_directory: str


@dataclass
class Config:
    data_dir: str
    temp_dir: str
    update_rate: int
    full_every: int
    run_once: bool
    log_level: str
    game_id: int
    categories: list[str]
    http_retries: int
    http_backoff: float
    connect_timeout: int
    read_timeout: int
    user_agent: str
    main_server_is_mirror: bool
    mirror_url: str
    mirror_images_url: str
    mirror: MirrorConfig | None


def load_mirror_config() -> MirrorConfig | None:
    host = os.environ.get("MIRROR_HOST", "").strip()
    if not host:
        return None
    return MirrorConfig(
        host=host,
        port=parse_int(os.environ.get("MIRROR_PORT"), DEFAULT_MIRROR_PORT),
        username=os.environ.get("MIRROR_USERNAME", ""),
        password=os.environ.get("MIRROR_PASSWORD", ""),
        known_hosts=os.environ.get("MIRROR_KNOWN_HOSTS", ""),
        directory=os.environ.get("MIRROR_DIRECTORY", "banana-mirror"),
        images_directory=os.environ.get("MIRROR_IMAGES_DIRECTORY", "banana-mirror-images"),
        icons_directory=os.environ.get(
            "MIRROR_ICONS_DIRECTORY", "rich-presence-icons"
        ),
    )


def load_config() -> Config:
    data_dir = os.environ.get("UPDATER_DATA_DIR", DEFAULT_DATA_DIR)
    temp_dir = os.environ.get("UPDATER_TEMP_DIR", DEFAULT_TEMP_DIR)

    update_rate = parse_int(os.environ.get("UPDATER_UPDATE_RATE"), DEFAULT_UPDATE_RATE)
    if update_rate <= 0:
        update_rate = DEFAULT_UPDATE_RATE
    full_every = max(1, parse_int(os.environ.get("UPDATER_FULL_EVERY"), DEFAULT_FULL_EVERY))
    run_once = parse_bool(os.environ.get("UPDATER_RUN_ONCE"), False)
    log_level = os.environ.get("UPDATER_LOG_LEVEL", DEFAULT_LOG_LEVEL)

    game_id = parse_int(os.environ.get("UPDATER_GAME_ID"), DEFAULT_GAME_ID)
    categories = parse_list(os.environ.get("UPDATER_CATEGORIES", DEFAULT_CATEGORIES))

    http_retries = parse_int(os.environ.get("UPDATER_HTTP_RETRIES"), DEFAULT_HTTP_RETRIES)
    http_backoff = float(os.environ.get("UPDATER_HTTP_BACKOFF", DEFAULT_HTTP_BACKOFF))
    connect_timeout = parse_int(
        os.environ.get("UPDATER_CONNECT_TIMEOUT"), DEFAULT_CONNECT_TIMEOUT
    )
    read_timeout = parse_int(os.environ.get("UPDATER_READ_TIMEOUT"), DEFAULT_READ_TIMEOUT)
    user_agent = os.environ.get("UPDATER_USER_AGENT", DEFAULT_USER_AGENT)

    main_server_is_mirror = parse_bool(
        os.environ.get("UPDATER_MAIN_SERVER_IS_MIRROR"), False
    )
    mirror_url = os.environ.get("UPDATER_MIRROR_URL", DEFAULT_MIRROR_URL)
    mirror_images_url = os.environ.get(
        "UPDATER_MIRROR_IMAGES_URL", DEFAULT_MIRROR_IMAGES_URL
    )

    return Config(
        data_dir=data_dir,
        temp_dir=temp_dir,
        update_rate=update_rate,
        full_every=full_every,
        run_once=run_once,
        log_level=log_level,
        game_id=game_id,
        categories=categories,
        http_retries=http_retries,
        http_backoff=http_backoff,
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        user_agent=user_agent,
        main_server_is_mirror=main_server_is_mirror,
        mirror_url=mirror_url,
        mirror_images_url=mirror_images_url,
        mirror=load_mirror_config(),
    )
