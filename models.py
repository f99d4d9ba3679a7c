from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from utils import to_download_url, to_mirror_url


@dataclass
class ModRecord:
    name: str
    version: str
    url: str
    last_update: int
    xx_hash: List[str]
    gamebanana_type: str
    gamebanana_id: int
    size: int

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ModRecord":
        return cls(
            name=name,
            version=str(data.get("Version", "NoVersion")),
            url=str(data.get("URL", "")),
            last_update=int(data.get("LastUpdate") or 0),
            xx_hash=[str(value) for value in data.get("xxHash") or []],
            gamebanana_type=str(data.get("GameBananaType", "")),
            gamebanana_id=int(data.get("GameBananaId") or 0),
            size=int(data.get("Size") or 0),
        )

    def to_dict(self, mirror_base: str) -> Dict[str, Any]:
        return {
            "Version": self.version,
            "URL": self.url,
            "MirrorURL": to_mirror_url(self.url, mirror_base) or self.url,
            "LastUpdate": self.last_update,
            "xxHash": list(self.xx_hash),
            "GameBananaType": self.gamebanana_type,
            "GameBananaId": self.gamebanana_id,
            "Size": self.size,
        }

    def update_gamebanana_ids(self, item_type: str, item_id: int, size: int) -> None:
        self.gamebanana_type = item_type
        self.gamebanana_id = item_id
        self.size = size

    def belongs_to(self, item_type: str, item_id: int) -> bool:
        return self.gamebanana_type == item_type and self.gamebanana_id == item_id

    def __str__(self) -> str:
        return (
            f"Mod{{name='{self.name}', version='{self.version}', url='{self.url}', "
            f"lastUpdate={self.last_update}, xxHash={self.xx_hash}, "
            f"gameBananaType='{self.gamebanana_type}', gameBananaId={self.gamebanana_id}}}"
        )


@dataclass
class CatalogFile:
    file_id: int
    url: str
    size: int
    date_added: int
    name: str = ""
    downloads: int = 0
    description: str = ""
    catalog_url: str = ""

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "CatalogFile":
        catalog_url = str(data.get("_sDownloadUrl") or "")
        return cls(
            file_id=int(data.get("_idRow") or 0),
            url=to_download_url(catalog_url),
            size=int(data.get("_nFilesize") or 0),
            date_added=int(data.get("_tsDateAdded") or 0),
            name=str(data.get("_sFile") or ""),
            downloads=int(data.get("_nDownloadCount") or 0),
            description=str(data.get("_sDescription") or ""),
            catalog_url=catalog_url,
        )


@dataclass
class CatalogItem:
    item_type: str
    item_id: int
    name: str
    files: List[CatalogFile] = field(default_factory=list)
    author: str = ""
    description: str = ""
    text: str = ""
    likes: int = 0
    views: int = 0
    downloads: int = 0
    category_id: int = 0
    date_added: int = 0
    date_modified: int = 0
    date_updated: int = 0
    screenshots: List[str] = field(default_factory=list)
    profile_url: str = ""
    is_nsfw: bool = False

    @classmethod
    def from_json(cls, item_type: str, data: Dict[str, Any]) -> "CatalogItem":
        submitter = data.get("_aSubmitter") or {}
        category = data.get("_aCategory") or {}
        preview = data.get("_aPreviewMedia") or {}
        images = preview.get("_aImages") or [] if isinstance(preview, dict) else []
        return cls(
            item_type=item_type,
            item_id=int(data.get("_idRow") or 0),
            name=str(data.get("_sName") or ""),
            files=[CatalogFile.from_json(entry) for entry in data.get("_aFiles") or []],
            author=str(submitter.get("_sName") or ""),
            description=str(data.get("_sDescription") or ""),
            text=str(data.get("_sText") or ""),
            likes=int(data.get("_nLikeCount") or 0),
            views=int(data.get("_nViewCount") or 0),
            downloads=int(data.get("_nDownloadCount") or 0),
            category_id=int(category.get("_idRow") or 0),
            date_added=int(data.get("_tsDateAdded") or 0),
            date_modified=int(data.get("_tsDateModified") or 0),
            date_updated=int(data.get("_tsDateUpdated") or 0),
            screenshots=[
                f"{image.get('_sBaseUrl')}/{image.get('_sFile')}" for image in images
            ],
            profile_url=str(data.get("_sProfileUrl") or ""),
            is_nsfw=bool(data.get("_bIsNsfw")),
        )

    @property
    def key(self) -> str:
        return f"{self.item_type}/{self.item_id}"


@dataclass
class CandidateFiles:
    """Files of one catalog item, in upload order, plus the file worth checking."""

    files: List[CatalogFile] = field(default_factory=list)
    candidate: Optional[CatalogFile] = None

    @classmethod
    def collect(cls, files: List[CatalogFile], no_manifest: set[str]) -> "CandidateFiles":
        result = cls(files=sorted(files, key=lambda entry: entry.date_added))
        most_recent = 0
        for entry in files:
            if most_recent < entry.date_added and entry.url not in no_manifest:
                most_recent = entry.date_added
                result.candidate = entry
        return result
