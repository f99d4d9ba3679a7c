from __future__ import annotations

from typing import Any, Dict, List
import logging
import time

import requests

from events import EventHub
from http_utils import RetryPolicy, get_json

API_BASE = "https://gamebanana.com"
ITEM_PROPERTIES = (
    "_idRow,_sName,_aFiles,_aSubmitter,_sDescription,_sText,_nLikeCount,_nViewCount,"
    "_nDownloadCount,_aCategory,_tsDateAdded,_tsDateModified,_tsDateUpdated,"
    "_aPreviewMedia,_sProfileUrl,_bIsNsfw"
)


class GameBananaClient:
    """Thin wrapper around the catalog endpoints the crawl relies on.

    Every call is a plain GET decoded as JSON and goes through the retry
    policy; decode errors are retried like network errors.
    """

    def __init__(
        self,
        session: requests.Session,
        policy: RetryPolicy,
        game_id: int,
        events: EventHub | None = None,
        api_base: str = API_BASE,
    ) -> None:
        self.session = session
        self.policy = policy
        self.game_id = game_id
        self.events = events or EventHub()
        self.api_base = api_base.rstrip("/")

    def _get(self, path: str) -> Any:
        url = f"{self.api_base}/{path}"
        logging.debug("Catalog request %s", url)
        return get_json(self.session, url, self.policy, on_retry=self.events.retry_hook())

    def list_items(self, category: str, page: int, per_page: int) -> List[Dict[str, Any]]:
        """One page of a category, oldest item first."""
        data = self._get(
            f"apiv8/{category}/ByGame?_aGameRowIds[]={self.game_id}"
            f"&_csvProperties={ITEM_PROPERTIES}"
            f"&_sOrderBy=_idRow,ASC&_nPage={page}&_nPerpage={per_page}"
        )
        return list(data or [])

    def list_recently_modified(
        self, category: str, page: int, per_page: int
    ) -> List[Dict[str, Any]]:
        """One page of a category, most recently modified item first."""
        data = self._get(
            f"apiv10/{category}/Index?_nPage={page}&_nPerpage={per_page}"
            f"&_aFilters[Generic_Game]={self.game_id}&_sSort=Generic_LatestModified"
        )
        return list((data or {}).get("_aRecords") or [])

    def get_item(self, category: str, item_id: int) -> Dict[str, Any]:
        # the timestamp keeps the catalog cache from serving a stale copy
        return self._get(
            f"apiv8/{category}/{item_id}?_csvProperties={ITEM_PROPERTIES}"
            f"&ts={int(time.time() * 1000)}"
        )

    def get_profile_page(self, item_type: str, item_id: int) -> Dict[str, Any]:
        return self._get(f"apiv11/{item_type}/{item_id}/ProfilePage")

    def list_categories(self, item_type: str) -> List[Dict[str, Any]]:
        data = self._get(
            f"apiv8/{item_type}Category/ByGame?_aGameRowIds[]={self.game_id}"
            "&_csvProperties=_idRow,_idParentCategoryRow,_sName"
            "&_sOrderBy=_idRow,ASC&_nPage=1&_nPerpage=50"
        )
        return list(data or [])

    def get_top_picks(self) -> Dict[str, List[Dict[str, Any]]]:
        return self._get(f"apiv8/Game/{self.game_id}/TopSubs") or {}
