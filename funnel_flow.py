import time
import logging
from typing import Optional, Tuple

from countdown import Countdown
from funnel_config import FunnelConfigStore, PageConfig, FUNNEL_PAGES, DOWNLOAD_PAGE_ID
from storage import KeyValueStore

logger = logging.getLogger(__name__)

FIRST_PAGE_URL = "/ad/1"
DOWNLOAD_URL = "/download"


def page_url(page_id: int) -> str:
    return f"/ad/{page_id}"


def next_url(page_id: int) -> str:
    if page_id < FUNNEL_PAGES:
        return page_url(page_id + 1)
    return DOWNLOAD_URL


def _entered_key(page_id: int) -> str:
    return f"funnel.entered.{page_id}"


class FunnelFlow:
    """One visitor's walk through the ad pages.

    The countdown for a page is rebuilt from the time the visitor entered it,
    so the "next" step can be refused server-side until it has completed.
    """

    def __init__(self, store: FunnelConfigStore, session: KeyValueStore):
        self.store = store
        self.session = session

    async def enter_page(self, page_id: int, now: Optional[float] = None) -> Optional[PageConfig]:
        config = await self.store.load()
        page = config.page(page_id)
        if page is None:
            logger.debug(f"Unknown funnel page {page_id}, redirecting to first page")
            return None
        now = time.time() if now is None else now
        try:
            await self.session.set(_entered_key(page_id), str(now))
        except Exception as e:
            logger.error(f"Error recording page entry: {e}")
        await self.store.update_page_visit(page_id)
        return page

    async def countdown(self, page_id: int, now: Optional[float] = None) -> Optional[Countdown]:
        config = await self.store.load()
        page = config.page(page_id)
        if page is None:
            return None
        timer = Countdown(page.countdown)
        raw = await self.session.get(_entered_key(page_id))
        if raw is None:
            return timer
        try:
            entered = float(raw)
        except ValueError:
            return timer
        now = time.time() if now is None else now
        timer.advance(max(0.0, now - entered))
        return timer

    async def next_step(self, page_id: int, now: Optional[float] = None) -> Tuple[Optional[str], int]:
        """Returns (url, 0) once the countdown is done, else (None, seconds left)."""
        timer = await self.countdown(page_id, now)
        if timer is None:
            return FIRST_PAGE_URL, 0
        if not timer.complete:
            return None, timer.remaining
        return next_url(page_id), 0

    async def click_ad(self, page_id: int, ad_id: str) -> Optional[str]:
        config = await self.store.load()
        page = config.page(page_id)
        ad = next((a for a in page.ads if a.id == ad_id), None) if page else None
        if ad is None:
            return None
        await self.store.update_ad_click(ad_id)
        return ad.link_url

    async def enter_download(self):
        await self.store.update_page_visit(DOWNLOAD_PAGE_ID)
        return await self.store.load()

    async def download(self) -> str:
        config = await self.store.load()
        await self.store.update_download_count()
        return config.download_url
