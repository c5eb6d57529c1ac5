import json
import time
import logging
from typing import Optional, List, Dict, Any, Callable

from pydantic import BaseModel, ConfigDict, Field, model_validator

from storage import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "adFunnelConfig"
FUNNEL_PAGES = 4
DOWNLOAD_PAGE_ID = FUNNEL_PAGES + 1


class Ad(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    title: str
    image_url: str = Field(alias="imageURL")
    link_url: str = Field(alias="linkURL")
    assigned_page: int = Field(alias="assignedPage")


class PageConfig(BaseModel):
    id: int
    countdown: int = Field(gt=0)
    ads: List[Ad] = []


class Analytics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page_visits: Dict[int, int] = Field(default_factory=dict, alias="pageVisits")
    ad_clicks: Dict[str, int] = Field(default_factory=dict, alias="adClicks")
    total_downloads: int = Field(default=0, alias="totalDownloads")


class FunnelConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pages: List[PageConfig] = Field(min_length=FUNNEL_PAGES, max_length=FUNNEL_PAGES)
    analytics: Analytics = Field(default_factory=Analytics)
    download_url: str = Field(alias="downloadURL")
    software_name: str = Field(alias="softwareName")

    @model_validator(mode="after")
    def _check_references(self):
        page_ids = [p.id for p in self.pages]
        if sorted(page_ids) != list(range(1, FUNNEL_PAGES + 1)):
            raise ValueError(f"page ids must be 1..{FUNNEL_PAGES}, each exactly once")
        ad_ids = [a.id for p in self.pages for a in p.ads]
        if len(set(ad_ids)) != len(ad_ids):
            raise ValueError("duplicate ad id")
        for p in self.pages:
            for a in p.ads:
                if a.assigned_page != p.id:
                    raise ValueError(f"ad {a.id} is assigned to page {a.assigned_page} but listed under page {p.id}")
        return self

    def page(self, page_id: int) -> Optional[PageConfig]:
        for p in self.pages:
            if p.id == page_id:
                return p
        return None

    def find_ad(self, ad_id: str) -> Optional[Ad]:
        for p in self.pages:
            for a in p.ads:
                if a.id == ad_id:
                    return a
        return None

    def to_json(self, indent: Optional[int] = None) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)


_DEFAULT_CONFIG: Dict[str, Any] = {
    "pages": [
        {
            "id": 1,
            "countdown": 10,
            "ads": [
                {
                    "id": "ad1",
                    "title": "Premium VPN Service",
                    "imageURL": "https://images.unsplash.com/photo-1614064641938-3bbee52942c7?w=400&h=300&fit=crop",
                    "linkURL": "https://example.com/vpn",
                    "assignedPage": 1,
                },
                {
                    "id": "ad2",
                    "title": "Cloud Storage Solution",
                    "imageURL": "https://images.unsplash.com/photo-1544197150-b99a580bb7a8?w=400&h=300&fit=crop",
                    "linkURL": "https://example.com/storage",
                    "assignedPage": 1,
                },
            ],
        },
        {
            "id": 2,
            "countdown": 8,
            "ads": [
                {
                    "id": "ad3",
                    "title": "Antivirus Protection",
                    "imageURL": "https://images.unsplash.com/photo-1563013544-824ae1b704d3?w=400&h=300&fit=crop",
                    "linkURL": "https://example.com/antivirus",
                    "assignedPage": 2,
                }
            ],
        },
        {
            "id": 3,
            "countdown": 10,
            "ads": [
                {
                    "id": "ad4",
                    "title": "System Optimizer",
                    "imageURL": "https://images.unsplash.com/photo-1551288049-bebda4e38f71?w=400&h=300&fit=crop",
                    "linkURL": "https://example.com/optimizer",
                    "assignedPage": 3,
                }
            ],
        },
        {
            "id": 4,
            "countdown": 12,
            "ads": [
                {
                    "id": "ad5",
                    "title": "Password Manager",
                    "imageURL": "https://images.unsplash.com/photo-1555949963-ff9fe0c870eb?w=400&h=300&fit=crop",
                    "linkURL": "https://example.com/password",
                    "assignedPage": 4,
                }
            ],
        },
    ],
    "analytics": {
        "pageVisits": {1: 0, 2: 0, 3: 0, 4: 0, 5: 0},
        "adClicks": {},
        "totalDownloads": 0,
    },
    "downloadURL": "https://example.com/download/software.exe",
    "softwareName": "Premium Software Suite v2.0",
}


def default_config() -> FunnelConfig:
    return FunnelConfig.model_validate(_DEFAULT_CONFIG)


def parse_config(text: Optional[str]) -> Optional[FunnelConfig]:
    if not text:
        return None
    try:
        return FunnelConfig.model_validate(json.loads(text))
    except (ValueError, RecursionError) as e:
        logger.error(f"Error parsing funnel config: {e}")
        return None


def analytics_summary(config: FunnelConfig) -> Dict[str, Any]:
    a = config.analytics
    total_visits = sum(a.page_visits.values())
    total_clicks = sum(a.ad_clicks.values())
    rate = f"{(a.total_downloads / total_visits) * 100:.2f}" if total_visits > 0 else "0.00"
    titles = {ad.id: ad.title for p in config.pages for ad in p.ads}
    return {
        "totalVisits": total_visits,
        "totalClicks": total_clicks,
        "totalDownloads": a.total_downloads,
        "conversionRate": rate,
        "pageVisits": [
            {"page": pid, "name": "Download" if pid == DOWNLOAD_PAGE_ID else f"Ad Page {pid}", "visits": n}
            for pid, n in sorted(a.page_visits.items())
        ],
        "adClicks": [
            {"ad": ad_id, "title": titles.get(ad_id, ad_id), "clicks": n}
            for ad_id, n in sorted(a.ad_clicks.items(), key=lambda x: x[1], reverse=True)
        ],
    }


class FunnelConfigStore:
    """The funnel configuration blob: pages, ads, download settings and the
    visit/click/download counters, persisted as one JSON document.

    Every mutation is a single atomic read-modify-write on the underlying
    key/value row, so two writers cannot drop each other's counter increments.
    Counter updates swallow storage errors after logging them; a failed
    analytics write must never break the page that triggered it.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    async def load(self) -> FunnelConfig:
        return parse_config(await self.kv.get(STORAGE_KEY)) or default_config()

    async def load_versioned(self):
        row = await self.kv.get_versioned(STORAGE_KEY)
        if not row:
            return default_config(), 0
        return parse_config(row[0]) or default_config(), row[1]

    async def save(self, config: FunnelConfig, expected_version: Optional[int] = None) -> bool:
        text = config.to_json()
        if expected_version is None:
            await self.kv.set(STORAGE_KEY, text)
            return True
        ok = await self.kv.compare_and_set(STORAGE_KEY, text, expected_version)
        if not ok:
            logger.info(f"Funnel config save rejected, version {expected_version} is stale")
        return ok

    async def _mutate(self, fn: Callable[[FunnelConfig], Any]) -> Any:
        result: Dict[str, Any] = {}

        def apply(current: Optional[str]) -> str:
            config = parse_config(current) or default_config()
            result["value"] = fn(config)
            # re-validate so edits cannot leave dangling page references
            return FunnelConfig.model_validate(config.model_dump(by_alias=True)).to_json()

        await self.kv.update(STORAGE_KEY, apply)
        return result.get("value")

    async def _count(self, what: str, fn: Callable[[FunnelConfig], None]) -> None:
        try:
            await self._mutate(fn)
        except Exception as e:
            logger.error(f"Error updating {what}: {e}")

    async def update_page_visit(self, page_id: int) -> None:
        def inc(config: FunnelConfig):
            visits = config.analytics.page_visits
            visits[page_id] = visits.get(page_id, 0) + 1

        await self._count("page visit", inc)

    async def update_ad_click(self, ad_id: str) -> None:
        def inc(config: FunnelConfig):
            clicks = config.analytics.ad_clicks
            clicks[ad_id] = clicks.get(ad_id, 0) + 1

        await self._count("ad click", inc)

    async def update_download_count(self) -> None:
        def inc(config: FunnelConfig):
            config.analytics.total_downloads += 1

        await self._count("download count", inc)

    async def export(self) -> str:
        return (await self.load()).to_json(indent=2)

    async def import_config(self, text: str) -> bool:
        try:
            config = FunnelConfig.model_validate(json.loads(text))
        except (ValueError, RecursionError) as e:
            logger.error(f"Error importing config: {e}")
            return False
        try:
            await self.save(config)
        except Exception as e:
            logger.error(f"Error saving imported config: {e}")
            return False
        return True

    async def reset(self) -> FunnelConfig:
        config = default_config()
        await self.save(config)
        return config

    async def list_ads(self) -> List[Ad]:
        config = await self.load()
        return [a for p in config.pages for a in p.ads]

    async def add_ad(self, title: str, image_url: str, link_url: str, assigned_page: int) -> Ad:
        def add(config: FunnelConfig) -> Ad:
            page = config.page(assigned_page)
            if page is None:
                raise ValueError(f"unknown page {assigned_page}")
            stamp = int(time.time() * 1000)
            while config.find_ad(f"ad{stamp}"):
                stamp += 1
            ad = Ad(id=f"ad{stamp}", title=title, image_url=image_url, link_url=link_url, assigned_page=assigned_page)
            page.ads.append(ad)
            return ad

        return await self._mutate(add)

    async def update_ad(self, ad_id: str, **changes) -> Optional[Ad]:
        def edit(config: FunnelConfig) -> Optional[Ad]:
            current = config.find_ad(ad_id)
            if current is None:
                return None
            fields = {k: v for k, v in changes.items() if v is not None}
            updated = current.model_copy(update=fields)
            target = config.page(updated.assigned_page)
            if target is None:
                raise ValueError(f"unknown page {updated.assigned_page}")
            for p in config.pages:
                p.ads = [a for a in p.ads if a.id != ad_id]
            target.ads.append(updated)
            return updated

        return await self._mutate(edit)

    async def delete_ad(self, ad_id: str) -> bool:
        def drop(config: FunnelConfig) -> bool:
            found = False
            for p in config.pages:
                kept = [a for a in p.ads if a.id != ad_id]
                found = found or len(kept) != len(p.ads)
                p.ads = kept
            return found

        return await self._mutate(drop)

    async def update_settings(
        self,
        countdowns: Optional[Dict[int, int]] = None,
        software_name: Optional[str] = None,
        download_url: Optional[str] = None,
    ) -> FunnelConfig:
        def apply(config: FunnelConfig) -> FunnelConfig:
            for pid, seconds in (countdowns or {}).items():
                page = config.page(int(pid))
                if page is None:
                    raise ValueError(f"unknown page {pid}")
                if int(seconds) <= 0:
                    raise ValueError("countdown must be a positive number of seconds")
                page.countdown = int(seconds)
            if software_name is not None:
                config.software_name = software_name
            if download_url is not None:
                config.download_url = download_url
            return config

        return await self._mutate(apply)
