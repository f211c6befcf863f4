"""Instagram post source -- HTTP-only, no browser needed.

Reads each market's recent timeline from the public ``web_profile_info``
endpoint, skips videos, expands carousels into their image URLs and keeps
only the posts published on the run's target day (local timezone).
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from mercado_radar.schemas import ScrapedImage, ScrapedPost, StageResult
from mercado_radar.scrapers.base import BaseScraper

logger = logging.getLogger(__name__)


class InstagramError(RuntimeError):
    pass


def determine_target_date(
    override: date | None,
    *,
    include_previous_day: bool,
    today: date,
) -> date:
    """Explicit override, else yesterday when configured, else today."""
    if override is not None:
        return override
    if include_previous_day:
        return today - timedelta(days=1)
    return today


def day_bounds(target_date: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """``[target 00:00, target+1 00:00)`` in *tz*."""
    start = datetime.combine(target_date, datetime.min.time(), tzinfo=tz)
    return start, start + timedelta(days=1)


class InstagramScraper(BaseScraper):
    name = "Instagram"
    base_url = "https://i.instagram.com"

    def _client_headers(self) -> dict[str, str]:
        headers = super()._client_headers()
        if self.settings.instagram_user_agent:
            headers["User-Agent"] = self.settings.instagram_user_agent
        headers["X-IG-App-ID"] = self.settings.instagram_app_id
        headers["Accept"] = "application/json"
        return headers

    def _client_cookies(self) -> dict[str, str]:
        if self.settings.instagram_session_id:
            return {"sessionid": self.settings.instagram_session_id}
        return {}

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def scrape(
        self, accounts: list, target_date: date
    ) -> tuple[StageResult, list[ScrapedPost]]:
        """Scrape every market account; one failing account does not stop the rest.

        *accounts* are objects with ``name`` and ``instagram_username``
        (normally :class:`~mercado_radar.models.Market` rows).
        """
        started = time.monotonic()
        stage = StageResult(name="scrape", processed=len(accounts))
        posts: list[ScrapedPost] = []
        total_posts = 0

        try:
            for market in accounts:
                try:
                    market_posts = await self.fetch_market_posts(market)
                except Exception as exc:
                    logger.exception("Instagram scraping failed for %s", market.name)
                    stage.record_error(f"Market {market.name}: {exc}")
                    continue
                stage.succeeded += 1
                total_posts += len(market_posts)
                posts.extend(market_posts)
                logger.info("Market %s: %d image posts", market.name, len(market_posts))
        finally:
            await self.close()

        filtered = self.filter_posts_by_date(posts, target_date)
        stage.duration = time.monotonic() - started
        stage.details = {
            "total_posts": total_posts,
            "filtered_posts": len(filtered),
            "target_date": target_date.isoformat(),
        }
        return stage, filtered

    async def test_market_connection(self, username: str) -> bool:
        try:
            user = await self._fetch_profile(username)
        except Exception:
            logger.exception("Connection test failed for %s", username)
            return False
        logger.info(
            "Connection test %s: %s, %s followers",
            username,
            user.get("full_name"),
            (user.get("edge_followed_by") or {}).get("count"),
        )
        return True

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _fetch_profile(self, username: str) -> dict[str, Any]:
        client = await self._get_http_client()
        response = await client.get(
            f"{self.base_url}/api/v1/users/web_profile_info/",
            params={"username": username},
        )
        response.raise_for_status()
        user = (response.json().get("data") or {}).get("user")
        if not user:
            raise InstagramError(f"Profile not found: {username}")
        return user

    async def fetch_market_posts(self, market) -> list[ScrapedPost]:
        user = await self._fetch_profile(market.instagram_username)
        edges = (user.get("edge_owner_to_timeline_media") or {}).get("edges") or []

        posts: list[ScrapedPost] = []
        for edge in edges:
            node = edge.get("node") or {}
            code = node.get("shortcode")
            if node.get("is_video"):
                logger.debug("Skipping video %s", code)
                continue
            images = self.extract_images(node)
            if not code or not images:
                logger.debug("Skipping post without images: %s", code)
                continue
            posts.append(
                ScrapedPost(
                    id=str(node.get("id") or code),
                    market_name=market.name,
                    market_username=market.instagram_username,
                    post_code=code,
                    published_at=datetime.fromtimestamp(
                        int(node.get("taken_at_timestamp") or 0), tz=timezone.utc
                    ),
                    images=images,
                    caption=self._caption(node),
                    is_carousel=len(images) > 1,
                )
            )
        return posts

    # ------------------------------------------------------------------
    # Parsing helpers
    # ------------------------------------------------------------------

    @staticmethod
    def extract_images(node: dict[str, Any]) -> list[ScrapedImage]:
        """Carousel children (videos excluded) or the single display image."""
        children = (node.get("edge_sidecar_to_children") or {}).get("edges") or []
        sources = [c.get("node") or {} for c in children] if children else [node]

        images: list[ScrapedImage] = []
        for source in sources:
            if source.get("is_video") or not source.get("display_url"):
                continue
            dimensions = source.get("dimensions") or {}
            images.append(
                ScrapedImage(
                    url=source["display_url"],
                    width=dimensions.get("width"),
                    height=dimensions.get("height"),
                )
            )
        return images

    @staticmethod
    def _caption(node: dict[str, Any]) -> str:
        edges = (node.get("edge_media_to_caption") or {}).get("edges") or []
        if not edges:
            return ""
        return (edges[0].get("node") or {}).get("text") or ""

    def filter_posts_by_date(
        self, posts: list[ScrapedPost], target_date: date
    ) -> list[ScrapedPost]:
        start, end = day_bounds(target_date, ZoneInfo(self.settings.timezone))
        filtered = [p for p in posts if start <= p.published_at < end]
        logger.info(
            "Posts published on %s: %d/%d", target_date.isoformat(), len(filtered), len(posts)
        )
        return filtered
