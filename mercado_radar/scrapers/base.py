"""Abstract base scraper for social-media post sources."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date

import httpx

from mercado_radar.config import Settings, get_settings
from mercado_radar.schemas import ScrapedPost, StageResult

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)


class BaseScraper(ABC):
    """Base class every post source must extend.

    Subclasses set ``name`` and ``base_url`` and implement :meth:`scrape`.
    """

    name: str = ""
    base_url: str = ""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._http_client = http_client

    # ------------------------------------------------------------------
    # HTTP client
    # ------------------------------------------------------------------

    def _client_headers(self) -> dict[str, str]:
        return {
            "User-Agent": USER_AGENT,
            "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
        }

    def _client_cookies(self) -> dict[str, str]:
        return {}

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Return a shared ``httpx.AsyncClient``."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(float(self.settings.scraping_timeout)),
                follow_redirects=True,
                headers=self._client_headers(),
                cookies=self._client_cookies(),
            )
        return self._http_client

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    async def scrape(
        self, accounts: list, target_date: date
    ) -> tuple[StageResult, list[ScrapedPost]]:
        """Fetch the image posts each account published on *target_date*."""

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
