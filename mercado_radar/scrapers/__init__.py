"""Social-media post sources."""

from mercado_radar.scrapers.base import BaseScraper
from mercado_radar.scrapers.instagram import InstagramScraper

__all__ = [
    "BaseScraper",
    "InstagramScraper",
]
