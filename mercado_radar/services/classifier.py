"""Heuristic classifier for promotional catalog text.

Decides from raw OCR text whether an Instagram image (or the concatenated
text of a whole post) looks like a supermarket price list.  The rule is::

    (any keyword AND any price pattern) OR (distinct keyword hits >= 3)

Keywords are matched as lowercase substrings, so short terms such as
``"de"`` or ``"por"`` also hit inside longer words.  Exactly two keyword hits
with no price pattern is *not* a catalog.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

PROMOTION_KEYWORDS: tuple[str, ...] = (
    "promoção",
    "promocao",
    "oferta",
    "desconto",
    "liquidação",
    "liquidacao",
    "barato",
    "preço",
    "preco",
    "real",
    "r$",
    "por",
    "de",
    "ate",
    "até",
    "super",
    "mega",
    "hiper",
    "extra",
    "especial",
    "imperdível",
    "imperdivel",
    "queima",
    "saldão",
    "saldao",
    "black",
    "friday",
    "feira",
    "semana",
    "válido",
    "valido",
    "dias",
    "domingo",
    "segunda",
    "terça",
    "terca",
    "quarta",
    "quinta",
    "sexta",
    "sábado",
    "sabado",
)

PRICE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"R\$\s*\d+[,.]?\d*", re.IGNORECASE),
    re.compile(r"\d+[,.]?\d*\s*reais?", re.IGNORECASE),
    re.compile(r"por\s+\d+[,.]?\d*", re.IGNORECASE),
    re.compile(r"de\s+\d+[,.]?\d*\s+por\s+\d+[,.]?\d*", re.IGNORECASE),
)

MIN_KEYWORD_HITS = 3


@dataclass(slots=True)
class CatalogAnalysis:
    keyword_hits: int
    has_price_pattern: bool

    @property
    def has_keywords(self) -> bool:
        return self.keyword_hits > 0

    @property
    def is_catalog(self) -> bool:
        return (self.has_keywords and self.has_price_pattern) or (
            self.keyword_hits >= MIN_KEYWORD_HITS
        )


class CatalogClassifier:
    """Keyword + price-pattern heuristic.  Stateless; safe to share."""

    def __init__(
        self,
        keywords: tuple[str, ...] = PROMOTION_KEYWORDS,
        price_patterns: tuple[re.Pattern[str], ...] = PRICE_PATTERNS,
    ) -> None:
        self.keywords = keywords
        self.price_patterns = price_patterns

    def analyze(self, text: str | None) -> CatalogAnalysis:
        if not text or not text.strip():
            return CatalogAnalysis(keyword_hits=0, has_price_pattern=False)

        normalized = text.lower()
        hits = sum(1 for keyword in set(self.keywords) if keyword in normalized)
        has_price = any(pattern.search(text) for pattern in self.price_patterns)
        return CatalogAnalysis(keyword_hits=hits, has_price_pattern=has_price)

    def is_promotion_catalog(self, text: str | None) -> bool:
        analysis = self.analyze(text)
        logger.debug(
            "Catalog analysis: keywords=%d price_pattern=%s -> %s (%r)",
            analysis.keyword_hits,
            analysis.has_price_pattern,
            analysis.is_catalog,
            (text or "")[:100],
        )
        return analysis.is_catalog

    def is_promotion_post(self, image_texts: list[str]) -> bool:
        """Classify a post from the concatenation of its per-image texts."""
        return self.is_promotion_catalog("\n".join(image_texts))

    def extract_prices(self, text: str) -> list[str]:
        """Return the distinct price-shaped substrings found in *text*."""
        prices: list[str] = []
        for pattern in self.price_patterns:
            for match in pattern.finditer(text):
                price = match.group(0).strip()
                if price not in prices:
                    prices.append(price)
        return prices
