"""Structured extraction of promotions from aggregated OCR text.

Workflow per market:
    1. Join the market's promotional posts into one text block, each post
       headed by ``POST <code>:`` (see :mod:`mercado_radar.services.aggregator`).
    2. Send one prompt to the language model.
    3. Parse the answer defensively: strip Markdown fences, ``json.loads``,
       require a top-level array.  Anything else means zero promotions for the
       market plus a recorded, non-fatal error.
    4. Map every array element onto a :class:`CandidatePromotion`, tying each
       post back to the scraped post through its code.  A malformed element
       is dropped and recorded; its siblings are kept.

The model call is never retried.
"""

from __future__ import annotations

import json
import logging
import re
import time
from datetime import date
from typing import Any

from mercado_radar.models.category import CATEGORY_DESCRIPTIONS, Category
from mercado_radar.schemas import (
    CandidatePost,
    CandidateProduct,
    CandidatePromotion,
    PostOCRResult,
    StageResult,
    TokenUsage,
)
from mercado_radar.services.aggregator import (
    build_market_text,
    group_posts_by_market,
    select_promotion_posts,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Promoção"

# ---------------------------------------------------------------------------
# Prompt -- Brazilian supermarket Instagram posts, answer is a bare JSON array.
# ---------------------------------------------------------------------------
PROMPT_TEMPLATE = """\
You are a specialised data-extraction assistant for Brazilian supermarket \
promotion catalogs.

Below is the OCR text of Instagram posts published by the supermarket \
"{market_name}".  Each post starts with a line ``POST <code>:`` and ends \
with ``---``.  The text is in Brazilian Portuguese.

POSTS TEXT:
{combined_text}

AVAILABLE CATEGORIES:
{categories}

INSTRUCTIONS:
1. Identify EVERY promotion mentioned in the text.
2. For each promotion extract:
   - "title": a short title for the promotion.
   - "startDate": first day the prices are valid.  If it is not stated, use \
today's date: {today}.
   - "endDate": last day the prices are valid.  If it is not stated, the \
promotion lasts a single day (endDate = startDate).
   - "posts": the posts that advertise it, each with its products.
3. For each product extract:
   - "description": full description including brand, size, original price \
and discount when shown.
   - "price": final promotional price exactly in the format "R$ X,XX".
   - "category": exactly one of the category codes listed above.  When unsure \
use "{fallback_category}".
4. Promotions with the SAME startDate and endDate belong together.
5. Dates MUST use the format DD/MM/YYYY.  When the year is missing use {year}.
6. "postCode" MUST be one of the codes that appear after ``POST`` in the text; \
attach each product to the post it was found in.

OUTPUT FORMAT (a JSON array, nothing else):
[
  {{
    "title": "Ofertas do fim de semana",
    "startDate": "15/01/{year}",
    "endDate": "20/01/{year}",
    "posts": [
      {{
        "postCode": "POST_CODE",
        "products": [
          {{"description": "Arroz Tio João 5kg - de R$ 25,90 por R$ 19,90", \
"price": "R$ 19,90", "category": "GROCERY"}},
          {{"description": "Sabão em pó OMO 1kg", "price": "R$ 12,99", \
"category": "CLEANING"}}
        ]
      }}
    ]
  }}
]

IMPORTANT RULES:
- Return ONLY valid JSON -- no markdown fences, no commentary.
- If there is no valid promotion, return an empty array [].
- Keep only products with a clearly identified price.
- Do NOT invent data; use only what is in the text.
"""

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_DATE_RE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})(?:/(\d{2}|\d{4}))?\s*$")


class ResponseParseError(ValueError):
    """The model answer is not a JSON array."""


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def format_categories() -> str:
    return "\n".join(
        f"{category.value} - {CATEGORY_DESCRIPTIONS[category]}" for category in Category
    )


def build_prompt(market_name: str, combined_text: str, today: date) -> str:
    return PROMPT_TEMPLATE.format(
        market_name=market_name,
        combined_text=combined_text,
        categories=format_categories(),
        today=today.strftime("%d/%m/%Y"),
        year=today.year,
        fallback_category=Category.OTHER.value,
    )


def parse_model_response(raw: str) -> list[Any]:
    """Strip code fences and decode a JSON array.

    Raises :class:`ResponseParseError` on invalid JSON or a non-array value.
    """
    cleaned = _FENCE_RE.sub("", raw or "").strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"invalid JSON: {exc}") from exc
    if not isinstance(parsed, list):
        raise ResponseParseError(f"expected a JSON array, got {type(parsed).__name__}")
    return parsed


def parse_date(raw: Any, today: date) -> date | None:
    """Parse ``DD/MM/YYYY`` (or ``DD/MM``, year defaults to *today*'s)."""
    if not isinstance(raw, str):
        return None
    match = _DATE_RE.match(raw)
    if not match:
        return None
    day, month, year = match.groups()
    if year is None:
        year_num = today.year
    elif len(year) == 2:
        year_num = 2000 + int(year)
    else:
        year_num = int(year)
    try:
        return date(year_num, int(month), int(day))
    except ValueError:
        return None


def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class StructuredExtractor:
    """Turns per-market OCR text into candidate promotions via an LLM."""

    def __init__(self, client=None) -> None:
        if client is None:
            from mercado_radar.services.llm import GeminiClient

            client = GeminiClient()
        self.client = client
        self.usage = TokenUsage()

    async def execute(
        self,
        results: list[PostOCRResult],
        today: date,
    ) -> tuple[StageResult, list[CandidatePromotion]]:
        """Extract candidates for every market with promotional posts."""
        started = time.monotonic()
        promotion_posts = select_promotion_posts(results)
        by_market = group_posts_by_market(promotion_posts)
        stage = StageResult(name="extract", processed=len(by_market))
        candidates: list[CandidatePromotion] = []
        processed_posts = 0

        if not by_market:
            logger.warning("No promotional posts to extract.")

        for market_name, posts in by_market.items():
            try:
                market_candidates = await self.extract_market(
                    market_name, posts, today, stage=stage
                )
            except Exception as exc:
                logger.exception("Extraction failed for market %s", market_name)
                stage.record_error(f"Market {market_name}: {exc}")
                continue

            candidates.extend(market_candidates)
            processed_posts += len(posts)
            stage.succeeded += 1
            logger.info(
                "Market %s: %d posts -> %d candidate promotions",
                market_name,
                len(posts),
                len(market_candidates),
            )

        stage.duration = time.monotonic() - started
        stage.details = {
            "total_posts": len(promotion_posts),
            "processed_posts": processed_posts,
            "total_promotions": len(candidates),
            "prompt_tokens": self.usage.prompt_tokens,
            "candidates_tokens": self.usage.candidates_tokens,
            "total_tokens": self.usage.total_tokens,
        }
        logger.info(
            "Extraction finished: %d markets, %d candidates, %d tokens",
            stage.processed,
            len(candidates),
            self.usage.total_tokens,
        )
        return stage, candidates

    async def extract_market(
        self,
        market_name: str,
        posts: list[PostOCRResult],
        today: date,
        *,
        stage: StageResult | None = None,
    ) -> list[CandidatePromotion]:
        prompt = build_prompt(market_name, build_market_text(posts), today)
        response = await self.client.generate(prompt)
        self.usage.add(response.usage)

        try:
            items = parse_model_response(response.text)
        except ResponseParseError as exc:
            logger.error(
                "Could not parse model answer for %s (%s):\n%s",
                market_name,
                exc,
                (response.text or "")[:2000],
            )
            if stage is not None:
                stage.errors.append(f"Market {market_name}: unparseable model answer ({exc})")
            return []

        posts_by_code = {post.post_code: post for post in posts}
        candidates: list[CandidatePromotion] = []
        for item in items:
            if not isinstance(item, dict):
                logger.warning("Skipping non-object promotion from model: %r", item)
                continue
            try:
                candidates.append(self.to_candidate(item, posts_by_code, market_name, today))
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping malformed promotion for %s: %s (%r)", market_name, exc, item)
                if stage is not None:
                    stage.errors.append(f"Market {market_name}: malformed promotion ({exc})")
        return candidates

    def to_candidate(
        self,
        data: dict[str, Any],
        posts_by_code: dict[str, PostOCRResult],
        market_name: str,
        today: date,
    ) -> CandidatePromotion:
        start_date = parse_date(_pick(data, "startDate", "start_date"), today)
        end_date = parse_date(_pick(data, "endDate", "end_date"), today)
        if start_date is None:
            logger.warning(
                "Unparseable start date %r for %s, using today with zero duration",
                _pick(data, "startDate", "start_date"),
                market_name,
            )
            start_date, end_date = today, today
        elif end_date is None:
            end_date = start_date

        raw_posts = data.get("posts") or []
        if not isinstance(raw_posts, list):
            raise ValueError(f"'posts' must be an array, got {type(raw_posts).__name__}")

        posts: list[CandidatePost] = []
        for raw_post in raw_posts:
            if not isinstance(raw_post, dict):
                continue
            post = self._to_post(raw_post, posts_by_code, market_name)
            if post is not None:
                posts.append(post)

        title = str(data.get("title") or "").strip() or DEFAULT_TITLE
        return CandidatePromotion(
            market_name=market_name,
            title=title,
            start_date=start_date,
            end_date=end_date,
            posts=posts,
        )

    @staticmethod
    def _to_post(
        raw_post: dict[str, Any],
        posts_by_code: dict[str, PostOCRResult],
        market_name: str,
    ) -> CandidatePost | None:
        code = str(_pick(raw_post, "postCode", "post_code") or "").strip()
        if not code:
            logger.warning("Model returned a post without code for %s", market_name)
            return None

        source = posts_by_code.get(code)
        if source is None:
            logger.warning("Post code %s not found among %s posts", code, market_name)

        raw_products = raw_post.get("products") or []
        if not isinstance(raw_products, list):
            logger.warning("Post %s has non-array products for %s, ignoring them", code, market_name)
            raw_products = []

        products: list[CandidateProduct] = []
        for raw_product in raw_products:
            if not isinstance(raw_product, dict):
                continue
            description = str(raw_product.get("description") or "").strip()
            if not description:
                continue
            price = raw_product.get("price")
            products.append(
                CandidateProduct(
                    description=description,
                    price="" if price is None else str(price),
                    category=Category.from_label(raw_product.get("category")),
                )
            )

        return CandidatePost(
            post_id=source.post_id if source else "",
            post_code=code,
            market_name=market_name,
            extracted_text=source.combined_text if source else "",
            published_at=source.published_at if source else None,
            products=products,
        )
