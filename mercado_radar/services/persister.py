"""Idempotent persistence of merged candidate promotions.

Natural keys:
    * Promotion -- ``(market_id, start_date, end_date)``; an existing row is
      reused as-is.
    * Post -- ``post_code``; an existing post is skipped together with all of
      its products.

Markets are curated out of band: an unknown market name fails that candidate
promotion only.  Every row is its own commit; there is no transaction
spanning a promotion, so a crash can leave a promotion with only some posts
saved and the next run completes it.  The unique constraints in the schema
back up the find-then-create lookups when two runs race.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mercado_radar.models import Market, Post, Product, Promotion
from mercado_radar.schemas import (
    CandidatePost,
    CandidateProduct,
    CandidatePromotion,
    StageResult,
)

logger = logging.getLogger(__name__)

ZERO_PRICE = Decimal("0.00")
_CENTS = Decimal("0.01")
_NUMBER_RE = re.compile(r"\d[\d.,]*")


class MarketNotFoundError(LookupError):
    pass


def parse_price(raw) -> Decimal:
    """Convert a localized price string to a two-digit ``Decimal``.

    Handles ``"R$ 1.234,56"``, ``"19,90"``, ``"19.90"``, ``"1,234.56"``.
    Anything unparseable becomes ``0.00``; this never raises.
    """
    if raw is None:
        return ZERO_PRICE
    if isinstance(raw, (int, float, Decimal)) and not isinstance(raw, bool):
        try:
            return Decimal(str(raw)).quantize(_CENTS)
        except InvalidOperation:
            return ZERO_PRICE

    match = _NUMBER_RE.search(str(raw))
    if not match:
        logger.debug("Could not parse price from %r", raw)
        return ZERO_PRICE
    text = match.group(0).rstrip(".,")

    last_comma = text.rfind(",")
    last_dot = text.rfind(".")
    if last_comma > last_dot:
        # Brazilian: 1.234,56
        text = text.replace(".", "").replace(",", ".")
    elif last_dot > last_comma >= 0:
        # English: 1,234.56
        text = text.replace(",", "")
    elif last_dot >= 0 and (text.count(".") > 1 or len(text) - last_dot - 1 == 3):
        # Only dots, used as thousands separators: 1.234 / 1.234.567
        text = text.replace(".", "")

    try:
        return Decimal(text).quantize(_CENTS)
    except InvalidOperation:
        logger.debug("Could not parse price from %r", raw)
        return ZERO_PRICE


@dataclass(slots=True)
class SaveStats:
    total_promotions: int = 0
    saved_promotions: int = 0
    total_posts: int = 0
    saved_posts: int = 0
    skipped_posts: int = 0
    total_products: int = 0
    saved_products: int = 0


class PromotionPersister:
    """Writes candidate promotions through one shared session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def execute(
        self,
        promotions: list[CandidatePromotion],
        *,
        extracted_at: datetime | None = None,
    ) -> tuple[StageResult, SaveStats]:
        started = time.monotonic()
        extracted_at = extracted_at or datetime.now(timezone.utc)
        stage = StageResult(name="persist", processed=len(promotions))
        stats = SaveStats(
            total_promotions=len(promotions),
            total_posts=sum(len(p.posts) for p in promotions),
            total_products=sum(len(post.products) for p in promotions for post in p.posts),
        )

        for candidate in promotions:
            try:
                await self.save_promotion(
                    candidate, stats, extracted_at=extracted_at, stage=stage
                )
                stage.succeeded += 1
            except Exception as exc:
                await self.session.rollback()
                logger.exception(
                    "Failed to save promotion %r (%s)", candidate.title, candidate.market_name
                )
                stage.record_error(
                    f"Promotion {candidate.title!r} ({candidate.market_name}): {exc}"
                )

        stage.duration = time.monotonic() - started
        stage.details = {
            "total_promotions": stats.total_promotions,
            "saved_promotions": stats.saved_promotions,
            "total_posts": stats.total_posts,
            "saved_posts": stats.saved_posts,
            "skipped_posts": stats.skipped_posts,
            "total_products": stats.total_products,
            "saved_products": stats.saved_products,
        }
        logger.info(
            "Persisted %d/%d promotions, %d/%d posts (%d skipped), %d/%d products",
            stats.saved_promotions,
            stats.total_promotions,
            stats.saved_posts,
            stats.total_posts,
            stats.skipped_posts,
            stats.saved_products,
            stats.total_products,
        )
        return stage, stats

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    async def save_promotion(
        self,
        candidate: CandidatePromotion,
        stats: SaveStats,
        *,
        extracted_at: datetime,
        stage: StageResult | None = None,
    ) -> uuid.UUID:
        market = await self.find_market(candidate.market_name)
        market_id = market.id

        promotion = await self.find_existing_promotion(
            market_id, candidate.start_date, candidate.end_date
        )
        if promotion is None:
            promotion, created = await self.create_promotion(candidate, market_id)
            if created:
                stats.saved_promotions += 1
                logger.info(
                    "Created promotion %s for %s (%s -> %s)",
                    promotion.id,
                    candidate.market_name,
                    candidate.start_date,
                    candidate.end_date,
                )
        else:
            logger.info("Reusing promotion %s for %s", promotion.id, candidate.market_name)
        promotion_id = promotion.id

        for candidate_post in candidate.posts:
            try:
                await self.save_post(
                    candidate_post, promotion_id, stats, extracted_at=extracted_at, stage=stage
                )
            except Exception as exc:
                await self.session.rollback()
                logger.exception("Failed to save post %s", candidate_post.post_code)
                if stage is not None:
                    stage.errors.append(f"Post {candidate_post.post_code}: {exc}")
        return promotion_id

    async def find_market(self, name: str) -> Market:
        result = await self.session.execute(select(Market).where(Market.name == name))
        market = result.scalars().first()
        if market is None:
            raise MarketNotFoundError(f"Market not found: {name}")
        return market

    async def find_existing_promotion(
        self, market_id: uuid.UUID, start_date: date, end_date: date
    ) -> Promotion | None:
        stmt = select(Promotion).where(
            Promotion.market_id == market_id,
            Promotion.start_date == start_date,
            Promotion.end_date == end_date,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_promotion(
        self, candidate: CandidatePromotion, market_id: uuid.UUID
    ) -> tuple[Promotion, bool]:
        """Insert a promotion; on a unique-key race return the winner's row."""
        promotion = Promotion(
            id=uuid.uuid4(),
            market_id=market_id,
            title=candidate.title,
            start_date=candidate.start_date,
            end_date=candidate.end_date,
        )
        self.session.add(promotion)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            existing = await self.find_existing_promotion(
                market_id, candidate.start_date, candidate.end_date
            )
            if existing is None:
                raise
            return existing, False
        return promotion, True

    # ------------------------------------------------------------------
    # Post / products
    # ------------------------------------------------------------------

    async def find_post(self, post_code: str) -> Post | None:
        result = await self.session.execute(select(Post).where(Post.post_code == post_code))
        return result.scalar_one_or_none()

    async def save_post(
        self,
        candidate: CandidatePost,
        promotion_id: uuid.UUID,
        stats: SaveStats,
        *,
        extracted_at: datetime,
        stage: StageResult | None = None,
    ) -> bool:
        """Create the post and its products.  Returns ``False`` when skipped."""
        existing = await self.find_post(candidate.post_code)
        if existing is not None:
            stats.skipped_posts += 1
            logger.debug(
                "Post %s already stored under promotion %s, skipping",
                candidate.post_code,
                existing.promotion_id,
            )
            return False

        post_id = uuid.uuid4()
        self.session.add(
            Post(
                id=post_id,
                promotion_id=promotion_id,
                post_code=candidate.post_code,
                published_at=candidate.published_at or extracted_at,
                extracted_at=extracted_at,
            )
        )
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            stats.skipped_posts += 1
            logger.info("Post %s was stored concurrently, skipping", candidate.post_code)
            return False

        stats.saved_posts += 1
        logger.info(
            "Created post %s (%d products) under promotion %s",
            candidate.post_code,
            len(candidate.products),
            promotion_id,
        )

        for candidate_product in candidate.products:
            try:
                await self.save_product(candidate_product, post_id)
                stats.saved_products += 1
            except Exception as exc:
                await self.session.rollback()
                logger.exception(
                    "Failed to save product %r of post %s",
                    candidate_product.description,
                    candidate.post_code,
                )
                if stage is not None:
                    stage.errors.append(
                        f"Product {candidate_product.description!r} of post {candidate.post_code}: {exc}"
                    )
        return True

    async def save_product(self, candidate: CandidateProduct, post_id: uuid.UUID) -> Product:
        product = Product(
            id=uuid.uuid4(),
            post_id=post_id,
            description=candidate.description,
            price=parse_price(candidate.price),
            category=candidate.category.value,
        )
        self.session.add(product)
        await self.session.commit()
        logger.debug("Saved product %r (%s)", candidate.description, product.price)
        return product
