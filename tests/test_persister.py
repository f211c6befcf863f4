"""Tests for price parsing and idempotent persistence."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from mercado_radar.models import Market, Post, Product, Promotion
from mercado_radar.models.category import Category
from mercado_radar.schemas import CandidatePost, CandidateProduct, CandidatePromotion
from mercado_radar.services.persister import PromotionPersister, parse_price

EXTRACTED_AT = datetime(2024, 1, 15, 23, 0, tzinfo=timezone.utc)


class TestParsePrice:
    def test_brazilian_format(self):
        assert parse_price("R$ 1.234,56") == Decimal("1234.56")
        assert parse_price("R$ 19,90") == Decimal("19.90")
        assert parse_price("19,9") == Decimal("19.90")

    def test_english_and_plain_format(self):
        assert parse_price("1,234.56") == Decimal("1234.56")
        assert parse_price("19.90") == Decimal("19.90")
        assert parse_price("R$ 5") == Decimal("5.00")

    def test_dots_as_thousands(self):
        assert parse_price("R$ 1.234") == Decimal("1234.00")

    def test_first_number_wins(self):
        assert parse_price("de R$ 25,90 por R$ 19,90") == Decimal("25.90")

    def test_unparseable_is_zero(self):
        assert parse_price("grátis") == Decimal("0.00")
        assert parse_price("") == Decimal("0.00")
        assert parse_price(None) == Decimal("0.00")

    def test_numbers(self):
        assert parse_price(3.5) == Decimal("3.50")
        assert parse_price(Decimal("2.499")) == Decimal("2.50")


def _candidate(market_name: str, *posts: CandidatePost) -> CandidatePromotion:
    return CandidatePromotion(
        market_name=market_name,
        title="Ofertas da semana",
        start_date=date(2024, 1, 15),
        end_date=date(2024, 1, 20),
        posts=list(posts),
    )


def _post(code: str, *products: CandidateProduct, market: str = "Supermercado Bom Preço") -> CandidatePost:
    return CandidatePost(
        post_id=f"id-{code}",
        post_code=code,
        market_name=market,
        published_at=datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc),
        products=list(products),
    )


ARROZ = CandidateProduct(description="Arroz Tio João 5kg", price="R$ 19,90", category=Category.GROCERY)
LEITE = CandidateProduct(description="Leite Integral 1L", price="R$ 4,99", category=Category.DAIRY)
BRINDE = CandidateProduct(description="Brinde surpresa", price="consulte", category=Category.OTHER)


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestPromotionPersister:
    @pytest.mark.asyncio
    async def test_saves_promotion_posts_and_products(self, db, sample_market: Market):
        candidate = _candidate(sample_market.name, _post("P1", ARROZ, BRINDE), _post("P2", LEITE))

        stage, stats = await PromotionPersister(db).execute([candidate], extracted_at=EXTRACTED_AT)

        assert stage.success
        assert stats.saved_promotions == 1
        assert stats.saved_posts == 2
        assert stats.saved_products == 3
        assert await _count(db, Promotion) == 1
        assert await _count(db, Post) == 2

        prices = (await db.execute(select(Product.description, Product.price))).all()
        by_description = {d: Decimal(p) for d, p in prices}
        assert by_description["Arroz Tio João 5kg"] == Decimal("19.90")
        assert by_description["Brinde surpresa"] == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_rerun_creates_no_duplicates(self, db, sample_market: Market):
        candidate = _candidate(sample_market.name, _post("P1", ARROZ, LEITE))
        persister = PromotionPersister(db)

        await persister.execute([candidate], extracted_at=EXTRACTED_AT)
        stage, stats = await persister.execute([candidate], extracted_at=EXTRACTED_AT)

        assert stage.success
        assert stats.saved_promotions == 0
        assert stats.saved_posts == 0
        assert stats.skipped_posts == 1
        assert stats.saved_products == 0
        assert await _count(db, Promotion) == 1
        assert await _count(db, Post) == 1
        assert await _count(db, Product) == 2

    @pytest.mark.asyncio
    async def test_new_post_joins_existing_promotion(self, db, sample_market: Market):
        persister = PromotionPersister(db)
        await persister.execute([_candidate(sample_market.name, _post("P1", ARROZ))])

        _, stats = await persister.execute([_candidate(sample_market.name, _post("P2", LEITE))])

        assert stats.saved_promotions == 0
        assert stats.saved_posts == 1
        assert await _count(db, Promotion) == 1
        assert await _count(db, Post) == 2

    @pytest.mark.asyncio
    async def test_unknown_market_fails_only_its_promotion(self, db, sample_market: Market):
        good = _candidate(sample_market.name, _post("P1", ARROZ))
        unknown = _candidate("Mercado Fantasma", _post("X1", LEITE, market="Mercado Fantasma"))

        stage, stats = await PromotionPersister(db).execute([unknown, good])

        assert stage.processed == 2
        assert stage.succeeded == 1
        assert stage.errored == 1
        assert "Mercado Fantasma" in stage.errors[0]
        assert stats.saved_promotions == 1
        assert await _count(db, Post) == 1

    @pytest.mark.asyncio
    async def test_published_at_falls_back_to_extraction_time(self, db, sample_market: Market):
        post = _post("P1", ARROZ)
        post.published_at = None

        await PromotionPersister(db).execute(
            [_candidate(sample_market.name, post)], extracted_at=EXTRACTED_AT
        )

        stored = (await db.execute(select(Post))).scalar_one()
        assert stored.published_at.replace(tzinfo=None) == EXTRACTED_AT.replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_failed_product_is_reported_on_stage(self, db, sample_market: Market):
        broken = CandidateProduct(description=None, price="R$ 1,00", category=Category.OTHER)
        candidate = _candidate(sample_market.name, _post("P1", ARROZ, broken, LEITE))

        stage, stats = await PromotionPersister(db).execute([candidate], extracted_at=EXTRACTED_AT)

        assert stage.succeeded == 1
        assert stats.saved_products == 2
        assert len(stage.errors) == 1
        assert "of post P1" in stage.errors[0]
        assert await _count(db, Product) == 2
