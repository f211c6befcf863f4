"""End-to-end pipeline runs with every external backend faked."""

import json
from datetime import date, datetime, timezone

import httpx
import pytest
from sqlalchemy import func, select

from mercado_radar.config import Settings
from mercado_radar.models import Market, Post, Product, Promotion
from mercado_radar.pipeline import PipelineRunner
from mercado_radar.schemas import ScrapedImage, ScrapedPost, StageResult
from mercado_radar.services.extractor import StructuredExtractor
from mercado_radar.services.ocr import OCRProcessor

TARGET = date(2024, 1, 15)
MARKET = "Supermercado Bom Preço"

IMAGE_TEXTS = {
    b"p1-1.jpg": "Super oferta da semana! Arroz Tio João 5kg R$ 19,90",
    b"p1-2.jpg": "Feijão Carioca 1kg R$ 7,49 válido até 20/01",
    b"p2-1.jpg": "Promoção especial limpeza: Sabão OMO 1kg por R$ 12,99",
    b"p3-1.jpg": "Bom dia!",
}

MODEL_ANSWER = json.dumps(
    [
        {
            "title": "Ofertas da semana",
            "startDate": "15/01/2024",
            "endDate": "20/01/2024",
            "posts": [
                {
                    "postCode": "P1",
                    "products": [
                        {"description": "Arroz Tio João 5kg", "price": "R$ 19,90", "category": "GROCERY"},
                        {"description": "Feijão Carioca 1kg", "price": "R$ 7,49", "category": "GROCERY"},
                    ],
                }
            ],
        },
        {
            "title": "Limpeza",
            "startDate": "15/01/2024",
            "endDate": "20/01/2024",
            "posts": [
                {
                    "postCode": "P2",
                    "products": [
                        {"description": "Sabão em pó OMO 1kg", "price": "R$ 12,99", "category": "CLEANING"},
                    ],
                }
            ],
        },
    ]
)


def _scraped(code: str, *names: str) -> ScrapedPost:
    return ScrapedPost(
        id=f"id-{code}",
        market_name=MARKET,
        market_username="bompreco",
        post_code=code,
        published_at=datetime(2024, 1, 15, 13, 0, tzinfo=timezone.utc),
        images=[ScrapedImage(url=f"https://cdn.example.com/{n}") for n in names],
    )


class FakeScraper:
    def __init__(self, posts, fail: bool = False):
        self.posts = posts
        self.fail = fail
        self.target_dates = []

    async def scrape(self, accounts, target_date):
        self.target_dates.append(target_date)
        stage = StageResult(name="scrape", processed=len(accounts))
        if self.fail:
            for market in accounts:
                stage.record_error(f"Market {market.name}: 429 Too Many Requests")
            return stage, []
        stage.succeeded = len(accounts)
        return stage, list(self.posts)


def _image_handler(request: httpx.Request) -> httpx.Response:
    name = request.url.path.rsplit("/", 1)[-1]
    return httpx.Response(200, content=name.encode(), headers={"content-type": "image/jpeg"})


def _scraped_posts():
    return [
        _scraped("P1", "p1-1.jpg", "p1-2.jpg"),
        _scraped("P2", "p2-1.jpg"),
        _scraped("P3", "p3-1.jpg"),
        _scraped("P4"),
    ]


@pytest.fixture
def make_runner(settings, session_factory, email_provider, fake_llm_client, fake_ocr_client):
    def _make(*, posts=None, answer=MODEL_ANSWER, scraper=None, runner_settings=None):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(_image_handler))
        return PipelineRunner(
            settings=runner_settings or settings,
            session_factory=session_factory,
            scraper=scraper or FakeScraper(_scraped_posts() if posts is None else posts),
            ocr=OCRProcessor(fake_ocr_client(IMAGE_TEXTS), http_client=http_client),
            extractor=StructuredExtractor(fake_llm_client(answer)),
            email_provider=email_provider,
            notify=True,
            dispose_engine=False,
            today=TARGET,
        )

    return _make


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestPipelineRunner:
    @pytest.mark.asyncio
    async def test_full_run(self, db, make_runner, email_provider, sample_market: Market):
        report = await make_runner().run(TARGET)

        assert report.success, report.error
        assert report.target_date == TARGET
        assert list(report.stages) == ["scrape", "ocr", "extract", "merge", "persist", "notify"]
        assert report.stages["ocr"].processed == 3
        assert report.stages["ocr"].details["promotion_posts"] == 2
        assert report.stages["merge"].details["merged_promotions"] == 1
        assert report.stages["persist"].details["saved_products"] == 3
        assert report.stages["notify"].details["emails_sent"] == 1

        assert await _count(db, Promotion) == 1
        assert await _count(db, Post) == 2
        assert await _count(db, Product) == 3
        categories = (await db.execute(select(Product.category).distinct())).scalars().all()
        assert sorted(categories) == ["CLEANING", "GROCERY"]

        [message] = email_provider.sent
        assert "Sabão em pó OMO 1kg" in message.html

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, db, make_runner, sample_market: Market):
        first = await make_runner().run(TARGET)
        second = await make_runner().run(TARGET)

        assert first.success and second.success
        persist = second.stages["persist"].details
        assert persist["saved_promotions"] == 0
        assert persist["saved_posts"] == 0
        assert persist["skipped_posts"] == 2
        assert await _count(db, Promotion) == 1
        assert await _count(db, Post) == 2
        assert await _count(db, Product) == 3

    @pytest.mark.asyncio
    async def test_quiet_day_succeeds(self, db, make_runner, email_provider, sample_market: Market):
        report = await make_runner(posts=[]).run(TARGET)

        assert report.success
        assert report.stages["extract"].processed == 0
        assert report.stages["notify"].processed == 0
        assert email_provider.sent == []
        assert await _count(db, Promotion) == 0

    @pytest.mark.asyncio
    async def test_scrape_failure_fails_run(self, db, make_runner, sample_market: Market):
        report = await make_runner(scraper=FakeScraper([], fail=True)).run(TARGET)

        assert not report.success
        assert "scrape" in report.error
        assert "ocr" not in report.stages
        assert any("429" in e for e in report.errors)

    @pytest.mark.asyncio
    async def test_missing_configuration_fails_before_any_stage(self, make_runner, sample_market: Market):
        incomplete = Settings(_env_file=None, gemini_api_key="", google_vision_api_key="")

        report = await make_runner(runner_settings=incomplete).run(TARGET)

        assert not report.success
        assert "GEMINI_API_KEY" in report.error
        assert report.stages == {}

    @pytest.mark.asyncio
    async def test_empty_store_fails_run(self, make_runner):
        report = await make_runner().run(TARGET)

        assert not report.success
        assert "No markets" in report.error

    @pytest.mark.asyncio
    async def test_report_as_dict(self, make_runner, sample_market: Market):
        report = await make_runner().run(TARGET)

        data = report.as_dict()
        assert data["success"] is True
        assert data["target_date"] == "2024-01-15"
        assert data["stages"]["persist"]["saved_posts"] == 2
        json.dumps(data)

    @pytest.mark.asyncio
    async def test_previous_day_run_reports_on_current_day(
        self, db, settings, make_runner, email_provider, sample_market: Market
    ):
        answer = json.dumps(
            [
                {
                    "title": "Ofertas de hoje",
                    "posts": [
                        {
                            "postCode": "P1",
                            "products": [
                                {"description": "Arroz Tio João 5kg", "price": "R$ 19,90", "category": "GROCERY"},
                            ],
                        }
                    ],
                }
            ]
        )
        scraper = FakeScraper(_scraped_posts())
        backfill = settings.model_copy(update={"include_previous_day": True})

        report = await make_runner(answer=answer, scraper=scraper, runner_settings=backfill).run()

        assert report.success, report.error
        assert report.target_date == date(2024, 1, 14)
        assert scraper.target_dates == [date(2024, 1, 14)]
        promotion = (await db.execute(select(Promotion))).scalar_one()
        assert (promotion.start_date, promotion.end_date) == (TARGET, TARGET)
        [message] = email_provider.sent
        assert "15/01/2024" in message.subject
