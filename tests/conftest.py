"""Pytest fixtures for Mercado Radar tests."""

import os
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

# Must be set before the application modules build their engine.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("EMAIL_PROVIDER", "log")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from mercado_radar.config import Settings
from mercado_radar.database import Base, get_db
from mercado_radar.main import app
from mercado_radar.models import Market, Post, Product, Promotion
from mercado_radar.schemas import LLMResponse, OCRText, TokenUsage


TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db():
    async with test_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def db():
    async with test_session() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        gemini_api_key="test-gemini-key",
        google_vision_api_key="test-vision-key",
        email_provider="log",
        email_recipient="ops@example.com",
        notifications_enabled=True,
        scheduler_enabled=False,
    )


@pytest_asyncio.fixture
async def sample_market(db: AsyncSession) -> Market:
    market = Market(
        id=uuid.uuid4(),
        name="Supermercado Bom Preço",
        city="Campinas",
        instagram_username="bompreco",
    )
    db.add(market)
    await db.commit()
    await db.refresh(market)
    return market


@pytest_asyncio.fixture
async def sample_promotion(db: AsyncSession, sample_market: Market) -> Promotion:
    promotion = Promotion(
        id=uuid.uuid4(),
        market_id=sample_market.id,
        title="Ofertas da semana",
        start_date=date(2024, 1, 15),
        end_date=date(2024, 1, 20),
    )
    post = Post(
        id=uuid.uuid4(),
        promotion_id=promotion.id,
        post_code="C1abcDEF",
        published_at=datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc),
        extracted_at=datetime(2024, 1, 15, 23, 0, tzinfo=timezone.utc),
    )
    db.add_all([promotion, post])
    db.add_all(
        [
            Product(
                id=uuid.uuid4(),
                post_id=post.id,
                description="Arroz Tio João 5kg",
                price=Decimal("19.90"),
                category="GROCERY",
            ),
            Product(
                id=uuid.uuid4(),
                post_id=post.id,
                description="Feijão Carioca 1kg",
                price=Decimal("7.49"),
                category="GROCERY",
            ),
            Product(
                id=uuid.uuid4(),
                post_id=post.id,
                description="Sabão em pó OMO 1kg",
                price=Decimal("12.99"),
                category="CLEANING",
            ),
        ]
    )
    await db.commit()
    return promotion


# ---------------------------------------------------------------------------
# Fakes for the external backends
# ---------------------------------------------------------------------------


class FakeLLMClient:
    """Returns canned answers in order and remembers the prompts."""

    def __init__(self, *answers: str, error: Exception | None = None):
        self.answers = list(answers)
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> LLMResponse:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        text = self.answers.pop(0) if self.answers else "[]"
        return LLMResponse(
            text=text,
            usage=TokenUsage(prompt_tokens=100, candidates_tokens=20, total_tokens=120),
        )


class FakeOCRClient:
    """Maps image content to text; unknown content has no text."""

    def __init__(self, texts: dict[bytes, str] | None = None, error: Exception | None = None):
        self.texts = texts or {}
        self.error = error
        self.calls = 0

    async def detect_text(self, content: bytes):
        self.calls += 1
        if self.error is not None:
            raise self.error
        text = self.texts.get(content)
        if text is None:
            return None
        return OCRText(text=text, confidence=0.93)


@pytest.fixture
def fake_llm_client():
    return FakeLLMClient


@pytest.fixture
def fake_ocr_client():
    return FakeOCRClient


class FakeEmailProvider:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, message) -> bool:
        if self.fail:
            raise RuntimeError("SMTP relay unavailable")
        self.sent.append(message)
        return True


@pytest.fixture
def email_provider():
    return FakeEmailProvider()


@pytest.fixture
def failing_email_provider():
    return FakeEmailProvider(fail=True)


@pytest.fixture
def session_factory():
    return test_session
