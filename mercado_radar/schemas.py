"""In-memory records passed between pipeline stages.

Everything here is unpersisted; the ORM models in :mod:`mercado_radar.models`
are only touched by the persister and the notifier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from mercado_radar.models.category import Category


# ---------------------------------------------------------------------------
# Scraper output
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ScrapedImage:
    url: str
    width: int | None = None
    height: int | None = None


@dataclass(slots=True)
class ScrapedPost:
    id: str
    market_name: str
    market_username: str
    post_code: str
    published_at: datetime
    images: list[ScrapedImage] = field(default_factory=list)
    caption: str = ""
    is_carousel: bool = False


# ---------------------------------------------------------------------------
# OCR output
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class OCRText:
    """Text recognized by the OCR backend for one image."""

    text: str
    confidence: float


@dataclass(slots=True)
class OCRResult:
    image_url: str
    success: bool = False
    text: str = ""
    confidence: float = 0.0
    processing_time: float = 0.0
    is_promotion_catalog: bool = False
    error: str | None = None


@dataclass(slots=True)
class PostOCRResult:
    post_id: str
    post_code: str
    market_name: str
    published_at: datetime | None = None
    success: bool = False
    total_images: int = 0
    processed_images: int = 0
    ocr_results: list[OCRResult] = field(default_factory=list)
    combined_text: str = ""
    is_promotion_post: bool = False
    processing_time: float = 0.0
    errors: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Language model output
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    candidates_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: TokenUsage | None) -> None:
        if other is None:
            return
        self.prompt_tokens += other.prompt_tokens
        self.candidates_tokens += other.candidates_tokens
        self.total_tokens += other.total_tokens


@dataclass(slots=True)
class LLMResponse:
    text: str
    usage: TokenUsage | None = None


@dataclass(slots=True)
class CandidateProduct:
    description: str
    price: str
    category: Category = Category.OTHER


@dataclass(slots=True)
class CandidatePost:
    post_id: str
    post_code: str
    market_name: str
    extracted_text: str = ""
    published_at: datetime | None = None
    products: list[CandidateProduct] = field(default_factory=list)


@dataclass(slots=True)
class CandidatePromotion:
    market_name: str
    title: str
    start_date: date
    end_date: date
    posts: list[CandidatePost] = field(default_factory=list)

    @property
    def period_key(self) -> tuple[str, str, str]:
        """(market, ISO start, ISO end), compared as exact strings."""
        return (
            self.market_name,
            self.start_date.isoformat(),
            self.end_date.isoformat(),
        )


# ---------------------------------------------------------------------------
# Stage bookkeeping
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class StageResult:
    name: str
    processed: int = 0
    succeeded: int = 0
    errored: int = 0
    errors: list[str] = field(default_factory=list)
    duration: float = 0.0
    details: dict[str, Any] = field(default_factory=dict)

    def record_error(self, message: str) -> None:
        self.errored += 1
        self.errors.append(message)

    @property
    def success(self) -> bool:
        """Empty stages succeed; otherwise at least one item must progress."""
        return self.processed == 0 or self.succeeded > 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "errored": self.errored,
            "errors": list(self.errors),
            "duration": round(self.duration, 3),
            **self.details,
        }


@dataclass(slots=True)
class RunReport:
    target_date: date
    success: bool = False
    error: str | None = None
    duration: float = 0.0
    stages: dict[str, StageResult] = field(default_factory=dict)

    @property
    def errors(self) -> list[str]:
        messages = [msg for stage in self.stages.values() for msg in stage.errors]
        if self.error:
            messages.append(self.error)
        return messages

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "target_date": self.target_date.isoformat(),
            "error": self.error,
            "duration": round(self.duration, 3),
            "stages": {name: stage.as_dict() for name, stage in self.stages.items()},
            "errors": self.errors,
        }
