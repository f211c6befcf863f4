"""Active promotions report.

Queries the promotions valid on a given day, flattens their products, groups
them by category and e-mails one HTML report to the configured recipient.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mercado_radar.config import Settings, get_settings
from mercado_radar.models import CATEGORY_DESCRIPTIONS, Category, Market, Post, Promotion
from mercado_radar.schemas import StageResult
from mercado_radar.services.email import EmailMessage, EmailProvider

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",)),
)


@dataclass(slots=True)
class ReportProduct:
    description: str
    price: Decimal
    category: str
    valid_until: str
    post_url: str
    market_name: str

    @property
    def price_label(self) -> str:
        return format_brl(self.price)


@dataclass(slots=True)
class CategoryGroup:
    category: str
    name: str
    products: list[ReportProduct] = field(default_factory=list)


def format_brl(value: Decimal) -> str:
    """``Decimal("1234.5")`` -> ``"R$ 1.234,50"``."""
    text = f"{value:,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def category_name(value: str) -> str:
    try:
        description = CATEGORY_DESCRIPTIONS[Category(value)]
    except ValueError:
        return value
    return description.split(":", 1)[0]


class PromotionNotifier:
    def __init__(
        self,
        session: AsyncSession,
        provider: EmailProvider | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.provider = provider or EmailProvider(self.settings)

    async def get_active_promotions(self, day: date) -> list[Promotion]:
        stmt = (
            select(Promotion)
            .join(Promotion.market)
            .options(
                selectinload(Promotion.market),
                selectinload(Promotion.posts).selectinload(Post.products),
            )
            .where(Promotion.start_date <= day, Promotion.end_date >= day)
            .order_by(Market.name, Promotion.start_date)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        promotions = list(result.scalars().unique().all())
        logger.info("Found %d promotions active on %s", len(promotions), day)
        return promotions

    @staticmethod
    def extract_products(promotions: list[Promotion]) -> list[ReportProduct]:
        products: list[ReportProduct] = []
        for promotion in promotions:
            valid_until = promotion.end_date.strftime("%d/%m/%Y")
            for post in promotion.posts:
                for product in post.products:
                    products.append(
                        ReportProduct(
                            description=product.description,
                            price=Decimal(product.price),
                            category=product.category,
                            valid_until=valid_until,
                            post_url=post.post_url,
                            market_name=promotion.market.name,
                        )
                    )
        return products

    @staticmethod
    def group_by_category(products: list[ReportProduct]) -> list[CategoryGroup]:
        """Categories alphabetically, products by ascending price."""
        grouped: dict[str, list[ReportProduct]] = {}
        for product in products:
            grouped.setdefault(product.category, []).append(product)
        return [
            CategoryGroup(
                category=key,
                name=category_name(key),
                products=sorted(grouped[key], key=lambda p: p.price),
            )
            for key in sorted(grouped)
        ]

    @staticmethod
    def render_report(groups: list[CategoryGroup], day: date) -> str:
        template = ENV.get_template("active_promotions.html")
        return template.render(
            report_date=day.strftime("%d/%m/%Y"),
            total_products=sum(len(g.products) for g in groups),
            categories=groups,
        )

    async def send_active_promotions(self, day: date) -> StageResult:
        started = time.monotonic()
        stage = StageResult(name="notify")

        promotions = await self.get_active_promotions(day)
        stage.details = {"total_promotions": len(promotions), "emails_sent": 0}
        if not promotions:
            logger.warning("No active promotions on %s, nothing to send.", day)
            stage.duration = time.monotonic() - started
            return stage

        groups = self.group_by_category(self.extract_products(promotions))
        html = self.render_report(groups, day)
        message = EmailMessage(
            to=self.settings.email_recipient,
            subject=f"Mercado Radar - Promoções do dia {day.strftime('%d/%m/%Y')}",
            html=html,
        )

        stage.processed = 1
        try:
            if await self.provider.send(message):
                stage.succeeded = 1
                stage.details["emails_sent"] = 1
            else:
                stage.record_error("Email provider reported a failure")
        except Exception as exc:
            logger.exception("Failed to send the promotions report")
            stage.record_error(f"Email send failed: {exc}")

        stage.duration = time.monotonic() - started
        return stage
