"""API routes for persisted promotions."""

from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from mercado_radar.config import get_settings
from mercado_radar.database import get_db
from mercado_radar.services.notification import PromotionNotifier

router = APIRouter(prefix="/promotions", tags=["promotions"])


class ProductOut(BaseModel):
    description: str
    price: Decimal
    category: str


class PostOut(BaseModel):
    post_code: str
    post_url: str
    products: list[ProductOut]


class PromotionOut(BaseModel):
    market: str
    title: str | None
    start_date: date
    end_date: date
    posts: list[PostOut]


@router.get("/active", response_model=list[PromotionOut])
async def list_active_promotions(
    on: date | None = Query(None, description="Day to check, defaults to today in the configured timezone"),
    db: AsyncSession = Depends(get_db),
):
    notifier = PromotionNotifier(db)
    if on is None:
        on = datetime.now(ZoneInfo(get_settings().timezone)).date()
    promotions = await notifier.get_active_promotions(on)
    return [
        PromotionOut(
            market=promotion.market.name,
            title=promotion.title,
            start_date=promotion.start_date,
            end_date=promotion.end_date,
            posts=[
                PostOut(
                    post_code=post.post_code,
                    post_url=post.post_url,
                    products=[
                        ProductOut(
                            description=p.description,
                            price=p.price,
                            category=p.category,
                        )
                        for p in post.products
                    ],
                )
                for post in promotion.posts
            ],
        )
        for promotion in promotions
    ]
