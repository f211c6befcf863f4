"""SQLAlchemy models."""

from mercado_radar.models.category import CATEGORY_DESCRIPTIONS, Category
from mercado_radar.models.market import Market
from mercado_radar.models.post import Post
from mercado_radar.models.product import Product
from mercado_radar.models.promotion import Promotion

__all__ = [
    "CATEGORY_DESCRIPTIONS",
    "Category",
    "Market",
    "Post",
    "Product",
    "Promotion",
]
