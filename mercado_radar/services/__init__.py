"""Pipeline stages and collaborators."""

from mercado_radar.services.classifier import CatalogClassifier
from mercado_radar.services.extractor import StructuredExtractor
from mercado_radar.services.merger import merge_promotions_by_period
from mercado_radar.services.persister import PromotionPersister, parse_price

__all__ = [
    "CatalogClassifier",
    "PromotionPersister",
    "StructuredExtractor",
    "merge_promotions_by_period",
    "parse_price",
]
