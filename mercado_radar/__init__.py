"""Mercado Radar: supermarket promotion catalogs from Instagram to the database."""

__version__ = "1.0.0"
