"""
Models package: export all SQLAlchemy models.
"""

from src.models.base import Base
from src.models.price_history import PriceHistory
from src.models.product import Product

__all__ = ["Base", "PriceHistory", "Product"]
