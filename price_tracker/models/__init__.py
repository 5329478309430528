"""
Models package — export all SQLAlchemy models.
"""

from price_tracker.models.base import Base
from price_tracker.models.group import Group
from price_tracker.models.product import Product

__all__ = ["Base", "Group", "Product"]
