"""Models package for Ganj.

This module exports the Base class and all model classes.
"""

from ganj.models.base import Base, TimestampMixin
from ganj.models.catalog import CategoryRecord, PoemRecord, PoetRecord
from ganj.models.contact import ContactMessage

__all__ = [
    # Base and Mixins
    "Base",
    "TimestampMixin",
    # Catalog
    "PoetRecord",
    "CategoryRecord",
    "PoemRecord",
    # Contact
    "ContactMessage",
]
