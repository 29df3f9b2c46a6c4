"""Repository pattern package for Ganj.

This module exports base repository classes and concrete repositories.
"""

from ganj.repositories.base import BaseRepository
from ganj.repositories.category import CategoryRepository
from ganj.repositories.contact import ContactMessageRepository
from ganj.repositories.poem import PoemRepository
from ganj.repositories.poet import PoetRepository

__all__ = [
    # Base
    "BaseRepository",
    # Catalog
    "PoetRepository",
    "CategoryRepository",
    "PoemRepository",
    # Contact
    "ContactMessageRepository",
]
