"""Services package for Ganj.

This module exports the data sources, the hybrid dispatcher and the
search and contact services.
"""

from ganj.services.cache import ResponseCache
from ganj.services.catalog import CatalogError, CatalogNotFoundError, CatalogService
from ganj.services.contact import ContactService, ContactSubmission
from ganj.services.entities import (
    Category,
    Chapter,
    ChapterDetail,
    Poem,
    Poet,
    PoetDetail,
)
from ganj.services.ganjoor import GanjoorApiError, GanjoorNetworkError, GanjoorService
from ganj.services.hybrid import DataSource, HybridPoetryService, RequestMetric
from ganj.services.index_store import IndexSnapshot, IndexStore
from ganj.services.search import SearchType, UnifiedSearchResult, UnifiedSearchService
from ganj.services.search_index import IndexState, SearchIndex, SearchResults
from ganj.services.text_index import TextIndex

__all__ = [
    # Entities
    "Category",
    "Chapter",
    "ChapterDetail",
    "Poem",
    "Poet",
    "PoetDetail",
    # Cache
    "ResponseCache",
    # Data sources
    "CatalogError",
    "CatalogNotFoundError",
    "CatalogService",
    "GanjoorApiError",
    "GanjoorNetworkError",
    "GanjoorService",
    # Hybrid
    "DataSource",
    "HybridPoetryService",
    "RequestMetric",
    # Search
    "IndexSnapshot",
    "IndexState",
    "IndexStore",
    "SearchIndex",
    "SearchResults",
    "SearchType",
    "TextIndex",
    "UnifiedSearchResult",
    "UnifiedSearchService",
    # Contact
    "ContactService",
    "ContactSubmission",
]
