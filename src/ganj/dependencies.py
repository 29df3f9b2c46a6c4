"""FastAPI dependency injection container.

Services are constructed once in the application lifespan and stored on
``app.state``; the functions below hand them to route handlers through
``Depends()``. Tests replace them with ``app.dependency_overrides``.
"""

from typing import Any

from fastapi import Request

from ganj.config import Settings
from ganj.core.exceptions import ServiceUnavailableError
from ganj.services.cache import ResponseCache
from ganj.services.catalog import CatalogService
from ganj.services.contact import ContactService
from ganj.services.hybrid import HybridPoetryService
from ganj.services.search import UnifiedSearchService
from ganj.services.search_index import SearchIndex


def _from_state(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise ServiceUnavailableError(f"{name} is not initialized")
    return service


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


# ========================================
# Service Dependencies
# ========================================
def get_cache(request: Request) -> ResponseCache:
    return _from_state(request, "cache")


def get_hybrid_service(request: Request) -> HybridPoetryService:
    """Get the hybrid poetry dispatcher."""
    return _from_state(request, "hybrid")


def get_catalog_service(request: Request) -> CatalogService | None:
    """Get the catalog service, or None when the catalog is disabled."""
    return getattr(request.app.state, "catalog", None)


def get_search_index(request: Request) -> SearchIndex:
    return _from_state(request, "search_index")


def get_unified_search(request: Request) -> UnifiedSearchService:
    return _from_state(request, "unified_search")


def get_contact_service(request: Request) -> ContactService:
    return _from_state(request, "contact")
