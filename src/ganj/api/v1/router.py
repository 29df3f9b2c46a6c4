"""API v1 main router.

Aggregates all v1 API routers into a single router for inclusion in the app.
"""

from fastapi import APIRouter

from ganj.api.v1.contact import router as contact_router
from ganj.api.v1.metrics import router as metrics_router
from ganj.api.v1.poems import router as poems_router
from ganj.api.v1.poets import router as poets_router
from ganj.api.v1.search import router as search_router

router = APIRouter()

router.include_router(poets_router, prefix="/poets", tags=["Poets"])
router.include_router(poems_router, prefix="/poems", tags=["Poems"])
router.include_router(search_router, prefix="/search", tags=["Search"])
router.include_router(contact_router, prefix="/contact", tags=["Contact"])
router.include_router(metrics_router, prefix="/metrics", tags=["Metrics"])
