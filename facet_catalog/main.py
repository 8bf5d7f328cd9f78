"""
Catalog HTTP API - FastAPI application.

Exposes product listing with faceted filters, the filter sidebar and raw
filter counts. Index and database outages surface as 503; nothing here
renders a partial page.
"""

import os
import time as _time
import traceback
from typing import Dict, List

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware

from facet_catalog import __version__
from facet_catalog.catalog_service import CatalogService, SortOrder
from facet_catalog.config import get_config
from facet_catalog.database import get_db
from facet_catalog.errors import IndexStoreError
from facet_catalog.filter_engine import FilterQueryEngine
from facet_catalog.index_store import FacetIndexStore
from facet_catalog.logger import get_logger
from facet_catalog.schemas import FilterGroup, HealthStatus, ProductPage, parse_filter_params

logger = get_logger("api")

_index_store = None


def get_index_store() -> FacetIndexStore:
    """Shared index store; the redis client pools its own connections."""
    global _index_store
    if _index_store is None:
        _index_store = FacetIndexStore.from_config(get_config())
    return _index_store


def get_catalog_service(
    db: Session = Depends(get_db),
    store: FacetIndexStore = Depends(get_index_store),
) -> CatalogService:
    config = get_config()
    return CatalogService(db, FilterQueryEngine(store, config), config)


app = FastAPI(
    title="Facet Catalog",
    description="Product catalog browsing with Redis-backed faceted filters",
    version=__version__,
)

# Enable CORS for the storefront
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class LatencyLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every non-OPTIONS request with method, path, status and duration_ms."""

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)
        t0 = _time.perf_counter()
        response = await call_next(request)
        duration_ms = round((_time.perf_counter() - t0) * 1000, 1)
        logger.info(
            "[LATENCY] %s %s -> %d  %.1fms",
            request.method, request.url.path, response.status_code, duration_ms,
        )
        return response


app.add_middleware(LatencyLoggingMiddleware)


@app.exception_handler(IndexStoreError)
async def index_store_exception_handler(request: Request, exc: IndexStoreError):
    logger.error("Index store unavailable: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Filter index unavailable", "type": type(exc).__name__},
    )


@app.exception_handler(OperationalError)
async def database_exception_handler(request: Request, exc: OperationalError):
    logger.error("Database unavailable: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Database unavailable", "type": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and return 500."""
    err_msg = str(exc)
    logger.error("Unhandled exception: %s\n%s", err_msg, traceback.format_exc())
    # In development, include error detail in response to help debug
    is_dev = os.getenv("ENV", "development").lower() in ("development", "dev", "")
    detail = err_msg if is_dev else "Internal server error"
    return JSONResponse(
        status_code=500,
        content={"detail": detail, "type": type(exc).__name__},
    )


# ---------------------------------------------------------------------------
# Health Check
# ---------------------------------------------------------------------------

@app.get("/health", response_model=HealthStatus)
def health_check(
    db: Session = Depends(get_db),
    store: FacetIndexStore = Depends(get_index_store),
):
    """Database and index connectivity."""
    health_status = {"service": "healthy", "database": "unknown", "index": "unknown"}

    try:
        db.execute(text("SELECT 1"))
        health_status["database"] = "healthy"
    except OperationalError as e:
        health_status["database"] = f"unhealthy: {e}"
        health_status["service"] = "degraded"

    if store.ping():
        health_status["index"] = "healthy"
    else:
        health_status["index"] = "unhealthy: no response"
        health_status["service"] = "degraded"

    return health_status


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

@app.get("/catalog/products", response_model=ProductPage)
def get_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: SortOrder = Query(SortOrder.ID_ASC),
    service: CatalogService = Depends(get_catalog_service),
):
    """
    Paginated products matching ``filter[facet][]=value`` parameters.

    Values within a facet are ORed, facets are ANDed.
    """
    filters = parse_filter_params(request.query_params)
    return service.get_products(page, limit, sort_by.value, filters)


@app.get("/catalog/filters", response_model=List[FilterGroup])
def get_filters(request: Request, service: CatalogService = Depends(get_catalog_service)):
    """Filter sidebar: every facet value with its match count under the active filters."""
    return service.get_filters(parse_filter_params(request.query_params))


@app.get("/catalog/filter-counts")
def get_filter_counts(
    request: Request,
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Dict[str, int]]:
    """Non-zero counts for every facet value in the index."""
    return service.get_filter_counts(parse_filter_params(request.query_params))


# ---------------------------------------------------------------------------
# Raw index queries
# ---------------------------------------------------------------------------

@app.get("/filters/available")
def get_available_filters(store: FacetIndexStore = Depends(get_index_store)) -> Dict[str, Dict[str, int]]:
    """Unfiltered size of every facet value."""
    return FilterQueryEngine(store, get_config()).available_filters()


@app.get("/filters/products")
def get_filtered_product_ids(
    request: Request,
    store: FacetIndexStore = Depends(get_index_store),
) -> List[str]:
    """Ids of products matching the filters, without loading the records."""
    engine = FilterQueryEngine(store, get_config())
    return engine.filtered_product_ids(parse_filter_params(request.query_params))
