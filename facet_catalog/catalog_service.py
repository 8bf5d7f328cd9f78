"""
Catalog query service.

Combines the candidate ids from the filter engine with product rows from the
relational store and returns sorted, paginated pages.
"""

import math
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from facet_catalog.config import CatalogConfig, get_config
from facet_catalog.filter_engine import FilterQueryEngine, normalize_selection
from facet_catalog.index_builder import CATEGORY_FACET
from facet_catalog.logger import get_logger
from facet_catalog.models import Category, Product

logger = get_logger("catalog_service")

# Candidate ids are passed to the database in chunks of this size.
IN_CLAUSE_CHUNK = 1000


class SortOrder(str, Enum):
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    ID_ASC = "id_asc"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SortOrder":
        """Unknown or missing sort keys fall back to id ascending."""
        try:
            return cls(value)
        except ValueError:
            return cls.ID_ASC


def _order_by(sort: SortOrder):
    # Always end with the primary key so pages never overlap.
    if sort is SortOrder.PRICE_ASC:
        return [Product.price.asc(), Product.id.asc()]
    if sort is SortOrder.PRICE_DESC:
        return [Product.price.desc(), Product.id.asc()]
    return [Product.id.asc()]


class CatalogService:
    """Product listing, filter sidebar and filter counts for the storefront."""

    def __init__(self, db: Session, engine: FilterQueryEngine, config: Optional[CatalogConfig] = None):
        self.db = db
        self.engine = engine
        self.config = config or get_config()

    def clamp_paging(self, page: Any, limit: Any):
        """Force page >= 1 and 1 <= limit <= max_page_size."""
        try:
            page = int(page)
        except (TypeError, ValueError):
            page = 1
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            limit = self.config.default_page_size
        return max(page, 1), min(max(limit, 1), self.config.max_page_size)

    def get_products(
        self,
        page: int = 1,
        limit: int = 10,
        sort_by: Optional[str] = None,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        One page of products matching ``filters``.

        Returns:
            {"data": [product dicts], "meta": {current_page, last_page, per_page, total}}
        """
        page, limit = self.clamp_paging(page, limit)
        sort = SortOrder.parse(sort_by)
        filters = normalize_selection(filters)

        conditions = []
        if filters:
            product_ids = self.engine.candidate_set(filters)
            if not product_ids:
                logger.info("No products found matching filters %s", filters)
                return self._page([], page, limit, total=0, last_page=0)
            conditions.append(self._id_condition(sorted(product_ids)))

        total = self.db.execute(
            select(func.count()).select_from(Product).where(*conditions)
        ).scalar_one()

        query = (
            select(Product)
            .where(*conditions)
            .options(
                selectinload(Product.attributes),
                selectinload(Product.images),
                selectinload(Product.categories),
            )
            .order_by(*_order_by(sort))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        products = self.db.execute(query).scalars().all()

        return self._page(
            [product.to_dict() for product in products],
            page,
            limit,
            total=total,
            last_page=math.ceil(total / limit),
        )

    @staticmethod
    def _id_condition(product_ids: List[str]):
        if len(product_ids) <= IN_CLAUSE_CHUNK:
            return Product.id.in_(product_ids)
        return or_(*[
            Product.id.in_(product_ids[start:start + IN_CLAUSE_CHUNK])
            for start in range(0, len(product_ids), IN_CLAUSE_CHUNK)
        ])

    @staticmethod
    def _page(data: List[Dict[str, Any]], page: int, limit: int, total: int, last_page: int) -> Dict[str, Any]:
        return {
            "data": data,
            "meta": {
                "current_page": page,
                "last_page": last_page,
                "per_page": limit,
                "total": total,
            },
        }

    def category_names(self) -> Dict[str, str]:
        """Category id -> name, for display values in the filter sidebar."""
        rows = self.db.execute(select(Category.id, Category.name))
        return {category_id: name for category_id, name in rows}

    def get_filters(self, active: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        category_names = {}
        if CATEGORY_FACET in self.config.facets or not self.config.facets:
            category_names = self.category_names()
        return self.engine.get_filters(active, category_names)

    def get_filter_counts(self, applied: Optional[Mapping[str, Any]]) -> Dict[str, Dict[str, int]]:
        return self.engine.get_filter_counts(applied)
