"""
Facet index rebuild.

Reads attributes, category links and prices from the relational store and
regenerates every facet set in Redis:

    facet:{filter_key}:{value}   per product attribute
    facet:category:{id}          per category link
    facet:price:{bucket}         per price bucket (see PRICE_BUCKETS)
    products:all / products:available

The rebuild is a full, single-writer batch job. Old keys are deleted before
new ones are written, so readers running at the same time may see an
incomplete index; a crashed rebuild is repaired by running it again.
"""

import time
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from facet_catalog.config import CatalogConfig, get_config
from facet_catalog.index_store import FacetIndexStore
from facet_catalog.keys import facet_key, facet_pattern
from facet_catalog.logger import get_logger
from facet_catalog.models import Product, ProductAttribute, ProductCategory

logger = get_logger("index_builder")

CATEGORY_FACET = "category"
PRICE_FACET = "price"

# (label, lower bound inclusive, upper bound exclusive or None for open-ended)
PRICE_BUCKETS = (
    ("0-1000", Decimal("0"), Decimal("1000")),
    ("1000-5000", Decimal("1000"), Decimal("5000")),
    ("5000-10000", Decimal("5000"), Decimal("10000")),
    ("10000-50000", Decimal("10000"), Decimal("50000")),
    ("50000+", Decimal("50000"), None),
)

PRICE_BUCKET_ORDER = {label: position for position, (label, _, _) in enumerate(PRICE_BUCKETS)}


def price_bucket(price) -> Optional[str]:
    """Bucket label for a price, or None for a missing or negative price."""
    if price is None:
        return None
    price = Decimal(str(price))
    for label, lower, upper in PRICE_BUCKETS:
        if price >= lower and (upper is None or price < upper):
            return label
    return None


@dataclass
class RebuildStats:
    """Summary of one index rebuild."""
    products: int = 0
    available_products: int = 0
    attribute_keys: int = 0
    category_keys: int = 0
    price_keys: int = 0
    deleted_keys: int = 0
    elapsed_seconds: float = 0.0

    @property
    def total_keys(self) -> int:
        return self.attribute_keys + self.category_keys + self.price_keys


class FacetIndexBuilder:
    """Regenerates the facet index from the primary store."""

    def __init__(self, store: FacetIndexStore, config: Optional[CatalogConfig] = None):
        self.store = store
        self.config = config or get_config()

    def _key(self, name: str, value: str) -> str:
        return facet_key(name, value, prefix=self.config.key_prefix)

    def clear(self) -> int:
        """Delete every facet key plus the product id sets; returns the number of keys removed."""
        deleted = self.store.delete_matching(facet_pattern(prefix=self.config.key_prefix))
        deleted += self.store.delete(self.config.all_products_key, self.config.available_products_key)
        return deleted

    def rebuild(self, session: Session) -> RebuildStats:
        """Wipe and rebuild the whole index. Only reads from ``session``."""
        started = time.perf_counter()
        logger.info("Rebuilding facet index under '%s:*'...", self.config.key_prefix)
        stats = RebuildStats()

        stats.deleted_keys = self.clear()

        products = session.execute(select(Product.id, Product.price, Product.available)).all()
        all_ids = [row.id for row in products]
        available_ids = [row.id for row in products if row.available]
        self.store.add_many({
            self.config.all_products_key: all_ids,
            self.config.available_products_key: available_ids,
        })
        stats.products = len(all_ids)
        stats.available_products = len(available_ids)

        stats.attribute_keys = self._index_attributes(session)
        stats.category_keys = self._index_categories(session)
        stats.price_keys = self._index_prices(products)

        stats.elapsed_seconds = round(time.perf_counter() - started, 3)
        logger.info(
            "Facet index rebuilt: %d products, %d attribute keys, %d category keys, "
            "%d price keys (%d old keys removed) in %.3fs",
            stats.products, stats.attribute_keys, stats.category_keys,
            stats.price_keys, stats.deleted_keys, stats.elapsed_seconds,
        )
        return stats

    def _index_attributes(self, session: Session) -> int:
        sets: Dict[str, Set[str]] = defaultdict(set)
        rows = session.execute(
            select(ProductAttribute.product_id, ProductAttribute.filter_key, ProductAttribute.value)
        )
        for product_id, filter_key, value in rows:
            if not filter_key or value is None or value == "":
                continue
            sets[self._key(filter_key, value)].add(product_id)
        return self.store.add_many(sets)

    def _index_categories(self, session: Session) -> int:
        sets: Dict[str, Set[str]] = defaultdict(set)
        rows = session.execute(select(ProductCategory.product_id, ProductCategory.category_id))
        for product_id, category_id in rows:
            sets[self._key(CATEGORY_FACET, category_id)].add(product_id)
        return self.store.add_many(sets)

    def _index_prices(self, products) -> int:
        buckets: Dict[str, List[str]] = defaultdict(list)
        for row in products:
            label = price_bucket(row.price)
            if label is not None:
                buckets[self._key(PRICE_FACET, label)].append(row.id)
        return self.store.add_many(buckets)
