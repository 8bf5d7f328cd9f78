"""
Product feed import.

Reads a YML-style XML feed:

    <yml_catalog><shop>
      <categories>
        <category id="1">Clothes</category>
        <category id="2" parentId="1">Dresses</category>
      </categories>
      <offers>
        <offer id="A-1" available="true">
          <name>...</name><price>1299.00</price><currencyId>UAH</currencyId>
          <categoryId>2</categoryId><picture>https://...</picture>
          <param name="Колір">чорний</param>
        </offer>
      </offers>
    </shop></yml_catalog>

and upserts categories, products, attributes, images and category links in a
single transaction. Attributes, images and category links are replaced
wholesale per product. The facet index is rebuilt afterwards when a builder
is supplied.
"""

import heapq
import time
import xml.etree.ElementTree as ET
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from facet_catalog.config import CatalogConfig, get_config
from facet_catalog.errors import FeedError
from facet_catalog.index_builder import FacetIndexBuilder, RebuildStats
from facet_catalog.logger import get_logger
from facet_catalog.models import Category, Product, ProductAttribute, ProductCategory, ProductImage
from facet_catalog.slug import slugify

logger = get_logger("importer")

CENTS = Decimal("0.01")


@dataclass
class FeedCategory:
    id: str
    name: str
    parent_id: Optional[str] = None
    position: int = 0


@dataclass
class FeedOffer:
    id: str
    name: str
    price: Decimal
    currency_id: str = ""
    stock_quantity: int = 0
    description: str = ""
    vendor: str = ""
    vendor_code: str = ""
    barcode: str = ""
    available: bool = False
    params: List[Tuple[str, str]] = field(default_factory=list)
    pictures: List[str] = field(default_factory=list)
    category_ids: List[str] = field(default_factory=list)


@dataclass
class ParsedFeed:
    categories: List[FeedCategory] = field(default_factory=list)
    offers: List[FeedOffer] = field(default_factory=list)
    skipped_offers: int = 0


@dataclass
class ImportStats:
    """Summary of one feed import."""
    categories: int = 0
    products: int = 0
    skipped_offers: int = 0
    attributes: int = 0
    images: int = 0
    category_links: int = 0
    missing_categories: int = 0
    elapsed_seconds: float = 0.0
    index: Optional[RebuildStats] = None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _text(element: ET.Element, tag: str) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _parse_offer(element: ET.Element) -> Optional[FeedOffer]:
    """Build a FeedOffer; None when id, name or a valid price is missing."""
    offer_id = (element.get("id") or "").strip()
    name = _text(element, "name")
    raw_price = _text(element, "price")
    if not offer_id or not name or not raw_price:
        return None
    try:
        price = Decimal(raw_price.replace(",", ".")).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None

    try:
        stock_quantity = int(_text(element, "stock_quantity") or 0)
    except ValueError:
        stock_quantity = 0

    params = []
    for param in element.findall("param"):
        param_name = (param.get("name") or "").strip()
        if param_name:
            params.append((param_name, (param.text or "").strip()))

    return FeedOffer(
        id=offer_id,
        name=name,
        price=price,
        currency_id=_text(element, "currencyId"),
        stock_quantity=stock_quantity,
        description=_text(element, "description"),
        vendor=_text(element, "vendor"),
        vendor_code=_text(element, "vendor_code"),
        barcode=_text(element, "barcode"),
        available=(element.get("available") or "").strip().lower() == "true",
        params=params,
        pictures=[p.text.strip() for p in element.findall("picture") if p.text and p.text.strip()],
        category_ids=[c.text.strip() for c in element.findall("categoryId") if c.text and c.text.strip()],
    )


def parse_feed(path) -> ParsedFeed:
    """
    Stream a feed file into categories and offers.

    Raises:
        FeedError: if the file does not exist or is not well-formed XML.
    """
    path = Path(path)
    if not path.exists():
        raise FeedError(f"Feed file not found: {path}")

    feed = ParsedFeed()
    try:
        for _, element in ET.iterparse(str(path), events=("end",)):
            if element.tag == "category":
                category_id = (element.get("id") or "").strip()
                name = (element.text or "").strip()
                if category_id and name:
                    feed.categories.append(FeedCategory(
                        id=category_id,
                        name=name,
                        parent_id=(element.get("parentId") or "").strip() or None,
                        position=len(feed.categories),
                    ))
                element.clear()
            elif element.tag == "offer":
                offer = _parse_offer(element)
                if offer is None:
                    feed.skipped_offers += 1
                    logger.warning("Skipping offer %r: missing id, name or price", element.get("id"))
                else:
                    feed.offers.append(offer)
                element.clear()
    except ET.ParseError as e:
        raise FeedError(f"Malformed feed {path}: {e}") from e
    return feed


def order_categories(categories: List[FeedCategory]) -> List[FeedCategory]:
    """
    Order categories so every parent precedes its children.

    Kahn's algorithm; among categories that are ready at the same time the
    one earlier in the feed goes first. A parent that is not part of the
    batch is treated as already existing.

    Raises:
        FeedError: if the parent links form a cycle.
    """
    by_id: Dict[str, FeedCategory] = {}
    for category in categories:
        by_id[category.id] = category

    children: Dict[str, List[FeedCategory]] = defaultdict(list)
    ready: List[Tuple[int, str]] = []
    for category in by_id.values():
        if category.parent_id and category.parent_id in by_id:
            children[category.parent_id].append(category)
        else:
            heapq.heappush(ready, (category.position, category.id))

    ordered: List[FeedCategory] = []
    while ready:
        _, category_id = heapq.heappop(ready)
        ordered.append(by_id[category_id])
        for child in children.get(category_id, []):
            heapq.heappush(ready, (child.position, child.id))

    if len(ordered) != len(by_id):
        placed = {c.id for c in ordered}
        stuck = sorted(cid for cid in by_id if cid not in placed)
        raise FeedError(f"Category tree has a cycle involving: {', '.join(stuck)}")
    return ordered


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

class CategoryLookup:
    """
    Known category ids for one import run.

    Seeded with the feed's own categories; anything else is looked up in the
    database once and remembered until the lookup is discarded.
    """

    def __init__(self, db: Session, known=()):
        self.db = db
        self._known: Dict[str, bool] = {category_id: True for category_id in known}

    def add(self, category_id: str) -> None:
        self._known[category_id] = True

    def exists(self, category_id: str) -> bool:
        if category_id not in self._known:
            self._known[category_id] = self.db.get(Category, category_id) is not None
        return self._known[category_id]


class FeedImporter:
    """Imports one feed file into the relational store."""

    def __init__(self, db: Session, config: Optional[CatalogConfig] = None):
        self.db = db
        self.config = config or get_config()

    def run(self, path, builder: Optional[FacetIndexBuilder] = None) -> ImportStats:
        """
        Import ``path`` in one transaction, then rebuild the index if ``builder`` is given.

        Any failure rolls the transaction back and is re-raised.
        """
        started = time.perf_counter()
        logger.info("Importing feed %s", path)
        feed = parse_feed(path)
        stats = ImportStats(skipped_offers=feed.skipped_offers)
        lookup = CategoryLookup(self.db)

        try:
            stats.categories = self.import_categories(feed.categories, lookup)
            for offer in feed.offers:
                self.import_offer(offer, lookup, stats)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error("Import of %s failed, transaction rolled back", path, exc_info=True)
            raise

        stats.elapsed_seconds = round(time.perf_counter() - started, 3)
        logger.info(
            "Imported %d categories and %d products (%d offers skipped, %d unknown category links) in %.3fs",
            stats.categories, stats.products, stats.skipped_offers,
            stats.missing_categories, stats.elapsed_seconds,
        )

        if builder is not None:
            stats.index = builder.rebuild(self.db)
        return stats

    def import_categories(self, categories: List[FeedCategory], lookup: CategoryLookup) -> int:
        """Upsert categories parent-first, flushing each chunk before the next."""
        ordered = order_categories(categories)
        batch_ids = {c.id for c in ordered}
        chunk_size = self.config.import_chunk_size

        for start in range(0, len(ordered), chunk_size):
            for item in ordered[start:start + chunk_size]:
                parent_id = item.parent_id
                if parent_id and parent_id not in batch_ids and not lookup.exists(parent_id):
                    logger.warning("Category %s: parent %s not found, importing as root", item.id, parent_id)
                    parent_id = None
                self.upsert_category(item.id, item.name, parent_id)
                lookup.add(item.id)
            self.db.flush()
        return len(ordered)

    def upsert_category(self, category_id: str, name: str, parent_id: Optional[str]) -> Category:
        category = self.db.get(Category, category_id)
        if category is None:
            category = Category(id=category_id, name=name, parent_id=parent_id)
            self.db.add(category)
        else:
            category.name = name
            category.parent_id = parent_id
        return category

    def import_offer(self, offer: FeedOffer, lookup: CategoryLookup, stats: ImportStats) -> Product:
        product = self.db.get(Product, offer.id)
        if product is None:
            product = Product(id=offer.id)
            self.db.add(product)

        product.name = offer.name
        product.price = offer.price
        product.currency_id = offer.currency_id
        product.stock_quantity = offer.stock_quantity
        product.description = offer.description
        product.vendor = offer.vendor
        product.vendor_code = offer.vendor_code
        product.barcode = offer.barcode
        product.available = offer.available

        stats.attributes += self._replace_attributes(product, offer.params)
        stats.images += self._replace_images(product, offer.pictures)
        linked, missing = self._replace_categories(product, offer.category_ids, lookup)
        stats.category_links += linked
        stats.missing_categories += missing
        stats.products += 1

        # Flush per offer so a repeated offer id updates instead of double-inserting.
        self.db.flush()
        return product

    def _replace_attributes(self, product: Product, params: List[Tuple[str, str]]) -> int:
        values: Dict[str, str] = {}
        for name, value in params:
            values[name] = value

        existing = {attribute.name: attribute for attribute in product.attributes}
        for name, attribute in existing.items():
            if name not in values:
                product.attributes.remove(attribute)

        for name, value in values.items():
            attribute = existing.get(name)
            if attribute is None:
                product.attributes.append(
                    ProductAttribute(name=name, value=value, filter_key=slugify(name))
                )
            else:
                attribute.value = value
                attribute.filter_key = slugify(name)
        return len(values)

    def _replace_images(self, product: Product, pictures: List[str]) -> int:
        urls = list(dict.fromkeys(pictures))
        existing = {image.image_url for image in product.images}
        for image in list(product.images):
            if image.image_url not in urls:
                product.images.remove(image)
        for url in urls:
            if url not in existing:
                product.images.append(ProductImage(image_url=url))
        return len(urls)

    def _replace_categories(self, product: Product, category_ids: List[str], lookup: CategoryLookup):
        wanted = [category_id for category_id in dict.fromkeys(category_ids) if lookup.exists(category_id)]
        current = {
            link.category_id: link
            for link in self.db.execute(
                select(ProductCategory).where(ProductCategory.product_id == product.id)
            ).scalars()
        }
        for category_id, link in current.items():
            if category_id not in wanted:
                self.db.delete(link)

        linked = missing = 0
        for category_id in dict.fromkeys(category_ids):
            if category_id in wanted:
                if category_id not in current:
                    self.db.add(ProductCategory(product_id=product.id, category_id=category_id))
                linked += 1
            else:
                logger.warning("Product %s: category not found: %s", product.id, category_id)
                missing += 1
        return linked, missing
