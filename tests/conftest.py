"""Pytest configuration: in-memory SQLite primary store and fakeredis index."""

from decimal import Decimal

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from facet_catalog.config import CatalogConfig, DEFAULT_FACETS
from facet_catalog.database import Base
from facet_catalog.filter_engine import FilterQueryEngine
from facet_catalog.index_store import FacetIndexStore
from facet_catalog.models import Category, Product, ProductAttribute, ProductCategory, ProductImage
from facet_catalog.slug import slugify


@pytest.fixture
def config():
    """Default configuration, independent of the local YAML file and environment."""
    return CatalogConfig(database_url="sqlite://", facets=dict(DEFAULT_FACETS))


@pytest.fixture
def sql_engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(sql_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sql_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    client.flushall()
    yield client
    client.flushall()


@pytest.fixture
def store(redis_client, config):
    return FacetIndexStore(
        redis_client,
        scratch_prefix=config.scratch_prefix,
        scratch_ttl_seconds=config.scratch_ttl_seconds,
    )


@pytest.fixture
def filter_engine(store, config):
    return FilterQueryEngine(store, config)


def add_product(db, product_id, price, attributes=None, categories=(), available=True, images=()):
    """Insert one product with its attributes, category links and images."""
    product = Product(
        id=product_id,
        name=f"Product {product_id}",
        price=Decimal(str(price)),
        currency_id="UAH",
        stock_quantity=5,
        available=available,
    )
    for name, value in (attributes or {}).items():
        product.attributes.append(ProductAttribute(name=name, value=value, filter_key=slugify(name)))
    for url in images:
        product.images.append(ProductImage(image_url=url))
    db.add(product)
    db.flush()
    for category_id in categories:
        db.add(ProductCategory(product_id=product_id, category_id=category_id))
    db.flush()
    return product


@pytest.fixture
def catalog(db):
    """
    Small catalog:

        id  price     Колір  Бренд  categories  available
        1   999.99    black  nike   10          yes
        2   1000.00   black  adidas 11          yes
        3   5000.00   black  nike   -           yes
        4   50000.00  white  -      10          yes
        5   120.00    -      -      11          no
    """
    db.add_all([
        Category(id="10", name="Сукні"),
        Category(id="11", name="Взуття"),
    ])
    db.flush()
    add_product(db, "1", "999.99", {"Колір": "black", "Бренд": "nike"}, ["10"],
                images=["https://cdn.example.com/1a.jpg", "https://cdn.example.com/1b.jpg"])
    add_product(db, "2", "1000.00", {"Колір": "black", "Бренд": "adidas"}, ["11"])
    add_product(db, "3", "5000.00", {"Колір": "black", "Бренд": "nike"})
    add_product(db, "4", "50000.00", {"Колір": "white"}, ["10"])
    add_product(db, "5", "120.00", {}, ["11"], available=False)
    db.commit()
    return db
