"""Tests for the paginated catalog query service."""

import pytest

from facet_catalog.catalog_service import CatalogService, SortOrder
from facet_catalog.index_builder import FacetIndexBuilder
from facet_catalog.models import Category
from tests.conftest import add_product


@pytest.fixture
def service(db, filter_engine, config):
    return CatalogService(db, filter_engine, config)


@pytest.fixture
def built(catalog, store, config):
    FacetIndexBuilder(store, config).rebuild(catalog)
    return catalog


@pytest.fixture
def twenty_five(db, store, config):
    """25 products in category 10 plus 3 outside it."""
    db.add(Category(id="10", name="Сукні"))
    db.add(Category(id="11", name="Взуття"))
    db.flush()
    for n in range(1, 26):
        add_product(db, f"p{n:02d}", 100 + n, categories=["10"])
    for n in range(1, 4):
        add_product(db, f"q{n:02d}", 100 + n, categories=["11"])
    db.commit()
    FacetIndexBuilder(store, config).rebuild(db)
    return db


def ids(page):
    return [product["id"] for product in page["data"]]


class TestPagination:
    def test_first_page(self, twenty_five, service):
        page = service.get_products(1, 10, "id_asc", {"category": ["10"]})
        assert ids(page) == [f"p{n:02d}" for n in range(1, 11)]
        assert page["meta"] == {"current_page": 1, "last_page": 3, "per_page": 10, "total": 25}

    def test_last_partial_page(self, twenty_five, service):
        page = service.get_products(3, 10, "id_asc", {"category": ["10"]})
        assert ids(page) == [f"p{n:02d}" for n in range(21, 26)]

    def test_page_past_the_end(self, twenty_five, service):
        page = service.get_products(4, 10, "id_asc", {"category": ["10"]})
        assert page["data"] == []
        assert page["meta"]["total"] == 25
        assert page["meta"]["current_page"] == 4
        assert page["meta"]["last_page"] == 3

    @pytest.mark.parametrize("sort_by", ["id_asc", "price_asc", "price_desc"])
    def test_full_sweep_has_no_duplicates_or_gaps(self, twenty_five, service, filter_engine, sort_by):
        candidates = filter_engine.candidate_set({"category": ["10"]})
        seen = []
        for page_number in range(1, 5):
            seen.extend(ids(service.get_products(page_number, 7, sort_by, {"category": ["10"]})))
        assert len(seen) == len(set(seen))
        assert set(seen) == candidates

    def test_without_filters_lists_everything(self, twenty_five, service):
        page = service.get_products(1, 100, "id_asc", {})
        assert page["meta"]["total"] == 28
        assert ids(page)[-3:] == ["q01", "q02", "q03"]


class TestSorting:
    def test_price_ascending(self, built, service):
        assert ids(service.get_products(1, 10, "price_asc", {})) == ["5", "1", "2", "3", "4"]

    def test_price_descending(self, built, service):
        assert ids(service.get_products(1, 10, "price_desc", {})) == ["4", "3", "2", "1", "5"]

    def test_price_ties_broken_by_id(self, db, store, config, service):
        for product_id in ["c", "a", "b"]:
            add_product(db, product_id, "10.00")
        db.commit()
        FacetIndexBuilder(store, config).rebuild(db)
        assert ids(service.get_products(1, 10, "price_asc", {})) == ["a", "b", "c"]
        assert ids(service.get_products(1, 10, "price_desc", {})) == ["a", "b", "c"]

    def test_unknown_sort_falls_back_to_id(self, built, service):
        assert ids(service.get_products(1, 10, "random", {})) == ["1", "2", "3", "4", "5"]
        assert SortOrder.parse(None) is SortOrder.ID_ASC


class TestFiltering:
    def test_only_candidates_returned(self, built, service, filter_engine):
        filters = {"kolir": ["black"], "price": ["0-1000", "1000-5000"]}
        page = service.get_products(1, 10, "id_asc", filters)
        assert ids(page) == ["1", "2"]
        assert set(ids(page)) <= filter_engine.candidate_set(filters)

    def test_no_match_returns_empty_page(self, built, service):
        page = service.get_products(2, 10, "id_asc", {"kolir": ["purple"]})
        assert page == {
            "data": [],
            "meta": {"current_page": 2, "last_page": 0, "per_page": 10, "total": 0},
        }

    def test_blank_filters_mean_no_filters(self, built, service):
        page = service.get_products(1, 10, "id_asc", {"kolir": []})
        assert page["meta"]["total"] == 5

    def test_product_payload(self, built, service):
        product = service.get_products(1, 1, "id_asc", {"kolir": ["black"]})["data"][0]
        assert product["id"] == "1"
        assert product["price"] == "999.99"
        assert product["available"] is True
        assert {"name": "Колір", "value": "black", "filter_key": "kolir"} in product["attributes"]
        assert product["images"] == ["https://cdn.example.com/1a.jpg", "https://cdn.example.com/1b.jpg"]
        assert product["categories"] == [{"id": "10", "name": "Сукні"}]


class TestClamping:
    def test_page_below_one(self, built, service):
        page = service.get_products(0, 2, "id_asc", {})
        assert page["meta"]["current_page"] == 1
        assert ids(page) == ["1", "2"]

    def test_limit_bounds(self, built, service, config):
        assert service.get_products(1, 0, "id_asc", {})["meta"]["per_page"] == 1
        assert service.get_products(1, 500, "id_asc", {})["meta"]["per_page"] == config.max_page_size

    def test_garbage_values(self, service, config):
        assert service.clamp_paging("x", None) == (1, config.default_page_size)


class TestFilterSidebar:
    def test_category_names_resolved(self, built, service):
        groups = service.get_filters({})
        category = next(g for g in groups if g["slug"] == "category")
        assert {v["value"]: v["display_value"] for v in category["values"]} == {"10": "Сукні", "11": "Взуття"}

    def test_filter_counts(self, built, service):
        counts = service.get_filter_counts({"kolir": ["white"]})
        assert counts["category"] == {"10": 1}
        assert counts["kolir"] == {"black": 3, "white": 1}
