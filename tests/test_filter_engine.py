"""Tests for the AND-of-ORs filter engine and facet counts."""

import pytest

from facet_catalog.filter_engine import FilterQueryEngine, normalize_selection
from facet_catalog.index_builder import FacetIndexBuilder


@pytest.fixture
def counts_index(store, config):
    """The index from the storefront counts example."""
    store.add("facet:kolir:black", ["1", "2", "3"])
    store.add("facet:kolir:white", ["4"])
    store.add("facet:category:10", ["1", "4"])
    store.add(config.all_products_key, ["1", "2", "3", "4"])
    return store


@pytest.fixture
def built(catalog, store, config):
    FacetIndexBuilder(store, config).rebuild(catalog)
    return store


def group(groups, slug):
    for item in groups:
        if item["slug"] == slug:
            return item
    return None


def values_of(groups, slug):
    item = group(groups, slug)
    return {v["value"]: v for v in item["values"]} if item else {}


class TestNormalizeSelection:
    def test_scalars_and_duplicates(self):
        raw = {"kolir": "black", "brend": ["nike", "nike", "adidas"], "category": 10}
        assert normalize_selection(raw) == {
            "kolir": ["black"],
            "brend": ["nike", "adidas"],
            "category": ["10"],
        }

    def test_blank_facets_dropped(self):
        assert normalize_selection({"kolir": [], "brend": [""], "sklad": None}) == {}
        assert normalize_selection(None) == {}

    def test_indexed_mapping_values(self):
        assert normalize_selection({"kolir": {"0": "black", "1": "white"}}) == {"kolir": ["black", "white"]}


class TestCandidateSet:
    def test_empty_selection_is_all_products(self, built, filter_engine):
        assert filter_engine.candidate_set({}) == {"1", "2", "3", "4", "5"}
        assert filter_engine.candidate_set(None) == {"1", "2", "3", "4", "5"}

    def test_single_value(self, built, filter_engine):
        assert filter_engine.candidate_set({"kolir": ["white"]}) == {"4"}

    def test_or_within_facet(self, built, filter_engine):
        assert filter_engine.candidate_set({"kolir": ["black", "white"]}) == {"1", "2", "3", "4"}

    def test_and_across_facets(self, built, filter_engine):
        assert filter_engine.candidate_set({"kolir": ["black"], "category": ["10"]}) == {"1"}
        assert filter_engine.candidate_set(
            {"kolir": ["black", "white"], "category": ["10"], "brend": ["nike"]}
        ) == {"1"}

    def test_price_facet(self, built, filter_engine):
        assert filter_engine.candidate_set({"price": ["0-1000", "50000+"]}) == {"1", "4", "5"}

    def test_missing_value_contributes_nothing(self, built, filter_engine):
        assert filter_engine.candidate_set({"kolir": ["black", "purple"]}) == {"1", "2", "3"}

    def test_missing_value_does_not_affect_other_facets(self, built, filter_engine):
        result = filter_engine.candidate_set({"kolir": ["black", "purple"], "category": ["10"]})
        assert result == {"1"}

    def test_facet_with_only_missing_values_empties_result(self, built, filter_engine):
        assert filter_engine.candidate_set({"kolir": ["purple"], "category": ["10"]}) == set()
        assert filter_engine.candidate_set({"unknown": ["x"]}) == set()

    def test_disjoint_facets(self, built, filter_engine):
        assert filter_engine.candidate_set({"kolir": ["white"], "category": ["11"]}) == set()

    def test_filtered_product_ids_sorted(self, built, filter_engine):
        assert filter_engine.filtered_product_ids({"brend": ["nike", "adidas"]}) == ["1", "2", "3"]

    def test_no_scratch_keys_left(self, built, filter_engine, store, config):
        filter_engine.candidate_set({"kolir": ["black", "white"], "price": ["0-1000", "1000-5000"]})
        filter_engine.value_counts({"kolir": ["black", "white"], "price": ["0-1000", "1000-5000"]})
        assert store.keys(f"{config.scratch_prefix}:*") == []

    def test_empty_index(self, filter_engine):
        assert filter_engine.candidate_set({}) == set()
        assert filter_engine.candidate_set({"kolir": ["black"]}) == set()


class TestValueCounts:
    def test_counts_example(self, counts_index, filter_engine):
        groups = filter_engine.get_filters({"category": ["10"]})
        kolir = values_of(groups, "kolir")
        assert kolir["black"]["count"] == 1
        assert kolir["white"]["count"] == 1
        assert kolir["black"]["active"] is False
        assert kolir["white"]["active"] is False

    def test_selected_facet_counted_without_itself(self, built, filter_engine):
        counts = filter_engine.value_counts({"kolir": ["white"]}, ["kolir", "brend"])
        # kolir values are counted against all products, brend against the white ones
        assert counts["kolir"] == {"black": 3, "white": 1}
        assert counts["brend"] == {"adidas": 0, "nike": 0}

    def test_counts_without_selection_are_cardinalities(self, built, filter_engine):
        counts = filter_engine.value_counts({}, ["category"])
        assert counts == {"category": {"10": 2, "11": 2}}

    def test_unknown_facet_has_no_values(self, built, filter_engine):
        assert filter_engine.value_counts({}, ["nope"]) == {"nope": {}}

    def test_empty_base_gives_zero_counts(self, built, filter_engine):
        counts = filter_engine.value_counts({"category": ["99"]}, ["kolir"])
        assert counts == {"kolir": {"black": 0, "white": 0}}


class TestGetFilters:
    def test_groups_follow_configured_order(self, built, filter_engine, config):
        groups = filter_engine.get_filters({})
        slugs = [g["slug"] for g in groups]
        expected = [slug for slug in config.facets if slug in slugs]
        assert slugs == expected
        assert group(groups, "kolir")["name"] == config.facets["kolir"]

    def test_facets_without_values_omitted(self, built, filter_engine):
        groups = filter_engine.get_filters({})
        assert group(groups, "sklad") is None

    def test_zero_counts_hidden(self, built, filter_engine):
        groups = filter_engine.get_filters({"kolir": ["white"]})
        assert values_of(groups, "brend") == {}
        assert set(values_of(groups, "price")) == {"50000+"}

    def test_active_value_with_zero_matches_still_listed(self, built, filter_engine):
        groups = filter_engine.get_filters({"kolir": ["white"], "brend": ["nike"]})
        brend = values_of(groups, "brend")
        assert brend["nike"]["active"] is True
        assert brend["nike"]["count"] == 0
        assert "adidas" not in brend

    def test_active_value_missing_from_index_still_listed(self, built, filter_engine):
        groups = filter_engine.get_filters({"kolir": ["purple"]})
        kolir = values_of(groups, "kolir")
        assert kolir["purple"] == {"value": "purple", "display_value": "purple", "count": 0, "active": True}
        assert kolir["black"]["count"] == 3

    def test_category_display_names(self, built, filter_engine):
        groups = filter_engine.get_filters({}, {"10": "Сукні", "11": "Взуття"})
        category = group(groups, "category")["values"]
        assert [v["display_value"] for v in category] == ["Взуття", "Сукні"]
        assert [v["value"] for v in category] == ["11", "10"]

    def test_price_in_bucket_order(self, built, filter_engine):
        groups = filter_engine.get_filters({})
        prices = [v["value"] for v in group(groups, "price")["values"]]
        assert prices == ["0-1000", "1000-5000", "5000-10000", "50000+"]

    def test_discovers_facets_when_none_configured(self, built, store, config):
        config.facets = {}
        engine = FilterQueryEngine(store, config)
        slugs = [g["slug"] for g in engine.get_filters({})]
        assert slugs == ["brend", "category", "kolir", "price"]


class TestRawCounts:
    def test_get_filter_counts(self, built, filter_engine):
        counts = filter_engine.get_filter_counts({"category": ["10"]})
        assert counts["kolir"] == {"black": 1, "white": 1}
        assert counts["brend"] == {"nike": 1}
        assert counts["category"] == {"10": 2, "11": 2}
        assert counts["price"] == {"0-1000": 1, "50000+": 1}

    def test_available_filters(self, built, filter_engine):
        available = filter_engine.available_filters()
        assert available["kolir"] == {"black": 3, "white": 1}
        assert available["category"] == {"10": 2, "11": 2}
        assert available["price"]["0-1000"] == 2
