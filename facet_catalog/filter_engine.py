"""
Filter query engine over the Redis facet index.

Selections are "AND of ORs": values selected within one facet are unioned,
the per-facet unions are intersected. An empty selection matches every
product; a value missing from the index simply contributes nothing.

Counts use disjunctive faceting: each value of facet F is counted against
the candidate set of the selection *without* F, so picking another value of
F shows how many products the OR would add.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from facet_catalog.config import CatalogConfig, get_config
from facet_catalog.index_builder import CATEGORY_FACET, PRICE_BUCKET_ORDER, PRICE_FACET
from facet_catalog.index_store import FacetIndexStore, ScratchSpace
from facet_catalog.keys import facet_key, facet_pattern, parse_facet_key
from facet_catalog.logger import get_logger

logger = get_logger("filter_engine")

# facet name -> selected values, e.g. {"kolir": ["black", "white"], "category": ["10"]}
FilterSelection = Dict[str, List[str]]


def normalize_selection(raw: Optional[Mapping[str, Any]]) -> FilterSelection:
    """
    Coerce a loosely shaped filter mapping into a FilterSelection.

    Scalars become one-element lists, blank values and duplicates are
    dropped (first occurrence wins), facets left without values disappear.
    """
    if not raw:
        return {}
    selection: FilterSelection = {}
    for facet, values in raw.items():
        if values is None:
            continue
        if isinstance(values, (str, int, float)):
            values = [values]
        elif isinstance(values, Mapping):
            values = list(values.values())
        cleaned: List[str] = []
        for value in values:
            if value is None:
                continue
            value = str(value)
            if value and value not in cleaned:
                cleaned.append(value)
        if cleaned:
            selection[str(facet)] = cleaned
    return selection


def _value_sort_key(facet: str, item: Dict[str, Any]):
    if facet == PRICE_FACET:
        return (PRICE_BUCKET_ORDER.get(item["value"], len(PRICE_BUCKET_ORDER)), item["value"])
    return (str(item["display_value"]), item["value"])


class FilterQueryEngine:
    """Answers candidate-set and facet-count queries from the index. Read-only."""

    def __init__(self, store: FacetIndexStore, config: Optional[CatalogConfig] = None):
        self.store = store
        self.config = config or get_config()

    def _key(self, facet: str, value: str) -> str:
        return facet_key(facet, value, prefix=self.config.key_prefix)

    # -----------------------------------------------------------------------
    # Candidate sets
    # -----------------------------------------------------------------------

    def _facet_union_keys(self, selection: FilterSelection, scratch: ScratchSpace) -> Optional[List[str]]:
        """
        One key per selected facet holding the union of its selected values.

        Returns None as soon as any facet's union is empty, since the
        intersection across facets is then empty too.
        """
        facets = list(selection.items())
        value_keys = [[self._key(facet, value) for value in values] for facet, values in facets]
        sizes = self.store.cardinalities([key for keys in value_keys for key in keys])

        union_keys: List[str] = []
        offset = 0
        for keys in value_keys:
            present = [key for key, size in zip(keys, sizes[offset:offset + len(keys)]) if size > 0]
            offset += len(keys)
            if not present:
                return None
            union_keys.append(scratch.union(present))
        return union_keys

    def candidate_set(self, selection: Optional[Mapping[str, Any]]) -> Set[str]:
        """Product ids matching the selection; every product when it is empty."""
        selection = normalize_selection(selection)
        if not selection:
            return self.store.members(self.config.all_products_key)

        with self.store.scratch() as scratch:
            union_keys = self._facet_union_keys(selection, scratch)
            if union_keys is None:
                logger.debug("Empty facet union in %s, no candidates", selection)
                return set()
            candidates = self.store.intersect(*union_keys)
        logger.debug("Candidate set for %s: %d products", selection, len(candidates))
        return candidates

    def filtered_product_ids(self, selection: Optional[Mapping[str, Any]]) -> List[str]:
        """Sorted candidate ids, for callers that want a stable list."""
        return sorted(self.candidate_set(selection))

    # -----------------------------------------------------------------------
    # Facet discovery
    # -----------------------------------------------------------------------

    def _facet_entries(self, facet: Optional[str] = None) -> List[tuple]:
        """(facet, value, key) for every index key of one facet, or of all facets."""
        entries = []
        for key in self.store.keys(facet_pattern(facet, prefix=self.config.key_prefix)):
            try:
                name, value = parse_facet_key(key, prefix=self.config.key_prefix)
            except ValueError:
                logger.warning("Ignoring malformed index key %r", key)
                continue
            entries.append((name, value, key))
        entries.sort()
        return entries

    def facet_values(self, facet: str) -> List[str]:
        """Values of one facet present in the index."""
        return [value for _, value, _ in self._facet_entries(facet)]

    def discover_facets(self) -> List[str]:
        """Every facet name present in the index."""
        return sorted({name for name, _, _ in self._facet_entries()})

    # -----------------------------------------------------------------------
    # Counts
    # -----------------------------------------------------------------------

    def value_counts(
        self,
        selection: Optional[Mapping[str, Any]],
        facets: Optional[Iterable[str]] = None,
    ) -> Dict[str, Dict[str, int]]:
        """
        For each facet value: how many products match if it is added to the selection.

        The base set for facet F is the candidate set of the selection with F
        removed (all products when nothing else is selected).
        """
        selection = normalize_selection(selection)
        facets = list(facets) if facets is not None else self.discover_facets()
        counts: Dict[str, Dict[str, int]] = {}

        with self.store.scratch() as scratch:
            bases: Dict[frozenset, Optional[str]] = {}
            for facet in facets:
                entries = self._facet_entries(facet)
                values = [value for _, value, _ in entries]
                keys = [key for _, _, key in entries]
                if not keys:
                    counts[facet] = {}
                    continue

                others = {name: vals for name, vals in selection.items() if name != facet}
                if not others:
                    sizes = self.store.cardinalities(keys)
                else:
                    signature = frozenset(others)
                    if signature not in bases:
                        union_keys = self._facet_union_keys(others, scratch)
                        bases[signature] = None if union_keys is None else scratch.intersect(union_keys)
                    base_key = bases[signature]
                    if base_key is None:
                        sizes = [0] * len(keys)
                    else:
                        sizes = self.store.intersect_counts(base_key, keys)
                counts[facet] = dict(zip(values, sizes))
        return counts

    def get_filters(
        self,
        active: Optional[Mapping[str, Any]],
        category_names: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Filter groups for rendering the storefront sidebar.

        Values with no matches are hidden unless selected: a selected value
        must stay visible so it can be deselected.
        """
        active = normalize_selection(active)
        category_names = category_names or {}
        facets = dict(self.config.facets) or {name: name for name in self.discover_facets()}
        counts = self.value_counts(active, list(facets))

        groups = []
        for slug, name in facets.items():
            facet_counts = counts.get(slug, {})
            selected = active.get(slug, [])
            values = []
            for value in list(facet_counts) + [v for v in selected if v not in facet_counts]:
                count = facet_counts.get(value, 0)
                is_active = value in selected
                if count == 0 and not is_active:
                    continue
                display_value = category_names.get(value, value) if slug == CATEGORY_FACET else value
                values.append({
                    "value": value,
                    "display_value": display_value,
                    "count": count,
                    "active": is_active,
                })
            if values:
                values.sort(key=lambda item: _value_sort_key(slug, item))
                groups.append({"name": name, "slug": slug, "values": values})
        return groups

    def get_filter_counts(self, applied: Optional[Mapping[str, Any]]) -> Dict[str, Dict[str, int]]:
        """Non-zero counts for every facet value in the index: {facet: {value: count}}."""
        counts = self.value_counts(applied)
        return {
            facet: {value: count for value, count in values.items() if count > 0}
            for facet, values in counts.items()
            if any(count > 0 for count in values.values())
        }

    def available_filters(self) -> Dict[str, Dict[str, int]]:
        """Unfiltered size of every facet value set: {facet: {value: count}}."""
        entries = self._facet_entries()
        sizes = self.store.cardinalities([key for _, _, key in entries])
        result: Dict[str, Dict[str, int]] = {}
        for (facet, value, _), size in zip(entries, sizes):
            result.setdefault(facet, {})[value] = size
        return result
