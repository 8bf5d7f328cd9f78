"""
Exception hierarchy for the facet catalog.

Missing index data is never an error: absent keys read as empty sets.
"""


class CatalogError(Exception):
    """Base class for all catalog errors."""


class IndexStoreError(CatalogError):
    """
    The facet index store is unreachable, timed out or replied with garbage.

    Fatal to the current operation. The core never retries; the caller (HTTP
    layer, scheduler) decides what to do.
    """


class FeedError(CatalogError):
    """The product feed cannot be imported (unreadable file, cyclic category tree)."""
