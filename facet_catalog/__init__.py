"""
Facet catalog: product feed import, Redis facet index and catalog queries.
"""

__version__ = "1.0.0"
