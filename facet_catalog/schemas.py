"""
Pydantic v2 schemas for the catalog HTTP surface.

Response models mirror what the storefront consumes; filter selections are
parsed from bracketed query parameters into a plain facet -> values mapping.
"""

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from starlette.datastructures import QueryParams

from facet_catalog.filter_engine import FilterSelection, normalize_selection

# filter[kolir]=black, filter[kolir][]=black, filter[kolir][0]=black
_FILTER_PARAM = re.compile(r"^filter\[([^\[\]]+)\](?:\[[^\[\]]*\])?$")


def parse_filter_params(params: QueryParams) -> FilterSelection:
    """Collect ``filter[...]`` query parameters into a FilterSelection."""
    raw: Dict[str, List[str]] = {}
    for name, value in params.multi_items():
        match = _FILTER_PARAM.match(name)
        if match:
            raw.setdefault(match.group(1), []).append(value)
    return normalize_selection(raw)


class AttributeOut(BaseModel):
    name: str
    value: str
    filter_key: Optional[str] = None


class CategoryRef(BaseModel):
    id: str
    name: str


class ProductOut(BaseModel):
    id: str
    name: str
    price: str = Field(..., description="Decimal string with two fraction digits")
    currency_id: Optional[str] = None
    stock_quantity: Optional[int] = None
    description: Optional[str] = None
    vendor: Optional[str] = None
    vendor_code: Optional[str] = None
    barcode: Optional[str] = None
    available: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    attributes: List[AttributeOut] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    categories: List[CategoryRef] = Field(default_factory=list)


class PageMeta(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int


class ProductPage(BaseModel):
    data: List[ProductOut]
    meta: PageMeta


class FilterValue(BaseModel):
    value: str
    display_value: Optional[str] = None
    count: int
    active: bool


class FilterGroup(BaseModel):
    name: str
    slug: str
    values: List[FilterValue]


class HealthStatus(BaseModel):
    service: str
    database: str
    index: str
