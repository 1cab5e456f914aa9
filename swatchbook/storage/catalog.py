# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Catalog field access for saved product entries.

Product entries carry the raw field dictionary of the upstream catalog
under ``fields``. Only the handful of fields used for searching and
grouping saved lists are read here.
"""

import re
from typing import Any, Dict, List, Mapping, Sequence

ITEM_CODE_FIELD = '美工圖編號'
ITEM_NAME_FIELD = '美工圖名稱'
FEATURE_FIELD = '產品特色1'
CATEGORY_FIELD = '品項'
DESIGNER_FIELD = '設計者1'

SEARCH_FIELDS = (ITEM_CODE_FIELD, ITEM_NAME_FIELD, FEATURE_FIELD, DESIGNER_FIELD)

ALL_CATEGORIES = 'all'

# Category cells hold several values separated by ASCII or full-width , and ;
_CATEGORY_SEPARATORS = re.compile(r'[,;，；]\s*')


def field_text(product: Mapping[str, Any], field: str) -> str:
    fields = product.get('fields') or {}
    value = fields.get(field)
    return '' if value is None else str(value)


def split_categories(value: str) -> List[str]:
    return [part.strip() for part in _CATEGORY_SEPARATORS.split(value) if part.strip()]


def collect_categories(lists: Mapping[str, Sequence[Mapping[str, Any]]]) -> List[str]:
    """Distinct categories across all saved products, sorted."""
    categories = set()
    for products in lists.values():
        for product in products:
            categories.update(split_categories(field_text(product, CATEGORY_FIELD)))
    return sorted(categories)


def product_matches(product: Mapping[str, Any], term: str, category: str) -> bool:
    """Check a product against a search term and a category.

    The term matches case-insensitively against the item code, name,
    feature and designer fields. An empty term or the 'all' category
    matches everything.
    """
    if term:
        term_lower = term.lower()
        if not any(term_lower in field_text(product, f).lower() for f in SEARCH_FIELDS):
            return False

    if category and category != ALL_CATEGORIES:
        if category not in split_categories(field_text(product, CATEGORY_FIELD)):
            return False

    return True


def filter_lists(lists: Mapping[str, Sequence[Dict[str, Any]]], term: str = '',
                 category: str = ALL_CATEGORIES) -> Dict[str, List[Dict[str, Any]]]:
    """Keep only matching products, dropping lists left empty.

    With no term and no category filter the lists are returned whole,
    empty lists included.
    """
    term = (term or '').strip()
    if not term and (not category or category == ALL_CATEGORIES):
        return {name: list(products) for name, products in lists.items()}

    filtered = {}
    for name, products in lists.items():
        matched = [p for p in products if product_matches(p, term, category)]
        if matched:
            filtered[name] = matched
    return filtered
