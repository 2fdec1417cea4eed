"""Shared utilities for site adapters."""

from .normalizers import (
    normalize_text,
    parse_price,
    parse_int,
    parse_area,
    split_au_address,
    split_nz_address,
)

__all__ = [
    'normalize_text',
    'parse_price',
    'parse_int',
    'parse_area',
    'split_au_address',
    'split_nz_address',
]
