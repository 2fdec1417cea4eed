"""
Data normalization utilities for site adapters.

These functions standardize scraped text into consistent formats.
"""

import re
from typing import Optional, Tuple


AU_STATES = ('NSW', 'VIC', 'QLD', 'WA', 'SA', 'TAS', 'ACT', 'NT')


def normalize_text(text: Optional[str]) -> str:
    """Collapse whitespace and strip. None becomes ''."""
    if not text:
        return ''
    return ' '.join(text.split())


def parse_price(price_text: Optional[str]) -> Optional[int]:
    """
    Parse a displayed price into whole dollars.

    Examples:
        $1,250,000 -> 1250000
        Offers over $850k -> 850000
        $1.2m -> 1200000
        $650,000 - $700,000 -> 650000 (lower bound)
        Contact agent -> None
    """
    if not price_text:
        return None

    text = price_text.lower().replace(',', '')
    for match in re.finditer(r'\$?\s*(\d+(?:\.\d+)?)\s*(m|mil|million|k)?\b', text):
        value = float(match.group(1))
        suffix = match.group(2)
        if suffix in ('m', 'mil', 'million'):
            value *= 1_000_000
        elif suffix == 'k':
            value *= 1_000

        # Small bare numbers are bedroom counts and the like, not prices
        if value >= 1000:
            return int(round(value))
    return None


def parse_int(text: Optional[str]) -> Optional[int]:
    """Extract the first integer from text ('3 Beds' -> 3)."""
    if text is None:
        return None
    match = re.search(r'(\d+)', str(text))
    return int(match.group(1)) if match else None


def parse_area(text: Optional[str]) -> Optional[float]:
    """
    Parse a land/floor area into square metres.

    Examples:
        650m² -> 650.0
        1,200 sqm -> 1200.0
        1.5 ha -> 15000.0
        2 acres -> 8093.7
    """
    if not text:
        return None

    cleaned = text.lower().replace(',', '')
    match = re.search(r'(\d+(?:\.\d+)?)\s*(m²|m2|sqm|sq m|ha|hectares?|acres?)?', cleaned)
    if not match:
        return None

    value = float(match.group(1))
    unit = match.group(2) or 'm2'
    if unit.startswith('ha') or unit.startswith('hectare'):
        value *= 10_000
    elif unit.startswith('acre'):
        value *= 4046.86
    return round(value, 1)


def split_au_address(address: str) -> Tuple[str, str, str]:
    """
    Split an Australian address into (suburb, state, postcode).

    Examples:
        "12 Smith St, Northside NSW 2000" -> ("Northside", "NSW", "2000")
        "Unit 4/7 Bay Rd, Southport, QLD 4215" -> ("Southport", "QLD", "4215")
    """
    address = normalize_text(address)
    states = '|'.join(AU_STATES)
    match = re.search(rf'([A-Za-z\' -]+?),?\s+({states})\s*,?\s*(\d{{4}})?\s*$', address)
    if not match:
        return ('', '', '')

    suburb = match.group(1).split(',')[-1].strip()
    return (suburb, match.group(2), match.group(3) or '')


def split_nz_address(address: str) -> Tuple[str, str, str]:
    """
    Split a New Zealand address into (suburb, region, postcode).

    NZ listings usually read "12 Queen Street, Ponsonby, Auckland City, Auckland".
    The second comma-separated part is the suburb and the last is the region.
    """
    parts = [p.strip() for p in normalize_text(address).split(',') if p.strip()]
    if len(parts) < 2:
        return ('', '', '')

    postcode = ''
    region = parts[-1]
    match = re.search(r'\s(\d{4})$', region)
    if match:
        postcode = match.group(1)
        region = region[:match.start()].strip()
    return (parts[1], region, postcode)
