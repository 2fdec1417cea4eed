"""
Site configurations for the supported listing origins.

Each site has a SiteConfig that defines:
- URL patterns used to pick the adapter for a seed URL
- The country whose proxy and id prefix apply
- CSS selectors used by the adapter
"""

from .base import SiteConfig


# ============================================================
# SITE CONFIGURATIONS
# ============================================================

SITES = {
    'realestate_au': SiteConfig(
        name='realestate.com.au',
        short_name='REA-AU',
        base_url='https://www.realestate.com.au',
        country='AU',
        url_patterns=('realestate.com.au',),
        id_prefix='au_',
        selectors={
            'detail_link': 'a[href*="/property-"], a[href*="/property/"]',
            'next_page': 'a[rel="next"], .pagination-next, [data-testid="paginator-navigation-button"]',
            'address': 'h1.property-info-address, h1',
            'price': '.property-price, [data-testid="listing-details__summary-title"]',
            'property_type': '.property-info__property-type',
        },
    ),

    'realestate_nz': SiteConfig(
        name='realestate.co.nz',
        short_name='REA-NZ',
        base_url='https://www.realestate.co.nz',
        country='NZ',
        url_patterns=('realestate.co.nz',),
        id_prefix='nz_',
        selectors={
            'detail_link': 'a[href*="/residential/sale/"], a[href*="/residential/sold/"]',
            'next_page': 'a[rel="next"], [data-test="pagination-next"]',
            'address': 'h1[data-test="listing-address"], h1',
            'price': '[data-test="price-display"], .pricing',
            'property_type': '[data-test="property-type"]',
        },
    ),
}


# ============================================================
# HELPER FUNCTIONS
# ============================================================

def get_site_config(site_key: str) -> SiteConfig:
    """
    Get configuration for a site by its key.

    Raises:
        ValueError: If site_key is not found
    """
    if site_key not in SITES:
        valid_keys = ', '.join(sorted(SITES.keys()))
        raise ValueError(f"Unknown site: '{site_key}'. Valid sites: {valid_keys}")
    return SITES[site_key]
