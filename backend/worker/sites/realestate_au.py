"""
realestate.com.au adapter.

Site structure:
- Search results: property cards linking to `/property-<type>-<state>-<suburb>-<id>`
- Pagination: `a[rel="next"]` or the paginator "next" button
- Property pages: address headline like "12 Smith St, Northside NSW 2000"
"""

from typing import Tuple

from ..config import get_site_config
from ..utils.normalizers import split_au_address
from .html_adapter import HtmlSiteAdapter


class RealEstateAUAdapter(HtmlSiteAdapter):
    """Adapter for realestate.com.au buy and sold searches."""

    config = get_site_config('realestate_au')

    def is_detail_url(self, url: str) -> bool:
        return ('/property-' in url or '/property/' in url) and super().is_detail_url(url)

    def split_address(self, address: str) -> Tuple[str, str, str]:
        return split_au_address(address)
