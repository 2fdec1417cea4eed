"""
realestate.co.nz adapter.

Site structure:
- Search results: links to `/<id>/residential/sale/...` or `/residential/sold/...`
- Pagination: `a[rel="next"]`
- Property pages: address headline like "12 Queen Street, Ponsonby, Auckland City"
"""

import re
from typing import Optional, Tuple

from ..config import get_site_config
from ..utils.normalizers import split_nz_address
from .html_adapter import HtmlSiteAdapter


class RealEstateNZAdapter(HtmlSiteAdapter):
    """Adapter for realestate.co.nz sale and sold searches."""

    config = get_site_config('realestate_nz')

    def parse_external_id(self, url: str) -> Optional[str]:
        # Listing ids lead the path on this origin, e.g. /42901234/residential/sale/...
        path = url.split('?', 1)[0]
        match = re.search(r'realestate\.co\.nz/(\d{5,})/', path)
        if match:
            return f"{self.config.id_prefix}{match.group(1)}"
        return super().parse_external_id(url)

    def is_detail_url(self, url: str) -> bool:
        return '/residential/' in url and super().is_detail_url(url)

    def split_address(self, address: str) -> Tuple[str, str, str]:
        return split_nz_address(address)
