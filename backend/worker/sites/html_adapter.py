"""
Shared HTML parsing for listing sites.

Both supported origins render search results as anchor lists with a
rel="next" paginator and property pages with a headline address, a price
block and a features row (beds / baths / cars). Subclasses provide the
selectors through SiteConfig and override the bits that differ per origin.
"""

import re
import json
from typing import List, Dict, Any, Optional, Tuple
from urllib.parse import urljoin, urldefrag
from datetime import datetime, timezone
from bs4 import BeautifulSoup

from ..base import SiteAdapter, ListingType, ExtractionResult
from ..utils.normalizers import normalize_text, parse_price, parse_int, parse_area


FEATURE_PATTERNS = {
    'bedrooms': r'(\d+)\s*(?:bed|bedroom)s?\b',
    'bathrooms': r'(\d+)\s*(?:bath|bathroom)s?\b',
    'car_spaces': r'(\d+)\s*(?:car|carspace|car space|parking|garage)s?\b',
}


class HtmlSiteAdapter(SiteAdapter):
    """SiteAdapter that parses rendered page HTML with BeautifulSoup."""

    async def _soup(self, page) -> BeautifulSoup:
        html = await page.content()
        return BeautifulSoup(html, 'html.parser')

    def _absolute(self, page_url: str, href: str) -> str:
        url, _fragment = urldefrag(urljoin(page_url or self.config.base_url, href))
        return url

    def is_detail_url(self, url: str) -> bool:
        """Whether a link points at a single property page."""
        return self.parse_external_id(url) is not None

    def parse_external_id(self, url: str) -> Optional[str]:
        """Build the external id from the trailing numeric id in the URL path."""
        path = url.split('?', 1)[0].rstrip('/')
        match = re.search(r'(\d{5,})$', path)
        if not match:
            return None
        return f"{self.config.id_prefix}{match.group(1)}"

    def split_address(self, address: str) -> Tuple[str, str, str]:
        """Return (suburb, state, postcode). Origins override."""
        return ('', '', '')

    async def get_detail_links(self, page) -> List[str]:
        soup = await self._soup(page)
        selector = self.config.selectors.get('detail_link', 'a[href]')

        links = []
        seen = set()
        for anchor in soup.select(selector):
            href = anchor.get('href')
            if not href:
                continue
            url = self._absolute(page.url, href)
            if url in seen or not self.is_detail_url(url):
                continue
            seen.add(url)
            links.append(url)

        self.logger.debug(f"Found {len(links)} detail links on {page.url}")
        return links

    async def get_next_page_url(self, page) -> Optional[str]:
        soup = await self._soup(page)
        selector = self.config.selectors.get('next_page', 'a[rel="next"]')
        anchor = soup.select_one(selector)
        if not anchor:
            return None
        href = anchor.get('href')
        if not href:
            return None
        return self._absolute(page.url, href)

    def _select_text(self, soup: BeautifulSoup, key: str) -> str:
        selector = self.config.selectors.get(key)
        if not selector:
            return ''
        element = soup.select_one(selector)
        return normalize_text(element.get_text(' ')) if element else ''

    def _json_ld(self, soup: BeautifulSoup) -> Dict[str, Any]:
        """First JSON-LD object describing the property, if any."""
        for script in soup.find_all('script', type='application/ld+json'):
            try:
                data = json.loads(script.string or '')
            except (TypeError, ValueError):
                continue
            candidates = data if isinstance(data, list) else [data]
            for item in candidates:
                if isinstance(item, dict) and item.get('address'):
                    return item
        return {}

    def parse_features(self, text: str) -> Dict[str, Optional[int]]:
        features = {}
        lowered = text.lower()
        for field, pattern in FEATURE_PATTERNS.items():
            match = re.search(pattern, lowered)
            features[field] = int(match.group(1)) if match else None
        return features

    def parse_sizes(self, text: str) -> Dict[str, Optional[float]]:
        lowered = text.lower()
        land = re.search(r'land(?: size| area)?\s*:?\s*([\d.,]+\s*(?:m²|m2|sqm|ha|hectares?|acres?))', lowered)
        floor = re.search(r'(?:floor|building)(?: size| area)?\s*:?\s*([\d.,]+\s*(?:m²|m2|sqm))', lowered)
        return {
            'land_size': parse_area(land.group(1)) if land else None,
            'floor_size': parse_area(floor.group(1)) if floor else None,
        }

    async def extract_listing(self, page, listing_type: ListingType) -> ExtractionResult:
        try:
            url = page.url
            external_id = self.parse_external_id(url)
            if not external_id:
                return ExtractionResult.failed(f"No listing id in URL: {url}")

            soup = await self._soup(page)
            body_text = normalize_text(soup.get_text(' '))
            ld = self._json_ld(soup)

            address = self._select_text(soup, 'address')
            ld_address = ld.get('address')
            if isinstance(ld_address, dict):
                address = address or normalize_text(ld_address.get('streetAddress'))
            suburb, state, postcode = self.split_address(address)

            price_text = self._select_text(soup, 'price')
            features = self.parse_features(body_text)
            sizes = self.parse_sizes(body_text)
            listing_type = ListingType(listing_type)

            data = {
                'listing_type': listing_type.value,
                'address': address,
                'suburb': suburb,
                'state': state,
                'postcode': postcode,
                'price': parse_price(price_text),
                'bedrooms': features['bedrooms'],
                'bathrooms': features['bathrooms'],
                'car_spaces': features['car_spaces'],
                'land_size': sizes['land_size'],
                'floor_size': sizes['floor_size'],
                'property_type': self._select_text(soup, 'property_type'),
                'listing_url': url,
                'status': 'sold' if listing_type == ListingType.SOLD else 'active',
                'raw_data': {
                    'source': self.config.name,
                    'scraped_at': datetime.now(timezone.utc).isoformat(),
                    'price_text': price_text,
                    'title': normalize_text(soup.title.string) if soup.title and soup.title.string else '',
                },
            }
            return ExtractionResult(success=True, external_id=external_id, data=data)

        except Exception as e:
            self.logger.error(f"Error extracting listing data from {page.url}: {e}")
            return ExtractionResult.failed(str(e))
