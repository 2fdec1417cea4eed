"""
Tests for site adapters, the adapter registry and normalizers.
"""

import asyncio
from dataclasses import replace

import pytest

from worker.base import ListingType
from worker.registry import get_adapter_for_url, list_adapters
from worker.sites import RealEstateAUAdapter, RealEstateNZAdapter
from worker.utils.normalizers import (
    normalize_text, parse_price, parse_int, parse_area, split_au_address, split_nz_address
)

from conftest import FakePage


AU_LIST_URL = 'https://www.realestate.com.au/buy/in-northside,+nsw+2000/list-1'
AU_DETAIL_URL = 'https://www.realestate.com.au/property-house-nsw-northside-143160680'

AU_LIST_HTML = """
<html><body>
  <div class="results">
    <a href="/property-house-nsw-northside-143160680">12 Smith St</a>
    <a href="/property-house-nsw-northside-143160680#photos">Photos</a>
    <a href="https://www.realestate.com.au/property-unit-nsw-northside-143160999">3/40 Bay Rd</a>
    <a href="/property/no-id-here">Broken card</a>
    <a href="/agent/jane-citizen-12345">Agent</a>
  </div>
  <a rel="next" href="/buy/in-northside,+nsw+2000/list-2">Next</a>
</body></html>
"""

AU_DETAIL_HTML = """
<html>
<head><title>12 Smith St, Northside NSW 2000 | realestate.com.au</title></head>
<body>
  <h1 class="property-info-address">12 Smith St, Northside NSW 2000</h1>
  <span class="property-price">$1,250,000</span>
  <p class="property-info__property-type">House</p>
  <ul><li>3 Beds</li><li>2 Baths</li><li>1 Car</li></ul>
  <p>Land size: 650 m²</p>
</body>
</html>
"""

NZ_DETAIL_URL = 'https://www.realestate.co.nz/42901234/residential/sale/12-queen-street-ponsonby'

NZ_DETAIL_HTML = """
<html><body>
  <h1 data-test="listing-address">12 Queen Street, Ponsonby, Auckland City, Auckland</h1>
  <div data-test="price-display">Asking price $1,150,000</div>
  <div>4 bedrooms 2 bathrooms</div>
</body></html>
"""


def run(coro):
    return asyncio.run(coro)


class TestRealEstateAUAdapter:
    """Test realestate.com.au parsing."""

    def test_detail_links_are_absolute_and_unique(self):
        adapter = RealEstateAUAdapter()
        links = run(adapter.get_detail_links(FakePage(AU_LIST_URL, AU_LIST_HTML)))

        assert links == [
            'https://www.realestate.com.au/property-house-nsw-northside-143160680',
            'https://www.realestate.com.au/property-unit-nsw-northside-143160999',
        ]

    def test_next_page_url(self):
        adapter = RealEstateAUAdapter()
        next_url = run(adapter.get_next_page_url(FakePage(AU_LIST_URL, AU_LIST_HTML)))

        assert next_url == 'https://www.realestate.com.au/buy/in-northside,+nsw+2000/list-2'

    def test_last_page_has_no_next(self):
        adapter = RealEstateAUAdapter()
        assert run(adapter.get_next_page_url(FakePage(AU_LIST_URL, '<html><body></body></html>'))) is None

    def test_extract_listing(self):
        adapter = RealEstateAUAdapter()
        result = run(adapter.extract_listing(FakePage(AU_DETAIL_URL, AU_DETAIL_HTML), ListingType.BUY))

        assert result.success is True
        assert result.is_usable
        assert result.external_id == 'au_143160680'
        data = result.data
        assert data['address'] == '12 Smith St, Northside NSW 2000'
        assert data['suburb'] == 'Northside'
        assert data['state'] == 'NSW'
        assert data['postcode'] == '2000'
        assert data['price'] == 1250000
        assert data['bedrooms'] == 3
        assert data['bathrooms'] == 2
        assert data['car_spaces'] == 1
        assert data['land_size'] == 650.0
        assert data['property_type'] == 'House'
        assert data['listing_type'] == 'buy'
        assert data['status'] == 'active'
        assert data['listing_url'] == AU_DETAIL_URL
        assert data['raw_data']['price_text'] == '$1,250,000'

    def test_sold_listing_status(self):
        adapter = RealEstateAUAdapter()
        result = run(adapter.extract_listing(FakePage(AU_DETAIL_URL, AU_DETAIL_HTML), ListingType.SOLD))

        assert result.data['listing_type'] == 'sold'
        assert result.data['status'] == 'sold'

    def test_json_ld_address_fallback(self):
        html = """
        <html><body>
          <script type="application/ld+json">
            {"@type": "House", "address": {"streetAddress": "7 Bay Rd, Southport QLD 4215"}}
          </script>
          <p>Contact agent</p>
        </body></html>
        """
        adapter = RealEstateAUAdapter()
        result = run(adapter.extract_listing(FakePage(AU_DETAIL_URL, html), ListingType.BUY))

        assert result.data['address'] == '7 Bay Rd, Southport QLD 4215'
        assert result.data['suburb'] == 'Southport'
        assert result.data['price'] is None

    def test_page_without_id_is_not_usable(self):
        adapter = RealEstateAUAdapter()
        page = FakePage('https://www.realestate.com.au/property/no-id-here', AU_DETAIL_HTML)

        result = run(adapter.extract_listing(page, ListingType.BUY))

        assert result.success is False
        assert not result.is_usable
        assert 'No listing id' in result.error


class TestRealEstateNZAdapter:
    """Test realestate.co.nz parsing."""

    def test_external_id_from_leading_path_segment(self):
        adapter = RealEstateNZAdapter()
        assert adapter.parse_external_id(NZ_DETAIL_URL) == 'nz_42901234'
        assert adapter.is_detail_url(NZ_DETAIL_URL)
        assert not adapter.is_detail_url('https://www.realestate.co.nz/residential/sale/auckland')

    def test_extract_listing(self):
        adapter = RealEstateNZAdapter()
        result = run(adapter.extract_listing(FakePage(NZ_DETAIL_URL, NZ_DETAIL_HTML), ListingType.BUY))

        assert result.external_id == 'nz_42901234'
        assert result.data['suburb'] == 'Ponsonby'
        assert result.data['state'] == 'Auckland'
        assert result.data['price'] == 1150000
        assert result.data['bedrooms'] == 4
        assert result.data['bathrooms'] == 2


class TestRegistry:
    """Test adapter selection by URL."""

    def test_au_url(self):
        assert isinstance(get_adapter_for_url(AU_LIST_URL), RealEstateAUAdapter)

    def test_nz_url(self):
        adapter = get_adapter_for_url('https://www.realestate.co.nz/residential/sale/auckland')
        assert isinstance(adapter, RealEstateNZAdapter)

    def test_unknown_url_falls_back_to_au(self):
        assert isinstance(get_adapter_for_url('https://example.test/list1'), RealEstateAUAdapter)

    def test_disabled_site_is_skipped(self, monkeypatch):
        monkeypatch.setattr(RealEstateNZAdapter, 'config', replace(RealEstateNZAdapter.config, enabled=False))

        adapter = get_adapter_for_url('https://www.realestate.co.nz/residential/sale/auckland')

        assert isinstance(adapter, RealEstateAUAdapter)

    def test_list_adapters(self):
        adapters = {a['key']: a for a in list_adapters()}

        assert adapters['realestate_au']['implemented'] is True
        assert adapters['realestate_nz']['country'] == 'NZ'


class TestNormalizers:
    """Test text normalization helpers."""

    def test_normalize_text(self):
        assert normalize_text('  12   Smith\nSt ') == '12 Smith St'
        assert normalize_text(None) == ''

    @pytest.mark.parametrize('text,expected', [
        ('$1,250,000', 1250000),
        ('Offers over $850k', 850000),
        ('$1.2m', 1200000),
        ('$650,000 - $700,000', 650000),
        ('Contact agent', None),
        ('', None),
    ])
    def test_parse_price(self, text, expected):
        assert parse_price(text) == expected

    def test_parse_int(self):
        assert parse_int('3 Beds') == 3
        assert parse_int('none') is None

    def test_parse_area(self):
        assert parse_area('650m²') == 650.0
        assert parse_area('1,200 sqm') == 1200.0
        assert parse_area('1.5 ha') == 15000.0

    def test_split_au_address(self):
        assert split_au_address('12 Smith St, Northside NSW 2000') == ('Northside', 'NSW', '2000')
        assert split_au_address('Unit 4/7 Bay Rd, Southport, QLD 4215') == ('Southport', 'QLD', '4215')
        assert split_au_address('Address available on request') == ('', '', '')

    def test_split_nz_address(self):
        assert split_nz_address('12 Queen Street, Ponsonby, Auckland City, Auckland') == ('Ponsonby', 'Auckland', '')
        assert split_nz_address('Ponsonby') == ('', '', '')
