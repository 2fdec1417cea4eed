"""
Adapter registry - picks the site adapter for a seed URL.

Adapters are selected by URL pattern at session start. New origins register
here (or through `register_adapter`) without any change to the crawl engine.
"""

from typing import Dict, List, Type
import logging

from .base import SiteAdapter
from .config import SITES
from .sites import RealEstateAUAdapter, RealEstateNZAdapter

logger = logging.getLogger(__name__)


# Registry of implemented adapters, keyed like SITES
ADAPTER_REGISTRY: Dict[str, Type[SiteAdapter]] = {
    'realestate_au': RealEstateAUAdapter,
    'realestate_nz': RealEstateNZAdapter,
}

# Used when no pattern matches a seed URL
DEFAULT_ADAPTER_KEY = 'realestate_au'


def register_adapter(site_key: str, adapter_class: Type[SiteAdapter]) -> None:
    """Register (or replace) the adapter for a site key."""
    ADAPTER_REGISTRY[site_key] = adapter_class


def get_adapter_for_url(url: str) -> SiteAdapter:
    """
    Get an adapter instance for a seed URL.

    Args:
        url: Seed URL of a crawl session

    Returns:
        Adapter whose URL patterns match, or the default adapter
    """
    for adapter_class in ADAPTER_REGISTRY.values():
        adapter = adapter_class()
        if adapter.config.enabled and adapter.matches(url):
            return adapter

    logger.warning(f"No adapter matches {url}, falling back to {DEFAULT_ADAPTER_KEY}")
    return ADAPTER_REGISTRY[DEFAULT_ADAPTER_KEY]()


def list_adapters() -> List[Dict]:
    """
    List all configured sites and their implementation status.

    Returns:
        List of site info dictionaries
    """
    adapters = []
    for key, config in SITES.items():
        adapters.append({
            'key': key,
            'name': config.name,
            'short_name': config.short_name,
            'country': config.country,
            'enabled': config.enabled,
            'implemented': key in ADAPTER_REGISTRY,
        })
    return adapters
