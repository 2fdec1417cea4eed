"""Per-origin adapter implementations."""

from .realestate_au import RealEstateAUAdapter
from .realestate_nz import RealEstateNZAdapter

__all__ = ['RealEstateAUAdapter', 'RealEstateNZAdapter']
