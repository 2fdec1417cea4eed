"""
Listing persistence - canonical listing upsert plus append-only snapshots.

Each save is one transaction: the listing row is inserted or refreshed and a
snapshot row recording this observation is appended. Either both commit or
neither does.
"""

import json
from typing import Any, Dict, Mapping
import logging

from sqlalchemy import func, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from api.database import Listing, Snapshot, utc_now
from .errors import PersistenceError

logger = logging.getLogger(__name__)


# Fields that describe the property itself; kept as first recorded
STRUCTURAL_TEXT_FIELDS = ('address', 'suburb', 'state', 'postcode', 'property_type', 'listing_url')
STRUCTURAL_NUMERIC_FIELDS = ('bedrooms', 'bathrooms', 'car_spaces', 'land_size', 'floor_size')

# ON CONFLICT upserts are dialect-specific constructs
_DIALECT_INSERTS = {
    'sqlite': sqlite.insert,
    'postgresql': postgresql.insert,
}


def _raw_json(listing_data: Mapping[str, Any]) -> str:
    return json.dumps(listing_data.get('raw_data') or {}, default=str)


class ListingStore:
    """
    Transactional store for listings and snapshots.

    Usage:
        store = ListingStore(SessionLocal)
        if store.test_connection():
            store.save_listing(listing_data, job_data)
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def test_connection(self) -> bool:
        """Cheap round-trip check, used as a precondition before crawling."""
        try:
            with self._session_factory() as db:
                db.execute(text('SELECT 1'))
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    def save_listing(self, listing_data: Mapping[str, Any], job_data: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Upsert a listing and append a snapshot in one transaction.

        Args:
            listing_data: Extracted listing fields including external_id
            job_data: Job context (country, client_name, area_name)

        Returns:
            {'listing_id': int, 'external_id': str}

        Raises:
            PersistenceError: The transaction failed and was rolled back
        """
        external_id = listing_data.get('external_id')
        country = job_data.get('country')

        db: Session = self._session_factory()
        try:
            scraped_at = utc_now()
            raw_data = _raw_json(listing_data)

            listing_id = self._upsert_listing(db, listing_data, job_data, scraped_at, raw_data)
            self._insert_snapshot(db, listing_id, listing_data, scraped_at, raw_data)

            db.commit()
            return {'listing_id': listing_id, 'external_id': external_id}

        except Exception as e:
            db.rollback()
            logger.error(f"Error saving listing {external_id} ({country}): {e}")
            raise PersistenceError(f"Failed to save listing {external_id}: {e}") from e

        finally:
            db.close()

    def _upsert_listing(self, db: Session, listing_data, job_data, scraped_at, raw_data) -> int:
        values = {
            'external_id': listing_data.get('external_id'),
            'country': job_data.get('country'),
            'client_name': job_data.get('client_name'),
            'area_name': job_data.get('area_name'),
            'listing_type': listing_data.get('listing_type') or 'buy',
            'price': listing_data.get('price') or None,
            'scraped_at': scraped_at,
            'raw_data': raw_data,
        }
        for field in STRUCTURAL_TEXT_FIELDS:
            values[field] = listing_data.get(field) or ''
        for field in STRUCTURAL_NUMERIC_FIELDS:
            values[field] = listing_data.get(field) or None

        insert = _DIALECT_INSERTS[db.get_bind().dialect.name]
        stmt = insert(Listing).values(**values)
        # Re-observation refreshes the observed values only
        stmt = stmt.on_conflict_do_update(
            index_elements=['external_id', 'country'],
            set_={
                'price': stmt.excluded.price,
                'scraped_at': stmt.excluded.scraped_at,
                'raw_data': stmt.excluded.raw_data,
            },
        ).returning(Listing.id)

        return db.execute(stmt).scalar_one()

    def _insert_snapshot(self, db: Session, listing_id: int, listing_data, scraped_at, raw_data) -> Snapshot:
        snapshot = Snapshot(
            listing_id=listing_id,
            price=listing_data.get('price') or None,
            status=listing_data.get('status') or 'active',
            scraped_at=scraped_at,
            raw_data=raw_data,
        )
        db.add(snapshot)
        db.flush()
        return snapshot

    def count_listings(self) -> int:
        with self._session_factory() as db:
            return db.query(func.count(Listing.id)).scalar()

    def count_snapshots(self) -> int:
        with self._session_factory() as db:
            return db.query(func.count(Snapshot.id)).scalar()
