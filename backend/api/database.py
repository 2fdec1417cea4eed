from sqlalchemy import create_engine, Column, Integer, BigInteger, String, Float, DateTime, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime, timezone


def utc_now():
    """Return current UTC time (timezone-aware). Replaces deprecated datetime.utcnow()."""
    return datetime.now(timezone.utc)

Base = declarative_base()


class Listing(Base):
    __tablename__ = 'listings'

    id = Column(Integer, primary_key=True)

    # Identity - one canonical row per (external_id, country)
    external_id = Column(String, nullable=False)
    country = Column(String(2), nullable=False)

    # Job context at first observation
    client_name = Column(String, nullable=False)
    area_name = Column(String, nullable=False)
    listing_type = Column(String, nullable=False, default='buy', index=True)  # buy or sold

    # Property details (structural - kept as first recorded)
    address = Column(String, default='')
    suburb = Column(String, default='', index=True)
    state = Column(String, default='')
    postcode = Column(String, default='')
    bedrooms = Column(Integer)
    bathrooms = Column(Integer)
    car_spaces = Column(Integer)
    land_size = Column(Float)
    floor_size = Column(Float)
    property_type = Column(String, default='')
    listing_url = Column(String, default='')

    # Observed values - refreshed on every re-observation
    price = Column(BigInteger)
    scraped_at = Column(DateTime, default=utc_now)
    raw_data = Column(Text)  # JSON blob from the adapter

    snapshots = relationship("Snapshot", back_populates="listing")

    __table_args__ = (
        UniqueConstraint('external_id', 'country', name='uq_listings_external_id_country'),
        Index('ix_listings_client_area', 'client_name', 'area_name'),
    )


class Snapshot(Base):
    __tablename__ = 'snapshots'

    id = Column(Integer, primary_key=True)
    listing_id = Column(Integer, ForeignKey('listings.id'), nullable=False, index=True)

    price = Column(BigInteger)
    status = Column(String, default='active')  # active, sold
    scraped_at = Column(DateTime, default=utc_now, index=True)
    raw_data = Column(Text)

    listing = relationship("Listing", back_populates="snapshots")


class Job(Base):
    __tablename__ = 'jobs'

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, default='scrape-estate')
    data = Column(Text, nullable=False)  # JSON submission payload

    # Scheduling
    priority = Column(Integer, nullable=False, default=100)  # lower = sooner
    state = Column(String, nullable=False, default='waiting', index=True)
    available_at = Column(DateTime)  # when a delayed job becomes leasable
    attempts_made = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)

    # Lease
    lease_owner = Column(String)
    lease_expires_at = Column(DateTime)

    # Outcome
    progress = Column(Integer, nullable=False, default=0)
    result = Column(Text)  # JSON
    failed_reason = Column(Text)

    created_at = Column(DateTime, default=utc_now)
    processed_at = Column(DateTime)
    finished_at = Column(DateTime)

    __table_args__ = (
        Index('ix_jobs_state_priority', 'state', 'priority', 'id'),
    )


# Database setup - import settings for database URL
from api.config import settings


def build_engine(database_url: str):
    """Create an engine with pooling suited to the backend."""
    if database_url.startswith('sqlite'):
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
    # Configure engine with connection pooling for better performance
    return create_engine(
        database_url,
        echo=False,
        pool_size=5,           # Number of connections to keep in pool
        max_overflow=10,       # Additional connections allowed beyond pool_size
        pool_pre_ping=True,    # Verify connections before use (handles stale connections)
        pool_recycle=3600,     # Recycle connections after 1 hour
    )


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

if settings.queue_url == settings.database_url:
    queue_engine = engine
    QueueSessionLocal = SessionLocal
else:
    queue_engine = build_engine(settings.queue_url)
    QueueSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=queue_engine)


def init_db():
    Base.metadata.create_all(bind=engine)
    if queue_engine is not engine:
        Base.metadata.create_all(bind=queue_engine, tables=[Job.__table__])
