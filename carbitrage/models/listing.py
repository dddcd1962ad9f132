"""
Normalized listing — one row per retail listing, written by the ingest service.

Read-only from this package's point of view.
"""
from sqlalchemy import Column, Integer, Text, Float, DateTime, Index
from sqlalchemy.sql import func

from carbitrage.database import Base


class NormalizedListing(Base):
    __tablename__ = 'listing_details_norm'
    __table_args__ = (
        Index('ix_listing_norm_account_seen', 'account_id', 'last_seen'),
    )

    id = Column(Text, primary_key=True)
    account_id = Column(Text, nullable=False)
    make = Column(Text, nullable=True)
    model = Column(Text, nullable=True)
    variant = Column(Text, nullable=True)
    year = Column(Integer, nullable=True)
    km = Column(Integer, nullable=True)
    asking_price = Column(Float, nullable=True)
    transmission = Column(Text, nullable=True)
    fuel = Column(Text, nullable=True)
    drivetrain = Column(Text, nullable=True)
    url = Column(Text, nullable=True)
    source = Column(Text, nullable=True)           # e.g. autotrader, gumtree
    extraction_confidence = Column(Text, nullable=True)
    last_seen = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
