"""
MatchedOpportunity — a listing that scored against a sales fingerprint.

One row per (account, listing). Re-scoring updates the row in place;
status is set to 'open' on insert and afterwards belongs to the review surface.
"""
from sqlalchemy import Column, Integer, Text, Float, DateTime, JSON, UniqueConstraint
from sqlalchemy.sql import func

from carbitrage.database import Base


class MatchedOpportunity(Base):
    __tablename__ = 'matched_opportunities'
    __table_args__ = (
        UniqueConstraint('account_id', 'listing_id', name='uq_opportunity_account_listing'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Text, nullable=False)
    listing_id = Column(Text, nullable=False)
    platform_class = Column(Text, nullable=False)
    url = Column(Text, nullable=True)
    make = Column(Text, nullable=True)
    model = Column(Text, nullable=True)
    year = Column(Integer, nullable=True)
    km = Column(Integer, nullable=True)
    asking_price = Column(Float, nullable=True)
    source = Column(Text, nullable=True)
    sales_count = Column(Integer, default=0)          # fingerprint support at match time
    match_score = Column(Integer, nullable=False)      # 0-100
    km_band = Column(Text, nullable=False)             # inside/near/outside/unknown
    price_band = Column(Text, nullable=False)          # below/near/above/unknown
    reasons = Column(JSON, default=dict)
    status = Column(Text, nullable=False, default='open')
    last_scored_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
