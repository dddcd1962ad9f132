"""
SalesFingerprint — aggregated sale statistics per (account, platform class).

Owned by the periodic aggregation job; read-only here.
"""
from sqlalchemy import Column, Integer, Text, Float, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from carbitrage.database import Base


class SalesFingerprint(Base):
    __tablename__ = 'sales_fingerprints'
    __table_args__ = (
        UniqueConstraint('account_id', 'platform_class', name='uq_fingerprint_account_class'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Text, nullable=False)
    platform_class = Column(Text, nullable=False)   # "MAKE|MODEL"
    make = Column(Text, nullable=False)
    model = Column(Text, nullable=False)
    sales_count = Column(Integer, default=0)
    km_p25 = Column(Integer, nullable=True)
    km_median = Column(Integer, nullable=True)
    km_p75 = Column(Integer, nullable=True)
    price_median = Column(Float, nullable=True)
    last_sold_at = Column(DateTime, nullable=True)
    dominant_transmission = Column(Text, nullable=True)
    dominant_transmission_count = Column(Integer, default=0)
    dominant_fuel = Column(Text, nullable=True)
    dominant_fuel_count = Column(Integer, default=0)
    dominant_drivetrain = Column(Text, nullable=True)
    dominant_drivetrain_count = Column(Integer, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
