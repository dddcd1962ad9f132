"""
Sale hunts — a proven sale the account wants to replicate, plus the web
candidates found for it, the alerts they raised and a log of each scan.
"""
import uuid

from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, DateTime, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.sql import func

from carbitrage.database import Base


class SaleHunt(Base):
    __tablename__ = 'sale_hunts'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(Text, nullable=False)
    make = Column(Text, nullable=False)
    model = Column(Text, nullable=False)
    year = Column(Integer, nullable=False)
    km = Column(Integer, nullable=True)
    proven_exit_value = Column(Float, nullable=True)
    series_family = Column(Text, nullable=True)
    engine_family = Column(Text, nullable=True)
    cab_type = Column(Text, nullable=True)
    body_type = Column(Text, nullable=True)
    badge = Column(Text, nullable=True)
    must_have_tokens = Column(JSON, nullable=True)
    must_have_mode = Column(Text, nullable=False, default='soft')   # soft/strict
    min_gap_abs_buy = Column(Float, nullable=False, default=2000)
    min_gap_pct_buy = Column(Float, nullable=False, default=8)
    min_gap_abs_watch = Column(Float, nullable=False, default=500)
    min_gap_pct_watch = Column(Float, nullable=False, default=3)
    status = Column(Text, nullable=False, default='active')          # active/paused/done
    last_scan_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class HuntCandidate(Base):
    __tablename__ = 'hunt_candidates'
    __table_args__ = (
        UniqueConstraint('hunt_id', 'source', 'url', name='uq_candidate_hunt_source_url'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    hunt_id = Column(Text, ForeignKey('sale_hunts.id'), nullable=False)
    source = Column(Text, nullable=False, default='outward_web')
    url = Column(Text, nullable=False)
    domain = Column(Text, nullable=True)
    title = Column(Text, nullable=True)
    snippet = Column(Text, nullable=True)
    extracted = Column(JSON, default=dict)          # {year, make, model, km, asking_price, confidence}
    classification = Column(JSON, default=dict)     # {series_family, engine_family, ...}
    match_score = Column(Float, default=0.0)        # 0-10
    decision = Column(Text, nullable=False)         # BUY/WATCH/IGNORE
    reasons = Column(JSON, default=list)
    alert_emitted = Column(Boolean, nullable=False, default=False)
    requires_manual_check = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime, nullable=True)


class HuntAlert(Base):
    __tablename__ = 'hunt_alerts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    hunt_id = Column(Text, ForeignKey('sale_hunts.id'), nullable=False)
    candidate_id = Column(Integer, ForeignKey('hunt_candidates.id'), nullable=False)
    alert_type = Column(Text, nullable=False)       # BUY/WATCH
    payload = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class HuntScanRun(Base):
    __tablename__ = 'hunt_scan_runs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    hunt_id = Column(Text, ForeignKey('sale_hunts.id'), nullable=False)
    status = Column(Text, nullable=False, default='running')   # running/success/partial/failed
    queries = Column(JSON, default=list)
    queries_run = Column(Integer, default=0)
    results_found = Column(Integer, default=0)
    candidates_created = Column(Integer, default=0)
    candidates_rejected = Column(Integer, default=0)
    alerts_emitted = Column(Integer, default=0)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
