"""
Pipeline run bookkeeping — one PipelineRun per orchestrator invocation,
one PipelineStep per executed step, and the single-flight lock row.
"""
import uuid

from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from carbitrage.database import Base


class PipelineRun(Base):
    __tablename__ = 'pipeline_runs'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    status = Column(Text, nullable=False, default='RUNNING')
    triggered_by = Column(Text, default='manual')
    previous_run_id = Column(Text, nullable=True)    # set on retry-failed-only runs
    total_steps = Column(Integer, default=0)
    completed_steps = Column(Integer, default=0)
    failed_steps = Column(Integer, default=0)
    skipped_steps = Column(Integer, default=0)
    error_summary = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PipelineStep(Base):
    __tablename__ = 'pipeline_steps'
    __table_args__ = (
        UniqueConstraint('run_id', 'step_name', name='uq_step_run_name'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey('pipeline_runs.id'), nullable=False)
    step_name = Column(Text, nullable=False)
    step_order = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default='PENDING')
    records_processed = Column(Integer, default=0)
    records_created = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    error_sample = Column(Text, nullable=True)       # first 1000 chars
    # `metadata` is reserved on declarative classes
    step_metadata = Column('metadata', JSON, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class PipelineLock(Base):
    __tablename__ = 'pipeline_locks'

    name = Column(Text, primary_key=True)
    token = Column(Text, nullable=True)
    locked_until = Column(DateTime, nullable=True)
    acquired_at = Column(DateTime, nullable=True)
