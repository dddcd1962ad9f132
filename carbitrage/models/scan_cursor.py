"""
ScanCursor — persisted position of a resumable multi-dimension scan, and the
cron audit log each invocation appends to.
"""
from sqlalchemy import Column, Integer, Text, Boolean, Date, DateTime, JSON
from sqlalchemy.sql import func

from carbitrage.database import Base


class ScanCursor(Base):
    __tablename__ = 'scan_cursors'

    name = Column(Text, primary_key=True)
    indices = Column(JSON, nullable=False, default=list)     # one index per dimension
    batches_completed = Column(Integer, default=0)
    totals = Column(JSON, nullable=False, default=dict)      # {new, updated, evaluations, errors}
    status = Column(Text, nullable=False, default='pending') # pending/running/done
    lock_token = Column(Text, nullable=True)
    locked_until = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    last_done_log_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)


class CronAuditLog(Base):
    __tablename__ = 'cron_audit_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    cron_name = Column(Text, nullable=False)
    run_date = Column(Date, nullable=False)
    success = Column(Boolean, nullable=False, default=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
