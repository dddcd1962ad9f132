"""
Postgres persistence helpers — called from the scoring, hunt, cursor and
pipeline modules.

Rows are converted to typed records (pipeline/records.py) before they leave
this module. Run/step bookkeeping writes are wrapped in try/except so the
pipeline never blocks on them; lock and sink writes raise, because their
callers need to know.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from carbitrage.database import get_session, utcnow
from carbitrage.errors import TransientError
from carbitrage.models.fingerprint import SalesFingerprint
from carbitrage.models.hunt import HuntAlert, HuntCandidate, HuntScanRun, SaleHunt
from carbitrage.models.listing import NormalizedListing
from carbitrage.models.opportunity import MatchedOpportunity
from carbitrage.models.pipeline_run import PipelineLock, PipelineRun, PipelineStep
from carbitrage.models.scan_cursor import CronAuditLog, ScanCursor
from carbitrage.pipeline.records import (
    Candidate, CursorState, Fingerprint, HuntSpec, ListingRecord, Opportunity,
    RunRecord, StepStatus, EMPTY_TOTALS,
)

logger = logging.getLogger('services.db')


def _dialect_insert(session, model):
    """INSERT construct that supports ON CONFLICT for the bound dialect."""
    if session.get_bind().dialect.name == 'postgresql':
        return postgresql.insert(model)
    return sqlite.insert(model)


# ── Listings + fingerprints (read-only) ──────────────────────────────────────

def load_fingerprints(account_id: str) -> List[Fingerprint]:
    """All fingerprints for an account, as typed records."""
    session = get_session()
    try:
        rows = session.query(SalesFingerprint).filter_by(account_id=account_id).all()
        return [Fingerprint.from_row(row) for row in rows]
    finally:
        session.close()


def load_recent_listings(account_id: str, limit: int = 200) -> List[ListingRecord]:
    """Newest listings first (by last_seen)."""
    session = get_session()
    try:
        rows = (
            session.query(NormalizedListing)
            .filter_by(account_id=account_id)
            .order_by(NormalizedListing.last_seen.desc().nulls_last(), NormalizedListing.id)
            .limit(limit)
            .all()
        )
        return [ListingRecord.from_row(row) for row in rows]
    finally:
        session.close()


def list_fingerprint_accounts() -> List[str]:
    """Distinct account ids that have at least one fingerprint."""
    session = get_session()
    try:
        rows = session.query(SalesFingerprint.account_id).distinct().order_by(SalesFingerprint.account_id).all()
        return [row[0] for row in rows]
    finally:
        session.close()


# ── Opportunity sink ─────────────────────────────────────────────────────────

# Columns refreshed on re-score. status is left alone: after insert it
# belongs to the review surface.
_OPPORTUNITY_UPDATE_COLUMNS = (
    'platform_class', 'url', 'make', 'model', 'year', 'km', 'asking_price',
    'source', 'sales_count', 'match_score', 'km_band', 'price_band', 'reasons',
    'last_scored_at',
)


def upsert_opportunities(opportunities: List[Opportunity]) -> Tuple[int, int]:
    """
    Idempotent upsert keyed by (account_id, listing_id).

    Returns (created, updated). Raises TransientError if the write fails so
    the caller can count the chunk as failed.
    """
    if not opportunities:
        return 0, 0

    now = utcnow()
    rows = []
    for opp in opportunities:
        row = opp.to_row()
        row['last_scored_at'] = now
        rows.append(row)

    session = get_session()
    try:
        account_ids = {r['account_id'] for r in rows}
        listing_ids = {r['listing_id'] for r in rows}
        existing = {
            (a, l) for a, l in session.query(MatchedOpportunity.account_id, MatchedOpportunity.listing_id)
            .filter(MatchedOpportunity.account_id.in_(account_ids))
            .filter(MatchedOpportunity.listing_id.in_(listing_ids))
            .all()
        }
        updated = sum(1 for r in rows if (r['account_id'], r['listing_id']) in existing)

        stmt = _dialect_insert(session, MatchedOpportunity).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=['account_id', 'listing_id'],
            set_={col: stmt.excluded[col] for col in _OPPORTUNITY_UPDATE_COLUMNS},
        )
        session.execute(stmt)
        session.commit()
        return len(rows) - updated, updated
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to upsert %d opportunities", len(rows), exc_info=True)
        raise TransientError(f"Opportunity upsert failed: {e.__class__.__name__}") from e
    finally:
        session.close()


# ── Hunts ────────────────────────────────────────────────────────────────────

def load_hunt(hunt_id: str) -> Optional[HuntSpec]:
    session = get_session()
    try:
        row = session.get(SaleHunt, hunt_id)
        return HuntSpec.from_row(row) if row is not None else None
    finally:
        session.close()


def list_active_hunt_ids() -> List[str]:
    session = get_session()
    try:
        rows = session.query(SaleHunt.id).filter_by(status='active').order_by(SaleHunt.created_at).all()
        return [row[0] for row in rows]
    finally:
        session.close()


def start_hunt_scan_run(hunt_id: str, queries: List[str]) -> Optional[int]:
    """Open a scan-run record. Failure is logged, never blocks the scan."""
    session = get_session()
    try:
        scan_run = HuntScanRun(hunt_id=hunt_id, status='running', queries=list(queries), started_at=utcnow())
        session.add(scan_run)
        session.commit()
        return scan_run.id
    except Exception:
        session.rollback()
        logger.error("Failed to create scan run for hunt %s", hunt_id, exc_info=True)
        return None
    finally:
        session.close()


def finish_hunt_scan_run(scan_run_id: Optional[int], hunt_id: str, status: str,
                         counters: Dict[str, int], error: Optional[str] = None):
    """Close the scan-run record and stamp the hunt's last_scan_at."""
    session = get_session()
    try:
        now = utcnow()
        if scan_run_id is not None:
            scan_run = session.get(HuntScanRun, scan_run_id)
            if scan_run is not None:
                scan_run.status = status
                scan_run.queries_run = counters.get('queries_run', 0)
                scan_run.results_found = counters.get('results_found', 0)
                scan_run.candidates_created = counters.get('candidates_created', 0)
                scan_run.candidates_rejected = counters.get('candidates_rejected', 0)
                scan_run.alerts_emitted = counters.get('alerts_emitted', 0)
                scan_run.error = error
                scan_run.completed_at = now
        hunt = session.get(SaleHunt, hunt_id)
        if hunt is not None:
            hunt.last_scan_at = now
        session.commit()
    except Exception:
        session.rollback()
        logger.error("Failed to finish scan run for hunt %s", hunt_id, exc_info=True)
    finally:
        session.close()


def save_candidate(hunt_id: str, candidate: Candidate, classification: Dict[str, Any],
                   score: float, decision: str, reasons: List[str]) -> Tuple[int, bool]:
    """
    Upsert one candidate keyed by (hunt_id, source, url).

    Returns (candidate_id, created). alert_emitted is only ever set by
    emit_alert_once(), so a re-scan never re-arms an alert.
    """
    now = utcnow()
    values = {
        'hunt_id': hunt_id,
        'source': candidate.source,
        'url': candidate.url,
        'domain': candidate.domain,
        'title': candidate.title[:200],
        'snippet': candidate.snippet[:500],
        'extracted': candidate.extracted(),
        'classification': dict(classification),
        'match_score': score,
        'decision': decision,
        'reasons': list(reasons),
        'requires_manual_check': candidate.requires_manual_check,
        'alert_emitted': False,
        'updated_at': now,
    }
    refreshed = ('domain', 'title', 'snippet', 'extracted', 'classification',
                 'match_score', 'decision', 'reasons', 'requires_manual_check', 'updated_at')

    session = get_session()
    try:
        existing_id = session.query(HuntCandidate.id).filter_by(
            hunt_id=hunt_id, source=candidate.source, url=candidate.url,
        ).scalar()

        stmt = _dialect_insert(session, HuntCandidate).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=['hunt_id', 'source', 'url'],
            set_={col: stmt.excluded[col] for col in refreshed},
        ).returning(HuntCandidate.id)
        candidate_id = session.execute(stmt).scalar_one()
        session.commit()
        return candidate_id, existing_id is None
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to save candidate %s for hunt %s", candidate.url, hunt_id, exc_info=True)
        raise TransientError(f"Candidate upsert failed: {e.__class__.__name__}") from e
    finally:
        session.close()


def emit_alert_once(hunt_id: str, candidate_id: int, alert_type: str, payload: Dict[str, Any]) -> bool:
    """
    Insert a hunt alert unless this candidate already raised one.

    The emitted flag is flipped with a conditional UPDATE in the same
    transaction as the alert insert; only the caller that flips it inserts.
    """
    session = get_session()
    try:
        flipped = session.execute(
            update(HuntCandidate)
            .where(HuntCandidate.id == candidate_id, HuntCandidate.alert_emitted.is_(False))
            .values(alert_emitted=True)
            .execution_options(synchronize_session=False)
        ).rowcount
        if flipped != 1:
            session.rollback()
            return False
        session.add(HuntAlert(hunt_id=hunt_id, candidate_id=candidate_id, alert_type=alert_type, payload=payload))
        session.commit()
        return True
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to emit alert for candidate %s", candidate_id, exc_info=True)
        raise TransientError(f"Alert insert failed: {e.__class__.__name__}") from e
    finally:
        session.close()


# ── Single-flight pipeline lock ──────────────────────────────────────────────

def acquire_lock(name: str, token: str, ttl_seconds: int) -> bool:
    """
    Claim the named lock with one conditional UPDATE … RETURNING.

    The row is created on first use. The claim succeeds only when the lock is
    free or expired; the returned token proves this caller won.
    """
    session = get_session()
    try:
        now = utcnow()
        session.execute(
            _dialect_insert(session, PipelineLock)
            .values(name=name)
            .on_conflict_do_nothing(index_elements=['name'])
        )
        claimed = session.execute(
            update(PipelineLock)
            .where(
                PipelineLock.name == name,
                or_(PipelineLock.locked_until.is_(None), PipelineLock.locked_until < now),
            )
            .values(token=token, locked_until=now + timedelta(seconds=ttl_seconds), acquired_at=now)
            .returning(PipelineLock.token)
            .execution_options(synchronize_session=False)
        ).first()
        session.commit()
        return claimed is not None and claimed[0] == token
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def extend_lock(name: str, token: str, ttl_seconds: int) -> bool:
    """
    Push locked_until out by ttl_seconds from now, if this token still holds it.

    Matches on token only: an expired lock nobody else has claimed is still
    ours to renew. Returns False when another token took it or the store fails.
    """
    session = get_session()
    try:
        now = utcnow()
        renewed = session.execute(
            update(PipelineLock)
            .where(PipelineLock.name == name, PipelineLock.token == token)
            .values(locked_until=now + timedelta(seconds=ttl_seconds))
            .execution_options(synchronize_session=False)
        ).rowcount
        session.commit()
        return renewed == 1
    except Exception:
        session.rollback()
        logger.error("Failed to extend lock %s", name, exc_info=True)
        return False
    finally:
        session.close()


def release_lock(name: str, token: str) -> bool:
    """Release the lock if this token still holds it. Never raises."""
    session = get_session()
    try:
        released = session.execute(
            update(PipelineLock)
            .where(PipelineLock.name == name, PipelineLock.token == token)
            .values(token=None, locked_until=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        session.commit()
        return released == 1
    except Exception:
        session.rollback()
        logger.error("Failed to release lock %s — it will expire on its own", name, exc_info=True)
        return False
    finally:
        session.close()


# ── Pipeline runs + steps ────────────────────────────────────────────────────

def create_run(run_id: str, triggered_by: str, steps: Iterable, previous_run_id: Optional[str] = None):
    """INSERT the run as RUNNING plus one PENDING row per step. Raises on failure."""
    steps = list(steps)
    session = get_session()
    try:
        session.add(PipelineRun(
            id=run_id,
            status='RUNNING',
            triggered_by=triggered_by,
            previous_run_id=previous_run_id,
            total_steps=len(steps),
            completed_steps=0,
            failed_steps=0,
            skipped_steps=0,
            started_at=utcnow(),
        ))
        session.flush()
        for step in steps:
            session.add(PipelineStep(
                run_id=run_id,
                step_name=step.name,
                step_order=step.order,
                status=StepStatus.PENDING.value,
            ))
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def mark_step_running(run_id: str, step_name: str):
    session = get_session()
    try:
        session.execute(
            update(PipelineStep)
            .where(PipelineStep.run_id == run_id, PipelineStep.step_name == step_name,
                   PipelineStep.status == StepStatus.PENDING.value)
            .values(status=StepStatus.RUNNING.value, started_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        session.commit()
    except Exception:
        session.rollback()
        logger.error("Failed to mark step %s running for run %s", step_name, run_id, exc_info=True)
    finally:
        session.close()


def finish_step(run_id: str, step_name: str, status: StepStatus, result=None,
                error_sample: Optional[str] = None):
    """Move a RUNNING step to its terminal status with metrics or an error sample."""
    values = {'status': status.value, 'completed_at': utcnow(), 'error_sample': error_sample}
    if result is not None:
        values.update(
            records_processed=result.processed,
            records_created=result.created,
            records_updated=result.updated,
            records_failed=result.failed,
            step_metadata={**result.meta, 'status': result.status, 'duration_ms': result.duration_ms},
        )
    session = get_session()
    try:
        session.execute(
            update(PipelineStep)
            .where(PipelineStep.run_id == run_id, PipelineStep.step_name == step_name,
                   PipelineStep.status == StepStatus.RUNNING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        session.commit()
    except Exception:
        session.rollback()
        logger.error("Failed to finish step %s for run %s", step_name, run_id, exc_info=True)
    finally:
        session.close()


def skip_pending_steps(run_id: str, reason: str) -> int:
    """Mark every step that never started as SKIPPED. Returns how many were closed."""
    session = get_session()
    try:
        skipped = session.execute(
            update(PipelineStep)
            .where(PipelineStep.run_id == run_id, PipelineStep.status == StepStatus.PENDING.value)
            .values(status=StepStatus.SKIPPED.value, completed_at=utcnow(), error_sample=reason)
            .execution_options(synchronize_session=False)
        ).rowcount
        session.commit()
        return skipped
    except Exception:
        session.rollback()
        logger.error("Failed to skip pending steps for run %s", run_id, exc_info=True)
        return 0
    finally:
        session.close()


def update_run(run_id: str, **fields):
    """Update run counters / status fields. Failure is logged, never raised."""
    session = get_session()
    try:
        run = session.get(PipelineRun, run_id)
        if run is None:
            logger.warning("Run %s not found for update", run_id)
            return
        for key, value in fields.items():
            setattr(run, key, value)
        session.commit()
    except Exception:
        session.rollback()
        logger.error("Failed to update run %s", run_id, exc_info=True)
    finally:
        session.close()


def get_failed_step_names(run_id: str) -> List[str]:
    session = get_session()
    try:
        rows = (
            session.query(PipelineStep.step_name)
            .filter_by(run_id=run_id, status=StepStatus.FAIL.value)
            .order_by(PipelineStep.step_order)
            .all()
        )
        return [row[0] for row in rows]
    finally:
        session.close()


def get_run(run_id: str) -> Optional[RunRecord]:
    """Run + its steps, or None if missing or the lookup fails."""
    try:
        session = get_session()
        try:
            row = session.get(PipelineRun, run_id)
            if row is None:
                return None
            steps = (
                session.query(PipelineStep)
                .filter_by(run_id=run_id)
                .order_by(PipelineStep.step_order)
                .all()
            )
            return RunRecord.from_row(row, steps)
        finally:
            session.close()
    except Exception:
        logger.error("Failed to load run %s", run_id, exc_info=True)
        return None


def list_runs(limit: int = 20) -> List[RunRecord]:
    session = get_session()
    try:
        rows = (
            session.query(PipelineRun)
            .order_by(PipelineRun.started_at.desc())
            .limit(limit)
            .all()
        )
        return [RunRecord.from_row(row) for row in rows]
    finally:
        session.close()


# ── Scan cursor ──────────────────────────────────────────────────────────────

def load_cursor(name: str, dimensions: int) -> CursorState:
    """Load the cursor, creating it as pending at the origin if missing."""
    session = get_session()
    try:
        session.execute(
            _dialect_insert(session, ScanCursor)
            .values(name=name, indices=[0] * dimensions, batches_completed=0,
                    totals=dict(EMPTY_TOTALS), status='pending')
            .on_conflict_do_nothing(index_elements=['name'])
        )
        session.commit()
        row = session.get(ScanCursor, name)
        return CursorState.from_row(row, dimensions)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def claim_cursor(name: str, token: str, lock_seconds: int, dimensions: int) -> Optional[CursorState]:
    """
    Atomically take the cursor lock and move it to running.

    Returns the claimed state, or None if another invocation holds the lock
    (or finished the scan) between our read and this write.
    """
    session = get_session()
    try:
        now = utcnow()
        row = session.execute(
            update(ScanCursor)
            .where(
                ScanCursor.name == name,
                ScanCursor.status != 'done',
                or_(ScanCursor.locked_until.is_(None), ScanCursor.locked_until < now),
            )
            .values(
                lock_token=token,
                locked_until=now + timedelta(seconds=lock_seconds),
                status='running',
                started_at=func.coalesce(ScanCursor.started_at, now),
                updated_at=now,
            )
            .returning(*ScanCursor.__table__.c)
            .execution_options(synchronize_session=False)
        ).mappings().first()
        session.commit()
        if row is None or row['lock_token'] != token:
            return None
        return CursorState.from_row(dict(row), dimensions)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def save_cursor_progress(name: str, token: str, indices: List[int], batches_completed: int,
                         totals: Dict[str, int], status: str, last_error: Optional[str] = None,
                         completed: bool = False) -> bool:
    """
    Persist indices, totals and status and release the lock — one UPDATE.

    Only the token holder may write. Returns False if the token no longer
    matches (the lock expired and someone else claimed it).
    """
    session = get_session()
    try:
        now = utcnow()
        values = {
            'indices': list(indices),
            'batches_completed': batches_completed,
            'totals': dict(totals),
            'status': status,
            'lock_token': None,
            'locked_until': None,
            'last_error': last_error,
            'updated_at': now,
        }
        if completed:
            values['completed_at'] = now
        saved = session.execute(
            update(ScanCursor)
            .where(ScanCursor.name == name, ScanCursor.lock_token == token)
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        session.commit()
        if saved != 1:
            logger.warning("Cursor %s progress not saved — lock token no longer held", name)
        return saved == 1
    except Exception:
        session.rollback()
        logger.error("Failed to save cursor %s progress", name, exc_info=True)
        return False
    finally:
        session.close()


def release_cursor_lock(name: str, token: str) -> bool:
    """Drop the claim without touching progress. No-op if the token is gone; never raises."""
    session = get_session()
    try:
        released = session.execute(
            update(ScanCursor)
            .where(ScanCursor.name == name, ScanCursor.lock_token == token)
            .values(lock_token=None, locked_until=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        session.commit()
        return released == 1
    except Exception:
        session.rollback()
        logger.error("Failed to release cursor %s lock — it will expire on its own", name, exc_info=True)
        return False
    finally:
        session.close()


def stamp_cursor_done_log(name: str):
    session = get_session()
    try:
        session.execute(
            update(ScanCursor)
            .where(ScanCursor.name == name)
            .values(last_done_log_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        session.commit()
    except Exception:
        session.rollback()
        logger.error("Failed to stamp done log for cursor %s", name, exc_info=True)
    finally:
        session.close()


def reset_cursor(name: str, dimensions: int):
    """Rewind a cursor to the origin (pending, zero totals, unlocked)."""
    session = get_session()
    try:
        row = session.get(ScanCursor, name)
        if row is None:
            row = ScanCursor(name=name)
            session.add(row)
        row.indices = [0] * dimensions
        row.batches_completed = 0
        row.totals = dict(EMPTY_TOTALS)
        row.status = 'pending'
        row.lock_token = None
        row.locked_until = None
        row.started_at = None
        row.completed_at = None
        row.last_error = None
        row.updated_at = utcnow()
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def write_audit_log(cron_name: str, success: bool, result: Optional[Dict[str, Any]] = None,
                    error: Optional[str] = None):
    """Append a cron audit row. Failure is logged, never raised."""
    session = get_session()
    try:
        session.add(CronAuditLog(
            cron_name=cron_name,
            run_date=utcnow().date(),
            success=success,
            result=result,
            error=error,
        ))
        session.commit()
    except Exception:
        session.rollback()
        logger.error("Failed to write audit log for %s", cron_name, exc_info=True)
    finally:
        session.close()
