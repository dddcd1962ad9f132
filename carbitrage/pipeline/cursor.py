"""
Resumable scan cursor — walks a cartesian product of scan dimensions
(make × state by default) a few units per invocation.

Each invocation:
  1. loads the cursor (done → no-op, locked → LOCKED)
  2. claims the lock with one conditional UPDATE (lost → LOCK_RACE)
  3. processes one unit per index combination until the wall-clock budget
     runs out or the combinations are exhausted, advancing the indices
     odometer-style (innermost dimension first, carrying outward)
  4. flushes indices, totals and status and releases the lock in one UPDATE

Progress lives in a ScanContext that the loop threads through and a
`finally` block flushes, so a crash mid-scan leaves the indices at the last
unit that was advanced past and the next invocation resumes from there.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from carbitrage.config import (
    SEED_CURSOR_NAME, SEED_DONE_LOG_HOURS, SEED_LOCK_SECONDS, SEED_MAKES, SEED_STATES,
    SEED_TIME_BUDGET_SECONDS,
)
from carbitrage.database import utcnow
from carbitrage.errors import TransientError
from carbitrage.pipeline.base import StepResult
from carbitrage.pipeline.records import CursorState, CursorStatus
from carbitrage.services.db import (
    claim_cursor, load_cursor, release_cursor_lock, save_cursor_progress, stamp_cursor_done_log,
    write_audit_log,
)
from carbitrage.services.ingest import ingest_unit

logger = logging.getLogger('pipeline.cursor')

# One positional argument per dimension value, returns ingest counters
UnitSupplier = Callable[..., Dict[str, int]]

DEFAULT_DIMENSIONS = (SEED_MAKES, SEED_STATES)

PROGRESS_NOT_SAVED = "cursor progress not persisted (lock lost or store failure)"


def advance_indices(indices: Sequence[int], sizes: Sequence[int]) -> List[int]:
    """
    Odometer increment: bump the innermost index, carrying into outer ones.

    The outermost index is allowed to reach sizes[0], which means every
    combination has been visited.
    """
    advanced = list(indices)
    for pos in range(len(sizes) - 1, -1, -1):
        advanced[pos] += 1
        if pos == 0 or advanced[pos] < sizes[pos]:
            break
        advanced[pos] = 0
    return advanced


@dataclass
class ScanContext:
    """Mutable progress of one invocation, flushed exactly once."""
    name: str
    token: str
    dimensions: Sequence[Sequence[Any]]
    indices: List[int]
    batches_completed: int
    totals: Dict[str, int]
    run_totals: Dict[str, int] = field(default_factory=lambda: {'new': 0, 'updated': 0, 'evaluations': 0, 'errors': 0})
    units: int = 0
    fatal_error: Optional[str] = None
    flushed: bool = False

    @property
    def sizes(self) -> List[int]:
        return [len(d) for d in self.dimensions]

    @property
    def exhausted(self) -> bool:
        return self.indices[0] >= len(self.dimensions[0])

    def current_unit(self) -> Optional[List[Any]]:
        if self.exhausted:
            return None
        return [dim[i] for dim, i in zip(self.dimensions, self.indices)]

    def record(self, counters: Dict[str, int]):
        for key in self.run_totals:
            self.run_totals[key] += int(counters.get(key, 0) or 0)
        self.batches_completed += 1

    def record_error(self):
        self.run_totals['errors'] += 1

    def advance(self):
        self.indices = advance_indices(self.indices, self.sizes)
        self.units += 1

    def combined_totals(self) -> Dict[str, int]:
        return {key: self.totals.get(key, 0) + self.run_totals[key] for key in self.run_totals}

    def flush(self) -> bool:
        if self.flushed:
            return True
        self.flushed = True
        status = CursorStatus.DONE if self.exhausted else CursorStatus.RUNNING
        return save_cursor_progress(
            self.name, self.token,
            indices=self.indices,
            batches_completed=self.batches_completed,
            totals=self.combined_totals(),
            status=status.value,
            last_error=self.fatal_error,
            completed=self.exhausted,
        )


def _position(indices: Sequence[int], dimensions) -> Dict[str, Any]:
    if indices[0] >= len(dimensions[0]):
        unit = None
    else:
        unit = [dim[i] for dim, i in zip(dimensions, indices)]
    return {'indices': list(indices), 'unit': unit}


def _maybe_log_done(state: CursorState, result: StepResult):
    """While done, leave one audit row per day so the no-op is visible."""
    now = utcnow()
    if state.last_done_log_at and now - state.last_done_log_at < timedelta(hours=SEED_DONE_LOG_HOURS):
        return
    write_audit_log(state.name, True, {**result.to_dict(), 'message': 'cursor done, nothing to scan'})
    stamp_cursor_done_log(state.name)


def run_seed_scan(cursor_name: str = SEED_CURSOR_NAME,
                  dimensions: Optional[Sequence[Sequence[Any]]] = None,
                  time_budget_seconds: float = SEED_TIME_BUDGET_SECONDS,
                  lock_seconds: int = SEED_LOCK_SECONDS,
                  dry_run: bool = False,
                  supplier: Optional[UnitSupplier] = None,
                  clock: Callable[[], float] = time.monotonic) -> StepResult:
    """
    Advance the cursor by as many units as fit in the time budget.

    Returns a StepResult whose status is one of: done (cursor already
    finished, no-op), LOCKED, LOCK_RACE, success or error (fatal exception;
    progress up to the failing unit is kept).
    """
    start = clock()
    dimensions = [list(d) for d in (dimensions or DEFAULT_DIMENSIONS)]
    supplier = supplier or ingest_unit

    state = load_cursor(cursor_name, len(dimensions))
    before = _position(state.indices, dimensions)

    if state.status == CursorStatus.DONE:
        result = StepResult(status='done', meta={'cursor_before': before, 'cursor_after': before})
        _maybe_log_done(state, result)
        return result

    if state.is_locked(utcnow()):
        logger.info("Cursor %s locked until %s — not running", cursor_name, state.locked_until)
        return StepResult(status='LOCKED', meta={
            'cursor_before': before,
            'locked_until': state.locked_until.isoformat(),
        })

    if dry_run:
        return StepResult(meta={'cursor_before': before, 'cursor_after': before, 'dry_run': True})

    token = str(uuid.uuid4())
    claimed = claim_cursor(cursor_name, token, lock_seconds, len(dimensions))
    if claimed is None:
        logger.info("Cursor %s claimed by another invocation — LOCK_RACE", cursor_name)
        return StepResult(status='LOCK_RACE', meta={'cursor_before': before})

    ctx = ScanContext(
        name=cursor_name,
        token=token,
        dimensions=dimensions,
        indices=list(claimed.indices),
        batches_completed=claimed.batches_completed,
        totals=dict(claimed.totals),
    )
    before = _position(ctx.indices, dimensions)

    try:
        while not ctx.exhausted and clock() - start < time_budget_seconds:
            unit = ctx.current_unit()
            try:
                ctx.record(supplier(*unit))
            except TransientError as e:
                logger.warning("Unit %s failed: %s", '/'.join(map(str, unit)), e)
                ctx.record_error()
            ctx.advance()
    except Exception as e:
        ctx.fatal_error = f"{e.__class__.__name__}: {e}"[:1000]
        logger.error("Cursor %s stopped at %s", cursor_name, ctx.indices, exc_info=True)
    finally:
        saved = ctx.flush()

    errors = [ctx.fatal_error] if ctx.fatal_error else []
    after = _position(ctx.indices, dimensions)
    meta = {
        'cursor_before': before,
        'cursor_after': after,
        'evaluations': ctx.run_totals['evaluations'],
        'batches_completed': ctx.batches_completed,
        'completed': ctx.exhausted,
    }
    if not saved:
        logger.error("Cursor %s progress not persisted; next run resumes from %s", cursor_name, before['indices'])
        release_cursor_lock(cursor_name, token)
        errors.append(PROGRESS_NOT_SAVED)
        meta.update(cursor_after=before, unsaved_cursor=after, completed=False)

    result = StepResult(
        status='error' if errors else 'success',
        processed=ctx.units,
        created=ctx.run_totals['new'],
        updated=ctx.run_totals['updated'],
        failed=ctx.run_totals['errors'],
        errors=errors,
        meta=meta,
        duration_ms=int((clock() - start) * 1000),
    )
    write_audit_log(cursor_name, not errors, result.to_dict(), '; '.join(errors) or None)
    logger.info(
        "Cursor %s — units=%d new=%d updated=%d errors=%d at %s%s",
        cursor_name, ctx.units, result.created, result.updated, result.failed,
        ctx.indices, ' (done)' if ctx.exhausted else '',
    )
    return result
