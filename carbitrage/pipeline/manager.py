"""
Pipeline Manager — single-flight run orchestration over the step registry.

  LOCK → PLAN → CREATE RUN → (RENEW LOCK → STEP n)* → FINAL STATUS → UNLOCK

Steps run strictly in ascending order. A step that raises is marked FAIL and
the run moves on to the next step; the final status is SUCCESS (no failures),
PARTIAL_FAIL (some of each) or FAIL (nothing succeeded). The lock is released
on every exit path; the Slack summary is best-effort.
"""
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from carbitrage.config import (
    ERROR_SAMPLE_LENGTH, PIPELINE_JOB_TIMEOUT, PIPELINE_LOCK_NAME, PIPELINE_LOCK_SECONDS,
)
from carbitrage.pipeline import steps as steps_mod
from carbitrage.pipeline.base import StepContext, StepDescriptor, StepResult
from carbitrage.pipeline.records import RunStatus, StepStatus
from carbitrage.services.db import (
    acquire_lock, create_run, extend_lock, finish_step, get_failed_step_names, get_run, list_runs,
    mark_step_running, release_lock, skip_pending_steps, update_run,
)
from carbitrage.services.notifications import notify_pipeline_summary

logger = logging.getLogger('pipeline.manager')


# ── Lazy RQ queue (avoids import-time Redis connection) ──────────────────────

_queue = None

def _get_queue():
    global _queue
    if _queue is None:
        from carbitrage.extensions import redis_client
        from rq import Queue
        _queue = Queue(connection=redis_client)
    return _queue


# ── Public API ────────────────────────────────────────────────────────────────

def launch_pipeline(triggered_by: str = 'manual', retry_failed_only: bool = False,
                    previous_run_id: Optional[str] = None, options: Optional[dict] = None) -> str:
    """
    Enqueue run_pipeline as a background RQ job and return the job id.

    The single-flight lock is taken by the worker, so two enqueued jobs
    still never overlap: the second one returns LOCKED.
    """
    job = _get_queue().enqueue(
        run_pipeline,
        triggered_by=triggered_by,
        retry_failed_only=retry_failed_only,
        previous_run_id=previous_run_id,
        options=options or {},
        job_timeout=PIPELINE_JOB_TIMEOUT,
    )
    logger.info("Pipeline enqueued as job %s (triggered_by=%s)", job.id, triggered_by)
    return job.id


def get_run_status(run_id: str) -> Optional[dict]:
    """Get a run and its steps."""
    run = get_run(run_id)
    if not run:
        return None
    return run.to_dict()


def list_recent_runs(limit: int = 20) -> List[dict]:
    return [run.to_dict() for run in list_runs(limit=limit)]


def build_step_plan(registry: List[StepDescriptor], retry_failed_only: bool = False,
                    previous_run_id: Optional[str] = None) -> List[StepDescriptor]:
    """
    Ordered steps for this run.

    Retry mode keeps only the steps that FAILed in the previous run. If that
    run has no failed steps (or none still registered) the full registry runs.
    """
    plan = sorted(registry, key=lambda s: s.order)
    if not (retry_failed_only and previous_run_id):
        return plan

    failed = set(get_failed_step_names(previous_run_id))
    retry_plan = [step for step in plan if step.name in failed]
    if not retry_plan:
        logger.info("Run %s has no failed steps — running full registry", previous_run_id)
        return plan
    return retry_plan


def final_status(completed: int, failed: int) -> RunStatus:
    if failed == 0:
        return RunStatus.SUCCESS
    if completed > 0:
        return RunStatus.PARTIAL_FAIL
    return RunStatus.FAIL


# ── Pipeline runner (called inline or enqueued via RQ) ───────────────────────

def run_pipeline(triggered_by: str = 'manual', retry_failed_only: bool = False,
                 previous_run_id: Optional[str] = None, options: Optional[dict] = None,
                 registry: Optional[List[StepDescriptor]] = None) -> Dict[str, Any]:
    """
    Execute the daily pipeline once.

    Returns {'status': 'LOCKED', 'code': 'PIPELINE_LOCKED'} without writing
    anything if another run holds the lock; otherwise the run summary.
    """
    start = time.monotonic()
    registry = registry if registry is not None else steps_mod.STEP_REGISTRY
    token = str(uuid.uuid4())

    if not acquire_lock(PIPELINE_LOCK_NAME, token, PIPELINE_LOCK_SECONDS):
        logger.info("Pipeline already running — lock %s held", PIPELINE_LOCK_NAME)
        return {'status': 'LOCKED', 'code': 'PIPELINE_LOCKED', 'run_id': None}

    run_id = str(uuid.uuid4())
    run_created = False
    completed = failed = skipped = 0
    errors: List[str] = []
    step_statuses: Dict[str, str] = {}
    plan: List[StepDescriptor] = []
    status = RunStatus.FAIL

    try:
        plan = build_step_plan(registry, retry_failed_only, previous_run_id)
        create_run(run_id, triggered_by, plan, previous_run_id if retry_failed_only else None)
        run_created = True
        logger.info("Starting run %s — %d steps (triggered_by=%s)", run_id, len(plan), triggered_by)

        ctx = StepContext(run_id=run_id, triggered_by=triggered_by, options=dict(options or {}))
        lock_lost = False
        for step in plan:
            if not extend_lock(PIPELINE_LOCK_NAME, token, PIPELINE_LOCK_SECONDS):
                logger.error("Run %s lost lock %s before step '%s' — stopping", run_id, PIPELINE_LOCK_NAME, step.name)
                lock_lost = True
                errors.append(f"orchestrator: lock lost before step '{step.name}'")
                skipped += skip_pending_steps(run_id, 'pipeline lock lost')
                update_run(run_id, completed_steps=completed, failed_steps=failed, skipped_steps=skipped)
                break

            step_status, error = _execute_step(step, ctx)
            step_statuses[step.name] = step_status.value
            if step_status == StepStatus.SUCCESS:
                completed += 1
            elif step_status == StepStatus.SKIPPED:
                skipped += 1
            else:
                failed += 1
                errors.append(f"{step.name}: {error}")
            update_run(run_id, completed_steps=completed, failed_steps=failed, skipped_steps=skipped)

        status = final_status(completed, failed + int(lock_lost))

    except Exception as e:
        if not run_created:
            logger.error("Could not create run state — aborting", exc_info=True)
            raise
        logger.error("Run %s aborted", run_id, exc_info=True)
        errors.append(f"orchestrator: {e}")
        status = RunStatus.FAIL

    finally:
        if run_created:
            update_run(
                run_id,
                status=status.value,
                completed_steps=completed,
                failed_steps=failed,
                skipped_steps=skipped,
                error_summary='; '.join(errors) or None,
                completed_at=_utcnow(),
            )
        release_lock(PIPELINE_LOCK_NAME, token)

    summary = {
        'run_id': run_id,
        'status': status.value,
        'total_steps': len(plan),
        'completed_steps': completed,
        'failed_steps': failed,
        'skipped_steps': skipped,
        'steps': step_statuses,
        'errors': errors,
        'duration_ms': int((time.monotonic() - start) * 1000),
    }
    notify_pipeline_summary(summary)
    logger.info("Run %s finished %s — %d/%d succeeded, %d failed, %d skipped",
                run_id, status.value, completed, len(plan), failed, skipped)
    return summary


def _execute_step(step: StepDescriptor, ctx: StepContext):
    """Run one step and record its outcome. Returns (StepStatus, error message or None)."""
    mark_step_running(ctx.run_id, step.name)
    logger.info("Step '%s' (order %d) started", step.name, step.order, extra={'run_id': ctx.run_id, 'step': step.name})
    started = time.monotonic()

    try:
        result = step.handler(ctx)
        if result is None:
            result = StepResult()
        if not isinstance(result, StepResult):
            raise TypeError(f"handler returned {type(result).__name__}, expected StepResult")
        if not result.duration_ms:
            result.duration_ms = int((time.monotonic() - started) * 1000)
        error_sample = '; '.join(map(str, result.errors))[:ERROR_SAMPLE_LENGTH] or None
    except Exception as e:
        message = str(e) or e.__class__.__name__
        logger.error("Step '%s' FAILED: %s", step.name, message, exc_info=True,
                     extra={'run_id': ctx.run_id, 'step': step.name})
        finish_step(ctx.run_id, step.name, StepStatus.FAIL, error_sample=message[:ERROR_SAMPLE_LENGTH])
        return StepStatus.FAIL, message

    ctx.results[step.name] = result
    if result.status == 'error':
        message = error_sample or 'step reported an error'
        finish_step(ctx.run_id, step.name, StepStatus.FAIL, result, error_sample=message[:ERROR_SAMPLE_LENGTH])
        return StepStatus.FAIL, message
    if result.status == 'skipped':
        finish_step(ctx.run_id, step.name, StepStatus.SKIPPED, result, error_sample=error_sample)
        logger.info("Step '%s' skipped", step.name)
        return StepStatus.SKIPPED, None

    finish_step(ctx.run_id, step.name, StepStatus.SUCCESS, result, error_sample=error_sample)
    logger.info("Step '%s' done — processed=%d created=%d updated=%d failed=%d",
                step.name, result.processed, result.created, result.updated, result.failed)
    return StepStatus.SUCCESS, None


def _utcnow():
    from carbitrage.database import utcnow
    return utcnow()
