"""
Daily pipeline step registry.

  1. retail_seed_scan   — advance the resumable make × state ingest cursor
  2. fingerprint_match  — score fresh listings for every account with fingerprints
  3. hunt_scan          — web scan for every active sale hunt

Handlers take a StepContext and return a StepResult. A handler raises
StepFailure when its component failed outright; partial failures inside a
fan-out step are reported in the result instead.
"""
import logging

from carbitrage.config import MATCH_BATCH_SIZE, HUNT_MAX_RESULTS
from carbitrage.errors import StepFailure
from carbitrage.pipeline.base import StepContext, StepDescriptor, StepResult
from carbitrage.pipeline.cursor import run_seed_scan
from carbitrage.pipeline.hunt_scan import run_hunt_scan
from carbitrage.pipeline.scoring import run_fingerprint_match
from carbitrage.services.db import list_active_hunt_ids, list_fingerprint_accounts

logger = logging.getLogger('pipeline.steps')


def retail_seed_scan_step(ctx: StepContext) -> StepResult:
    result = run_seed_scan(dry_run=ctx.dry_run)
    if result.status == 'error':
        raise StepFailure('retail_seed_scan', result.errors[0] if result.errors else 'cursor scan failed')
    if result.status in ('LOCKED', 'LOCK_RACE'):
        # Another invocation is mid-scan; nothing for this run to do
        result.meta['cursor_status'] = result.status
        result.status = 'skipped'
    return result


def _fan_out(step_name, ids, run_one) -> StepResult:
    """Run one job per id, folding results; fail the step only if every job raised."""
    total = StepResult(meta={'targets': len(ids)})
    raised = 0
    for target_id in ids:
        try:
            total.merge(run_one(target_id))
        except Exception as e:
            raised += 1
            logger.error("%s failed for %s", step_name, target_id, exc_info=True)
            total.errors.append(f"{target_id}: {e}")
    if ids and raised == len(ids):
        raise StepFailure(step_name, '; '.join(total.errors[:3]))
    if total.errors:
        total.status = 'partial'
    return total


def fingerprint_match_step(ctx: StepContext) -> StepResult:
    accounts = ctx.options.get('account_ids') or list_fingerprint_accounts()
    batch_size = int(ctx.options.get('batch_size', MATCH_BATCH_SIZE))
    return _fan_out(
        'fingerprint_match', accounts,
        lambda account_id: run_fingerprint_match(account_id, batch_size=batch_size, dry_run=ctx.dry_run),
    )


def hunt_scan_step(ctx: StepContext) -> StepResult:
    hunt_ids = ctx.options.get('hunt_ids') or list_active_hunt_ids()
    max_results = int(ctx.options.get('max_results', HUNT_MAX_RESULTS))
    return _fan_out(
        'hunt_scan', hunt_ids,
        lambda hunt_id: run_hunt_scan(hunt_id, max_results=max_results, dry_run=ctx.dry_run),
    )


STEP_REGISTRY = [
    StepDescriptor('retail_seed_scan', 1, retail_seed_scan_step,
                   'Resumable make × state retail ingest (28s budget per invocation)'),
    StepDescriptor('fingerprint_match', 2, fingerprint_match_step,
                   'Score newest listings against each account\'s sales fingerprints'),
    StepDescriptor('hunt_scan', 3, hunt_scan_step,
                   'Web search + hard gates + BUY/WATCH alerts for active hunts'),
]
