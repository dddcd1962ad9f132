"""Tests for carbitrage.pipeline.manager — single-flight runs, step bookkeeping, retry."""
from datetime import timedelta

import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import update

from carbitrage.config import PIPELINE_LOCK_SECONDS
from carbitrage.database import utcnow
from carbitrage.models.pipeline_run import PipelineLock, PipelineRun, PipelineStep
from carbitrage.pipeline.base import StepDescriptor, StepResult
from carbitrage.pipeline.manager import (
    build_step_plan,
    final_status,
    get_run_status,
    launch_pipeline,
    list_recent_runs,
    run_pipeline,
)
from carbitrage.pipeline.records import RunStatus


# ── Helpers ──────────────────────────────────────────────────────────────────

class _Registry:
    """Builds a registry whose handlers record the order they ran in."""

    def __init__(self):
        self.calls = []

    def ok(self, name, order, **counters):
        def _handler(ctx):
            self.calls.append(name)
            return StepResult(**counters)
        return StepDescriptor(name, order, _handler)

    def boom(self, name, order, message='upstream timeout'):
        def _handler(ctx):
            self.calls.append(name)
            raise RuntimeError(message)
        return StepDescriptor(name, order, _handler)

    def skip(self, name, order):
        def _handler(ctx):
            self.calls.append(name)
            return StepResult(status='skipped')
        return StepDescriptor(name, order, _handler)


class _Clock:
    """Stand-in for utcnow() that only moves when told to."""

    def __init__(self):
        self.now = utcnow()

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)

    def __call__(self):
        return self.now


def _steps(db_session, run_id):
    db_session.expire_all()
    return {
        s.step_name: s for s in db_session.query(PipelineStep).filter_by(run_id=run_id).all()
    }


def _lock(db_session):
    db_session.expire_all()
    return db_session.get(PipelineLock, 'daily_pipeline')


# ── final_status ─────────────────────────────────────────────────────────────

class TestFinalStatus:

    def test_no_failures_is_success(self):
        assert final_status(3, 0) == RunStatus.SUCCESS

    def test_mixed_is_partial(self):
        assert final_status(2, 1) == RunStatus.PARTIAL_FAIL

    def test_no_successes_is_fail(self):
        assert final_status(0, 2) == RunStatus.FAIL

    def test_empty_run_is_success(self):
        assert final_status(0, 0) == RunStatus.SUCCESS


# ── run_pipeline ─────────────────────────────────────────────────────────────

class TestRunPipeline:

    def test_middle_step_failure_is_partial_fail(self, db_session):
        reg = _Registry()
        registry = [reg.ok('a', 1, processed=4, created=2), reg.boom('b', 2), reg.ok('c', 3)]

        result = run_pipeline(registry=registry)

        assert result['status'] == 'PARTIAL_FAIL'
        assert result['completed_steps'] == 2
        assert result['failed_steps'] == 1
        assert result['errors'] == ['b: upstream timeout']
        assert reg.calls == ['a', 'b', 'c']

        db_session.expire_all()
        run = db_session.get(PipelineRun, result['run_id'])
        assert run.status == 'PARTIAL_FAIL'
        assert run.total_steps == 3
        assert run.error_summary == 'b: upstream timeout'
        assert run.completed_at is not None

        steps = _steps(db_session, result['run_id'])
        assert steps['a'].status == 'SUCCESS'
        assert steps['a'].records_processed == 4
        assert steps['a'].records_created == 2
        assert steps['b'].status == 'FAIL'
        assert steps['b'].error_sample == 'upstream timeout'
        assert steps['c'].status == 'SUCCESS'

    def test_runs_in_ascending_order(self, db_session):
        reg = _Registry()
        run_pipeline(registry=[reg.ok('third', 3), reg.ok('first', 1), reg.ok('second', 2)])
        assert reg.calls == ['first', 'second', 'third']

    def test_all_success(self, db_session):
        reg = _Registry()
        result = run_pipeline(registry=[reg.ok('a', 1), reg.ok('b', 2)])
        assert result['status'] == 'SUCCESS'
        assert result['errors'] == []
        assert _lock(db_session).locked_until is None

    def test_all_failed_is_fail(self, db_session):
        reg = _Registry()
        result = run_pipeline(registry=[reg.boom('a', 1), reg.boom('b', 2)])
        assert result['status'] == 'FAIL'
        assert result['failed_steps'] == 2

    def test_skipped_step_counts_separately(self, db_session):
        reg = _Registry()
        result = run_pipeline(registry=[reg.skip('a', 1), reg.ok('b', 2)])
        assert result['status'] == 'SUCCESS'
        assert result['skipped_steps'] == 1
        assert result['completed_steps'] == 1
        assert _steps(db_session, result['run_id'])['a'].status == 'SKIPPED'

    def test_error_sample_is_truncated(self, db_session):
        reg = _Registry()
        result = run_pipeline(registry=[reg.boom('a', 1, message='x' * 5000)])
        assert len(_steps(db_session, result['run_id'])['a'].error_sample) == 1000

    def test_second_run_while_locked_returns_locked(self, db_session):
        db_session.add(PipelineLock(name='daily_pipeline', token='other-run',
                                    locked_until=utcnow() + timedelta(minutes=30)))
        db_session.commit()
        reg = _Registry()

        result = run_pipeline(registry=[reg.ok('a', 1)])

        assert result == {'status': 'LOCKED', 'code': 'PIPELINE_LOCKED', 'run_id': None}
        assert reg.calls == []
        assert db_session.query(PipelineRun).count() == 0
        assert _lock(db_session).token == 'other-run'

    def test_expired_lock_is_reclaimed(self, db_session, expired):
        db_session.add(PipelineLock(name='daily_pipeline', token='crashed-run', locked_until=expired))
        db_session.commit()
        reg = _Registry()

        result = run_pipeline(registry=[reg.ok('a', 1)])

        assert result['status'] == 'SUCCESS'
        assert _lock(db_session).token is None

    def test_lock_released_when_run_state_cannot_be_created(self, db_session):
        reg = _Registry()
        with patch('carbitrage.pipeline.manager.create_run', side_effect=RuntimeError('db down')):
            with pytest.raises(RuntimeError):
                run_pipeline(registry=[reg.ok('a', 1)])
        assert reg.calls == []
        assert _lock(db_session).locked_until is None

    def test_summary_is_sent(self, db_session):
        reg = _Registry()
        with patch('carbitrage.pipeline.manager.notify_pipeline_summary') as notify:
            result = run_pipeline(registry=[reg.ok('a', 1), reg.boom('b', 2)])
        notify.assert_called_once_with(result)
        assert result['total_steps'] == 2

    def test_long_step_renews_lock(self, db_session):
        clock = _Clock()
        nested = {}

        def _slow(ctx):
            clock.advance(PIPELINE_LOCK_SECONDS + 60)
            return StepResult()

        def _second_trigger(ctx):
            nested['result'] = run_pipeline(registry=[StepDescriptor('x', 1, lambda c: StepResult())])
            return StepResult()

        with patch('carbitrage.services.db.utcnow', clock):
            result = run_pipeline(registry=[StepDescriptor('slow', 1, _slow),
                                            StepDescriptor('check', 2, _second_trigger)])

        assert nested['result']['status'] == 'LOCKED'
        assert result['status'] == 'SUCCESS'
        assert db_session.query(PipelineRun).count() == 1

    def test_run_stops_when_lock_taken_over(self, db_session):
        reg = _Registry()

        def _lose_lock(ctx):
            db_session.execute(update(PipelineLock).values(token='other-run'))
            db_session.commit()
            return StepResult()

        result = run_pipeline(registry=[StepDescriptor('a', 1, _lose_lock), reg.ok('b', 2), reg.ok('c', 3)])

        assert reg.calls == []
        assert result['status'] == 'PARTIAL_FAIL'
        assert result['completed_steps'] == 1
        assert result['skipped_steps'] == 2
        assert "lock lost before step 'b'" in result['errors'][0]
        steps = _steps(db_session, result['run_id'])
        assert steps['b'].status == 'SKIPPED'
        assert steps['c'].status == 'SKIPPED'
        # The other holder keeps its lock
        assert _lock(db_session).token == 'other-run'

    def test_handler_returning_wrong_type_fails_only_that_step(self, db_session):
        reg = _Registry()
        result = run_pipeline(registry=[StepDescriptor('a', 1, lambda ctx: {}), reg.ok('b', 2)])

        assert reg.calls == ['b']
        assert result['status'] == 'PARTIAL_FAIL'
        assert result['failed_steps'] == 1
        steps = _steps(db_session, result['run_id'])
        assert steps['a'].status == 'FAIL'
        assert 'dict' in steps['a'].error_sample
        assert steps['b'].status == 'SUCCESS'

    def test_options_reach_handlers(self, db_session):
        seen = {}

        def _handler(ctx):
            seen['dry_run'] = ctx.dry_run
            seen['triggered_by'] = ctx.triggered_by
            return StepResult()

        run_pipeline(triggered_by='cron', options={'dry_run': True},
                     registry=[StepDescriptor('a', 1, _handler)])
        assert seen == {'dry_run': True, 'triggered_by': 'cron'}


# ── Retry ────────────────────────────────────────────────────────────────────

class TestRetryFailedOnly:

    def test_retry_runs_only_failed_steps(self, db_session):
        reg = _Registry()
        first = run_pipeline(registry=[reg.ok('a', 1), reg.boom('b', 2), reg.ok('c', 3)])

        retry_reg = _Registry()
        retry = run_pipeline(
            triggered_by='retry', retry_failed_only=True, previous_run_id=first['run_id'],
            registry=[retry_reg.ok('a', 1), retry_reg.ok('b', 2), retry_reg.ok('c', 3)],
        )

        assert retry_reg.calls == ['b']
        assert retry['status'] == 'SUCCESS'
        assert retry['total_steps'] == 1
        db_session.expire_all()
        assert db_session.get(PipelineRun, retry['run_id']).previous_run_id == first['run_id']

    def test_retry_without_failures_runs_everything(self, db_session):
        reg = _Registry()
        first = run_pipeline(registry=[reg.ok('a', 1), reg.ok('b', 2)])

        retry_reg = _Registry()
        run_pipeline(retry_failed_only=True, previous_run_id=first['run_id'],
                     registry=[retry_reg.ok('a', 1), retry_reg.ok('b', 2)])
        assert retry_reg.calls == ['a', 'b']

    def test_plan_without_retry_is_sorted_registry(self, db_session):
        reg = _Registry()
        plan = build_step_plan([reg.ok('b', 2), reg.ok('a', 1)])
        assert [s.name for s in plan] == ['a', 'b']


# ── Status + launch ──────────────────────────────────────────────────────────

class TestRunStatus:

    def test_get_run_status_includes_steps(self, db_session):
        reg = _Registry()
        result = run_pipeline(registry=[reg.ok('a', 1), reg.boom('b', 2)])

        status = get_run_status(result['run_id'])
        assert status['status'] == 'PARTIAL_FAIL'
        assert [s['name'] for s in status['steps']] == ['a', 'b']
        assert status['steps'][1]['status'] == 'FAIL'

    def test_get_run_status_unknown(self, db_session):
        assert get_run_status('missing') is None

    def test_list_recent_runs(self, db_session):
        reg = _Registry()
        run_pipeline(registry=[reg.ok('a', 1)])
        run_pipeline(registry=[reg.ok('a', 1)])
        runs = list_recent_runs(limit=5)
        assert len(runs) == 2
        assert all(r['status'] == 'SUCCESS' for r in runs)


class TestLaunchPipeline:

    def test_enqueues_with_four_hour_timeout(self):
        queue = MagicMock()
        queue.enqueue.return_value = MagicMock(id='job-123')
        with patch('carbitrage.pipeline.manager._get_queue', return_value=queue):
            job_id = launch_pipeline(triggered_by='cron')

        assert job_id == 'job-123'
        args, kwargs = queue.enqueue.call_args
        assert args[0] is run_pipeline
        assert kwargs['job_timeout'] == 14400
        assert kwargs['triggered_by'] == 'cron'
