"""Tests for carbitrage.pipeline.steps — registry and the three step handlers."""
import pytest
from unittest.mock import patch

from carbitrage.errors import StepFailure
from carbitrage.pipeline.base import StepContext, StepResult, describe_steps, find_step
from carbitrage.pipeline.steps import (
    STEP_REGISTRY,
    fingerprint_match_step,
    hunt_scan_step,
    retail_seed_scan_step,
)


def _ctx(**options):
    return StepContext(run_id='run-1', options=options)


class TestRegistry:

    def test_order(self):
        assert [s['name'] for s in describe_steps(STEP_REGISTRY)] == [
            'retail_seed_scan', 'fingerprint_match', 'hunt_scan',
        ]

    def test_orders_are_unique(self):
        orders = [s.order for s in STEP_REGISTRY]
        assert len(set(orders)) == len(orders)

    def test_find_step(self):
        assert find_step(STEP_REGISTRY, 'hunt_scan').order == 3
        assert find_step(STEP_REGISTRY, 'nope') is None


class TestRetailSeedScanStep:

    def test_success_passes_through(self):
        with patch('carbitrage.pipeline.steps.run_seed_scan', return_value=StepResult(processed=4)) as scan:
            result = retail_seed_scan_step(_ctx(dry_run=True))
        scan.assert_called_once_with(dry_run=True)
        assert result.processed == 4

    def test_locked_cursor_is_skipped(self):
        with patch('carbitrage.pipeline.steps.run_seed_scan', return_value=StepResult(status='LOCK_RACE')):
            result = retail_seed_scan_step(_ctx())
        assert result.status == 'skipped'
        assert result.meta['cursor_status'] == 'LOCK_RACE'

    def test_done_cursor_is_success(self):
        with patch('carbitrage.pipeline.steps.run_seed_scan', return_value=StepResult(status='done')):
            assert retail_seed_scan_step(_ctx()).status == 'done'

    def test_fatal_error_raises(self):
        failed = StepResult(status='error', errors=['RuntimeError: boom'])
        with patch('carbitrage.pipeline.steps.run_seed_scan', return_value=failed):
            with pytest.raises(StepFailure, match='RuntimeError: boom'):
                retail_seed_scan_step(_ctx())


class TestFingerprintMatchStep:

    def test_fans_out_over_accounts(self):
        with patch('carbitrage.pipeline.steps.list_fingerprint_accounts', return_value=['a1', 'a2']), \
             patch('carbitrage.pipeline.steps.run_fingerprint_match',
                   side_effect=[StepResult(processed=3, created=1), StepResult(processed=2, updated=2)]) as match:
            result = fingerprint_match_step(_ctx())

        assert match.call_count == 2
        assert result.processed == 5
        assert result.created == 1
        assert result.updated == 2
        assert result.status == 'success'
        assert result.meta['targets'] == 2

    def test_explicit_accounts_option(self):
        with patch('carbitrage.pipeline.steps.list_fingerprint_accounts') as listing, \
             patch('carbitrage.pipeline.steps.run_fingerprint_match', return_value=StepResult()) as match:
            fingerprint_match_step(_ctx(account_ids=['only'], batch_size=50))
        listing.assert_not_called()
        match.assert_called_once_with('only', batch_size=50, dry_run=False)

    def test_one_failing_account_is_partial(self):
        with patch('carbitrage.pipeline.steps.list_fingerprint_accounts', return_value=['a1', 'a2']), \
             patch('carbitrage.pipeline.steps.run_fingerprint_match',
                   side_effect=[RuntimeError('bad row'), StepResult(processed=1)]):
            result = fingerprint_match_step(_ctx())
        assert result.status == 'partial'
        assert result.errors == ['a1: bad row']

    def test_every_account_failing_raises(self):
        with patch('carbitrage.pipeline.steps.list_fingerprint_accounts', return_value=['a1']), \
             patch('carbitrage.pipeline.steps.run_fingerprint_match', side_effect=RuntimeError('db down')):
            with pytest.raises(StepFailure):
                fingerprint_match_step(_ctx())

    def test_no_accounts_is_empty_success(self):
        with patch('carbitrage.pipeline.steps.list_fingerprint_accounts', return_value=[]):
            result = fingerprint_match_step(_ctx())
        assert result.status == 'success'
        assert result.processed == 0


class TestHuntScanStep:

    def test_scans_every_active_hunt(self):
        with patch('carbitrage.pipeline.steps.list_active_hunt_ids', return_value=['h1', 'h2']), \
             patch('carbitrage.pipeline.steps.run_hunt_scan', return_value=StepResult(processed=2)) as scan:
            result = hunt_scan_step(_ctx(max_results=5))
        assert scan.call_count == 2
        scan.assert_any_call('h1', max_results=5, dry_run=False)
        assert result.processed == 4
