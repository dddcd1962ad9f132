"""Tests for carbitrage.routes.jobs — health plus run-once triggers."""
from unittest.mock import patch, MagicMock

from carbitrage.pipeline.base import StepResult


class TestHealth:
    """GET /health verifies the database answers."""

    def test_returns_200(self, client):
        resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.get_json() == {'status': 'healthy'}

    def test_db_failure_returns_503(self, client):
        broken = MagicMock()
        broken.execute.side_effect = Exception('connection refused')
        with patch('carbitrage.routes.jobs.get_session', return_value=broken):
            resp = client.get('/health')
        assert resp.status_code == 503
        assert resp.get_json()['status'] == 'unhealthy'


class TestFingerprintMatchRoute:

    def test_missing_account_returns_400(self, client):
        resp = client.post('/api/fingerprint-match', json={})
        assert resp.status_code == 400
        assert resp.get_json()['field'] == 'account_id'

    def test_account_without_fingerprints(self, client):
        resp = client.post('/api/fingerprint-match', json={'account_id': 'acct-none'})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data['processed'] == 0
        assert data['meta']['message'] == 'No fingerprints for account'

    @patch('carbitrage.routes.jobs.run_fingerprint_match')
    def test_passes_options(self, mock_run, client):
        mock_run.return_value = StepResult(processed=3)
        resp = client.post('/api/fingerprint-match',
                           json={'account_id': 'acct-1', 'batch_size': 50, 'dry_run': 'true'})
        assert resp.status_code == 200
        mock_run.assert_called_once_with('acct-1', batch_size=50, dry_run=True)

    @patch('carbitrage.routes.jobs.run_fingerprint_match')
    def test_unexpected_error_returns_500(self, mock_run, client):
        mock_run.side_effect = RuntimeError('boom')
        resp = client.post('/api/fingerprint-match', json={'account_id': 'acct-1'})
        assert resp.status_code == 500
        assert resp.get_json()['error'] == 'boom'


class TestHuntScanRoute:

    def test_unknown_hunt_returns_404(self, client):
        resp = client.post('/api/hunts/missing/scan', json={})
        assert resp.status_code == 404
        assert resp.get_json()['meta']['reason'] == 'hunt not found'

    @patch('carbitrage.routes.jobs.run_hunt_scan')
    def test_scan_result_returned(self, mock_run, client):
        mock_run.return_value = StepResult(processed=4, created=2)
        resp = client.post('/api/hunts/hunt-1/scan', json={'max_results': 5})
        assert resp.status_code == 200
        assert resp.get_json()['created'] == 2
        mock_run.assert_called_once_with('hunt-1', max_results=5, dry_run=False)


class TestSeedScanRoute:

    @patch('carbitrage.routes.jobs.run_seed_scan')
    def test_locked_returns_409(self, mock_run, client):
        mock_run.return_value = StepResult(status='LOCKED')
        resp = client.post('/api/seed-scan')
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'LOCKED'

    @patch('carbitrage.routes.jobs.run_seed_scan')
    def test_lock_race_returns_409(self, mock_run, client):
        mock_run.return_value = StepResult(status='LOCK_RACE')
        resp = client.post('/api/seed-scan')
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'LOCK_RACE'

    @patch('carbitrage.routes.jobs.run_seed_scan')
    def test_error_returns_500(self, mock_run, client):
        mock_run.return_value = StepResult(status='error', errors=['ingest down'])
        resp = client.post('/api/seed-scan')
        assert resp.status_code == 500

    @patch('carbitrage.routes.jobs.run_seed_scan')
    def test_progress_returns_200(self, mock_run, client):
        mock_run.return_value = StepResult(status='ok', processed=6)
        resp = client.post('/api/seed-scan', json={'dry_run': True})
        assert resp.status_code == 200
        mock_run.assert_called_once_with(dry_run=True)
