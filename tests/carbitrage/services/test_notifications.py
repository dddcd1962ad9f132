"""Tests for carbitrage.services.notifications — Slack run summary."""
from unittest.mock import patch

import requests

from carbitrage.services.notifications import notify_pipeline_summary

SUMMARY = {
    'run_id': 'abcdef12-0000',
    'status': 'PARTIAL_FAIL',
    'total_steps': 3,
    'completed_steps': 2,
    'failed_steps': 1,
    'errors': ['hunt_scan: a', 'x: b', 'y: c', 'z: d'],
    'duration_ms': 4200,
}


class TestNotifyPipelineSummary:

    def test_no_webhook_sends_nothing(self):
        with patch('carbitrage.services.notifications.requests.post') as mock_post:
            assert notify_pipeline_summary(SUMMARY) is False
        mock_post.assert_not_called()

    @patch('carbitrage.services.notifications.requests.post')
    def test_message_content(self, mock_post):
        with patch('carbitrage.services.notifications.SLACK_WEBHOOK_URL', 'https://hooks.slack.test/x'):
            assert notify_pipeline_summary(SUMMARY) is True

        blocks = mock_post.call_args.kwargs['json']['blocks']
        assert blocks[0]['text']['text'] == ':warning: Daily Pipeline PARTIAL_FAIL'
        assert blocks[1]['fields'][0]['text'] == '*Steps:* 2/3 succeeded, 1 failed'
        errors = blocks[2]['text']['text']
        assert 'y: c' in errors
        assert 'z: d' not in errors
        assert mock_post.call_args.kwargs['timeout'] == 10

    @patch('carbitrage.services.notifications.requests.post')
    def test_failure_is_swallowed(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError('no route')
        with patch('carbitrage.services.notifications.SLACK_WEBHOOK_URL', 'https://hooks.slack.test/x'):
            assert notify_pipeline_summary(SUMMARY) is False
