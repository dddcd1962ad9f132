"""
Notifications — Slack webhook integration for pipeline events.

Notification failure never blocks the pipeline.
"""
import logging
import requests

from carbitrage.config import SLACK_WEBHOOK_URL

logger = logging.getLogger('services.notifications')

_STATUS_EMOJI = {
    'SUCCESS': ':white_check_mark:',
    'PARTIAL_FAIL': ':warning:',
    'FAIL': ':x:',
}


def notify_pipeline_summary(summary):
    """Post the end-of-run summary to Slack. Returns True if a message was sent."""
    if not SLACK_WEBHOOK_URL:
        return False

    run_id = summary.get('run_id') or 'unknown'
    try:
        status = summary.get('status', 'FAIL')
        total = summary.get('total_steps', 0)
        completed = summary.get('completed_steps', 0)
        failed = summary.get('failed_steps', 0)

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{_STATUS_EMOJI.get(status, ':grey_question:')} Daily Pipeline {status}",
                    "emoji": True,
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Steps:* {completed}/{total} succeeded, {failed} failed"},
                    {"type": "mrkdwn", "text": f"*Run:* `{run_id}`"},
                ]
            },
        ]

        errors = summary.get('errors') or []
        if errors:
            lines = '\n'.join(f"• {e[:200]}" for e in errors[:3])
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Errors:*\n{lines}"}
            })

        if summary.get('duration_ms'):
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"Duration: {summary['duration_ms'] / 1000:.1f}s"}]
            })

        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Run %s summary notification sent", run_id[:8])
        return True

    except Exception:
        logger.error("Failed to send summary notification for run %s", run_id[:8], exc_info=True)
        return False
