"""
Pipeline routes — trigger, inspect and retry daily pipeline runs.
"""
import logging

from flask import Blueprint, jsonify, request

from carbitrage.pipeline import steps as steps_mod
from carbitrage.pipeline.base import describe_steps
from carbitrage.pipeline.manager import (
    get_run_status, launch_pipeline, list_recent_runs, run_pipeline,
)

bp = Blueprint('pipeline', __name__)
logger = logging.getLogger('routes.pipeline')


def _start(triggered_by, retry_failed_only, previous_run_id, options, background):
    if background:
        job_id = launch_pipeline(
            triggered_by=triggered_by,
            retry_failed_only=retry_failed_only,
            previous_run_id=previous_run_id,
            options=options,
        )
        return jsonify({'status': 'QUEUED', 'job_id': job_id}), 202

    result = run_pipeline(
        triggered_by=triggered_by,
        retry_failed_only=retry_failed_only,
        previous_run_id=previous_run_id,
        options=options,
    )
    if result.get('status') == 'LOCKED':
        return jsonify(result), 409
    return jsonify(result), 200


@bp.route('/api/pipeline/runs', methods=['POST'])
def create_run():
    """Run the pipeline inline, or enqueue it with background=true."""
    try:
        data = request.get_json(silent=True) or {}
        retry_failed_only = bool(data.get('retry_failed_only', False))
        previous_run_id = data.get('previous_run_id')
        if retry_failed_only and not previous_run_id:
            return jsonify({'error': 'previous_run_id is required when retry_failed_only is set'}), 400

        return _start(
            triggered_by=data.get('triggered_by', 'manual'),
            retry_failed_only=retry_failed_only,
            previous_run_id=previous_run_id,
            options=data.get('options') or {},
            background=bool(data.get('background', False)),
        )
    except Exception as e:
        logger.error("Pipeline trigger failed", exc_info=True)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/pipeline/runs')
def list_runs():
    """List recent pipeline runs."""
    limit = request.args.get('limit', 20, type=int)
    return jsonify(list_recent_runs(limit=limit))


@bp.route('/api/pipeline/runs/<run_id>')
def get_run(run_id):
    """Get a single run with its steps."""
    status = get_run_status(run_id)
    if not status:
        return jsonify({'error': 'Run not found'}), 404
    return jsonify(status)


@bp.route('/api/pipeline/runs/<run_id>/retry', methods=['POST'])
def retry_run(run_id):
    """Re-run only the steps that failed in run_id."""
    try:
        if not get_run_status(run_id):
            return jsonify({'error': 'Run not found'}), 404

        data = request.get_json(silent=True) or {}
        return _start(
            triggered_by=data.get('triggered_by', 'retry'),
            retry_failed_only=True,
            previous_run_id=run_id,
            options=data.get('options') or {},
            background=bool(data.get('background', False)),
        )
    except Exception as e:
        logger.error("Pipeline retry failed for run %s", run_id, exc_info=True)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/pipeline/steps')
def list_steps():
    """Registered steps in execution order."""
    return jsonify(describe_steps(steps_mod.STEP_REGISTRY))
