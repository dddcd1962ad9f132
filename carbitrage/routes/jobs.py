"""
Job routes — health check plus direct "run once" triggers for each component.
"""
import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import text

from carbitrage.database import get_session
from carbitrage.errors import InputMissing, LockContention
from carbitrage.pipeline.cursor import run_seed_scan
from carbitrage.pipeline.hunt_scan import run_hunt_scan
from carbitrage.pipeline.scoring import run_fingerprint_match

bp = Blueprint('jobs', __name__)
logger = logging.getLogger('routes.jobs')


def _as_bool(value):
    if isinstance(value, str):
        return value.lower() in ('1', 'true', 'yes')
    return bool(value)


@bp.route('/health')
def health_check():
    """Health check endpoint — also verifies the database answers."""
    session = get_session()
    try:
        session.execute(text('SELECT 1'))
        return jsonify({"status": "healthy"}), 200
    except Exception as e:
        logger.error("Health check failed", exc_info=True)
        return jsonify({"status": "unhealthy", "error": str(e)}), 503
    finally:
        session.close()


@bp.route('/api/fingerprint-match', methods=['POST'])
def fingerprint_match():
    """Score an account's newest listings and upsert matched opportunities."""
    try:
        data = request.get_json(silent=True) or {}
        result = run_fingerprint_match(
            data.get('account_id'),
            batch_size=int(data.get('batch_size', 200)),
            dry_run=_as_bool(data.get('dry_run', False)),
        )
        return jsonify(result.to_dict()), 200
    except InputMissing as e:
        return jsonify({'error': str(e), 'field': e.field}), 400
    except Exception as e:
        logger.error("Fingerprint match failed", exc_info=True)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/hunts/<hunt_id>/scan', methods=['POST'])
def scan_hunt(hunt_id):
    """Web-scan one hunt for candidate listings."""
    try:
        data = request.get_json(silent=True) or {}
        result = run_hunt_scan(
            hunt_id,
            max_results=int(data.get('max_results', 10)),
            dry_run=_as_bool(data.get('dry_run', False)),
        )
        if result.status == 'skipped':
            return jsonify(result.to_dict()), 404
        return jsonify(result.to_dict()), 200
    except InputMissing as e:
        return jsonify({'error': str(e), 'field': e.field}), 400
    except Exception as e:
        logger.error("Hunt scan failed for %s", hunt_id, exc_info=True)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/seed-scan', methods=['POST'])
def seed_scan():
    """Advance the retail seed cursor by one time-boxed batch."""
    try:
        data = request.get_json(silent=True) or {}
        result = run_seed_scan(dry_run=_as_bool(data.get('dry_run', False)))
        if result.status in ('LOCKED', 'LOCK_RACE'):
            raise LockContention('seed cursor', code=result.status)
        status_code = 500 if result.status == 'error' else 200
        return jsonify(result.to_dict()), status_code
    except LockContention as e:
        return jsonify({'error': str(e), 'code': e.code}), 409
    except Exception as e:
        logger.error("Seed scan failed", exc_info=True)
        return jsonify({'error': str(e)}), 500
