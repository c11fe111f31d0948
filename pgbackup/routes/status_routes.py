"""
Status routes - scheduler state, last run and manual trigger.
"""

import logging
from flask import Blueprint, jsonify

from pgbackup.scheduler import get_scheduler_diagnostics, is_scheduler_running, trigger_backup_now


bp = Blueprint('status', __name__, url_prefix='/api')
logger = logging.getLogger(__name__)


@bp.route('/status', methods=['GET'])
def get_status():
    """
    Get scheduler diagnostics and the most recent run.

    Returns:
        JSON with scheduler state, scheduled jobs and last_run
    """
    return jsonify(get_scheduler_diagnostics())


@bp.route('/backup/run', methods=['POST'])
def run_backup_now():
    """
    Queue an immediate backup run.

    Returns:
        202 when queued, 503 if the scheduler is not running
    """
    if not is_scheduler_running():
        return jsonify({'error': 'Scheduler is not running'}), 503

    trigger_backup_now()
    return jsonify({'status': 'queued'}), 202
