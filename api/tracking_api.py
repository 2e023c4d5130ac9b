"""
Operation Tracking API
======================

REST endpoints over the tracking service. Collections are ``downloads``,
``tasks`` and ``quarters``.

Endpoints:
- GET    /api/tracking/health                      - Tracking service status
- GET    /api/tracking/<collection>                - List tracked operations
- GET    /api/tracking/<collection>/<key>          - Get one operation
- DELETE /api/tracking/<collection>/<key>          - Stop tracking (?dismiss=true also removes)
- POST   /api/tracking/downloads                   - Start an episode download and track it
- POST   /api/tracking/tasks/scan                  - Trigger a torrent scan and track its task
- POST   /api/tracking/tasks                       - Track an existing backend task id
- POST   /api/tracking/quarters                    - Queue a quarter update and track it
- POST   /api/tracking/quarters/<q>/<year>/watch   - Resume tracking a quarter update already queued
- POST   /api/tracking/scheduled-jobs/<id>/run     - Run a scheduled job, then refresh tasks
- GET    /api/tracking/tasks-monitor               - Background tasks table state
- POST   /api/tracking/tasks-monitor/refresh       - Refresh the background tasks table now
- GET    /api/tracking/quarter-tasks               - Active quarter update tasks by quarter
"""

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from services.operation_tracking.tracking_service import OperationTrackingError, UnknownCollectionError
from services.pipeline_client import PipelineError
from services.service_manager import get_tracking_service

logger = logging.getLogger("API.Tracking")

tracking_api_bp = Blueprint('tracking_api', __name__)


def _error(message, status_code):
    return jsonify({'success': False, 'error': message}), status_code


def _handle_failure(action, exc):
    """Map service exceptions to JSON error responses."""
    if isinstance(exc, UnknownCollectionError):
        return _error(str(exc), 404)
    if isinstance(exc, ValueError):
        return _error(str(exc), 400)
    if isinstance(exc, PipelineError):
        logger.warning("Backend rejected %s: %s", action, exc)
        return _error(f"Pipeline backend error: {exc}", 502)
    if isinstance(exc, OperationTrackingError):
        return _error(str(exc), 503)
    logger.error("Error during %s: %s", action, exc, exc_info=True)
    return _error(str(exc), 500)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ('1', 'true', 'yes', 'on')


# ============================================================================
# STATUS
# ============================================================================

@tracking_api_bp.route('/health', methods=['GET'])
def tracking_health():
    try:
        summary = get_tracking_service().summary()
        return jsonify({
            'success': True,
            'status': 'operational' if summary.get('running') else 'stopped',
            'tracking': summary,
            'generated_at': datetime.utcnow().isoformat()
        })
    except Exception as e:
        return _handle_failure('health check', e)


# ============================================================================
# TRACKED OPERATIONS
# ============================================================================

@tracking_api_bp.route('/<collection>', methods=['GET'])
def list_operations(collection):
    try:
        operations = get_tracking_service().list_operations(collection)
        active_only = _flag(request.args.get('active'))
        if active_only:
            operations = [op for op in operations if op.get('active')]
        return jsonify({
            'success': True,
            'collection': collection,
            'operations': operations,
            'count': len(operations)
        })
    except Exception as e:
        return _handle_failure(f"listing {collection}", e)


@tracking_api_bp.route('/<collection>/<path:key>', methods=['GET'])
def get_operation(collection, key):
    try:
        operation = get_tracking_service().get(collection, key)
        if operation is None:
            return _error(f"Operation {key} is not tracked", 404)
        return jsonify({'success': True, 'operation': operation})
    except Exception as e:
        return _handle_failure(f"reading {collection}/{key}", e)


@tracking_api_bp.route('/<collection>/<path:key>', methods=['DELETE'])
def stop_operation(collection, key):
    """Stop polling an operation. ``?dismiss=true`` also forgets it."""
    try:
        service = get_tracking_service()
        if _flag(request.args.get('dismiss')):
            removed = service.dismiss(collection, key)
            return jsonify({'success': True, 'key': key, 'dismissed': removed})

        stopped = service.stop(collection, key)
        return jsonify({
            'success': True,
            'key': key,
            'stopped': stopped,
            'operation': service.get(collection, key)
        })
    except Exception as e:
        return _handle_failure(f"stopping {collection}/{key}", e)


# ============================================================================
# TRIGGERS
# ============================================================================

@tracking_api_bp.route('/downloads', methods=['POST'])
def start_download():
    """
    Ask the backend to download an episode torrent, then track it.

    Request JSON:
    {
        "anime_id": 42,
        "torrent_id": "abc",
        "torrent_link": "magnet:?xt=...",
        "torrent_title": "[Group] Show - 07"    # Optional
    }
    """
    try:
        data = _json_body()
        if not data:
            return _error('No JSON data provided', 400)

        missing = [name for name in ('anime_id', 'torrent_id', 'torrent_link') if not data.get(name)]
        if missing:
            return _error(f"{', '.join(missing)} required", 400)

        result = get_tracking_service().begin_download(
            data['anime_id'],
            data['torrent_id'],
            data['torrent_link'],
            data.get('torrent_title')
        )
        return jsonify({'success': True, **result}), 202
    except Exception as e:
        return _handle_failure('download request', e)


@tracking_api_bp.route('/tasks/scan', methods=['POST'])
def scan_torrents():
    """Trigger a torrent scan for ``anime_id`` and track the queued task."""
    try:
        data = _json_body()
        if not data or not data.get('anime_id'):
            return _error('anime_id is required', 400)

        result = get_tracking_service().scan_torrents(
            data['anime_id'],
            wipe_previous=_flag(data.get('wipe_previous'))
        )
        return jsonify({'success': True, **result}), 202
    except Exception as e:
        return _handle_failure('torrent scan', e)


@tracking_api_bp.route('/tasks', methods=['POST'])
def track_task():
    """Track a backend task that was queued elsewhere."""
    try:
        data = _json_body()
        if not data or data.get('task_id') in (None, ''):
            return _error('task_id is required', 400)

        operation = get_tracking_service().track_task(data['task_id'], key=data.get('key'))
        return jsonify({'success': True, 'operation': operation}), 202
    except Exception as e:
        return _handle_failure('task tracking', e)


@tracking_api_bp.route('/quarters', methods=['POST'])
def update_quarter():
    """Queue a quarter update (``{"quarter": "Q1", "year": 2025}``) and track it."""
    try:
        data = _json_body()
        if not data or not data.get('quarter') or not data.get('year'):
            return _error('Quarter and year are required', 400)

        result = get_tracking_service().update_quarter(data['quarter'], data['year'])
        return jsonify({'success': True, **result}), 202
    except Exception as e:
        return _handle_failure('quarter update', e)


@tracking_api_bp.route('/quarters/<quarter>/<year>/watch', methods=['POST'])
def watch_quarter_update(quarter, year):
    """Track a quarter update without queueing a new one; ``no_task`` ends it as unknown."""
    try:
        operation = get_tracking_service().track_quarter_update(quarter, year)
        return jsonify({'success': True, 'operation': operation}), 202
    except Exception as e:
        return _handle_failure(f"watching quarter {quarter} {year}", e)


@tracking_api_bp.route('/scheduled-jobs/<job_id>/run', methods=['POST'])
def run_scheduled_job(job_id):
    try:
        result = get_tracking_service().run_scheduled_job(job_id)
        return jsonify({'success': True, **result})
    except Exception as e:
        return _handle_failure(f"scheduled job {job_id}", e)


# ============================================================================
# BACKGROUND TASKS TABLE
# ============================================================================

@tracking_api_bp.route('/tasks-monitor', methods=['GET'])
def get_tasks_monitor():
    try:
        state = get_tracking_service().tasks_snapshot()
        status_filter = request.args.get('status')
        if status_filter:
            wanted = {value.strip() for value in status_filter.split(',') if value.strip()}
            state['items'] = [item for item in state['items'] if item.get('status') in wanted]
        return jsonify({'success': True, 'tasks': state})
    except Exception as e:
        return _handle_failure('task list read', e)


@tracking_api_bp.route('/tasks-monitor/refresh', methods=['POST'])
def refresh_tasks_monitor():
    try:
        state = get_tracking_service().refresh_tasks()
        return jsonify({'success': True, 'tasks': state}), 202
    except Exception as e:
        return _handle_failure('task list refresh', e)


@tracking_api_bp.route('/quarter-tasks', methods=['GET'])
def get_quarter_tasks():
    try:
        state = get_tracking_service().quarter_task_statuses()
        return jsonify({'success': True, 'statuses': state.pop('statuses'), 'tasks': state})
    except Exception as e:
        return _handle_failure('quarter task read', e)
