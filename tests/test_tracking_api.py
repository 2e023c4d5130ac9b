"""Tests for the /api/tracking blueprint (Flask test client, mocked service)."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from app import create_app
from config.config import Config
from services.operation_tracking.event_emitter import EventEmitter
from services.operation_tracking.tracking_service import (
    OperationTrackingError,
    TrackingService,
    UnknownCollectionError,
)
from services.pipeline_client import PipelineRequestError
from services.service_manager import service_manager


class TrackingTestConfig(Config):
    TESTING = True
    LOG_FILE = None
    SOCKETIO_ASYNC_MODE = 'threading'


OPERATION = {
    'key': 'scan:42',
    'external_id': '77',
    'status': 'running',
    'message': None,
    'attempt': 0,
    'active': True,
    'exhausted': False,
    'details': {},
    'started_at': '2025-01-05T10:00:00',
    'updated_at': '2025-01-05T10:00:02',
}


@pytest.fixture
def tracking() -> Mock:
    service = Mock(spec=TrackingService)
    service.event_emitter = EventEmitter()
    service.running = True
    return service


@pytest.fixture
def client(tracking):
    app, _socketio = create_app(TrackingTestConfig, tracking_service=tracking, start_services=False)
    yield app.test_client()
    service_manager.reset()


class TestReads:
    def test_list_operations(self, client, tracking):
        tracking.list_operations.return_value = [OPERATION, {**OPERATION, 'key': 'scan:43', 'active': False}]

        response = client.get('/api/tracking/tasks')

        assert response.status_code == 200
        assert response.json['count'] == 2
        tracking.list_operations.assert_called_once_with('tasks')

    def test_list_active_only(self, client, tracking):
        tracking.list_operations.return_value = [OPERATION, {**OPERATION, 'key': 'scan:43', 'active': False}]

        response = client.get('/api/tracking/tasks?active=true')

        assert [op['key'] for op in response.json['operations']] == ['scan:42']

    def test_get_operation(self, client, tracking):
        tracking.get.return_value = OPERATION

        response = client.get('/api/tracking/tasks/scan:42')

        assert response.status_code == 200
        assert response.json['operation']['external_id'] == '77'
        tracking.get.assert_called_once_with('tasks', 'scan:42')

    def test_missing_operation_is_404(self, client, tracking):
        tracking.get.return_value = None

        assert client.get('/api/tracking/downloads/1:2').status_code == 404

    def test_unknown_collection_is_404(self, client, tracking):
        tracking.list_operations.side_effect = UnknownCollectionError('episodes')

        response = client.get('/api/tracking/episodes')

        assert response.status_code == 404
        assert response.json['error'] == 'Unknown collection: episodes'

    def test_service_not_running_is_503(self, client, tracking):
        tracking.list_operations.side_effect = OperationTrackingError("Tracking service is not running")

        assert client.get('/api/tracking/tasks').status_code == 503

    def test_health(self, client, tracking):
        tracking.summary.return_value = {'running': True, 'collections': {}}

        response = client.get('/api/tracking/health')

        assert response.json['status'] == 'operational'
        assert client.get('/health').json['tracking'] is True


class TestStopAndDismiss:
    def test_stop(self, client, tracking):
        tracking.stop.return_value = True
        tracking.get.return_value = {**OPERATION, 'active': False}

        response = client.delete('/api/tracking/tasks/scan:42')

        assert response.json['stopped'] is True
        assert response.json['operation']['active'] is False
        tracking.dismiss.assert_not_called()

    def test_dismiss(self, client, tracking):
        tracking.dismiss.return_value = True

        response = client.delete('/api/tracking/tasks/scan:42?dismiss=true')

        assert response.json['dismissed'] is True
        tracking.dismiss.assert_called_once_with('tasks', 'scan:42')


class TestTriggers:
    def test_download_requires_fields(self, client, tracking):
        response = client.post('/api/tracking/downloads', json={'anime_id': 42})

        assert response.status_code == 400
        assert 'torrent_id' in response.json['error']
        tracking.begin_download.assert_not_called()

    def test_download_without_body(self, client):
        assert client.post('/api/tracking/downloads').status_code == 400

    def test_download_started(self, client, tracking):
        tracking.begin_download.return_value = {'response': {'success': True}, 'operation': OPERATION}

        response = client.post('/api/tracking/downloads', json={
            'anime_id': 42, 'torrent_id': 'abc', 'torrent_link': 'magnet:?xt=urn:btih:abc'
        })

        assert response.status_code == 202
        tracking.begin_download.assert_called_once_with(42, 'abc', 'magnet:?xt=urn:btih:abc', None)

    def test_backend_failure_is_502(self, client, tracking):
        tracking.begin_download.side_effect = PipelineRequestError("HTTP POST failed: refused")

        response = client.post('/api/tracking/downloads', json={
            'anime_id': 42, 'torrent_id': 'abc', 'torrent_link': 'magnet:?xt=urn:btih:abc'
        })

        assert response.status_code == 502
        assert response.json['success'] is False

    def test_scan(self, client, tracking):
        tracking.scan_torrents.return_value = {'response': {'taskId': 77}, 'operation': OPERATION}

        response = client.post('/api/tracking/tasks/scan', json={'anime_id': 42, 'wipe_previous': 'true'})

        assert response.status_code == 202
        tracking.scan_torrents.assert_called_once_with(42, wipe_previous=True)

    def test_track_existing_task(self, client, tracking):
        tracking.track_task.return_value = OPERATION

        response = client.post('/api/tracking/tasks', json={'task_id': 77})

        assert response.status_code == 202
        tracking.track_task.assert_called_once_with(77, key=None)

    def test_quarter_validation_error_is_400(self, client, tracking):
        tracking.update_quarter.side_effect = ValueError("Invalid quarter. Must be Q1, Q2, Q3, or Q4")

        response = client.post('/api/tracking/quarters', json={'quarter': 'Q9', 'year': 2025})

        assert response.status_code == 400

    def test_quarter_requires_fields(self, client, tracking):
        assert client.post('/api/tracking/quarters', json={'quarter': 'Q1'}).status_code == 400
        tracking.update_quarter.assert_not_called()

    def test_watch_quarter_does_not_queue_update(self, client, tracking):
        tracking.track_quarter_update.return_value = {**OPERATION, 'key': 'Q2-2025', 'external_id': 'Q2-2025'}

        response = client.post('/api/tracking/quarters/q2/2025/watch')

        assert response.status_code == 202
        assert response.json['operation']['key'] == 'Q2-2025'
        tracking.track_quarter_update.assert_called_once_with('q2', '2025')
        tracking.update_quarter.assert_not_called()

    def test_watch_invalid_quarter_is_400(self, client, tracking):
        tracking.track_quarter_update.side_effect = ValueError("Invalid quarter. Must be Q1, Q2, Q3, or Q4")

        assert client.post('/api/tracking/quarters/Q7/2025/watch').status_code == 400

    def test_run_scheduled_job(self, client, tracking):
        tracking.run_scheduled_job.return_value = {'response': {'message': 'ok'}, 'tasks': {'items': []}}

        response = client.post('/api/tracking/scheduled-jobs/7/run')

        assert response.status_code == 200
        tracking.run_scheduled_job.assert_called_once_with('7')


class TestTasksMonitor:
    def test_status_filter(self, client, tracking):
        tracking.tasks_snapshot.return_value = {
            'name': 'tasks-monitor',
            'items': [{'id': 1, 'status': 'running'}, {'id': 2, 'status': 'completed'}],
        }

        response = client.get('/api/tracking/tasks-monitor?status=running,pending')

        assert [item['id'] for item in response.json['tasks']['items']] == [1]

    def test_refresh(self, client, tracking):
        tracking.refresh_tasks.return_value = {'name': 'tasks-monitor', 'items': [], 'is_refreshing': True}

        response = client.post('/api/tracking/tasks-monitor/refresh')

        assert response.status_code == 202
        assert response.json['tasks']['is_refreshing'] is True

    def test_quarter_task_statuses(self, client, tracking):
        tracking.quarter_task_statuses.return_value = {
            'name': 'quarter-tasks',
            'items': [{'id': 9, 'type': 'UPDATE_QUARTER', 'status': 'running'}],
            'statuses': {'Q1-2025': 'running'},
        }

        response = client.get('/api/tracking/quarter-tasks')

        assert response.status_code == 200
        assert response.json['statuses'] == {'Q1-2025': 'running'}
        assert response.json['tasks']['name'] == 'quarter-tasks'
        assert 'statuses' not in response.json['tasks']
