"""Tests for backend payload normalisation."""

import pytest

from services.operation_tracking.models import NOT_FOUND
from services.pipeline_client import PipelineProtocolError
from services.pipeline_client.status_contract import (
    parse_quarter_update_status,
    parse_status_report,
    parse_task_status,
    parse_torrent_status,
    validate_task_list,
)


class TestParseStatusReport:
    def test_message_falls_back_to_error(self):
        report = parse_status_report({"status": "FAILED", "error": "tracker offline"})
        assert report.status == "failed"
        assert report.message == "tracker offline"

    @pytest.mark.parametrize("payload", [None, [], {"message": "no status"}, {"status": "paused"}, {"status": 3}])
    def test_invalid_payloads(self, payload):
        with pytest.raises(PipelineProtocolError):
            parse_status_report(payload)


class TestTorrentStatus:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("queued", "pending"),
            ("initializing", "pending"),
            ("downloading", "running"),
            ("ready", "running"),
            ("completed", "completed"),
            ("not_found", NOT_FOUND),
        ],
    )
    def test_engine_states_are_normalised(self, raw, expected):
        report = parse_torrent_status({"status": raw, "progress": 0.5})
        assert report.status == expected
        assert report.details["torrentStatus"] == raw

    def test_progress_is_rendered_into_message(self):
        report = parse_torrent_status({"status": "downloading", "progress": 0.425})
        assert report.message == "Downloading (42%)"
        assert report.details["progress"] == 0.425

    def test_ready_torrent_keeps_polling(self):
        report = parse_torrent_status({"status": "ready", "progress": 0.0})
        assert report.status == "running"
        assert report.message == "Ready (0%)"

    def test_backend_message_wins(self):
        report = parse_torrent_status({"status": "downloading", "progress": 0.1, "message": "Stalled"})
        assert report.message == "Stalled"

    def test_unknown_state_is_protocol_error(self):
        with pytest.raises(PipelineProtocolError, match="Unsupported torrent status"):
            parse_torrent_status({"status": "seeding"})


class TestQuarterStatus:
    def test_no_task_means_not_found(self):
        report = parse_quarter_update_status(
            {"task": None, "status": "no_task", "message": "No active task found for this quarter"}
        )
        assert report.is_not_found

    def test_failed_task_uses_task_error(self):
        report = parse_quarter_update_status(
            {"task": {"id": 7, "status": "failed", "error": "AniList rate limited"}, "status": "failed", "message": "Task failed"}
        )
        assert report.status == "failed"
        assert report.message == "AniList rate limited"

    def test_long_poll_timeout_keeps_reported_status(self):
        report = parse_quarter_update_status(
            {"task": {"id": 7, "status": "running"}, "status": "running", "timeout": True}
        )
        assert report.status == "running"
        assert report.details["timeout"] is True


class TestTaskStatus:
    def test_result_message_is_used(self):
        report = parse_task_status({"id": 3, "status": "completed", "result": {"message": "Found 12 torrents"}})
        assert report.status == "completed"
        assert report.message == "Found 12 torrents"

    def test_error_is_used_for_failures(self):
        report = parse_task_status({"id": 3, "status": "failed", "error": "Nyaa unreachable", "result": None})
        assert report.message == "Nyaa unreachable"


class TestTaskList:
    def test_valid_list(self):
        tasks = [{"id": 1, "status": "pending", "createdAt": "a", "updatedAt": "b"}]
        assert validate_task_list(tasks) == tasks

    def test_missing_fields_rejected(self):
        with pytest.raises(PipelineProtocolError, match="missing createdAt, updatedAt"):
            validate_task_list([{"id": 1, "status": "pending"}])

    def test_non_list_rejected(self):
        with pytest.raises(PipelineProtocolError):
            validate_task_list({"tasks": []})
