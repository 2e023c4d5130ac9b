"""Normalisation of backend payloads into the status-query contract."""

from typing import Any, Dict, List, Optional

from services.operation_tracking.models import NOT_FOUND, StatusContractError, StatusReport

from .errors import PipelineProtocolError

# Torrent engine states as reported by /api/anime/:id/torrents/:torrentId/status
TORRENT_STATUS_MAP: Dict[str, str] = {
    "queued": "pending",        # paused torrents are reported as queued
    "initializing": "pending",
    "downloading": "running",
    "ready": "running",         # metadata received, transfer starting
    "completed": "completed",
    "error": "failed",
    "failed": "failed",
    "not_found": NOT_FOUND,
}

# Long-poll quarter endpoint answers "no_task" when nothing is queued or recently finished
QUARTER_STATUS_MAP: Dict[str, str] = {
    "no_task": NOT_FOUND,
}

TASK_LIST_REQUIRED_FIELDS = ("id", "status", "createdAt", "updatedAt")


def parse_status_report(payload: Any) -> StatusReport:
    """Parse a plain ``{status, message?, error?}`` payload."""
    try:
        return StatusReport.from_payload(payload)
    except StatusContractError as exc:
        raise PipelineProtocolError(str(exc)) from exc


def parse_task_status(payload: Any) -> StatusReport:
    """Parse ``GET /api/anime/tasks/:taskId``."""
    if not isinstance(payload, dict):
        raise PipelineProtocolError("Task status response must be an object")

    result = payload.get("result") if isinstance(payload.get("result"), dict) else {}
    message = payload.get("error") or result.get("message")
    report = parse_status_report({**payload, "message": message})
    return report


def parse_torrent_status(payload: Any) -> StatusReport:
    """Parse ``GET /api/anime/:id/torrents/:torrentId/status`` (torrent engine states)."""
    if not isinstance(payload, dict):
        raise PipelineProtocolError("Torrent status response must be an object")

    raw_status = str(payload.get("status") or "").strip().lower()
    status = TORRENT_STATUS_MAP.get(raw_status)
    if status is None:
        raise PipelineProtocolError(f"Unsupported torrent status: {payload.get('status')!r}")

    message = payload.get("message") or payload.get("error")
    if not message and status != NOT_FOUND:
        message = _format_torrent_message(raw_status, payload.get("progress"))

    return parse_status_report({**payload, "status": status, "message": message, "torrentStatus": raw_status})


def parse_quarter_update_status(payload: Any) -> StatusReport:
    """Parse ``GET /api/admin/quarter-update-task/:quarter/:year``."""
    if not isinstance(payload, dict):
        raise PipelineProtocolError("Quarter update response must be an object")

    raw_status = str(payload.get("status") or "").strip().lower()
    status = QUARTER_STATUS_MAP.get(raw_status, raw_status)

    task = payload.get("task") if isinstance(payload.get("task"), dict) else {}
    message = task.get("error") if status == "failed" else None
    message = message or payload.get("message")

    return parse_status_report({**payload, "status": status, "message": message})


def validate_task_list(payload: Any) -> List[Dict[str, Any]]:
    """Validate ``GET /api/admin/tasks``: an array of task records."""
    if not isinstance(payload, list):
        raise PipelineProtocolError("Task list response must be an array")

    tasks = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise PipelineProtocolError(f"Task list entry {index} is not an object")
        missing = [name for name in TASK_LIST_REQUIRED_FIELDS if name not in entry]
        if missing:
            raise PipelineProtocolError(f"Task list entry {index} missing {', '.join(missing)}")
        tasks.append(entry)
    return tasks


def _format_torrent_message(raw_status: str, progress: Optional[Any]) -> str:
    try:
        percent = float(progress) * 100
    except (TypeError, ValueError):
        return raw_status.capitalize()
    if raw_status == "completed":
        return "Download complete"
    return f"{raw_status.capitalize()} ({percent:.0f}%)"
