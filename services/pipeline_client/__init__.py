"""Pipeline backend client package."""

from .errors import PipelineError, PipelineProtocolError, PipelineRequestError
from .pipeline_client import PipelineClient, normalize_quarter, normalize_year
from .status_contract import (
    parse_quarter_update_status,
    parse_status_report,
    parse_task_status,
    parse_torrent_status,
    validate_task_list,
)

__all__ = [
    "PipelineClient",
    "PipelineError",
    "PipelineProtocolError",
    "PipelineRequestError",
    "normalize_quarter",
    "normalize_year",
    "parse_quarter_update_status",
    "parse_status_report",
    "parse_task_status",
    "parse_torrent_status",
    "validate_task_list",
]
