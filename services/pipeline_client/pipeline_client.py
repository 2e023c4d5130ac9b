"""HTTP client for the anime pipeline backend."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests
from requests import Response, Session
from requests.exceptions import RequestException

from services.operation_tracking.models import StatusReport
from utils.logger import get_module_logger

from .errors import PipelineError, PipelineProtocolError, PipelineRequestError
from .status_contract import (
	parse_quarter_update_status,
	parse_task_status,
	parse_torrent_status,
	validate_task_list,
)

logger = get_module_logger("PipelineClient")

VALID_QUARTERS = ("Q1", "Q2", "Q3", "Q4")


class PipelineClient:
	"""Thin wrapper around the pipeline backend REST API.

	Every call is blocking and bounded by ``timeout``; the tracking service runs
	them off its event loop with ``asyncio.to_thread``.
	"""

	DEFAULT_TIMEOUT = 15
	DEFAULT_BASE_URL = "http://localhost:3000"

	def __init__(self, config: Optional[Dict[str, Any]] = None, session: Optional[Session] = None):
		config = config or {}
		self.base_url = (config.get("base_url") or self.DEFAULT_BASE_URL).rstrip("/")
		self.timeout = float(config.get("timeout", self.DEFAULT_TIMEOUT))
		self.verify_ssl = bool(config.get("verify_ssl", True))
		self._session: Optional[Session] = session

		logger.debug("Initialized PipelineClient for %s", self.base_url)

	@property
	def session(self) -> Session:
		if self._session is None:
			self._session = self._create_session()
		return self._session

	def close(self) -> None:
		if self._session is None:
			return
		try:
			self._session.close()
		finally:
			self._session = None

	# ------------------------------------------------------------------
	# Status queries
	# ------------------------------------------------------------------
	def get_task_status(self, task_id: Any) -> StatusReport:
		"""GET /api/anime/tasks/:taskId"""
		payload = self._request_json("GET", f"api/anime/tasks/{_segment(task_id)}")
		return parse_task_status(payload)

	def get_torrent_status(self, anime_id: Any, torrent_id: Any, torrent_url: Optional[str] = None) -> StatusReport:
		"""GET /api/anime/:id/torrents/:torrentId/status"""
		params = {"url": torrent_url} if torrent_url else None
		payload = self._request_json(
			"GET",
			f"api/anime/{_segment(anime_id)}/torrents/{_segment(torrent_id)}/status",
			params=params,
		)
		return parse_torrent_status(payload)

	def get_quarter_update_status(
		self,
		quarter: str,
		year: Any,
		wait_ms: int = 1000,
		poll_interval_ms: int = 200,
	) -> StatusReport:
		"""GET /api/admin/quarter-update-task/:quarter/:year (server-side long poll)."""
		quarter = normalize_quarter(quarter)
		year = normalize_year(year)
		payload = self._request_json(
			"GET",
			f"api/admin/quarter-update-task/{quarter}/{year}",
			params={"timeout": int(wait_ms), "pollInterval": int(poll_interval_ms)},
		)
		return parse_quarter_update_status(payload)

	def list_tasks(self, limit: int = 20, statuses: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
		"""GET /api/admin/tasks"""
		params: Dict[str, Any] = {"limit": int(limit)}
		if statuses:
			params["statuses"] = ",".join(statuses)
		payload = self._request_json("GET", "api/admin/tasks", params=params)
		return validate_task_list(payload)

	# ------------------------------------------------------------------
	# Triggers
	# ------------------------------------------------------------------
	def start_download(self, anime_id: Any, torrent_id: Any, torrent_link: str, torrent_title: Optional[str] = None) -> Dict[str, Any]:
		"""POST /api/anime/:id/torrents/:torrentId/download"""
		if not torrent_link:
			raise ValueError("torrent_link is required")
		body = {"torrentLink": torrent_link, "torrentTitle": torrent_title}
		return self._request_object(
			"POST",
			f"api/anime/{_segment(anime_id)}/torrents/{_segment(torrent_id)}/download",
			json=body,
		)

	def scan_torrents(self, anime_id: Any, wipe_previous: bool = False) -> Dict[str, Any]:
		"""POST /api/anime/:id/scan-torrents; the response carries the queued ``taskId``."""
		result = self._request_object(
			"POST",
			f"api/anime/{_segment(anime_id)}/scan-torrents",
			json={"wipePrevious": bool(wipe_previous)},
		)
		if result.get("taskId") is None:
			raise PipelineProtocolError("Scan response did not include a taskId")
		return result

	def update_quarter(self, quarter: str, year: Any) -> Dict[str, Any]:
		"""POST /api/admin/update-quarter"""
		body = {"quarter": normalize_quarter(quarter), "year": normalize_year(year)}
		return self._request_object("POST", "api/admin/update-quarter", json=body)

	def run_scheduled_job(self, job_id: Any) -> Dict[str, Any]:
		"""POST /api/admin/scheduled-jobs/:id/run"""
		return self._request_object("POST", f"api/admin/scheduled-jobs/{_segment(job_id)}/run")

	# ------------------------------------------------------------------
	# Internal helpers
	# ------------------------------------------------------------------
	def _create_session(self) -> Session:
		session = requests.Session()
		session.verify = self.verify_ssl
		session.headers.update(
			{
				"User-Agent": "AnimeConsole-PipelineClient/1.0",
				"Accept": "application/json",
			}
		)
		return session

	def _request(self, method: str, endpoint: str, **kwargs: Any) -> Response:
		url = f"{self.base_url}/{endpoint}"
		try:
			response = self.session.request(method, url, timeout=self.timeout, **kwargs)
		except RequestException as exc:
			raise PipelineRequestError(f"HTTP {method} {endpoint} failed: {exc}") from exc

		if not 200 <= response.status_code < 300:
			detail = _error_detail(response)
			raise PipelineRequestError(
				f"HTTP {method} {endpoint} returned {response.status_code}: {detail}",
				status_code=response.status_code,
			)
		return response

	def _request_json(self, method: str, endpoint: str, **kwargs: Any) -> Any:
		response = self._request(method, endpoint, **kwargs)
		try:
			return response.json()
		except ValueError as exc:
			raise PipelineProtocolError(f"Invalid JSON response from {endpoint}: {exc}") from exc

	def _request_object(self, method: str, endpoint: str, **kwargs: Any) -> Dict[str, Any]:
		payload = self._request_json(method, endpoint, **kwargs)
		if not isinstance(payload, dict):
			raise PipelineProtocolError(f"Expected an object from {endpoint}")
		return payload


def normalize_quarter(quarter: Any) -> str:
	value = str(quarter or "").strip().upper()
	if value not in VALID_QUARTERS:
		raise ValueError("Invalid quarter. Must be Q1, Q2, Q3, or Q4")
	return value


def normalize_year(year: Any) -> int:
	try:
		return int(year)
	except (TypeError, ValueError) as exc:
		raise ValueError(f"Invalid year: {year!r}") from exc


def _segment(value: Any) -> str:
	text = str(value if value is not None else "").strip()
	if not text:
		raise ValueError("Path identifiers must be non-empty")
	return quote(text, safe="")


def _error_detail(response: Response) -> str:
	try:
		payload = response.json()
	except ValueError:
		return (response.text or response.reason or "").strip()[:200]
	if isinstance(payload, dict):
		return str(payload.get("error") or payload.get("message") or payload)
	return str(payload)


__all__ = [
	"PipelineClient",
	"PipelineError",
	"PipelineProtocolError",
	"PipelineRequestError",
	"normalize_quarter",
	"normalize_year",
]
