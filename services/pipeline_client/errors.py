"""Errors raised by the pipeline backend client."""

from typing import Optional


class PipelineError(RuntimeError):
	"""Base pipeline client error."""


class PipelineRequestError(PipelineError):
	"""Raised when an HTTP interaction fails (network error or non-2xx response)."""

	def __init__(self, message: str, status_code: Optional[int] = None):
		super().__init__(message)
		self.status_code = status_code


class PipelineProtocolError(PipelineError):
	"""Raised when a response body does not match the expected contract."""
