"""
Module Name: service_manager.py
Description:
    Centralized service initialization and access point for backend services.

Location:
    /services/service_manager.py

"""

import threading
from typing import Any, Dict, Optional

from utils.logger import get_module_logger


_LOGGER = get_module_logger("Service.Manager")


class ServiceManager:
    """
    Singleton service manager to handle all service instances
    Ensures each service is initialized only once and provides thread-safe access
    """
    _instance: Optional['ServiceManager'] = None
    _lock = threading.RLock()
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, *, logger=None):
        if not self._initialized:
            with self._lock:
                if not self._initialized:
                    self._services: Dict[str, Any] = {}
                    self.logger = logger or _LOGGER
                    ServiceManager._initialized = True

    def _log_initialized(self, service_name: str):
        self.logger.info("Service initialized: %s", service_name, extra={"service": service_name})

    def get_pipeline_client(self):
        """Get or create PipelineClient instance"""
        if 'pipeline_client' not in self._services:
            with self._lock:
                if 'pipeline_client' not in self._services:
                    # Import here to avoid circular imports
                    from config.config import Config
                    from services.pipeline_client import PipelineClient
                    self._services['pipeline_client'] = PipelineClient(Config.PIPELINE_SETTINGS)
                    self._log_initialized("pipeline_client")
        return self._services['pipeline_client']

    def get_tracking_service(self):
        """Get or create TrackingService instance (not started)"""
        if 'tracking' not in self._services:
            with self._lock:
                if 'tracking' not in self._services:
                    from config.config import Config
                    from services.operation_tracking import TrackingService
                    self._services['tracking'] = TrackingService(
                        self.get_pipeline_client(),
                        Config.TRACKING_SETTINGS,
                    )
                    self._log_initialized("tracking")
        return self._services['tracking']

    def register_service(self, name: str, instance: Any):
        """Install a pre-built service instance (used by the app factory and tests)."""
        with self._lock:
            self._services[name] = instance

    def shutdown(self):
        """Stop services that own threads and release client sessions."""
        with self._lock:
            tracking = self._services.pop('tracking', None)
            client = self._services.pop('pipeline_client', None)

        if tracking is not None:
            try:
                tracking.shutdown()
            except Exception as exc:
                self.logger.error("Error stopping tracking service: %s", exc)
        if client is not None:
            client.close()
        self.logger.debug("Service manager shut down")

    def reset(self):
        """Forget every service instance (tests)."""
        self.shutdown()
        with self._lock:
            self._services.clear()


# Global service manager instance
service_manager = ServiceManager()


def get_pipeline_client():
    """Get PipelineClient instance"""
    return service_manager.get_pipeline_client()


def get_tracking_service():
    """Get TrackingService instance"""
    return service_manager.get_tracking_service()
