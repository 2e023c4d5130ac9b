# Services package for the anime pipeline console
# Tracking engine and backend client live in subdirectories

from .service_manager import ServiceManager, service_manager

__all__ = [
    'ServiceManager',
    'service_manager'
]
