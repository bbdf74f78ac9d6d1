"""Core module - configuration, logging, and the error hierarchy."""

from orchestra.core.config import Settings, clear_settings_cache, get_settings
from orchestra.core.exceptions import (
    CircularDependencyError,
    InvalidTransitionError,
    OrchestraError,
    PersistenceError,
    SourceControlError,
    StructuralError,
)
from orchestra.core.logging import configure_logging

__all__ = [
    "CircularDependencyError",
    "InvalidTransitionError",
    "OrchestraError",
    "PersistenceError",
    "Settings",
    "SourceControlError",
    "StructuralError",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
]
