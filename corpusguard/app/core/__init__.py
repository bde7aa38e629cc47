"""Core utilities for corpusguard."""

from corpusguard.app.core.config import Settings, settings
from corpusguard.app.core.logging import get_logger, setup_logging
from corpusguard.app.core.utils import millis_to_iso, now_millis

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
    "millis_to_iso",
    "now_millis",
]
