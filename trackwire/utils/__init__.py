"""Utility helpers for trackwire."""

from trackwire.utils.logging import (
    configure_logging,
    create_logger,
    get_component_logger,
    get_current_logger,
)

__all__ = [
    "configure_logging",
    "create_logger",
    "get_component_logger",
    "get_current_logger",
]
