"""Logging facade for trackwire components."""

from trackwire.logging.context import tracking_context
from trackwire.utils.logging import (
    Logger,
    configure_logging,
    create_logger,
    get_component_logger,
    get_current_logger,
    mask_credentials,
    reset_logging_configuration,
    set_current_logger,
)

__all__ = [
    "Logger",
    "configure_logging",
    "create_logger",
    "get_component_logger",
    "get_current_logger",
    "mask_credentials",
    "reset_logging_configuration",
    "set_current_logger",
    "tracking_context",
]
