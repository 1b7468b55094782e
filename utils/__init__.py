"""Utils package for the lead sync service."""
from .logging_utils import (
    setup_logging,
)
from .elk_logging import (
    setup_elk_logging,
    log_validation_event,
    LogTimer,
)

__all__ = [
    'setup_logging',
    'setup_elk_logging',
    'log_validation_event',
    'LogTimer',
]
