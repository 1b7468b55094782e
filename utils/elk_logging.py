"""
JSON logs for ELK.

One object per line. Anything passed through `extra=` lands as a top-level
key, so validation runs can be filtered in Kibana by project_id, event_type
and outcome.
"""

import json
import logging
import time
import traceback
from datetime import datetime

import pytz

from .logging_utils import configure_root

SERVICE_NAME = "leadsync"

# Attributes every LogRecord carries; everything else came from extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Events that mean a run did not do what the caller asked
_WARNING_EVENTS = {"validation_conflict", "validation_failed"}


class ELKFormatter(logging.Formatter):
    """Renders a record as a flat JSON document."""

    def format(self, record: logging.LogRecord) -> str:
        doc = {
            '@timestamp': datetime.fromtimestamp(record.created, pytz.utc).isoformat(),
            'service': SERVICE_NAME,
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}.{record.funcName}:{record.lineno}",
        }
        doc.update({k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS})

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            doc['error'] = {
                'type': exc_type.__name__,
                'message': str(exc_value),
                'stack': ''.join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        return json.dumps(doc, default=str)


def setup_elk_logging(level: str = "INFO", log_file: str = None):
    """JSON on stdout (Docker picks it up), plus log_file if given."""
    return configure_root(ELKFormatter(), level, log_file)


def log_validation_event(event_type: str, project_id: str, **fields):
    """
    Structured marker for a validation run.

    event_type is one of validation_started, validation_finished,
    validation_conflict, validation_failed. Counts and outcome go in fields.
    """
    level = logging.WARNING if event_type in _WARNING_EVENTS else logging.INFO
    logging.getLogger('leadsync.validation_events').log(
        level,
        f"Validation event: {event_type} ({project_id})",
        extra={'event_type': event_type, 'project_id': project_id, **fields},
    )


class LogTimer:
    """Logs how long the wrapped block took, and whether it raised."""

    def __init__(self, operation: str, **context):
        self.operation = operation
        self.context = context
        self.logger = logging.getLogger('leadsync.performance')
        self._started = None

    def __enter__(self):
        self._started = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = round(time.monotonic() - self._started, 3)
        fields = {'operation': self.operation, 'duration_seconds': elapsed,
                  'success': exc_type is None, **self.context}
        if exc_type is None:
            self.logger.info(f"{self.operation} done in {elapsed:.2f}s", extra=fields)
        else:
            self.logger.warning(f"{self.operation} failed after {elapsed:.2f}s: {exc_type.__name__}",
                                extra=fields)
        return False
