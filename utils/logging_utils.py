"""
Logging setup for the lead sync service.

Both the plain-text and the JSON (ELK) setups go through configure_root, so
they share the handler layout and the secret redaction below. Emailable takes
its api_key as a query parameter and urllib3 logs full URLs at DEBUG, so
credentials are masked before any handler sees a record.
"""
import logging
import re
import sys

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Third-party loggers that get noisy when LOG_LEVEL=DEBUG
NOISY_LOGGERS = ("urllib3", "requests")

_SECRET_PATTERN = re.compile(
    r'((?:api_key|access_token|refresh_token|client_secret|code)=)[^&\s"\']+',
    re.IGNORECASE,
)


def redact(text: str) -> str:
    return _SECRET_PATTERN.sub(r'\1***', text)


class RedactSecretsFilter(logging.Filter):
    """Masks credential query parameters in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def configure_root(formatter: logging.Formatter, level: str = "INFO", log_file: str = None) -> logging.Logger:
    """Replace the root handlers with stdout (+ optional file) using formatter."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(log_level)
        handler.addFilter(RedactSecretsFilter())
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))

    return root_logger


def setup_logging(level: str = "INFO", log_file: str = None):
    """
    Human-readable logs for local runs and the CLI.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path to write logs
    """
    return configure_root(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT), level, log_file)

