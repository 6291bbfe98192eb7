"""
Structured logging for the subscription engine.

Every EngineLogger line is a single JSON object carrying the component name,
the calling thread's context (user, sender lane, subscription) and optional
extra fields. Credentials and signed query-string tokens in unsubscribe URLs
are masked before a line is written.
"""

import json
import logging
import re
import threading
import time
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

_QUERY_SECRET = re.compile(
    r'\b(token|auth|sig|signature|hash|key|code)=([^&\s"\']+)', re.IGNORECASE)
_ASSIGNED_SECRET = re.compile(
    r'\b(password|api_key|secret)(["\']?\s*[:=]\s*["\']?)([^"\'\s&,]+)', re.IGNORECASE)


class SensitiveDataFilter:
    """Mask credentials in log text and structured fields."""

    SENSITIVE_KEYS = frozenset({'password', 'smtp_password', 'token', 'api_key', 'secret'})
    MASK = '***'

    def filter_message(self, message: str) -> str:
        message = _QUERY_SECRET.sub(lambda m: f"{m.group(1)}={self.MASK}", message)
        return _ASSIGNED_SECRET.sub(lambda m: f"{m.group(1)}={self.MASK}", message)

    def filter_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            key: self.MASK if str(key).lower() in self.SENSITIVE_KEYS else self._filter(value)
            for key, value in data.items()
        }

    def _filter(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.filter_message(value)
        if isinstance(value, dict):
            return self.filter_dict(value)
        if isinstance(value, (list, tuple)):
            return [self._filter(item) for item in value]
        return value


class EngineLogger:
    """
    JSON logger for one engine component.

    Context is thread-local: sender lanes and unsubscribe workers share a
    logger per component but each sees only the context it pushed.
    """

    def __init__(self, component: str):
        self.component = component
        self.logger = logging.getLogger(f"subscription_engine.{component}")
        self.filter = SensitiveDataFilter()
        self._local = threading.local()
        self._outcomes: Counter = Counter()
        self._outcomes_lock = threading.Lock()

    @property
    def context(self) -> Dict[str, Any]:
        if not hasattr(self._local, 'context'):
            self._local.context = {}
        return self._local.context

    def add_context(self, key: str, value: Any) -> None:
        self.context[key] = value

    @contextmanager
    def scoped_context(self, context: Dict[str, Any]) -> Iterator[None]:
        """Push context for the duration of the block, restoring the previous one after."""
        saved = dict(self.context)
        self.context.update(context)
        try:
            yield
        finally:
            self._local.context = saved

    def _line(self, message: str, extra: Optional[Dict[str, Any]] = None,
              exception: Optional[BaseException] = None) -> str:
        payload: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'component': self.component,
            'message': self.filter.filter_message(message),
            'context': self.filter.filter_dict(self.context),
        }
        if extra:
            payload['extra'] = self.filter.filter_dict(extra)
        if exception is not None:
            payload['exception'] = {
                'type': type(exception).__name__,
                'message': self.filter.filter_message(str(exception)),
            }
            details = getattr(exception, 'context', None)
            if details:
                payload['exception']['context'] = self.filter.filter_dict(details)
        return json.dumps(payload, default=str)

    def log(self, level: int, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self._line(message, extra))

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self.log(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self.log(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self.log(logging.WARNING, message, extra)

    def error(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self.log(logging.ERROR, message, extra)

    def log_exception(self, exception: BaseException, extra: Optional[Dict[str, Any]] = None) -> None:
        """Log an exception at ERROR with its traceback and any attached error context."""
        self.logger.error(self._line(f"Exception occurred: {exception}", extra, exception),
                          exc_info=exception)

    @contextmanager
    def time_operation(self, operation_name: str) -> Iterator[None]:
        """Log the duration of the block, and whether it raised."""
        started = time.monotonic()
        self.debug(f"Starting {operation_name}", {'operation': operation_name})
        try:
            yield
        except Exception as e:
            self.error(f"Operation {operation_name} failed", {
                'operation': operation_name,
                'duration_seconds': round(time.monotonic() - started, 3),
                'status': 'failure',
                'error': str(e),
            })
            raise
        self.info(f"Operation {operation_name} completed", {
            'operation': operation_name,
            'duration_seconds': round(time.monotonic() - started, 3),
            'status': 'success',
        })

    def log_operation_count(self, operation: str, success: bool) -> None:
        with self._outcomes_lock:
            self._outcomes[(operation, 'success' if success else 'failure')] += 1

    def get_operation_stats(self) -> Dict[str, Dict[str, int]]:
        """Per-operation totals, e.g. {'link': {'total': 3, 'success': 2, 'failure': 1}}."""
        with self._outcomes_lock:
            outcomes = dict(self._outcomes)
        stats: Dict[str, Dict[str, int]] = {}
        for (operation, outcome), count in outcomes.items():
            entry = stats.setdefault(operation, {'total': 0, 'success': 0, 'failure': 0})
            entry[outcome] += count
            entry['total'] += count
        return stats


def configure_engine_logging(level: str = "INFO", format: str = "json",
                             output: str = "console", filename: Optional[str] = None) -> logging.Logger:
    """
    Attach handlers to the ``subscription_engine`` logger.

    Args:
        level: Level name, unknown names fall back to INFO
        format: "json" emits EngineLogger lines untouched, "text" prefixes
            time, logger name and level
        output: "console", "file" or "both"
        filename: Log file, required for file output

    Returns:
        The configured root engine logger
    """
    root = logging.getLogger("subscription_engine")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    pattern = '%(message)s' if format == "json" else '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    handlers = []
    if output in ("console", "both"):
        handlers.append(logging.StreamHandler())
    if output in ("file", "both") and filename:
        handlers.append(logging.FileHandler(filename))
    for handler in handlers:
        handler.setFormatter(logging.Formatter(pattern))
        root.addHandler(handler)
    return root
