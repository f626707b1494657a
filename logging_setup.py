"""
Core logging infrastructure for the transcript resolver.

Provides minimal JSON logging with thread-safe request context,
rate limiting, and third-party library noise suppression.
"""

import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, Set
from collections import defaultdict


# Thread-local storage for request context
_local = threading.local()

_CONTEXT_FIELDS = ('request_id', 'url')
_EVENT_FIELDS = ('stage', 'event', 'outcome', 'dur_ms', 'detail')
_OPTIONAL_FIELDS = ('provider', 'attempt', 'fail_class', 'cookie_source')

_STANDARD_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'taskName', 'getMessage',
    'exc_info', 'exc_text', 'stack_info', 'ts', 'lvl',
}


def set_request_ctx(request_id: str = None, url: str = None):
    """
    Set thread-local context for correlating one transcript resolution.

    Args:
        request_id: Identifier for the resolution
        url: URL (or file URL) being resolved
    """
    if not hasattr(_local, 'context'):
        _local.context = {}

    if request_id is not None:
        _local.context['request_id'] = request_id
    if url is not None:
        _local.context['url'] = url


def clear_request_ctx():
    """Clear thread-local context."""
    if hasattr(_local, 'context'):
        _local.context.clear()


def get_request_ctx() -> Dict[str, str]:
    """Get current thread-local context."""
    if not hasattr(_local, 'context'):
        return {}
    return _local.context.copy()


class JsonFormatter(logging.Formatter):
    """
    JSON formatter with standardized field order and context injection.

    Produces single-line JSON with stable schema:
    ts, lvl, request_id, url, stage, event, outcome, dur_ms, detail
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as single-line JSON."""
        try:
            dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
            timestamp = dt.strftime('%Y-%m-%dT%H:%M:%S') + f'.{int(dt.microsecond / 1000):03d}Z'

            log_data = {
                'ts': timestamp,
                'lvl': record.levelname
            }

            context = get_request_ctx()
            for field in _CONTEXT_FIELDS:
                if field in context:
                    log_data[field] = context[field]

            for field in _EVENT_FIELDS + _OPTIONAL_FIELDS:
                if getattr(record, field, None) is not None:
                    log_data[field] = getattr(record, field)

            # Anything else passed via logger.info(extra=...)
            skip = _STANDARD_RECORD_FIELDS.union(_CONTEXT_FIELDS, _EVENT_FIELDS, _OPTIONAL_FIELDS)
            for attr_name, attr_value in record.__dict__.items():
                if attr_name.startswith('_') or attr_name in skip:
                    continue
                if attr_value is not None and not callable(attr_value):
                    log_data[attr_name] = attr_value

            if 'detail' not in log_data and record.getMessage():
                log_data['detail'] = record.getMessage()

            if record.exc_info and 'exc' not in log_data:
                log_data['exc'] = self.formatException(record.exc_info)

            return json.dumps(log_data, separators=(',', ':'), ensure_ascii=False, default=str)

        except Exception:
            return json.dumps({
                'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
                'lvl': record.levelname,
                'detail': str(record.msg),
            })


class RateLimitFilter(logging.Filter):
    """
    Rate limiting filter to prevent log spam.

    Limits messages to 5 per key per 60-second sliding window.
    Emits a suppression marker when the limit is first exceeded.
    """

    def __init__(self, per_key: int = 5, window_sec: int = 60):
        super().__init__()
        self.per_key = per_key
        self.window_sec = window_sec
        self.counts: Dict[str, list] = defaultdict(list)
        self.suppressed: Set[str] = set()
        self._lock = threading.Lock()

    def _get_message_key(self, record: logging.LogRecord) -> str:
        # Structured events have an empty message, so key them by event name
        message = record.getMessage()[:100] or str(getattr(record, 'event', ''))
        return f"{record.levelname}:{message}"

    def _cleanup_old_entries(self, key: str, now: float):
        cutoff = now - self.window_sec
        self.counts[key] = [ts for ts in self.counts[key] if ts > cutoff]

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            key = self._get_message_key(record)
            now = time.time()

            with self._lock:
                self._cleanup_old_entries(key, now)

                if len(self.counts[key]) < self.per_key:
                    self.counts[key].append(now)
                    self.suppressed.discard(key)
                    return True

                if key not in self.suppressed:
                    self.suppressed.add(key)
                    record.msg = f"{record.getMessage()} [suppressed]"
                    record.args = ()
                    return True

                return False

        except Exception:
            return True


def configure_logging(log_level: str = "INFO", use_json: bool = True) -> logging.Logger:
    """
    Configure application logging with JSON formatting and noise suppression.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_json: Whether to use JSON formatting (True) or basic formatting (False)

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    handler = logging.StreamHandler()

    if use_json:
        formatter = JsonFormatter()
        handler.addFilter(RateLimitFilter())
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    _suppress_library_noise()

    return root_logger


def _suppress_library_noise():
    """Suppress verbose logging from third-party libraries."""
    library_levels = {
        'urllib3': logging.WARNING,
        'httpx': logging.WARNING,
        'httpcore': logging.WARNING,
        'openai': logging.WARNING,
    }

    for library, level in library_levels.items():
        logging.getLogger(library).setLevel(level)


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (defaults to calling module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
