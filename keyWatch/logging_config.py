"""
Centralized logging configuration for keyWatch.

Provides structured JSONL logging with rotation, context injection,
and component-specific loggers. Enabled by default with environment
variable configuration.

Pass ID Propagation:
    Every collection pass sets a pass ID with `set_pass_id()`. The ID is
    carried through contextvars, so every record logged while the pass
    runs (query, decode, emit) can be correlated afterwards.

    Example:
        from keyWatch.logging_config import set_pass_id, reset_pass_id

        token = set_pass_id(uuid.uuid4().hex)
        try:
            logger.info("Querying", extra={"domain": "ietf.org"})
            # Log will include: "pass_id": "<hex>"
        finally:
            reset_pass_id(token)
"""
import contextvars
import json
import logging
import logging.handlers
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional


_pass_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "pass_id", default=""
)


def set_pass_id(pass_id: str) -> contextvars.Token:
    """
    Set the current collection pass ID for this async context.

    Args:
        pass_id: The pass ID to set

    Returns:
        Token that can be used to reset the context variable
    """
    return _pass_id_var.set(pass_id)


def get_pass_id() -> str:
    """Return the current pass ID, or empty string if not set."""
    return _pass_id_var.get()


def reset_pass_id(token: contextvars.Token) -> None:
    _pass_id_var.reset(token)


class JSONLFormatter(logging.Formatter):
    """
    Formatter that outputs logs in JSON Lines format.
    Each log entry is a single-line JSON object with standardized fields.
    Automatically includes pass_id from contextvars if set.
    """

    # Structured attributes collector code passes through `extra=`
    EXTRA_ATTRS = (
        "pass_id", "domain", "server", "keytag", "algorithm", "key_type",
        "duration", "outcome", "state", "error_type", "rcode", "records",
        "domains", "resolvers", "timeout", "stream_type", "probe_id",
        "action", "component", "config_path",
    )

    def __init__(self, component: str = "keywatch"):
        super().__init__()
        self.component = component
        self.hostname = os.getenv("HOSTNAME", os.getenv("COMPUTERNAME", "unknown"))

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "component": self.component,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self.hostname,
            "process_id": record.process,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        pass_id = get_pass_id()
        if pass_id:
            log_data["pass_id"] = pass_id

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        for attr in self.EXTRA_ATTRS:
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        return json.dumps(log_data, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """
    Logger adapter that injects a fixed context into every record,
    e.g. the server a subscriber is attached to.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    component: str = "keywatch",
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: int = 10,
    enable_console: bool = True,
) -> logging.Logger:
    """
    Set up logging configuration for a keyWatch component.

    Args:
        component: Component name (collector, query, stream, metrics, ...)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (default: logs/keywatch.jsonl)
        max_bytes: Max bytes per log file before rotation (default: 50MB)
        backup_count: Number of backup files to keep (default: 10)
        enable_console: Whether to enable console logging (default: True)

    Returns:
        Configured logger instance
    """
    log_level = (log_level or os.getenv("KEYWATCH_LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("KEYWATCH_LOG_FILE", "logs/keywatch.jsonl")
    max_bytes = max_bytes or int(os.getenv("KEYWATCH_LOG_MAX_BYTES", str(50 * 1024 * 1024)))

    numeric_level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(f"keywatch.{component}")
    logger.setLevel(numeric_level)
    logger.propagate = False

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    formatter = JSONLFormatter(component=component)

    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        # If we can't write to file, log to stderr
        sys.stderr.write(f"Failed to set up file logging to {log_file}: {e}\n")

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(console_handler)

    logger.debug(
        "Logging configured",
        extra={"state": "configured", "component": component},
    )

    return logger


def get_logger(component: str, context: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """
    Get or create a logger for a component with optional context.

    Returns a ContextAdapter when context is provided.
    """
    logger = logging.getLogger(f"keywatch.{component}")

    if not logger.handlers:
        logger = setup_logging(component)

    if context:
        return ContextAdapter(logger, context)

    return logger
