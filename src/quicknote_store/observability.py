"""Logging setup and operation metrics for the QuickNote store.

Backup exports and imports are the long-running operations of the store.
They are wrapped with traced(), which logs START/END lines sharing a short
correlation id and feeds per-operation counters (calls, failures, timings
and the number of notes each call handled) into the process-wide
``metrics`` collector.
"""
import functools
import json
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".quicknote" / "logs"
LOG_FILE_NAME = "quicknote.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Every module logger lives under this name
PACKAGE_LOGGER = "quicknote_store"

F = TypeVar("F", bound=Callable[..., Any])

_logging_configured = False


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: Union[int, str] = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Send the package's log records to a rotating file.

    Calling this again with the same directory does not add a second file
    handler.

    Args:
        log_dir: Directory for quicknote.log. Defaults to ~/.quicknote/logs/
        level: Level for the package logger and its handlers
        max_bytes: Size at which the log file is rotated
        backup_count: Rotated files to keep
        console: Also log to stderr

    Returns:
        The log directory
    """
    global _logging_configured

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = (log_path / LOG_FILE_NAME).resolve()

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    has_file_handler = any(
        isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_file
        for h in package_logger.handlers
    )
    if not has_file_handler:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    has_console = any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    )
    if console and not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    _logging_configured = True
    package_logger.info(f"Logging to {log_file} (rotate at {max_bytes} bytes, keep {backup_count})")
    return log_path


def is_logging_configured() -> bool:
    return _logging_configured


@dataclass
class OperationMetrics:
    """Counters for one operation name."""

    count: int = 0
    success_count: int = 0
    error_count: int = 0
    items_processed: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        avg = self.total_duration_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "items_processed": self.items_processed,
            "avg_duration_ms": round(avg, 2),
            "min_duration_ms": round(self.min_duration_ms or 0.0, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "last_error": self.last_error,
            "last_error_time": (
                self.last_error_time.isoformat() if self.last_error_time else None
            ),
        }


class MetricsCollector:
    """Thread-safe per-operation counters.

    Metrics stay in memory unless a metrics file is given, in which case
    save_metrics() writes them out as JSON.
    """

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._metrics: Dict[str, OperationMetrics] = {}
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else None

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        items: int = 0,
    ) -> None:
        """Add one call of an operation.

        Args:
            operation: Operation name, e.g. 'import_from_archive'
            duration_ms: Wall time of the call
            success: Whether the call returned normally
            error: Error text when it raised
            items: Notes (or records) the call handled
        """
        with self._lock:
            m = self._metrics.setdefault(operation, OperationMetrics())
            m.count += 1
            m.items_processed += items
            m.total_duration_ms += duration_ms
            m.min_duration_ms = (
                duration_ms if m.min_duration_ms is None else min(m.min_duration_ms, duration_ms)
            )
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)
            if success:
                m.success_count += 1
            else:
                m.error_count += 1
                m.last_error = error
                m.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {op: m.to_dict() for op, m in self._metrics.items()}

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)

    def save_metrics(self) -> bool:
        """Write metrics to the configured file.

        Returns:
            True if saved, False when no file is configured or writing failed.
        """
        if self._metrics_file is None:
            return False
        data = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": self.get_metrics(),
        }
        temp_file = self._metrics_file.with_suffix(".tmp")
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_file.replace(self._metrics_file)
            return True
        except OSError as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context) -> Iterator[Dict[str, Any]]:
    """Time a block, log its start and end, and record it in ``metrics``.

    The yielded dict collects result details for the END line. An ``items``
    entry is also added to the operation's items_processed counter.

    Example:
        with timed_operation("import_from_archive", path=path) as op:
            result = merge()
            op["items"] = result.total_processed
    """
    correlation_id = uuid.uuid4().hex[:8]
    info: Dict[str, Any] = {}
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    start = time.perf_counter()
    error = None
    try:
        yield info
    except Exception as e:
        error = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        metrics.record_operation(
            operation,
            duration_ms,
            error is None,
            error,
            items=int(info.get("items", 0)),
        )
        status = "OK" if error is None else f"ERROR: {error}"
        details = ", ".join(f"{k}={v}" for k, v in info.items())
        logger.debug(f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) [{status}] {details}")


def _describe_result(result: Any, info: Dict[str, Any]) -> None:
    """Copy the interesting parts of an operation's return value into info."""
    if result is None:
        return
    if isinstance(result, Path):
        info["file"] = result.name
    elif hasattr(result, "total_processed"):
        info["items"] = result.total_processed
        info["created"] = result.created
        info["updated"] = result.updated
        info["skipped"] = result.skipped
        info["errors"] = len(result.errors)
    elif hasattr(result, "note_count"):
        info["items"] = result.note_count
    elif hasattr(result, "__len__"):
        info["items"] = len(result)


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator running a function inside timed_operation.

    A ``path`` or ``file_name`` keyword argument is logged with the START
    line. Import results, archive paths and note lists are summarised on
    the END line.

    Args:
        operation_name: Metrics key. Defaults to the function name.
    """

    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {k: kwargs[k] for k in ("path", "file_name") if kwargs.get(k)}
            with timed_operation(op_name, **context) as info:
                result = func(*args, **kwargs)
                _describe_result(result, info)
                return result

        return wrapper  # type: ignore

    return decorator
