"""
ZSP Operation Log

Structured log of engine operations for debugging and analytics.
Entries are kept in an in-memory buffer and, when a log directory is
configured, appended to a JSON Lines file with size-based rotation.
"""

import gzip
import json
import threading
import time
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

MAX_LOG_FILE_SIZE = 50 * 1024 * 1024  # 50MB before rotation
MAX_ROTATED_FILES = 10
MAX_PARAM_VALUE_LENGTH = 256


def _summarize(value: Any) -> Any:
    """Keep parameters JSON-friendly and short."""
    if isinstance(value, (bool, int, float)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): _summarize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_summarize(v) for v in value]
    text = str(value)
    return text if len(text) <= MAX_PARAM_VALUE_LENGTH else text[:MAX_PARAM_VALUE_LENGTH] + "..."


@dataclass
class OperationLogEntry:
    """
    A single operation log entry.
    """
    operation_id: str
    operation: str
    timestamp: str
    timestamp_unix: float

    parameters: Dict[str, Any] = field(default_factory=dict)
    result_id: Optional[str] = None
    latency_ms: float = 0.0
    success: bool = True
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(',', ':'))


class TrackedOperation:
    """Handle yielded by OperationLog.track(); set result_id before leaving."""

    def __init__(self, operation: str, parameters: Dict[str, Any]):
        self.operation = operation
        self.parameters = parameters
        self.result_id: Optional[str] = None


class OperationLog:
    """
    Thread-safe operation log with optional file persistence.

    Features:
    - In-memory buffer of recent entries
    - JSON Lines file under log_dir when configured
    - Rotation when the file exceeds max_file_size, gzip-compressed
    - Write failures are counted, never raised into the operation
    """

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        max_file_size: int = MAX_LOG_FILE_SIZE,
        max_rotated_files: int = MAX_ROTATED_FILES,
        compress_rotated: bool = True,
        buffer_size: int = 1000,
        enabled: bool = True,
    ):
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_file = self.log_dir / "operations.jsonl" if self.log_dir else None
        self.max_file_size = max_file_size
        self.max_rotated_files = max_rotated_files
        self.compress_rotated = compress_rotated
        self.enabled = enabled

        self._lock = threading.Lock()
        self._buffer: "deque[OperationLogEntry]" = deque(maxlen=buffer_size)
        self._stats = {
            "total_logged": 0,
            "failed_operations": 0,
            "write_errors": 0,
            "rotations": 0,
        }

        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # Files
    # =========================================================================

    def _should_rotate(self) -> bool:
        return self.log_file.exists() and self.log_file.stat().st_size >= self.max_file_size

    def _rotate_log(self) -> None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        if self.compress_rotated:
            rotated_path = self.log_dir / f"operations_{timestamp}.jsonl.gz"
            with open(self.log_file, 'rb') as f_in:
                with gzip.open(rotated_path, 'wb') as f_out:
                    f_out.writelines(f_in)
            self.log_file.unlink()
        else:
            self.log_file.rename(self.log_dir / f"operations_{timestamp}.jsonl")

        rotated = sorted(self._rotated_files(), key=lambda p: p.stat().st_mtime, reverse=True)
        for old_file in rotated[self.max_rotated_files:]:
            old_file.unlink(missing_ok=True)
        self._stats["rotations"] += 1

    def _rotated_files(self) -> List[Path]:
        return list(self.log_dir.glob("operations_*.jsonl*")) if self.log_dir else []

    # =========================================================================
    # Logging
    # =========================================================================

    def log(self, entry: OperationLogEntry) -> None:
        """Record an entry. Thread-safe; rotates the file when needed."""
        if not self.enabled:
            return

        with self._lock:
            self._buffer.append(entry)
            self._stats["total_logged"] += 1
            if not entry.success:
                self._stats["failed_operations"] += 1

            if self.log_file is None:
                return
            try:
                if self._should_rotate():
                    self._rotate_log()
                with open(self.log_file, 'a') as f:
                    f.write(entry.to_json() + '\n')
            except OSError:
                # Logging must not fail the operation being logged
                self._stats["write_errors"] += 1

    @contextmanager
    def track(self, operation: str, **parameters) -> Iterator[TrackedOperation]:
        """
        Time an operation and log it on exit, including failures.

            with oplog.track("generate_pattern", spec_id=spec_id) as op:
                ...
                op.result_id = pattern_id
        """
        tracked = TrackedOperation(operation, _summarize(parameters))
        start = time.time()
        error: Optional[BaseException] = None
        try:
            yield tracked
        except Exception as e:
            error = e
            raise
        finally:
            self.log(OperationLogEntry(
                operation_id=uuid.uuid4().hex[:12],
                operation=operation,
                timestamp=datetime.fromtimestamp(start).isoformat(),
                timestamp_unix=start,
                parameters=tracked.parameters,
                result_id=tracked.result_id,
                latency_ms=round((time.time() - start) * 1000, 3),
                success=error is None,
                error_type=type(error).__name__ if error else None,
                error_message=str(error) if error else None,
            ))

    # =========================================================================
    # Reading
    # =========================================================================

    def get_recent(self, count: int = 100) -> List[OperationLogEntry]:
        """Get recent entries from the in-memory buffer."""
        with self._lock:
            entries = list(self._buffer)
        return entries[-count:]

    def query(
        self,
        operation: Optional[str] = None,
        success: Optional[bool] = None,
        min_latency_ms: Optional[float] = None,
        limit: int = 1000,
        include_rotated: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Query logged operations.

        Reads the log file (and rotated files when asked) if persistence is
        on, otherwise the in-memory buffer.

        Args:
            operation: Filter by operation name
            success: Filter by outcome
            min_latency_ms: Filter by minimum latency
            limit: Maximum entries to return
            include_rotated: Include rotated (older) log files

        Returns:
            List of matching entries as dicts
        """
        def matches(entry: Dict[str, Any]) -> bool:
            if operation and entry.get("operation") != operation:
                return False
            if success is not None and entry.get("success") != success:
                return False
            if min_latency_ms and entry.get("latency_ms", 0) < min_latency_ms:
                return False
            return True

        if self.log_file is None:
            with self._lock:
                buffered = [e.to_dict() for e in self._buffer]
            return [e for e in buffered if matches(e)][:limit]

        results: List[Dict[str, Any]] = []
        files_to_search = [self.log_file] if self.log_file.exists() else []
        if include_rotated:
            files_to_search.extend(
                sorted(self._rotated_files(), key=lambda p: p.stat().st_mtime, reverse=True)
            )

        with self._lock:
            for log_path in files_to_search:
                opener = gzip.open if log_path.suffix == '.gz' else open
                with opener(log_path, 'rt') as f:
                    for line in f:
                        try:
                            entry = json.loads(line)
                        except json.JSONDecodeError:
                            continue
                        if matches(entry):
                            results.append(entry)
                            if len(results) >= limit:
                                return results
        return results

    def get_stats(self) -> Dict[str, Any]:
        """Logging statistics plus per-operation counts from the buffer."""
        with self._lock:
            stats = dict(self._stats)
            stats["buffer_size"] = len(self._buffer)
            per_operation: Dict[str, int] = {}
            latency = 0.0
            for entry in self._buffer:
                per_operation[entry.operation] = per_operation.get(entry.operation, 0) + 1
                latency += entry.latency_ms
            stats["operations"] = per_operation
            stats["avg_latency_ms"] = round(latency / len(self._buffer), 3) if self._buffer else 0.0
            stats["log_file"] = str(self.log_file) if self.log_file else None
            stats["rotated_files"] = len(self._rotated_files())
        return stats

    def clear(self, include_rotated: bool = False) -> None:
        """Clear the buffer and the log file."""
        with self._lock:
            self._buffer.clear()
            if self.log_file is not None:
                self.log_file.unlink(missing_ok=True)
                if include_rotated:
                    for rotated in self._rotated_files():
                        rotated.unlink(missing_ok=True)
            self._stats["total_logged"] = 0
            self._stats["failed_operations"] = 0
