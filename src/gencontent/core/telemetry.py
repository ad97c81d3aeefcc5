"""
Structured telemetry for disk synchronization.
[CTX:PBI-1:1-6:TELEM]

This module records one event per synchronization decision, which is useful
for understanding:
- Which files a run actually wrote and which it left untouched
- Files protected by overwrite=False
- Files and directories removed from clean targets
"""
import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class TelemetryLevel(Enum):
    """Telemetry verbosity levels."""
    INFO = "info"
    DEBUG = "debug"


class SyncAction(Enum):
    """Synchronizer decision types."""
    CREATE = "create"          # File did not exist and was written
    UPDATE = "update"          # File existed with other content and was replaced
    UNCHANGED = "unchanged"    # File existed with identical content, not touched
    PROTECTED = "protected"    # File existed and overwrite=False, not touched
    DELETE = "delete"          # Undeclared file removed from a clean target
    REMOVE_DIR = "remove_dir"  # Empty directory removed from a clean target


_CHANGING_ACTIONS = {
    SyncAction.CREATE.value,
    SyncAction.UPDATE.value,
    SyncAction.DELETE.value,
    SyncAction.REMOVE_DIR.value,
}


@dataclass
class SyncEvent:
    """
    A single synchronization decision.

    Attributes:
        timestamp: ISO 8601 timestamp of event
        target: Target name
        output_root: Output root directory
        path: Path relative to output_root
        action: SyncAction value
        size_bytes: Bytes written (0 for skips and deletions)
    """
    timestamp: str
    target: str
    output_root: str
    path: str
    action: str
    size_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for logging."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def to_keyvalue(self) -> str:
        """Convert event to key=value format."""
        return " ".join(f"{key}={value}" for key, value in self.to_dict().items())


@dataclass
class SyncStats:
    """
    Aggregated statistics over recorded events.

    Useful for tests and runtime monitoring.
    """
    total_events: int = 0
    bytes_written: int = 0
    actions_by_type: Dict[str, int] = field(default_factory=dict)
    events_by_target: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary."""
        return {
            "total_events": self.total_events,
            "bytes_written": self.bytes_written,
            "actions_by_type": dict(self.actions_by_type),
            "events_by_target": dict(self.events_by_target),
        }


class TelemetryRecorder:
    """
    Records and emits structured telemetry for synchronizer operations.

    Features:
    - Structured logging in JSON or key=value format
    - Configurable verbosity (info/debug)
    - Optional in-memory statistics collection
    - Thread-safe operation
    """

    def __init__(
        self,
        level: TelemetryLevel = TelemetryLevel.INFO,
        format_json: bool = True,
        collect_stats: bool = False
    ):
        """
        Initialize telemetry recorder.

        Args:
            level: Logging verbosity level
            format_json: If True, log as JSON; otherwise use key=value
            collect_stats: If True, collect in-memory statistics
        """
        self.level = level
        self.format_json = format_json
        self.collect_stats = collect_stats

        self._stats = SyncStats()
        self._stats_lock = threading.Lock()

        self._events: List[SyncEvent] = []
        self._events_lock = threading.Lock()

    def record(self, event: SyncEvent) -> None:
        """
        Record a synchronization event.

        Args:
            event: Event to record
        """
        if self.format_json:
            log_message = event.to_json()
        else:
            log_message = event.to_keyvalue()

        # Skips are only interesting when debugging
        if self.level == TelemetryLevel.INFO and event.action in _CHANGING_ACTIONS:
            logger.info(log_message)
        else:
            logger.debug(log_message)

        if self.collect_stats:
            with self._stats_lock:
                self._stats.total_events += 1
                self._stats.bytes_written += event.size_bytes
                self._stats.actions_by_type[event.action] = (
                    self._stats.actions_by_type.get(event.action, 0) + 1
                )
                self._stats.events_by_target[event.target] = (
                    self._stats.events_by_target.get(event.target, 0) + 1
                )

        with self._events_lock:
            self._events.append(event)

    def get_stats(self) -> SyncStats:
        """Get current statistics snapshot."""
        with self._stats_lock:
            return SyncStats(
                total_events=self._stats.total_events,
                bytes_written=self._stats.bytes_written,
                actions_by_type=self._stats.actions_by_type.copy(),
                events_by_target=self._stats.events_by_target.copy(),
            )

    def reset_stats(self) -> None:
        """Reset statistics."""
        with self._stats_lock:
            self._stats = SyncStats()

    def get_events(self) -> List[SyncEvent]:
        """Get all recorded events (for testing)."""
        with self._events_lock:
            return self._events.copy()

    def clear_events(self) -> None:
        """Clear event history."""
        with self._events_lock:
            self._events.clear()


# [CTX:PBI-1:1-6:TELEM] Global telemetry recorder instance
_global_recorder: Optional[TelemetryRecorder] = None
_recorder_lock = threading.Lock()


def get_recorder() -> TelemetryRecorder:
    """
    Get the global telemetry recorder instance.

    Creates a default recorder if none exists.
    """
    global _global_recorder

    if _global_recorder is None:
        with _recorder_lock:
            if _global_recorder is None:
                _global_recorder = TelemetryRecorder()

    return _global_recorder


def set_recorder(recorder: TelemetryRecorder) -> None:
    """
    Set the global telemetry recorder instance.

    Args:
        recorder: Recorder instance to use globally
    """
    global _global_recorder

    with _recorder_lock:
        _global_recorder = recorder


def create_event(
    target: str,
    output_root: str,
    path: str,
    action: SyncAction,
    size_bytes: int = 0,
) -> SyncEvent:
    """
    Helper to create a sync event with current timestamp.

    Args:
        target: Target name
        output_root: Output root directory
        path: Path relative to output_root
        action: Synchronizer decision
        size_bytes: Bytes written

    Returns:
        SyncEvent ready for recording
    """
    return SyncEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        target=target,
        output_root=str(output_root),
        path=path,
        action=action.value,
        size_bytes=size_bytes,
    )
