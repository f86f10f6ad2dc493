"""
Event Logger Module

Records what happened to every file handed to the decipher engine.

Features:
- Start, format detection, rejection, success and failure events
- Path-hashed records (SHA-256) so logs can be shared without full paths
- Callbacks for live observers (the CLI counts failures this way)
- JSON export/import of the event history
"""

import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

EVENT_VERSION = "1.0"
PATH_HASH_LENGTH = 16


def get_path_hash(path: str) -> str:
    """
    Compute a short SHA-256 identifier of a file path.

    Args:
        path: File path

    Returns:
        First 16 hex characters of the SHA-256 of the absolute path
    """
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8"))
    return digest.hexdigest()[:PATH_HASH_LENGTH]


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """Types of decipher events that can be logged."""

    DECIPHER_START = "decipher_start"
    FORMAT_DETECTED = "format_detected"
    FORMAT_REJECTED = "format_rejected"
    DECIPHER_SUCCESS = "decipher_success"
    DECIPHER_FAILED = "decipher_failed"
    INTEGRITY_FAILED = "integrity_failed"


# Event types counted as failures when summarizing a run
FAILURE_TYPES = (EventType.DECIPHER_FAILED, EventType.INTEGRITY_FAILED)


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class DecipherEvent:
    """A single decipher event."""
    event_type: EventType
    path_hash: str
    name: str
    timestamp: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize the event to a compact JSON line."""
        return json.dumps({
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'path': self.path_hash,
            'name': self.name,
            'time': self.timestamp,
            'details': self.details,
        }, separators=(',', ':'))

    @classmethod
    def from_json(cls, line: str) -> 'DecipherEvent':
        """Parse an event from its JSON form."""
        data = json.loads(line)
        return cls(
            event_type=EventType(data['type']),
            path_hash=data['path'],
            name=data['name'],
            timestamp=data['time'],
            details=data.get('details', {}),
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | "
            f"{self.name} ({self.path_hash[:8]})"
        )


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    In-memory log of decipher events.

    Every event is also forwarded to the standard ``logging`` module.
    """

    def __init__(self, max_events: Optional[int] = None):
        """
        Initialize the event logger.

        Args:
            max_events: Keep at most this many events (None for unbounded)
        """
        self._events: List[DecipherEvent] = []
        self._max_events = max_events
        self._callbacks: List[Callable[[DecipherEvent], None]] = []

    def _add_event(self, event: DecipherEvent) -> None:
        self._events.append(event)
        if self._max_events is not None and len(self._events) > self._max_events:
            del self._events[:len(self._events) - self._max_events]

        level = logging.WARNING if event.event_type in FAILURE_TYPES else logging.DEBUG
        logger.log(level, "%s", event)

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("event callback failed for %s", event.event_type.value)

    def add_callback(self, callback: Callable[[DecipherEvent], None]) -> None:
        """Add a callback to be notified of new events."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[DecipherEvent], None]) -> None:
        """Remove a callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def log(self, event_type: EventType, path: str, **details: Any) -> DecipherEvent:
        """
        Log an event for a file.

        Args:
            event_type: What happened
            path: The file concerned (stored hashed, plus its base name)
            details: Extra JSON-serializable fields

        Returns:
            The logged event
        """
        event = DecipherEvent(
            event_type=event_type,
            path_hash=get_path_hash(path),
            name=os.path.basename(path),
            timestamp=time.time(),
            details=details,
        )
        self._add_event(event)
        return event

    # ========================================================================
    # Retrieval
    # ========================================================================

    def get_all_events(self) -> List[DecipherEvent]:
        return list(self._events)

    def get_events_by_type(self, event_type: EventType) -> List[DecipherEvent]:
        """Get all events of a specific type."""
        return [e for e in self._events if e.event_type == event_type]

    def get_file_events(self, path: str) -> List[DecipherEvent]:
        """Get all events recorded for one file."""
        path_hash = get_path_hash(path)
        return [e for e in self._events if e.path_hash == path_hash]

    def summary(self) -> Dict[str, int]:
        """
        Count outcomes.

        Returns:
            Dict with 'started', 'succeeded', 'rejected' and 'failed' counts
        """
        return {
            'started': len(self.get_events_by_type(EventType.DECIPHER_START)),
            'succeeded': len(self.get_events_by_type(EventType.DECIPHER_SUCCESS)),
            'rejected': len(self.get_events_by_type(EventType.FORMAT_REJECTED)),
            'failed': sum(
                len(self.get_events_by_type(t)) for t in FAILURE_TYPES
            ),
        }

    def export_log(self) -> str:
        """Export all events as JSON lines."""
        return "\n".join(e.to_json() for e in self._events)

    @classmethod
    def import_log(cls, text: str) -> 'EventLogger':
        """Rebuild a logger from exported JSON lines."""
        event_logger = cls()
        for line in text.splitlines():
            if line.strip():
                event_logger._events.append(DecipherEvent.from_json(line))
        return event_logger


def create_event_logger(max_events: Optional[int] = None) -> EventLogger:
    """Create a new event logger."""
    return EventLogger(max_events=max_events)
