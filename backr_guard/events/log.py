"""
Event Log — Append-only, hash-chained record of observable policy events.

Every role change, policy configuration, approval and breaker transition is
appended here so that external monitors (an indexer, an audit job) can follow
the engine without reading its internal maps.

The log provides:
- Append with automatic hash chain computation
- Chain verification (tamper detection on a dumped log)
- Filtered, paginated queries by event name, time range and arguments
- JSON Lines dump/load for off-process auditing
- In-process subscribers notified after each append
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from backr_guard.policy.schema import EventName, GuardEvent

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64  # previous_hash of the first event

Subscriber = Callable[[GuardEvent], None]


class EventLogIntegrityError(Exception):
    """Raised when a dumped event log cannot be parsed."""
    pass


class EventLog:
    """
    In-memory append-only event log.

    Usage:
        log = EventLog()
        log.emit(EventName.ROLE_GRANTED, timestamp=now, role=role, account=addr)
        events, total = log.query(event_name=EventName.ROLE_GRANTED, limit=10)
    """

    def __init__(self, events: Iterable[GuardEvent] | None = None) -> None:
        self._events: list[GuardEvent] = list(events or [])
        self._subscribers: list[Subscriber] = []
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def head_hash(self) -> str:
        """Hash of the most recent event, or the genesis hash when empty."""
        with self._lock:
            return self._events[-1].entry_hash if self._events else GENESIS_HASH

    def emit(self, event_name: EventName, timestamp: float, **args: Any) -> GuardEvent:
        """
        Append a new event. This is the only write operation.

        Subscribers are called after the event is stored and outside the log
        lock. A failing subscriber is logged and skipped; it never fails the
        emitting component, whose state change has already been applied.
        """
        with self._lock:
            event = GuardEvent(
                sequence_number=len(self._events),
                event_name=event_name,
                timestamp=timestamp,
                args=args,
                previous_hash=self.head_hash,
            )
            event.entry_hash = event.compute_hash()
            self._events.append(event)
            subscribers = list(self._subscribers)

        logger.debug(
            "Event appended: seq=%d name=%s hash=%s",
            event.sequence_number, event_name.value, event.entry_hash[:16],
        )
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed: seq=%d name=%s subscriber=%r",
                    event.sequence_number, event_name.value, callback,
                )
        return event

    def subscribe(self, callback: Subscriber) -> None:
        """Register a callback invoked with every appended event."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.remove(callback)

    # ── Queries ─────────────────────────────────────────────────

    def get_events(
        self,
        event_name: EventName | None = None,
        limit: int = 100,
    ) -> list[GuardEvent]:
        """Most recent events first, optionally filtered by name."""
        with self._lock:
            matches = [
                e for e in reversed(self._events)
                if event_name is None or e.event_name == event_name
            ]
        return matches[:limit]

    def query(
        self,
        event_name: EventName | None = None,
        from_timestamp: float | None = None,
        to_timestamp: float | None = None,
        parameters: dict[str, Any] | None = None,
        sort: str = "asc",
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[GuardEvent], int]:
        """
        Filter events and paginate the result.

        Args:
            event_name: Only events with this name.
            from_timestamp: Inclusive lower bound on event timestamp.
            to_timestamp: Inclusive upper bound on event timestamp.
            parameters: Exact matches against event arguments.
            sort: "asc" or "desc" by sequence number.
            limit: Maximum events returned (None for all).
            offset: Matches skipped before collecting results.

        Returns:
            Tuple of (events, total) where total counts every match before
            pagination.
        """
        if sort not in ("asc", "desc"):
            raise ValueError(f"sort must be 'asc' or 'desc', got {sort!r}")

        with self._lock:
            matches = [e for e in self._events if self._matches(
                e, event_name, from_timestamp, to_timestamp, parameters or {},
            )]

        if sort == "desc":
            matches.reverse()
        total = len(matches)
        end = None if limit is None else offset + limit
        return matches[offset:end], total

    @staticmethod
    def _matches(
        event: GuardEvent,
        event_name: EventName | None,
        from_timestamp: float | None,
        to_timestamp: float | None,
        parameters: dict[str, Any],
    ) -> bool:
        if event_name is not None and event.event_name != event_name:
            return False
        if from_timestamp is not None and event.timestamp < from_timestamp:
            return False
        if to_timestamp is not None and event.timestamp > to_timestamp:
            return False
        return all(event.args.get(k) == v for k, v in parameters.items())

    # ── Integrity ───────────────────────────────────────────────

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Walk every event from the first forward, recomputing each hash.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        with self._lock:
            events = list(self._events)

        previous = GENESIS_HASH
        for i, event in enumerate(events):
            if event.sequence_number != i:
                return (
                    False, i,
                    f"Sequence gap at position {i}: found {event.sequence_number}",
                )
            if event.previous_hash != previous:
                return (
                    False, i,
                    f"Chain break at sequence {event.sequence_number}: "
                    f"previous_hash does not match prior event's hash",
                )
            expected = event.compute_hash()
            if event.entry_hash != expected:
                return (
                    False, i,
                    f"Hash mismatch at sequence {event.sequence_number}: "
                    f"stored={event.entry_hash[:16]}... computed={expected[:16]}...",
                )
            previous = event.entry_hash

        return True, len(events), f"Chain verified: {len(events)} events, integrity intact"

    # ── Persistence ─────────────────────────────────────────────

    def dump(self, path: str | Path) -> int:
        """Write the log as JSON Lines. Returns the number of events written."""
        with self._lock:
            events = list(self._events)
        with open(path, "w", encoding="utf-8") as fh:
            for event in events:
                fh.write(event.model_dump_json() + "\n")
        logger.info("Event log dumped: path=%s events=%d", path, len(events))
        return len(events)

    @classmethod
    def load(cls, path: str | Path) -> EventLog:
        """Read a JSON Lines dump. Does not verify the chain."""
        events = []
        with open(path, encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                if not line.strip():
                    continue
                try:
                    events.append(GuardEvent.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError) as e:
                    raise EventLogIntegrityError(
                        f"Malformed event at line {lineno}: {e}"
                    ) from e
        return cls(events)
