"""
Stakecourt Event Infrastructure

Typed notifications for the staking and arbitration engine. Every state
change on a stake account or the voting engine is announced as an immutable
event, published synchronously on an EventBus and appended to an
append-only EventStore stream keyed by the emitting address.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          EVENT INFRASTRUCTURE                            │
    │                                                                          │
    │  Event Bus                  Event Store                                  │
    │  ├─ Typed events            ├─ Append-only                               │
    │  ├─ Priorities              ├─ Streams per address                       │
    │  ├─ Filters                 ├─ Optimistic concurrency                    │
    │  └─ Handler isolation       └─ Global ordering                           │
    │                                                                          │
    │  Stake Events               Claim Events          Voting Events          │
    │  ├─ StakeInitialized        ├─ ClaimOpened        ├─ VoteCommitted       │
    │  ├─ ClaimantWhitelisted     ├─ SettlementFailed   ├─ VoteRevealed        │
    │  ├─ StakeIncreased          └─ ClaimRuled         └─ ClaimResolved       │
    │  ├─ WithdrawInitiated                                                    │
    │  └─ StakeWithdrawn                                                       │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Ordering: events within a stream keep the order in which the operations
completed. A failing handler never affects the emitting operation; the
failure is counted and reported through ``on_error``.

Usage
─────

    from stakecourt.events import ClaimOpened, get_event_bus

    bus = get_event_bus()

    @bus.subscribe(ClaimOpened)
    def handle_claim(event: ClaimOpened):
        print(f"Claim {event.claim_id} opened on {event.stake}")

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import logging
import json
import threading
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Type,
)

from stakecourt.identity import canonicalize

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all events in the system.

    Events are immutable facts representing something that happened.
    Each event has a unique ID, timestamp, and optional metadata.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        """Get the event type name."""
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Deserialize event from dictionary."""
        data = data.copy()
        data.pop("event_type", None)
        return cls(**data)

    def to_json(self) -> str:
        """Serialize event to JSON for display/transport (not for digest computation)."""
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def digest(self) -> str:
        """Deterministic digest of event content over canonical JSON."""
        return hashlib.sha256(canonicalize(self.to_dict())).hexdigest()


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class StakeInitialized(Event):
    """Stake account configured and funded."""
    stake: str = ""
    staker: str = ""
    token: str = ""
    arbiter: str = ""
    initial_stake: int = 0
    lockup_period: int = 0


@dataclass
class ClaimantWhitelisted(Event):
    """Staker authorized a claimant to open claims."""
    stake: str = ""
    claimant: str = ""


@dataclass
class StakeIncreased(Event):
    """Staker topped up the claimable stake."""
    stake: str = ""
    amount: int = 0
    claimable_stake: int = 0


@dataclass
class ClaimOpened(Event):
    """Claim opened against a stake; amount reserved and fee escrowed."""
    stake: str = ""
    claim_id: int = 0
    claimant: str = ""
    amount: int = 0
    fee: int = 0


@dataclass
class SettlementFailed(Event):
    """Off-protocol settlement declared failed; claim moves to arbitration."""
    stake: str = ""
    claim_id: int = 0
    declared_by: str = ""


@dataclass
class ClaimRuled(Event):
    """Arbiter ruling applied to a claim."""
    stake: str = ""
    claim_id: int = 0
    ruling: int = 0


@dataclass
class WithdrawInitiated(Event):
    """Staker requested withdrawal; lockup_ending is 0 while claims are open."""
    stake: str = ""
    lockup_ending: int = 0


@dataclass
class StakeWithdrawn(Event):
    """Claimable stake returned to the staker."""
    stake: str = ""
    amount: int = 0


@dataclass
class VoteCommitted(Event):
    """Arbiter committed (or re-committed) a secret vote."""
    claim_id: str = ""
    arbiter: str = ""


@dataclass
class VoteRevealed(Event):
    """Arbiter revealed a vote matching its commitment."""
    claim_id: str = ""
    arbiter: str = ""
    choice: int = 0


@dataclass
class ClaimResolved(Event):
    """Panel tally forwarded to the stake account as a ruling."""
    claim_id: str = ""
    stake: str = ""
    claim_number: int = 0
    ruling: int = 0
    accept_votes: int = 0
    reject_votes: int = 0


# ════════════════════════════════════════════════════════════════════════════
# EVENT HANDLER
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    """Registration for an event handler."""
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


class EventBus:
    """
    In-memory event bus for pub/sub communication.

    Supports typed subscriptions, filters and priorities. Handlers run
    synchronously in priority order. Thread-safe for concurrent publishing
    and subscribing.

    Example:
        bus = EventBus()

        @bus.subscribe(ClaimOpened, ClaimRuled)
        def handle_claim_events(event):
            print(f"Claim event: {event.event_type}")
    """

    def __init__(
        self,
        on_error: Optional[Callable[[EventHandlerError], None]] = None,
    ):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator to subscribe a handler to event types.

        Args:
            event_types: Event types to subscribe to (none = all events)
            priority: Handler priority (higher = earlier)
            filter_func: Optional filter function
        """
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
                filter_func=filter_func,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        """Unsubscribe a handler."""
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers."""
        with self._lock:
            self._published_count += 1
            handlers_to_call = []

            for registration in self._handlers:
                if not any(isinstance(event, t) for t in registration.event_types):
                    continue
                if registration.filter_func and not registration.filter_func(event):
                    continue
                handlers_to_call.append(registration)

        # Call handlers outside the lock
        for registration in handlers_to_call:
            self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        """Call a handler with error handling."""
        try:
            handler(event)
            with self._lock:
                self._handled_count += 1
        except Exception as e:
            with self._lock:
                self._error_count += 1
            error = EventHandlerError(event, handler, e)
            logger.warning("%s", error)
            if self._on_error:
                self._on_error(error)

    @property
    def metrics(self) -> Dict[str, int]:
        """Get event bus metrics."""
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }


# ════════════════════════════════════════════════════════════════════════════
# EVENT STORE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class EventRecord:
    """A persisted event record."""
    sequence_number: int
    event: Event
    stream_id: str
    version: int
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "sequence_number": self.sequence_number,
            "event": self.event.to_dict(),
            "stream_id": self.stream_id,
            "version": self.version,
            "recorded_at": self.recorded_at,
        }


class ConcurrencyError(Exception):
    """Optimistic concurrency violation."""
    def __init__(self, stream_id: str, expected: int, actual: int):
        self.stream_id = stream_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrency conflict on {stream_id}: expected version {expected}, actual {actual}"
        )


class EventStore:
    """
    Append-only event store.

    Events are organized into streams by emitting address (a stake account
    or a voting engine). The global log preserves cross-stream order.

    Example:
        store = EventStore()
        store.append("stake-001", [ClaimOpened(stake="stake-001", claim_id=0)])
        events = store.read_stream("stake-001")
    """

    def __init__(self):
        self._events: List[EventRecord] = []
        self._streams: Dict[str, List[EventRecord]] = {}
        self._sequence_number = 0
        self._lock = threading.RLock()

    def append(
        self,
        stream_id: str,
        events: List[Event],
        expected_version: Optional[int] = None,
    ) -> List[EventRecord]:
        """
        Append events to a stream.

        Raises:
            ConcurrencyError: If expected_version doesn't match
        """
        with self._lock:
            stream = self._streams.setdefault(stream_id, [])
            current_version = len(stream)

            if expected_version is not None and expected_version != current_version:
                raise ConcurrencyError(stream_id, expected_version, current_version)

            records = []
            for event in events:
                self._sequence_number += 1
                current_version += 1
                record = EventRecord(
                    sequence_number=self._sequence_number,
                    event=event,
                    stream_id=stream_id,
                    version=current_version,
                )
                self._events.append(record)
                stream.append(record)
                records.append(record)

            return records

    def read_stream(
        self,
        stream_id: str,
        from_version: int = 0,
        to_version: Optional[int] = None,
    ) -> List[Event]:
        """Read events from a stream."""
        with self._lock:
            if stream_id not in self._streams:
                return []

            stream = self._streams[stream_id]
            if to_version is None:
                to_version = len(stream)

            return [r.event for r in stream[from_version:to_version]]

    def read_all(
        self,
        from_position: int = 0,
        max_count: int = 1000,
    ) -> List[EventRecord]:
        """Read events from all streams."""
        with self._lock:
            return self._events[from_position:from_position + max_count]

    def get_stream_version(self, stream_id: str) -> int:
        """Get current version of a stream."""
        with self._lock:
            return len(self._streams.get(stream_id, []))

    def get_stream_ids(self) -> List[str]:
        """Get all stream IDs."""
        with self._lock:
            return list(self._streams.keys())

    @property
    def total_events(self) -> int:
        """Total number of events."""
        with self._lock:
            return len(self._events)


# ════════════════════════════════════════════════════════════════════════════
# EMITTER
# ════════════════════════════════════════════════════════════════════════════


class EventEmitter:
    """
    Records events for one address and publishes them.

    Events are appended to the address's stream before bus delivery, so the
    stream order always matches operation order even when a handler fails.
    """

    def __init__(
        self,
        stream_id: str,
        bus: Optional[EventBus] = None,
        store: Optional[EventStore] = None,
    ):
        self.stream_id = stream_id
        self.bus = bus if bus is not None else get_event_bus()
        self.store = store if store is not None else get_event_store()

    def emit(self, event: Event) -> Event:
        self.store.append(self.stream_id, [event])
        self.bus.publish(event)
        return event

    def history(self) -> List[Event]:
        return self.store.read_stream(self.stream_id)


# ════════════════════════════════════════════════════════════════════════════
# GLOBAL INSTANCES
# ════════════════════════════════════════════════════════════════════════════


_event_bus: Optional[EventBus] = None
_event_store: Optional[EventStore] = None
_global_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global event bus."""
    global _event_bus
    with _global_lock:
        if _event_bus is None:
            _event_bus = EventBus()
        return _event_bus


def get_event_store() -> EventStore:
    """Get the global event store."""
    global _event_store
    with _global_lock:
        if _event_store is None:
            _event_store = EventStore()
        return _event_store


def reset_event_infrastructure() -> None:
    """Drop the global bus and store (tests)."""
    global _event_bus, _event_store
    with _global_lock:
        _event_bus = None
        _event_store = None


# ════════════════════════════════════════════════════════════════════════════
# MODULE EXPORTS
# ════════════════════════════════════════════════════════════════════════════


__all__ = [
    # Base
    "Event",
    "EventHandler",
    "EventHandlerRegistration",
    "EventHandlerError",
    # Domain Events
    "StakeInitialized",
    "ClaimantWhitelisted",
    "StakeIncreased",
    "ClaimOpened",
    "SettlementFailed",
    "ClaimRuled",
    "WithdrawInitiated",
    "StakeWithdrawn",
    "VoteCommitted",
    "VoteRevealed",
    "ClaimResolved",
    # Event Bus
    "EventBus",
    # Event Store
    "EventRecord",
    "EventStore",
    "ConcurrencyError",
    # Emitter
    "EventEmitter",
    # Global
    "get_event_bus",
    "get_event_store",
    "reset_event_infrastructure",
]
