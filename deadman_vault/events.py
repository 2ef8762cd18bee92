"""
Append-only notification log consumed by observers of the vault core.

State-changing operations append events; observers read them by polling
(`EventLog.events`) or through a cursor-tracking `Subscription`. There are
no callbacks: the core never pushes into observer code.

Appends made inside `EventLog.batch()` are held back and published only when
the outermost batch exits cleanly, so a failed operation leaves no trace in
the log.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Tuple


class EventType(Enum):
    VAULT_CREATED = "VaultCreated"
    PINGED = "Pinged"
    DEPOSITED = "Deposited"
    WITHDRAWN = "Withdrawn"
    BENEFICIARY_SET = "BeneficiarySet"
    TIMEOUT_SET = "TimeoutSet"
    CLAIMED = "Claimed"
    CERTIFICATE_MINTED = "CertificateMinted"
    MINTER_AUTHORIZED = "MinterAuthorized"
    MINTER_REVOKED = "MinterRevoked"


@dataclass(frozen=True)
class Event:
    """Immutable notification emitted by a committed operation"""
    sequence: int
    type: EventType
    entity_id: str
    timestamp: int
    data: Mapping[str, Any]

    def to_dict(self) -> dict:
        return {
            'sequence': self.sequence,
            'type': self.type.value,
            'entity_id': self.entity_id,
            'timestamp': self.timestamp,
            'data': dict(self.data),
        }


class EventLog:
    """Ordered, gap-free event log shared by all core components"""

    def __init__(self):
        self._events: List[Event] = []
        self._lock = threading.Lock()
        self._local = threading.local()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def append(self, event_type: EventType, entity_id: str, timestamp: int, /, **data) -> None:
        pending = (event_type, entity_id, timestamp, MappingProxyType(dict(data)))

        if getattr(self._local, 'depth', 0):
            self._local.buffer.append(pending)
        else:
            self._publish([pending])

    @contextmanager
    def batch(self):
        local = self._local
        depth = getattr(local, 'depth', 0)
        if depth == 0:
            local.buffer = []
        mark = len(local.buffer)
        local.depth = depth + 1

        try:
            yield
        except BaseException:
            del local.buffer[mark:]
            raise
        finally:
            local.depth = depth

        if depth == 0:
            pending, local.buffer = local.buffer, []
            self._publish(pending)

    def _publish(self, pending: Iterable[Tuple]) -> None:
        with self._lock:
            for event_type, entity_id, timestamp, data in pending:
                self._events.append(Event(
                    sequence=len(self._events) + 1,
                    type=event_type,
                    entity_id=entity_id,
                    timestamp=timestamp,
                    data=data,
                ))

    def latest_sequence(self) -> int:
        with self._lock:
            return len(self._events)

    def events(
        self,
        since: int = 0,
        entity_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
    ) -> List[Event]:
        """Events with sequence greater than `since`, optionally filtered"""
        types = {event_type} if event_type else None
        matched, _ = self.read(since, entity_id, types)
        return matched

    def read(self, since=0, entity_id=None, types=None) -> Tuple[List[Event], int]:
        """Matching events after `since` and the cursor to resume from"""
        with self._lock:
            tail = self._events[max(since, 0):]
            last = len(self._events)

        matched = [
            event for event in tail
            if (entity_id is None or event.entity_id == entity_id)
            and (types is None or event.type in types)
        ]
        return matched, last

    def subscribe(
        self,
        entity_id: Optional[str] = None,
        types: Optional[Iterable[EventType]] = None,
        since: int = 0,
    ) -> 'Subscription':
        return Subscription(self, entity_id, set(types) if types else None, since)


class Subscription:
    """Pull-based cursor over an EventLog"""

    def __init__(self, log: EventLog, entity_id, types, since: int):
        self._log = log
        self.entity_id = entity_id
        self.types = types
        self.cursor = since

    def poll(self) -> List[Event]:
        """Return matching events appended since the previous poll"""
        matched, last = self._log.read(self.cursor, self.entity_id, self.types)
        self.cursor = max(self.cursor, last)
        return matched
