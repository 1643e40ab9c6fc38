"""Event correlation table: which signals have arrived for which instance."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .constants import SIGNAL_NAMES
from .contracts import DeliveryResult
from .exceptions import UnknownSignalError

logger = logging.getLogger(__name__)


@dataclass
class _Slot:
    payload: Any
    arrival: int
    delivered: bool = False


@dataclass
class _InstanceSignals:
    lock: threading.Lock = field(default_factory=threading.Lock)
    slots: Dict[str, _Slot] = field(default_factory=dict)
    arrivals: Iterator[int] = field(default_factory=itertools.count)


class EventCorrelationTable:
    """Thread-safe map of (instance, signal name) to the delivered payload.

    A signal may arrive before the engine waits for it; the payload is held
    here until the engine reaches that wait and consumes it. Each instance
    has its own lock, so deliveries to different instances never contend.
    The registry lock only guards adding and removing instances.
    """

    def __init__(self, signal_names: Iterable[str] = SIGNAL_NAMES) -> None:
        self._signal_names = frozenset(signal_names)
        self._instances: Dict[str, _InstanceSignals] = {}
        self._registry_lock = threading.Lock()

    def register(self, instance_id: str) -> None:
        with self._registry_lock:
            self._instances.setdefault(instance_id, _InstanceSignals())

    def evict(self, instance_id: str) -> None:
        """Forget an instance; it can be rebuilt later with :meth:`hydrate`."""
        with self._registry_lock:
            self._instances.pop(instance_id, None)

    def is_registered(self, instance_id: str) -> bool:
        return instance_id in self._instances

    def hydrate(self, instance_id: str, arrivals: Iterable[Tuple[str, Any]]) -> None:
        """Rebuild an instance's slots from recorded (signal, payload) arrivals."""
        self.evict(instance_id)
        self.register(instance_id)
        for signal_name, payload in arrivals:
            self.deliver(instance_id, signal_name, payload)

    def deliver(self, instance_id: str, signal_name: str, payload: Any) -> DeliveryResult:
        if signal_name not in self._signal_names:
            raise UnknownSignalError(signal_name)
        signals = self._instances.get(instance_id)
        if signals is None:
            return DeliveryResult.UNKNOWN_INSTANCE
        with signals.lock:
            if signal_name in signals.slots:
                logger.info(
                    f"Ignoring duplicate {signal_name} for instance_id={instance_id}"
                )
                return DeliveryResult.ALREADY_SATISFIED
            signals.slots[signal_name] = _Slot(
                payload=payload, arrival=next(signals.arrivals)
            )
        return DeliveryResult.ACCEPTED

    def try_consume(self, instance_id: str, signal_name: str) -> Optional[Any]:
        """Return the payload if it has arrived, marking it delivered.

        Consuming is idempotent so that every replay observes the same
        payload.
        """
        signals = self._instances.get(instance_id)
        if signals is None:
            return None
        with signals.lock:
            slot = signals.slots.get(signal_name)
            if slot is None:
                return None
            slot.delivered = True
            return slot.payload

    def arrival_order(self, instance_id: str, signal_names: Iterable[str]) -> List[str]:
        """Names among ``signal_names`` that have arrived, earliest first."""
        signals = self._instances.get(instance_id)
        if signals is None:
            return []
        wanted = set(signal_names)
        with signals.lock:
            arrived = [(s.arrival, n) for n, s in signals.slots.items() if n in wanted]
        return [name for _, name in sorted(arrived)]

    def pending(self, instance_id: str) -> List[str]:
        """Signals that have arrived but no wait has consumed yet."""
        signals = self._instances.get(instance_id)
        if signals is None:
            return []
        with signals.lock:
            waiting = [(s.arrival, n) for n, s in signals.slots.items() if not s.delivered]
        return [name for _, name in sorted(waiting)]
