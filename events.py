# events.py
"""Typed publish/subscribe channel shared by discovery probes and the orchestrator.

Each event kind is an enum member with a fixed payload type. Subscribers get a
``Subscription`` handle back and are removed by cancelling that handle, so a
component that subscribes for the length of a scan run can release exactly the
handlers it added and nothing else.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from device import Device, PendingProbe, ScanReport

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class ProbeEvent(Enum):
    RESPONSE = "response"
    COMPLETE = "complete"


class ScanEvent(Enum):
    DISCOVERY_RESPONSE = "discovery-response"
    DISCOVERY_COMPLETE = "discovery-complete"
    PROBE_REACHABLE = "probe-reachable"
    DEVICE_RESOLVED = "device-resolved"
    SCAN_COMPLETE = "scan-complete"
    INVENTORY = "inventory"


PAYLOAD_TYPES: Dict[Enum, type] = {
    ProbeEvent.RESPONSE: PendingProbe,
    ProbeEvent.COMPLETE: ScanReport,
    ScanEvent.DISCOVERY_RESPONSE: PendingProbe,
    ScanEvent.DISCOVERY_COMPLETE: ScanReport,
    ScanEvent.PROBE_REACHABLE: str,
    ScanEvent.DEVICE_RESOLVED: Device,
    ScanEvent.SCAN_COMPLETE: ScanReport,
    ScanEvent.INVENTORY: list,
}


class Subscription:
    """Handle for one registered handler. Cancelling it twice is harmless."""

    def __init__(self, channel: "EventChannel", kind: Enum, handler: Handler):
        self.channel = channel
        self.kind = kind
        self.handler = handler
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.channel._remove(self)
            self.active = False


class SubscriptionScope:
    """Group of subscriptions released together, usable as a context manager."""

    def __init__(self, channel: "EventChannel"):
        self.channel = channel
        self.subscriptions: List[Subscription] = []

    def subscribe(self, kind: Enum, handler: Handler) -> Subscription:
        subscription = self.channel.subscribe(kind, handler)
        self.subscriptions.append(subscription)
        return subscription

    def release(self) -> None:
        while self.subscriptions:
            self.subscriptions.pop().cancel()

    def __enter__(self) -> "SubscriptionScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class EventChannel:
    def __init__(self, kinds: Type[Enum]):
        self.kinds = kinds
        self._subscriptions: Dict[Enum, List[Subscription]] = {kind: [] for kind in kinds}

    def subscribe(self, kind: Enum, handler: Handler) -> Subscription:
        self._check_kind(kind)
        subscription = Subscription(self, kind, handler)
        self._subscriptions[kind].append(subscription)
        return subscription

    def scope(self) -> SubscriptionScope:
        return SubscriptionScope(self)

    def emit(self, kind: Enum, payload: Any) -> None:
        """Calls every handler for ``kind`` in subscription order.

        A failing handler is logged and does not stop delivery to the others.
        """
        self._check_kind(kind)
        expected = PAYLOAD_TYPES.get(kind)
        if expected is not None and not isinstance(payload, expected):
            raise TypeError(f"{kind} expects {expected.__name__}, got {type(payload).__name__}")
        for subscription in list(self._subscriptions[kind]):
            if not subscription.active:
                continue
            try:
                subscription.handler(payload)
            except Exception:  # pylint: disable=broad-except
                logger.exception(f"Handler {subscription.handler!r} failed for {kind.value}")

    def handlers(self, kind: Optional[Enum] = None) -> Tuple[Handler, ...]:
        """Returns the registered handlers, for one kind or for all kinds."""
        kinds = [kind] if kind is not None else list(self.kinds)
        return tuple(s.handler for k in kinds for s in self._subscriptions[k])

    def subscriber_count(self, kind: Optional[Enum] = None) -> int:
        return len(self.handlers(kind))

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions[subscription.kind].remove(subscription)
        except ValueError:
            logger.debug(f"Subscription for {subscription.kind.value} was already removed")

    def _check_kind(self, kind: Enum) -> None:
        if not isinstance(kind, self.kinds):
            raise ValueError(f"{kind!r} is not a {self.kinds.__name__} event")
