"""
Transport abstraction for the messaging fabric.

A transport moves opaque byte payloads between subjects (topic names) and
supports queue-group subscriptions: every message on a subject goes to
exactly one member of each queue group, and to every subscriber without a
group.

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED -> CLOSED (terminal)

There is no reconnect-on-drop; a lost connection surfaces as TransportError
on publish.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from nav_core.errors import TransportConnectionError, TransportError

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Transport connection lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class TransportMessage:
    """
    One delivery from the transport.

    Attributes:
        subject: Subject the message was published on
        data: Raw payload
        headers: Publisher-supplied headers (e.g. sending node name)
    """

    subject: str
    data: bytes
    headers: Dict[str, str] = field(default_factory=dict)


MessageHandler = Callable[[TransportMessage], None]


class TransportSubscription:
    """Handle for one subscription; unsubscribe() is idempotent."""

    def __init__(self, transport: 'Transport', subject: str,
                 queue_group: Optional[str], handler: MessageHandler):
        self.transport = transport
        self.subject = subject
        self.queue_group = queue_group
        self.handler = handler
        self.active = True

    def unsubscribe(self):
        if self.active:
            self.active = False
            self.transport._unsubscribe(self)

    def __repr__(self) -> str:
        return (f"TransportSubscription(subject={self.subject!r}, "
                f"queue_group={self.queue_group!r}, active={self.active})")


class Transport(ABC):
    """
    Base class for transports.

    Subclasses implement _open/_send/_add_subscription/_remove_subscription/
    _shutdown; this class owns the state machine and subscription
    bookkeeping.
    """

    def __init__(self):
        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._subscriptions: List[TransportSubscription] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def connect(self):
        """
        Establish the connection.

        Raises:
            TransportConnectionError: If the endpoint is unreachable or the
                transport was already closed
        """
        with self._state_lock:
            if self._state == ConnectionState.CONNECTED:
                return
            if self._state == ConnectionState.CLOSED:
                raise TransportConnectionError("Transport is closed")
            self._state = ConnectionState.CONNECTING

        try:
            self._open()
        except TransportConnectionError:
            with self._state_lock:
                self._state = ConnectionState.DISCONNECTED
            raise

        with self._state_lock:
            self._state = ConnectionState.CONNECTED
        logger.info(f"{type(self).__name__} connected")

    def publish(self, subject: str, data: bytes, headers: Optional[Dict[str, str]] = None):
        """
        Fire-and-forget publish.

        Raises:
            TransportError: If the transport is not connected
        """
        self._require_connected()
        self._send(subject, bytes(data), dict(headers or {}))

    def subscribe(self, subject: str, queue_group: Optional[str],
                  handler: MessageHandler) -> TransportSubscription:
        """
        Subscribe to a subject.

        Args:
            subject: Subject name
            queue_group: Queue group name, or None to receive every message
            handler: Called on a transport thread for each delivery; must
                not block

        Raises:
            TransportError: If the transport is not connected
        """
        self._require_connected()
        subscription = TransportSubscription(self, subject, queue_group, handler)
        self._add_subscription(subscription)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {subject} (queue group {queue_group})")
        return subscription

    def _unsubscribe(self, subscription: TransportSubscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        if self._state == ConnectionState.CONNECTED:
            self._remove_subscription(subscription)

    def close(self):
        """
        Release all subscriptions and the connection.

        Safe to call more than once, and on a transport that never connected.
        """
        with self._state_lock:
            if self._state == ConnectionState.CLOSED:
                return
            was_connected = self._state == ConnectionState.CONNECTED

        for subscription in list(self._subscriptions):
            subscription.unsubscribe()

        with self._state_lock:
            self._state = ConnectionState.CLOSED

        if was_connected:
            self._shutdown()
        logger.info(f"{type(self).__name__} closed")

    def _require_connected(self):
        if self._state != ConnectionState.CONNECTED:
            raise TransportError(f"Transport not connected (state={self._state.value})")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @abstractmethod
    def _open(self):
        """Open the underlying connection (raise TransportConnectionError)."""

    @abstractmethod
    def _send(self, subject: str, data: bytes, headers: Dict[str, str]):
        """Transmit one message (raise TransportError)."""

    @abstractmethod
    def _add_subscription(self, subscription: TransportSubscription):
        """Register a subscription with the underlying broker."""

    @abstractmethod
    def _remove_subscription(self, subscription: TransportSubscription):
        """Remove a subscription from the underlying broker."""

    @abstractmethod
    def _shutdown(self):
        """Release the underlying connection."""


class InProcessBroker:
    """
    In-memory subject router with queue-group load balancing.

    Shared by any number of transports in one process (and used by the
    TCP BrokerServer for routing). Members of a queue group receive
    messages round-robin.

    Usage:
        broker = InProcessBroker()
        token = broker.add('auv.hardware.gps', 'position-gps', handler)
        broker.publish('auv.hardware.gps', payload)
        broker.remove(token)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._routes: Dict[str, List[Tuple[int, Optional[str], MessageHandler]]] = defaultdict(list)
        self._round_robin: Dict[Tuple[str, str], int] = defaultdict(int)
        self._tokens = itertools.count(1)

    def add(self, subject: str, queue_group: Optional[str], handler: MessageHandler) -> int:
        """Register a handler; returns a token for remove()."""
        with self._lock:
            token = next(self._tokens)
            self._routes[subject].append((token, queue_group, handler))
            return token

    def remove(self, token: int):
        with self._lock:
            for subject, routes in list(self._routes.items()):
                remaining = [route for route in routes if route[0] != token]
                if remaining:
                    self._routes[subject] = remaining
                else:
                    del self._routes[subject]

    def subscriber_count(self, subject: str) -> int:
        with self._lock:
            return len(self._routes.get(subject, []))

    def publish(self, subject: str, data: bytes, headers: Optional[Dict[str, str]] = None) -> int:
        """
        Route a message to its subscribers.

        Returns:
            Number of handlers the message was delivered to
        """
        targets = []
        with self._lock:
            groups: Dict[str, List[MessageHandler]] = defaultdict(list)
            for _, queue_group, handler in self._routes.get(subject, []):
                if queue_group is None:
                    targets.append(handler)
                else:
                    groups[queue_group].append(handler)

            for queue_group, members in groups.items():
                key = (subject, queue_group)
                index = self._round_robin[key] % len(members)
                self._round_robin[key] += 1
                targets.append(members[index])

        message = TransportMessage(subject, data, dict(headers or {}))
        for handler in targets:
            handler(message)
        return len(targets)


class InProcessTransport(Transport):
    """
    Transport backed by an InProcessBroker.

    Usage:
        broker = InProcessBroker()
        gps_side = InProcessTransport(broker)
        position_side = InProcessTransport(broker)
    """

    def __init__(self, broker: Optional[InProcessBroker] = None):
        super().__init__()
        self.broker = broker or InProcessBroker()
        self._tokens: Dict[int, int] = {}

    def _open(self):
        pass

    def _send(self, subject: str, data: bytes, headers: Dict[str, str]):
        self.broker.publish(subject, data, headers)

    def _add_subscription(self, subscription: TransportSubscription):
        token = self.broker.add(subscription.subject, subscription.queue_group,
                                subscription.handler)
        self._tokens[id(subscription)] = token

    def _remove_subscription(self, subscription: TransportSubscription):
        token = self._tokens.pop(id(subscription), None)
        if token is not None:
            self.broker.remove(token)

    def _shutdown(self):
        self._tokens.clear()
