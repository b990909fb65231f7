"""
Node: the messaging fabric API used by every process.

A node owns one transport connection and creates typed topic publishers
and queue-grouped topic subscribers on it.

Usage:
    node = Node.create(NodeConfig(name='position', rate=10))
    estimates = node.create_publisher(POSITION_ESTIMATE_TOPIC, POSITION_ESTIMATE_CODEC)
    gps = node.create_subscriber(GPS_TOPIC, GPS_DATA_CODEC, 'gps',
                                 on_message=handle_fix, on_error=handle_error)
    node.loop(publish_estimate)   # until node.close()
"""

import logging
import math
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, TypeVar

from nav_core.errors import ConfigurationError, DecodeError
from nav_core.metrics import get_metrics
from nav_core.proto.codec import MessageCodec
from .transport import Transport, TransportMessage, TransportSubscription

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_SERVERS = ['tcp://localhost:4222']

_CLOSED = object()


@dataclass
class NodeConfig:
    """
    Per-process fabric configuration.

    Attributes:
        name: Node name; prefixes every queue group
        rate: Loop rate in Hz (None until the node runs a loop)
        servers: Broker endpoints, tried in order
        subscriber_queue_size: Bound of each subscriber's delivery queue
    """

    name: str
    rate: Optional[float] = None
    servers: List[str] = field(default_factory=lambda: list(DEFAULT_SERVERS))
    subscriber_queue_size: int = 1000

    def __post_init__(self):
        """Validate configuration."""
        if not self.name:
            raise ConfigurationError("Node name cannot be empty")
        if isinstance(self.servers, str):
            self.servers = [self.servers]
        if self.subscriber_queue_size <= 0:
            raise ConfigurationError(
                f"subscriber_queue_size must be positive: {self.subscriber_queue_size}"
            )

    @classmethod
    def from_dict(cls, name: str, data: dict, servers: Optional[List[str]] = None) -> 'NodeConfig':
        """Build from a NODE_CONFIG entry."""
        return cls(
            name=data.get('name', name),
            rate=data.get('rate'),
            servers=servers if servers is not None else data.get('servers', list(DEFAULT_SERVERS)),
            subscriber_queue_size=data.get('subscriber_queue_size', 1000),
        )


def run_at_fixed_rate(
    rate_hz: Optional[float],
    work: Callable[[], None],
    stop_event: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """
    Call work() repeatedly at rate_hz until stop_event is set.

    Sleeps the remainder of each period after work() returns. An overrun
    is not caught up: the next iteration starts immediately and the overrun
    is recorded in the loop_overrun_s histogram.

    Args:
        rate_hz: Iterations per second (math.inf runs back-to-back)
        work: Loop body
        stop_event: Stops the loop when set (checked between iterations)
        clock: Time source

    Returns:
        Number of iterations run

    Raises:
        ConfigurationError: If rate_hz is unset, zero or negative
    """
    if rate_hz is None or not rate_hz > 0:
        raise ConfigurationError(f"Loop rate must be a positive number of Hz: {rate_hz!r}")

    period = 0.0 if math.isinf(rate_hz) else 1.0 / rate_hz
    stop_event = stop_event or threading.Event()
    metrics = get_metrics()
    iterations = 0

    while not stop_event.is_set():
        start = clock()
        work()
        iterations += 1

        remaining = period - (clock() - start)
        if remaining < 0:
            if period > 0:
                metrics.record_histogram('loop_overrun_s', -remaining)
            remaining = 0.0

        if remaining > 0:
            stop_event.wait(remaining)

    return iterations


class TopicPublisher(Generic[T]):
    """Typed publisher for one topic; fire-and-forget."""

    def __init__(self, transport: Transport, codec: MessageCodec, topic: str, node_name: str):
        self.transport = transport
        self.codec = codec
        self.topic = topic
        self.node_name = node_name
        self.metrics = get_metrics()

    def send(self, message: T):
        """
        Encode and publish a message.

        Raises:
            TransportError: If the connection is down
            TypeError: If message does not match the codec schema
        """
        data = self.codec.encode(message)
        self.transport.publish(self.topic, data, {'node': self.node_name})
        self.metrics.increment('messages_published')
        logger.debug(f"[{self.node_name}] sent {self.codec.name} on {self.topic}")

    def close(self):
        """Publishers hold no transport resources."""


class TopicSubscriber(Generic[T]):
    """
    Typed queue-group subscriber for one topic.

    Two delivery styles:
    - callback: on_message(msg) / on_error(err) are called on the
      subscriber's own worker thread, in arrival order
    - pull: without on_message, receive(timeout) returns the next decoded
      message (None on timeout or after close())

    A malformed payload is dropped, counted and reported through on_error;
    the subscription keeps receiving.
    """

    def __init__(
        self,
        transport: Transport,
        codec: MessageCodec,
        topic: str,
        queue_group: str,
        on_message: Optional[Callable[[T], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        queue_size: int = 1000,
    ):
        self.codec = codec
        self.topic = topic
        self.queue_group = queue_group
        self.on_message = on_message
        self.on_error = on_error
        self.metrics = get_metrics()

        self._inbox: queue.Queue = queue.Queue(maxsize=queue_size)
        self._closed = threading.Event()
        self._worker: Optional[threading.Thread] = None

        self._subscription: TransportSubscription = transport.subscribe(
            topic, queue_group, self._on_transport_message
        )

        if on_message is not None:
            self._worker = threading.Thread(
                target=self._deliver_loop, name=f"subscriber-{queue_group}", daemon=True
            )
            self._worker.start()

        logger.info(f"Subscribed to {topic} as {queue_group}")

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _on_transport_message(self, message: TransportMessage):
        if self._closed.is_set():
            return
        try:
            self._inbox.put_nowait(message)
        except queue.Full:
            self.metrics.increment_drop('queue_full')
            logger.warning(f"Subscriber {self.queue_group} queue full, dropping message")

    def _next(self, timeout: Optional[float]) -> Optional[T]:
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                item = self._inbox.get(timeout=remaining)
            except queue.Empty:
                return None

            if item is _CLOSED:
                # Leave the marker for any other waiter
                self._inbox.put(_CLOSED)
                return None

            try:
                decoded = self.codec.decode(item.data)
            except DecodeError as e:
                self.metrics.increment('decode_errors')
                self.metrics.increment_drop('decode_error')
                logger.warning(f"Subscriber {self.queue_group}: {e}")
                if self.on_error is not None:
                    try:
                        self.on_error(e)
                    except Exception:
                        logger.exception(f"Subscriber {self.queue_group} error handler failed")
                continue

            self.metrics.increment('messages_received')
            logger.debug(
                f"{self.queue_group} received {self.codec.name} "
                f"from {item.headers.get('node', '?')}"
            )
            return decoded

    def receive(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Pull the next decoded message.

        Args:
            timeout: Seconds to wait (None waits until a message or close())

        Returns:
            Decoded message, or None on timeout or after close()

        Raises:
            RuntimeError: If the subscriber delivers through on_message
        """
        if self.on_message is not None:
            raise RuntimeError("receive() is not available on a callback subscriber")
        if self._closed.is_set() and self._inbox.empty():
            return None
        return self._next(timeout)

    def _deliver_loop(self):
        while True:
            message = self._next(None)
            if message is None:
                return
            try:
                self.on_message(message)
            except Exception:
                logger.exception(f"Subscriber {self.queue_group} message handler failed")

    def close(self):
        """
        Unsubscribe and wake any pending receive(). Idempotent.
        """
        if self._closed.is_set():
            return
        self._closed.set()
        self._subscription.unsubscribe()

        # Drain so the close marker always fits in the bounded queue
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                break
        self._inbox.put(_CLOSED)

        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join(timeout=2.0)
        logger.debug(f"Subscriber {self.queue_group} closed")


class Node:
    """
    A process on the messaging fabric.

    close() releases every subscriber and the connection, stops loop(),
    and is safe after a partially failed setup.
    """

    def __init__(self, config: NodeConfig, transport: Transport):
        self.config = config
        self.transport = transport
        self._subscribers: List[TopicSubscriber] = []
        self._stop_event = threading.Event()

    @classmethod
    def create(cls, config: NodeConfig, transport: Optional[Transport] = None) -> 'Node':
        """
        Build and connect a node.

        Args:
            config: Node configuration
            transport: Transport to use (default: TcpTransport to config.servers)

        Raises:
            TransportConnectionError: If the broker is unreachable
        """
        if transport is None:
            from .tcp_transport import TcpTransport
            transport = TcpTransport(config.servers)

        node = cls(config, transport)
        node.connect()
        return node

    @property
    def name(self) -> str:
        return self.config.name

    def connect(self):
        self.transport.connect()
        logger.info(f"Node {self.name} connected")

    def create_publisher(self, topic: str, codec: MessageCodec) -> TopicPublisher:
        return TopicPublisher(self.transport, codec, topic, self.name)

    def create_subscriber(
        self,
        topic: str,
        codec: MessageCodec,
        subscription: str,
        on_message: Optional[Callable] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> TopicSubscriber:
        """
        Subscribe with queue group "<node name>-<subscription>".
        """
        subscriber = TopicSubscriber(
            self.transport,
            codec,
            topic,
            f"{self.name}-{subscription}",
            on_message=on_message,
            on_error=on_error,
            queue_size=self.config.subscriber_queue_size,
        )
        self._subscribers.append(subscriber)
        return subscriber

    def loop(self, work: Callable[[], None]) -> int:
        """Run work at the configured rate until close()."""
        return run_at_fixed_rate(self.config.rate, work, self._stop_event)

    def stop(self):
        """End loop() after the current iteration without closing the node."""
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def close(self):
        self._stop_event.set()
        for subscriber in self._subscribers:
            subscriber.close()
        self._subscribers.clear()
        self.transport.close()
        logger.info(f"Node {self.name} closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
