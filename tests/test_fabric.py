"""
Unit tests for the messaging fabric.

Tests cover:
- Queue-group routing (round-robin within a group, fan-out across groups)
- Transport state machine (connect, publish, close)
- Typed publishers/subscribers (callback and pull delivery)
- Subscriber error isolation (malformed payloads, failing handlers)
- Bounded queues
- Fixed-rate loop
"""

import threading

import pytest

import config
from conftest import ManualClock, wait_until
from nav_core.errors import ConfigurationError, TransportConnectionError, TransportError
from nav_core.io import (
    ConnectionState,
    InProcessBroker,
    InProcessTransport,
    Node,
    NodeConfig,
    run_at_fixed_rate,
)
from nav_core.metrics import get_metrics
from nav_core.proto import DEPTH_CODEC, DepthReading

TOPIC = 'auv.hardware.depth'


def make_node(broker: InProcessBroker, name: str, **kwargs) -> Node:
    return Node.create(NodeConfig(name=name, **kwargs), InProcessTransport(broker))


# =============================================================================
# Broker routing
# =============================================================================


class TestBrokerRouting:
    """Tests for queue-group semantics."""

    def test_queue_group_round_robin(self, broker):
        """Test each message goes to exactly one group member, in turn."""
        received = {'a': [], 'b': []}
        broker.add(TOPIC, 'position-depth', lambda m: received['a'].append(m.data))
        broker.add(TOPIC, 'position-depth', lambda m: received['b'].append(m.data))

        for i in range(4):
            assert broker.publish(TOPIC, bytes([i])) == 1

        assert received['a'] == [b'\x00', b'\x02']
        assert received['b'] == [b'\x01', b'\x03']

    def test_fan_out_across_groups(self, broker):
        """Test every group and every ungrouped subscriber gets each message."""
        received = []
        broker.add(TOPIC, 'position-depth', lambda m: received.append('position'))
        broker.add(TOPIC, 'logger-depth', lambda m: received.append('logger'))
        broker.add(TOPIC, None, lambda m: received.append('ungrouped'))

        assert broker.publish(TOPIC, b'x') == 3
        assert sorted(received) == ['logger', 'position', 'ungrouped']

    def test_no_subscribers(self, broker):
        assert broker.publish(TOPIC, b'x') == 0

    def test_remove(self, broker):
        token = broker.add(TOPIC, None, lambda m: None)
        assert broker.subscriber_count(TOPIC) == 1

        broker.remove(token)
        assert broker.subscriber_count(TOPIC) == 0

    def test_headers_delivered(self, broker):
        seen = []
        broker.add(TOPIC, None, seen.append)
        broker.publish(TOPIC, b'x', {'node': 'depth'})

        assert seen[0].headers == {'node': 'depth'}
        assert seen[0].subject == TOPIC


# =============================================================================
# Transport state machine
# =============================================================================


class TestTransportLifecycle:
    """Tests for connect/publish/close."""

    def test_connect(self, broker):
        transport = InProcessTransport(broker)
        assert transport.state == ConnectionState.DISCONNECTED

        transport.connect()
        assert transport.is_connected

    def test_publish_before_connect_raises(self, broker):
        transport = InProcessTransport(broker)
        with pytest.raises(TransportError):
            transport.publish(TOPIC, b'x')

    def test_publish_after_close_raises(self, transport_factory):
        transport = transport_factory()
        transport.close()

        assert transport.state == ConnectionState.CLOSED
        with pytest.raises(TransportError):
            transport.publish(TOPIC, b'x')

    def test_connect_after_close_raises(self, transport_factory):
        transport = transport_factory()
        transport.close()

        with pytest.raises(TransportConnectionError):
            transport.connect()

    def test_close_idempotent(self, broker):
        transport = InProcessTransport(broker)
        transport.close()   # Never connected
        transport.close()

        assert transport.state == ConnectionState.CLOSED

    def test_close_releases_subscriptions(self, broker, transport_factory):
        transport = transport_factory()
        transport.subscribe(TOPIC, 'g', lambda m: None)
        transport.subscribe(TOPIC, None, lambda m: None)
        assert broker.subscriber_count(TOPIC) == 2

        transport.close()
        assert broker.subscriber_count(TOPIC) == 0

    def test_unsubscribe_idempotent(self, broker, transport_factory):
        subscription = transport_factory().subscribe(TOPIC, None, lambda m: None)

        subscription.unsubscribe()
        subscription.unsubscribe()

        assert not subscription.active
        assert broker.subscriber_count(TOPIC) == 0

    def test_context_manager(self, broker):
        with InProcessTransport(broker) as transport:
            assert transport.is_connected
        assert transport.state == ConnectionState.CLOSED


# =============================================================================
# Node, publishers and subscribers
# =============================================================================


class TestNodeConfig:
    """Tests for NodeConfig validation."""

    def test_from_project_config(self):
        cfg = NodeConfig.from_dict('position', config.NODE_CONFIG['position'],
                                   servers=['tcp://10.0.0.2:4222'])

        assert cfg.name == 'ekf-position-estimator'
        assert cfg.rate == 10.0
        assert cfg.servers == ['tcp://10.0.0.2:4222']

    def test_empty_name_rejected(self):
        with pytest.raises(ConfigurationError):
            NodeConfig(name='')

    def test_queue_size_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            NodeConfig(name='depth', subscriber_queue_size=0)

    def test_single_server_string(self):
        assert NodeConfig(name='x', servers='tcp://a:1').servers == ['tcp://a:1']


class TestPublishSubscribe:
    """Tests for typed delivery between nodes."""

    def test_pull_receive(self, broker):
        """Test a published message arrives decoded."""
        with make_node(broker, 'depth') as producer, make_node(broker, 'position') as consumer:
            subscriber = consumer.create_subscriber(TOPIC, DEPTH_CODEC, 'depth')
            producer.create_publisher(TOPIC, DEPTH_CODEC).send(DepthReading(4.2))

            assert subscriber.receive(timeout=1.0) == DepthReading(4.2)

        assert get_metrics().get_counter('messages_published') == 1
        assert get_metrics().get_counter('messages_received') == 1

    def test_queue_group_name(self, broker):
        with make_node(broker, 'position') as node:
            subscriber = node.create_subscriber(TOPIC, DEPTH_CODEC, 'depth')
            assert subscriber.queue_group == 'position-depth'

    def test_publisher_sets_node_header(self, broker, transport_factory):
        seen = []
        transport_factory().subscribe(TOPIC, None, seen.append)

        with make_node(broker, 'depth') as node:
            node.create_publisher(TOPIC, DEPTH_CODEC).send(DepthReading(1.0))

        assert seen[0].headers['node'] == 'depth'

    def test_per_topic_order(self, broker):
        """Test delivery order matches publish order."""
        received = []
        with make_node(broker, 'depth') as producer, make_node(broker, 'position') as consumer:
            consumer.create_subscriber(TOPIC, DEPTH_CODEC, 'depth',
                                       on_message=lambda m: received.append(m.depth))
            publisher = producer.create_publisher(TOPIC, DEPTH_CODEC)
            for i in range(50):
                publisher.send(DepthReading(float(i)))

            assert wait_until(lambda: len(received) == 50)

        assert received == [float(i) for i in range(50)]

    def test_two_instances_share_group(self, broker):
        """Test two instances of one node split a topic between them."""
        counts = {'first': 0, 'second': 0}

        def counter(key):
            def handle(message):
                counts[key] += 1
            return handle

        with make_node(broker, 'depth') as producer, \
                make_node(broker, 'position') as first, \
                make_node(broker, 'position') as second:
            first.create_subscriber(TOPIC, DEPTH_CODEC, 'depth', on_message=counter('first'))
            second.create_subscriber(TOPIC, DEPTH_CODEC, 'depth', on_message=counter('second'))

            publisher = producer.create_publisher(TOPIC, DEPTH_CODEC)
            for i in range(10):
                publisher.send(DepthReading(float(i)))

            assert wait_until(lambda: counts['first'] + counts['second'] == 10)

        assert counts == {'first': 5, 'second': 5}

    def test_send_after_close_raises(self, broker):
        node = make_node(broker, 'depth')
        publisher = node.create_publisher(TOPIC, DEPTH_CODEC)
        node.close()

        with pytest.raises(TransportError):
            publisher.send(DepthReading(1.0))


class TestSubscriberErrors:
    """Tests for error isolation in subscribers."""

    def test_malformed_then_good(self, broker, transport_factory):
        """Test 1 malformed + N good -> exactly 1 error and N messages in order."""
        received, errors = [], []
        raw = transport_factory()

        with make_node(broker, 'position') as node:
            node.create_subscriber(TOPIC, DEPTH_CODEC, 'depth',
                                   on_message=lambda m: received.append(m.depth),
                                   on_error=errors.append)

            raw.publish(TOPIC, b'{"depth": ')
            for i in range(5):
                raw.publish(TOPIC, DEPTH_CODEC.encode(DepthReading(float(i))))

            assert wait_until(lambda: len(received) == 5)

        assert len(errors) == 1
        assert received == [0.0, 1.0, 2.0, 3.0, 4.0]
        assert get_metrics().get_counter('decode_errors') == 1
        assert get_metrics().get_drop_count('decode_error') == 1

    def test_pull_skips_malformed(self, broker, transport_factory):
        raw = transport_factory()
        with make_node(broker, 'position') as node:
            subscriber = node.create_subscriber(TOPIC, DEPTH_CODEC, 'depth')
            raw.publish(TOPIC, b'garbage')
            raw.publish(TOPIC, DEPTH_CODEC.encode(DepthReading(7.0)))

            assert subscriber.receive(timeout=1.0) == DepthReading(7.0)

    def test_handler_exception_does_not_stop_delivery(self, broker):
        received = []

        def flaky(message):
            if message.depth == 0.0:
                raise RuntimeError("boom")
            received.append(message.depth)

        with make_node(broker, 'depth') as producer, make_node(broker, 'position') as consumer:
            consumer.create_subscriber(TOPIC, DEPTH_CODEC, 'depth', on_message=flaky)
            publisher = producer.create_publisher(TOPIC, DEPTH_CODEC)
            publisher.send(DepthReading(0.0))
            publisher.send(DepthReading(1.0))

            assert wait_until(lambda: received == [1.0])

    def test_error_handler_exception_does_not_stop_delivery(self, broker, transport_factory):
        """Test a raising on_error leaves the subscription delivering."""
        received = []
        raw = transport_factory()

        def failing_error_handler(error):
            raise RuntimeError("error handler broke")

        with make_node(broker, 'position') as node:
            node.create_subscriber(TOPIC, DEPTH_CODEC, 'depth',
                                   on_message=lambda m: received.append(m.depth),
                                   on_error=failing_error_handler)

            raw.publish(TOPIC, b'garbage')
            for i in range(3):
                raw.publish(TOPIC, DEPTH_CODEC.encode(DepthReading(float(i))))

            assert wait_until(lambda: len(received) == 3)

        assert received == [0.0, 1.0, 2.0]

    def test_non_finite_payload_reported_as_error(self, broker, transport_factory):
        received, errors = [], []
        raw = transport_factory()

        with make_node(broker, 'position') as node:
            node.create_subscriber(TOPIC, DEPTH_CODEC, 'depth',
                                   on_message=lambda m: received.append(m.depth),
                                   on_error=errors.append)

            raw.publish(TOPIC, b'{"depth":NaN}')
            raw.publish(TOPIC, b'{"depth":"deep"}')
            raw.publish(TOPIC, DEPTH_CODEC.encode(DepthReading(2.0)))

            assert wait_until(lambda: received == [2.0])

        assert len(errors) == 2


class TestSubscriberQueue:
    """Tests for bounded delivery queues and close semantics."""

    def test_queue_full_drops(self, broker):
        with make_node(broker, 'depth') as producer, \
                make_node(broker, 'position', subscriber_queue_size=2) as consumer:
            subscriber = consumer.create_subscriber(TOPIC, DEPTH_CODEC, 'depth')
            publisher = producer.create_publisher(TOPIC, DEPTH_CODEC)
            for i in range(5):
                publisher.send(DepthReading(float(i)))

            assert subscriber.receive(timeout=0.5) == DepthReading(0.0)
            assert subscriber.receive(timeout=0.5) == DepthReading(1.0)
            assert subscriber.receive(timeout=0.05) is None

        assert get_metrics().get_drop_count('queue_full') == 3

    def test_receive_timeout(self, broker):
        with make_node(broker, 'position') as node:
            subscriber = node.create_subscriber(TOPIC, DEPTH_CODEC, 'depth')
            assert subscriber.receive(timeout=0.05) is None

    def test_close_wakes_blocked_receive(self, broker):
        """Test close() unblocks a receive() waiting forever."""
        node = make_node(broker, 'position')
        subscriber = node.create_subscriber(TOPIC, DEPTH_CODEC, 'depth')
        results = []

        waiter = threading.Thread(target=lambda: results.append(subscriber.receive()))
        waiter.start()

        node.close()
        waiter.join(timeout=2.0)

        assert not waiter.is_alive()
        assert results == [None]
        assert subscriber.closed
        assert subscriber.receive(timeout=0.01) is None

    def test_receive_on_callback_subscriber_raises(self, broker):
        with make_node(broker, 'position') as node:
            subscriber = node.create_subscriber(TOPIC, DEPTH_CODEC, 'depth',
                                                on_message=lambda m: None)
            with pytest.raises(RuntimeError):
                subscriber.receive(timeout=0.01)

    def test_close_unsubscribes(self, broker):
        node = make_node(broker, 'position')
        node.create_subscriber(TOPIC, DEPTH_CODEC, 'depth')
        assert broker.subscriber_count(TOPIC) == 1

        node.close()
        assert broker.subscriber_count(TOPIC) == 0


# =============================================================================
# Fixed-rate loop
# =============================================================================


class TestFixedRateLoop:
    """Tests for run_at_fixed_rate and Node.loop."""

    @pytest.mark.parametrize("rate", [None, 0, -5.0])
    def test_invalid_rate(self, rate):
        with pytest.raises(ConfigurationError):
            run_at_fixed_rate(rate, lambda: None)

    def test_unbounded_rate_runs_back_to_back(self):
        stop = threading.Event()
        calls = []

        def work():
            calls.append(1)
            if len(calls) == 5:
                stop.set()

        assert run_at_fixed_rate(float('inf'), work, stop) == 5

    def test_overrun_recorded(self):
        """Test an iteration longer than the period is recorded, not caught up."""
        clock = ManualClock()
        stop = threading.Event()
        calls = []

        def work():
            clock.advance(0.25)
            calls.append(1)
            if len(calls) == 3:
                stop.set()

        assert run_at_fixed_rate(10.0, work, stop, clock=clock) == 3

        stats = get_metrics().get_histogram_stats('loop_overrun_s')
        assert stats['count'] == 3
        assert stats['mean'] == pytest.approx(0.15)

    def test_node_loop_stops_on_close(self, broker):
        node = make_node(broker, 'gps', rate=float('inf'))
        calls = []

        def work():
            calls.append(1)
            if len(calls) == 3:
                node.close()

        assert node.loop(work) == 3
        assert node.stopped

    def test_node_loop_requires_rate(self, broker):
        with make_node(broker, 'position') as node:
            with pytest.raises(ConfigurationError):
                node.loop(lambda: None)
