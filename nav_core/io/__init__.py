"""
I/O Module: Messaging fabric.

- Transport abstraction with queue-group subscriptions
- In-process broker and TCP broker/client (length-prefixed JSON frames)
- Node with typed publishers/subscribers and a fixed-rate loop
- Bounded per-subscriber queues (no unbounded RAM growth)
"""

from .transport import (
    ConnectionState,
    Transport,
    TransportMessage,
    TransportSubscription,
    InProcessBroker,
    InProcessTransport,
)
from .tcp_transport import (
    TcpTransport,
    BrokerServer,
    FrameReader,
    encode_frame,
    parse_server_address,
)
from .node import (
    Node,
    NodeConfig,
    TopicPublisher,
    TopicSubscriber,
    run_at_fixed_rate,
)

__all__ = [
    'ConnectionState',
    'Transport',
    'TransportMessage',
    'TransportSubscription',
    'InProcessBroker',
    'InProcessTransport',
    'TcpTransport',
    'BrokerServer',
    'FrameReader',
    'encode_frame',
    'parse_server_address',
    'Node',
    'NodeConfig',
    'TopicPublisher',
    'TopicSubscriber',
    'run_at_fixed_rate',
]
