"""
TCP transport and broker server.

Wire format: every frame is a 4-byte big-endian length prefix followed by a
UTF-8 JSON object. Operations:

    client -> server  {"op": "sub",   "sid": 1, "subject": "...", "queue": "..."|null}
    client -> server  {"op": "unsub", "sid": 1}
    client -> server  {"op": "pub",   "subject": "...", "data": "<base64>", "headers": {}}
    server -> client  {"op": "msg",   "sid": 1, "subject": "...", "data": "<base64>", "headers": {}}

The server routes through an InProcessBroker, so queue-group semantics are
identical to the in-process transport.
"""

import base64
import itertools
import json
import logging
import socket
import threading
from typing import Dict, List, Optional, Tuple

from nav_core.errors import TransportConnectionError, TransportError
from nav_core.metrics import get_metrics
from .transport import InProcessBroker, Transport, TransportMessage, TransportSubscription

logger = logging.getLogger(__name__)

LENGTH_PREFIX_BYTES = 4
MAX_FRAME_BYTES = 16 * 1024 * 1024
RECV_CHUNK_BYTES = 4096


def encode_frame(message: dict) -> bytes:
    """Serialize one frame (length prefix + JSON)."""
    payload = json.dumps(message, separators=(',', ':')).encode('utf-8')
    return len(payload).to_bytes(LENGTH_PREFIX_BYTES, byteorder='big') + payload


class FrameReader:
    """
    Reassembles length-prefixed frames from a TCP byte stream.

    Usage:
        reader = FrameReader()
        for frame in reader.feed(sock.recv(4096)):
            handle(frame)
    """

    def __init__(self):
        self._buffer = b''

    def feed(self, data: bytes) -> List[dict]:
        """
        Append received bytes and return every complete frame.

        Frames that are not valid JSON objects are logged and skipped.

        Raises:
            TransportError: If a frame announces a length above MAX_FRAME_BYTES
        """
        self._buffer += data
        frames = []

        while len(self._buffer) >= LENGTH_PREFIX_BYTES:
            msg_length = int.from_bytes(self._buffer[:LENGTH_PREFIX_BYTES], byteorder='big')
            if msg_length > MAX_FRAME_BYTES:
                raise TransportError(f"Frame too large: {msg_length} bytes")

            if len(self._buffer) < LENGTH_PREFIX_BYTES + msg_length:
                break  # Incomplete frame, wait for more data

            message_data = self._buffer[LENGTH_PREFIX_BYTES:LENGTH_PREFIX_BYTES + msg_length]
            self._buffer = self._buffer[LENGTH_PREFIX_BYTES + msg_length:]

            try:
                frame = json.loads(message_data.decode('utf-8'))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.warning(f"Dropping malformed frame: {e}")
                continue

            if not isinstance(frame, dict):
                logger.warning(f"Dropping non-object frame: {frame!r}")
                continue

            frames.append(frame)

        return frames


def parse_server_address(server: str) -> Tuple[str, int]:
    """
    Parse "tcp://host:port" or "host:port".

    Raises:
        ValueError: If the address has no valid port
    """
    if '://' in server:
        scheme, server = server.split('://', 1)
        if scheme != 'tcp':
            raise ValueError(f"Unsupported transport scheme: {scheme}")
    host, sep, port = server.rpartition(':')
    if not sep or not host:
        raise ValueError(f"Server address must be host:port: {server}")
    return host, int(port)


class TcpTransport(Transport):
    """
    Client side of the TCP broker protocol.

    One reader thread per connection dispatches "msg" frames to the
    subscription handlers.

    Usage:
        transport = TcpTransport(['tcp://localhost:4222'])
        transport.connect()
    """

    def __init__(self, servers: List[str], connect_timeout: float = 2.0):
        super().__init__()
        self.servers = list(servers)
        self.connect_timeout = connect_timeout
        self.metrics = get_metrics()

        self._sock: Optional[socket.socket] = None
        self._send_lock = threading.Lock()
        self._reader_thread: Optional[threading.Thread] = None
        self._running = False
        self._connection_lost = False
        self._sids = itertools.count(1)
        self._by_sid: Dict[int, TransportSubscription] = {}
        self._sid_of: Dict[int, int] = {}

    def _open(self):
        errors = []
        for server in self.servers:
            try:
                host, port = parse_server_address(server)
                sock = socket.create_connection((host, port), timeout=self.connect_timeout)
            except (OSError, ValueError) as e:
                errors.append(f"{server}: {e}")
                continue

            sock.settimeout(1.0)
            self._sock = sock
            self._running = True
            self._connection_lost = False
            self._reader_thread = threading.Thread(
                target=self._read_loop, name=f"tcp-transport-{host}:{port}", daemon=True
            )
            self._reader_thread.start()
            logger.info(f"Connected to broker {host}:{port}")
            return

        raise TransportConnectionError(
            f"Could not connect to any broker: {'; '.join(errors) or 'no servers configured'}"
        )

    def _write(self, frame: dict):
        if self._connection_lost or self._sock is None:
            raise TransportError("Connection to broker lost")
        data = encode_frame(frame)
        with self._send_lock:
            try:
                self._sock.sendall(data)
            except OSError as e:
                self._connection_lost = True
                raise TransportError(f"Send failed: {e}") from e

    def _send(self, subject: str, data: bytes, headers: Dict[str, str]):
        self._write({
            'op': 'pub',
            'subject': subject,
            'data': base64.b64encode(data).decode('ascii'),
            'headers': headers,
        })

    def _add_subscription(self, subscription: TransportSubscription):
        sid = next(self._sids)
        self._by_sid[sid] = subscription
        self._sid_of[id(subscription)] = sid
        self._write({
            'op': 'sub',
            'sid': sid,
            'subject': subscription.subject,
            'queue': subscription.queue_group,
        })

    def _remove_subscription(self, subscription: TransportSubscription):
        sid = self._sid_of.pop(id(subscription), None)
        if sid is None:
            return
        self._by_sid.pop(sid, None)
        try:
            self._write({'op': 'unsub', 'sid': sid})
        except TransportError as e:
            # Broker already gone; nothing left to release on its side
            logger.debug(f"Unsubscribe of sid {sid} not sent: {e}")

    def _shutdown(self):
        self._running = False
        if self._sock is not None:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logger.debug(f"Socket shutdown: {e}")
            self._sock.close()
        if self._reader_thread is not None and self._reader_thread is not threading.current_thread():
            self._reader_thread.join(timeout=2.0)
        self._sock = None

    def _read_loop(self):
        reader = FrameReader()
        try:
            while self._running:
                try:
                    data = self._sock.recv(RECV_CHUNK_BYTES)
                except socket.timeout:
                    continue

                if not data:
                    break

                for frame in reader.feed(data):
                    self._dispatch(frame)

        except (OSError, TransportError) as e:
            if self._running:
                logger.error(f"Broker connection error: {e}")
        finally:
            if self._running:
                self._connection_lost = True
                logger.warning("Connection to broker lost")

    def _dispatch(self, frame: dict):
        if frame.get('op') != 'msg':
            logger.debug(f"Ignoring frame op {frame.get('op')!r}")
            return

        subscription = self._by_sid.get(frame.get('sid'))
        if subscription is None:
            return

        try:
            data = base64.b64decode(frame['data'])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping msg frame with bad payload: {e}")
            self.metrics.increment_drop('decode_error')
            return

        subscription.handler(TransportMessage(
            subject=frame.get('subject', subscription.subject),
            data=data,
            headers=frame.get('headers') or {},
        ))


class _ClientConnection:
    """Server-side state for one connected client."""

    def __init__(self, sock: socket.socket, address):
        self.sock = sock
        self.address = address
        self.send_lock = threading.Lock()
        self.tokens: Dict[int, int] = {}  # sid -> broker token
        self.alive = True

    def send(self, frame: dict):
        data = encode_frame(frame)
        with self.send_lock:
            try:
                self.sock.sendall(data)
            except OSError as e:
                if self.alive:
                    logger.warning(f"Send to client {self.address} failed: {e}")
                self.alive = False


class BrokerServer:
    """
    TCP broker routing messages between TcpTransport clients.

    Usage:
        server = BrokerServer('0.0.0.0', 4222)
        if server.start():
            ...
        server.stop()
    """

    def __init__(self, host: str, port: int, broker: Optional[InProcessBroker] = None):
        """
        Initialize broker server.

        Args:
            host: Bind address
            port: Bind port (0 picks a free port, see .port after start())
            broker: Router to use (default: a private InProcessBroker)
        """
        self.host = host
        self.port = port
        self.broker = broker or InProcessBroker()
        self.server_socket: Optional[socket.socket] = None
        self.running = False
        self.clients: List[_ClientConnection] = []
        self._clients_lock = threading.Lock()
        self.accept_thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        """Start listening; returns False if the socket cannot be bound."""
        try:
            self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.server_socket.bind((self.host, self.port))
            self.server_socket.listen(16)
            self.server_socket.settimeout(1.0)
        except OSError as e:
            logger.error(f"Failed to start broker on {self.host}:{self.port}: {e}")
            if self.server_socket is not None:
                self.server_socket.close()
                self.server_socket = None
            return False

        self.port = self.server_socket.getsockname()[1]
        self.running = True
        self.accept_thread = threading.Thread(
            target=self._accept_loop, name="broker-accept", daemon=True
        )
        self.accept_thread.start()

        logger.info(f"Broker listening on {self.host}:{self.port}")
        return True

    def stop(self):
        """Stop the server and disconnect all clients."""
        self.running = False

        with self._clients_lock:
            clients = list(self.clients)
            self.clients.clear()

        for client in clients:
            self._drop_client(client)

        if self.server_socket is not None:
            self.server_socket.close()
            self.server_socket = None

        if self.accept_thread is not None:
            self.accept_thread.join(timeout=2.0)

        logger.info("Broker stopped")

    @property
    def client_count(self) -> int:
        with self._clients_lock:
            return len(self.clients)

    def _accept_loop(self):
        while self.running:
            try:
                client_socket, address = self.server_socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    logger.error(f"Accept failed: {e}")
                break

            logger.info(f"Client connected: {address}")
            client_socket.settimeout(1.0)
            client = _ClientConnection(client_socket, address)
            with self._clients_lock:
                self.clients.append(client)

            threading.Thread(
                target=self._handle_client, args=(client,),
                name=f"broker-client-{address}", daemon=True,
            ).start()

    def _handle_client(self, client: _ClientConnection):
        reader = FrameReader()
        try:
            while self.running and client.alive:
                try:
                    data = client.sock.recv(RECV_CHUNK_BYTES)
                except socket.timeout:
                    continue

                if not data:
                    logger.info(f"Client disconnected: {client.address}")
                    break

                for frame in reader.feed(data):
                    self._handle_frame(client, frame)

        except (OSError, TransportError) as e:
            if self.running:
                logger.warning(f"Client {client.address} error: {e}")
        finally:
            with self._clients_lock:
                if client in self.clients:
                    self.clients.remove(client)
            self._drop_client(client)

    def _handle_frame(self, client: _ClientConnection, frame: dict):
        op = frame.get('op')

        if op == 'pub':
            try:
                data = base64.b64decode(frame['data'])
                subject = frame['subject']
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Malformed pub frame from {client.address}: {e}")
                return
            self.broker.publish(subject, data, frame.get('headers') or {})

        elif op == 'sub':
            sid = frame.get('sid')
            subject = frame.get('subject')
            if sid is None or not subject:
                logger.warning(f"Malformed sub frame from {client.address}: {frame}")
                return

            def forward(message: TransportMessage, sid=sid):
                client.send({
                    'op': 'msg',
                    'sid': sid,
                    'subject': message.subject,
                    'data': base64.b64encode(message.data).decode('ascii'),
                    'headers': message.headers,
                })

            client.tokens[sid] = self.broker.add(subject, frame.get('queue'), forward)

        elif op == 'unsub':
            token = client.tokens.pop(frame.get('sid'), None)
            if token is not None:
                self.broker.remove(token)

        else:
            logger.warning(f"Unknown op {op!r} from {client.address}")

    def _drop_client(self, client: _ClientConnection):
        client.alive = False
        for token in client.tokens.values():
            self.broker.remove(token)
        client.tokens.clear()
        try:
            client.sock.close()
        except OSError as e:
            logger.debug(f"Closing client {client.address}: {e}")
