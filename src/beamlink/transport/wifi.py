"""
Wi-Fi channel opener

Waits for the link topology, then either listens on the well-known port
and accepts exactly one connection (topology owner) or connects to the
owner's address with a bounded timeout. Which side sends does not matter.
"""
import socket
import logging
import threading
from typing import Optional, Tuple

from beamlink import config
from beamlink.common.discovery import ConnectionInfo, WifiLink
from beamlink.common.errors import TransportUnavailable
from beamlink.transport.roles import Role, SocketRole, resolve_wifi_socket_role

logger = logging.getLogger(__name__)

# Granularity of topology waits, so abort() is noticed promptly
_WAIT_SLICE = 0.25


class WifiChannelOpener:
    """Opens the TCP channel for a Wi-Fi session"""

    def __init__(self,
                 link: WifiLink,
                 port: int = config.WIFI_PORT,
                 connect_timeout: float = config.CONNECT_TIMEOUT,
                 topology_timeout: Optional[float] = config.TOPOLOGY_TIMEOUT,
                 bind_host: str = '0.0.0.0'):
        self.link = link
        self.port = port
        self.connect_timeout = connect_timeout
        self.topology_timeout = topology_timeout
        self.bind_host = bind_host

        # Set once the server socket is listening; bound_port is the actual port
        self.listening = threading.Event()
        self.bound_port: Optional[int] = None

        self._listener: Optional[socket.socket] = None
        self._aborted = threading.Event()
        self._lock = threading.Lock()

    def resolve_topology(self) -> ConnectionInfo:
        """Block until the link layer reports who owns the topology"""
        waited = 0.0
        while True:
            if self._aborted.is_set():
                raise TransportUnavailable("Wi-Fi channel setup aborted")
            info = self.link.connection_info.wait_for(lambda i: i is not None, timeout=_WAIT_SLICE)
            if info is not None:
                return info
            waited += _WAIT_SLICE
            if self.topology_timeout is not None and waited >= self.topology_timeout:
                raise TransportUnavailable(
                    f"Wi-Fi link not established within {self.topology_timeout:.0f}s")

    def open(self, role: Role) -> Tuple[socket.socket, SocketRole]:
        """
        Open the channel for one session.

        Returns:
            (connected socket, socket role of this device)

        Raises:
            TransportUnavailable: If no connection could be established
        """
        info = self.resolve_topology()
        socket_role = resolve_wifi_socket_role(info.is_group_owner)
        logger.info(f"Wi-Fi topology: groupOwner={info.is_group_owner}, "
                    f"address={info.group_owner_address}, role={role.value}, socket={socket_role.value}")

        if socket_role is SocketRole.SERVER:
            return self._accept_one(), socket_role
        return self._connect(info.group_owner_address), socket_role

    def _accept_one(self) -> socket.socket:
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        with self._lock:
            if self._aborted.is_set():
                server.close()
                raise TransportUnavailable("Wi-Fi channel setup aborted")
            self._listener = server
        try:
            server.bind((self.bind_host, self.port))
            server.listen(1)
            self.bound_port = server.getsockname()[1]
            self.listening.set()
            logger.info(f"Waiting for peer on port {self.bound_port}")

            conn, addr = server.accept()
            logger.info(f"Peer connected from {addr[0]}:{addr[1]}")
            return conn
        except OSError as e:
            if self._aborted.is_set():
                raise TransportUnavailable("Wi-Fi channel setup aborted") from e
            raise TransportUnavailable(f"Could not accept on port {self.port}: {e}") from e
        finally:
            with self._lock:
                self._listener = None
            self.listening.clear()
            server.close()

    def _connect(self, address: str) -> socket.socket:
        if self._aborted.is_set():
            raise TransportUnavailable("Wi-Fi channel setup aborted")
        logger.info(f"Connecting to {address}:{self.port}")
        try:
            sock = socket.create_connection((address, self.port), timeout=self.connect_timeout)
        except OSError as e:
            raise TransportUnavailable(f"Could not connect to {address}:{self.port}: {e}") from e
        sock.settimeout(None)
        return sock

    def reset(self):
        """Forget an earlier abort before a new session"""
        self._aborted.clear()

    def abort(self):
        """Stop a pending topology wait or accept, or one that has not started yet"""
        self._aborted.set()
        with self._lock:
            listener = self._listener
        if listener:
            try:
                listener.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Not connected; close() below still wakes accept()
                pass
            listener.close()
