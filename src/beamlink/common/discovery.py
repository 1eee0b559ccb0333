"""
Wi-Fi peer discovery and link topology

Peers on the same network find each other with mDNS/Zeroconf (Bonjour).
Before a Wi-Fi session can open its socket, the link layer must settle who
is the topology owner (the group owner in Wi-Fi Direct terms): the owner
listens, the other peer connects to the owner's address.
"""
import socket
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Callable, Dict, Tuple
from zeroconf import ServiceBrowser, ServiceInfo, Zeroconf, ServiceStateChange

from beamlink import config
from beamlink.common.state import StateFlow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WifiPeer:
    """A peer seen on the local network"""
    name: str
    address: str
    port: int = config.WIFI_PORT


@dataclass(frozen=True)
class ConnectionInfo:
    """Resolved link topology"""
    is_group_owner: bool
    group_owner_address: str


def get_local_ip() -> str:
    """Get the local IP address"""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # Doesn't actually connect, just determines the local interface
        s.connect(('8.8.8.8', 80))
        return s.getsockname()[0]
    except OSError:
        return '127.0.0.1'
    finally:
        s.close()


class PeerDiscovery:
    """
    Handles peer discovery and advertisement using mDNS
    """

    def __init__(self, on_peer_found: Optional[Callable[[str, str, int], None]] = None,
                 on_peer_lost: Optional[Callable[[str], None]] = None,
                 service_type: str = config.SERVICE_TYPE):
        """
        Initialize peer discovery

        Args:
            on_peer_found: Callback when a peer is discovered (name, ip, port)
            on_peer_lost: Callback when a peer disappears (name)
            service_type: mDNS service type to advertise and browse
        """
        self.zeroconf: Optional[Zeroconf] = None
        self.browser: Optional[ServiceBrowser] = None
        self.service_info: Optional[ServiceInfo] = None
        self.service_type = service_type
        self.on_peer_found = on_peer_found
        self.on_peer_lost = on_peer_lost
        self.discovered_peers: Dict[str, Tuple[str, int]] = {}  # name -> (ip, port)
        self._running = False
        self._lock = threading.Lock()

    def _on_service_state_change(self, zeroconf: Zeroconf, service_type: str,
                                 name: str, state_change: ServiceStateChange):
        """Handle service state changes"""
        if state_change == ServiceStateChange.Added:
            info = zeroconf.get_service_info(service_type, name)
            if info:
                self._handle_service_found(name, info)
        elif state_change == ServiceStateChange.Removed:
            self._handle_service_lost(name)

    def _handle_service_found(self, name: str, info: ServiceInfo):
        """Handle a discovered peer"""
        if not info.addresses or (self.service_info and name == self.service_info.name):
            return

        ip = socket.inet_ntoa(info.addresses[0])
        port = info.port

        with self._lock:
            is_new = name not in self.discovered_peers
            self.discovered_peers[name] = (ip, port)

        if is_new:
            logger.info(f"Discovered peer: {name} at {ip}:{port}")
            if self.on_peer_found:
                self.on_peer_found(name, ip, port)

    def _handle_service_lost(self, name: str):
        """Handle a lost peer"""
        with self._lock:
            lost = self.discovered_peers.pop(name, None) is not None

        if lost:
            logger.info(f"Lost peer: {name}")
            if self.on_peer_lost:
                self.on_peer_lost(name)

    def start(self, port: int = config.WIFI_PORT):
        """
        Start peer discovery and advertisement

        Args:
            port: Port the transfer socket listens on
        """
        if self._running:
            return

        self.zeroconf = Zeroconf()

        local_ip = get_local_ip()
        hostname = socket.gethostname()
        service_name = f"beamlink-{hostname}.{self.service_type}"

        self.service_info = ServiceInfo(
            self.service_type,
            service_name,
            addresses=[socket.inet_aton(local_ip)],
            port=port,
            properties={'version': '1.0'},
        )

        try:
            self.zeroconf.register_service(self.service_info)
            logger.info(f"Registered service: {service_name} at {local_ip}:{port}")
        except Exception as e:
            logger.error(f"Failed to register service: {e}")

        self.browser = ServiceBrowser(
            self.zeroconf,
            self.service_type,
            handlers=[self._on_service_state_change]
        )

        self._running = True
        logger.info("Peer discovery started")

    def stop(self):
        """Stop peer discovery"""
        if not self._running:
            return

        if self.service_info and self.zeroconf:
            self.zeroconf.unregister_service(self.service_info)

        if self.browser:
            self.browser.cancel()

        if self.zeroconf:
            self.zeroconf.close()

        self._running = False
        logger.info("Peer discovery stopped")


class WifiLink(ABC):
    """
    Wi-Fi link-layer collaborator.

    `peers` and `connection_info` are most-recent-value streams; sessions
    block on `connection_info` until the topology is known.
    """

    def __init__(self):
        self.peers: StateFlow[Tuple[WifiPeer, ...]] = StateFlow(())
        self.connection_info: StateFlow[Optional[ConnectionInfo]] = StateFlow(None)

    @abstractmethod
    def start_discovery(self) -> None:
        """Begin publishing discovered peers to `peers`"""

    @abstractmethod
    def connect(self, peer: WifiPeer) -> None:
        """Join the peer's group; the peer becomes the topology owner"""

    @abstractmethod
    def create_group(self) -> None:
        """Become the topology owner and wait for a peer to join"""

    def disconnect(self) -> None:
        self.connection_info.set(None)

    def stop(self) -> None:
        pass


class LanWifiLink(WifiLink):
    """
    WifiLink for peers on the same LAN.

    The side that calls create_group() owns the topology and accepts the
    transfer connection; the side that calls connect(peer) dials it.
    """

    def __init__(self, port: int = config.WIFI_PORT, service_type: str = config.SERVICE_TYPE):
        super().__init__()
        self.port = port
        self._discovery = PeerDiscovery(
            on_peer_found=self._on_peer_found,
            on_peer_lost=self._on_peer_lost,
            service_type=service_type
        )

    def _on_peer_found(self, name: str, ip: str, port: int):
        peer = WifiPeer(name=name, address=ip, port=port)
        self.peers.update(lambda peers: tuple(p for p in peers if p.name != name) + (peer,))

    def _on_peer_lost(self, name: str):
        self.peers.update(lambda peers: tuple(p for p in peers if p.name != name))

    def start_discovery(self) -> None:
        self._discovery.start(self.port)

    def connect(self, peer: WifiPeer) -> None:
        logger.info(f"Joining topology owned by {peer.name} ({peer.address})")
        self.connection_info.set(ConnectionInfo(is_group_owner=False, group_owner_address=peer.address))

    def connect_address(self, address: str) -> None:
        """Join a known owner address without discovery"""
        self.connect(WifiPeer(name=address, address=address, port=self.port))

    def create_group(self) -> None:
        local_ip = get_local_ip()
        logger.info(f"Owning topology at {local_ip}")
        self.connection_info.set(ConnectionInfo(is_group_owner=True, group_owner_address=local_ip))

    def stop(self) -> None:
        self._discovery.stop()
        self.disconnect()
