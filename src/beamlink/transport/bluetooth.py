"""
Bluetooth channel opener

RFCOMM over the standard library's AF_BLUETOOTH sockets. The sender always
dials the receiver; the receiver always listens. There is no separate
topology negotiation as on Wi-Fi.
"""
import socket
import logging
import threading
from typing import Callable, Optional, Tuple

from beamlink import config
from beamlink.common.bluetooth import BluetoothDevice
from beamlink.common.errors import TransportUnavailable
from beamlink.transport.roles import Role, SocketRole, resolve_bluetooth_socket_role

logger = logging.getLogger(__name__)

BDADDR_ANY = "00:00:00:00:00:00"


def rfcomm_socket() -> socket.socket:
    """Create an RFCOMM stream socket"""
    if not hasattr(socket, 'AF_BLUETOOTH') or not hasattr(socket, 'BTPROTO_RFCOMM'):
        raise TransportUnavailable("Bluetooth sockets are not supported on this platform")
    try:
        return socket.socket(socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM)
    except OSError as e:
        raise TransportUnavailable(f"Bluetooth adapter unavailable: {e}") from e


class BluetoothChannelOpener:
    """Opens the RFCOMM channel for a Bluetooth session"""

    def __init__(self,
                 channel: int = config.RFCOMM_CHANNEL,
                 socket_factory: Callable[[], socket.socket] = rfcomm_socket,
                 listen_address: str = BDADDR_ANY):
        self.channel = channel
        self.socket_factory = socket_factory
        self.listen_address = listen_address
        self.listening = threading.Event()

        self._listener: Optional[socket.socket] = None
        self._aborted = threading.Event()
        self._lock = threading.Lock()

    def open(self, role: Role, device: Optional[BluetoothDevice] = None) -> Tuple[socket.socket, SocketRole]:
        """
        Open the channel for one session.

        Args:
            role: Transfer role of this device
            device: Peer to dial (required when sending)

        Raises:
            TransportUnavailable: If no connection could be established
        """
        socket_role = resolve_bluetooth_socket_role(role)
        logger.info(f"Bluetooth: role={role.value}, socket={socket_role.value}, channel={self.channel}")

        if socket_role is SocketRole.CLIENT:
            if device is None:
                raise TransportUnavailable("No Bluetooth device selected")
            return self._connect(device), socket_role
        return self._accept_one(), socket_role

    def _connect(self, device: BluetoothDevice) -> socket.socket:
        if self._aborted.is_set():
            raise TransportUnavailable("Bluetooth channel setup aborted")
        sock = self.socket_factory()
        try:
            sock.connect((device.address, self.channel))
        except OSError as e:
            sock.close()
            raise TransportUnavailable(f"Could not connect to {device.address}: {e}") from e
        logger.info(f"Connected to {device.name or device.address}")
        return sock

    def _accept_one(self) -> socket.socket:
        server = self.socket_factory()
        with self._lock:
            if self._aborted.is_set():
                server.close()
                raise TransportUnavailable("Bluetooth channel setup aborted")
            self._listener = server
        try:
            server.bind((self.listen_address, self.channel))
            server.listen(1)
            self.listening.set()
            logger.info(f"Listening for {config.BLUETOOTH_SERVICE_NAME} "
                        f"({config.BLUETOOTH_SERVICE_UUID}) on channel {self.channel}")

            conn, addr = server.accept()
            logger.info(f"Bluetooth peer connected: {addr}")
            return conn
        except OSError as e:
            if self._aborted.is_set():
                raise TransportUnavailable("Bluetooth channel setup aborted") from e
            raise TransportUnavailable(f"Could not listen on RFCOMM channel {self.channel}: {e}") from e
        finally:
            with self._lock:
                self._listener = None
            self.listening.clear()
            server.close()

    def reset(self):
        """Forget an earlier abort before a new session"""
        self._aborted.clear()

    def abort(self):
        """Stop a pending accept, or one that has not started yet"""
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
