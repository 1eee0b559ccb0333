"""
Transport coordinator

Picks the transport a session token asks for, opens the channel with the
right socket role, and runs exactly one TransportSession at a time.

- "wifi": wait for the link topology; the owner listens, the other dials
- anything else: Bluetooth; the sender dials the first known device, the
  receiver listens
- sender with no Bluetooth device: fail, or switch to Wi-Fi after telling
  the caller, depending on FallbackPolicy
"""
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Tuple

from beamlink import config
from beamlink.common.bluetooth import BluetoothDeviceRegistry
from beamlink.common.chunked_transfer import ProgressCallback
from beamlink.common.discovery import WifiLink
from beamlink.common.errors import SessionAlreadyActive, TransportUnavailable
from beamlink.common.files import FileAccess
from beamlink.common.history import HistorySink, TransferRecord
from beamlink.common.protocol import SocketStream, TransferMetadata
from beamlink.common.session import SessionToken, TRANSPORT_WIFI, TRANSPORT_BLUETOOTH
from beamlink.transport.bluetooth import BluetoothChannelOpener
from beamlink.transport.roles import Role, SocketRole, TransportKind
from beamlink.transport.session import TransportSession
from beamlink.transport.wifi import WifiChannelOpener

logger = logging.getLogger(__name__)

# (from_transport, to_transport, reason)
TransportChangedCallback = Callable[[TransportKind, TransportKind, str], None]


class FallbackPolicy(Enum):
    """What a Bluetooth sender does when no device is known"""
    NOTIFY = "notify"  # tell the caller, then use Wi-Fi
    FAIL = "fail"      # raise TransportUnavailable


class TransportCoordinator:
    """
    Selects a transport and drives one session at a time.

    Usage:
        coordinator = TransportCoordinator(LanWifiLink(), BluetoothDeviceRegistry(),
                                           LocalFileAccess(), JsonlHistory(path))
        record = coordinator.transfer(Role.SENDER, token, metadata, files, progress=cb)
    """

    def __init__(self,
                 wifi_link: WifiLink,
                 bluetooth_devices: BluetoothDeviceRegistry,
                 file_access: FileAccess,
                 history: HistorySink,
                 wifi_port: int = config.WIFI_PORT,
                 connect_timeout: float = config.CONNECT_TIMEOUT,
                 topology_timeout: Optional[float] = config.TOPOLOGY_TIMEOUT,
                 rfcomm_channel: int = config.RFCOMM_CHANNEL,
                 bluetooth_fallback: FallbackPolicy = FallbackPolicy.NOTIFY,
                 on_transport_changed: Optional[TransportChangedCallback] = None,
                 chunk_size: int = config.CHUNK_SIZE,
                 receive_dir: Optional[Path] = None,
                 wifi_opener: Optional[WifiChannelOpener] = None,
                 bluetooth_opener: Optional[BluetoothChannelOpener] = None):
        self.wifi_link = wifi_link
        self.bluetooth_devices = bluetooth_devices
        self.file_access = file_access
        self.history = history
        self.bluetooth_fallback = bluetooth_fallback
        self.on_transport_changed = on_transport_changed
        self.chunk_size = chunk_size
        self.receive_dir = receive_dir

        self.wifi_opener = wifi_opener or WifiChannelOpener(
            wifi_link, port=wifi_port, connect_timeout=connect_timeout, topology_timeout=topology_timeout)
        self.bluetooth_opener = bluetooth_opener or BluetoothChannelOpener(channel=rfcomm_channel)

        self.last_transport: Optional[TransportKind] = None
        self.last_socket_role: Optional[SocketRole] = None

        self._active = threading.Lock()
        self._state_lock = threading.Lock()
        self._session: Optional[TransportSession] = None
        self._cancelled = threading.Event()

    @property
    def active(self) -> bool:
        return self._active.locked()

    @property
    def wifi_peers(self):
        return self.wifi_link.peers

    @property
    def discovered_devices(self):
        return self.bluetooth_devices.devices

    def transfer(self,
                 role: Role,
                 token: SessionToken,
                 metadata: Optional[TransferMetadata] = None,
                 files: Sequence[Any] = (),
                 progress: Optional[ProgressCallback] = None) -> TransferRecord:
        """
        Open a channel for the token's transport and run the session.

        Returns:
            The TransferRecord appended to history

        Raises:
            SessionAlreadyActive: If another session is running on this coordinator
            TransportUnavailable: If no channel could be established
            BeamError: Any session failure (AuthFailure, TruncatedStream, ...)
        """
        if not self._active.acquire(blocking=False):
            raise SessionAlreadyActive("A transfer session is already active")
        try:
            self._cancelled.clear()
            self.wifi_opener.reset()
            self.bluetooth_opener.reset()
            kind, sock, socket_role = self._open_channel(role, token)
            self.last_transport = kind
            self.last_socket_role = socket_role

            session = TransportSession(
                SocketStream(sock), role, token, self.file_access, self.history,
                progress=progress, chunk_size=self.chunk_size, receive_dir=self.receive_dir
            )
            with self._state_lock:
                self._session = session
            if self._cancelled.is_set():
                session.cancel()

            logger.info(f"Session {token.id}: {role.value} over {kind.value} as {socket_role.value}")
            return session.run(metadata, files)
        finally:
            with self._state_lock:
                self._session = None
            self._active.release()

    def cancel(self):
        """Cancel the active session or the channel setup in progress"""
        self._cancelled.set()
        with self._state_lock:
            session = self._session
        if session:
            session.cancel()
        self.wifi_opener.abort()
        self.bluetooth_opener.abort()

    def _open_channel(self, role: Role, token: SessionToken) -> Tuple[TransportKind, Any, SocketRole]:
        if token.transport == TRANSPORT_WIFI:
            return (TransportKind.WIFI,) + self._open_wifi(role)

        if token.transport != TRANSPORT_BLUETOOTH:
            logger.warning(f"Unknown transport '{token.transport}', using Bluetooth")

        device = None
        if role is Role.SENDER:
            device = self.bluetooth_devices.first()
            if device is None:
                return self._fallback_to_wifi(role, "No Bluetooth device discovered")

        self._check_cancelled()
        sock, socket_role = self.bluetooth_opener.open(role, device)
        return TransportKind.BLUETOOTH, sock, socket_role

    def _check_cancelled(self):
        if self._cancelled.is_set():
            raise TransportUnavailable("Transfer cancelled before the channel opened")

    def _open_wifi(self, role: Role):
        self._check_cancelled()
        return self.wifi_opener.open(role)

    def _fallback_to_wifi(self, role: Role, reason: str):
        if self.bluetooth_fallback is FallbackPolicy.FAIL or self.on_transport_changed is None:
            raise TransportUnavailable(reason)

        logger.warning(f"{reason}; switching to Wi-Fi")
        self.on_transport_changed(TransportKind.BLUETOOTH, TransportKind.WIFI, reason)
        return (TransportKind.WIFI,) + self._open_wifi(role)
