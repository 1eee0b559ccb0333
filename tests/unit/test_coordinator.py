"""
Unit tests for transport/coordinator.py - Transport selection and socket roles
"""
import pytest
import socket
import threading

from beamlink import config
from beamlink.common.bluetooth import BluetoothDevice, BluetoothDeviceRegistry
from beamlink.common.discovery import WifiPeer
from beamlink.common.errors import SessionAlreadyActive, TransportUnavailable, TransferCancelled
from beamlink.common.files import LocalFileAccess
from beamlink.common.history import Direction, MemoryHistory
from beamlink.common.protocol import SocketStream, TransferMetadata
from beamlink.common.session import SessionToken, TransferKind
from beamlink.transport.bluetooth import BluetoothChannelOpener
from beamlink.transport.coordinator import FallbackPolicy, TransportCoordinator
from beamlink.transport.roles import (
    Role, SocketRole, TransportKind, resolve_bluetooth_socket_role, resolve_wifi_socket_role
)
from beamlink.transport.session import TransportSession
from beamlink.transport.wifi import WifiChannelOpener

from fixtures.fakes import FakeWifiLink, LoopbackRfcomm, PairedOpener


def bluetooth_token():
    return SessionToken.generate(TransferKind.SINGLE_FILE, {"transport": "bluetooth"})


def make_coordinator(receive_dir, history=None, wifi_opener=None, bluetooth_opener=None, **kwargs):
    link = kwargs.pop("link", None) or FakeWifiLink()
    return TransportCoordinator(
        link, kwargs.pop("devices", None) or BluetoothDeviceRegistry(),
        LocalFileAccess(receive_dir), history or MemoryHistory(),
        wifi_opener=wifi_opener or WifiChannelOpener(link, port=0, bind_host="127.0.0.1",
                                                     topology_timeout=2.0),
        bluetooth_opener=bluetooth_opener or PairedOpener(SocketRole.SERVER),
        **kwargs
    )


def in_thread(fn, *args, **kwargs):
    outcome = {}

    def target():
        try:
            outcome["result"] = fn(*args, **kwargs)
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=target)
    thread.start()
    return thread, outcome


class TestRoleResolution:
    """Transfer role and socket role are independent"""

    def test_wifi_owner_is_server(self):
        assert resolve_wifi_socket_role(True) is SocketRole.SERVER
        assert resolve_wifi_socket_role(False) is SocketRole.CLIENT

    def test_bluetooth_sender_dials(self):
        assert resolve_bluetooth_socket_role(Role.SENDER) is SocketRole.CLIENT
        assert resolve_bluetooth_socket_role(Role.RECEIVER) is SocketRole.SERVER


class TestWifiOverLoopback:
    """Both sides over real localhost TCP"""

    def test_default_topology_timeout(self, temp_dir):
        coordinator = TransportCoordinator(FakeWifiLink(), BluetoothDeviceRegistry(),
                                           LocalFileAccess(temp_dir), MemoryHistory())
        assert coordinator.wifi_opener.topology_timeout == config.TOPOLOGY_TIMEOUT == 60.0

    @pytest.mark.parametrize("owner_role", [Role.SENDER, Role.RECEIVER])
    def test_owner_is_server_either_way(self, owner_role, temp_dir, sample_file, token):
        other_role = Role.RECEIVER if owner_role is Role.SENDER else Role.SENDER
        metadata = TransferMetadata.for_files(LocalFileAccess(), [sample_file])

        owner_link = FakeWifiLink()
        owner_link.create_group()
        owner_history = MemoryHistory()
        owner = make_coordinator(temp_dir / "owner", history=owner_history, link=owner_link)

        def kwargs_for(role):
            return {"metadata": metadata, "files": [sample_file]} if role is Role.SENDER else {}

        thread, outcome = in_thread(owner.transfer, owner_role, token, **kwargs_for(owner_role))
        assert owner.wifi_opener.listening.wait(5)

        client_link = FakeWifiLink()
        client_history = MemoryHistory()
        client = make_coordinator(
            temp_dir / "client", history=client_history, link=client_link,
            wifi_opener=WifiChannelOpener(client_link, port=owner.wifi_opener.bound_port, topology_timeout=2.0)
        )
        client_link.connect(WifiPeer(name="owner", address="127.0.0.1"))

        client_record = client.transfer(other_role, token, **kwargs_for(other_role))
        thread.join(timeout=10)

        assert "error" not in outcome
        assert owner.last_transport is TransportKind.WIFI
        assert owner.last_socket_role is SocketRole.SERVER
        assert client.last_socket_role is SocketRole.CLIENT

        receiver_dir = temp_dir / ("owner" if owner_role is Role.RECEIVER else "client")
        assert (receiver_dir / "a.txt").read_bytes() == b"hello world"

        owner_record = outcome["result"]
        assert {owner_record.direction, client_record.direction} == {Direction.SEND, Direction.RECEIVE}
        assert len(owner_history.records) == 1 and len(client_history.records) == 1

    def test_no_topology_is_unavailable(self, temp_dir, token):
        link = FakeWifiLink()
        coordinator = make_coordinator(
            temp_dir, link=link, wifi_opener=WifiChannelOpener(link, port=0, topology_timeout=0.3))

        with pytest.raises(TransportUnavailable):
            coordinator.transfer(Role.RECEIVER, token)
        assert not coordinator.active

    def test_refused_connection_is_unavailable(self, temp_dir, token):
        link = FakeWifiLink()
        link.connect(WifiPeer(name="nobody", address="127.0.0.1"))

        # Grab a free port and release it so nothing listens there
        s = socket.socket()
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
        s.close()

        coordinator = make_coordinator(
            temp_dir, link=link,
            wifi_opener=WifiChannelOpener(link, port=port, connect_timeout=1.0, topology_timeout=1.0))
        with pytest.raises(TransportUnavailable):
            coordinator.transfer(Role.RECEIVER, token)

    def test_cancel_while_waiting_for_peer(self, temp_dir, token):
        link = FakeWifiLink()
        link.create_group()
        coordinator = make_coordinator(temp_dir, link=link)

        thread, outcome = in_thread(coordinator.transfer, Role.RECEIVER, token)
        assert coordinator.wifi_opener.listening.wait(5)
        coordinator.cancel()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert isinstance(outcome["error"], TransportUnavailable)
        assert not coordinator.active


class TestBluetoothSelection:
    """Bluetooth path with a fake channel opener"""

    def test_sender_dials_first_device(self, temp_dir, sample_file):
        devices = BluetoothDeviceRegistry()
        device = BluetoothDevice("AA:BB:CC:DD:EE:FF", "phone")
        devices.add_device(device)
        opener = PairedOpener(SocketRole.CLIENT)
        coordinator = make_coordinator(temp_dir, devices=devices, bluetooth_opener=opener)
        token = bluetooth_token()

        # Receiving end of the pair
        peer_dir = temp_dir / "peer"
        peer_thread = {}

        def serve_peer():
            assert opener.opened.wait(5)
            peer = TransportSession(SocketStream(opener.peer_sock), Role.RECEIVER, token,
                                    LocalFileAccess(peer_dir), MemoryHistory())
            peer_thread["record"] = peer.run()

        thread = threading.Thread(target=serve_peer)
        thread.start()

        metadata = TransferMetadata.for_files(LocalFileAccess(), [sample_file])
        coordinator.transfer(Role.SENDER, token, metadata, [sample_file])
        thread.join(timeout=10)

        assert opener.calls == [(Role.SENDER, device)]
        assert coordinator.last_transport is TransportKind.BLUETOOTH
        assert coordinator.last_socket_role is SocketRole.CLIENT
        assert (peer_dir / "a.txt").read_bytes() == b"hello world"

    def test_receiver_needs_no_device(self, temp_dir):
        opener = PairedOpener(SocketRole.SERVER)
        coordinator = make_coordinator(temp_dir, bluetooth_opener=opener)

        thread, outcome = in_thread(coordinator.transfer, Role.RECEIVER, bluetooth_token())
        assert opener.opened.wait(5)
        opener.peer_sock.close()
        thread.join(timeout=5)

        assert opener.calls == [(Role.RECEIVER, None)]
        assert coordinator.last_transport is TransportKind.BLUETOOTH

    def test_unknown_transport_uses_bluetooth(self, temp_dir):
        opener = PairedOpener(SocketRole.SERVER)
        coordinator = make_coordinator(temp_dir, bluetooth_opener=opener)
        token = SessionToken.generate(TransferKind.SINGLE_FILE, {"transport": "nfc"})

        thread, _ = in_thread(coordinator.transfer, Role.RECEIVER, token)
        assert opener.opened.wait(5)
        opener.peer_sock.close()
        thread.join(timeout=5)

        assert coordinator.last_transport is TransportKind.BLUETOOTH


class TestBluetoothFallback:
    """Sender with no discovered Bluetooth device"""

    def test_fail_policy(self, temp_dir, sample_file):
        opener = PairedOpener(SocketRole.CLIENT)
        coordinator = make_coordinator(temp_dir, bluetooth_opener=opener,
                                       bluetooth_fallback=FallbackPolicy.FAIL)

        with pytest.raises(TransportUnavailable):
            coordinator.transfer(Role.SENDER, bluetooth_token(), TransferMetadata("a.txt", 11), [sample_file])
        assert opener.calls == []

    def test_notify_without_callback_fails(self, temp_dir, sample_file):
        coordinator = make_coordinator(temp_dir, bluetooth_fallback=FallbackPolicy.NOTIFY)

        with pytest.raises(TransportUnavailable):
            coordinator.transfer(Role.SENDER, bluetooth_token(), TransferMetadata("a.txt", 11), [sample_file])

    def test_notify_switches_to_wifi(self, temp_dir, sample_file):
        changes = []
        wifi = PairedOpener(SocketRole.SERVER)
        bluetooth = PairedOpener(SocketRole.CLIENT)
        coordinator = make_coordinator(
            temp_dir, wifi_opener=wifi, bluetooth_opener=bluetooth,
            bluetooth_fallback=FallbackPolicy.NOTIFY,
            on_transport_changed=lambda old, new, reason: changes.append((old, new, reason))
        )
        token = bluetooth_token()

        def drain():
            assert wifi.opened.wait(5)
            peer = TransportSession(SocketStream(wifi.peer_sock), Role.RECEIVER, token,
                                    LocalFileAccess(temp_dir / "peer"), MemoryHistory())
            peer.run()

        thread = threading.Thread(target=drain)
        thread.start()
        metadata = TransferMetadata.for_files(LocalFileAccess(), [sample_file])
        coordinator.transfer(Role.SENDER, token, metadata, [sample_file])
        thread.join(timeout=10)

        assert changes[0][:2] == (TransportKind.BLUETOOTH, TransportKind.WIFI)
        assert bluetooth.calls == []
        assert wifi.calls == [(Role.SENDER, None)]
        assert coordinator.last_transport is TransportKind.WIFI


class TestSingleSession:
    """Only one session per coordinator at a time"""

    def test_second_session_rejected(self, temp_dir, token):
        link = FakeWifiLink()
        link.create_group()
        coordinator = make_coordinator(temp_dir, link=link)

        thread, outcome = in_thread(coordinator.transfer, Role.RECEIVER, token)
        assert coordinator.wifi_opener.listening.wait(5)
        assert coordinator.active

        with pytest.raises(SessionAlreadyActive):
            coordinator.transfer(Role.RECEIVER, token)

        coordinator.cancel()
        thread.join(timeout=5)
        assert not coordinator.active

    def test_cancel_running_session(self, temp_dir):
        opener = PairedOpener(SocketRole.SERVER)
        coordinator = make_coordinator(temp_dir, bluetooth_opener=opener)

        thread, outcome = in_thread(coordinator.transfer, Role.RECEIVER, bluetooth_token())
        assert opener.opened.wait(5)
        coordinator.cancel()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert isinstance(outcome["error"], TransferCancelled)
        assert opener.aborted

    def test_cancel_while_listener_is_created(self, temp_dir):
        rfcomm = LoopbackRfcomm()
        coordinator = make_coordinator(
            temp_dir, bluetooth_opener=BluetoothChannelOpener(socket_factory=rfcomm))
        # Cancel lands after transfer() started but before the listener exists
        rfcomm.on_create = coordinator.cancel

        thread, outcome = in_thread(coordinator.transfer, Role.RECEIVER, bluetooth_token())
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert isinstance(outcome["error"], TransportUnavailable)
        assert not rfcomm.bound.is_set()
        assert not coordinator.active

    def test_cancel_before_bluetooth_open(self, temp_dir, sample_file):
        opener = PairedOpener(SocketRole.CLIENT)
        devices = BluetoothDeviceRegistry()
        coordinator = make_coordinator(temp_dir, devices=devices, bluetooth_opener=opener)
        device = BluetoothDevice("AA:BB:CC:DD:EE:FF", "phone")

        def cancel_on_lookup():
            coordinator.cancel()
            return device

        devices.first = cancel_on_lookup
        with pytest.raises(TransportUnavailable):
            coordinator.transfer(Role.SENDER, bluetooth_token(), TransferMetadata("a.txt", 11), [sample_file])
        assert opener.calls == []

    def test_cancel_between_sessions_is_forgotten(self, temp_dir):
        opener = PairedOpener(SocketRole.SERVER)
        coordinator = make_coordinator(temp_dir, bluetooth_opener=opener)
        coordinator.cancel()

        thread, outcome = in_thread(coordinator.transfer, Role.RECEIVER, bluetooth_token())
        assert opener.opened.wait(5)
        assert not opener.aborted
        opener.peer_sock.close()
        thread.join(timeout=5)

        assert opener.calls == [(Role.RECEIVER, None)]
