"""
Connection roles

Transfer role (who sends) and socket role (who listens) are independent
axes. On Wi-Fi the topology owner always listens, whether it sends or
receives. On Bluetooth the receiver always listens and the sender dials.
"""
from enum import Enum


class TransportKind(Enum):
    WIFI = "wifi"
    BLUETOOTH = "bluetooth"


class Role(Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


class SocketRole(Enum):
    SERVER = "server"
    CLIENT = "client"


def resolve_wifi_socket_role(is_group_owner: bool) -> SocketRole:
    return SocketRole.SERVER if is_group_owner else SocketRole.CLIENT


def resolve_bluetooth_socket_role(role: Role) -> SocketRole:
    return SocketRole.CLIENT if role is Role.SENDER else SocketRole.SERVER
