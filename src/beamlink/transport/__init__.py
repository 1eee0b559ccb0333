"""Transport selection and session driving"""
from .roles import Role, SocketRole, TransportKind
from .session import TransportSession
from .coordinator import FallbackPolicy, TransportCoordinator

__all__ = [
    'Role',
    'SocketRole',
    'TransportKind',
    'TransportSession',
    'FallbackPolicy',
    'TransportCoordinator'
]
