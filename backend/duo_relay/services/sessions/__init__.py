from .manager import JoinResult, LeaveResult, RelayTarget, SessionManager, now_ms
from .registry import ConnectionRegistry

__all__ = [
    'ConnectionRegistry',
    'JoinResult',
    'LeaveResult',
    'RelayTarget',
    'SessionManager',
    'now_ms',
]
