from typing import Dict, Iterator, Optional

from duo_relay.models import Connection


class ConnectionRegistry:
    """sid -> Connection lookup owned by the session manager.

    Not thread-safe on its own; callers hold the manager lock.
    """

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def get(self, sid: str) -> Optional[Connection]:
        return self._connections.get(sid)

    def ensure(self, sid: str, now: int) -> Connection:
        conn = self._connections.get(sid)
        if conn is None:
            conn = Connection(sid, connected_at=now)
            self._connections[sid] = conn
        return conn

    def remove(self, sid: str) -> Optional[Connection]:
        return self._connections.pop(sid, None)
