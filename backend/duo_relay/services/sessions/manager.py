import logging
import re
import threading
import time
from typing import Callable, Dict, List, NamedTuple, Optional

from duo_relay.errors import InvalidIdentifier, InvalidRequest, SessionFull
from duo_relay.models import MAX_OCCUPANTS, Connection, Phase, Role, Session
from .registry import ConnectionRegistry


_NON_ALNUM = re.compile(r'[^A-Z0-9]')

DEFAULT_GRACE_PERIOD_SEC = 5.0
DEFAULT_STALE_THRESHOLD_MS = 10 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


class JoinResult(NamedTuple):
    session_id: str
    role: Role
    occupancy_count: int
    display_name: str
    peers: List[str]
    created: bool
    # True when the connection already held this seat
    rejoined: bool
    # Set when the connection had to leave another session first
    previous: Optional['LeaveResult']


class LeaveResult(NamedTuple):
    session_id: str
    role: Role
    display_name: Optional[str]
    occupancy_count: int
    peers: List[str]
    emptied: bool
    eviction_deadline: Optional[int]


class RelayTarget(NamedTuple):
    session_id: str
    role: Role
    peers: List[str]
    current_level: int
    phase: Phase
    accepted: bool = True


class SessionManager:
    """Owns the session table and the connection registry.

    Every mutation runs under one re-entrant lock so that resolve-or-create
    and slot assignment are atomic per session id even when the transport
    dispatches handlers on several threads. Timestamps are epoch
    milliseconds; every public method takes an optional ``now`` for tests.

    ``scheduler`` is called as ``scheduler(delay_sec, callback, *args)`` to
    run deferred evictions. Without one, emptied sessions wait for
    :meth:`sweep_stale` or an explicit :meth:`evict_if_empty`.
    """

    def __init__(self, grace_period_sec: float = DEFAULT_GRACE_PERIOD_SEC,
                 stale_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS,
                 max_display_name_length: int = 20, min_session_id_length: int = 3,
                 scheduler: Optional[Callable] = None, logger: Optional[logging.Logger] = None):
        self.grace_period_sec = grace_period_sec
        self.stale_threshold_ms = stale_threshold_ms
        self.max_display_name_length = max_display_name_length
        self.min_session_id_length = min_session_id_length
        self.scheduler = scheduler
        self.logger = logger or logging.getLogger(__name__)
        self._sessions: Dict[str, Session] = {}
        self._registry = ConnectionRegistry()
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config, scheduler=None, logger=None) -> 'SessionManager':
        return cls(
            grace_period_sec=float(config.get('SESSION_GRACE_PERIOD_SEC', DEFAULT_GRACE_PERIOD_SEC)),
            stale_threshold_ms=int(config.get('STALE_SESSION_SEC', 600)) * 1000,
            max_display_name_length=int(config.get('MAX_DISPLAY_NAME_LENGTH', 20)),
            min_session_id_length=int(config.get('MIN_SESSION_ID_LENGTH', 3)),
            scheduler=scheduler,
            logger=logger,
        )

    # ---- Validation ----

    def normalize_session_id(self, raw) -> str:
        """Uppercase and strip non-alphanumerics: ``"ab!! c1"`` -> ``"ABC1"``."""
        if not isinstance(raw, str) or not raw.strip():
            raise InvalidRequest('sessionId is required')
        normalized = _NON_ALNUM.sub('', raw.upper())
        if len(normalized) < self.min_session_id_length:
            raise InvalidIdentifier(
                f'sessionId must contain at least {self.min_session_id_length} letters or digits'
            )
        return normalized

    def normalize_display_name(self, raw) -> str:
        if not isinstance(raw, str):
            raise InvalidRequest('displayName is required')
        name = raw.strip()[:self.max_display_name_length]
        if not name:
            raise InvalidRequest('displayName is required')
        return name

    # ---- Lookups ----

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def get_connection(self, sid: str) -> Optional[Connection]:
        with self._lock:
            return self._registry.get(sid)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def connection_ids(self) -> List[str]:
        with self._lock:
            return [conn.sid for conn in self._registry]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ---- Lifecycle ----

    def resolve_or_create(self, raw_session_id, now: Optional[int] = None) -> Session:
        session_id = self.normalize_session_id(raw_session_id)
        now = now_ms() if now is None else now
        with self._lock:
            session, _ = self._resolve_or_create_locked(session_id, now)
            return session

    def _resolve_or_create_locked(self, session_id: str, now: int):
        session = self._sessions.get(session_id)
        if session is not None:
            return session, False
        session = Session(session_id, created_at=now)
        self._sessions[session_id] = session
        self.logger.info(f"[session-create] id={session_id}")
        return session, True

    def connect(self, sid: str, now: Optional[int] = None) -> Connection:
        now = now_ms() if now is None else now
        with self._lock:
            return self._registry.ensure(sid, now)

    def touch(self, sid: str, now: Optional[int] = None) -> None:
        now = now_ms() if now is None else now
        with self._lock:
            conn = self._registry.get(sid)
            if conn is not None:
                conn.last_seen_at = now

    def join(self, sid: str, raw_session_id, raw_display_name, now: Optional[int] = None) -> JoinResult:
        """Assign ``sid`` a role in the session, creating the session if needed.

        Raises InvalidRequest / InvalidIdentifier for bad input and
        SessionFull when both roles are taken. A connection already seated
        in another session is moved out of it first; that departure is
        returned in ``previous`` so the caller can notify the old peer.
        Re-joining the session the connection already sits in returns its
        current role.
        """
        display_name = self.normalize_display_name(raw_display_name)
        session_id = self.normalize_session_id(raw_session_id)
        now = now_ms() if now is None else now

        with self._lock:
            conn = self._registry.ensure(sid, now)
            conn.last_seen_at = now
            session = self._sessions.get(session_id)

            if session is not None and conn.session_id == session_id and session.role_of(sid):
                conn.display_name = display_name
                return JoinResult(session_id, conn.role, session.occupant_count, display_name,
                                  session.peers_of(sid), created=False, rejoined=True, previous=None)

            if session is not None and session.is_full():
                self.logger.info(f"[join-full] sid={sid} id={session_id}")
                raise SessionFull(session_id)

            previous = None
            if conn.session_id is not None:
                previous = self._leave_locked(conn, now)

            session, created = self._resolve_or_create_locked(session_id, now)
            role = session.free_role()
            if role is None:
                raise SessionFull(session_id)
            session.add_occupant(sid, role)
            conn.session_id = session_id
            conn.role = role
            conn.display_name = display_name
            self.logger.info(
                f"[join] sid={sid} name={display_name!r} role={role.value} id={session_id} "
                f"occupancy={session.occupant_count}/{MAX_OCCUPANTS}"
            )
            result = JoinResult(session_id, role, session.occupant_count, display_name,
                                session.peers_of(sid), created=created, rejoined=False,
                                previous=previous)

        if previous is not None:
            self._schedule_eviction(previous)
        return result

    def leave(self, sid: str, now: Optional[int] = None) -> Optional[LeaveResult]:
        """Release the connection's slot. Returns None when it held none."""
        now = now_ms() if now is None else now
        with self._lock:
            conn = self._registry.get(sid)
            if conn is None or conn.session_id is None:
                return None
            result = self._leave_locked(conn, now)
        self._schedule_eviction(result)
        return result

    def disconnect(self, sid: str, now: Optional[int] = None) -> Optional[LeaveResult]:
        """Leave plus registry removal. Safe to call more than once."""
        now = now_ms() if now is None else now
        result = self.leave(sid, now=now)
        with self._lock:
            conn = self._registry.remove(sid)
        if conn is not None:
            self.logger.info(f"[connection-closed] sid={sid} connected_ms={max(0, now - conn.connected_at)}")
        return result

    def _leave_locked(self, conn: Connection, now: int) -> Optional[LeaveResult]:
        session_id = conn.session_id
        display_name = conn.display_name
        session = self._sessions.get(session_id)
        conn.clear_session()
        if session is None:
            return None
        role = session.remove_occupant(conn.sid)
        if role is None:
            return None
        emptied = session.is_empty()
        deadline = None
        if emptied:
            deadline = now + int(self.grace_period_sec * 1000)
            session.eviction_deadline = deadline
        self.logger.info(
            f"[leave] sid={conn.sid} role={role.value} id={session_id} "
            f"occupancy={session.occupant_count}/{MAX_OCCUPANTS}"
        )
        return LeaveResult(session_id, role, display_name, session.occupant_count,
                           session.peers_of(conn.sid), emptied, deadline)

    def _schedule_eviction(self, result: Optional[LeaveResult]) -> None:
        if result is None or not result.emptied or self.scheduler is None:
            return
        self.scheduler(self.grace_period_sec, self.evict_if_empty, result.session_id, result.eviction_deadline)

    def evict_if_empty(self, session_id: str, deadline: Optional[int] = None) -> bool:
        """Deferred eviction callback.

        Occupancy is checked now, at fire time. ``deadline`` ties the call to
        the emptying that scheduled it; a session that filled and emptied
        again in between carries a newer deadline and is left alone.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            if not session.is_empty():
                self.logger.info(f"[evict-skip] id={session_id} occupancy={session.occupant_count}")
                return False
            if deadline is not None and session.eviction_deadline != deadline:
                self.logger.info(f"[evict-skip] id={session_id} superseded")
                return False
            del self._sessions[session_id]
            self.logger.info(f"[evict] id={session_id}")
            return True

    def sweep_stale(self, now: Optional[int] = None, threshold_ms: Optional[int] = None) -> List[str]:
        """Delete empty sessions older than the threshold; returns their ids."""
        now = now_ms() if now is None else now
        threshold_ms = self.stale_threshold_ms if threshold_ms is None else threshold_ms
        with self._lock:
            stale = [
                sid for sid, session in self._sessions.items()
                if session.is_empty() and session.age_ms(now) > threshold_ms
            ]
            for session_id in stale:
                del self._sessions[session_id]
        if stale:
            self.logger.info(f"[sweep] removed={len(stale)} ids={','.join(stale)}")
        return stale

    def idle_connections(self, now: Optional[int] = None, timeout_ms: int = 5 * 60 * 1000) -> List[str]:
        now = now_ms() if now is None else now
        with self._lock:
            return [conn.sid for conn in self._registry if now - conn.last_seen_at >= timeout_ms]

    # ---- Gameplay ----

    def claim_relay(self, sid: str, kind: str, min_interval_ms: int,
                    now: Optional[int] = None) -> Optional[RelayTarget]:
        """Rate-limit check and record for one relay event.

        Returns None when the connection is not seated anywhere. The
        timestamp is only recorded when the event is accepted; a delta
        equal to ``min_interval_ms`` is accepted.
        """
        now = now_ms() if now is None else now
        with self._lock:
            seated = self._seated_locked(sid, now)
            if seated is None:
                return None
            conn, session = seated
            stamps = session.last_event_at.setdefault(sid, {})
            last = stamps.get(kind)
            accepted = last is None or now - last >= min_interval_ms
            if accepted:
                stamps[kind] = now
            return RelayTarget(session.id, conn.role, session.peers_of(sid),
                               session.current_level, session.phase, accepted)

    def record_level_complete(self, sid: str, now: Optional[int] = None) -> Optional[RelayTarget]:
        return self._transition(sid, 'level-complete', now)

    def record_restart(self, sid: str, now: Optional[int] = None) -> Optional[RelayTarget]:
        return self._transition(sid, 'restart', now)

    def record_next_level(self, sid: str, now: Optional[int] = None) -> Optional[RelayTarget]:
        return self._transition(sid, 'next-level', now)

    def _transition(self, sid: str, signal: str, now: Optional[int]) -> Optional[RelayTarget]:
        now = now_ms() if now is None else now
        with self._lock:
            seated = self._seated_locked(sid, now)
            if seated is None:
                return None
            conn, session = seated
            if signal == 'level-complete':
                if session.phase == Phase.PLAYING:
                    session.phase = Phase.COMPLETE
            elif signal == 'next-level':
                session.current_level += 1
                if session.phase == Phase.COMPLETE:
                    session.phase = Phase.PLAYING
            elif signal == 'restart':
                if session.phase == Phase.COMPLETE:
                    session.phase = Phase.PLAYING
            else:
                raise ValueError(f'Unknown level signal {signal!r}')
            self.logger.info(
                f"[{signal}] id={session.id} role={conn.role.value} "
                f"level={session.current_level} phase={session.phase.value}"
            )
            return RelayTarget(session.id, conn.role, session.peers_of(sid),
                               session.current_level, session.phase)

    def _seated_locked(self, sid: str, now: int):
        conn = self._registry.get(sid)
        if conn is None:
            return None
        conn.last_seen_at = now
        if conn.session_id is None or conn.role is None:
            return None
        session = self._sessions.get(conn.session_id)
        if session is None or session.role_of(sid) is None:
            return None
        return conn, session

    # ---- Read-only views ----

    def stats(self, now: Optional[int] = None):
        now = now_ms() if now is None else now
        with self._lock:
            sessions = [session.to_dict(now) for session in self._sessions.values()]
        return {
            'totalSessionCount': len(sessions),
            'totalOccupants': sum(s['occupantCount'] for s in sessions),
            'sessions': sessions,
        }

    def session_stats(self, sid: str, now: Optional[int] = None):
        now = now_ms() if now is None else now
        with self._lock:
            conn = self._registry.get(sid)
            if conn is None or conn.session_id is None:
                return None
            session = self._sessions.get(conn.session_id)
            return session.to_dict(now) if session else None
