import logging
import math
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from duo_relay.models import Role
from duo_relay.services.sessions.manager import SessionManager, now_ms


EVENT_INPUT = 'input'
EVENT_POSITION = 'position'

SIGNAL_LEVEL_COMPLETE = 'levelComplete'
SIGNAL_RESTART_LEVEL = 'restartLevel'
SIGNAL_NEXT_LEVEL = 'nextLevel'

DEFAULT_MIN_INTERVALS_MS = {
    EVENT_INPUT: 50,     # ~20/s
    EVENT_POSITION: 67,  # ~15/s
}


class RelayStatus(str, Enum):
    ACCEPTED = 'accepted'
    RATE_LIMITED = 'rate_limited'
    DROPPED = 'dropped'
    ERROR = 'error'


class RelayResult(NamedTuple):
    status: RelayStatus
    role: Optional[Role] = None
    delivered: int = 0
    message: Optional[Dict[str, Any]] = None


class WorldBounds(NamedTuple):
    width: float = 1000
    height: float = 600
    player_width: float = 28
    max_velocity_x: float = 12
    max_velocity_y: float = 20


def _number(value) -> float:
    # bool is an int subclass but never a coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    # ints compare exactly against the bounds at any size; float() could overflow
    if isinstance(value, int):
        return value
    if not math.isfinite(value):
        return 0
    return value


def _clamp(value, low, high):
    return min(max(value, low), high)


def clamp_position(payload, bounds: WorldBounds) -> Dict[str, float]:
    """Clamp a client-reported position into the world.

    Missing or non-numeric fields count as 0.
    """
    if not isinstance(payload, dict):
        payload = {}
    return {
        'x': _clamp(_number(payload.get('x')), 0, bounds.width - bounds.player_width),
        'y': _clamp(_number(payload.get('y')), 0, bounds.height),
        'velX': _clamp(_number(payload.get('velX')), -bounds.max_velocity_x, bounds.max_velocity_x),
        'velY': _clamp(_number(payload.get('velY')), -bounds.max_velocity_y, bounds.max_velocity_y),
    }


class RelayEngine:
    """Forwards gameplay events from one occupant to the other.

    ``emitter(event, message, sid)`` performs a single fire-and-forget send.
    Nothing here raises to the caller: every call reports a RelayResult and
    unexpected failures are logged and reported as ``RelayStatus.ERROR``.
    """

    def __init__(self, manager: SessionManager, emitter: Callable[[str, Dict[str, Any], str], None],
                 min_intervals_ms: Optional[Dict[str, int]] = None, bounds: Optional[WorldBounds] = None,
                 logger: Optional[logging.Logger] = None):
        self.manager = manager
        self.emitter = emitter
        self.min_intervals_ms = dict(DEFAULT_MIN_INTERVALS_MS)
        if min_intervals_ms:
            self.min_intervals_ms.update(min_intervals_ms)
        self.bounds = bounds or WorldBounds()
        self.logger = logger or logging.getLogger(__name__)
        self._signals = {
            SIGNAL_LEVEL_COMPLETE: manager.record_level_complete,
            SIGNAL_RESTART_LEVEL: manager.record_restart,
            SIGNAL_NEXT_LEVEL: manager.record_next_level,
        }

    @classmethod
    def from_config(cls, manager, emitter, config, logger=None) -> 'RelayEngine':
        return cls(
            manager,
            emitter,
            min_intervals_ms={
                EVENT_INPUT: int(config.get('INPUT_MIN_INTERVAL_MS', 50)),
                EVENT_POSITION: int(config.get('POSITION_MIN_INTERVAL_MS', 67)),
            },
            bounds=WorldBounds(
                width=config.get('WORLD_WIDTH', 1000),
                height=config.get('WORLD_HEIGHT', 600),
                player_width=config.get('PLAYER_WIDTH', 28),
                max_velocity_x=config.get('MAX_VELOCITY_X', 12),
                max_velocity_y=config.get('MAX_VELOCITY_Y', 20),
            ),
            logger=logger,
        )

    def accept_event(self, sid: str, kind: str, payload, now: Optional[int] = None) -> RelayResult:
        now = now_ms() if now is None else now
        try:
            min_interval = self.min_intervals_ms.get(kind)
            if min_interval is None:
                return RelayResult(RelayStatus.DROPPED)
            # Build the outgoing body before claim_relay records the timestamp
            body = clamp_position(payload, self.bounds) if kind == EVENT_POSITION else {'payload': payload}
            target = self.manager.claim_relay(sid, kind, min_interval, now=now)
            if target is None:
                return RelayResult(RelayStatus.DROPPED)
            if not target.accepted:
                return RelayResult(RelayStatus.RATE_LIMITED, target.role)

            message = {'role': target.role.value, **body, 'serverTimestamp': now}
            delivered = self._forward(kind, message, target.peers)
            return RelayResult(RelayStatus.ACCEPTED, target.role, delivered, message)
        except Exception:
            self.logger.exception(f"[relay-error] sid={sid} kind={kind}")
            return RelayResult(RelayStatus.ERROR)

    def relay_signal(self, sid: str, signal: str, now: Optional[int] = None) -> RelayResult:
        """Apply a level signal to the session and pass it on to the peer."""
        try:
            record = self._signals.get(signal)
            if record is None:
                return RelayResult(RelayStatus.DROPPED)
            target = record(sid, now=now)
            if target is None:
                return RelayResult(RelayStatus.DROPPED)
            message = {'role': target.role.value}
            if signal == SIGNAL_NEXT_LEVEL:
                message['currentLevel'] = target.current_level
            delivered = self._forward(signal, message, target.peers)
            return RelayResult(RelayStatus.ACCEPTED, target.role, delivered, message)
        except Exception:
            self.logger.exception(f"[relay-error] sid={sid} signal={signal}")
            return RelayResult(RelayStatus.ERROR)

    def _forward(self, event: str, message: Dict[str, Any], peers: List[str]) -> int:
        delivered = 0
        for peer in peers:
            try:
                self.emitter(event, message, peer)
                delivered += 1
            except Exception as exc:
                self.logger.warning(f"[relay-send-failed] event={event} to={peer} error={exc}")
        return delivered
