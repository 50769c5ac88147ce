from enum import Enum
from typing import Dict, List, Optional


class Role(str, Enum):
    FIRE = 'fire'
    WATER = 'water'


# Assignment order for new occupants
ROLE_ORDER = (Role.FIRE, Role.WATER)
MAX_OCCUPANTS = len(ROLE_ORDER)


class Phase(str, Enum):
    WAITING = 'waiting'
    PLAYING = 'playing'
    COMPLETE = 'complete'


class Connection:
    """Registry entry for a single transport connection."""

    def __init__(self, sid: str, connected_at: int):
        self.sid = sid
        self.session_id: Optional[str] = None
        self.role: Optional[Role] = None
        self.display_name: Optional[str] = None
        self.connected_at = connected_at
        self.last_seen_at = connected_at

    def clear_session(self) -> None:
        self.session_id = None
        self.role = None
        self.display_name = None


class Session:
    """One isolated two-player pairing.

    Owns its slots (role -> sid), level/phase state and the rate-limit
    timestamps of its occupants, keyed by sid and then by event kind.
    """

    def __init__(self, session_id: str, created_at: int):
        self.id = session_id
        self.slots: Dict[Role, str] = {}
        self.current_level = 1
        self.phase = Phase.WAITING
        self.created_at = created_at
        self.last_event_at: Dict[str, Dict[str, int]] = {}
        self.eviction_deadline: Optional[int] = None

    @property
    def occupant_count(self) -> int:
        return len(self.slots)

    def is_full(self) -> bool:
        return self.occupant_count >= MAX_OCCUPANTS

    def is_empty(self) -> bool:
        return not self.slots

    def role_of(self, sid: str) -> Optional[Role]:
        for role, occupant in self.slots.items():
            if occupant == sid:
                return role
        return None

    def free_role(self) -> Optional[Role]:
        for role in ROLE_ORDER:
            if role not in self.slots:
                return role
        return None

    def peers_of(self, sid: str) -> List[str]:
        return [occupant for occupant in self.slots.values() if occupant != sid]

    def add_occupant(self, sid: str, role: Role) -> None:
        if role in self.slots:
            raise ValueError(f'Role {role.value} already occupied in {self.id}')
        self.slots[role] = sid
        self.last_event_at[sid] = {}
        self.eviction_deadline = None
        self._recompute_phase()

    def remove_occupant(self, sid: str) -> Optional[Role]:
        role = self.role_of(sid)
        if role is None:
            return None
        del self.slots[role]
        self.last_event_at.pop(sid, None)
        self._recompute_phase()
        return role

    def _recompute_phase(self) -> None:
        if not self.is_full():
            self.phase = Phase.WAITING
        elif self.phase == Phase.WAITING:
            self.phase = Phase.PLAYING

    def age_ms(self, now: int) -> int:
        return max(0, now - self.created_at)

    def to_dict(self, now: int):
        return {
            'id': self.id,
            'occupantCount': self.occupant_count,
            'currentLevel': self.current_level,
            'phase': self.phase.value,
            'ageMs': self.age_ms(now),
        }
