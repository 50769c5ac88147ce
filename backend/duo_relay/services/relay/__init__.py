from .engine import (
    EVENT_INPUT,
    EVENT_POSITION,
    SIGNAL_LEVEL_COMPLETE,
    SIGNAL_NEXT_LEVEL,
    SIGNAL_RESTART_LEVEL,
    RelayEngine,
    RelayResult,
    RelayStatus,
    WorldBounds,
    clamp_position,
)

__all__ = [
    'EVENT_INPUT',
    'EVENT_POSITION',
    'SIGNAL_LEVEL_COMPLETE',
    'SIGNAL_NEXT_LEVEL',
    'SIGNAL_RESTART_LEVEL',
    'RelayEngine',
    'RelayResult',
    'RelayStatus',
    'WorldBounds',
    'clamp_position',
]
