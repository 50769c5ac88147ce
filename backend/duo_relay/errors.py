"""Errors raised by the session manager.

Only join handling raises; relay traffic reports its outcome through
``RelayResult`` instead.
"""


class RelayError(Exception):
    """Base class for errors surfaced to the requesting client."""


class InvalidRequest(RelayError):
    """Malformed or missing join fields."""


class InvalidIdentifier(InvalidRequest):
    """Session id too short after normalization."""


class SessionFull(RelayError):
    """Both roles of the session are already occupied."""

    def __init__(self, session_id: str):
        super().__init__(f'Session {session_id} is full')
        self.session_id = session_id
