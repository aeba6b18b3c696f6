"""
String enum definitions for quartett game concepts.
"""

from enum import StrEnum


class SessionState(StrEnum):
    """Lifecycle state of a game session."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"


class SlotStatus(StrEnum):
    """Occupancy status of one of the two session slots."""

    EMPTY = "empty"
    OCCUPIED = "occupied"
    DISCONNECTED = "disconnected"


class EndReason(StrEnum):
    """Why a session reached the completed state."""

    FINISHED = "finished"
    ABANDONED = "abandoned"


class RoundOutcome(StrEnum):
    """Result of a single round from one slot's perspective."""

    WIN = "win"
    LOSE = "lose"
    TIE = "tie"


class Perspective(StrEnum):
    """Relative labels used in per-player projections."""

    ME = "me"
    OPPONENT = "opponent"


class GameErrorCode(StrEnum):
    """Error codes for rejected game actions."""

    SESSION_NOT_ACTIVE = "session_not_active"
    NOT_YOUR_TURN = "not_your_turn"
    INVALID_CATEGORY = "invalid_category"
    NOT_IN_SESSION = "not_in_session"
    SLOT_UNAVAILABLE = "slot_unavailable"
    SESSION_PAUSED = "session_paused"
