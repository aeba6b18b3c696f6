"""Typed domain exceptions for game rule violations.

Rule violations raised by the logic layer subclass GameRuleError and carry
a GameErrorCode, so the session layer can convert them into client errors
in one place. InvariantViolationError is not a GameRuleError: it signals
a programming error and propagates.
"""

from quartett.logic.enums import GameErrorCode


class GameRuleError(Exception):
    """Base exception for rejected player actions."""

    code: GameErrorCode = GameErrorCode.SESSION_NOT_ACTIVE


class SessionNotActiveError(GameRuleError):
    """The session is waiting for players or already completed."""

    code = GameErrorCode.SESSION_NOT_ACTIVE


class NotYourTurnError(GameRuleError):
    """The acting player does not occupy the slot whose turn it is."""

    code = GameErrorCode.NOT_YOUR_TURN


class InvalidCategoryError(GameRuleError):
    """The category does not exist on the acting player's top card."""

    code = GameErrorCode.INVALID_CATEGORY


class NotInSessionError(GameRuleError):
    """The player does not occupy any slot of the session."""

    code = GameErrorCode.NOT_IN_SESSION


class SlotUnavailableError(GameRuleError):
    """No slot can accept the player (session full or not waiting)."""

    code = GameErrorCode.SLOT_UNAVAILABLE


class SessionPausedError(GameRuleError):
    """The opponent is disconnected and the grace window is still open."""

    code = GameErrorCode.SESSION_PAUSED


class InvariantViolationError(Exception):
    """Raised when a session invariant is broken.

    Attributes:
        session_id: The session whose state is inconsistent.
        reason: Human-readable description of the broken invariant.

    """

    def __init__(self, *, session_id: str, reason: str) -> None:
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"invariant violated in session {session_id}: {reason}")
