"""
Pure session lifecycle transitions.

Each function takes a GameSession and returns a new one; none of them touch
the network or the registries. Rule violations raise GameRuleError
subclasses and leave the input session untouched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from quartett.logic.dealing import create_rng, deal_hands, pick_starting_slot
from quartett.logic.enums import EndReason, SessionState
from quartett.logic.events import (
    BroadcastTarget,
    GameEndedEvent,
    GameStartedEvent,
    ServiceEvent,
)
from quartett.logic.exceptions import (
    NotInSessionError,
    SessionNotActiveError,
    SlotUnavailableError,
)
from quartett.logic.state import (
    DisconnectedSlot,
    EmptySlot,
    GameSession,
    OccupiedSlot,
    Slot,
    opponent_of,
    utc_now,
)

if TYPE_CHECKING:
    import random
    from collections.abc import Sequence
    from datetime import datetime

    from quartett.logic.cards import Card


def _replace_slot(session: GameSession, index: int, slot: Slot) -> tuple[Slot, Slot]:
    slots = list(session.slots)
    slots[index] = slot
    return tuple(slots)


def create_session(
    session_id: str,
    creator_id: str,
    *,
    invite_code: str | None = None,
    now: datetime | None = None,
) -> GameSession:
    """Create a waiting session with the creator seated in slot 0."""
    now = now or utc_now()
    return GameSession(
        session_id=session_id,
        slots=(OccupiedSlot(player_id=creator_id), EmptySlot()),
        created_at=now,
        last_activity_at=now,
        invite_code=invite_code,
    )


def seat_player(session: GameSession, player_id: str) -> tuple[GameSession, int]:
    """Seat player_id in the first empty slot of a waiting session.

    Seating an already-seated player is a no-op returning its slot.
    """
    existing = session.slot_of(player_id)
    if existing is not None:
        return session, existing
    if session.state != SessionState.WAITING:
        raise SlotUnavailableError("Session is not open for joining")
    for index, slot in enumerate(session.slots):
        if isinstance(slot, EmptySlot):
            updated = session.model_copy(
                update={
                    "slots": _replace_slot(session, index, OccupiedSlot(player_id=player_id)),
                    "last_activity_at": utc_now(),
                },
            )
            return updated, index
    raise SlotUnavailableError("Session is full")


def vacate_slot(session: GameSession, player_id: str) -> GameSession:
    """Remove player_id from a waiting session."""
    index = session.slot_of(player_id)
    if index is None:
        raise NotInSessionError("Player is not in this session")
    if session.state != SessionState.WAITING:
        raise SessionNotActiveError("Only waiting sessions can be left without forfeiting")
    return session.model_copy(
        update={"slots": _replace_slot(session, index, EmptySlot()), "last_activity_at": utc_now()},
    )


def activate(
    session: GameSession,
    deck: Sequence[Card],
    rng: random.Random | None = None,
) -> tuple[GameSession, list[ServiceEvent]]:
    """Deal cards and move a full waiting session to ACTIVE.

    Dealing happens exactly once, here, regardless of how the two
    occupants arrived.
    """
    if session.state != SessionState.WAITING:
        raise SessionNotActiveError("Session has already started")
    if not all(isinstance(slot, OccupiedSlot) for slot in session.slots):
        raise SlotUnavailableError("Both slots must be occupied to start")
    rng = rng or create_rng()
    hand_0, hand_1 = deal_hands(deck, rng)
    current_turn = pick_starting_slot(rng)
    activated = session.model_copy(
        update={
            "state": SessionState.ACTIVE,
            "hands": (hand_0, hand_1),
            "tie_pile": (),
            "current_turn": current_turn,
            "selected_category": None,
            "dealt_total": len(hand_0) + len(hand_1),
            "last_activity_at": utc_now(),
        },
    )
    events = [
        ServiceEvent(
            event=GameStartedEvent(session_id=session.session_id, current_turn=current_turn),
            target=BroadcastTarget(),
        ),
    ]
    return activated, events


def mark_disconnected(session: GameSession, player_id: str, now: datetime | None = None) -> GameSession:
    """Flag the player's slot as disconnected, leaving everything else intact."""
    index = session.slot_of(player_id)
    if index is None:
        raise NotInSessionError("Player is not in this session")
    slot = session.slots[index]
    if isinstance(slot, DisconnectedSlot):
        return session
    disconnected = DisconnectedSlot(player_id=player_id, since=now or utc_now())
    return session.model_copy(update={"slots": _replace_slot(session, index, disconnected)})


def mark_reconnected(session: GameSession, player_id: str) -> GameSession:
    """Return a disconnected slot to OCCUPIED. Idempotent for occupied slots."""
    index = session.slot_of(player_id)
    if index is None:
        raise NotInSessionError("Player is not in this session")
    if isinstance(session.slots[index], OccupiedSlot):
        return session
    return session.model_copy(
        update={
            "slots": _replace_slot(session, index, OccupiedSlot(player_id=player_id)),
            "last_activity_at": utc_now(),
        },
    )


def complete(
    session: GameSession,
    *,
    winner_slot: int | None,
    end_reason: EndReason,
    is_draw: bool = False,
) -> tuple[GameSession, list[ServiceEvent]]:
    """Move the session to its terminal COMPLETED state."""
    if session.state == SessionState.COMPLETED:
        raise SessionNotActiveError("Session is already completed")
    completed = session.model_copy(
        update={
            "state": SessionState.COMPLETED,
            "winner_slot": winner_slot,
            "is_draw": is_draw,
            "end_reason": end_reason,
            "selected_category": None,
            "last_activity_at": utc_now(),
        },
    )
    events = [
        ServiceEvent(
            event=GameEndedEvent(winner_slot=winner_slot, is_draw=is_draw, end_reason=end_reason),
            target=BroadcastTarget(),
        ),
    ]
    return completed, events


def abandon(session: GameSession, player_id: str) -> tuple[GameSession, list[ServiceEvent]]:
    """Permanently vacate player_id's slot in an active session.

    The opposite slot wins by abandonment when it is still bound to a
    player. A session with no remaining occupant completes without a winner
    and is expected to be torn down by the caller.
    """
    index = session.slot_of(player_id)
    if index is None:
        raise NotInSessionError("Player is not in this session")
    if session.state != SessionState.ACTIVE:
        raise SessionNotActiveError("Session is not active")
    vacated = session.model_copy(update={"slots": _replace_slot(session, index, EmptySlot())})
    other = opponent_of(index)
    winner = other if vacated.occupant(other) is not None else None
    return complete(vacated, winner_slot=winner, end_reason=EndReason.ABANDONED)


def is_abandoned(session: GameSession) -> bool:
    """True when no slot is still connected."""
    return not session.has_connected_occupant
