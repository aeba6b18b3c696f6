"""
Round resolution engine.

play_category() is the single authoritative implementation of a round. Both
the quick-match and lobby paths reach it through SessionManager, and it is
free of I/O so it can be exercised directly in unit tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from quartett.logic.enums import EndReason
from quartett.logic.events import (
    BroadcastTarget,
    CategorySelectedEvent,
    RoundResolvedEvent,
    ServiceEvent,
    SlotTarget,
)
from quartett.logic.exceptions import (
    InvalidCategoryError,
    InvariantViolationError,
    NotInSessionError,
    NotYourTurnError,
    SessionNotActiveError,
    SessionPausedError,
)
from quartett.logic.lifecycle import complete
from quartett.logic.state import DisconnectedSlot, GameSession, opponent_of, utc_now

if TYPE_CHECKING:
    from quartett.logic.cards import Card


def validate_selection(session: GameSession, player_id: str, category: str) -> int:
    """Check that player_id may play category now. Return the acting slot."""
    if not session.is_active:
        raise SessionNotActiveError("Game is not active")
    slot = session.slot_of(player_id)
    if slot is None:
        raise NotInSessionError("You are not part of this game")
    if slot != session.current_turn:
        raise NotYourTurnError("Not your turn")
    if any(isinstance(s, DisconnectedSlot) for s in session.slots):
        raise SessionPausedError("Waiting for your opponent to reconnect")
    top = session.top_card(slot)
    if top is None or not top.has_category(category):
        raise InvalidCategoryError(f"Unknown category: {category}")
    return slot


def _compare(values: tuple[int | float, int | float]) -> int | None:
    if values[0] > values[1]:
        return 0
    if values[1] > values[0]:
        return 1
    return None


def check_conservation(session: GameSession) -> None:
    """Raise InvariantViolationError if cards were created or lost."""
    if session.card_count != session.dealt_total:
        raise InvariantViolationError(
            session_id=session.session_id,
            reason=f"card count {session.card_count} != dealt total {session.dealt_total}",
        )
    if session.is_active:
        turn = session.current_turn
        if turn is None or not session.hands[turn]:
            raise InvariantViolationError(
                session_id=session.session_id,
                reason=f"current turn {turn} names an empty hand",
            )


def resolve_round(session: GameSession, category: str) -> tuple[GameSession, RoundResolvedEvent]:
    """Draw both top cards and award them according to category.

    The strictly greater value takes both drawn cards, slot 0's card first,
    followed by the whole tie pile, and takes the turn. Equal values push
    both cards onto the tie pile and keep the turn where it was.
    """
    hand_0, hand_1 = session.hands
    drawn: tuple[Card, Card] = (hand_0[0], hand_1[0])
    remaining = [list(hand_0[1:]), list(hand_1[1:])]
    values = (drawn[0].value_of(category), drawn[1].value_of(category))

    winner = _compare(values)
    tie_pile = list(session.tie_pile)
    current_turn = session.current_turn
    if winner is None:
        tie_pile.extend(drawn)
    else:
        remaining[winner].extend([*drawn, *tie_pile])
        tie_pile = []
        current_turn = winner

    resolved = session.model_copy(
        update={
            "hands": (tuple(remaining[0]), tuple(remaining[1])),
            "tie_pile": tuple(tie_pile),
            "current_turn": current_turn,
            "selected_category": None,
            "last_activity_at": utc_now(),
        },
    )
    event = RoundResolvedEvent(
        category=category,
        cards=drawn,
        values=values,
        winner_slot=winner,
        current_turn=current_turn,
        hand_counts=(len(remaining[0]), len(remaining[1])),
        tie_pile_count=len(tie_pile),
    )
    return resolved, event


def check_game_over(session: GameSession) -> tuple[GameSession, list[ServiceEvent]]:
    """Complete the session when a hand is exhausted.

    First to zero cards loses. Both hands empty at once is a draw.
    """
    empty = [not hand for hand in session.hands]
    if not any(empty):
        return session, []
    if all(empty):
        return complete(session, winner_slot=None, end_reason=EndReason.FINISHED, is_draw=True)
    loser = empty.index(True)
    return complete(session, winner_slot=opponent_of(loser), end_reason=EndReason.FINISHED)


def play_category(
    session: GameSession,
    player_id: str,
    category: str,
) -> tuple[GameSession, list[ServiceEvent]]:
    """Play one full round: selection, resolution and win check.

    Raises a GameRuleError subclass without changing anything when the
    selection is not allowed.
    """
    slot = validate_selection(session, player_id, category)
    selected = session.model_copy(update={"selected_category": category})
    events = [
        ServiceEvent(
            event=CategorySelectedEvent(slot=slot, category=category),
            target=SlotTarget(slot=opponent_of(slot)),
        ),
    ]

    resolved, round_event = resolve_round(selected, category)
    events.append(ServiceEvent(event=round_event, target=BroadcastTarget()))

    final, end_events = check_game_over(resolved)
    events.extend(end_events)

    check_conservation(final)
    return final, events
