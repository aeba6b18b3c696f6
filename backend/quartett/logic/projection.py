"""
Per-player state projection.

Every outbound view is computed for one absolute slot. Values are mapped to
relative "me"/"opponent" labels here and nowhere else, so each of the two
projections of one session is built independently from the same record.
"""

from pydantic import BaseModel

from quartett.logic.cards import Card, CardIdentity
from quartett.logic.enums import Perspective, RoundOutcome, SessionState
from quartett.logic.events import RoundResolvedEvent
from quartett.logic.state import GameSession, OccupiedSlot, opponent_of


class SessionView(BaseModel):
    """Information-hiding view of a session for one occupant."""

    session_id: str
    state: SessionState
    own_hand: list[Card]
    opponent_hand_count: int
    opponent_top_card: CardIdentity | None
    tie_pile_count: int
    is_my_turn: bool
    game_over: bool
    winner: Perspective | None
    is_draw: bool
    selected_category: str | None
    opponent_username: str | None = None
    opponent_connected: bool


class RoundResultView(BaseModel):
    """Relative outcome of the round just resolved, with both cards revealed."""

    category: str
    outcome: RoundOutcome
    my_card: Card
    opponent_card: Card
    my_value: int | float
    opponent_value: int | float
    my_hand_count: int
    opponent_hand_count: int
    tie_pile_count: int
    is_my_turn: bool
    game_over: bool
    winner: Perspective | None


def relative_winner(winner_slot: int | None, slot: int) -> Perspective | None:
    if winner_slot is None:
        return None
    return Perspective.ME if winner_slot == slot else Perspective.OPPONENT


def _identity(card: Card | None) -> CardIdentity | None:
    if card is None:
        return None
    return CardIdentity(id=card.id, name=card.name)


def project_session(
    session: GameSession,
    slot: int,
    *,
    opponent_username: str | None = None,
) -> SessionView:
    """Build the view of session as seen from slot."""
    other = opponent_of(slot)
    return SessionView(
        session_id=session.session_id,
        state=session.state,
        own_hand=list(session.hands[slot]),
        opponent_hand_count=len(session.hands[other]),
        opponent_top_card=_identity(session.top_card(other)),
        tie_pile_count=len(session.tie_pile),
        is_my_turn=session.is_active and session.current_turn == slot,
        game_over=session.is_completed,
        winner=relative_winner(session.winner_slot, slot),
        is_draw=session.is_draw,
        selected_category=session.selected_category,
        opponent_username=opponent_username,
        opponent_connected=isinstance(session.slots[other], OccupiedSlot),
    )


def project_round(event: RoundResolvedEvent, session: GameSession, slot: int) -> RoundResultView:
    """Build one slot's view of a resolved round.

    session is the state after resolution (and after the win check).
    """
    other = opponent_of(slot)
    if event.winner_slot is None:
        outcome = RoundOutcome.TIE
    elif event.winner_slot == slot:
        outcome = RoundOutcome.WIN
    else:
        outcome = RoundOutcome.LOSE
    return RoundResultView(
        category=event.category,
        outcome=outcome,
        my_card=event.cards[slot],
        opponent_card=event.cards[other],
        my_value=event.values[slot],
        opponent_value=event.values[other],
        my_hand_count=event.hand_counts[slot],
        opponent_hand_count=event.hand_counts[other],
        tie_pile_count=event.tie_pile_count,
        is_my_turn=session.is_active and event.current_turn == slot,
        game_over=session.is_completed,
        winner=relative_winner(session.winner_slot, slot),
    )
