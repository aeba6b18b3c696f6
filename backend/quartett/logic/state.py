"""
Frozen session state models.

GameSession is never mutated in place: every transition in lifecycle.py and
round.py returns a new instance built with model_copy.
"""

from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from quartett.logic.cards import Card
from quartett.logic.enums import EndReason, SessionState, SlotStatus

NUM_SLOTS = 2


def utc_now() -> datetime:
    return datetime.now(UTC)


class EmptySlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal[SlotStatus.EMPTY] = SlotStatus.EMPTY


class OccupiedSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal[SlotStatus.OCCUPIED] = SlotStatus.OCCUPIED
    player_id: str


class DisconnectedSlot(BaseModel):
    """Slot whose occupant dropped; reclaimable until the grace window closes."""

    model_config = ConfigDict(frozen=True)

    status: Literal[SlotStatus.DISCONNECTED] = SlotStatus.DISCONNECTED
    player_id: str
    since: datetime


Slot = Annotated[EmptySlot | OccupiedSlot | DisconnectedSlot, Field(discriminator="status")]


def slot_player_id(slot: Slot) -> str | None:
    """Return the identity bound to a slot, connected or not."""
    if isinstance(slot, EmptySlot):
        return None
    return slot.player_id


class GameSession(BaseModel):
    """Authoritative state of one two-player match."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    state: SessionState = SessionState.WAITING
    slots: tuple[Slot, Slot] = (EmptySlot(), EmptySlot())
    hands: tuple[tuple[Card, ...], tuple[Card, ...]] = ((), ())
    tie_pile: tuple[Card, ...] = ()
    current_turn: int | None = None
    selected_category: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    last_activity_at: datetime = Field(default_factory=utc_now)
    invite_code: str | None = None
    winner_slot: int | None = None
    is_draw: bool = False
    end_reason: EndReason | None = None
    dealt_total: int = 0

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.state == SessionState.COMPLETED

    @property
    def card_count(self) -> int:
        return len(self.hands[0]) + len(self.hands[1]) + len(self.tie_pile)

    @property
    def player_ids(self) -> list[str]:
        return [pid for pid in (slot_player_id(s) for s in self.slots) if pid is not None]

    @property
    def is_full(self) -> bool:
        return all(not isinstance(s, EmptySlot) for s in self.slots)

    @property
    def has_connected_occupant(self) -> bool:
        return any(isinstance(s, OccupiedSlot) for s in self.slots)

    def slot_of(self, player_id: str) -> int | None:
        """Return the slot index bound to player_id, or None."""
        for index, slot in enumerate(self.slots):
            if slot_player_id(slot) == player_id:
                return index
        return None

    def occupant(self, slot: int) -> str | None:
        return slot_player_id(self.slots[slot])

    def top_card(self, slot: int) -> Card | None:
        hand = self.hands[slot]
        return hand[0] if hand else None


def opponent_of(slot: int) -> int:
    return 1 - slot
