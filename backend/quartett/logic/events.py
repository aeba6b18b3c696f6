"""Domain event models and service event transport container.

Transitions in lifecycle.py and round.py return domain events alongside the
new session. The session layer turns each event into per-slot messages using
the routing target attached by the ServiceEvent wrapper.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict

from quartett.logic.cards import Card  # noqa: TC001
from quartett.logic.enums import EndReason  # noqa: TC001

# ---------------------------------------------------------------------------
# Typed routing targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BroadcastTarget:
    """Event should be delivered to both slots."""


@dataclass(frozen=True)
class SlotTarget:
    """Event should be delivered to a single slot."""

    slot: int


EventTarget = BroadcastTarget | SlotTarget


class EventType(StrEnum):
    GAME_STARTED = "game_started"
    CATEGORY_SELECTED = "category_selected"
    ROUND_RESOLVED = "round_resolved"
    GAME_ENDED = "game_ended"


# ---------------------------------------------------------------------------
# Domain event models
# ---------------------------------------------------------------------------


class GameEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EventType


class GameStartedEvent(GameEvent):
    type: Literal[EventType.GAME_STARTED] = EventType.GAME_STARTED
    session_id: str
    current_turn: int


class CategorySelectedEvent(GameEvent):
    """Sent to the non-acting slot when the acting slot picks a category."""

    type: Literal[EventType.CATEGORY_SELECTED] = EventType.CATEGORY_SELECTED
    slot: int
    category: str


class RoundResolvedEvent(GameEvent):
    """Absolute outcome of one round; projected per slot before delivery.

    winner_slot is None when the compared values were equal.
    """

    type: Literal[EventType.ROUND_RESOLVED] = EventType.ROUND_RESOLVED
    category: str
    cards: tuple[Card, Card]
    values: tuple[int | float, int | float]
    winner_slot: int | None
    current_turn: int | None
    hand_counts: tuple[int, int]
    tie_pile_count: int


class GameEndedEvent(GameEvent):
    type: Literal[EventType.GAME_ENDED] = EventType.GAME_ENDED
    winner_slot: int | None
    is_draw: bool
    end_reason: EndReason


@dataclass(frozen=True)
class ServiceEvent:
    """Domain event paired with its delivery target."""

    event: GameEvent
    target: EventTarget
