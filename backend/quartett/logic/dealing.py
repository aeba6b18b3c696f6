"""
Deck shuffling and dealing.

Shuffles use an explicit Fisher-Yates pass over a seeded random.Random so a
deal is reproducible from its seed. Seeds come from the secrets module.
"""

from __future__ import annotations

import random
import secrets
from typing import TYPE_CHECKING

from quartett.logic.state import NUM_SLOTS

if TYPE_CHECKING:
    from collections.abc import Sequence

    from quartett.logic.cards import Card

SEED_BYTES = 32


def generate_seed() -> str:
    """Generate a hex seed for a new deal."""
    return secrets.token_hex(SEED_BYTES)


def create_rng(seed: str | None = None) -> random.Random:
    return random.Random(seed if seed is not None else generate_seed())  # noqa: S311


def shuffle_cards(cards: Sequence[Card], rng: random.Random) -> list[Card]:
    """Return a uniformly shuffled copy of cards (Fisher-Yates)."""
    shuffled = list(cards)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randrange(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def deal_hands(
    cards: Sequence[Card],
    rng: random.Random,
) -> tuple[tuple[Card, ...], tuple[Card, ...]]:
    """Shuffle and split the deck into two equal hands.

    Each hand gets len(cards) // 2 cards. With an odd deck the last
    shuffled card stays out of play.
    """
    shuffled = shuffle_cards(cards, rng)
    per_hand = len(shuffled) // NUM_SLOTS
    return tuple(shuffled[:per_hand]), tuple(shuffled[per_hand : per_hand * NUM_SLOTS])


def pick_starting_slot(rng: random.Random) -> int:
    return rng.randrange(NUM_SLOTS)
