from collections.abc import Sequence

import pytest

from quartett.logic.cards import CATEGORIES, Card
from quartett.logic.dealing import create_rng
from quartett.logic.enums import SessionState
from quartett.logic.state import EmptySlot, GameSession, OccupiedSlot, Slot
from quartett.messaging.router import MessageRouter
from quartett.server.app import create_app
from quartett.server.settings import QuartettServerSettings
from quartett.session.manager import SessionManager
from quartett.tests.mocks import MockConnection

TEST_SEED = "quartett-test-seed"
GRACE_SECONDS = 0.05
RETENTION_SECONDS = 0.05


# ============================================================================
# Test State Builder Helpers
# ============================================================================


def make_card(card_id: str, power: int = 5, *, name: str | None = None, **overrides: int) -> Card:
    """Card whose every category is `power` unless overridden by keyword."""
    categories = dict.fromkeys(CATEGORIES, power)
    categories.update(overrides)
    return Card(id=card_id, name=name or card_id.title(), categories=categories)


def make_deck(*powers: int) -> tuple[Card, ...]:
    return tuple(make_card(f"card-{i}", power) for i, power in enumerate(powers))


def create_active_session(
    hand_0: Sequence[Card],
    hand_1: Sequence[Card],
    *,
    session_id: str = "session-1",
    tie_pile: Sequence[Card] = (),
    current_turn: int = 0,
    slots: tuple[Slot, Slot] | None = None,
) -> GameSession:
    """Build an active session with the given hands, seated by p0 and p1."""
    return GameSession(
        session_id=session_id,
        state=SessionState.ACTIVE,
        slots=slots or (OccupiedSlot(player_id="p0"), OccupiedSlot(player_id="p1")),
        hands=(tuple(hand_0), tuple(hand_1)),
        tie_pile=tuple(tie_pile),
        current_turn=current_turn,
        dealt_total=len(hand_0) + len(hand_1) + len(tie_pile),
    )


def create_waiting_session(*player_ids: str, session_id: str = "session-1") -> GameSession:
    slots: list[Slot] = [OccupiedSlot(player_id=pid) for pid in player_ids]
    slots.extend(EmptySlot() for _ in range(2 - len(slots)))
    return GameSession(session_id=session_id, slots=tuple(slots))


async def connect(manager: SessionManager) -> MockConnection:
    """Register a fresh mock connection and drop its greeting messages."""
    connection = MockConnection()
    await manager.register_connection(connection)
    connection.clear()
    return connection


async def start_quick_match(manager: SessionManager) -> tuple[MockConnection, MockConnection, str]:
    """Pair two new players through the matchmaking queue."""
    host = await connect(manager)
    guest = await connect(manager)
    await manager.create_game(host)
    session_id = host.last_of_type("game_created")["session_id"]
    await manager.create_game(guest)
    host.clear()
    guest.clear()
    return host, guest, session_id


def by_slot(
    manager: SessionManager,
    session_id: str,
    first: MockConnection,
    second: MockConnection,
) -> tuple[MockConnection, MockConnection]:
    """Order two connections as (slot 0, slot 1) of session_id."""
    session = manager.get_session(session_id)
    first_player = manager.get_player(first.connection_id)
    assert session is not None
    assert first_player is not None
    if session.slot_of(first_player.player_id) == 0:
        return first, second
    return second, first


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def settings():
    return QuartettServerSettings(
        grace_period_seconds=GRACE_SECONDS,
        completed_retention_seconds=RETENTION_SECONDS,
    )


@pytest.fixture
def deck():
    return make_deck(10, 9, 8, 7, 6, 5, 4, 3, 2, 1)


@pytest.fixture
def session_manager(settings, deck):
    return SessionManager(settings, deck=deck, rng_factory=lambda: create_rng(TEST_SEED))


@pytest.fixture
def message_router(session_manager):
    return MessageRouter(session_manager)


@pytest.fixture
def mock_connection():
    return MockConnection()


@pytest.fixture
def app(settings, session_manager, message_router):
    return create_app(
        settings=settings,
        session_manager=session_manager,
        message_router=message_router,
    )
