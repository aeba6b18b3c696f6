from quartett.logic.enums import SessionState
from quartett.session.registry import PlayerRegistry, SessionRegistry
from quartett.tests.mocks import MockConnection


class TestSessionRegistry:
    def test_create_seats_creator(self):
        registry = SessionRegistry()

        record = registry.create("p0", invite_code="ABCD")

        assert record.session.occupant(0) == "p0"
        assert record.session.invite_code == "ABCD"
        assert registry.get(record.session_id) is record
        assert record.session_id in registry

    def test_delete_flags_record(self):
        registry = SessionRegistry()
        record = registry.create("p0")

        assert registry.delete(record.session_id) is record
        assert record.deleted is True
        assert registry.get(record.session_id) is None
        assert registry.delete(record.session_id) is None

    def test_count_by_state(self):
        registry = SessionRegistry()
        registry.create("p0")
        registry.create("p1")

        assert registry.count_by_state()[SessionState.WAITING] == 2
        assert len(registry) == 2

    def test_iteration_tolerates_deletion(self):
        registry = SessionRegistry()
        for player_id in ("p0", "p1", "p2"):
            registry.create(player_id)

        for record in registry:
            registry.delete(record.session_id)

        assert len(registry) == 0


class TestPlayerRegistry:
    def test_create_assigns_identity(self):
        registry = PlayerRegistry()
        connection = MockConnection()

        player = registry.create(connection)

        assert player.username.startswith("Player-")
        assert len(player.reconnect_token) >= 32
        assert registry.get_by_connection(connection.connection_id) is player
        assert registry.get_by_token(player.reconnect_token) is player
        assert player.is_idle

    def test_tokens_are_unique(self):
        registry = PlayerRegistry()
        tokens = {registry.create(MockConnection()).reconnect_token for _ in range(20)}
        assert len(tokens) == 20

    def test_bind_connection_returns_replaced_connection(self):
        registry = PlayerRegistry()
        old = MockConnection()
        new = MockConnection()
        player = registry.create(old)

        replaced = registry.bind_connection(player, new)

        assert replaced is old
        assert registry.get_by_connection(old.connection_id) is None
        assert registry.get_by_connection(new.connection_id) is player

    def test_rebinding_same_connection_replaces_nothing(self):
        registry = PlayerRegistry()
        connection = MockConnection()
        player = registry.create(connection)

        assert registry.bind_connection(player, connection) is None

    def test_unbind_keeps_identity_reachable_by_token(self):
        registry = PlayerRegistry()
        connection = MockConnection()
        player = registry.create(connection)

        registry.unbind_connection(player)

        assert player.is_connected is False
        assert registry.get_by_connection(connection.connection_id) is None
        assert registry.get_by_token(player.reconnect_token) is player
        assert registry.connected_count == 0
        assert len(registry) == 1

    def test_delete_removes_all_indexes(self):
        registry = PlayerRegistry()
        connection = MockConnection()
        player = registry.create(connection)

        registry.delete(player.player_id)

        assert registry.get(player.player_id) is None
        assert registry.get_by_token(player.reconnect_token) is None
        assert registry.get_by_connection(connection.connection_id) is None
