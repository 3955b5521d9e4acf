from datetime import datetime, timedelta, timezone

import bcrypt
import pytest

from gamedatahub.errors import NotFoundError, StorageError, ValidationError
from gamedatahub.player_service import (
    LoginResult,
    Player,
    PlayerService,
    PlayerSession,
    calculate_level,
)


class FakeDao:
    def __init__(self):
        self.players = {}
        self.sessions = {}
        self.cleanups = 0
        self.fail = False

    def _check(self):
        if self.fail:
            raise RuntimeError("database down")

    def get_player_by_username(self, username):
        self._check()
        return next((p for p in self.players.values() if p.username == username), None)

    def get_player_by_id(self, user_id):
        self._check()
        return self.players.get(user_id)

    def create_player(self, player):
        self._check()
        self.players[player.user_id] = player

    def update_player(self, player):
        self._check()
        self.players[player.user_id] = player

    def list_players(self, game_id, offset, limit):
        self._check()
        matching = [p for p in self.players.values() if p.game_id == game_id]
        return matching[offset:offset + limit], len(matching)

    def create_session(self, session):
        self._check()
        self.sessions[session.session_id] = session

    def get_session_by_id(self, session_id):
        self._check()
        return self.sessions.get(session_id)

    def invalidate_session(self, session_id):
        self._check()
        self.sessions[session_id].is_active = False

    def cleanup_expired_sessions(self):
        self._check()
        self.cleanups += 1


@pytest.fixture
def dao():
    return FakeDao()


@pytest.fixture
def service(dao):
    return PlayerService(dao, None, None)


password = "password"


def register(service, username="alice"):
    return service.register_player("game1", username, password, "player@example.com", "")


def test_register_sets_defaults(service, dao):
    player = register(service)
    assert player.user_id.startswith("user_")
    assert len(player.user_id) == len("user_") + 16
    assert player.coins == 1000
    assert player.diamonds == 100
    assert player.level == 1
    assert player.experience == 0
    assert player.nickname == "alice"
    assert player.status == "active"
    assert player.email == "player@example.com"
    assert player.password_hash == ""
    stored = dao.players[player.user_id]
    assert bcrypt.checkpw(password.encode(), stored.password_hash.encode())


def test_register_duplicate_username(service):
    register(service)
    with pytest.raises(ValidationError):
        register(service)


def test_login_by_username_creates_session(service, dao):
    player = register(service)
    before = datetime.now(timezone.utc)
    result = service.login_player_by_username("alice", password, "game1", "dev", "ios", "1.0.0")
    assert isinstance(result, LoginResult)
    assert result.user.user_id == player.user_id
    assert result.session_id.startswith("sess_")
    assert len(result.session_id) == len("sess_") + 32
    assert result.token == "token_" + result.session_id
    expected = int((before + timedelta(hours=24)).timestamp())
    assert abs(result.expires_at - expected) <= 2
    session = dao.sessions[result.session_id]
    assert session.is_active
    assert session.user_id == player.user_id
    assert session.device_id == "dev"
    stored = dao.players[player.user_id]
    assert stored.platform == "ios"
    assert stored.version == "1.0.0"
    assert stored.last_login_at is not None
    assert result.user.password_hash == ""


def test_login_wrong_password(service):
    register(service)
    wrong_password = "secret"
    with pytest.raises(ValidationError):
        service.login_player_by_username("alice", wrong_password, "game1", "d", "p", "v")


def test_login_unknown_username(service):
    with pytest.raises(NotFoundError):
        service.login_player_by_username("nobody", password, "game1", "d", "p", "v")


def test_login_inactive_player(service, dao):
    player = register(service)
    dao.players[player.user_id].status = "banned"
    with pytest.raises(ValidationError):
        service.login_player_by_username("alice", password, "game1", "d", "p", "v")
    with pytest.raises(ValidationError):
        service.login_player(player.user_id, "game1", "d", "p", "v")


def test_login_player_missing(service):
    with pytest.raises(NotFoundError):
        service.login_player("user_missing", "game1", "d", "p", "v")


def test_logout_then_validate_fails(service):
    player = register(service)
    result = service.login_player(player.user_id, "game1", "d", "p", "v")
    assert service.validate_session(result.session_id).user_id == player.user_id
    service.logout_player(player.user_id, result.session_id)
    with pytest.raises(ValidationError):
        service.validate_session(result.session_id)


def test_validate_session_missing_and_expired(service, dao):
    player = register(service)
    with pytest.raises(NotFoundError):
        service.validate_session("sess_missing")
    past = datetime.now(timezone.utc) - timedelta(hours=48)
    dao.sessions["sess_old"] = PlayerSession(
        session_id="sess_old",
        user_id=player.user_id,
        game_id="game1",
        token="token",
        login_at=past,
        expire_at=past + timedelta(hours=24),
    )
    with pytest.raises(ValidationError):
        service.validate_session("sess_old")


def test_get_player(service):
    player = register(service)
    assert service.get_player(player.user_id).username == "alice"
    with pytest.raises(NotFoundError):
        service.get_player("user_missing")


def test_update_player_applies_string_fields(service, dao):
    player = register(service)
    updated = service.update_player(player.user_id, {"nickname": "Ally", "avatar": 5})
    assert updated.nickname == "Ally"
    assert updated.avatar == ""
    assert dao.players[player.user_id].nickname == "Ally"


def test_update_stats_levels_and_clamps(service):
    player = register(service)
    updated = service.update_player_stats(player.user_id, 250, -5000, -200)
    assert updated.experience == 250
    assert updated.level == calculate_level(250)
    assert updated.level > 1
    assert updated.coins == 0
    assert updated.diamonds == 0


def test_update_stats_never_lowers_level(service, dao):
    player = register(service)
    dao.players[player.user_id].level = 5
    updated = service.update_player_stats(player.user_id, 0, 10, 0)
    assert updated.level == 5
    assert updated.coins == 1010


def test_calculate_level_thresholds():
    assert calculate_level(0) == 1
    assert calculate_level(99) == 1
    assert calculate_level(100) == 2


def test_calculate_level_is_monotonic():
    levels = [calculate_level(exp) for exp in range(0, 5000, 7)]
    assert levels == sorted(levels)
    assert levels[0] == 1


def test_list_players_hides_password(service):
    register(service, "alice")
    register(service, "bob")
    players, total = service.list_players("game1", 0, 10)
    assert total == 2
    assert {p.username for p in players} == {"alice", "bob"}
    assert all(p.password_hash == "" for p in players)
    assert all(isinstance(p, Player) for p in players)


def test_storage_failure_wrapped(service, dao):
    dao.fail = True
    with pytest.raises(StorageError) as info:
        service.get_player("user_x")
    assert isinstance(info.value.__cause__, RuntimeError)
    with pytest.raises(StorageError):
        service.cleanup_expired_sessions()


def test_cleanup_expired_sessions(service, dao):
    assert service.cleanup_expired_sessions() is None
    assert dao.cleanups == 1
    assert service.cleanup_expired_sessions() is None
    assert dao.cleanups == 2