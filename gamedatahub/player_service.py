"""Player accounts: registration, login sessions and progression."""

from __future__ import annotations

import dataclasses
import logging
import secrets
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

import bcrypt

from gamedatahub.errors import NotFoundError, ServiceError, StorageError, ValidationError

_ACTIVE = "active"
_BCRYPT_ROUNDS = 10
_INITIAL_COINS = 1000
_INITIAL_DIAMONDS = 100
_SESSION_LIFETIME = timedelta(hours=24)
_EXPERIENCE_PER_LEVEL = 100


@dataclass
class Player:
    """A player account in one game."""

    user_id: str
    game_id: str
    username: str
    password_hash: str = field(default="", repr=False)
    email: str = ""
    phone: str = ""
    nickname: str = ""
    avatar: str = ""
    level: int = 1
    experience: int = 0
    coins: int = 0
    diamonds: int = 0
    status: str = _ACTIVE
    last_login_at: Optional[datetime] = None
    last_login_ip: str = ""
    device_id: str = ""
    platform: str = ""
    version: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class PlayerSession:
    """A login session of a player."""

    session_id: str
    user_id: str
    game_id: str
    token: str
    login_at: datetime
    expire_at: datetime
    ip_address: str = ""
    user_agent: str = ""
    is_active: bool = True
    device_id: str = ""


@dataclass(frozen=True)
class LoginResult:
    """What a successful login hands back to the client."""

    user: Player
    session_id: str
    token: str
    expires_at: int


class _PlayerStore(Protocol):
    def get_player_by_username(self, username: str) -> Optional[Player]: ...
    def get_player_by_id(self, user_id: str) -> Optional[Player]: ...
    def create_player(self, player: Player) -> None: ...
    def update_player(self, player: Player) -> None: ...
    def list_players(
        self, game_id: str, offset: int, limit: int
    ) -> tuple[Sequence[Player], int]: ...
    def create_session(self, session: PlayerSession) -> None: ...
    def get_session_by_id(self, session_id: str) -> Optional[PlayerSession]: ...
    def invalidate_session(self, session_id: str) -> None: ...
    def cleanup_expired_sessions(self) -> None: ...


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except ServiceError:
        raise
    except Exception as exc:
        raise StorageError(f"{action}: {exc}") from exc


def calculate_level(experience: int) -> int:
    """Level reached with ``experience``; level n needs n * 100 experience to pass."""
    level = 1
    needed = _EXPERIENCE_PER_LEVEL
    while experience >= needed:
        level += 1
        needed = level * _EXPERIENCE_PER_LEVEL
    return level


def _public(player: Player) -> Player:
    return dataclasses.replace(player, password_hash="")


def _hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS))
    return hashed.decode("ascii")


def _password_matches(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("ascii"))
    except ValueError:
        return False


class PlayerService:
    """Business rules for player accounts on top of a data access object."""

    def __init__(
        self,
        dao: _PlayerStore,
        logger: Optional[logging.Logger] = None,
        auth_service: Any = None,
    ) -> None:
        self._dao = dao
        self._log = logger or logging.getLogger(__name__)
        self._auth = auth_service

    def register_player(
        self, game_id: str, username: str, password: str, email: str, phone: str
    ) -> Player:
        with _storage_errors("failed to check username"):
            existing = self._dao.get_player_by_username(username)
        if existing is not None:
            raise ValidationError(f"username already exists: {username}")

        player = Player(
            user_id="user_" + secrets.token_hex(8),
            game_id=game_id,
            username=username,
            password_hash=_hash_password(password),
            email=email,
            phone=phone,
            nickname=username,
            level=1,
            experience=0,
            coins=_INITIAL_COINS,
            diamonds=_INITIAL_DIAMONDS,
            status=_ACTIVE,
        )
        with _storage_errors("failed to create player"):
            self._dao.create_player(player)
        self._log.info(
            "player registered user_id=%s username=%s game_id=%s",
            player.user_id, username, game_id,
        )
        return _public(player)

    def login_player_by_username(
        self,
        username: str,
        password: str,
        game_id: str,
        device_id: str,
        platform: str,
        version: str,
    ) -> LoginResult:
        with _storage_errors("failed to get player"):
            player = self._dao.get_player_by_username(username)
        if player is None:
            raise NotFoundError(f"username not found: {username}")
        if not _password_matches(password, player.password_hash):
            self._log.warning("password verification failed username=%s", username)
            raise ValidationError("incorrect password")
        if player.status != _ACTIVE:
            raise ValidationError(f"player account status is abnormal: {player.status}")
        return self.login_player(player.user_id, game_id, device_id, platform, version)

    def login_player(
        self, user_id: str, game_id: str, device_id: str, platform: str, version: str
    ) -> LoginResult:
        player = self._fetch(user_id)
        if player.status != _ACTIVE:
            raise ValidationError(f"player account status is abnormal: {player.status}")

        now = datetime.now(timezone.utc)
        player.last_login_at = now
        player.last_login_ip = ""
        player.device_id = device_id
        player.platform = platform
        player.version = version
        with _storage_errors("failed to update login info"):
            self._dao.update_player(player)

        session_id = "sess_" + secrets.token_hex(16)
        token = "token_" + session_id
        session = PlayerSession(
            session_id=session_id,
            user_id=user_id,
            game_id=game_id,
            token=token,
            login_at=now,
            expire_at=now + _SESSION_LIFETIME,
            is_active=True,
            device_id=device_id,
        )
        with _storage_errors("failed to create session"):
            self._dao.create_session(session)

        self._log.info(
            "player logged in user_id=%s session_id=%s game_id=%s", user_id, session_id, game_id
        )
        return LoginResult(
            user=_public(player),
            session_id=session_id,
            token=token,
            expires_at=int(session.expire_at.timestamp()),
        )

    def logout_player(self, user_id: str, session_id: str) -> None:
        with _storage_errors("failed to log out"):
            self._dao.invalidate_session(session_id)
        self._log.info("player logged out user_id=%s session_id=%s", user_id, session_id)

    def get_player(self, user_id: str) -> Player:
        return _public(self._fetch(user_id))

    def update_player(self, user_id: str, updates: Mapping[str, Any]) -> Player:
        player = self._fetch(user_id)
        for key in ("nickname", "avatar"):
            value = updates.get(key)
            if isinstance(value, str):
                setattr(player, key, value)
        with _storage_errors("failed to update player"):
            self._dao.update_player(player)
        self._log.info("player updated user_id=%s", user_id)
        return _public(player)

    def update_player_stats(
        self, user_id: str, experience: int, coins: int, diamonds: int
    ) -> Player:
        """Add to a player's experience and currencies, levelling up and clamping at zero."""
        player = self._fetch(user_id)
        player.experience += experience
        player.coins += coins
        player.diamonds += diamonds

        new_level = calculate_level(player.experience)
        if new_level > player.level:
            self._log.info(
                "player levelled up user_id=%s old_level=%d new_level=%d",
                user_id, player.level, new_level,
            )
            player.level = new_level

        player.coins = max(player.coins, 0)
        player.diamonds = max(player.diamonds, 0)

        with _storage_errors("failed to update player stats"):
            self._dao.update_player(player)
        self._log.debug(
            "player stats updated user_id=%s exp=%d coins=%d diamonds=%d",
            user_id, experience, coins, diamonds,
        )
        return _public(player)

    def list_players(self, game_id: str, offset: int, limit: int) -> tuple[list[Player], int]:
        with _storage_errors("failed to list players"):
            players, total = self._dao.list_players(game_id, offset, limit)
        return [_public(player) for player in players], total

    def validate_session(self, session_id: str) -> Player:
        with _storage_errors("failed to get session"):
            session = self._dao.get_session_by_id(session_id)
        if session is None:
            raise NotFoundError(f"session not found: {session_id}")
        if not session.is_active:
            raise ValidationError(f"session is no longer active: {session_id}")
        if datetime.now(timezone.utc) > session.expire_at:
            raise ValidationError(f"session has expired: {session_id}")
        return _public(self._fetch(session.user_id))

    def cleanup_expired_sessions(self) -> None:
        with _storage_errors("failed to clean up expired sessions"):
            self._dao.cleanup_expired_sessions()
        self._log.info("expired sessions cleaned up")

    def _fetch(self, user_id: str) -> Player:
        with _storage_errors("failed to get player"):
            player = self._dao.get_player_by_id(user_id)
        if player is None:
            raise NotFoundError(f"player not found: {user_id}")
        return player