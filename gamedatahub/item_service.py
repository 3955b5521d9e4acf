"""Item management: creation, consumption, transfer between players."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

from gamedatahub.errors import NotFoundError, ServiceError, StorageError, ValidationError

_UNLIMITED_QUANTITY = -1
_DEFAULT_RARITY = "common"


@dataclass
class Item:
    """An item owned by a player in one game."""

    item_id: str
    user_id: str
    game_id: str
    name: str
    item_type: str
    category: str = ""
    rarity: str = _DEFAULT_RARITY
    quantity: int = 0
    max_quantity: int = _UNLIMITED_QUANTITY
    is_bound: bool = False
    is_tradable: bool = True
    expire_at: Optional[datetime] = None
    description: str = ""
    icon_url: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ItemRequest:
    """One entry of a batch item creation."""

    name: str
    item_type: str
    category: str = ""
    quantity: int = 0


class _ItemStore(Protocol):
    def create_item(self, item: Item) -> None: ...
    def get_item_by_id(self, item_id: str) -> Optional[Item]: ...
    def get_user_items(self, user_id: str, game_id: str) -> Sequence[Item]: ...
    def update_item(self, item: Item) -> None: ...
    def add_item_quantity(self, item_id: str, quantity: int) -> None: ...
    def consume_item(self, item_id: str, quantity: int) -> None: ...
    def delete_item(self, item_id: str) -> None: ...


class _IdGenerator:
    """Produces prefixed nanosecond identifiers that never repeat in-process."""

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            now = max(time.time_ns(), self._last + 1)
            self._last = now
        return f"{self._prefix}{now}"


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except ServiceError:
        raise
    except Exception as exc:
        raise StorageError(f"{action}: {exc}") from exc


class ItemService:
    """Business rules for player items on top of a data access object."""

    def __init__(self, dao: _ItemStore, logger: Optional[logging.Logger] = None) -> None:
        self._dao = dao
        self._log = logger or logging.getLogger(__name__)
        self._next_id = _IdGenerator("item_")

    def create_item(
        self,
        user_id: str,
        game_id: str,
        name: str,
        item_type: str,
        category: str,
        quantity: int,
    ) -> Item:
        item = Item(
            item_id=self._next_id(),
            user_id=user_id,
            game_id=game_id,
            name=name,
            item_type=item_type,
            category=category,
            quantity=quantity,
            description=f"{name} item",
        )
        with _storage_errors("failed to create item"):
            self._dao.create_item(item)
        self._log.info(
            "item created item_id=%s user_id=%s name=%s quantity=%d",
            item.item_id, user_id, name, quantity,
        )
        return dataclasses.replace(item)

    def get_item(self, item_id: str) -> Item:
        return dataclasses.replace(self._fetch(item_id))

    def get_user_items(self, user_id: str, game_id: str) -> list[Item]:
        with _storage_errors("failed to get user items"):
            items = self._dao.get_user_items(user_id, game_id)
        return [dataclasses.replace(item) for item in items]

    def update_item(self, item_id: str, updates: Mapping[str, Any]) -> Item:
        item = self._fetch(item_id)
        for key, attr in (("name", "name"), ("description", "description"), ("icon_url", "icon_url")):
            value = updates.get(key)
            if isinstance(value, str):
                setattr(item, attr, value)
        with _storage_errors("failed to update item"):
            self._dao.update_item(item)
        self._log.info("item updated item_id=%s", item_id)
        return dataclasses.replace(item)

    def add_item_quantity(self, item_id: str, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError(f"quantity to add must be greater than 0: {quantity}")
        with _storage_errors("failed to add item quantity"):
            self._dao.add_item_quantity(item_id, quantity)
        self._log.info("item quantity added item_id=%s quantity=%d", item_id, quantity)

    def consume_item(self, item_id: str, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError(f"quantity to consume must be greater than 0: {quantity}")
        with _storage_errors("failed to consume item"):
            self._dao.consume_item(item_id, quantity)
        self._log.info("item consumed item_id=%s quantity=%d", item_id, quantity)

    def transfer_item(self, item_id: str, from_user_id: str, to_user_id: str, quantity: int) -> None:
        """Move ``quantity`` units of an item to another player, merging into a matching stack."""
        if quantity <= 0:
            raise ValidationError(f"quantity to transfer must be greater than 0: {quantity}")

        item = self._fetch(item_id)
        if item.user_id != from_user_id:
            raise ValidationError("item does not belong to the given user")
        if item.quantity < quantity:
            raise ValidationError(f"not enough items: need {quantity}, have {item.quantity}")
        if not item.is_tradable:
            raise ValidationError("item is not tradable")

        with _storage_errors("failed to get receiver items"):
            receiver_items = self._dao.get_user_items(to_user_id, item.game_id)
        existing = next(
            (
                owned
                for owned in receiver_items
                if owned.name == item.name and owned.item_type == item.item_type
            ),
            None,
        )

        with _storage_errors("failed to reduce sender items"):
            self._dao.consume_item(item_id, quantity)

        try:
            if existing is not None:
                with _storage_errors("failed to add receiver items"):
                    self._dao.add_item_quantity(existing.item_id, quantity)
            else:
                received = dataclasses.replace(
                    item,
                    item_id=self._next_id(),
                    user_id=to_user_id,
                    quantity=quantity,
                    created_at=None,
                    updated_at=None,
                )
                with _storage_errors("failed to create receiver item"):
                    self._dao.create_item(received)
        except StorageError:
            self._restore(item_id, quantity)
            raise

        self._log.info(
            "item transferred item_id=%s from=%s to=%s quantity=%d",
            item_id, from_user_id, to_user_id, quantity,
        )

    def delete_item(self, item_id: str) -> None:
        with _storage_errors("failed to delete item"):
            self._dao.delete_item(item_id)
        self._log.info("item deleted item_id=%s", item_id)

    def batch_create_items(
        self, user_id: str, game_id: str, item_requests: Sequence[ItemRequest]
    ) -> list[Item]:
        created = []
        for request in item_requests:
            try:
                created.append(
                    self.create_item(
                        user_id, game_id, request.name, request.item_type,
                        request.category, request.quantity,
                    )
                )
            except ServiceError as exc:
                raise StorageError(f"failed to create item {request.name}: {exc}") from exc
        if created:
            self._log.info("batch items created user_id=%s count=%d", user_id, len(created))
        return created

    def validate_item_ownership(self, item_id: str, user_id: str) -> None:
        item = self._fetch(item_id)
        if item.user_id != user_id:
            raise ValidationError("item does not belong to the given user")

    def check_item_expiration(self) -> list[Item]:
        """Return expired items; the storage layer offers no expiry query yet."""
        self._log.debug("checking item expiration")
        return []

    def _fetch(self, item_id: str) -> Item:
        with _storage_errors("failed to get item"):
            item = self._dao.get_item_by_id(item_id)
        if item is None:
            raise NotFoundError(f"item not found: {item_id}")
        return item

    def _restore(self, item_id: str, quantity: int) -> None:
        try:
            self._dao.add_item_quantity(item_id, quantity)
        except Exception:
            self._log.exception("rollback of item quantity failed item_id=%s", item_id)