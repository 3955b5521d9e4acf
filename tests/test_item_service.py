import dataclasses

import pytest

from gamedatahub.errors import NotFoundError, StorageError, ValidationError
from gamedatahub.item_service import Item, ItemRequest, ItemService


class FakeItemDAO:
    def __init__(self):
        self.items = {}
        self.failing = set()

    def _check(self, op):
        if op in self.failing:
            raise RuntimeError(f"{op} unavailable")

    def create_item(self, item):
        self._check("create_item")
        self.items[item.item_id] = dataclasses.replace(item)

    def get_item_by_id(self, item_id):
        self._check("get_item_by_id")
        item = self.items.get(item_id)
        return dataclasses.replace(item) if item else None

    def get_user_items(self, user_id, game_id):
        self._check("get_user_items")
        return [
            dataclasses.replace(i)
            for i in self.items.values()
            if i.user_id == user_id and (not game_id or i.game_id == game_id)
        ]

    def update_item(self, item):
        self._check("update_item")
        self.items[item.item_id] = dataclasses.replace(item)

    def add_item_quantity(self, item_id, quantity):
        self._check("add_item_quantity")
        self.items[item_id].quantity += quantity

    def consume_item(self, item_id, quantity):
        self._check("consume_item")
        if self.items[item_id].quantity < quantity:
            raise ValueError("insufficient")
        self.items[item_id].quantity -= quantity

    def delete_item(self, item_id):
        self._check("delete_item")
        del self.items[item_id]


@pytest.fixture
def dao():
    return FakeItemDAO()


@pytest.fixture
def service(dao):
    return ItemService(dao, None)


def test_create_item_defaults(service, dao):
    item = service.create_item("u1", "game1", "Potion", "consumable", "heal", 5)
    assert item.item_id.startswith("item_")
    assert item.rarity == "common"
    assert item.max_quantity == -1
    assert item.is_tradable and not item.is_bound
    assert item.quantity == 5
    assert dao.items[item.item_id] == item


def test_create_item_storage_failure(service, dao):
    dao.failing.add("create_item")
    with pytest.raises(StorageError) as info:
        service.create_item("u1", "game1", "Potion", "consumable", "", 1)
    assert isinstance(info.value.__cause__, RuntimeError)


def test_get_item_and_missing(service):
    created = service.create_item("u1", "game1", "Sword", "weapon", "", 1)
    assert service.get_item(created.item_id) == created
    with pytest.raises(NotFoundError):
        service.get_item("nope")


def test_returned_item_is_a_copy(service, dao):
    created = service.create_item("u1", "game1", "Sword", "weapon", "", 1)
    created.quantity = 99
    assert dao.items[created.item_id].quantity == 1


def test_get_user_items_filters(service):
    a = service.create_item("u1", "game1", "A", "t", "", 1)
    service.create_item("u2", "game1", "B", "t", "", 1)
    service.create_item("u1", "game2", "C", "t", "", 1)
    assert [i.item_id for i in service.get_user_items("u1", "game1")] == [a.item_id]


def test_update_item_applies_string_fields_only(service):
    created = service.create_item("u1", "game1", "A", "t", "", 1)
    updated = service.update_item(
        created.item_id, {"name": "B", "icon_url": "icon.png", "description": 3}
    )
    assert updated.name == "B"
    assert updated.icon_url == "icon.png"
    assert updated.description == created.description
    assert service.get_item(created.item_id).name == "B"


def test_update_missing_item(service):
    with pytest.raises(NotFoundError):
        service.update_item("missing", {"name": "x"})


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantities_rejected(service, quantity):
    created = service.create_item("u1", "game1", "A", "t", "", 5)
    with pytest.raises(ValidationError):
        service.add_item_quantity(created.item_id, quantity)
    with pytest.raises(ValidationError):
        service.consume_item(created.item_id, quantity)
    with pytest.raises(ValidationError):
        service.transfer_item(created.item_id, "u1", "u2", quantity)


def test_add_and_consume(service):
    created = service.create_item("u1", "game1", "A", "t", "", 5)
    service.add_item_quantity(created.item_id, 3)
    service.consume_item(created.item_id, 2)
    assert service.get_item(created.item_id).quantity == 5 + 3 - 2


def test_consume_storage_failure(service):
    created = service.create_item("u1", "game1", "A", "t", "", 1)
    with pytest.raises(StorageError):
        service.consume_item(created.item_id, 2)


def test_transfer_to_new_owner_creates_item(service):
    created = service.create_item("u1", "game1", "Gem", "currency", "misc", 10)
    service.transfer_item(created.item_id, "u1", "u2", 4)
    assert service.get_item(created.item_id).quantity == 6
    received = service.get_user_items("u2", "game1")
    assert len(received) == 1
    assert received[0].quantity == 4
    assert received[0].name == "Gem"
    assert received[0].item_id != created.item_id


def test_transfer_merges_into_existing_stack(service):
    source = service.create_item("u1", "game1", "Gem", "currency", "", 10)
    target = service.create_item("u2", "game1", "Gem", "currency", "", 1)
    service.transfer_item(source.item_id, "u1", "u2", 3)
    assert service.get_item(target.item_id).quantity == 4
    assert len(service.get_user_items("u2", "game1")) == 1


def test_transfer_rules(service, dao):
    item = service.create_item("u1", "game1", "Gem", "currency", "", 2)
    with pytest.raises(ValidationError):
        service.transfer_item(item.item_id, "u9", "u2", 1)
    with pytest.raises(ValidationError):
        service.transfer_item(item.item_id, "u1", "u2", 3)
    dao.items[item.item_id].is_tradable = False
    with pytest.raises(ValidationError):
        service.transfer_item(item.item_id, "u1", "u2", 1)
    with pytest.raises(NotFoundError):
        service.transfer_item("missing", "u1", "u2", 1)


def test_transfer_rolls_back_on_failure(service, dao):
    item = service.create_item("u1", "game1", "Gem", "currency", "", 5)
    dao.failing.add("create_item")
    with pytest.raises(StorageError):
        service.transfer_item(item.item_id, "u1", "u2", 2)
    assert dao.items[item.item_id].quantity == 5
    assert service.get_user_items("u2", "game1") == []


def test_delete_item(service, dao):
    item = service.create_item("u1", "game1", "A", "t", "", 1)
    service.delete_item(item.item_id)
    assert item.item_id not in dao.items
    with pytest.raises(StorageError):
        service.delete_item(item.item_id)


def test_batch_create(service):
    assert service.batch_create_items("u1", "game1", []) == []
    requests = [ItemRequest("A", "t", "", 1), ItemRequest("B", "t", "", 2)]
    items = service.batch_create_items("u1", "game1", requests)
    assert [i.name for i in items] == ["A", "B"]
    assert len({i.item_id for i in items}) == 2


def test_batch_create_failure_names_item(service, dao):
    dao.failing.add("create_item")
    with pytest.raises(StorageError) as info:
        service.batch_create_items("u1", "game1", [ItemRequest("Shield", "armor")])
    assert "Shield" in str(info.value)


def test_validate_ownership(service):
    item = service.create_item("u1", "game1", "A", "t", "", 1)
    assert service.validate_item_ownership(item.item_id, "u1") is None
    with pytest.raises(ValidationError):
        service.validate_item_ownership(item.item_id, "u2")
    with pytest.raises(NotFoundError):
        service.validate_item_ownership("missing", "u1")


def test_check_item_expiration_is_empty(service):
    service.create_item("u1", "game1", "A", "t", "", 1)
    assert service.check_item_expiration() == []


def test_item_dataclass_defaults():
    item = Item(item_id="i", user_id="u", game_id="g", name="n", item_type="t")
    assert item.max_quantity == -1
    assert item.rarity == "common"