"""Dispatch of per-game requests to the player, item and order services."""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

from gamedatahub.errors import ServiceError
from gamedatahub.item_service import ItemService
from gamedatahub.order_service import OrderService
from gamedatahub.player_service import PlayerService

CODE_OK = 0
CODE_UNSUPPORTED_TYPE = 4001
CODE_BAD_REQUEST = 4002
CODE_UNSUPPORTED_OPERATION = 4003
CODE_LOGIN_FAILED = 5001
CODE_LOGOUT_FAILED = 5002
CODE_ITEM_CREATE_FAILED = 5003
CODE_ITEM_CONSUME_FAILED = 5004
CODE_ITEM_TRANSFER_FAILED = 5005
CODE_ORDER_CREATE_FAILED = 5006
CODE_ORDER_PAY_FAILED = 5007
CODE_ORDER_CANCEL_FAILED = 5008


class MessageType(enum.Enum):
    """Kinds of request a game client can send."""

    HEARTBEAT = "heartbeat"
    HANDSHAKE = "handshake"
    PLAYER_LOGIN = "player_login"
    PLAYER_LOGOUT = "player_logout"
    PLAYER_DATA = "player_data"
    ITEM_OPERATION = "item_operation"
    ORDER_OPERATION = "order_operation"


@dataclass(frozen=True)
class Request:
    """A request routed to a game handler; ``data`` holds the JSON payload bytes."""

    id: str
    type: MessageType
    game_id: str = ""
    user_id: str = ""
    data: Any = None
    timestamp: int = 0


@dataclass(frozen=True)
class Response:
    """The handler's answer; ``code`` is 0 on success."""

    id: str
    code: int
    message: str
    data: Any = None
    timestamp: int = 0


@dataclass(frozen=True)
class _LoginPayload:
    user_id: str = ""
    device_id: str = ""
    platform: str = ""
    version: str = ""


@dataclass(frozen=True)
class _LogoutPayload:
    user_id: str = ""
    session_id: str = ""


@dataclass(frozen=True)
class _ItemPayload:
    user_id: str = ""
    operation: str = ""
    item_id: str = ""
    name: str = ""
    type: str = ""
    category: str = ""
    quantity: int = 0
    to_user_id: str = ""


@dataclass(frozen=True)
class _OrderPayload:
    user_id: str = ""
    operation: str = ""
    order_id: str = ""
    product_id: str = ""
    product_name: str = ""
    amount: int = 0
    currency: str = ""
    payment_method: str = ""
    channel: str = ""
    transaction_id: str = ""


class _BadPayload(ValueError):
    pass


_P = TypeVar("_P")


def _decode(data: Any, payload_type: type[_P]) -> _P:
    """Decode JSON bytes into a payload dataclass; missing fields keep their zero value."""
    if not isinstance(data, (bytes, bytearray)):
        raise _BadPayload("request data is not bytes")
    try:
        document = json.loads(bytes(data))
    except ValueError as exc:
        raise _BadPayload(str(exc)) from exc
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise _BadPayload("request data is not a JSON object")

    values = {}
    for spec in dataclasses.fields(payload_type):
        value = document.get(spec.name)
        if value is None:
            continue
        kind = type(spec.default)
        if kind is int and (isinstance(value, bool) or not isinstance(value, int)):
            raise _BadPayload(f"field {spec.name} must be an integer")
        if kind is str and not isinstance(value, str):
            raise _BadPayload(f"field {spec.name} must be a string")
        values[spec.name] = value
    return payload_type(**values)


class GameHandler:
    """Handles the requests of one game by calling the business services."""

    def __init__(
        self,
        game_id: str,
        player_service: PlayerService,
        item_service: ItemService,
        order_service: OrderService,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._game_id = game_id
        self._players = player_service
        self._items = item_service
        self._orders = order_service
        self._log = logger or logging.getLogger(__name__)

    def handle(self, game_id: str, request: Request) -> Response:
        self._log.debug(
            "handling game request game_id=%s type=%s user_id=%s",
            game_id, request.type, request.user_id,
        )
        handlers = {
            MessageType.PLAYER_LOGIN: self._player_login,
            MessageType.PLAYER_LOGOUT: self._player_logout,
            MessageType.ITEM_OPERATION: self._item_operation,
            MessageType.ORDER_OPERATION: self._order_operation,
        }
        handler = handlers.get(request.type)
        if handler is None:
            return self._reply(request, CODE_UNSUPPORTED_TYPE, "unsupported message type")
        return handler(request)

    def supported_message_types(self) -> list[MessageType]:
        return [
            MessageType.PLAYER_LOGIN,
            MessageType.PLAYER_LOGOUT,
            MessageType.ITEM_OPERATION,
            MessageType.ORDER_OPERATION,
        ]

    def name(self) -> str:
        return f"GameHandler-{self._game_id}"

    @staticmethod
    def _reply(request: Request, code: int, message: str, data: Any = None) -> Response:
        return Response(
            id=request.id, code=code, message=message, data=data, timestamp=request.timestamp
        )

    def _parse(self, request: Request, payload_type: type[_P], what: str) -> _P:
        try:
            return _decode(request.data, payload_type)
        except _BadPayload as exc:
            self._log.error("failed to parse %s request: %s", what, exc)
            raise

    def _bad_request(self, request: Request) -> Response:
        return self._reply(request, CODE_BAD_REQUEST, "invalid request data")

    def _player_login(self, request: Request) -> Response:
        try:
            payload = self._parse(request, _LoginPayload, "login")
        except _BadPayload:
            return self._bad_request(request)
        try:
            result = self._players.login_player(
                payload.user_id, request.game_id, payload.device_id,
                payload.platform, payload.version,
            )
        except ServiceError as exc:
            self._log.error("player login failed user_id=%s: %s", payload.user_id, exc)
            return self._reply(request, CODE_LOGIN_FAILED, f"login failed: {exc}")
        return self._reply(request, CODE_OK, "login succeeded", result)

    def _player_logout(self, request: Request) -> Response:
        try:
            payload = self._parse(request, _LogoutPayload, "logout")
        except _BadPayload:
            return self._bad_request(request)
        try:
            self._players.logout_player(payload.user_id, payload.session_id)
        except ServiceError as exc:
            self._log.error("player logout failed user_id=%s: %s", payload.user_id, exc)
            return self._reply(request, CODE_LOGOUT_FAILED, f"logout failed: {exc}")
        return self._reply(request, CODE_OK, "logout succeeded")

    def _item_operation(self, request: Request) -> Response:
        try:
            payload = self._parse(request, _ItemPayload, "item operation")
        except _BadPayload:
            return self._bad_request(request)

        if payload.operation == "create":
            try:
                item = self._items.create_item(
                    payload.user_id, request.game_id, payload.name, payload.type,
                    payload.category, payload.quantity,
                )
            except ServiceError as exc:
                self._log.error("item creation failed user_id=%s: %s", payload.user_id, exc)
                return self._reply(
                    request, CODE_ITEM_CREATE_FAILED, f"failed to create item: {exc}"
                )
            return self._reply(request, CODE_OK, "item created", item)

        if payload.operation == "consume":
            try:
                self._items.consume_item(payload.item_id, payload.quantity)
            except ServiceError as exc:
                self._log.error("item consumption failed item_id=%s: %s", payload.item_id, exc)
                return self._reply(
                    request, CODE_ITEM_CONSUME_FAILED, f"failed to consume item: {exc}"
                )
            return self._reply(request, CODE_OK, "item consumed")

        if payload.operation == "transfer":
            try:
                self._items.transfer_item(
                    payload.item_id, payload.user_id, payload.to_user_id, payload.quantity
                )
            except ServiceError as exc:
                self._log.error("item transfer failed item_id=%s: %s", payload.item_id, exc)
                return self._reply(
                    request, CODE_ITEM_TRANSFER_FAILED, f"failed to transfer item: {exc}"
                )
            return self._reply(request, CODE_OK, "item transferred")

        return self._reply(request, CODE_UNSUPPORTED_OPERATION, "unsupported item operation")

    def _order_operation(self, request: Request) -> Response:
        try:
            payload = self._parse(request, _OrderPayload, "order operation")
        except _BadPayload:
            return self._bad_request(request)

        if payload.operation == "create":
            try:
                order = self._orders.create_order(
                    payload.user_id, request.game_id, payload.product_id, payload.product_name,
                    payload.amount, payload.currency, payload.payment_method,
                    payload.channel, "", "",
                )
            except ServiceError as exc:
                self._log.error("order creation failed user_id=%s: %s", payload.user_id, exc)
                return self._reply(
                    request, CODE_ORDER_CREATE_FAILED, f"failed to create order: {exc}"
                )
            return self._reply(request, CODE_OK, "order created", order)

        if payload.operation == "pay":
            try:
                order = self._orders.process_payment(payload.order_id, payload.transaction_id)
            except ServiceError as exc:
                self._log.error("payment failed order_id=%s: %s", payload.order_id, exc)
                return self._reply(
                    request, CODE_ORDER_PAY_FAILED, f"failed to process payment: {exc}"
                )
            return self._reply(request, CODE_OK, "payment succeeded", order)

        if payload.operation == "cancel":
            try:
                order = self._orders.cancel_order(payload.order_id)
            except ServiceError as exc:
                self._log.error("order cancellation failed order_id=%s: %s", payload.order_id, exc)
                return self._reply(
                    request, CODE_ORDER_CANCEL_FAILED, f"failed to cancel order: {exc}"
                )
            return self._reply(request, CODE_OK, "order cancelled", order)

        return self._reply(request, CODE_UNSUPPORTED_OPERATION, "unsupported order operation")