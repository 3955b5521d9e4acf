"""Order lifecycle: creation, payment, cancellation and refund."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from gamedatahub.errors import NotFoundError, ServiceError, StorageError, ValidationError

_PENDING = "pending"
_PAID = "paid"
_CANCELLED = "cancelled"
_REFUNDED = "refunded"


@dataclass
class Order:
    """A purchase made by a player."""

    order_id: str
    user_id: str
    game_id: str
    product_id: str = ""
    product_name: str = ""
    amount: int = 0
    currency: str = ""
    payment_method: str = ""
    status: str = _PENDING
    payment_at: Optional[datetime] = None
    refund_at: Optional[datetime] = None
    refund_amount: int = 0
    transaction_id: str = ""
    channel: str = ""
    ip: str = ""
    device_id: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class OrderStatistics:
    """Aggregate order figures for a game over a period."""

    total_orders: int = 0
    total_revenue: int = 0
    paid_orders: int = 0
    cancelled_orders: int = 0
    refunded_orders: int = 0


class _OrderStore(Protocol):
    def create_order(self, order: Order) -> None: ...
    def get_order_by_id(self, order_id: str) -> Optional[Order]: ...
    def get_user_orders(
        self, user_id: str, status: str, offset: int, limit: int
    ) -> tuple[Sequence[Order], int]: ...
    def update_order_status(self, order_id: str, status: str) -> None: ...
    def get_orders_by_status(
        self, status: str, offset: int, limit: int
    ) -> tuple[Sequence[Order], int]: ...


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


class OrderService:
    """Business rules for orders on top of a data access object."""

    def __init__(self, dao: _OrderStore, logger: Optional[logging.Logger] = None) -> None:
        self._dao = dao
        self._log = logger or logging.getLogger(__name__)
        self._next_id = _IdGenerator("order_")

    def create_order(
        self,
        user_id: str,
        game_id: str,
        product_id: str,
        product_name: str,
        amount: int,
        currency: str,
        payment_method: str,
        channel: str,
        ip: str,
        device_id: str,
    ) -> Order:
        order = Order(
            order_id=self._next_id(),
            user_id=user_id,
            game_id=game_id,
            product_id=product_id,
            product_name=product_name,
            amount=amount,
            currency=currency,
            payment_method=payment_method,
            status=_PENDING,
            channel=channel,
            ip=ip,
            device_id=device_id,
        )
        with _storage_errors("failed to create order"):
            self._dao.create_order(order)
        self._log.info(
            "order created order_id=%s user_id=%s amount=%d currency=%s",
            order.order_id, user_id, amount, currency,
        )
        return dataclasses.replace(order)

    def get_order(self, order_id: str) -> Order:
        return dataclasses.replace(self._fetch(order_id))

    def get_user_orders(
        self, user_id: str, status: str, offset: int, limit: int
    ) -> tuple[list[Order], int]:
        with _storage_errors("failed to get user orders"):
            orders, total = self._dao.get_user_orders(user_id, status, offset, limit)
        return [dataclasses.replace(order) for order in orders], total

    def process_payment(self, order_id: str, transaction_id: str) -> Order:
        order = self._fetch(order_id)
        if order.status != _PENDING:
            raise ValidationError(f"order status does not allow payment: {order.status}")

        order.status = _PAID
        order.payment_at = datetime.now(timezone.utc)
        order.transaction_id = transaction_id

        with _storage_errors("failed to update order status"):
            self._dao.update_order_status(order_id, _PAID)
        self._log.info(
            "order paid order_id=%s transaction_id=%s amount=%d",
            order_id, transaction_id, order.amount,
        )
        return dataclasses.replace(order)

    def cancel_order(self, order_id: str) -> Order:
        order = self._fetch(order_id)
        if order.status != _PENDING:
            raise ValidationError(f"order status does not allow cancellation: {order.status}")

        with _storage_errors("failed to cancel order"):
            self._dao.update_order_status(order_id, _CANCELLED)
        order.status = _CANCELLED
        self._log.info("order cancelled order_id=%s", order_id)
        return dataclasses.replace(order)

    def refund_order(self, order_id: str, refund_amount: int) -> Order:
        order = self._fetch(order_id)
        if order.status != _PAID:
            raise ValidationError(f"order status does not allow refund: {order.status}")
        if refund_amount > order.amount:
            raise ValidationError(
                f"refund amount exceeds order amount: {refund_amount} > {order.amount}"
            )

        order.status = _REFUNDED
        order.refund_at = datetime.now(timezone.utc)
        order.refund_amount = refund_amount

        with _storage_errors("failed to refund order"):
            self._dao.update_order_status(order_id, _REFUNDED)
        self._log.info("order refunded order_id=%s refund_amount=%d", order_id, refund_amount)
        return dataclasses.replace(order)

    def get_orders_by_status(
        self, status: str, offset: int, limit: int
    ) -> tuple[list[Order], int]:
        with _storage_errors("failed to get orders"):
            orders, total = self._dao.get_orders_by_status(status, offset, limit)
        return [dataclasses.replace(order) for order in orders], total

    def validate_order_ownership(self, order_id: str, user_id: str) -> None:
        order = self._fetch(order_id)
        if order.user_id != user_id:
            raise ValidationError("order does not belong to the given user")

    def calculate_total_revenue(self, game_id: str, start_date: datetime, end_date: datetime) -> int:
        """Total revenue for a game; the storage layer offers no aggregate query yet."""
        self._log.debug("calculating revenue game_id=%s start=%s end=%s", game_id, start_date, end_date)
        return 0

    def get_order_statistics(
        self, game_id: str, start_date: datetime, end_date: datetime
    ) -> OrderStatistics:
        """Order statistics for a game; the storage layer offers no aggregate query yet."""
        self._log.debug("order statistics game_id=%s start=%s end=%s", game_id, start_date, end_date)
        return OrderStatistics()

    def _fetch(self, order_id: str) -> Order:
        with _storage_errors("failed to get order"):
            order = self._dao.get_order_by_id(order_id)
        if order is None:
            raise NotFoundError(f"order not found: {order_id}")
        return order