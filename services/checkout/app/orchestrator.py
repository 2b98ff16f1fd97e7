"""
Checkout Service — チェックアウト・オーケストレーター

カートを注文に変える一連の処理を 1 つのトランザクションで行う。

  フロー:
  ┌─────────────────────────────────────────────────────────┐
  │  1. カートと明細を読む（無い / 空 → EmptyCart）         │
  │  2. 合計を計算（カート投入時の単価スナップショット）    │
  │  3. 明細ごとに在庫を条件付き減算                        │
  │     └─ 1 つでも失敗 → InsufficientStock（全体ロールバック）│
  │  4. 決済ゲートウェイに課金を依頼                        │
  │  5. 決済の成否にかかわらず注文を作成 (Paid / Failed)    │
  │  6. 注文 INSERT + カート明細 DELETE + 在庫減算を一括 COMMIT │
  └─────────────────────────────────────────────────────────┘

Saga と違い補償トランザクションは無い。3 の途中で失敗しても
COMMIT 前なのでロールバックするだけで済む。

決済が否認された場合も引き当てた在庫は戻さない（減算したまま確定）。
キャンセル（asyncio.CancelledError）が COMMIT 前に届いた場合は
セッションのクローズでロールバックされ、何も残らない。
"""

import json
import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import carts, inventory, orders
from .errors import EmptyCartError, InsufficientStockError, InvalidRequestError, PersistenceError
from .events import OrderPlaced
from .models import Order, OrderLine, OrderStatus, PaymentRequest

logger = logging.getLogger(__name__)


class CheckoutOrchestrator:
    """チェックアウトのオーケストレーター"""

    def __init__(
        self,
        session_factory: sessionmaker,
        payments,
        redis: aioredis.Redis | None = None,
        currency: str = "GBP",
    ):
        self.session_factory = session_factory
        self.payments = payments
        self.redis = redis
        self.currency = currency

    async def checkout(self, customer_id: str, payment_token: str) -> Order:
        """
        チェックアウトを実行する。

        決済否認は例外にならない: status が Failed の注文が返るので、
        呼び出し側は status を確認すること。
        """
        if not customer_id or not customer_id.strip():
            raise InvalidRequestError("Customer ID is required")
        if not payment_token or not payment_token.strip():
            raise InvalidRequestError("Payment token is required")

        try:
            # 例外・キャンセル時はセッションのクローズでロールバックされる
            async with self.session_factory() as session:
                order = await self._execute(session, customer_id, payment_token)
        except SQLAlchemyError as e:
            logger.error("Database error during checkout for customer %s: %s", customer_id, e)
            raise PersistenceError() from e

        logger.info(
            "Checkout completed for customer %s, order %s, status %s",
            customer_id,
            order.id,
            order.status.value,
        )
        await self._publish_order_placed(order)
        return order

    async def _execute(
        self,
        session: AsyncSession,
        customer_id: str,
        payment_token: str,
    ) -> Order:
        # ── Step 1: カートを読む ────────────────────
        cart = await carts.get_cart_with_lines(session, customer_id)
        if cart is None or cart.is_empty:
            raise EmptyCartError(customer_id)

        # ── Step 2: 合計 ────────────────────────────
        total = cart.total()

        # ── Step 3: 在庫を引き当て ──────────────────
        for line in cart.lines:
            if not await inventory.conditional_decrement(session, line.sku, line.quantity):
                record = await inventory.get(session, line.sku)
                logger.warning(
                    "Insufficient stock for SKU %s: requested=%s, available=%s",
                    line.sku,
                    line.quantity,
                    record.quantity if record else "unknown SKU",
                )
                raise InsufficientStockError(line.sku)

        # ── Step 4: 課金 ────────────────────────────
        outcome = await self.payments.charge(
            PaymentRequest(amount=total, currency=self.currency, token=payment_token)
        )
        if outcome.succeeded:
            status = OrderStatus.PAID
        else:
            status = OrderStatus.FAILED
            logger.info("Payment declined for customer %s: %s", customer_id, outcome.error)

        # ── Step 5-6: 注文作成 + カートクリア + COMMIT ─
        return await orders.add_and_commit(
            session,
            customer_id,
            status,
            total,
            tuple(OrderLine.from_cart_line(line) for line in cart.lines),
        )

    async def _publish_order_placed(self, order: Order) -> None:
        """OrderPlaced を Redis に発行する。コミット済みなので失敗しても結果は変えない。"""
        if self.redis is None:
            return
        event = OrderPlaced(
            order_id=order.id,
            customer_id=order.customer_id,
            status=order.status.value,
            total=float(order.total),
            line_count=len(order.lines),
            timestamp=datetime.now(timezone.utc),
        )
        try:
            await self.redis.publish(
                "order_events",
                json.dumps(
                    {
                        "event_type": "OrderPlaced",
                        "data": event.model_dump(mode="json"),
                    },
                    default=str,
                ),
            )
        except RedisError:
            logger.exception("Failed to publish OrderPlaced for order %s", order.id)
