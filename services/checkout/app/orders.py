"""
Checkout Service — 注文リポジトリ (Order Repository)

add_and_commit がチェックアウトのコミット境界:
  1. 注文と注文明細を INSERT
  2. カート明細を DELETE
  3. COMMIT（同じトランザクションで行った在庫の減算もここで確定）

どれか 1 つだけが見える状態は存在しない。
注文は作成後に更新しない。
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Integer, String, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import carts
from .database import MONEY
from .errors import PersistenceError
from .models import Order, OrderLine, OrderStatus

_INSERT_ORDER = text("""
    INSERT INTO orders (customer_id, status, total, created_utc)
    VALUES (:customer_id, :status, :total, :created_utc)
    RETURNING id
""").bindparams(
    bindparam("total", type_=MONEY),
    bindparam("created_utc", type_=DateTime(timezone=True)),
)

_INSERT_LINE = text("""
    INSERT INTO order_lines (order_id, sku, name, unit_price, quantity)
    VALUES (:order_id, :sku, :name, :unit_price, :quantity)
""").bindparams(bindparam("unit_price", type_=MONEY))

_ORDER_COLUMNS = {
    "id": Integer,
    "customer_id": String,
    "status": String,
    "total": MONEY,
    "created_utc": DateTime(timezone=True),
}

_LINE_COLUMNS = {
    "order_id": Integer,
    "sku": String,
    "name": String,
    "unit_price": MONEY,
    "quantity": Integer,
}


def _utc(value: datetime) -> datetime:
    # SQLite はタイムゾーンを保存しない
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def add_and_commit(
    session: AsyncSession,
    customer_id: str,
    status: OrderStatus,
    total: Decimal,
    lines: tuple[OrderLine, ...],
) -> Order:
    """
    注文を作成し、カートを空にしてコミットする。

    session には在庫の引き当てが済んだトランザクションが開いている前提。
    失敗時はロールバックして PersistenceError を投げる。
    """
    created_utc = datetime.now(timezone.utc)
    try:
        result = await session.execute(
            _INSERT_ORDER,
            {
                "customer_id": customer_id,
                "status": status.value,
                "total": total,
                "created_utc": created_utc,
            },
        )
        order_id = result.scalar_one()

        for line in lines:
            await session.execute(
                _INSERT_LINE,
                {
                    "order_id": order_id,
                    "sku": line.sku,
                    "name": line.name,
                    "unit_price": line.unit_price,
                    "quantity": line.quantity,
                },
            )

        await carts.clear_lines(session, customer_id)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError() from e

    return Order(
        id=order_id,
        customer_id=customer_id,
        status=status,
        total=total,
        created_utc=created_utc,
        lines=lines,
    )


async def _load_lines(session: AsyncSession, order_ids: list[int]) -> dict[int, list[OrderLine]]:
    if not order_ids:
        return {}
    result = await session.execute(
        text("""
            SELECT order_id, sku, name, unit_price, quantity
            FROM order_lines
            WHERE order_id IN :order_ids
            ORDER BY id ASC
        """)
        .bindparams(bindparam("order_ids", expanding=True))
        .columns(**_LINE_COLUMNS),
        {"order_ids": order_ids},
    )
    lines: dict[int, list[OrderLine]] = {}
    for row in result.fetchall():
        lines.setdefault(row.order_id, []).append(
            OrderLine(
                sku=row.sku,
                name=row.name,
                unit_price=row.unit_price,
                quantity=row.quantity,
            )
        )
    return lines


def _to_order(row, lines: list[OrderLine]) -> Order:
    return Order(
        id=row.id,
        customer_id=row.customer_id,
        status=OrderStatus(row.status),
        total=row.total,
        created_utc=_utc(row.created_utc),
        lines=tuple(lines),
    )


async def get_order(session: AsyncSession, order_id: int) -> Order | None:
    result = await session.execute(
        text("""
            SELECT id, customer_id, status, total, created_utc
            FROM orders WHERE id = :id
        """).columns(**_ORDER_COLUMNS),
        {"id": order_id},
    )
    row = result.fetchone()
    if not row:
        return None
    lines = await _load_lines(session, [row.id])
    return _to_order(row, lines.get(row.id, []))


async def list_orders(session: AsyncSession, customer_id: str | None = None) -> list[Order]:
    """注文一覧（新しい順）。customer_id を渡すとその顧客の注文だけ。"""
    if customer_id:
        stmt = text("""
            SELECT id, customer_id, status, total, created_utc
            FROM orders WHERE customer_id = :customer_id
            ORDER BY created_utc DESC, id DESC
        """)
        params = {"customer_id": customer_id}
    else:
        stmt = text("""
            SELECT id, customer_id, status, total, created_utc
            FROM orders
            ORDER BY created_utc DESC, id DESC
        """)
        params = {}

    result = await session.execute(stmt.columns(**_ORDER_COLUMNS), params)
    rows = result.fetchall()
    lines = await _load_lines(session, [row.id for row in rows])
    return [_to_order(row, lines.get(row.id, [])) for row in rows]
