"""
Checkout Service — カートストア (Cart Store)

顧客ごとのカートと明細。チェックアウトからは
get_cart_with_lines（読み取り）と clear_lines（空にする）だけを使う。
add_line / remove_line はカート API 用のコマンド。
"""

from decimal import Decimal

from sqlalchemy import Integer, String, bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from .database import MONEY
from .models import Cart, CartLine

_SELECT_LINES = text("""
    SELECT l.sku, l.name, l.unit_price, l.quantity
    FROM cart_lines l
    JOIN carts c ON c.id = l.cart_id
    WHERE c.customer_id = :customer_id
    ORDER BY l.id ASC
""").columns(sku=String, name=String, unit_price=MONEY, quantity=Integer)


async def _find_cart_id(session: AsyncSession, customer_id: str) -> int | None:
    result = await session.execute(
        text("SELECT id FROM carts WHERE customer_id = :customer_id"),
        {"customer_id": customer_id},
    )
    return result.scalar_one_or_none()


async def get_cart_with_lines(session: AsyncSession, customer_id: str) -> Cart | None:
    """カートと明細を追加順に読む。カートが無ければ None。"""
    if await _find_cart_id(session, customer_id) is None:
        return None

    result = await session.execute(_SELECT_LINES, {"customer_id": customer_id})
    lines = tuple(
        CartLine(
            sku=row.sku,
            name=row.name,
            unit_price=row.unit_price,
            quantity=row.quantity,
        )
        for row in result.fetchall()
    )
    return Cart(customer_id=customer_id, lines=lines)


async def clear_lines(session: AsyncSession, customer_id: str) -> int:
    """
    カートの明細を全削除する（カート自体は残す）。

    コミットしない: 注文作成と同じトランザクションで確定させる。
    """
    result = await session.execute(
        text("""
            DELETE FROM cart_lines
            WHERE cart_id IN (SELECT id FROM carts WHERE customer_id = :customer_id)
        """),
        {"customer_id": customer_id},
    )
    return result.rowcount


async def add_line(
    session: AsyncSession,
    customer_id: str,
    sku: str,
    name: str,
    unit_price: Decimal,
    quantity: int,
) -> Cart:
    """
    カートに商品を追加するコマンド

    同じ SKU が既にあれば数量を加算する（単価は最初のスナップショットのまま）。
    カートが無ければ作る。
    """
    cart_id = await _find_cart_id(session, customer_id)
    if cart_id is None:
        result = await session.execute(
            text("INSERT INTO carts (customer_id) VALUES (:customer_id) RETURNING id"),
            {"customer_id": customer_id},
        )
        cart_id = result.scalar_one()

    result = await session.execute(
        text("""
            UPDATE cart_lines
            SET quantity = quantity + :qty
            WHERE cart_id = :cart_id AND sku = :sku
        """),
        {"cart_id": cart_id, "sku": sku, "qty": quantity},
    )
    if result.rowcount == 0:
        await session.execute(
            text("""
                INSERT INTO cart_lines (cart_id, sku, name, unit_price, quantity)
                VALUES (:cart_id, :sku, :name, :unit_price, :qty)
            """).bindparams(bindparam("unit_price", type_=MONEY)),
            {
                "cart_id": cart_id,
                "sku": sku,
                "name": name,
                "unit_price": unit_price,
                "qty": quantity,
            },
        )

    await session.commit()
    return await get_cart_with_lines(session, customer_id)


async def remove_line(session: AsyncSession, customer_id: str, sku: str) -> bool:
    """カートから 1 SKU を削除するコマンド"""
    result = await session.execute(
        text("""
            DELETE FROM cart_lines
            WHERE sku = :sku
              AND cart_id IN (SELECT id FROM carts WHERE customer_id = :customer_id)
        """),
        {"customer_id": customer_id, "sku": sku},
    )
    await session.commit()
    return result.rowcount > 0


async def get_cart(session: AsyncSession, customer_id: str) -> dict | None:
    cart = await get_cart_with_lines(session, customer_id)
    if not cart:
        return None
    return {
        "customer_id": cart.customer_id,
        "lines": [
            {
                "sku": line.sku,
                "name": line.name,
                "unit_price": float(line.unit_price),
                "quantity": line.quantity,
            }
            for line in cart.lines
        ],
        "total": float(cart.total()),
    }
