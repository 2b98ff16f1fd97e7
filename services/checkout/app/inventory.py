"""
Checkout Service — 在庫台帳 (Inventory Ledger)

SKU ごとの在庫数を持つ。チェックアウトから在庫を変更する手段は
conditional_decrement だけ。

「読んでから書く」は競合に弱い:
  A: SELECT quantity → 1        B: SELECT quantity → 1
  A: UPDATE quantity = 0        B: UPDATE quantity = 0   ← 売り越し
そこで述語付きの UPDATE 1 文で「足りるときだけ減らす」を行う。
同じ行を狙う 2 つ目の UPDATE は 1 つ目のコミットを待ち、
述語を再評価して 0 行更新で終わる。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .models import InventoryRecord


async def get(session: AsyncSession, sku: str) -> InventoryRecord | None:
    result = await session.execute(
        text("SELECT sku, quantity FROM inventory WHERE sku = :sku"),
        {"sku": sku},
    )
    row = result.fetchone()
    if not row:
        return None
    return InventoryRecord(sku=row.sku, quantity=row.quantity)


async def conditional_decrement(session: AsyncSession, sku: str, quantity: int) -> bool:
    """
    在庫引き当て: quantity 以上残っているときだけ減算する。

    コミットはしない。呼び出し側のトランザクションがコミットされた
    時点で確定し、ロールバックされれば何も残らない。
    SKU が存在しない場合も False を返す。
    """
    result = await session.execute(
        text("""
            UPDATE inventory
            SET quantity = quantity - :qty
            WHERE sku = :sku AND quantity >= :qty
        """),
        {"sku": sku, "qty": quantity},
    )
    return result.rowcount == 1


async def list_inventory(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("SELECT sku, quantity FROM inventory ORDER BY sku"),
    )
    return [{"sku": row.sku, "quantity": row.quantity} for row in result.fetchall()]


async def get_inventory(session: AsyncSession, sku: str) -> dict | None:
    record = await get(session, sku)
    if not record:
        return None
    return {"sku": record.sku, "quantity": record.quantity}
