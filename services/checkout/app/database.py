"""
Checkout Service — データストア

テーブル定義とエンジン生成。クエリ自体は各モジュールで text() の
生 SQL として書き、ここではスキーマの作成だけを担当する。

本番は PostgreSQL (asyncpg)、ローカル実行とテストは SQLite (aiosqlite)。
SQLite では全トランザクションを BEGIN IMMEDIATE で開始し、
書き込みを直列化する（在庫の条件付き減算を PostgreSQL の行ロックと
同じ意味で安全にするため）。
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    event,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

metadata = MetaData()

MONEY = Numeric(12, 2)

inventory = Table(
    "inventory",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("sku", String(64), nullable=False, unique=True),
    Column("quantity", Integer, nullable=False),
    CheckConstraint("quantity >= 0", name="ck_inventory_quantity"),
)

carts = Table(
    "carts",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("customer_id", String(128), nullable=False, unique=True),
)

cart_lines = Table(
    "cart_lines",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("cart_id", Integer, ForeignKey("carts.id"), nullable=False, index=True),
    Column("sku", String(64), nullable=False),
    Column("name", String(256), nullable=False),
    Column("unit_price", MONEY, nullable=False),
    Column("quantity", Integer, nullable=False),
    CheckConstraint("quantity >= 1", name="ck_cart_lines_quantity"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("customer_id", String(128), nullable=False, index=True),
    Column("status", String(16), nullable=False),
    Column("total", MONEY, nullable=False),
    Column("created_utc", DateTime(timezone=True), nullable=False),
)

order_lines = Table(
    "order_lines",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, index=True),
    Column("sku", String(64), nullable=False),
    Column("name", String(256), nullable=False),
    Column("unit_price", MONEY, nullable=False),
    Column("quantity", Integer, nullable=False),
)


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    URL に応じたエンジンを作る。

    SQLite の場合:
      - NullPool（接続をイベントループ間で持ち回らない）
      - busy timeout 30 秒（BEGIN IMMEDIATE で待たされる側のため）
      - ドライバの自動 BEGIN を止め、BEGIN IMMEDIATE を自前で発行
    """
    if not url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)

    engine = create_async_engine(
        url,
        echo=echo,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


async def init_db(engine: AsyncEngine) -> None:
    """テーブルが無ければ作成する。"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def drop_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
