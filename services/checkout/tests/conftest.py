import asyncio
import os
import tempfile
from decimal import Decimal

# app.main reads its configuration at import time
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///"
    + os.path.join(tempfile.gettempdir(), f"checkout-service-test-{os.getpid()}.db"),
)
os.environ["REDIS_URL"] = ""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from app import carts, database
from app.models import PaymentOutcome, PaymentRequest


# ── Fakes ────────────────────────────────────────


class FakePaymentGateway:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.requests: list[PaymentRequest] = []

    async def charge(self, request: PaymentRequest) -> PaymentOutcome:
        self.requests.append(request)
        # yield so concurrent checkouts interleave
        await asyncio.sleep(0.01)
        if self.succeed:
            return PaymentOutcome(succeeded=True, provider_reference="FAKE-REF")
        return PaymentOutcome(succeeded=False, error="Card declined")


class BlockingPaymentGateway:
    """Never answers; lets a test cancel the checkout mid-payment."""

    def __init__(self):
        self.started = asyncio.Event()

    async def charge(self, request: PaymentRequest) -> PaymentOutcome:
        self.started.set()
        await asyncio.sleep(3600)
        raise AssertionError("unreachable")


class RecordingRedis:
    def __init__(self):
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


class FailingRedis:
    async def publish(self, channel: str, message: str) -> int:
        raise RedisConnectionError("redis down")


# ── Seeding / inspection helpers ─────────────────


async def seed_inventory(session_factory, stock: dict[str, int]) -> None:
    async with session_factory() as session:
        for sku, quantity in stock.items():
            await session.execute(
                text("INSERT INTO inventory (sku, quantity) VALUES (:sku, :qty)"),
                {"sku": sku, "qty": quantity},
            )
        await session.commit()


async def seed_cart(session_factory, customer_id: str, lines: list[tuple]) -> None:
    """lines: (sku, name, unit_price, quantity)"""
    async with session_factory() as session:
        for sku, name, unit_price, quantity in lines:
            await carts.add_line(session, customer_id, sku, name, Decimal(unit_price), quantity)


async def stock_of(session_factory, sku: str) -> int | None:
    async with session_factory() as session:
        result = await session.execute(
            text("SELECT quantity FROM inventory WHERE sku = :sku"), {"sku": sku}
        )
        return result.scalar_one_or_none()


async def cart_line_count(session_factory, customer_id: str) -> int:
    async with session_factory() as session:
        cart = await carts.get_cart_with_lines(session, customer_id)
        return len(cart.lines) if cart else 0


async def order_count(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(text("SELECT COUNT(*) FROM orders"))
        return result.scalar_one()


# ── Fixtures ─────────────────────────────────────


@pytest.fixture()
async def engine(tmp_path):
    engine = database.create_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}")
    await database.init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
