"""
Checkout Service — FastAPI エントリーポイント

カートを注文に変えるチェックアウトサービス。
Command (POST / DELETE) と Query (GET) のエンドポイントを分離している。

  ┌──────────┐  POST /checkout  ┌──────────────────┐
  │ Frontend │ ───────────────▶ │ Checkout Service │ ──▶ Payment Gateway
  └──────────┘                  │  (1 トランザクション)│
                                └────────┬─────────┘
                                         │ OrderPlaced
                                         ▼
                                  Redis order_events

ステータスコード:
  200: 注文が作成された（決済否認で status=Failed の場合も含む）
  400: 入力不備・カートが空・在庫不足
  503: DB / 決済ゲートウェイ障害（再試行してよい）
  500: 想定外のエラー（詳細は返さない）
"""

import logging
import os
from contextlib import asynccontextmanager
from decimal import Decimal
from uuid import uuid4

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import carts, database, inventory, orders, payments
from .errors import CheckoutError
from .orchestrator import CheckoutOrchestrator

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
PAYMENT_GATEWAY_URL = os.environ.get("PAYMENT_GATEWAY_URL", "")
PAYMENT_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_TIMEOUT_SECONDS", "30"))
CHECKOUT_CURRENCY = os.environ.get("CHECKOUT_CURRENCY", "GBP")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = database.create_engine(DATABASE_URL)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None


def _payment_gateway():
    if PAYMENT_GATEWAY_URL:
        return payments.HttpPaymentGateway(PAYMENT_GATEWAY_URL, timeout=PAYMENT_TIMEOUT_SECONDS)
    return payments.MockPaymentGateway()


payment_gateway = _payment_gateway()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    await database.init_db(engine)
    # REDIS_URL が空ならイベントを発行しない
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True) if REDIS_URL else None
    yield
    if redis_pool is not None:
        await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Checkout Service", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # パス・クエリのパラメータ不正もここに来る
    if any(error["loc"] and error["loc"][0] == "body" for error in exc.errors()):
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


# ── Request Models ───────────────────────────────


class CheckoutRequest(BaseModel):
    customer_id: str = Field(default="", alias="customerId")
    payment_token: str = Field(default="", alias="paymentToken")


class AddCartLineRequest(BaseModel):
    sku: str = Field(min_length=1)
    name: str
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)


# ── Checkout ─────────────────────────────────────


@app.post("/checkout")
@app.post("/api/checkout")
async def cmd_checkout(req: CheckoutRequest, request: Request):
    """
    チェックアウトコマンド

    決済が否認されても 200 を返す。レスポンスの status を見ること。
    """
    correlation_id = request.headers.get("X-Correlation-ID") or uuid4().hex
    orchestrator = CheckoutOrchestrator(
        async_session,
        payment_gateway,
        redis_pool,
        currency=CHECKOUT_CURRENCY,
    )
    try:
        order = await orchestrator.checkout(req.customer_id, req.payment_token)
    except CheckoutError as e:
        if e.retryable:
            logger.error(
                "Checkout unavailable for customer %s [%s]: %s",
                req.customer_id, correlation_id, e,
            )
        else:
            logger.warning(
                "Checkout rejected for customer %s [%s]: %s",
                req.customer_id, correlation_id, e,
            )
        return JSONResponse(status_code=e.status_code, content=e.to_dict())
    except Exception:
        logger.exception(
            "Unexpected error during checkout for customer %s [%s]",
            req.customer_id, correlation_id,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "An error occurred processing your request",
                "correlationId": correlation_id,
            },
        )

    return {
        "orderId": order.id,
        "status": order.status.value,
        "total": float(order.total),
        "createdUtc": order.created_utc.isoformat(),
    }


# ── Cart Endpoints ───────────────────────────────


@app.post("/commands/carts/{customer_id}/lines")
async def cmd_add_cart_line(customer_id: str, req: AddCartLineRequest):
    """カートに商品を追加するコマンド"""
    async with async_session() as session:
        await carts.add_line(
            session, customer_id,
            req.sku, req.name, req.unit_price, req.quantity,
        )
        return await carts.get_cart(session, customer_id)


@app.delete("/commands/carts/{customer_id}/lines/{sku}")
async def cmd_remove_cart_line(customer_id: str, sku: str):
    async with async_session() as session:
        if not await carts.remove_line(session, customer_id, sku):
            raise HTTPException(404, "Cart line not found")
        return await carts.get_cart(session, customer_id)


@app.get("/queries/carts/{customer_id}")
async def query_get_cart(customer_id: str):
    async with async_session() as session:
        cart = await carts.get_cart(session, customer_id)
        if not cart:
            raise HTTPException(404, "Cart not found")
        return cart


# ── Order Queries ────────────────────────────────


@app.get("/queries/orders")
async def query_list_orders(customer_id: str | None = None):
    """注文一覧（新しい順）"""
    async with async_session() as session:
        return [order.to_dict() for order in await orders.list_orders(session, customer_id)]


@app.get("/queries/orders/{order_id}")
async def query_get_order(order_id: int):
    async with async_session() as session:
        order = await orders.get_order(session, order_id)
        if not order:
            raise HTTPException(404, "Order not found")
        return order.to_dict()


# ── Inventory Queries ────────────────────────────


@app.get("/queries/inventory")
async def query_list_inventory():
    async with async_session() as session:
        return await inventory.list_inventory(session)


@app.get("/queries/inventory/{sku}")
async def query_get_inventory(sku: str):
    async with async_session() as session:
        record = await inventory.get_inventory(session, sku)
        if not record:
            raise HTTPException(404, "SKU not found")
        return record


@app.get("/health")
async def health():
    return {"status": "ok", "service": "checkout-service"}
