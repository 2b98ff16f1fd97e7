"""
Checkout Service — ドメインモデル

カート・在庫・注文の値オブジェクト。
注文 (Order / OrderLine) は作成後に変更しないので frozen にしている。
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """金額を小数点以下 2 桁の Decimal にそろえる。"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    PAID = "Paid"
    FAILED = "Failed"


class CartLine(BaseModel):
    """カート明細: 単価はカート投入時のスナップショット"""
    sku: str
    name: str
    unit_price: Decimal
    quantity: int = Field(ge=1)

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class Cart(BaseModel):
    customer_id: str
    lines: tuple[CartLine, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def total(self) -> Decimal:
        return to_money(sum((line.subtotal for line in self.lines), Decimal("0")))


class InventoryRecord(BaseModel):
    sku: str
    quantity: int = Field(ge=0)


class OrderLine(BaseModel):
    """注文明細: カート明細から切り離したコピー"""
    model_config = ConfigDict(frozen=True)

    sku: str
    name: str
    unit_price: Decimal
    quantity: int

    @classmethod
    def from_cart_line(cls, line: CartLine) -> "OrderLine":
        return cls(
            sku=line.sku,
            name=line.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
        )


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    customer_id: str
    status: OrderStatus
    total: Decimal
    created_utc: datetime
    lines: tuple[OrderLine, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "status": self.status.value,
            "total": float(self.total),
            "created_utc": self.created_utc.isoformat(),
            "lines": [
                {
                    "sku": line.sku,
                    "name": line.name,
                    "unit_price": float(line.unit_price),
                    "quantity": line.quantity,
                }
                for line in self.lines
            ],
        }


class PaymentRequest(BaseModel):
    amount: Decimal
    currency: str
    token: str


class PaymentOutcome(BaseModel):
    """決済結果: 永続化せず Order.status に畳み込む"""
    succeeded: bool
    provider_reference: str | None = None
    error: str | None = None
