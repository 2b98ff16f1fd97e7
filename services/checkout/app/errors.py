"""
Checkout Service — エラー定義

チェックアウトが失敗する理由ごとの例外。HTTP ステータスへの
変換は main.py で一度だけ行う。

決済の否認 (decline) はエラーではない: Failed 状態の注文として返す。
"""


class CheckoutError(Exception):
    status_code = 400
    retryable = False

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        if self.retryable:
            body["retryable"] = True
        return body


class InvalidRequestError(CheckoutError):
    """customerId / paymentToken が空"""


class EmptyCartError(CheckoutError):
    """カートが無い、または明細が 0 件"""

    def __init__(self, customer_id: str):
        super().__init__("Cart not found or empty")
        self.customer_id = customer_id


class InsufficientStockError(CheckoutError):
    """在庫不足、または SKU が在庫台帳に存在しない"""

    def __init__(self, sku: str):
        super().__init__(f"Insufficient stock for SKU: {sku}")
        self.sku = sku

    def to_dict(self) -> dict:
        return {**super().to_dict(), "sku": self.sku}


class PersistenceError(CheckoutError):
    """DB 障害: ロールバック済みなので再試行してよい"""
    status_code = 503
    retryable = True

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message)


class PaymentUnavailableError(CheckoutError):
    """決済ゲートウェイに到達できない: ロールバック済みなので再試行してよい"""
    status_code = 503
    retryable = True

    def __init__(self, message: str = "Payment service temporarily unavailable"):
        super().__init__(message)
