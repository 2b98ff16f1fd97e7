"""
Checkout Service — 決済ゲートウェイ (Payment Processor)

charge(PaymentRequest) -> PaymentOutcome を持つオブジェクトなら何でもよい。

  - MockPaymentGateway: 常に成功する（デモ・ローカル用）
  - HttpPaymentGateway: 外部の決済サービスへ HTTP で依頼する

タイムアウト・リトライ・冪等キーはゲートウェイ側の責務。
オーケストレーターは charge を 1 回呼ぶだけで、再試行しない。
"""

import logging
from uuid import uuid4

import httpx

from .errors import PaymentUnavailableError
from .models import PaymentOutcome, PaymentRequest

logger = logging.getLogger(__name__)


class MockPaymentGateway:
    async def charge(self, request: PaymentRequest) -> PaymentOutcome:
        return PaymentOutcome(succeeded=True, provider_reference=f"MOCK-{uuid4().hex}")


class HttpPaymentGateway:
    """
    外部決済サービスのクライアント

    POST {base_url}/charges
      2xx → {"succeeded": bool, "reference": str, "error": str}
      402 → 否認（Failed の注文になる）
      それ以外 / 通信エラー / 2xx でも JSON オブジェクトでない → PaymentUnavailableError
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def charge(self, request: PaymentRequest) -> PaymentOutcome:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                resp = await client.post(
                    f"{self.base_url}/charges",
                    json={
                        "amount": str(request.amount),
                        "currency": request.currency,
                        "token": request.token,
                    },
                )
            except httpx.HTTPError as e:
                logger.error("Payment gateway unreachable: %s", e)
                raise PaymentUnavailableError() from e

        if resp.status_code == 402:
            return PaymentOutcome(succeeded=False, error=_error_from(resp) or "Payment declined")

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Payment gateway returned %s", resp.status_code)
            raise PaymentUnavailableError() from e

        try:
            body = resp.json()
        except ValueError as e:
            logger.error("Payment gateway returned a non-JSON body")
            raise PaymentUnavailableError() from e
        if not isinstance(body, dict):
            logger.error("Payment gateway returned an unexpected body: %r", body)
            raise PaymentUnavailableError()

        if body.get("succeeded"):
            return PaymentOutcome(succeeded=True, provider_reference=body.get("reference"))
        return PaymentOutcome(succeeded=False, error=body.get("error") or "Payment declined")


def _error_from(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or None
    return body.get("error") if isinstance(body, dict) else None
