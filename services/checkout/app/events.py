"""
Checkout Service — イベント定義

コミット後に Redis Pub/Sub の order_events チャネルへ発行する。
イベントは過去形で命名し、不変として扱う。
"""

from datetime import datetime

from pydantic import BaseModel


class OrderPlaced(BaseModel):
    """チェックアウトで注文が作成された（決済の成否は status に入る）"""
    order_id: int
    customer_id: str
    status: str
    total: float
    line_count: int
    timestamp: datetime
