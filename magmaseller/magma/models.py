"""
order records returned by the Amboss Magma marketplace
"""
import base64
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Optional


class OrderStatus(str, Enum):
    WAITING_FOR_SELLER_APPROVAL = 'WAITING_FOR_SELLER_APPROVAL'
    WAITING_FOR_BUYER_PAYMENT = 'WAITING_FOR_BUYER_PAYMENT'
    WAITING_FOR_CHANNEL_OPEN = 'WAITING_FOR_CHANNEL_OPEN'
    CHANNEL_OPENING = 'CHANNEL_OPENING'
    CHANNEL_MONITORING = 'CHANNEL_MONITORING'
    CHANNEL_CLOSED = 'CHANNEL_CLOSED'
    BUYER_REJECTED = 'BUYER_REJECTED'
    SELLER_REJECTED = 'SELLER_REJECTED'
    CANCELLED = 'CANCELLED'
    EXPIRED = 'EXPIRED'
    COMPLETED = 'COMPLETED'
    UNKNOWN = 'UNKNOWN'

    @classmethod
    def _missing_(cls, value):
        # statuses added upstream must not break order parsing
        return cls.UNKNOWN

    def __str__(self):
        return self.name


class OrderCancellationReason(str, Enum):
    UNABLE_TO_CONNECT_TO_NODE = 'UNABLE_TO_CONNECT_TO_NODE'

    def __str__(self):
        return self.name


class Order(BaseModel):
    id: str
    status: OrderStatus
    size: int = Field(gt=0)
    account: str
    seller_invoice_amount: Optional[int] = Field(default=None, ge=0)

    @field_validator('size', 'seller_invoice_amount', mode='before')
    def parse_sats(cls, v):
        # amounts come back as decimal strings
        if isinstance(v, str):
            return int(v.strip())
        return v

    @property
    def pubkey(self) -> str:
        return self.account

    @property
    def pubkey_base64(self) -> str:
        return base64.b64encode(bytes.fromhex(self.account)).decode()


class SignInfo(BaseModel):
    identifier: str
    message: str
