import base64
from enum import Enum
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional

from magmaseller.ln.base import Utxo


class ErrorMessageMixin:
    error_message: Optional[str] = None


class NodeStatusResponse(BaseModel, ErrorMessageMixin):
    healthy: bool
    synced_to_chain: Optional[bool] = None
    synced_to_graph: Optional[bool] = None


class PeerConnectionStatus(str, Enum):
    CONNECTED = 'CONNECTED'
    ALREADY_CONNECTED = 'ALREADY_CONNECTED'
    FAILED = 'FAILED'


class ConnectPeerResponse(BaseModel, ErrorMessageMixin):
    status: PeerConnectionStatus

    @property
    def connected(self) -> bool:
        # an existing connection is as good as a fresh one
        return self.status in (
            PeerConnectionStatus.CONNECTED,
            PeerConnectionStatus.ALREADY_CONNECTED,
        )


class SignMessageResponse(BaseModel, ErrorMessageMixin):
    signature: Optional[str] = None


class GetUtxosResponse(BaseModel, ErrorMessageMixin):
    utxos: List[Utxo] = Field(default_factory=list)

    @property
    def spendable_amount(self) -> int:
        return sum(utxo.amount_sat or 0 for utxo in self.utxos)

    @property
    def num_utxos(self) -> int:
        return len(self.utxos)


class InvoiceResponse(BaseModel, ErrorMessageMixin):
    created: bool
    r_hash: Optional[str] = None
    payment_request: Optional[str] = None
    expiry: Optional[int] = None


class ChannelPoint(BaseModel):
    txid_bytes: Optional[str] = None
    txid_hex: Optional[str] = Field(default=None)
    output_index: int = 0

    @model_validator(mode="after")
    def compute_txid_hex(self):
        # lnd returns the funding txid as little endian base64 bytes
        if self.txid_bytes and not self.txid_hex:
            raw = base64.b64decode(self.txid_bytes)
            object.__setattr__(self, "txid_hex", raw[::-1].hex())
        return self

    @property
    def funding_tx_point(self) -> str:
        return f'{self.txid_hex}:{self.output_index}'
