from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Coroutine, List, Optional
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from magmaseller.ln.requesthandlers import (
        ChannelPoint,
        ConnectPeerResponse,
        GetUtxosResponse,
        InvoiceResponse,
        NodeStatusResponse,
        SignMessageResponse,
    )


class UtxoOutpoint(BaseModel):
    txid_bytes: Optional[str] = Field(default=None)
    txid_str: Optional[str] = Field(default=None)
    output_index: Optional[int] = Field(default=None)

    def __str__(self):
        return f'{self.txid_str}:{self.output_index}'


class Utxo(BaseModel):
    address_type: Optional[str] = Field(default=None)
    address: Optional[str] = Field(default=None)
    amount_sat: int = Field(default=0, ge=0)
    pk_script: Optional[str] = Field(default=None)
    outpoint: Optional[UtxoOutpoint] = Field(default=None)
    confirmations: Optional[int] = Field(default=None)


class NodeBase(ABC):
    """
    the node capabilities the order handler relies on, every call is awaited
    to completion before the next one is made
    """

    @abstractmethod
    def check_node_connection(self) -> Coroutine[None, None, "NodeStatusResponse"]:
        pass

    @abstractmethod
    def sign_message(
            self,
            message: str) -> Coroutine[None, None, "SignMessageResponse"]:
        pass

    @abstractmethod
    def get_utxo_set(
            self,
            min_confs: int = 3) -> Coroutine[None, None, "GetUtxosResponse"]:
        pass

    @abstractmethod
    def connect_peer(
            self,
            pubkey: str,
            host: str) -> Coroutine[None, None, "ConnectPeerResponse"]:
        pass

    @abstractmethod
    def create_invoice(
            self,
            amt: int,
            expiry: int,
            memo: str = '') -> Coroutine[None, None, "InvoiceResponse"]:
        pass

    @abstractmethod
    def open_channel(
            self,
            pubkey: str,
            sat_per_vbyte: int,
            capacity: int,
            outpoints: List[UtxoOutpoint]) -> Coroutine[None, None, "ChannelPoint"]:
        pass

    @abstractmethod
    def close_rest_client(self) -> Coroutine[None, None, None]:
        pass
