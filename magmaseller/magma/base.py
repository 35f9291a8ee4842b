from abc import ABC, abstractmethod
from typing import Coroutine, List, Optional

from magmaseller.magma.models import Order, OrderCancellationReason, SignInfo


class MarketplaceBase(ABC):
    """
    marketplace capabilities consumed by the order handler and the credential
    manager

    implementations raise AuthRejected when the bearer credential is refused,
    TransientError for anything else that went wrong on the wire
    """

    @abstractmethod
    def use_credential(self, token: Optional[str]) -> None:
        pass

    @abstractmethod
    def get_orders(self) -> Coroutine[None, None, List[Order]]:
        pass

    @abstractmethod
    def get_node_addresses(self, pubkey: str) -> Coroutine[None, None, List[str]]:
        pass

    @abstractmethod
    def accept_order(
            self,
            order_id: str,
            invoice: str) -> Coroutine[None, None, None]:
        pass

    @abstractmethod
    def reject_order(self, order_id: str) -> Coroutine[None, None, None]:
        pass

    @abstractmethod
    def cancel_order(
            self,
            order_id: str,
            reason: OrderCancellationReason) -> Coroutine[None, None, None]:
        pass

    @abstractmethod
    def confirm_channel_open(
            self,
            order_id: str,
            tx_point: str) -> Coroutine[None, None, None]:
        pass

    @abstractmethod
    def get_sign_info(self) -> Coroutine[None, None, SignInfo]:
        pass

    @abstractmethod
    def login(
            self,
            identifier: str,
            signature: str) -> Coroutine[None, None, str]:
        pass

    @abstractmethod
    def create_api_key(
            self,
            token: str,
            seconds: int,
            description: str) -> Coroutine[None, None, str]:
        pass
