import pytest
from typing import Dict, List, Optional

from magmaseller.errors import OracleUnavailable
from magmaseller.ln.base import NodeBase, Utxo, UtxoOutpoint
from magmaseller.ln.requesthandlers import (
    ChannelPoint,
    ConnectPeerResponse,
    GetUtxosResponse,
    InvoiceResponse,
    NodeStatusResponse,
    PeerConnectionStatus,
    SignMessageResponse,
)
from magmaseller.magma.base import MarketplaceBase
from magmaseller.magma.models import Order, OrderStatus, SignInfo
from magmaseller.marketplace.credentials import CredentialManager
from magmaseller.marketplace.seller import OrderHandler

BUYER_PUBKEY = '02' + 'ab' * 32
BUYER_ADDR = '203.0.113.7:9735'
FUNDING_TXID = 'f0' * 32


def make_utxo(amount_sat: int, index: int = 0, txid: str = 'aa' * 32) -> Utxo:
    return Utxo(
        address_type='TAPROOT_PUBKEY',
        amount_sat=amount_sat,
        outpoint=UtxoOutpoint(txid_str=txid, output_index=index),
        confirmations=6,
    )


def make_order(
        order_id: str,
        status: OrderStatus,
        size: int = 1_000_000,
        seller_invoice_amount: Optional[int] = 20_000,
        account: str = BUYER_PUBKEY) -> Order:
    return Order(
        id=order_id,
        status=status,
        size=size,
        account=account,
        seller_invoice_amount=seller_invoice_amount,
    )


class FakeNode(NodeBase):
    def __init__(self):
        self.calls: List[tuple] = []
        self.utxos: List[Utxo] = [make_utxo(2_000_000)]
        self.utxo_error: Optional[str] = None
        self.connect_status = PeerConnectionStatus.CONNECTED
        self.invoice_created = True
        self.open_error: Optional[Exception] = None
        self.signature: Optional[str] = 'd9signature'

    async def check_node_connection(self) -> NodeStatusResponse:
        self.calls.append(('check_node_connection',))
        return NodeStatusResponse(healthy=True, synced_to_chain=True, synced_to_graph=True)

    async def sign_message(self, message: str) -> SignMessageResponse:
        self.calls.append(('sign_message', message))
        if not self.signature:
            return SignMessageResponse(error_message='signature empty')
        return SignMessageResponse(signature=self.signature)

    async def get_utxo_set(self, min_confs: int = 3) -> GetUtxosResponse:
        self.calls.append(('get_utxo_set', min_confs))
        if self.utxo_error:
            return GetUtxosResponse(error_message=self.utxo_error)
        return GetUtxosResponse(utxos=self.utxos)

    async def connect_peer(self, pubkey: str, host: str) -> ConnectPeerResponse:
        self.calls.append(('connect_peer', pubkey, host))
        if self.connect_status == PeerConnectionStatus.FAILED:
            return ConnectPeerResponse(status=self.connect_status, error_message='timed out')
        return ConnectPeerResponse(status=self.connect_status)

    async def create_invoice(self, amt: int, expiry: int, memo: str = '') -> InvoiceResponse:
        self.calls.append(('create_invoice', amt, expiry))
        if not self.invoice_created:
            return InvoiceResponse(created=False, error_message='invoice failure')
        return InvoiceResponse(created=True, payment_request=f'lnbc{amt}', expiry=expiry)

    async def open_channel(self, pubkey, sat_per_vbyte, capacity, outpoints) -> ChannelPoint:
        self.calls.append(('open_channel', pubkey, sat_per_vbyte, capacity, list(outpoints)))
        if self.open_error:
            raise self.open_error
        return ChannelPoint(txid_hex=FUNDING_TXID, output_index=1)

    async def close_rest_client(self) -> None:
        self.calls.append(('close_rest_client',))

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


class FakeMarketplace(MarketplaceBase):
    def __init__(self):
        self.orders: List[Order] = []
        self.addresses: Dict[str, List[str]] = {BUYER_PUBKEY: [BUYER_ADDR]}
        self.calls: List[tuple] = []
        # operation name -> exception, optionally limited to one order id
        self.failures: Dict[str, Exception] = {}
        self.failure_order_ids: Dict[str, str] = {}
        self.token: Optional[str] = None
        self.api_key = 'fresh-api-key'

    def _maybe_fail(self, operation: str, order_id: Optional[str] = None):
        exc = self.failures.get(operation)
        if exc is None:
            return
        only_for = self.failure_order_ids.get(operation)
        if only_for is None or only_for == order_id:
            raise exc

    def use_credential(self, token: Optional[str]) -> None:
        self.token = token

    async def get_orders(self) -> List[Order]:
        self.calls.append(('get_orders',))
        self._maybe_fail('get_orders')
        return list(self.orders)

    async def get_node_addresses(self, pubkey: str) -> List[str]:
        self.calls.append(('get_node_addresses', pubkey))
        self._maybe_fail('get_node_addresses')
        return self.addresses.get(pubkey, [])

    async def accept_order(self, order_id: str, invoice: str) -> None:
        self.calls.append(('accept_order', order_id, invoice))
        self._maybe_fail('accept_order', order_id)

    async def reject_order(self, order_id: str) -> None:
        self.calls.append(('reject_order', order_id))
        self._maybe_fail('reject_order', order_id)

    async def cancel_order(self, order_id: str, reason) -> None:
        self.calls.append(('cancel_order', order_id, reason))
        self._maybe_fail('cancel_order', order_id)

    async def confirm_channel_open(self, order_id: str, tx_point: str) -> None:
        self.calls.append(('confirm_channel_open', order_id, tx_point))
        self._maybe_fail('confirm_channel_open', order_id)

    async def get_sign_info(self) -> SignInfo:
        self.calls.append(('get_sign_info',))
        self._maybe_fail('get_sign_info')
        return SignInfo(identifier='login-id', message='sign me')

    async def login(self, identifier: str, signature: str) -> str:
        self.calls.append(('login', identifier, signature))
        self._maybe_fail('login')
        return 'login-token'

    async def create_api_key(self, token: str, seconds: int, description: str) -> str:
        self.calls.append(('create_api_key', token, seconds, description))
        self._maybe_fail('create_api_key')
        return self.api_key

    async def close(self) -> None:
        self.calls.append(('close',))

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    @property
    def mutations(self) -> List[tuple]:
        names = {'accept_order', 'reject_order', 'cancel_order', 'confirm_channel_open'}
        return [c for c in self.calls if c[0] in names]


class FakeFeeOracle:
    def __init__(self, fee_rate: int = 10):
        self.fee_rate = fee_rate
        self.unavailable = False
        self.calls = 0

    async def current_fee_rate(self) -> int:
        self.calls += 1
        if self.unavailable:
            raise OracleUnavailable('mempool down')
        return self.fee_rate

    async def close(self) -> None:
        pass


@pytest.fixture
def fake_node():
    return FakeNode()


@pytest.fixture
def fake_marketplace():
    return FakeMarketplace()


@pytest.fixture
def fee_oracle():
    return FakeFeeOracle()


@pytest.fixture
def order_handler(fake_node, fake_marketplace, fee_oracle):
    return OrderHandler(
        ln_backend=fake_node,
        marketplace=fake_marketplace,
        fee_oracle=fee_oracle,
        reject_if_buyer_offline=True,
        invoice_expiry_seconds=172800,
        min_utxo_confirmations=3,
    )


@pytest.fixture
def credential_manager(tmp_path):
    return CredentialManager(
        cache_path=(tmp_path / 'cache' / 'magma-api-key').as_posix(),
        lifetime_seconds=3600,
        description='test',
    )


@pytest.fixture
def active_credential(credential_manager, fake_marketplace):
    credential_manager.cache_path.parent.mkdir(parents=True, exist_ok=True)
    credential_manager.cache_path.write_text('cached-key')
    credential_manager.load_cached()
    credential_manager.activate(fake_marketplace)
    return credential_manager
