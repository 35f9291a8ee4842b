import base64
import httpx
import json
import pytest
import pytest_asyncio

from magmaseller.errors import NodeError
from magmaseller.ln.base import UtxoOutpoint
from magmaseller.ln.lnd import LndBackend
from magmaseller.ln.requesthandlers import PeerConnectionStatus
from tests.conftest import BUYER_PUBKEY


class LndStub:
    """canned replies per path, records every request"""
    def __init__(self):
        self.replies = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies.get(request.url.path)
        if isinstance(reply, Exception):
            raise reply
        if reply is None:
            return httpx.Response(404, json={'message': 'not found'})
        status, body = reply
        return httpx.Response(status, json=body)

    def last_json(self):
        return json.loads(self.requests[-1].content)


@pytest.fixture
def lnd_stub():
    return LndStub()


@pytest_asyncio.fixture
async def ln_backend(lnd_stub):
    backend = LndBackend(
        rest_host='https://127.0.0.1:8080',
        macaroon='0201036c6e64',
        transport=httpx.MockTransport(lnd_stub.handler),
    )
    yield backend
    await backend.close_rest_client()


@pytest.mark.asyncio
async def test_node_connection(ln_backend, lnd_stub):
    lnd_stub.replies['/v1/getinfo'] = (200, {'synced_to_chain': True, 'synced_to_graph': True})
    status = await ln_backend.check_node_connection()
    assert status.healthy
    assert lnd_stub.requests[0].headers['Grpc-Metadata-macaroon'] == '0201036c6e64'


@pytest.mark.asyncio
async def test_node_not_synced(ln_backend, lnd_stub):
    lnd_stub.replies['/v1/getinfo'] = (200, {'synced_to_chain': False})
    status = await ln_backend.check_node_connection()
    assert not status.healthy
    assert 'cannot proceed' in status.error_message


@pytest.mark.asyncio
async def test_node_unreachable(ln_backend, lnd_stub):
    lnd_stub.replies['/v1/getinfo'] = httpx.ConnectError('connection refused')
    status = await ln_backend.check_node_connection()
    assert not status.healthy


@pytest.mark.asyncio
async def test_sign_message(ln_backend, lnd_stub):
    lnd_stub.replies['/v1/signmessage'] = (200, {'signature': 'd9abc'})
    signed = await ln_backend.sign_message('hello magma')
    assert signed.signature == 'd9abc'
    assert base64.b64decode(lnd_stub.last_json()['msg']) == b'hello magma'


@pytest.mark.asyncio
async def test_sign_message_permission_denied(ln_backend, lnd_stub):
    lnd_stub.replies['/v1/signmessage'] = (403, {'message': 'permission denied'})
    signed = await ln_backend.sign_message('hello magma')
    assert signed.signature is None
    assert 'macaroon' in signed.error_message


@pytest.mark.asyncio
async def test_get_utxo_set(ln_backend, lnd_stub):
    lnd_stub.replies['/v2/wallet/utxos'] = (200, {'utxos': [
        {
            'address_type': 'TAPROOT_PUBKEY',
            'amount_sat': '500000',
            'confirmations': '12',
            'outpoint': {'txid_str': 'aa' * 32, 'output_index': 1},
        },
        {
            'address_type': 'WITNESS_PUBKEY_HASH',
            'amount_sat': '400000',
            'confirmations': '4',
            'outpoint': {'txid_str': 'bb' * 32, 'output_index': 0},
        },
    ]})
    resp = await ln_backend.get_utxo_set(min_confs=3)

    assert resp.error_message is None
    assert resp.num_utxos == 2
    assert resp.spendable_amount == 900_000
    assert str(resp.utxos[0].outpoint) == f"{'aa' * 32}:1"
    assert lnd_stub.last_json()['min_confs'] == 3


@pytest.mark.asyncio
async def test_get_utxo_set_error(ln_backend, lnd_stub):
    lnd_stub.replies['/v2/wallet/utxos'] = (500, {'message': 'wallet locked'})
    resp = await ln_backend.get_utxo_set()
    assert resp.error_message == 'wallet locked'
    assert resp.utxos == []


@pytest.mark.asyncio
@pytest.mark.parametrize('status_code, body, expected', [
    (200, {}, PeerConnectionStatus.CONNECTED),
    (500, {'message': 'already connected to peer: 02ab'}, PeerConnectionStatus.ALREADY_CONNECTED),
    (500, {'message': 'dial tcp: i/o timeout'}, PeerConnectionStatus.FAILED),
])
async def test_connect_peer(ln_backend, lnd_stub, status_code, body, expected):
    lnd_stub.replies['/v1/peers'] = (status_code, body)
    conn = await ln_backend.connect_peer(BUYER_PUBKEY, '203.0.113.7:9735')
    assert conn.status == expected
    assert conn.connected == (expected != PeerConnectionStatus.FAILED)
    assert lnd_stub.last_json()['addr'] == {
        'pubkey': BUYER_PUBKEY, 'host': '203.0.113.7:9735'}


@pytest.mark.asyncio
async def test_create_invoice(ln_backend, lnd_stub):
    lnd_stub.replies['/v1/invoices'] = (200, {'r_hash': 'abc=', 'payment_request': 'lnbc20u1'})
    inv = await ln_backend.create_invoice(amt=2000, expiry=172800, memo='Magma order o1')

    assert inv.created
    assert inv.payment_request == 'lnbc20u1'
    assert lnd_stub.last_json() == {
        'value': '2000', 'expiry': '172800', 'memo': 'Magma order o1'}


@pytest.mark.asyncio
async def test_create_invoice_error(ln_backend, lnd_stub):
    lnd_stub.replies['/v1/invoices'] = (500, {'message': 'invoice too large'})
    inv = await ln_backend.create_invoice(amt=2000, expiry=60)
    assert not inv.created
    assert inv.error_message == 'invoice too large'


@pytest.mark.asyncio
async def test_open_channel(ln_backend, lnd_stub):
    txid = bytes(range(32))
    lnd_stub.replies['/v1/channels'] = (200, {
        'funding_txid_bytes': base64.b64encode(txid).decode(),
        'output_index': 1,
    })
    outpoints = [UtxoOutpoint(txid_str='aa' * 32, output_index=0)]
    point = await ln_backend.open_channel(
        pubkey=BUYER_PUBKEY,
        sat_per_vbyte=12,
        capacity=1_000_000,
        outpoints=outpoints)

    assert point.txid_hex == txid[::-1].hex()
    assert point.funding_tx_point == f'{txid[::-1].hex()}:1'
    body = lnd_stub.last_json()
    assert base64.b64decode(body['node_pubkey']).hex() == BUYER_PUBKEY
    assert body['local_funding_amount'] == '1000000'
    assert body['sat_per_vbyte'] == '12'
    assert body['outpoints'] == [{'txid_str': 'aa' * 32, 'output_index': 0}]
    assert body['spend_unconfirmed'] is False


@pytest.mark.asyncio
async def test_open_channel_error(ln_backend, lnd_stub):
    lnd_stub.replies['/v1/channels'] = (500, {'message': 'peer is not online'})
    with pytest.raises(NodeError, match='peer is not online'):
        await ln_backend.open_channel(BUYER_PUBKEY, 10, 1_000_000, [])


@pytest.mark.asyncio
async def test_open_channel_missing_txid(ln_backend, lnd_stub):
    lnd_stub.replies['/v1/channels'] = (200, {'output_index': 0})
    with pytest.raises(NodeError):
        await ln_backend.open_channel(BUYER_PUBKEY, 10, 1_000_000, [])
