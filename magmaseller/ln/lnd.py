import base64
import httpx
import logging
import ssl
from typing import List, Optional, Union

from magmaseller.errors import NodeError
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
from magmaseller.settings import LnBackendSettings

logger = logging.getLogger(name=__name__)
MAX_CONFS = 2**31 - 1


def _error_text(r: httpx.Response) -> str:
    try:
        return r.json().get('message') or r.text
    except ValueError:
        return r.text[:200]


class LndBackend(NodeBase):
    def __init__(
            self,
            rest_host: str,
            macaroon: str,
            verify: Union[ssl.SSLContext, bool] = True,
            transport: Optional[httpx.AsyncBaseTransport] = None):

        self.rest_host = rest_host
        self.headers = {'Grpc-Metadata-macaroon': macaroon}
        timeout = httpx.Timeout(connect=5.0, read=60.0, write=5.0, pool=None)
        self.http_client = httpx.AsyncClient(
            base_url=self.rest_host,
            verify=verify,
            headers=self.headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: LnBackendSettings) -> "LndBackend":
        return cls(
            rest_host=settings.rest_host.unicode_string(),
            macaroon=settings.resolve_macaroon(),
            verify=settings.resolve_tls_verify(),
        )

    async def check_node_connection(self) -> NodeStatusResponse:
        """
        https://lightning.engineering/api-docs/api/lnd/lightning/get-info/

        /lnrpc.Lightning/GetInfo
        """
        try:
            r = await self.http_client.get('/v1/getinfo')
        except httpx.HTTPError as error:
            msg = f'could not connect to {self.rest_host}, {error}'
            logger.error(msg)
            return NodeStatusResponse(healthy=False, error_message=msg)

        if r.is_error:
            return NodeStatusResponse(
                healthy=False,
                error_message=_error_text(r)
            )

        data = r.json()
        synced_to_chain = data.get('synced_to_chain', False)
        synced_to_graph = data.get('synced_to_graph', False)
        if not synced_to_chain:
            return NodeStatusResponse(
                healthy=False,
                synced_to_chain=synced_to_chain,
                synced_to_graph=synced_to_graph,
                error_message=f"synced to chain: {synced_to_chain}, "
                f"synced to graph: {synced_to_graph}, "
                "cannot proceed"
            )

        return NodeStatusResponse(
            healthy=True,
            synced_to_chain=synced_to_chain,
            synced_to_graph=synced_to_graph,
        )

    async def close_rest_client(self) -> None:
        try:
            await self.http_client.aclose()
        except RuntimeError as e:
            logger.error(f"Could not close rest client: {e}")

    async def sign_message(self, message: str) -> SignMessageResponse:
        """
        https://lightning.engineering/api-docs/api/lnd/lightning/sign-message/

        /lnrpc.Lightning/SignMessage
        """
        data = {
            'msg': base64.b64encode(message.encode()).decode(),
            'single_hash': False,
        }
        try:
            r = await self.http_client.post('/v1/signmessage', json=data)
        except httpx.HTTPError as e:
            msg = 'failed to connect to ln backend to sign message'
            logger.error(f'{msg}: {e}')
            return SignMessageResponse(error_message=msg)

        if r.is_error:
            err = _error_text(r)
            if 'permission denied' in err:
                err = 'need to bake a macaroon with message sign permissions'
            logger.error(f'sign message error: {err}')
            return SignMessageResponse(error_message=err)

        sig = r.json().get('signature')
        if not sig:
            msg = 'signature empty'
            logger.error(msg)
            return SignMessageResponse(error_message=msg)

        return SignMessageResponse(signature=sig)

    async def get_utxo_set(self, min_confs: int = 3) -> GetUtxosResponse:
        """
        https://lightning.engineering/api-docs/api/lnd/wallet-kit/list-unspent/

        /walletrpc.WalletKit/ListUnspent
        """
        data = {
            'min_confs': min_confs,
            'max_confs': MAX_CONFS,
            'unconfirmed_only': False,
        }
        try:
            r = await self.http_client.post('/v2/wallet/utxos', json=data)
        except httpx.HTTPError as e:
            msg = 'failed to connect to ln backend to get utxos'
            logger.error(f'{msg}: {e}')
            return GetUtxosResponse(error_message=msg)

        if r.is_error:
            msg = _error_text(r)
            logger.error(f'get utxo set error: {msg}')
            return GetUtxosResponse(error_message=msg)

        utxos = list()
        for line in r.json().get('utxos') or []:
            outpoint = line.get('outpoint') or {}
            utxos.append(Utxo(
                address_type=line.get('address_type'),
                address=line.get('address'),
                amount_sat=line.get('amount_sat', 0),
                pk_script=line.get('pk_script'),
                outpoint=UtxoOutpoint(
                    txid_bytes=outpoint.get('txid_bytes'),
                    txid_str=outpoint.get('txid_str'),
                    output_index=outpoint.get('output_index', 0),
                ),
                confirmations=line.get('confirmations'),
            ))

        return GetUtxosResponse(utxos=utxos)

    async def connect_peer(
            self,
            pubkey: str,
            host: str,
            timeout: int = 15) -> ConnectPeerResponse:
        """
        https://lightning.engineering/api-docs/api/lnd/lightning/connect-peer/

        /lnrpc.Lightning/ConnectPeer
        """
        data = {
            'addr': {
                'pubkey': pubkey,
                'host': host,
            },
            'perm': False,
            'timeout': timeout
        }
        try:
            r = await self.http_client.post('/v1/peers', json=data)
        except httpx.HTTPError as e:
            msg = f'could not connect to peer {pubkey}@{host}'
            logger.error(f'{msg}: {e}')
            return ConnectPeerResponse(
                status=PeerConnectionStatus.FAILED,
                error_message=msg
            )

        if r.is_error:
            msg = _error_text(r)
            if 'already connected to peer' in msg:
                return ConnectPeerResponse(
                    status=PeerConnectionStatus.ALREADY_CONNECTED)
            if 'timeout' in msg:
                msg = f'connection try to {pubkey}@{host} timed out'
            elif 'EOF' in msg:
                msg = 'pubkey uri error or node does not exist'
            return ConnectPeerResponse(
                status=PeerConnectionStatus.FAILED,
                error_message=msg or 'unknown error occurred'
            )

        return ConnectPeerResponse(status=PeerConnectionStatus.CONNECTED)

    async def create_invoice(
            self,
            amt: int,
            expiry: int,
            memo: str = '') -> InvoiceResponse:
        """
        https://lightning.engineering/api-docs/api/lnd/lightning/add-invoice/

        /lnrpc.Lightning/AddInvoice
        """
        data = {'value': str(amt), 'expiry': str(expiry), 'memo': memo}
        try:
            r = await self.http_client.post('/v1/invoices', json=data)
        except httpx.HTTPError as e:
            msg = 'failed to create invoice'
            logger.error(f'{msg}: {e}')
            return InvoiceResponse(created=False, error_message=msg)

        if r.is_error:
            return InvoiceResponse(created=False, error_message=_error_text(r))

        data = r.json()
        payment_request = data.get('payment_request')
        if not payment_request:
            return InvoiceResponse(
                created=False,
                error_message='invoice response missing payment request')

        return InvoiceResponse(
            created=True,
            r_hash=data.get('r_hash'),
            payment_request=payment_request,
            expiry=expiry,
        )

    async def open_channel(
            self,
            pubkey: str,
            sat_per_vbyte: int,
            capacity: int,
            outpoints: List[UtxoOutpoint]) -> ChannelPoint:
        """
        * funds the channel only from the given outpoints
        https://lightning.engineering/api-docs/api/lnd/lightning/open-channel-sync/

        /lnrpc.Lightning/OpenChannelSync
        """
        data = {
            'node_pubkey': base64.b64encode(bytes.fromhex(pubkey)).decode(),
            'local_funding_amount': str(capacity),
            'sat_per_vbyte': str(sat_per_vbyte),
            'outpoints': [
                {'txid_str': o.txid_str, 'output_index': o.output_index}
                for o in outpoints
            ],
            'spend_unconfirmed': False,
        }
        try:
            r = await self.http_client.post('/v1/channels', json=data)
        except httpx.HTTPError as e:
            raise NodeError(f'failed to reach ln backend to open channel: {e}') from e

        if r.is_error:
            raise NodeError(f'could not open channel to {pubkey}: {_error_text(r)}')

        resp = r.json()
        txid_bytes = resp.get('funding_txid_bytes')
        txid_str = resp.get('funding_txid_str')
        if not txid_bytes and not txid_str:
            raise NodeError('no funding txid in open channel response')

        return ChannelPoint(
            txid_bytes=txid_bytes,
            txid_hex=txid_str,
            output_index=resp.get('output_index', 0),
        )
