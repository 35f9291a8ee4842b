import httpx
import logging
from pydantic import ValidationError
from typing import Any, Dict, List, Optional

from magmaseller.errors import AuthRejected, TransientError
from magmaseller.magma import queries
from magmaseller.magma.base import MarketplaceBase
from magmaseller.magma.models import Order, OrderCancellationReason, SignInfo
from magmaseller.settings import AMBOSS_API_URL

logger = logging.getLogger(name=__name__)
AUTH_ERROR_CODES = {'FORBIDDEN', 'UNAUTHENTICATED'}
AUTH_ERROR_MESSAGES = {'forbidden', 'unauthorized', 'not authorized', 'unauthenticated'}


def log_cost(extensions: Optional[Dict[str, Any]]) -> None:
    if not extensions:
        return
    cost = extensions.get('cost')
    if not cost:
        return
    logger.debug(f" - Requested query cost: {cost.get('requestedQueryCost')}")
    throttle = cost.get('throttleStatus')
    if throttle:
        logger.debug(
            f" - Throttled query remaining: {throttle.get('currentlyAvailable')}")


def is_auth_error(error: Dict[str, Any]) -> bool:
    code = (error.get('extensions') or {}).get('code')
    if code in AUTH_ERROR_CODES:
        return True
    return str(error.get('message', '')).strip().lower() in AUTH_ERROR_MESSAGES


class MagmaClient(MarketplaceBase):
    """
    Amboss Magma GraphQL client for the seller side of the marketplace
    """
    def __init__(
            self,
            api_url: str = AMBOSS_API_URL,
            api_key: Optional[str] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url
        self._api_key = api_key
        timeout = httpx.Timeout(connect=5.0, read=30.0, write=5.0, pool=None)
        self.http_client = httpx.AsyncClient(
            headers={'content-type': 'application/json'},
            timeout=timeout,
            transport=transport,
        )

    def use_credential(self, token: Optional[str]) -> None:
        self._api_key = token

    @property
    def has_credential(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        await self.http_client.aclose()

    async def _request(
            self,
            operation: str,
            query: str,
            variables: Optional[Dict[str, Any]] = None,
            bearer: Optional[str] = None,
            authenticated: bool = True) -> Dict[str, Any]:
        logger.debug(operation)
        headers = {}
        token = bearer or self._api_key
        if authenticated and token:
            headers['Authorization'] = f'Bearer {token}'
        payload = {'query': query, 'variables': variables or {}}

        try:
            r = await self.http_client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise TransientError(f'{operation} request failed: {e}') from e

        if r.status_code in (401, 403):
            raise AuthRejected(f'{operation} rejected with status {r.status_code}')

        try:
            body = r.json()
        except ValueError:
            raise TransientError(
                f'{operation} returned non json response {r.status_code}: {r.text[:200]}')

        errors = body.get('errors')
        if errors:
            if any(is_auth_error(e) for e in errors):
                raise AuthRejected(f'{operation} forbidden: {errors}')
            raise TransientError(f'{operation} GraphQL errors: {errors}')

        if r.is_error:
            raise TransientError(f'{operation} failed with status {r.status_code}')

        data = body.get('data')
        if data is None:
            raise TransientError(f'{operation} unknown error occurred')

        log_cost(body.get('extensions'))
        return data

    async def get_orders(self) -> List[Order]:
        data = await self._request('GetOrders', queries.GET_ORDERS)
        market = (data.get('getUser') or {}).get('market')
        if not market:
            return []

        orders = []
        for raw in (market.get('offer_orders') or {}).get('list') or []:
            try:
                orders.append(Order.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"ignoring malformed order {raw.get('id')}: {e}")
        return orders

    async def get_node_addresses(self, pubkey: str) -> List[str]:
        data = await self._request(
            'GetNodeAddresses',
            queries.GET_NODE_ADDRESSES,
            {'pubkey': pubkey})
        node = ((data.get('getNode') or {}).get('graph_info') or {}).get('node') or {}
        return [a['addr'] for a in node.get('addresses') or [] if a.get('addr')]

    async def accept_order(self, order_id: str, invoice: str) -> None:
        data = await self._request(
            'AcceptOrder',
            queries.ACCEPT_ORDER,
            {'orderId': order_id, 'invoice': invoice})
        if data.get('sellerAcceptOrder') is False:
            raise TransientError(f'marketplace did not accept order {order_id}')

    async def reject_order(self, order_id: str) -> None:
        data = await self._request(
            'RejectOrder',
            queries.REJECT_ORDER,
            {'orderId': order_id})
        if data.get('sellerRejectOrder') is False:
            raise TransientError(f'marketplace did not reject order {order_id}')

    async def cancel_order(
            self,
            order_id: str,
            reason: OrderCancellationReason) -> None:
        data = await self._request(
            'CancelOrder',
            queries.CANCEL_ORDER,
            {'orderId': order_id, 'reason': reason.value})
        if data.get('sellerCancelOrder') is False:
            raise TransientError(f'marketplace did not cancel order {order_id}')

    async def confirm_channel_open(self, order_id: str, tx_point: str) -> None:
        data = await self._request(
            'ConfirmChannelOpen',
            queries.ADD_TRANSACTION,
            {'orderId': order_id, 'txPoint': tx_point})
        if data.get('sellerAddTransaction') is False:
            raise TransientError(
                f'marketplace did not record transaction {tx_point} for order {order_id}')

    async def get_sign_info(self) -> SignInfo:
        data = await self._request(
            'GetSignInfo',
            queries.GET_SIGN_INFO,
            authenticated=False)
        try:
            return SignInfo.model_validate(data.get('getSignInfo'))
        except ValidationError as e:
            raise TransientError(f'malformed sign info response: {e}') from e

    async def login(self, identifier: str, signature: str) -> str:
        data = await self._request(
            'Login',
            queries.LOGIN,
            {'identifier': identifier, 'signature': signature, 'token': True},
            authenticated=False)
        token = data.get('login')
        if not token:
            raise TransientError('login returned no token')
        return token

    async def create_api_key(
            self,
            token: str,
            seconds: int,
            description: str) -> str:
        data = await self._request(
            'CreateApiKey',
            queries.CREATE_API_KEY,
            {'seconds': seconds, 'description': description},
            bearer=token)
        api_key = data.get('createApiKey')
        if not api_key:
            raise TransientError('createApiKey returned no key')
        return api_key
