import httpx
import logging
from typing import Optional

from magmaseller.errors import OracleUnavailable
from magmaseller.settings import MEMPOOL_FEES_API_URL

logger = logging.getLogger(name=__name__)


class MempoolFeeOracle:
    """
    recommended fee rates from a mempool.space compatible instance
    """
    def __init__(
            self,
            fees_api_url: str = MEMPOOL_FEES_API_URL,
            fee_key: str = 'fastestFee',
            transport: Optional[httpx.AsyncBaseTransport] = None):
        self.fees_api_url = fees_api_url
        self.fee_key = fee_key
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0),
            transport=transport,
        )

    async def current_fee_rate(self) -> int:
        """sat/vB, raises OracleUnavailable on any fetch or parse failure"""
        try:
            r = await self.http_client.get(self.fees_api_url)
            r.raise_for_status()
            fee_rate = int(r.json()[self.fee_key])
        except httpx.HTTPError as e:
            raise OracleUnavailable(f'could not fetch fee rates: {e}') from e
        except (KeyError, TypeError, ValueError) as e:
            raise OracleUnavailable(f'unexpected fee rate response: {e}') from e

        if fee_rate < 1:
            raise OracleUnavailable(f'fee rate {fee_rate} is not usable')

        logger.debug(f'current {self.fee_key}: {fee_rate} sat/vB')
        return fee_rate

    async def close(self) -> None:
        await self.http_client.aclose()
