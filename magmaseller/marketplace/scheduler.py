import asyncio
import logging
from typing import Optional

from magmaseller.errors import AuthRejected, RenewalFailed
from magmaseller.ln.base import NodeBase
from magmaseller.magma.base import MarketplaceBase
from magmaseller.marketplace.credentials import CredentialManager
from magmaseller.marketplace.seller import CycleReport, OrderHandler
from magmaseller.settings import ServiceSettings

logger = logging.getLogger(name=__name__)
MIN_LOOP_INTERVAL = 10


class Scheduler:
    """
    Fixed interval poll loop around the order handler. It only returns once
    stop() is called; recoverable errors are logged and the next cycle runs
    as usual.
    """
    def __init__(
            self,
            order_handler: OrderHandler,
            credential_manager: CredentialManager,
            ln_backend: NodeBase,
            marketplace: MarketplaceBase,
            interval: int = ServiceSettings().loop_interval):
        self.order_handler = order_handler
        self.credential_manager = credential_manager
        self.ln_backend = ln_backend
        self.marketplace = marketplace
        self.interval = max(interval, MIN_LOOP_INTERVAL)
        self.shutdown_event: Optional[asyncio.Event] = None

    async def renew_credential(self) -> bool:
        try:
            await self.credential_manager.renew_via_node(
                node=self.ln_backend,
                marketplace=self.marketplace)
            return True
        except RenewalFailed as e:
            logger.error(f'{e}, will retry next cycle')
            return False

    async def run_once(self) -> Optional[CycleReport]:
        self.credential_manager.refresh_state()
        if self.credential_manager.needs_renewal:
            if not await self.renew_credential():
                return None

        try:
            return await self.order_handler.process_cycle()
        except AuthRejected as e:
            logger.warning(f'{e}, renewing credential')
            self.credential_manager.mark_rejected(self.marketplace)
            await self.renew_credential()
        except Exception as e:
            logger.error(f'poll cycle failed: {e!r}')
        return None

    async def run(self) -> None:
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()

        logger.info(f'polling Magma orders every {self.interval} seconds')
        while not self.shutdown_event.is_set():
            await self.run_once()
            logger.debug(f"Sleeping for {self.interval} seconds...")
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()
        self.shutdown_event.set()
