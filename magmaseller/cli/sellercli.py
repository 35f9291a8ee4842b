import asyncio
import click
import logging
import os
import signal
from typing import Optional

from magmaseller.chain.mempool import MempoolFeeOracle
from magmaseller.errors import RenewalFailed
from magmaseller.ln.lnd import LndBackend
from magmaseller.magma.api import MagmaClient
from magmaseller.marketplace.credentials import CredentialManager
from magmaseller.marketplace.scheduler import Scheduler
from magmaseller.marketplace.seller import CycleReport, OrderHandler
from magmaseller.settings import SellerSettings

logger = logging.getLogger(name=__name__)


class SellerCLI:
    """wires the node, marketplace, fee oracle and scheduler together"""
    def __init__(self, settings: SellerSettings):
        self.settings = settings

        # core services
        self.ln_backend = LndBackend.from_settings(settings)
        self.marketplace = MagmaClient(api_url=settings.magma_api_url.unicode_string())
        self.fee_oracle = MempoolFeeOracle(
            fees_api_url=settings.mempool_fees_api_url.unicode_string())
        self.credential_manager = CredentialManager(
            cache_path=settings.credential_cache_path,
            preset_api_key=settings.magma_api_key,
            lifetime_seconds=settings.api_key_lifetime_seconds,
            description=settings.api_key_description,
        )
        self.order_handler = OrderHandler(
            ln_backend=self.ln_backend,
            marketplace=self.marketplace,
            fee_oracle=self.fee_oracle,
            reject_if_buyer_offline=settings.reject_if_buyer_offline,
            invoice_expiry_seconds=settings.invoice_expiry_seconds,
            min_utxo_confirmations=settings.min_utxo_confirmations,
        )
        self.scheduler = Scheduler(
            order_handler=self.order_handler,
            credential_manager=self.credential_manager,
            ln_backend=self.ln_backend,
            marketplace=self.marketplace,
            interval=settings.loop_interval,
        )

    # ------------------------------------------
    # start/stop
    # ------------------------------------------

    async def startup(self) -> None:
        status = await self.ln_backend.check_node_connection()
        if status.healthy:
            logger.info('ln backend connected and synced')
        else:
            logger.warning(f'ln backend not healthy: {status.error_message}')

        try:
            await self.credential_manager.ensure_credential(
                node=self.ln_backend,
                marketplace=self.marketplace)
        except RenewalFailed as e:
            # the scheduler retries the login before every cycle
            logger.error(f'could not obtain a Magma API key at startup: {e}')

    async def shutdown(self) -> None:
        await self.ln_backend.close_rest_client()
        await self.marketplace.close()
        await self.fee_oracle.close()

    def setup_signal_handlers(self) -> None:
        """stop the poll loop cleanly on SIGTERM (docker/systemd) and SIGINT"""
        logger.info(f"Setting up signal handlers for PID {os.getpid()}")
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name} signal, triggering shutdown...")
            loop.call_soon_threadsafe(self.scheduler.stop)

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    # ------------------------------------------
    # Command handlers
    # ------------------------------------------

    async def cmd_run(self, once: bool = False) -> Optional[CycleReport]:
        await self.startup()
        try:
            if once:
                return await self.scheduler.run_once()
            self.setup_signal_handlers()
            logger.info("Running in daemon mode, send SIGTERM or press Ctrl+C to stop")
            await self.scheduler.run()
            logger.info("Shutdown event received")
        finally:
            logger.info("Running shutdown cleanup...")
            await self.shutdown()
            logger.info("Shutdown complete")

    async def cmd_login(self) -> None:
        try:
            await self.credential_manager.renew_via_node(
                node=self.ln_backend,
                marketplace=self.marketplace)
            click.echo(f"Magma API key written to {self.credential_manager.cache_path}")
        finally:
            await self.shutdown()

    async def cmd_orders(self) -> None:
        try:
            await self.credential_manager.ensure_credential(
                node=self.ln_backend,
                marketplace=self.marketplace)
            orders = await self.marketplace.get_orders()
            self.render_orders(orders)
        finally:
            await self.shutdown()

    # ------------------------------------------
    # Helpers
    # ------------------------------------------

    def render_orders(self, orders) -> None:
        if not orders:
            click.echo("\nNo open orders")
            return
        indent = 30
        for order in orders:
            click.echo(
                f'\n{"Order ID": <{indent}}{order.id}\n'
                f'{"Status": <{indent}}{order.status}\n'
                f'{"Channel size (sats)": <{indent}}{order.size}\n'
                f'{"Buyer pubkey": <{indent}}{order.account}\n'
                f'{"Seller invoice (sats)": <{indent}}{order.seller_invoice_amount}'
            )
