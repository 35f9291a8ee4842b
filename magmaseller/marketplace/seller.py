import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from magmaseller.chain.funding import select_funding
from magmaseller.chain.mempool import MempoolFeeOracle
from magmaseller.errors import (
    AuthRejected,
    CounterpartyUnreachable,
    InvalidOrder,
    MagmaSellerError,
    NodeError,
    Unprofitable,
)
from magmaseller.ln.base import NodeBase
from magmaseller.magma.base import MarketplaceBase
from magmaseller.magma.models import Order, OrderCancellationReason, OrderStatus
from magmaseller.settings import MagmaSettings, ServiceSettings

logger = logging.getLogger(name=__name__)


class OrderResult(str, Enum):
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    CHANNEL_OPENED = 'CHANNEL_OPENED'
    CANCELLED = 'CANCELLED'
    SKIPPED = 'SKIPPED'
    FAILED = 'FAILED'

    def __str__(self):
        return self.name


@dataclass
class OrderOutcome:
    order_id: str
    status: OrderStatus
    result: Optional[OrderResult] = None
    error: Optional[str] = None


@dataclass
class CycleReport:
    outcomes: List[OrderOutcome] = field(default_factory=list)

    def by_result(self, result: OrderResult) -> List[OrderOutcome]:
        return [o for o in self.outcomes if o.result == result]

    def __str__(self):
        counts = {}
        for o in self.outcomes:
            counts[str(o.result)] = counts.get(str(o.result), 0) + 1
        summary = ', '.join(f'{k.lower()}: {v}' for k, v in sorted(counts.items()))
        return f'{len(self.outcomes)} orders ({summary or "none"})'


class OrderHandler:
    """
    Runs one poll cycle over the seller's open Magma orders.

    Orders are handled one after the other since invoices and channel opens
    draw on the same wallet. Any failure is contained to its order except
    AuthRejected, which stops the cycle so the credential can be renewed.
    """
    def __init__(
            self,
            ln_backend: NodeBase,
            marketplace: MarketplaceBase,
            fee_oracle: MempoolFeeOracle,
            reject_if_buyer_offline: bool = MagmaSettings().reject_if_buyer_offline,
            invoice_expiry_seconds: int = ServiceSettings().invoice_expiry_seconds,
            min_utxo_confirmations: int = ServiceSettings().min_utxo_confirmations):
        self.ln_backend = ln_backend
        self.marketplace = marketplace
        self.fee_oracle = fee_oracle
        self.reject_if_buyer_offline = reject_if_buyer_offline
        self.invoice_expiry_seconds = invoice_expiry_seconds
        self.min_utxo_confirmations = min_utxo_confirmations
        # funding tx points the marketplace has not acknowledged yet
        self.unrecorded_channels: Dict[str, str] = {}

    async def process_cycle(self) -> CycleReport:
        logger.debug("Checking orders...")
        orders = await self.marketplace.get_orders()
        self.forget_settled_channels(orders)
        report = CycleReport()
        for order in orders:
            report.outcomes.append(await self.process_order(order))
        logger.debug(f'cycle done: {report}')
        return report

    def forget_settled_channels(self, orders: List[Order]) -> None:
        """drop pending records for orders no longer waiting on a channel open"""
        waiting = {
            o.id for o in orders
            if o.status == OrderStatus.WAITING_FOR_CHANNEL_OPEN
        }
        for order_id in list(self.unrecorded_channels):
            if order_id not in waiting:
                tx_point = self.unrecorded_channels.pop(order_id)
                logger.info(
                    f'order {order_id} moved on without our record of {tx_point}, '
                    'dropping it')

    async def process_order(self, order: Order) -> OrderOutcome:
        outcome = OrderOutcome(order_id=order.id, status=order.status)
        try:
            if order.status == OrderStatus.WAITING_FOR_CHANNEL_OPEN:
                logger.info(f"Opening channel for order: {order.id}")
                await self.open_channel(order, outcome)
            elif order.status == OrderStatus.WAITING_FOR_SELLER_APPROVAL:
                logger.info(f"Approving order: {order.id}")
                await self.approve_order(order, outcome)
            else:
                logger.debug(f"Skipping order: {order.id} ({order.status})")
                outcome.result = OrderResult.SKIPPED
                return outcome
        except AuthRejected:
            logger.error(f'credential rejected while processing order {order.id}, stopping cycle')
            raise
        except Exception as e:
            logger.error(f"Error processing order {order.id}: {e!r}")
            outcome.error = str(e)
            if outcome.result is None:
                outcome.result = OrderResult.FAILED

        logger.info(f'order {order.id}: {outcome.result}')
        return outcome

    def _seller_invoice_amount(self, order: Order) -> int:
        if order.seller_invoice_amount is None:
            raise InvalidOrder(f'order {order.id} has no seller invoice amount')
        return order.seller_invoice_amount

    async def check_buyer_is_online(self, pubkey: str) -> None:
        """
        connect to the first advertised address of the buyer, an existing
        connection counts as reachable
        """
        addresses = await self.marketplace.get_node_addresses(pubkey)
        if not addresses:
            raise CounterpartyUnreachable(f'no addresses advertised for {pubkey}')

        conn = await self.ln_backend.connect_peer(pubkey=pubkey, host=addresses[0])
        if not conn.connected:
            raise CounterpartyUnreachable(
                f'could not connect to {pubkey}@{addresses[0]}: {conn.error_message}')
        logger.debug(f"Successfully connected to buyer's node ({conn.status})")

    async def cancel_if_buyer_offline(self, order: Order) -> bool:
        """returns True if the order got cancelled"""
        try:
            await self.check_buyer_is_online(order.account)
            return False
        except CounterpartyUnreachable as e:
            logger.warning(f"Can't connect to buyer's node, canceling order {order.id}. {e}")
        except AuthRejected:
            raise
        except MagmaSellerError as e:
            logger.error(f'could not check buyer of order {order.id}, not cancelling: {e}')
            return False

        try:
            await self.marketplace.cancel_order(
                order.id,
                OrderCancellationReason.UNABLE_TO_CONNECT_TO_NODE)
        except AuthRejected:
            raise
        except MagmaSellerError as e:
            logger.error(f'failed to cancel order {order.id}: {e}')
            return False
        return True

    async def approve_order(self, order: Order, outcome: OrderOutcome) -> None:
        """
        1. make sure we can connect to the buyer's node, reject if not
        2. create invoice for the seller amount
        3. accept order with the invoice
        """
        invoice_amount = self._seller_invoice_amount(order)

        if self.reject_if_buyer_offline:
            try:
                await self.check_buyer_is_online(order.account)
            except CounterpartyUnreachable as e:
                logger.warning(f"Can't connect to buyer's node, rejecting order {order.id}. {e}")
                await self.marketplace.reject_order(order.id)
                outcome.result = OrderResult.REJECTED
                return
        else:
            logger.info("Skipping buyer's node check")

        inv = await self.ln_backend.create_invoice(
            amt=invoice_amount,
            expiry=self.invoice_expiry_seconds,
            memo=f'Magma order {order.id}')
        if not inv.created:
            raise NodeError(f'could not create invoice: {inv.error_message}')
        logger.debug(f"Invoice created: {inv.payment_request}")

        await self.marketplace.accept_order(order.id, inv.payment_request)
        outcome.result = OrderResult.APPROVED

    async def open_channel(self, order: Order, outcome: OrderOutcome) -> None:
        """
        1. get current fee rate
        2. pick utxos and estimate the fee
        3. make sure it's profitable
        4. open the channel
        5. record the funding tx on the marketplace
        """
        tx_point = self.unrecorded_channels.get(order.id)
        if tx_point:
            # channel already funded in an earlier cycle, only the record is missing
            logger.info(f'retrying funding tx record {tx_point} for order {order.id}')
            await self._record_channel(order, tx_point, outcome)
            return

        invoice_amount = self._seller_invoice_amount(order)

        fee_rate = await self.fee_oracle.current_fee_rate()
        logger.info(f"Current fee rate: {fee_rate} sat/vB")

        utxos = await self.ln_backend.get_utxo_set(min_confs=self.min_utxo_confirmations)
        if utxos.error_message:
            raise NodeError(f'could not list utxos: {utxos.error_message}')

        plan = select_funding(
            target_sats=order.size,
            sat_per_vbyte=fee_rate,
            utxos=utxos.utxos)
        logger.info(
            f"Using {plan.num_inputs} UTXOs: {[str(o) for o in plan.outpoints]}")

        if plan.fee_cost > invoice_amount:
            raise Unprofitable(fee=plan.fee_cost, invoice_amount=invoice_amount)
        logger.info(
            f"Expected fee: {plan.fee_cost} sats, "
            f"expected profit: {invoice_amount - plan.fee_cost} sats")

        try:
            channel_point = await self.ln_backend.open_channel(
                pubkey=order.account,
                sat_per_vbyte=fee_rate,
                capacity=order.size,
                outpoints=plan.outpoints)
        except NodeError:
            if await self.cancel_if_buyer_offline(order):
                outcome.result = OrderResult.CANCELLED
            raise

        tx_point = channel_point.funding_tx_point
        logger.info(f"Channel opened: https://mempool.space/tx/{channel_point.txid_hex}")
        self.unrecorded_channels[order.id] = tx_point
        await self._record_channel(order, tx_point, outcome)

    async def _record_channel(
            self,
            order: Order,
            tx_point: str,
            outcome: OrderOutcome) -> None:
        await self.marketplace.confirm_channel_open(order.id, tx_point)
        del self.unrecorded_channels[order.id]
        outcome.result = OrderResult.CHANNEL_OPENED
