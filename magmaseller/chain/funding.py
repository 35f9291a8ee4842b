import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from magmaseller.errors import InsufficientFunds
from magmaseller.ln.base import Utxo, UtxoOutpoint

logger = logging.getLogger(name=__name__)

# vbyte weights, taproot key path inputs and two p2tr/p2wsh sized outputs
INPUT_VBYTES = 57.5
OUTPUT_VBYTES = 43.0
NUM_OUTPUTS = 2
OVERHEAD_VBYTES = 10.5


def tx_size(num_inputs: int) -> float:
    """estimated vsize of a channel funding tx with a change output"""
    inputs_size = num_inputs * INPUT_VBYTES
    outputs_size = NUM_OUTPUTS * OUTPUT_VBYTES
    return inputs_size + outputs_size + OVERHEAD_VBYTES


def calc_fee(num_inputs: int, sat_per_vbyte: int) -> float:
    return tx_size(num_inputs) * sat_per_vbyte


@dataclass
class FundingPlan:
    outpoints: List[UtxoOutpoint] = field(default_factory=list)
    amount_sat: int = 0
    fee_cost: float = 0.0
    fee_rate: int = 0

    @property
    def num_inputs(self) -> int:
        return len(self.outpoints)


def select_funding(
        target_sats: int,
        sat_per_vbyte: int,
        utxos: Sequence[Utxo]) -> FundingPlan:
    """
    greedy walk over the utxos in the order the wallet listed them, never
    sorted by value

    stops at the shortest prefix whose amounts cover the channel size plus
    the fee of a tx spending that many inputs
    """
    total = sum(utxo.amount_sat for utxo in utxos)
    if total < target_sats:
        raise InsufficientFunds(shortfall=target_sats - total, target=target_sats)

    plan = FundingPlan(fee_rate=sat_per_vbyte)
    remaining = float(target_sats)
    for utxo in utxos:
        plan.outpoints.append(utxo.outpoint)
        plan.amount_sat += utxo.amount_sat
        plan.fee_cost = calc_fee(plan.num_inputs, sat_per_vbyte)
        remaining = target_sats + plan.fee_cost - plan.amount_sat
        if remaining <= 0:
            logger.debug(
                f'selected {plan.num_inputs} utxos worth {plan.amount_sat} sats, '
                f'estimated fee {plan.fee_cost} sats')
            return plan

    # total covers the channel but not channel + fees
    raise InsufficientFunds(shortfall=remaining, target=target_sats)
