"""
error taxonomy shared by the node gateway, the marketplace client and the
order handler

callers branch on the exception type, never on the message text
"""
from typing import Optional


class MagmaSellerError(Exception):
    """base for every error raised on purpose by magmaseller"""


class TransientError(MagmaSellerError):
    """network or remote failure, skip this order/cycle and retry next cycle"""


class OracleUnavailable(TransientError):
    pass


class NodeError(TransientError):
    """ln backend call failed or returned an error reply"""


class AuthRejected(MagmaSellerError):
    """marketplace refused the current bearer credential"""


class NotFound(MagmaSellerError):
    pass


class CredentialNotFound(NotFound):
    pass


class BusinessRuleError(MagmaSellerError):
    """abort a single order, no retry without operator intervention"""


class InsufficientFunds(BusinessRuleError):
    def __init__(self, shortfall: float, target: Optional[int] = None):
        self.shortfall = shortfall
        self.target = target
        super().__init__(
            f'insufficient confirmed utxos to fund {target} sats, '
            f'short by {shortfall} sats')


class Unprofitable(BusinessRuleError):
    def __init__(self, fee: float, invoice_amount: int):
        self.fee = fee
        self.invoice_amount = invoice_amount
        super().__init__(
            f'fee is higher than order cost. fee: {fee}, '
            f'order cost: {invoice_amount}')


class InvalidOrder(BusinessRuleError):
    pass


class CounterpartyUnreachable(MagmaSellerError):
    """buyer node could not be resolved or connected to"""


class RenewalFailed(MagmaSellerError):
    pass


class ConfigurationFatal(MagmaSellerError):
    """missing or unreadable credentials at startup, do not start"""
