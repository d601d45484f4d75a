from creditledger.models.account_balance import AccountBalance
from creditledger.models.applied_payment import AppliedPayment
from creditledger.models.credit_transaction_log import CreditTransactionLog
from creditledger.models.generation import Generation
from creditledger.models.pending_payment import PendingPayment

__all__ = [
    "AccountBalance",
    "AppliedPayment",
    "CreditTransactionLog",
    "Generation",
    "PendingPayment",
]
