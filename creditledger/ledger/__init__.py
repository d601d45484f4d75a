"""
Credit ledger: balances, history, integrity digest and idempotent payment credits.
"""
from .idempotency import (
    IdempotencyGuard,
    InMemoryIdempotencyGuard,
    RedisIdempotencyGuard,
    SqlIdempotencyGuard,
)
from .records import AccountRecord, DebitResult, StoredRecord, Transaction, TransactionType
from .repository import (
    InMemoryLedgerRepository,
    JsonFileLedgerRepository,
    LedgerRepository,
    SqlLedgerRepository,
)
from .service import CreditLedger, LedgerConflictError, LedgerIntegrityError
from .transaction_log import (
    InMemoryTransactionLog,
    JsonLinesTransactionLog,
    SqlTransactionLog,
    TransactionLog,
    TransactionLogEntry,
    replay_balance,
)

__all__ = [
    "CreditLedger",
    "LedgerConflictError",
    "LedgerIntegrityError",
    "AccountRecord",
    "DebitResult",
    "StoredRecord",
    "Transaction",
    "TransactionType",
    "LedgerRepository",
    "InMemoryLedgerRepository",
    "JsonFileLedgerRepository",
    "SqlLedgerRepository",
    "IdempotencyGuard",
    "InMemoryIdempotencyGuard",
    "RedisIdempotencyGuard",
    "SqlIdempotencyGuard",
    "TransactionLog",
    "TransactionLogEntry",
    "InMemoryTransactionLog",
    "JsonLinesTransactionLog",
    "SqlTransactionLog",
    "replay_balance",
]
