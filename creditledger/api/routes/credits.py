"""
Credits API: balance, ledger history, audit trail and operator repair.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from creditledger.api.deps import get_ledger, require_admin_key
from creditledger.ledger.service import CreditLedger, LedgerConflictError
from creditledger.schemas.credits import AuditEntryOut, BalanceOut, RepairOut, TransactionOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/{account_id}", response_model=BalanceOut)
def get_balance(account_id: str, ledger: CreditLedger = Depends(get_ledger)):
    return BalanceOut(
        account_id=account_id,
        balance=ledger.get_balance(account_id),
        integrity_ok=ledger.verify_integrity(account_id),
    )


@router.get("/{account_id}/history", response_model=list[TransactionOut])
def get_history(account_id: str, ledger: CreditLedger = Depends(get_ledger)):
    return [
        TransactionOut(
            id=tx.id,
            timestamp=tx.timestamp,
            amount=tx.amount,
            type=tx.type.value,
            reason=tx.reason,
            payment_hash=tx.payment_hash,
            job_id=tx.job_id,
        )
        for tx in ledger.get_history(account_id)
    ]


@router.get("/{account_id}/audit", response_model=list[AuditEntryOut])
def get_audit(account_id: str, ledger: CreditLedger = Depends(get_ledger)):
    """Transaction log, newest first."""
    if ledger.transaction_log is None:
        return []
    entries = ledger.transaction_log.entries(account_id)
    return [
        AuditEntryOut(
            transaction_id=e.transaction_id,
            timestamp=e.timestamp,
            amount=e.amount,
            type=e.type.value,
            reason=e.reason,
            payment_hash=e.payment_hash,
            job_id=e.job_id,
        )
        for e in reversed(entries)
    ]


@router.post("/{account_id}/repair", response_model=RepairOut, dependencies=[Depends(require_admin_key)])
def repair(account_id: str, ledger: CreditLedger = Depends(get_ledger)):
    try:
        balance = ledger.rebuild_from_log(account_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except LedgerConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RepairOut(account_id=account_id, balance=balance)
