#!/usr/bin/env python3
"""
Operator repair: rebuild an account's balance record from the transaction log.
Run from the project root: python -m scripts.repair_account <account_id> [--dry-run]
"""
import argparse
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from creditledger.core.logging import configure_logging
from creditledger.db.session import SessionLocal
from creditledger.ledger.transaction_log import replay_balance
from creditledger.services.factory import build_ledger


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("account_id")
    parser.add_argument("--dry-run", action="store_true", help="only print the replayed balance")
    args = parser.parse_args()
    configure_logging()

    db = SessionLocal()
    try:
        ledger = build_ledger(db)
        print(f"integrity ok: {ledger.verify_integrity(args.account_id)}")
        print(f"stored balance (as read): {ledger.get_balance(args.account_id)}")
        entries = ledger.transaction_log.entries(args.account_id)
        print(f"logged transactions: {len(entries)}, replayed balance: {replay_balance(entries)}")
        if args.dry_run:
            return
        balance = ledger.rebuild_from_log(args.account_id)
        print(f"rebuilt, balance now {balance}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
