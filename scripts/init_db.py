#!/usr/bin/env python3
"""
Create the ledger tables in DATABASE_URL.
Run from the project root: python -m scripts.init_db
"""
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import creditledger.models  # noqa: F401  registers tables on Base
from creditledger.db.base import Base
from creditledger.db.session import engine


def main():
    Base.metadata.create_all(bind=engine)
    print(f"Tables created: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    main()
