#!/usr/bin/env python3
"""
Recompute allowance and stock conservation and report discrepancies.

Exit status is 0 when both ledgers agree with their source rows, 1 otherwise.

Usage:
    python3 scripts/audit_ledgers.py
    python3 scripts/audit_ledgers.py --config path/to/config.yaml --verbose
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Audit the allowance and stock ledgers.")
    parser.add_argument("--config", type=Path, default=None, help="Configuration YAML")
    parser.add_argument("--verbose", action="store_true", help="List every owner checked")
    args = parser.parse_args()

    from fulfillment_config import get_active_config
    from fulfillment_kernel.db.engine import (
        create_engine_from_url,
        create_session_factory,
        session_scope,
    )
    from fulfillment_kernel.services import LedgerAuditor

    config = get_active_config(args.config)
    engine = create_engine_from_url(config.database.url)
    factory = create_session_factory(engine)

    with session_scope(factory) as session:
        auditor = LedgerAuditor(session)
        allowances = auditor.audit_all_allowances()
        stock = auditor.audit_stock()

    failures = 0
    for result in allowances:
        if not result.is_consistent:
            failures += 1
            print(
                f"ALLOWANCE MISMATCH owner={result.owner_id} granted={result.granted_quota} "
                f"remaining={result.remaining_quota} reserved={result.reserved_quantity}"
            )
        elif args.verbose:
            print(f"ok owner={result.owner_id} remaining={result.remaining_quota}/{result.granted_quota}")

    if stock.is_consistent:
        print(f"Stock ok: total={stock.total_available} over {stock.adjustment_count} adjustments")
    else:
        failures += 1
        print(f"STOCK MISMATCH total={stock.total_available} ledger_sum={stock.ledger_sum}")

    print(f"{len(allowances)} owners checked, {failures} discrepancies")
    engine.dispose()
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
