"""Run renewal invoice generation manually.

Usage:
    cd backend
    python -m scripts.generate_due_invoices
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from app.core.logging import setup_logging
from app.modules.membership.tasks import run_renewals


async def main():
    """Run one renewal pass."""
    print("\n" + "=" * 60)
    print("Generating Due Membership Invoices")
    print("=" * 60)

    summary = await run_renewals()

    print(f"\nResults:")
    print(f"  Accounts due: {summary['due_accounts']}")
    print(f"  Invoices created: {summary['invoices_created']}")
    print(f"  Skipped: {summary['skipped']}")
    print(f"  Checkout link failures: {summary['checkout_failures']}")
    print(f"  Run at: {summary['run_at']}")


if __name__ == "__main__":
    setup_logging(level="INFO", json_format=False)
    asyncio.run(main())
