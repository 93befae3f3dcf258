"""Re-verify stale pending payments with the gateway and print the summary.

One-shot operator tool for references whose webhook never arrived and whose
payer never returned to trigger a verify call.
"""

import argparse
import json

import httpx


def main() -> None:
    """Parse CLI args and run one pending sweep."""

    parser = argparse.ArgumentParser(description="Reconcile pending ledger rows against Paystack.")
    parser.add_argument("--settlement-url", default="http://localhost:8000")
    parser.add_argument("--api-key", required=True)
    parser.add_argument("--minutes", type=int, default=30, help="Only rows pending for at least N minutes")
    parser.add_argument("--max", type=int, default=100, help="Max rows to check")
    args = parser.parse_args()

    resp = httpx.post(
        f"{args.settlement_url}/internal/transactions/reconcile-pending",
        params={"older_than_minutes": args.minutes, "limit": args.max},
        headers={"x-api-key": args.api_key},
        timeout=120.0,
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
