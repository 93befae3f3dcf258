"""Fetch and print ledger transaction statistics JSON."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for the accountant transaction report."""

    parser = argparse.ArgumentParser(description="Fetch settlement transaction stats endpoint.")
    parser.add_argument("--settlement-url", default="http://localhost:8000")
    parser.add_argument("--api-key", required=True)
    args = parser.parse_args()

    resp = httpx.get(
        f"{args.settlement_url}/internal/transactions/stats",
        headers={"x-api-key": args.api_key},
        timeout=10.0,
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
