"""Post a signed Paystack-style webhook to the settlement service.

Useful for sandbox runs and duplicate-delivery testing.
"""

import argparse
import json
from pathlib import Path

import httpx

from settlepay.services.settlement.webhook import SIGNATURE_HEADER, sign_payload


def main() -> None:
    """Parse CLI args, sign one JSON payload and deliver it."""

    parser = argparse.ArgumentParser(description="Send a signed webhook event.")
    parser.add_argument("--settlement-url", default="http://localhost:8000")
    parser.add_argument("--secret", required=True, help="Paystack secret key used to sign")
    parser.add_argument("--payload-file", required=True, help="Path to JSON payload")
    parser.add_argument("--repeat", type=int, default=1, help="Deliver the same payload N times")
    args = parser.parse_args()

    payload = json.loads(Path(args.payload_file).read_text(encoding="utf-8"))
    raw_body = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json", SIGNATURE_HEADER: sign_payload(raw_body, args.secret)}
    for attempt in range(1, args.repeat + 1):
        resp = httpx.post(f"{args.settlement_url}/paystack/webhook", content=raw_body, headers=headers, timeout=10.0)
        print(f"delivery={attempt} status={resp.status_code} body={resp.text}")


if __name__ == "__main__":
    main()
