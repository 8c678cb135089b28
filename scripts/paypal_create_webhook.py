"""
Register a PayPal webhook for payment notifications and print its id.

Usage:
  python scripts/paypal_create_webhook.py --url https://your.domain/paypal/webhook \
      --mode sandbox --output-env .env

Requirements:
  - PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET in the environment, or pass --client-id/--client-secret
Notes:
  - The service verifies webhook signatures only when PAYPAL_WEBHOOK_ID is set.
  - PayPal allows a single webhook per URL per app; re-running for the same URL fails.
"""

from __future__ import annotations

import argparse
import os
import sys

from phonegate.adapters.paypal import PayPalClient
from phonegate.core.errors import PhonegateError
from phonegate.core.events import INTERPRETED_EVENT_TYPES


def _mask(secret: str) -> str:
    """Return a masked representation of a secret for safe display."""
    if not secret or len(secret) <= 8:
        return "****"
    return f"{secret[:4]}…{secret[-4:]}"


def _append_env(path: str, webhook_id: str) -> None:
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"\nPAYPAL_WEBHOOK_ID={webhook_id}\n")


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--url", required=True, help="Public URL to receive webhooks (https)")
    ap.add_argument(
        "--events",
        nargs="+",
        default=sorted(INTERPRETED_EVENT_TYPES),
        help="Event types to subscribe to",
    )
    ap.add_argument("--mode", default=os.getenv("PAYPAL_MODE", "live"), choices=["live", "sandbox"])
    ap.add_argument("--client-id", default=None, help="PayPal client id (overrides env)")
    ap.add_argument("--client-secret", default=None, help="PayPal client secret (overrides env)")
    ap.add_argument("--output-env", default=None, help="Append PAYPAL_WEBHOOK_ID=... to this env file")
    args = ap.parse_args()

    client_id = args.client_id or os.getenv("PAYPAL_CLIENT_ID")
    client_secret = args.client_secret or os.getenv("PAYPAL_CLIENT_SECRET")
    if not (client_id and client_secret):
        print(
            "error: PAYPAL_CLIENT_ID/PAYPAL_CLIENT_SECRET not set and --client-id/--client-secret not provided",
            file=sys.stderr,
        )
        return 2

    if not args.url.startswith("https://"):
        print("error: webhook URL must be https", file=sys.stderr)
        return 2

    client = PayPalClient(client_id, client_secret, mode=args.mode)
    print(f"Using PayPal {args.mode} app {_mask(client_id)}")
    try:  # pragma: no cover - external API call
        wh = client.create_webhook(args.url, args.events)
    except PhonegateError as e:
        print(f"error: failed to create webhook: {e.message}", file=sys.stderr)
        return 1

    wid = wh.get("id")
    print("Created Webhook:")
    print(f"  id: {wid}")
    print(f"  events: {', '.join(args.events)}")

    if args.output_env and wid:
        try:
            _append_env(args.output_env, wid)
            print(f"Appended PAYPAL_WEBHOOK_ID to {args.output_env}")
        except OSError as e:
            print(f"warn: failed to write {args.output_env}: {e}", file=sys.stderr)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
