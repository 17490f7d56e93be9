# scripts/send_test_webhook.py
"""
Post a fake Grandstream CDR to a running server.

Example:
    python -m scripts.send_test_webhook --connection-id 1 --secret <hex> \
        --recording 2024/01/15/call-abc.wav
"""

from __future__ import annotations

import argparse
import json
import uuid
from datetime import datetime, timedelta

import requests


def build_payload(recording: str | None, src: str, dst: str, duration: int) -> dict:
    end = datetime.utcnow().replace(microsecond=0)
    start = end - timedelta(seconds=duration)
    return {
        "event": "cdr",
        "uniqueid": f"test-{uuid.uuid4().hex[:12]}",
        "src": src,
        "dst": dst,
        "start": start.strftime("%Y-%m-%d %H:%M:%S"),
        "answer": (start + timedelta(seconds=3)).strftime("%Y-%m-%d %H:%M:%S"),
        "end": end.strftime("%Y-%m-%d %H:%M:%S"),
        "duration": duration,
        "billsec": max(duration - 3, 0),
        "disposition": "ANSWERED",
        "recording_filename": recording,
    }


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--connection-id", type=int, required=True)
    parser.add_argument("--secret", required=True, help="The connection's webhook secret")
    parser.add_argument("--recording", default=None, help="Recording filename on the UCM")
    parser.add_argument("--src", default="+15551234567")
    parser.add_argument("--dst", default="1001")
    parser.add_argument("--duration", type=int, default=120)
    args = parser.parse_args()

    payload = build_payload(args.recording, args.src, args.dst, args.duration)
    url = f"{args.base_url}/api/webhook/grandstream/{args.connection_id}"

    resp = requests.post(
        url,
        json=payload,
        headers={"X-Webhook-Secret": args.secret},
        timeout=10,
    )
    print(f"[send_test_webhook] HTTP {resp.status_code}")
    try:
        print(json.dumps(resp.json(), indent=2))
    except ValueError:
        print(resp.text)


if __name__ == "__main__":
    main()
