#!/usr/bin/env python3
import argparse
import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Summarize the acknowledgment server event log (JSON Lines).")
    p.add_argument("-f", "--file", default="events.log", help="Path to events log (default: events.log)")
    p.add_argument("--top", type=int, default=5, help="How many top peers to show (default: 5)")
    p.add_argument("--since", type=str, default=None, help="ISO8601 timestamp filter (UTC), e.g. 2025-09-26T12:00:00Z")
    return p.parse_args(argv)

def parse_ts(ts: Optional[str]) -> Optional[datetime]:
    if not ts or not isinstance(ts, str):
        return None
    ts = ts.replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(ts)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def summarize(path: Path, since_dt: Optional[datetime] = None) -> Dict[str, Any]:
    by_event = Counter()
    failures = Counter()
    peers = Counter()
    bytes_received = 0
    errors = 0

    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj: Dict[str, Any] = json.loads(line)
            except ValueError:
                errors += 1
                continue
            if not isinstance(obj, dict):
                errors += 1
                continue

            if since_dt is not None:
                ts = parse_ts(obj.get("ts"))
                if ts is not None and ts < since_dt:
                    continue

            event = obj.get("event") or ""
            peer = obj.get("peer")
            operation = obj.get("operation") or "unknown"
            try:
                nbytes = int(obj.get("bytes") or 0)
            except (TypeError, ValueError):
                errors += 1
                continue
            if not isinstance(event, str) or not isinstance(operation, str) \
                    or not isinstance(peer, (str, type(None))):
                errors += 1
                continue

            event = event.lower()
            by_event[event] += 1

            if event == "received":
                bytes_received += nbytes
                if peer:
                    peers[peer] += 1
            elif event == "error":
                failures[operation] += 1

    return {
        "sessions": by_event["closed"],
        "received": by_event["received"],
        "sent": by_event["sent"],
        "errors_total": by_event["error"],
        "failures": failures,
        "peers": peers,
        "bytes_received": bytes_received,
        "malformed": errors,
    }

def main(argv=None):
    args = parse_args(argv)
    path = Path(args.file)
    if not path.exists():
        print(f"File not found: {path}")
        return 1

    since_dt = parse_ts(args.since)
    s = summarize(path, since_dt)

    print("=== Events Summary ===")
    print(f"File: {path}")
    if since_dt:
        print(f"Since: {since_dt.isoformat()}")
    print(f"Sessions closed: {s['sessions']}  |  Messages received: {s['received']}  |  Replies sent: {s['sent']}  |  Failures: {s['errors_total']}")
    print(f"Bytes received: {s['bytes_received']}")

    top_n = args.top

    if s["failures"]:
        print("\nFailures by operation:")
        for op, cnt in s["failures"].most_common():
            print(f"  {cnt} × {op}")

    if s["peers"]:
        print(f"\nTop {top_n} peers:")
        for peer, cnt in s["peers"].most_common(top_n):
            print(f"  {peer}: {cnt}")

    if s["malformed"]:
        print(f"\nNote: {s['malformed']} malformed line(s) skipped.")
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
