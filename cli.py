from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Cluster Service Orchestrator CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--user", default="admin")
    p.add_argument("--password", default="change-me")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("services", help="List services and which bulk operations are enabled")
    sub.add_parser("operations", help="Show in-flight background operation count")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_q = sub.add_parser("query", help="Show one query, or all when no id is given")
    s_q.add_argument("query_id", nargs="?")

    for name, help_text in (
        ("start-all", "Start all services"),
        ("stop-all", "Stop all services"),
        ("restart-required", "Restart host components with stale configs"),
    ):
        s = sub.add_parser(name, help=help_text)
        s.add_argument("--yes", action="store_true", help="Confirm the operation")

    sub.add_parser("restart-all", help="Stop all services, then start them again")
    sub.add_parser("cycle", help="Show restart cycle state")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    auth = (args.user, args.password)

    if args.cmd in {"services", "operations", "events", "query", "cycle"}:
        if args.cmd == "events":
            r = requests.get(f"{base}/events", params={"limit": args.limit}, auth=auth, timeout=10)
        elif args.cmd == "query":
            path = f"/queries/{args.query_id}" if args.query_id else "/queries"
            r = requests.get(f"{base}{path}", auth=auth, timeout=10)
        elif args.cmd == "cycle":
            r = requests.get(f"{base}/restart-cycle", auth=auth, timeout=10)
        else:
            r = requests.get(f"{base}/{args.cmd}", auth=auth, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "restart-required" and not args.yes:
        info = requests.get(f"{base}/services/restart-required", auth=auth, timeout=10).json()
        _print(info)
        print("Re-run with --yes to restart the services listed above.", file=sys.stderr)
        return 1

    if args.cmd in {"start-all", "stop-all", "restart-required"}:
        r = requests.post(f"{base}/services/{args.cmd}", json={"confirm": args.yes}, auth=auth, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "restart-all":
        r = requests.post(f"{base}/services/restart-all", auth=auth, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
