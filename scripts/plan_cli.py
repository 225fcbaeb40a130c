#!/usr/bin/env python3
"""Submit a plan file to the orchestrator and print per-step outcomes.

    python scripts/plan_cli.py config/plans/create_course_and_enroll.json --actor admin-1 --perm "*"
    python scripts/plan_cli.py --approve <plan_id> --actor admin-2
"""
import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

import httpx

ORCHESTRATOR_URL = os.environ.get("ORCHESTRATOR_BASE_URL", "http://127.0.0.1:8000")


def _trunc(s: Any, max_len: int = 100) -> str:
    s = str(s)
    return (s[:max_len] + "…") if len(s) > max_len else s


def print_outcome(data: dict[str, Any]) -> None:
    kind = data.get("kind")
    print("Plan:", data.get("plan_id"), flush=True)
    print("Outcome:", kind, flush=True)
    if kind == "validation_failed":
        err = data.get("error") or {}
        print(f"  {err.get('code')}: {err.get('message')}", flush=True)
        return
    if kind == "awaiting_confirmation":
        impact = (data.get("pending") or {}).get("impact_summary") or {}
        print(f"  risk: {impact.get('risk_level')}, steps: {impact.get('step_count')}", flush=True)
        for reason in impact.get("reasons") or []:
            print(f"  - {reason}", flush=True)
        print(f"Approve with: plan_cli.py --approve {data.get('plan_id')} --actor <approver>", flush=True)
        return
    result = data.get("result") or {}
    for sr in result.get("steps") or []:
        line = f"  [{sr['step_id']}] {sr['tool_name']}: {sr['status']} (attempts {sr['attempts']})"
        if sr.get("error"):
            line += f" - {_trunc(sr['error'].get('message'))}"
        elif sr.get("skip_reason"):
            line += f" - {sr['skip_reason']}"
        else:
            line += f" → {_trunc(sr.get('output'))}"
        print(line, flush=True)
    rollback = result.get("rollback_result")
    if rollback:
        print("Rollback:", flush=True)
        for entry in rollback.get("entries") or []:
            print(f"  [{entry['step_id']}] {entry.get('compensating_tool') or '-'}: {entry['status']}", flush=True)


def main():
    parser = argparse.ArgumentParser(description="Submit or approve a plan on the orchestrator.")
    parser.add_argument("plan_file", nargs="?", help="JSON plan file")
    parser.add_argument("--url", default=ORCHESTRATOR_URL, help="Orchestrator base URL")
    parser.add_argument("--actor", default=os.environ.get("USER", "cli"), help="Actor id")
    parser.add_argument("--perm", action="append", default=[], help="Granted permission (repeatable)")
    parser.add_argument("--approve", metavar="PLAN_ID", help="Approve a pending plan instead of submitting")
    parser.add_argument("--reject", metavar="PLAN_ID", help="Reject a pending plan")
    parser.add_argument("--reason", default="", help="Rejection reason")
    args = parser.parse_args()

    base = args.url.rstrip("/")
    try:
        if args.approve:
            r = httpx.post(f"{base}/plans/{args.approve}/approve", json={"approver_id": args.actor}, timeout=300)
        elif args.reject:
            r = httpx.post(f"{base}/plans/{args.reject}/reject", json={"reason": args.reason}, timeout=30)
        elif args.plan_file:
            plan = json.loads(Path(args.plan_file).read_text(encoding="utf-8"))
            body = {"plan": plan, "actor_id": args.actor, "granted_permissions": args.perm}
            r = httpx.post(f"{base}/plans", json=body, timeout=300)
        else:
            parser.print_usage(sys.stderr)
            sys.exit(1)
    except httpx.ConnectError:
        print(f"Cannot reach orchestrator at {args.url}. Is it running?", file=sys.stderr)
        sys.exit(1)

    if r.status_code not in (200, 422):
        print(f"HTTP {r.status_code}: {r.text}", file=sys.stderr)
        sys.exit(1)
    print_outcome(r.json())


if __name__ == "__main__":
    main()
