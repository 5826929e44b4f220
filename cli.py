from __future__ import annotations

import argparse
import json
import os
import sys
import time

import requests

TERMINAL_STATES = {"success", "failure"}


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _params(args) -> dict:
    return {"user": args.user} if args.user is not None else {}


def _manage(base: str, auth: tuple[str, str], args, add: bool) -> int:
    payload = {"package": args.package, "add": add}
    if args.user is not None:
        payload["user"] = args.user
    r = requests.post(f"{base}/roles/{args.role}/holders", json=payload, auth=auth, timeout=30)
    if not r.ok:
        _print(r.json())
        return 1
    st = r.json()

    deadline = time.time() + args.wait_s
    while st["state"] not in TERMINAL_STATES and time.time() < deadline:
        time.sleep(0.5)
        st = requests.get(
            f"{base}/roles/{args.role}/holders/{args.package}/state",
            params=_params(args),
            auth=auth,
            timeout=10,
        ).json()
    _print(st)

    if st["state"] not in TERMINAL_STATES:
        return 1
    # Consume the terminal state so the next request for this package can run.
    requests.post(
        f"{base}/roles/{args.role}/holders/{args.package}/reset",
        params=_params(args),
        auth=auth,
        timeout=10,
    )
    return 0 if st["state"] == "success" else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Role Holder Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--admin-user", default=os.getenv("RHR_ADMIN_USER", "admin"))
    p.add_argument("--admin-password", default=os.getenv("RHR_ADMIN_PASSWORD", "change-me"))
    p.add_argument("--user", type=int, default=None, help="User id (server default if omitted)")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("roles", help="List roles with holder counts")

    s_apps = sub.add_parser("apps", help="List qualifying applications for a role")
    s_apps.add_argument("--role", required=True)

    s_holders = sub.add_parser("holders", help="Show current role holders")
    s_holders.add_argument("--role", required=True)

    for name, help_text in (("grant", "Add a role holder"), ("revoke", "Remove a role holder")):
        s = sub.add_parser(name, help=help_text)
        s.add_argument("--role", required=True)
        s.add_argument("--package", required=True)
        s.add_argument("--wait-s", type=int, default=30, help="Max seconds to wait for the request to finish")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    auth = (args.admin_user, args.admin_password)

    if args.cmd == "roles":
        _print(requests.get(f"{base}/roles", params=_params(args), auth=auth, timeout=10).json())
        return 0

    if args.cmd == "apps":
        _print(requests.get(f"{base}/roles/{args.role}/applications", params=_params(args), auth=auth, timeout=10).json())
        return 0

    if args.cmd == "holders":
        _print(requests.get(f"{base}/roles/{args.role}/holders", params=_params(args), auth=auth, timeout=10).json())
        return 0

    if args.cmd in {"grant", "revoke"}:
        return _manage(base, auth, args, add=args.cmd == "grant")

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, auth=auth, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
