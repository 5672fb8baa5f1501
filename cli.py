from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _read(path: str | None) -> str:
    if not path:
        return ""
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Release lifecycle manager CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    target = argparse.ArgumentParser(add_help=False)
    target.add_argument("--cluster", required=True)
    target.add_argument("--app", required=True)

    sub.add_parser("releases", parents=[target], help="List the newest releases")

    s_get = sub.add_parser("release", parents=[target], help="Show one release")
    s_get.add_argument("id")

    s_new = sub.add_parser("create", parents=[target], help="Create and save a release")
    s_new.add_argument("--build", default="")
    s_new.add_argument("--env-file", help="File with KEY=VALUE lines")
    s_new.add_argument("--manifest", help="YAML manifest file")

    s_pro = sub.add_parser("promote", parents=[target], help="Promote a release")
    s_pro.add_argument("id")

    s_cln = sub.add_parser("cleanup", parents=[target], help="Delete a release's stored environment")
    s_cln.add_argument("id")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    if args.cmd == "events":
        r = requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    releases = f"{base}/apps/{args.cluster}/{args.app}/releases"

    if args.cmd == "releases":
        r = requests.get(releases, timeout=10)
    elif args.cmd == "release":
        r = requests.get(f"{releases}/{args.id}", timeout=10)
    elif args.cmd == "create":
        payload = {
            "build": args.build,
            "env": _read(args.env_file),
            "manifest": _read(args.manifest),
        }
        r = requests.post(releases, json=payload, timeout=60)
    elif args.cmd == "promote":
        r = requests.post(f"{releases}/{args.id}/promote", timeout=120)
    elif args.cmd == "cleanup":
        r = requests.post(f"{releases}/{args.id}/cleanup", timeout=30)
    else:
        return 2

    _print(r.json())
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
