from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import sys
from typing import Any, Dict, List, Optional

from seller_session.bootstrap import SessionRuntime, build_runtime
from seller_session.core.config import ConfigFsPaths, ConfigManager
from seller_session.core.errors import StorageError


def _print_state(rt: SessionRuntime) -> None:
    print(json.dumps(rt.controller.state.model_dump(mode="json"), indent=2, sort_keys=True))


def _parse_changes(items: List[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise SystemExit(f"Expected key=value, got {item!r}")
        k, v = item.split("=", 1)
        out[k.strip()] = v
    return out


async def _run(args: argparse.Namespace) -> int:
    fs = ConfigFsPaths(args.root)
    cfg = ConfigManager(fs=fs, logger=None).load_all()
    if args.env:
        cfg = cfg.model_copy(update={"api": cfg.api.model_copy(update={"environment": args.env})})
    rt = build_runtime(args.root, cfg=cfg)
    try:
        if args.cmd == "login":
            password = args.password if args.password is not None else getpass.getpass("Password: ")
            ok = await rt.controller.login_with_credentials(args.phone, password)
            if not ok:
                print(f"Login failed: {rt.controller.state.auth_error}", file=sys.stderr)
                return 1
            seller = rt.controller.state.seller
            print(f"Logged in as {seller.name if seller else '?'} ({seller.shop_name if seller else ''})")
            return 0

        if args.cmd == "logout":
            try:
                await rt.controller.logout()
            except StorageError as e:
                print(f"Logout incomplete: {e} {e.context.get('failed_keys')}", file=sys.stderr)
                return 2
            print("Logged out.")
            return 0

        await rt.controller.start()
        if args.cmd == "status":
            _print_state(rt)
            return 0
        if args.cmd == "check":
            st = rt.controller.state
            print(f"{st.status.value} connection={st.connection_status.value}" + (f" error={st.auth_error}" if st.auth_error else ""))
            return 0 if st.is_authenticated else 1
        if args.cmd == "profile":
            if args.set:
                ok = await rt.controller.update_seller_profile(_parse_changes(args.set))
            else:
                ok = await rt.controller.refresh_user_data()
            seller = rt.controller.state.seller
            if seller is not None:
                print(seller.model_dump_json(indent=2))
            if not ok:
                print(f"Profile request failed: {rt.controller.state.auth_error or 'not logged in'}", file=sys.stderr)
                return 1
            return 0
        return 2
    finally:
        await rt.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Seller session CLI")
    ap.add_argument("--root", default=".", help="Directory holding config/, data/, secure/ and logs/.")
    ap.add_argument("--env", choices=["development", "production"], default=None, help="Override api.environment.")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_login = sub.add_parser("login", help="Log in with phone number and password.")
    p_login.add_argument("--phone", required=True)
    p_login.add_argument("--password", default=None, help="Prompted when omitted.")
    sub.add_parser("logout", help="Clear the stored session.")
    sub.add_parser("status", help="Check the stored session and print the full state.")
    sub.add_parser("check", help="Check the stored session; exit 0 when authenticated.")
    p_profile = sub.add_parser("profile", help="Fetch (or update) the seller profile.")
    p_profile.add_argument("--set", nargs="*", default=None, metavar="KEY=VALUE")

    args = ap.parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
