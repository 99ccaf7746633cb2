from __future__ import annotations

import argparse
import json

from seller_session.core.config import ConfigFsPaths, ConfigManager


def main() -> int:
    ap = argparse.ArgumentParser(description="Print the effective session config without writing anything.")
    ap.add_argument("--root", default=".")
    ap.add_argument("--section", choices=["api", "retry", "tokens", "storage", "biometric", "logging", "events"], default=None)
    args = ap.parse_args()

    cfg = ConfigManager(fs=ConfigFsPaths(args.root), logger=None, read_only=True).load_all()
    data = cfg.model_dump(mode="json")
    if args.section:
        data = data[args.section]
    print(f"# environment={cfg.api.environment} base_url={cfg.api.base_url()}")
    print(json.dumps(data, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
