from __future__ import annotations

import argparse

from seller_session.core.config import ConfigFsPaths, ConfigManager
from seller_session.core.crypto import device_key_fingerprint, generate_device_key_bytes, write_device_key


def main() -> int:
    ap = argparse.ArgumentParser(description="Create the device key that seals the secure credential tier.")
    ap.add_argument("--root", default=".")
    ap.add_argument("--force", action="store_true", help="Replace an existing key; stored refresh tokens become unreadable.")
    args = ap.parse_args()

    fs = ConfigFsPaths(args.root)
    cfg = ConfigManager(fs=fs, logger=None).load_all()
    key_path = fs.resolve(cfg.storage.device_key_path)

    key = generate_device_key_bytes()
    try:
        write_device_key(key_path, key, overwrite=args.force)
    except FileExistsError:
        print(f"Device key already exists at: {key_path} (use --force to replace)")
        return 1
    print(f"Created device key at: {key_path}")
    print(f"Fingerprint: {device_key_fingerprint(key)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
