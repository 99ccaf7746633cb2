from __future__ import annotations

from seller_session.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
