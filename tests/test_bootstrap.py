from __future__ import annotations

import json
import os
import time

import httpx
import pytest

from seller_session.bootstrap import build_runtime
from seller_session.cli import main
from seller_session.core.config import SessionConfig

from .helpers.fakes import ListLogger, make_token


def _server(token):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, request.headers.get("Authorization")))
        if request.url.path == "/user/login/":
            return httpx.Response(200, json={"access_token": token, "refresh_token": "refresh-1", "seller": {"id": 3, "name": "Asha", "shop_name": "Asha Stores"}})
        if request.url.path == "/user/test-auth/":
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404)

    return handler, seen


@pytest.mark.asyncio
async def test_runtime_login_check_logout(tmp_path, device_key_path):
    token = make_token(exp=time.time() + 3600)
    handler, seen = _server(token)
    rt = build_runtime(str(tmp_path), cfg=SessionConfig(), transport=httpx.MockTransport(handler), logger=ListLogger())
    try:
        assert await rt.controller.login_with_credentials("98765 43210", "pw") is True
        assert await rt.controller.check_auth_status() is True
        assert rt.controller.state.seller.shop_name == "Asha Stores"
        assert ("GET", "/user/test-auth/", f"Bearer {token}") in seen

        assert rt.secure.get_item("refreshToken") == "refresh-1"
        with open(os.path.join(str(tmp_path), "data", "session_store.json"), "r", encoding="utf-8") as f:
            plain = json.load(f)
        assert "refreshToken" not in json.dumps(plain)
        assert plain["sellerId"] == "3"

        await rt.controller.logout()
        assert rt.secure.get_item("refreshToken") is None
        assert (await rt.store.get("accessToken")).value is None
    finally:
        await rt.aclose()

    with open(os.path.join(str(tmp_path), "logs", "security.jsonl"), "r", encoding="utf-8") as f:
        events = [json.loads(line)["event"] for line in f]
    assert "auth.login" in events
    assert "auth.logout" in events


@pytest.mark.asyncio
async def test_runtime_without_device_key_degrades_to_plain_tier(tmp_path):
    token = make_token(exp=time.time() + 3600)
    handler, _ = _server(token)
    logger = ListLogger()
    rt = build_runtime(str(tmp_path), cfg=SessionConfig(), transport=httpx.MockTransport(handler), logger=logger)
    try:
        assert await rt.controller.login_with_credentials("9876543210", "pw") is True
        res = await rt.store.get("refreshToken")
        assert res.value == "refresh-1"
        assert res.degraded is True
        assert any("Secure storage write failed" in m for m in logger.messages("warning"))
    finally:
        await rt.aclose()


def test_cli_logout_and_status(tmp_path, capsys):
    root = str(tmp_path)
    assert main(["--root", root, "logout"]) == 0
    assert "Logged out." in capsys.readouterr().out

    assert main(["--root", root, "status"]) == 0
    state = json.loads(capsys.readouterr().out)
    assert state["status"] == "unauthenticated"
    assert state["is_authenticated"] is False

    assert main(["--root", root, "check"]) == 1
