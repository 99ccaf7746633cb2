from __future__ import annotations

import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Set

import httpx
from pydantic import BaseModel, ConfigDict, Field

from seller_session.core.errors import ApiError, CredentialsInvalidError, NetworkError

ENDPOINTS = {
    "login": "/user/login/",
    "test_auth": "/user/test-auth/",
    "token_refresh": "/user/token/refresh/",
    "store_profile": "/api/store/profile/",
}

TIMEOUT_MESSAGE = "Connection timeout. Please check your internet connection."
NO_NETWORK_MESSAGE = "Network error. Cannot connect to server."
BAD_CREDENTIALS_MESSAGE = "Invalid phone number or password"


class ApiConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    environment: Literal["development", "production"] = "development"
    development_base_url: str = "http://localhost:8000"
    production_base_url: str = "https://seller-api.example.com"
    development_timeout_seconds: float = Field(default=15.0, gt=0, le=300)
    production_timeout_seconds: float = Field(default=20.0, gt=0, le=300)
    client_app: str = "Seller-Session"

    def base_url(self) -> str:
        return self.production_base_url if self.environment == "production" else self.development_base_url

    def timeout_seconds(self) -> float:
        return self.production_timeout_seconds if self.environment == "production" else self.development_timeout_seconds


def clean_phone(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def _first(v: Any) -> Optional[str]:
    if isinstance(v, list):
        return str(v[0]) if v else None
    return None


def login_error_message(status_code: int, body: Any) -> str:
    """Readable message for a failed login response."""
    if status_code == 400:
        data = body if isinstance(body, dict) else {}
        for field_name, fallback in (("phone", "Invalid phone number"), ("password", "Invalid password"), ("non_field_errors", "Invalid credentials")):
            if field_name in data and data[field_name]:
                return _first(data[field_name]) or fallback
        for field_name in ("detail", "message", "error"):
            if data.get(field_name):
                return str(data[field_name])
        return BAD_CREDENTIALS_MESSAGE
    if status_code == 401:
        return BAD_CREDENTIALS_MESSAGE
    if status_code == 404:
        return "Login service not found. Please check server connection."
    if status_code >= 500:
        return "Server error. Please try again later."
    return "Login failed"


def error_detail(body: Any) -> str:
    if isinstance(body, dict):
        for field_name in ("error", "detail", "message"):
            if body.get(field_name):
                return str(body[field_name])
        return "Request failed"
    return str(body or "Request failed")[:200]


class SellerApiClient:
    """
    Async HTTP client for the seller backend.

    Authenticated calls carry `Authorization: Bearer <access token>` from `token_provider`.
    A 401 on an authenticated call schedules `on_unauthorized` as a task; it is never awaited
    inline so a caller holding the session gate cannot deadlock on it.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 15.0,
        token_provider: Optional[Callable[[], Awaitable[Optional[str]]]] = None,
        on_unauthorized: Optional[Callable[[], Awaitable[Any]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client_app: str = "Seller-Session",
        logger=None,
    ):
        self.base_url = str(base_url).rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self.token_provider = token_provider
        self.on_unauthorized = on_unauthorized
        self.logger = logger
        self._pending: Set[asyncio.Task] = set()
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json", "Content-Type": "application/json", "X-Client-App": client_app},
        )

    @classmethod
    def from_config(cls, cfg: ApiConfig, **kwargs: Any) -> "SellerApiClient":
        return cls(base_url=cfg.base_url(), timeout_seconds=cfg.timeout_seconds(), client_app=cfg.client_app, **kwargs)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "SellerApiClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ---------- endpoints ----------
    async def test_connection(self) -> bool:
        """True when the server answers; an auth rejection still counts as reachable."""
        try:
            await self._request("GET", ENDPOINTS["test_auth"])
        except ApiError as e:
            if e.status_code not in (401, 403):
                raise
        return True

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        return await self._request("POST", ENDPOINTS["token_refresh"], json={"refresh": refresh_token}, auth=False)

    async def get_profile(self) -> Dict[str, Any]:
        return await self._request("GET", ENDPOINTS["store_profile"])

    async def update_profile(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self._request("PATCH", ENDPOINTS["store_profile"], json=changes)
        except ApiError as e:
            if e.status_code != 405:
                raise
            if self.logger:
                self.logger.info("PATCH not allowed for profile update; retrying with PUT.")
            return await self._request("PUT", ENDPOINTS["store_profile"], json=changes)

    async def login(self, phone: str, password: str) -> Dict[str, Any]:
        if not phone or not password:
            raise CredentialsInvalidError()
        digits = clean_phone(phone)
        if len(digits) != 10:
            raise CredentialsInvalidError("Please enter a valid 10-digit phone number")
        try:
            return await self._request("POST", ENDPOINTS["login"], json={"phone": digits, "password": password}, auth=False)
        except ApiError as e:
            msg = login_error_message(e.status_code, e.context.get("body"))
            if e.status_code in (400, 401):
                raise CredentialsInvalidError(msg, status_code=e.status_code) from e
            raise ApiError(msg, status_code=e.status_code) from e

    # ---------- internals ----------
    async def _request(self, method: str, path: str, *, json: Any = None, auth: bool = True) -> Dict[str, Any]:
        headers: Dict[str, str] = {}
        if auth and self.token_provider is not None:
            token = await self.token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"
            elif self.logger:
                self.logger.warning(f"No access token available for {method} {path}")

        try:
            resp = await self._http.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            if self.logger:
                self.logger.warning(f"API {method} {path} timed out after {self.timeout_seconds}s")
            raise NetworkError(TIMEOUT_MESSAGE, path=path, timeout=True) from e
        except httpx.HTTPError as e:
            if self.logger:
                self.logger.warning(f"API {method} {path} failed: {e}")
            raise NetworkError(NO_NETWORK_MESSAGE, path=path) from e

        body = self._body(resp)
        if resp.status_code == 401 and auth:
            self._schedule_unauthorized()
        if resp.is_error:
            if self.logger:
                self.logger.warning(f"API {method} {path} -> {resp.status_code}")
            raise ApiError(f"HTTP {resp.status_code}: {error_detail(body)}", status_code=resp.status_code, path=path, body=body)
        if self.logger:
            self.logger.debug(f"API {method} {path} -> {resp.status_code}")
        return body if isinstance(body, dict) else {"data": body}

    @staticmethod
    def _body(resp: httpx.Response) -> Any:
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return resp.text

    def _schedule_unauthorized(self) -> None:
        if self.on_unauthorized is None:
            return
        task = asyncio.ensure_future(self.on_unauthorized())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
