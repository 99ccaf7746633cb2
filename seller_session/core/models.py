from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from seller_session.core.errors import ErrorKind


USER_TYPE_SELLER = "seller"


def iso_from_ts(ts: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts))


class AuthStatus(str, Enum):
    unknown = "unknown"
    checking = "checking"
    authenticated = "authenticated"
    unauthenticated = "unauthenticated"


class AuthPhase(str, Enum):
    valid = "valid"
    refreshing = "refreshing"


class ConnectionStatus(str, Enum):
    online = "online"
    offline = "offline"
    checking = "checking"


class VerificationStatus(str, Enum):
    pending = "pending"
    verified = "verified"
    rejected = "rejected"


class SubscriptionPlan(str, Enum):
    basic = "basic"
    pro = "pro"
    enterprise = "enterprise"


def _scalar_to_str(v: Any) -> Any:
    # servers send phone numbers and pincodes as JSON numbers
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


class SellerProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Union[int, str]
    name: str = ""
    shop_name: str = ""
    phone: str = ""
    email: str = ""
    business_type: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    gst_number: Optional[str] = None
    verification_status: VerificationStatus = VerificationStatus.pending
    subscription_plan: SubscriptionPlan = SubscriptionPlan.basic
    last_login: Optional[str] = None

    @field_validator("name", "shop_name", "phone", "email", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else _scalar_to_str(v)

    @field_validator("business_type", "address", "city", "state", "pincode", "gst_number", "last_login", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Any:
        return _scalar_to_str(v)

    @field_validator("verification_status", mode="before")
    @classmethod
    def _unknown_verification(cls, v: Any) -> Any:
        return v if isinstance(v, str) and v in {s.value for s in VerificationStatus} else VerificationStatus.pending

    @field_validator("subscription_plan", mode="before")
    @classmethod
    def _unknown_plan(cls, v: Any) -> Any:
        return v if isinstance(v, str) and v in {s.value for s in SubscriptionPlan} else SubscriptionPlan.basic

    def merged(self, changes: Dict[str, Any]) -> "SellerProfile":
        """Server fields over local ones; `id` and unknown keys are ignored, None values skipped."""
        data = self.model_dump()
        for k, v in (changes or {}).items():
            if k == "id" or k not in data or v is None:
                continue
            data[k] = v
        return SellerProfile.model_validate(data)


class LoginSeller(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Union[int, str]
    name: str = Field(min_length=1)


class LoginResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    api_token: Optional[str] = None
    user_type: Optional[str] = None
    seller: LoginSeller

    @field_validator("user_type")
    @classmethod
    def _seller_only(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v != USER_TYPE_SELLER:
            raise ValueError(f"user_type must be {USER_TYPE_SELLER!r}, got {v!r}")
        return v


class Session(BaseModel):
    model_config = ConfigDict(extra="forbid")

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    api_token: Optional[str] = None
    seller_id: Optional[str] = None
    user_type: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.access_token) and self.user_type == USER_TYPE_SELLER and bool(self.seller_id)


class NetworkState(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    is_connected: Optional[bool] = None
    is_internet_reachable: Optional[bool] = None
    type: str = "unknown"

    def is_online(self) -> bool:
        return self.is_connected is True and self.is_internet_reachable is True


class PerformanceMetrics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    durations_ms: Dict[str, float] = Field(default_factory=dict)
    last_sync_time: Optional[float] = None

    def with_duration(self, operation: str, elapsed_ms: float, at: float) -> "PerformanceMetrics":
        durations = dict(self.durations_ms)
        durations[str(operation)] = float(elapsed_ms)
        return PerformanceMetrics(durations_ms=durations, last_sync_time=float(at))


class CriticalSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    last_active_time: float
    seller_id: Optional[str] = None
    auth_status: AuthStatus = AuthStatus.unknown


class AuthState(BaseModel):
    """Snapshot of everything the UI layer renders from."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    status: AuthStatus = AuthStatus.unknown
    phase: Optional[AuthPhase] = None
    is_authenticated: bool = False
    is_loading: bool = True
    seller: Optional[SellerProfile] = None
    auth_error: Optional[str] = None
    auth_error_kind: Optional[ErrorKind] = None
    retry_count: int = 0
    connection_status: ConnectionStatus = ConnectionStatus.offline
    network_state: NetworkState = Field(default_factory=NetworkState)
    biometric_supported: bool = False
    biometric_enabled: bool = False
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
