"""Environment-seeded settings and tenant configuration."""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from .custom_policies import CustomPolicy

DEFAULT_PER_TXN_MAX: float = 0.50
DEFAULT_DAILY_MAX: float = 3.0
DEFAULT_TENANT_ID: str = "default"


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if math.isfinite(value) else default


def _env_contacts(env: Mapping[str, str]) -> tuple[str, ...]:
    many = env.get("WHITELISTED_CONTACTS")
    if many:
        contacts = [item.strip() for item in many.split(",")]
    else:
        contacts = [env.get("WHITELISTED_CONTACT", "").strip()]
    return tuple(dict.fromkeys(c for c in contacts if c))


class Settings(BaseModel):
    """Process-level defaults, normally read from the environment."""

    model_config = ConfigDict(frozen=True)

    whitelisted_contacts: tuple[str, ...] = ()
    per_txn_max: float = DEFAULT_PER_TXN_MAX
    daily_max: float = DEFAULT_DAILY_MAX
    policy_path: Path = Path("policy.json")
    ledger_path: Path = Path("audit-log.jsonl")
    chain: str = "base"
    network: str = "mainnet"
    payout_currency: str = "USDC"
    tool_server: str = "locus"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        source = os.environ if env is None else env
        return cls(
            whitelisted_contacts=_env_contacts(source),
            per_txn_max=_env_float(source, "PER_TXN_MAX", DEFAULT_PER_TXN_MAX),
            daily_max=_env_float(source, "DAILY_MAX", DEFAULT_DAILY_MAX),
            policy_path=Path(source.get("AUTOPAY_POLICY_PATH") or "policy.json"),
            ledger_path=Path(source.get("AUTOPAY_LEDGER_PATH") or "audit-log.jsonl"),
            chain=source.get("LOCUS_CHAIN") or "base",
            network=source.get("LOCUS_NETWORK") or "mainnet",
            payout_currency=source.get("AUTOPAY_PAYOUT_CURRENCY") or "USDC",
            tool_server=source.get("AUTOPAY_TOOL_SERVER") or "locus",
        )


class ProviderCredentials(BaseModel):
    """Credentials for a tenant's payment tool provider."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: SecretStr
    mcp_url: str | None = None

    @property
    def cache_key(self) -> str:
        return f"{self.client_id}:{self.mcp_url or 'default'}"


class TenantConfig(BaseModel):
    """Organization-scoped settings supplied by the settings layer."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str = DEFAULT_TENANT_ID
    credentials: ProviderCredentials | None = None
    whitelisted_contact: str | None = None
    per_txn_max: float | None = Field(default=None, ge=0)
    daily_max: float | None = Field(default=None, ge=0)
    custom_policies: tuple[CustomPolicy, ...] = ()

    @field_validator("tenant_id")
    @classmethod
    def _tenant_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("tenant_id must be a non-empty string")
        return value

    @field_validator("custom_policies", mode="before")
    @classmethod
    def _policies_tuple(cls, value: Any) -> Any:
        if value is None:
            return ()
        return tuple(value)

    @property
    def cache_key(self) -> str:
        """Identity used for per-tenant caches."""
        if self.credentials is None:
            return self.tenant_id
        return f"{self.tenant_id}:{self.credentials.cache_key}"
