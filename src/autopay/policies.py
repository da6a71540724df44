"""Tenant spending policy and its persistent store."""

from __future__ import annotations

import json
import logging
import math
import os
import re
from pathlib import Path
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .cache import InMemoryCache, KeyValueCache
from .config import DEFAULT_TENANT_ID, Settings, TenantConfig
from .errors import PolicyError

_logger = logging.getLogger(__name__)


def tenant_policy_path(base: Path, tenant_id: str) -> Path:
    """Policy file for ``tenant_id``; the default tenant keeps ``base`` itself."""
    if tenant_id == DEFAULT_TENANT_ID:
        return base
    safe = re.sub(r"[^A-Za-z0-9_.-]", "_", tenant_id)
    return base.with_name(f"{base.stem}.{safe}{base.suffix}")


def _dedupe(contacts: Iterable[str]) -> tuple[str, ...]:
    cleaned = (c.strip() for c in contacts if isinstance(c, str))
    return tuple(dict.fromkeys(c for c in cleaned if c))


class Policy(BaseModel):
    """Static limits for one tenant.

    Invariant: ``default_contact`` is either None or a member of
    ``whitelisted_contacts``. Contacts are compared case-sensitively.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    whitelisted_contacts: tuple[str, ...] = Field(default=(), alias="whitelistedContacts")
    default_contact: str | None = Field(default=None, alias="defaultContact")
    per_txn_max: float = Field(ge=0, alias="perTxnMax")
    daily_max: float = Field(ge=0, alias="dailyMax")

    @field_validator("whitelisted_contacts", mode="before")
    @classmethod
    def _clean_contacts(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        return _dedupe(value)

    @model_validator(mode="before")
    @classmethod
    def _default_in_whitelist(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        contacts_key = "whitelistedContacts" if "whitelistedContacts" in data else "whitelisted_contacts"
        default_key = "defaultContact" if "defaultContact" in data else "default_contact"
        contacts = _dedupe(data.get(contacts_key) or ())
        default = data.get(default_key)
        if default and default not in contacts:
            data[default_key] = contacts[0] if contacts else None
        return data

    def is_whitelisted(self, recipient: str) -> bool:
        return recipient in self.whitelisted_contacts

    def pick_default_recipient(self) -> str | None:
        if self.default_contact:
            return self.default_contact
        return self.whitelisted_contacts[0] if self.whitelisted_contacts else None

    def with_overrides(self, config: TenantConfig | None) -> "Policy":
        """Layer tenant-supplied limits and contact over the stored policy."""
        if config is None:
            return self
        contacts = self.whitelisted_contacts
        default = self.default_contact
        if config.whitelisted_contact:
            contacts = _dedupe((config.whitelisted_contact, *contacts))
            default = config.whitelisted_contact
        return Policy(
            whitelisted_contacts=contacts,
            default_contact=default,
            per_txn_max=self.per_txn_max if config.per_txn_max is None else config.per_txn_max,
            daily_max=self.daily_max if config.daily_max is None else config.daily_max,
        )

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload["whitelistedContacts"] = list(self.whitelisted_contacts)
        return payload


class PolicyUpdate(BaseModel):
    """Partial policy update. Unset fields keep their current value."""

    model_config = ConfigDict(populate_by_name=True)

    whitelisted_contacts: list[str] | None = Field(default=None, alias="whitelistedContacts")
    default_contact: str | None = Field(default=None, alias="defaultContact")
    per_txn_max: float | None = Field(default=None, alias="perTxnMax")
    daily_max: float | None = Field(default=None, alias="dailyMax")


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number) or number < 0:
        return None
    return number


class PolicyStore:
    """Environment-seeded policy with a cache and write-through JSON persistence."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        path: str | Path | None = None,
        cache: KeyValueCache | None = None,
        tenant_id: str = DEFAULT_TENANT_ID,
    ) -> None:
        self.settings = settings if settings is not None else Settings.from_env()
        self.path = (
            Path(path) if path is not None else tenant_policy_path(self.settings.policy_path, tenant_id)
        )
        self.cache = cache if cache is not None else InMemoryCache()
        self.tenant_id = tenant_id

    @property
    def _cache_key(self) -> str:
        return f"policy:{self.tenant_id}"

    def get(self) -> Policy:
        """Return the effective policy, persisted fields winning over seeded defaults."""
        cached = self.cache.get(self._cache_key)
        if isinstance(cached, Policy):
            return cached
        seeded = self._seed()
        disk = self._read_file() or {}
        disk_contacts = disk.get("whitelistedContacts")
        contacts = (
            _dedupe(disk_contacts)
            if isinstance(disk_contacts, list) and _dedupe(disk_contacts)
            else seeded.whitelisted_contacts
        )
        disk_default = disk.get("defaultContact")
        per_txn = _number(disk.get("perTxnMax"))
        daily = _number(disk.get("dailyMax"))
        merged = Policy(
            whitelisted_contacts=contacts,
            default_contact=disk_default if isinstance(disk_default, str) and disk_default else seeded.default_contact,
            per_txn_max=seeded.per_txn_max if per_txn is None else per_txn,
            daily_max=seeded.daily_max if daily is None else daily,
        )
        self.cache.set(self._cache_key, merged)
        return merged

    def set(self, update: PolicyUpdate | Mapping[str, Any]) -> Policy:
        """Apply a partial update, persist it and refresh the cache."""
        if not isinstance(update, PolicyUpdate):
            try:
                update = PolicyUpdate.model_validate(dict(update))
            except ValidationError as exc:
                raise PolicyError(f"invalid policy update: {exc.errors()[0]['msg']}") from exc
        if update.per_txn_max is not None and update.per_txn_max < 0:
            raise PolicyError("perTxnMax must be >= 0")
        if update.daily_max is not None and update.daily_max < 0:
            raise PolicyError("dailyMax must be >= 0")

        current = self.get()
        contacts = _dedupe(update.whitelisted_contacts or ())
        updated = Policy(
            whitelisted_contacts=contacts or current.whitelisted_contacts,
            default_contact=update.default_contact or current.default_contact,
            per_txn_max=current.per_txn_max if update.per_txn_max is None else update.per_txn_max,
            daily_max=current.daily_max if update.daily_max is None else update.daily_max,
        )
        self._write_file(updated)
        self.cache.set(self._cache_key, updated)
        _logger.info(
            "policy updated tenant=%s contacts=%d per_txn_max=%.2f daily_max=%.2f",
            self.tenant_id,
            len(updated.whitelisted_contacts),
            updated.per_txn_max,
            updated.daily_max,
        )
        return updated

    def pick_default_recipient(self) -> str | None:
        return self.get().pick_default_recipient()

    def invalidate(self) -> None:
        self.cache.delete(self._cache_key)

    # ----- internal helpers -----

    def _seed(self) -> Policy:
        contacts = self.settings.whitelisted_contacts
        return Policy(
            whitelisted_contacts=contacts,
            default_contact=contacts[0] if contacts else None,
            per_txn_max=self.settings.per_txn_max,
            daily_max=self.settings.daily_max,
        )

    def _read_file(self) -> dict[str, Any] | None:
        try:
            if not self.path.exists():
                return None
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            _logger.warning("ignoring unreadable policy file: %s", exc.__class__.__name__)
            return None
        return data if isinstance(data, dict) else None

    def _write_file(self, policy: Policy) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(policy.to_payload(), handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self.path)
