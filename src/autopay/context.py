"""Configuration-scoped context passed through one adjudication."""

from __future__ import annotations

from dataclasses import dataclass, field

from .agent import ClaimAgent
from .cache import InMemoryCache, KeyValueCache
from .claims import ClaimParser
from .config import Settings, TenantConfig
from .errors import ToolDiscoveryError
from .ledger.base import AuditLedger
from .ledger.jsonl import JSONLAuditLedger
from .payouts.executor import PayoutExecutor
from .payouts.tools import ToolProvider
from .policies import Policy, PolicyStore


@dataclass
class TenantContext:
    """Everything one tenant's claims need, with no process-global state.

    The shared ``cache`` holds the tenant's policy and discovered tools, keyed by
    tenant identity, so two contexts sharing a cache never see each other's entries.
    """

    settings: Settings
    config: TenantConfig
    policies: PolicyStore
    ledger: AuditLedger
    provider: ToolProvider | None = None
    agent: ClaimAgent | None = None
    parser: ClaimParser | None = None
    cache: KeyValueCache = field(default_factory=InMemoryCache)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        config: TenantConfig | None = None,
        *,
        ledger: AuditLedger | None = None,
        provider: ToolProvider | None = None,
        agent: ClaimAgent | None = None,
        parser: ClaimParser | None = None,
        cache: KeyValueCache | None = None,
    ) -> "TenantContext":
        settings = settings if settings is not None else Settings.from_env()
        config = config if config is not None else TenantConfig()
        cache = cache if cache is not None else InMemoryCache()
        return cls(
            settings=settings,
            config=config,
            policies=PolicyStore(settings, cache=cache, tenant_id=config.tenant_id),
            ledger=ledger if ledger is not None else JSONLAuditLedger(settings.ledger_path),
            provider=provider,
            agent=agent,
            parser=parser,
            cache=cache,
        )

    @property
    def tenant_id(self) -> str:
        return self.config.tenant_id

    def effective_policy(self) -> Policy:
        """Stored policy with this tenant's overrides layered on top."""
        return self.policies.get().with_overrides(self.config)

    def payout_executor(self) -> PayoutExecutor:
        if self.provider is None:
            raise ToolDiscoveryError("No payment tool provider configured")
        secrets: tuple[str, ...] = ()
        if self.config.credentials is not None:
            secrets = (self.config.credentials.client_secret.get_secret_value(),)
        return PayoutExecutor(
            self.provider,
            settings=self.settings,
            cache=self.cache,
            cache_key=self.config.cache_key,
            secrets=secrets,
        )
