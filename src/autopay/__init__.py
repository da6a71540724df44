"""AutoPay public API."""

from .agent import AgentOpinion, AgentReply, ClaimAgent, ToolCallRecord
from .cache import InMemoryCache, KeyValueCache
from .claims import ClaimParser, ParsedClaim, extract_amount, normalize_claim
from .config import ProviderCredentials, Settings, TenantConfig
from .context import TenantContext
from .custom_policies import (
    CustomPolicy,
    CustomPolicyEvaluation,
    CustomPolicyEvaluator,
    CustomPolicyType,
)
from .engine import AdjudicationEngine
from .errors import (
    AgentError,
    AuditLogError,
    AutoPayError,
    ClaimInputError,
    PayoutError,
    PayoutExecutionError,
    PolicyError,
    ToolDiscoveryError,
)
from .ledger import AuditLedger, JSONLAuditLedger, LedgerWriteError, SQLiteAuditLedger
from .payouts import PayoutExecutor, PayoutReceipt, ToolProvider
from .policies import Policy, PolicyStore, PolicyUpdate
from .rules import RuleEvaluator
from .types import (
    AgentResponse,
    AuditEntry,
    Claim,
    ClaimStatus,
    Decision,
    Explanation,
    RuleEvaluation,
    RuleResult,
)

__all__ = (
    # Engine
    "AdjudicationEngine",
    "TenantContext",
    # Types
    "Claim",
    "ClaimStatus",
    "Decision",
    "AgentResponse",
    "AuditEntry",
    "Explanation",
    "RuleResult",
    "RuleEvaluation",
    # Configuration
    "Settings",
    "TenantConfig",
    "ProviderCredentials",
    "KeyValueCache",
    "InMemoryCache",
    # Policies
    "Policy",
    "PolicyStore",
    "PolicyUpdate",
    "RuleEvaluator",
    "CustomPolicy",
    "CustomPolicyType",
    "CustomPolicyEvaluation",
    "CustomPolicyEvaluator",
    # Claims and agent boundary
    "ClaimParser",
    "ParsedClaim",
    "extract_amount",
    "normalize_claim",
    "ClaimAgent",
    "AgentReply",
    "AgentOpinion",
    "ToolCallRecord",
    # Payouts
    "ToolProvider",
    "PayoutExecutor",
    "PayoutReceipt",
    # Ledger
    "AuditLedger",
    "JSONLAuditLedger",
    "SQLiteAuditLedger",
    "LedgerWriteError",
    # Errors
    "AutoPayError",
    "ClaimInputError",
    "PolicyError",
    "AuditLogError",
    "AgentError",
    "PayoutError",
    "ToolDiscoveryError",
    "PayoutExecutionError",
)
