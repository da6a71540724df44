"""Payment tool discovery, candidate search and result classification."""

from .candidates import PayoutCandidate, build_candidates
from .executor import PayoutAttempt, PayoutExecutor, PayoutReceipt
from .results import (
    FailedResult,
    OpaqueResult,
    StructuredResult,
    ToolResult,
    classify_result,
    extract_transaction_id,
)
from .schema import ToolSchema, introspect_tool
from .tools import RecipientKind, ToolProvider, classify_recipient, select_tool

__all__ = (
    "PayoutCandidate",
    "build_candidates",
    "PayoutAttempt",
    "PayoutExecutor",
    "PayoutReceipt",
    "FailedResult",
    "OpaqueResult",
    "StructuredResult",
    "ToolResult",
    "classify_result",
    "extract_transaction_id",
    "ToolSchema",
    "introspect_tool",
    "RecipientKind",
    "ToolProvider",
    "classify_recipient",
    "select_tool",
)
