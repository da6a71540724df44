"""Typed models for AutoPay."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ClaimStatus(str, Enum):
    """Final status of an adjudicated claim."""

    APPROVED = "approved"
    REJECTED = "rejected"
    REVIEW = "review"


class Decision(str, Enum):
    """Deterministic decision derived from the rule evaluation."""

    APPROVE = "approve"
    DENY = "deny"
    REVIEW = "review"


class Claim(BaseModel):
    """A reimbursement request, either free text or structured."""

    text: str | None = None
    amount: float | None = None
    purpose: str | None = None
    recipient: str | None = None
    employee_id: str | None = None
    category: str | None = None
    claim_id: str | None = None
    currency: str = "USD"
    submitted_at: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            raise ValueError("amount must be a number")
        if isinstance(value, str):
            try:
                value = float(value.strip().lstrip("$"))
            except ValueError:
                return 0.0
        amount = float(value)
        if amount != amount or amount in (float("inf"), float("-inf")):
            raise ValueError("amount must be finite")
        if amount < 0:
            raise ValueError("amount must be >= 0")
        return amount

    @field_validator("text", "purpose", "recipient", "employee_id", "category", "claim_id")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: Any) -> str:
        text = str(value or "USD").strip().upper()
        return text or "USD"

    @field_validator("submitted_at", mode="before")
    @classmethod
    def _normalize_submitted_at(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            parsed = value
        else:
            text = str(value).strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return _format_timestamp(parsed)

    @property
    def is_structured(self) -> bool:
        return self.amount is not None and bool(self.purpose)


class RuleResult(BaseModel):
    """Outcome of a single built-in rule."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    passed: bool
    reason: str | None = None
    weight: float = Field(default=0.0, ge=-1.0, le=1.0)


class RuleEvaluation(BaseModel):
    """Aggregate of every rule outcome for one claim."""

    model_config = ConfigDict(frozen=True)

    approved: bool
    results: tuple[RuleResult, ...]
    reason: str = ""

    @classmethod
    def from_results(cls, results: list[RuleResult]) -> "RuleEvaluation":
        approved = all(result.passed for result in results)
        reason = "" if approved else " ".join(
            result.reason for result in results if not result.passed and result.reason
        )
        return cls(approved=approved, results=tuple(results), reason=reason)

    @property
    def passed_count(self) -> int:
        return sum(1 for result in self.results if result.passed)

    @property
    def confidence(self) -> float:
        """Fraction of rules passed. Diagnostic only."""
        total = len(self.results) or 1
        return max(0.0, min(1.0, self.passed_count / total))


class Explanation(BaseModel):
    """Human-readable justification attached to a response."""

    id: str
    label: str | None = None
    reason: str
    weight: float | None = None

    @field_validator("reason")
    @classmethod
    def _reason_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("reason must be a non-empty string")
        return value

    @classmethod
    def from_rule(cls, result: RuleResult) -> "Explanation":
        reason = result.reason or ("Rule passed" if result.passed else "Rule failed")
        return cls(id=result.id, label=result.label, reason=reason, weight=result.weight)


class AuditEntry(BaseModel):
    """Immutable ledger record of one finalized claim."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime
    status: ClaimStatus
    amount: float = Field(ge=0)
    purpose: str
    recipient: str | None = None
    reason: str | None = None
    tx_id: str | None = Field(default=None, alias="txId")
    error: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def date(self) -> str:
        """UTC calendar date of the entry as YYYY-MM-DD."""
        return self.timestamp.date().isoformat()

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json_line(self) -> str:
        """Render the entry as a single JSON line."""
        return json.dumps(self.to_payload(), ensure_ascii=False)


class AgentResponse(BaseModel):
    """Result of adjudicating one claim."""

    model_config = ConfigDict(populate_by_name=True)

    status: ClaimStatus
    amount: float
    purpose: str
    recipient: str | None = None
    reason: str | None = None
    tx_id: str | None = Field(default=None, alias="txId")
    error: str | None = None
    decision: Decision | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    explanations: list[Explanation] = Field(default_factory=list)
    trace_id: str | None = Field(default=None, alias="traceId")
    claim_id: str | None = Field(default=None, alias="claimId")

    @field_validator("error", mode="before")
    @classmethod
    def _truncate_error(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if len(value) > 2000:
            return value[:1997] + "..."
        return value

    @model_validator(mode="after")
    def _rejection_has_reason(self) -> "AgentResponse":
        if self.status is ClaimStatus.REJECTED and (not self.reason or not self.reason.strip()):
            raise ValueError("reason is required when status is 'rejected'")
        return self

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def utc_timestamp(value: datetime | None = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision."""
    return _format_timestamp(value or datetime.now(timezone.utc))
