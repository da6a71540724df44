from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json

import pytest
from pydantic import ValidationError

from autopay.types import (
    AgentResponse,
    AuditEntry,
    Claim,
    ClaimStatus,
    Explanation,
    RuleEvaluation,
    RuleResult,
    utc_timestamp,
)


# -----------------------------------------------------------------------------
# Claim tests
# -----------------------------------------------------------------------------


def test_claim_amount_coercion() -> None:
    assert Claim(amount="$1.25", purpose="Taxi").amount == 1.25
    assert Claim(amount="", purpose="Taxi").amount is None
    assert Claim(amount="lots", purpose="Taxi").amount == 0.0


@pytest.mark.parametrize("amount", [-0.01, float("inf"), float("nan"), True])
def test_claim_rejects_bad_amounts(amount: object) -> None:
    with pytest.raises(ValidationError):
        Claim(amount=amount, purpose="Taxi")


def test_claim_blank_fields_and_currency() -> None:
    claim = Claim(text="  ", purpose=" ", recipient="", currency=" usdc ")

    assert claim.text is None
    assert claim.purpose is None
    assert claim.recipient is None
    assert claim.currency == "USDC"
    assert not claim.is_structured


def test_claim_submitted_at_is_normalized_to_utc() -> None:
    claim = Claim(text="x", submitted_at="2026-01-25T14:00:00+02:00")

    assert claim.submitted_at == "2026-01-25T12:00:00.000Z"
    assert Claim(text="x", submitted_at="yesterday").submitted_at is None


# -----------------------------------------------------------------------------
# RuleEvaluation tests
# -----------------------------------------------------------------------------


def test_rule_evaluation_aggregates_failures() -> None:
    results = [
        RuleResult(id="a", label="A", passed=True, weight=0.2),
        RuleResult(id="b", label="B", passed=False, reason="B failed.", weight=-0.6),
        RuleResult(id="c", label="C", passed=False, reason="C failed.", weight=-0.7),
    ]

    evaluation = RuleEvaluation.from_results(results)

    assert evaluation.approved is False
    assert evaluation.reason == "B failed. C failed."
    assert evaluation.passed_count == 1
    assert evaluation.confidence == pytest.approx(1 / 3)


def test_explanation_from_rule_and_empty_reason() -> None:
    explanation = Explanation.from_rule(RuleResult(id="a", label="A", passed=True, weight=0.2))

    assert explanation.reason == "Rule passed"
    with pytest.raises(ValidationError):
        Explanation(id="x", reason="  ")


# -----------------------------------------------------------------------------
# AuditEntry tests
# -----------------------------------------------------------------------------


def test_audit_entry_normalizes_timestamp_to_utc() -> None:
    local = datetime(2026, 1, 25, 23, 30, tzinfo=timezone(timedelta(hours=-5)))

    entry = AuditEntry(timestamp=local, status=ClaimStatus.APPROVED, amount=0.5, purpose="Late taxi")

    assert entry.date == "2026-01-26"
    assert AuditEntry(timestamp=datetime(2026, 1, 25), status="approved", amount=0, purpose="x").timestamp.tzinfo


def test_audit_entry_json_line_uses_aliases() -> None:
    entry = AuditEntry(
        timestamp=datetime(2026, 1, 25, 12, 0, tzinfo=timezone.utc),
        status=ClaimStatus.REVIEW,
        amount=0.5,
        purpose="Taxi",
        tx_id=None,
        reason="payment executed but transaction id could not be verified",
    )

    payload = json.loads(entry.to_json_line())

    assert payload["status"] == "review"
    assert "txId" not in payload
    assert AuditEntry.model_validate({**payload, "txId": "tx-9"}).tx_id == "tx-9"


def test_audit_entry_rejects_negative_amount() -> None:
    with pytest.raises(ValidationError):
        AuditEntry(timestamp=datetime.now(timezone.utc), status="approved", amount=-1, purpose="x")


# -----------------------------------------------------------------------------
# AgentResponse tests
# -----------------------------------------------------------------------------


def test_rejected_response_requires_reason() -> None:
    with pytest.raises(ValidationError, match="reason is required"):
        AgentResponse(status=ClaimStatus.REJECTED, amount=1.0, purpose="x")


def test_response_error_is_truncated_and_payload_aliased() -> None:
    response = AgentResponse(
        status=ClaimStatus.APPROVED,
        amount=0.5,
        purpose="Coffee",
        tx_id="tx-1",
        trace_id="tr_abc_12345678",
        error="e" * 3000,
    )

    payload = response.to_payload()

    assert len(response.error or "") == 2000
    assert payload["txId"] == "tx-1"
    assert payload["traceId"] == "tr_abc_12345678"
    assert "claimId" not in payload


def test_utc_timestamp_has_millisecond_precision() -> None:
    value = datetime(2026, 1, 25, 12, 0, 0, 123456, tzinfo=timezone.utc)

    assert utc_timestamp(value) == "2026-01-25T12:00:00.123Z"
