from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from autopay.agent import AgentReply, ToolCallRecord
from autopay.claims import MISSING_FIELDS_REASON
from autopay.config import Settings, TenantConfig
from autopay.context import TenantContext
from autopay.engine import (
    AGENT_DISSENT_REASON,
    NO_RECIPIENT_REASON,
    UNVERIFIED_PAYOUT_REASON,
    AdjudicationEngine,
    new_trace_id,
)
from autopay.ledger.common import daily_total
from autopay.ledger.errors import LedgerWriteError
from autopay.types import AuditEntry, ClaimStatus, Decision

NOW = datetime(2026, 1, 25, 12, 0, tzinfo=timezone.utc)
TRACE_RE = re.compile(r"^tr_[0-9a-z]+_[0-9a-f]{8}$")

CONTACT_TOOL = {
    "name": "send_to_contact",
    "inputSchema": {
        "type": "object",
        "properties": {"contact": {"type": "string"}, "amount": {"type": "number"}},
        "required": ["contact", "amount"],
    },
}


@dataclass
class InMemoryLedger:
    entries: list[AuditEntry] = field(default_factory=list)

    def add_entry(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def get_all_entries(self) -> list[AuditEntry]:
        return list(self.entries)

    def get_daily_total(self, date: str) -> float:
        return daily_total(self.entries, date)


class FailingLedger(InMemoryLedger):
    def add_entry(self, entry: AuditEntry) -> None:
        raise LedgerWriteError("ledger append failed: OSError errno=28")


class UnreadableLedger(InMemoryLedger):
    def get_daily_total(self, date: str) -> float:
        raise RuntimeError("disk gone")


@dataclass
class StubProvider:
    response: Any = None
    calls: list[dict[str, Any]] = field(default_factory=list)

    def list_tools(self) -> list[Any]:
        return [CONTACT_TOOL]

    def call_tool(self, server: str, name: str, params: dict[str, Any]) -> Any:
        self.calls.append(params)
        if self.response is not None:
            return self.response
        return {"txId": f"tx-{len(self.calls)}"}


@dataclass
class StubAgent:
    reply: Any = None
    error: Exception | None = None
    prompts: list[str] = field(default_factory=list)

    async def review(self, prompt: str) -> Any:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


def _context(
    tmp_path: Path,
    *,
    ledger: InMemoryLedger | None = None,
    provider: Any = None,
    agent: Any = None,
    config: TenantConfig | None = None,
    contacts: tuple[str, ...] = ("0xABC",),
) -> TenantContext:
    settings = Settings(
        whitelisted_contacts=contacts,
        policy_path=tmp_path / "policy.json",
        ledger_path=tmp_path / "audit-log.jsonl",
    )
    return TenantContext.from_settings(
        settings,
        config,
        ledger=ledger if ledger is not None else InMemoryLedger(),
        provider=provider,
        agent=agent,
    )


def _engine(ctx: TenantContext, **kwargs: Any) -> AdjudicationEngine:
    return AdjudicationEngine(ctx, now=lambda: NOW, **kwargs)


def test_approved_claim_is_paid_and_audited(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    provider = StubProvider()
    engine = _engine(_context(tmp_path, ledger=ledger, provider=provider))

    response = asyncio.run(engine.adjudicate({"amount": 0.25, "purpose": "Coffee", "claim_id": "c-1"}))

    assert response.status is ClaimStatus.APPROVED
    assert response.decision is Decision.APPROVE
    assert response.tx_id == "tx-1"
    assert response.recipient == "0xABC"
    assert response.claim_id == "c-1"
    assert response.confidence == 1.0
    assert [e.id for e in response.explanations] == [
        "recipient-whitelisted",
        "per-transaction-limit",
        "daily-total-limit",
    ]
    assert TRACE_RE.match(response.trace_id or "")
    assert provider.calls == [{"contact": "0xABC", "amount": 0.25}]
    assert len(ledger.entries) == 1
    entry = ledger.entries[0]
    assert (entry.status, entry.amount, entry.tx_id, entry.timestamp) == (
        ClaimStatus.APPROVED,
        0.25,
        "tx-1",
        NOW,
    )
    payload = response.to_payload()
    assert payload["txId"] == "tx-1"
    assert payload["traceId"] == response.trace_id


def test_free_text_claim_without_parser(tmp_path: Path) -> None:
    provider = StubProvider()
    engine = _engine(_context(tmp_path, provider=provider))

    response = asyncio.run(engine.adjudicate("Reimburse $0.30 for Taxi"))

    assert response.status is ClaimStatus.APPROVED
    assert response.amount == 0.3
    assert response.purpose == "Reimburse $0.30 for Taxi"


def test_rule_denial_is_rejected_without_payout(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    provider = StubProvider()
    engine = _engine(_context(tmp_path, ledger=ledger, provider=provider))

    over = asyncio.run(engine.adjudicate({"amount": 0.75, "purpose": "Dinner"}))
    stranger = asyncio.run(engine.adjudicate({"amount": 0.10, "purpose": "Gum", "recipient": "0xEVIL"}))

    assert over.status is ClaimStatus.REJECTED
    assert over.decision is Decision.DENY
    assert over.reason == "Amount $0.75 exceeds per-transaction maximum of $0.50."
    assert over.confidence == pytest.approx(2 / 3)
    assert stranger.reason == 'Recipient "0xEVIL" is not whitelisted.'
    assert provider.calls == []
    assert [e.status for e in ledger.entries] == [ClaimStatus.REJECTED, ClaimStatus.REJECTED]


def test_daily_limit_counts_earlier_approvals(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    engine = _engine(_context(tmp_path, ledger=ledger, provider=StubProvider()))

    statuses = [
        asyncio.run(engine.adjudicate({"amount": 0.5, "purpose": f"Meal {i}"})).status for i in range(7)
    ]

    assert statuses == [ClaimStatus.APPROVED] * 6 + [ClaimStatus.REJECTED]
    assert ledger.get_daily_total("2026-01-25") == pytest.approx(3.0)


def test_serialized_budget_holds_under_concurrency(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    engine = _engine(_context(tmp_path, ledger=ledger, provider=StubProvider()), serialize_budget=True)

    async def _run() -> list[Any]:
        claims = [engine.adjudicate({"amount": 0.5, "purpose": f"Meal {i}"}) for i in range(8)]
        return await asyncio.gather(*claims)

    responses = asyncio.run(_run())

    approved = [r for r in responses if r.status is ClaimStatus.APPROVED]
    assert len(approved) == 6
    assert ledger.get_daily_total("2026-01-25") == pytest.approx(3.0)


def test_custom_policy_failure_rejects_before_payout(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    provider = StubProvider()
    config = TenantConfig(
        tenant_id="acme",
        custom_policies=[
            {"id": 7, "name": "Small only", "rule_type": "amount_limit", "rule_config": {"maxAmount": 0.2}}
        ],
    )
    engine = _engine(_context(tmp_path, ledger=ledger, provider=provider, config=config))

    response = asyncio.run(engine.adjudicate({"amount": 0.3, "purpose": "Taxi"}))

    assert response.status is ClaimStatus.REJECTED
    assert response.decision is Decision.DENY
    assert response.confidence == 1.0
    assert response.reason == "Amount $0.30 exceeds maximum of $0.20 (Policy: Small only)"
    assert [e.id for e in response.explanations] == ["custom-policy-7"]
    assert provider.calls == []
    assert len(ledger.entries) == 1


def test_time_restriction_reads_the_engine_clock(tmp_path: Path) -> None:
    weekdays = TenantConfig(
        tenant_id="acme",
        custom_policies=[
            {
                "id": 3,
                "name": "Weekdays",
                "rule_type": "time_restriction",
                "rule_config": {"allowedDays": ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]},
            }
        ],
    )
    ctx = _context(tmp_path, provider=StubProvider(), config=weekdays)
    monday = datetime(2026, 1, 26, 12, 0, tzinfo=timezone.utc)

    sunday_claim = asyncio.run(_engine(ctx).adjudicate({"amount": 0.2, "purpose": "Snack"}))
    monday_claim = asyncio.run(
        AdjudicationEngine(ctx, now=lambda: monday).adjudicate({"amount": 0.2, "purpose": "Snack"})
    )

    assert sunday_claim.status is ClaimStatus.REJECTED
    assert sunday_claim.reason is not None and sunday_claim.reason.startswith("Claims are only allowed on:")
    assert monday_claim.status is ClaimStatus.APPROVED


def test_intake_errors_are_not_audited(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    engine = _engine(_context(tmp_path, ledger=ledger, provider=StubProvider()))

    response = asyncio.run(engine.adjudicate({"amount": 0.5}))

    assert response.status is ClaimStatus.REJECTED
    assert response.reason == MISSING_FIELDS_REASON
    assert response.amount == 0.0
    assert response.trace_id is not None
    assert ledger.entries == []


def test_unverified_payout_is_approved_without_tx_id(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    provider = StubProvider(response="Payment sent! Transaction ID: 0xfeedface")
    engine = _engine(_context(tmp_path, ledger=ledger, provider=provider))

    response = asyncio.run(engine.adjudicate({"amount": 0.4, "purpose": "Parking"}))

    assert response.status is ClaimStatus.APPROVED
    assert response.reason == UNVERIFIED_PAYOUT_REASON
    assert response.tx_id is None
    assert len(provider.calls) == 1
    assert ledger.entries[0].status is ClaimStatus.APPROVED
    assert ledger.entries[0].tx_id is None
    assert ledger.get_daily_total("2026-01-25") == pytest.approx(0.4)


def test_unverified_payouts_still_exhaust_the_daily_limit(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    provider = StubProvider(response={"success": True})
    engine = _engine(_context(tmp_path, ledger=ledger, provider=provider))

    statuses = [
        asyncio.run(engine.adjudicate({"amount": 0.5, "purpose": f"Meal {i}"})).status for i in range(10)
    ]

    assert statuses == [ClaimStatus.APPROVED] * 6 + [ClaimStatus.REJECTED] * 4
    assert len(provider.calls) == 6
    assert ledger.get_daily_total("2026-01-25") == pytest.approx(3.0)


def test_payout_failure_is_rejected_with_error(tmp_path: Path) -> None:
    provider = StubProvider(response={"isError": True, "content": [{"type": "text", "text": "insufficient funds"}]})
    engine = _engine(_context(tmp_path, provider=provider))

    response = asyncio.run(engine.adjudicate({"amount": 0.4, "purpose": "Parking"}))

    assert response.status is ClaimStatus.REJECTED
    assert response.decision is Decision.APPROVE
    assert response.reason is not None
    assert response.reason.startswith("Payment failed: All 7 parameter combinations failed.")
    assert response.error is not None and "insufficient funds" in response.error


def test_missing_provider_is_a_payment_failure(tmp_path: Path) -> None:
    engine = _engine(_context(tmp_path))

    response = asyncio.run(engine.adjudicate({"amount": 0.4, "purpose": "Parking"}))

    assert response.status is ClaimStatus.REJECTED
    assert response.reason == "Payment failed: No payment tool provider configured"


def test_zero_amount_needs_no_payout(tmp_path: Path) -> None:
    provider = StubProvider()
    engine = _engine(_context(tmp_path, provider=provider))

    response = asyncio.run(engine.adjudicate({"amount": 0, "purpose": "Free sample"}))

    assert response.status is ClaimStatus.APPROVED
    assert response.tx_id is None
    assert provider.calls == []


def test_empty_whitelist_has_no_recipient(tmp_path: Path) -> None:
    provider = StubProvider()
    engine = _engine(_context(tmp_path, provider=provider, contacts=()))

    response = asyncio.run(engine.adjudicate({"amount": 0.2, "purpose": "Snack"}))

    assert response.status is ClaimStatus.REJECTED
    assert response.reason == NO_RECIPIENT_REASON
    assert provider.calls == []


def test_agent_dissent_goes_to_review(tmp_path: Path) -> None:
    provider = StubProvider()
    agent = StubAgent(reply='{"status": "rejected"}')
    engine = _engine(_context(tmp_path, provider=provider, agent=agent))

    response = asyncio.run(engine.adjudicate({"amount": 0.2, "purpose": "Snack"}))

    assert response.status is ClaimStatus.REVIEW
    assert response.decision is Decision.APPROVE
    assert response.reason == AGENT_DISSENT_REASON
    assert provider.calls == []
    assert "Current today: $0.00" in agent.prompts[0]


def test_agent_verified_payout_is_not_repeated(tmp_path: Path) -> None:
    provider = StubProvider()
    agent = StubAgent(
        reply=AgentReply(
            text='{"status": "approved", "txId": "0xAGENT"}',
            tool_calls=(ToolCallRecord(name="send_to_contact", result={"txId": "0xAGENT"}),),
        )
    )
    engine = _engine(_context(tmp_path, provider=provider, agent=agent))

    response = asyncio.run(engine.adjudicate({"amount": 0.2, "purpose": "Snack"}))

    assert response.status is ClaimStatus.APPROVED
    assert response.tx_id == "0xAGENT"
    assert provider.calls == []


def test_agent_verified_payout_is_kept_when_agent_dissents(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    provider = StubProvider()
    agent = StubAgent(
        reply=AgentReply(
            text='{"status": "rejected", "reason": "Looks like a duplicate"}',
            tool_calls=(ToolCallRecord(name="send_to_contact", result={"txId": "tx-real"}),),
        )
    )
    engine = _engine(_context(tmp_path, ledger=ledger, provider=provider, agent=agent))

    response = asyncio.run(engine.adjudicate({"amount": 0.2, "purpose": "Snack"}))

    assert response.status is ClaimStatus.APPROVED
    assert response.tx_id == "tx-real"
    assert provider.calls == []
    assert (ledger.entries[0].status, ledger.entries[0].tx_id) == (ClaimStatus.APPROVED, "tx-real")
    assert ledger.get_daily_total("2026-01-25") == pytest.approx(0.2)


def test_agent_claimed_id_without_tool_result_triggers_engine_payout(tmp_path: Path) -> None:
    provider = StubProvider()
    agent = StubAgent(reply='{"status": "approved", "txId": "0xINVENTED"}')
    engine = _engine(_context(tmp_path, provider=provider, agent=agent))

    response = asyncio.run(engine.adjudicate({"amount": 0.2, "purpose": "Snack"}))

    assert response.status is ClaimStatus.APPROVED
    assert response.tx_id == "tx-1"
    assert len(provider.calls) == 1


def test_agent_failure_is_rejected(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    agent = StubAgent(error=RuntimeError("tool server unreachable"))
    engine = _engine(_context(tmp_path, ledger=ledger, provider=StubProvider(), agent=agent))

    response = asyncio.run(engine.adjudicate("Reimburse $0.20 for Snack"))

    assert response.status is ClaimStatus.REJECTED
    assert response.reason == (
        "Failed to initialize agent: tool server unreachable. Please check tool configurations."
    )
    assert response.error == "tool server unreachable"
    assert response.amount == 0.2
    assert len(ledger.entries) == 1


def test_audit_failure_is_reported_on_the_response(tmp_path: Path) -> None:
    engine = _engine(_context(tmp_path, ledger=FailingLedger(), provider=StubProvider()))

    response = asyncio.run(engine.adjudicate({"amount": 0.2, "purpose": "Snack"}))

    assert response.status is ClaimStatus.APPROVED
    assert response.tx_id == "tx-1"
    assert response.error is not None
    assert response.error.startswith("Audit log write failed:")


def test_unexpected_failure_still_returns_a_response(tmp_path: Path) -> None:
    ledger = UnreadableLedger()
    engine = _engine(_context(tmp_path, ledger=ledger, provider=StubProvider()))

    response = asyncio.run(engine.adjudicate({"amount": 0.2, "purpose": "Snack"}))

    assert response.status is ClaimStatus.REJECTED
    assert response.reason == "Claim could not be processed: disk gone"
    assert response.error == "disk gone"
    assert len(ledger.entries) == 1


def test_adjudicate_sync_and_missing_context(tmp_path: Path) -> None:
    engine = _engine(_context(tmp_path, provider=StubProvider()))

    assert engine.adjudicate_sync({"amount": 0.1, "purpose": "Mints"}).status is ClaimStatus.APPROVED
    with pytest.raises(ValueError):
        asyncio.run(AdjudicationEngine().adjudicate("Reimburse $1 for lunch"))


def test_adjudicate_sync_reuses_one_loop_for_serialized_budgets(tmp_path: Path) -> None:
    ledger = InMemoryLedger()
    engine = _engine(_context(tmp_path, ledger=ledger, provider=StubProvider()), serialize_budget=True)

    statuses = [engine.adjudicate_sync({"amount": 0.5, "purpose": f"Meal {i}"}).status for i in range(7)]

    assert statuses == [ClaimStatus.APPROVED] * 6 + [ClaimStatus.REJECTED]


def test_adjudicate_sync_refuses_a_running_loop(tmp_path: Path) -> None:
    engine = _engine(_context(tmp_path, provider=StubProvider()))

    async def _inner() -> None:
        with pytest.raises(RuntimeError, match="await adjudicate"):
            engine.adjudicate_sync({"amount": 0.1, "purpose": "Mints"})

    asyncio.run(_inner())


def test_trace_ids_are_unique() -> None:
    ids = {new_trace_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(TRACE_RE.match(trace_id) for trace_id in ids)
