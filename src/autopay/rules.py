"""Deterministic built-in rules: recipient whitelist, per-transaction and daily limits."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Protocol

from .ledger.base import AuditLedger
from .policies import Policy
from .types import RuleEvaluation, RuleResult

RECIPIENT_WHITELISTED = "recipient-whitelisted"
PER_TRANSACTION_LIMIT = "per-transaction-limit"
DAILY_TOTAL_LIMIT = "daily-total-limit"


class PolicySource(Protocol):
    def get(self) -> Policy:
        ...


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


def utc_today(now: datetime | None = None) -> str:
    """UTC calendar date as YYYY-MM-DD; the daily limit resets at UTC midnight."""
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date().isoformat()


class RuleEvaluator:
    """Evaluates all three rules unconditionally; approval is their logical AND."""

    def __init__(
        self,
        *,
        policies: PolicySource,
        ledger: AuditLedger,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.policies = policies
        self.ledger = ledger
        self._now = now or (lambda: datetime.now(timezone.utc))

    def today(self) -> str:
        return utc_today(self._now())

    def evaluate(
        self,
        amount: float,
        recipient: str | None = None,
        *,
        policy: Policy | None = None,
    ) -> RuleEvaluation:
        effective = policy if policy is not None else self.policies.get()
        today_total = self.ledger.get_daily_total(self.today())
        results = [
            self._recipient_rule(effective, recipient),
            self._per_transaction_rule(effective, amount),
            self._daily_rule(effective, amount, today_total),
        ]
        return RuleEvaluation.from_results(results)

    def _recipient_rule(self, policy: Policy, recipient: str | None) -> RuleResult:
        passed = not recipient or policy.is_whitelisted(recipient)
        return RuleResult(
            id=RECIPIENT_WHITELISTED,
            label="Recipient Whitelisted",
            passed=passed,
            reason=None if passed else f'Recipient "{recipient}" is not whitelisted.',
            weight=0.2 if passed else -1.0,
        )

    def _per_transaction_rule(self, policy: Policy, amount: float) -> RuleResult:
        passed = _dec(amount) <= _dec(policy.per_txn_max)
        return RuleResult(
            id=PER_TRANSACTION_LIMIT,
            label="Per-Transaction Limit",
            passed=passed,
            reason=None
            if passed
            else (
                f"Amount ${amount:.2f} exceeds per-transaction maximum "
                f"of ${policy.per_txn_max:.2f}."
            ),
            weight=0.4 if passed else -0.6,
        )

    def _daily_rule(self, policy: Policy, amount: float, today_total: float) -> RuleResult:
        projected = _dec(today_total) + _dec(amount)
        passed = projected <= _dec(policy.daily_max)
        remaining = _dec(policy.daily_max) - _dec(today_total)
        return RuleResult(
            id=DAILY_TOTAL_LIMIT,
            label="Daily Total Limit",
            passed=passed,
            reason=None
            if passed
            else (
                f"Daily total would be ${projected:.2f}, exceeding daily maximum "
                f"of ${policy.daily_max:.2f}. Remaining today: ${remaining:.2f}."
            ),
            weight=0.4 if passed else -0.7,
        )
