"""Tenant-defined custom policies and their deterministic evaluator.

Six rule types are supported. Five are checked here; ``custom_condition`` holds a
free-text instruction for the claim agent and is treated as not applicable unless
strict mode asks for a conservative rejection when no agent is available.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .types import Claim, Explanation

_logger = logging.getLogger(__name__)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class CustomPolicyType(str, Enum):
    AMOUNT_LIMIT = "amount_limit"
    PURPOSE_RESTRICTION = "purpose_restriction"
    EMPLOYEE_RESTRICTION = "employee_restriction"
    TIME_RESTRICTION = "time_restriction"
    CATEGORY_RESTRICTION = "category_restriction"
    CUSTOM_CONDITION = "custom_condition"


class TimeWindow(BaseModel):
    """Inclusive ``HH:MM`` window. ``start > end`` wraps past midnight."""

    start: str
    end: str


class CustomPolicyRuleConfig(BaseModel):
    """Type-specific configuration. Only the keys relevant to the rule type are read."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    max_amount: float | None = Field(default=None, alias="maxAmount")
    min_amount: float | None = Field(default=None, alias="minAmount")
    allowed_categories: tuple[str, ...] = Field(default=(), alias="allowedCategories")
    blocked_categories: tuple[str, ...] = Field(default=(), alias="blockedCategories")
    allowed_days: tuple[str, ...] = Field(default=(), alias="allowedDays")
    allowed_hours: TimeWindow | None = Field(default=None, alias="allowedHours")
    allowed_employee_ids: tuple[str, ...] = Field(default=(), alias="allowedEmployeeIds")
    blocked_employee_ids: tuple[str, ...] = Field(default=(), alias="blockedEmployeeIds")
    allowed_keywords: tuple[str, ...] = Field(default=(), alias="allowedKeywords")
    blocked_keywords: tuple[str, ...] = Field(default=(), alias="blockedKeywords")
    condition: str | None = None

    @field_validator(
        "allowed_categories",
        "blocked_categories",
        "allowed_days",
        "allowed_employee_ids",
        "blocked_employee_ids",
        "allowed_keywords",
        "blocked_keywords",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return () if value is None else value


class CustomPolicy(BaseModel):
    """A tenant-defined rule. Read-only to the adjudication core."""

    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str | None = None
    name: str
    description: str | None = None
    rule_type: CustomPolicyType
    rule_config: CustomPolicyRuleConfig = Field(default_factory=CustomPolicyRuleConfig)
    active: bool = True
    priority: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str:
        return str(value)

    @field_validator("rule_config", mode="before")
    @classmethod
    def _parse_rule_config(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            try:
                return json.loads(value) if value.strip() else {}
            except json.JSONDecodeError as exc:
                raise ValueError("rule_config is not valid JSON") from exc
        return value


class CustomPolicyEvaluation(BaseModel):
    """Aggregate result of checking every applicable custom policy."""

    passed: bool
    failed_policies: list[CustomPolicy] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons)

    def explanations(self) -> list[Explanation]:
        return [
            Explanation(
                id=f"custom-policy-{policy.id}",
                label=policy.name,
                reason=reason or "Policy violation",
                weight=-1.0,
            )
            for policy, reason in zip(self.failed_policies, self.reasons)
        ]


def order_policies(policies: Iterable[CustomPolicy]) -> list[CustomPolicy]:
    """Active policies, highest priority first; ties keep their input order."""
    return sorted((p for p in policies if p.active), key=lambda p: -p.priority)


def _parse_clock(value: str) -> int | None:
    try:
        hours, minutes = value.strip().split(":")[:2]
        total = int(hours) * 60 + int(minutes)
    except ValueError:
        return None
    return total if 0 <= total < 24 * 60 else None


def _money(value: float) -> str:
    return f"${value:.2f}"


class CustomPolicyEvaluator:
    """Checks a claim against a tenant's custom policies.

    Every active policy is checked so that all violations are reported together.
    """

    def __init__(
        self,
        *,
        now: Callable[[], datetime] | None = None,
        strict_custom_conditions: bool = False,
    ) -> None:
        self._now = now or (lambda: datetime.now().astimezone())
        self.strict_custom_conditions = strict_custom_conditions
        self._checks: dict[CustomPolicyType, Callable[[CustomPolicy, Claim, bool], str | None]] = {
            CustomPolicyType.AMOUNT_LIMIT: self._check_amount,
            CustomPolicyType.PURPOSE_RESTRICTION: self._check_purpose,
            CustomPolicyType.EMPLOYEE_RESTRICTION: self._check_employee,
            CustomPolicyType.TIME_RESTRICTION: self._check_time,
            CustomPolicyType.CATEGORY_RESTRICTION: self._check_category,
            CustomPolicyType.CUSTOM_CONDITION: self._check_condition,
        }

    def evaluate(
        self,
        claim: Claim,
        policies: Sequence[CustomPolicy],
        *,
        agent_available: bool = True,
    ) -> CustomPolicyEvaluation:
        failed: list[CustomPolicy] = []
        reasons: list[str] = []
        for policy in order_policies(policies):
            reason = self._checks[policy.rule_type](policy, claim, agent_available)
            if reason is not None:
                failed.append(policy)
                reasons.append(reason)
        if failed:
            _logger.info(
                "custom policies failed: %s", ", ".join(policy.name for policy in failed)
            )
        return CustomPolicyEvaluation(passed=not failed, failed_policies=failed, reasons=reasons)

    # ----- per-type checks; each returns a failure reason or None -----

    def _check_amount(self, policy: CustomPolicy, claim: Claim, _: bool) -> str | None:
        config = policy.rule_config
        amount = claim.amount or 0.0
        if config.max_amount is not None and amount > config.max_amount:
            return (
                f"Amount {_money(amount)} exceeds maximum of {_money(config.max_amount)} "
                f"(Policy: {policy.name})"
            )
        if config.min_amount is not None and amount < config.min_amount:
            return (
                f"Amount {_money(amount)} is below minimum of {_money(config.min_amount)} "
                f"(Policy: {policy.name})"
            )
        return None

    def _check_purpose(self, policy: CustomPolicy, claim: Claim, _: bool) -> str | None:
        config = policy.rule_config
        purpose = (claim.purpose or claim.text or "").lower()
        for keyword in config.blocked_keywords:
            if keyword and keyword.lower() in purpose:
                return f'Purpose contains blocked keyword "{keyword}" (Policy: {policy.name})'
        if config.allowed_keywords and not any(
            keyword.lower() in purpose for keyword in config.allowed_keywords if keyword
        ):
            return (
                f"Purpose must contain one of: {', '.join(config.allowed_keywords)} "
                f"(Policy: {policy.name})"
            )
        return None

    def _check_employee(self, policy: CustomPolicy, claim: Claim, _: bool) -> str | None:
        config = policy.rule_config
        employee_id = claim.employee_id
        if employee_id is not None and employee_id in config.blocked_employee_ids:
            return f"Employee is blocked by policy (Policy: {policy.name})"
        if config.allowed_employee_ids and employee_id not in config.allowed_employee_ids:
            return f"Employee is not in allowed list (Policy: {policy.name})"
        return None

    def _check_time(self, policy: CustomPolicy, claim: Claim, _: bool) -> str | None:
        config = policy.rule_config
        now = self._now()
        allowed_days = tuple(day.strip().lower() for day in config.allowed_days)
        if allowed_days and DAY_NAMES[now.weekday()] not in allowed_days:
            return (
                f"Claims are only allowed on: {', '.join(config.allowed_days)} "
                f"(Policy: {policy.name})"
            )
        window = config.allowed_hours
        if window is None:
            return None
        start, end = _parse_clock(window.start), _parse_clock(window.end)
        if start is None or end is None:
            _logger.warning("ignoring malformed time window on policy %s", policy.id)
            return None
        minute = now.hour * 60 + now.minute
        if start <= end:
            inside = start <= minute <= end
        else:
            inside = minute >= start or minute <= end
        if not inside:
            return (
                f"Claims are only allowed between {window.start} and {window.end} "
                f"(Policy: {policy.name})"
            )
        return None

    def _check_category(self, policy: CustomPolicy, claim: Claim, _: bool) -> str | None:
        config = policy.rule_config
        category = claim.category
        if category is not None and category in config.blocked_categories:
            return f'Category "{category}" is blocked (Policy: {policy.name})'
        if config.allowed_categories and category not in config.allowed_categories:
            return (
                f"Category must be one of: {', '.join(config.allowed_categories)} "
                f"(Policy: {policy.name})"
            )
        return None

    def _check_condition(
        self, policy: CustomPolicy, claim: Claim, agent_available: bool
    ) -> str | None:
        if agent_available or not self.strict_custom_conditions:
            return None
        condition = policy.rule_config.condition or policy.description or policy.name
        return f"Custom condition requires agent review: {condition} (Policy: {policy.name})"


def describe_policy(policy: CustomPolicy) -> str:
    """Render one policy as an instruction line for the claim agent."""
    config = policy.rule_config
    parts: list[str] = []
    rule_type = policy.rule_type
    if rule_type is CustomPolicyType.AMOUNT_LIMIT:
        if config.max_amount is not None:
            parts.append(f"Maximum amount: {_money(config.max_amount)}.")
        if config.min_amount is not None:
            parts.append(f"Minimum amount: {_money(config.min_amount)}.")
    elif rule_type is CustomPolicyType.PURPOSE_RESTRICTION:
        if config.allowed_keywords:
            parts.append(f"Purpose must contain one of: {', '.join(config.allowed_keywords)}.")
        if config.blocked_keywords:
            parts.append(f"Purpose must NOT contain: {', '.join(config.blocked_keywords)}.")
    elif rule_type is CustomPolicyType.TIME_RESTRICTION:
        if config.allowed_days:
            parts.append(f"Claims only allowed on: {', '.join(config.allowed_days)}.")
        if config.allowed_hours is not None:
            parts.append(
                f"Claims only allowed between {config.allowed_hours.start} "
                f"and {config.allowed_hours.end}."
            )
    elif rule_type is CustomPolicyType.EMPLOYEE_RESTRICTION:
        if config.allowed_employee_ids:
            parts.append("Only specific employees allowed.")
        if config.blocked_employee_ids:
            parts.append("Specific employees blocked.")
    elif rule_type is CustomPolicyType.CATEGORY_RESTRICTION:
        if config.allowed_categories:
            parts.append(f"Only categories allowed: {', '.join(config.allowed_categories)}.")
        if config.blocked_categories:
            parts.append(f"Categories blocked: {', '.join(config.blocked_categories)}.")
    else:
        parts.append(f"Custom condition: {config.condition or ''}.")
    label = f"{policy.name} ({policy.description})" if policy.description else policy.name
    return f"{label}: {' '.join(parts)}".rstrip()
