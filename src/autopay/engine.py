"""Adjudication engine for AutoPay.

Flow: intake -> custom policies -> rules -> agent -> (payout) -> audit -> response

Design notes:
- Rule evaluation is the ground truth; the agent's verdict is advisory only
- Custom policy failures reject before any rule or agent work, with no payout
- A payout is attempted only after the rules approve, at most once per claim
- Every path returns a well-formed AgentResponse; nothing escapes to the caller
- Every finalized claim is appended to the audit ledger exactly once
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Mapping, TypeVar

from .agent import AgentOpinion, build_instructions, parse_agent_reply
from .claims import ParsedClaim, claim_text, extract_amount, normalize_claim, resolve_claim
from .context import TenantContext
from .custom_policies import CustomPolicyEvaluator
from .errors import AgentError, AuditLogError, ClaimInputError, PayoutError
from .policies import Policy
from .rules import RuleEvaluator
from .types import (
    AgentResponse,
    AuditEntry,
    Claim,
    ClaimStatus,
    Decision,
    Explanation,
    RuleEvaluation,
)

UNVERIFIED_PAYOUT_REASON = "payment executed but transaction id could not be verified"
AGENT_DISSENT_REASON = "Rules approved the claim but the agent recommended rejection; manual review required."
NO_RECIPIENT_REASON = "No recipient available for payout: the whitelist is empty."

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

R = TypeVar("R")

_logger = logging.getLogger(__name__)


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def new_trace_id() -> str:
    """Return ``tr_<base36 epoch millis>_<8 random chars>``."""
    return f"tr_{_base36(int(time.time() * 1000))}_{secrets.token_hex(4)}"


def _join_errors(*errors: str | None) -> str | None:
    joined = "; ".join(error for error in errors if error)
    return joined or None


class _SyncLoop:
    """One daemon thread running an event loop for synchronous callers.

    Reusing a single loop keeps the engine's per-tenant locks bound to it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    def run(self, coro: Coroutine[Any, Any, R]) -> R:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            coro.close()
            raise RuntimeError("adjudicate_sync cannot run inside an event loop; await adjudicate() instead")
        return asyncio.run_coroutine_threadsafe(coro, self._started()).result()

    def _started(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                threading.Thread(target=loop.run_forever, name="autopay-sync", daemon=True).start()
                self._loop = loop
            return self._loop


class AdjudicationEngine:
    """Decides claims for one or more tenants and pays the approved ones.

    Example:
        context = TenantContext.from_settings(provider=my_provider)
        engine = AdjudicationEngine(context)
        response = await engine.adjudicate({"amount": 0.25, "purpose": "coffee"})

    Concurrent claims for one tenant can each pass the daily-limit check against
    the same total. ``serialize_budget=True`` holds a per-tenant lock from rule
    evaluation through the audit append to close that window.
    """

    def __init__(
        self,
        context: TenantContext | None = None,
        *,
        now: Callable[[], datetime] | None = None,
        serialize_budget: bool = False,
        strict_custom_conditions: bool = False,
    ) -> None:
        self.context = context
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.serialize_budget = serialize_budget
        self.custom_policies = CustomPolicyEvaluator(
            now=lambda: self._now().astimezone(),
            strict_custom_conditions=strict_custom_conditions,
        )
        self._budget_locks: dict[str, asyncio.Lock] = {}
        self._sync_loop = _SyncLoop()

    def adjudicate_sync(
        self, raw: Claim | Mapping[str, Any] | str, context: TenantContext | None = None
    ) -> AgentResponse:
        """Run :meth:`adjudicate` from synchronous code."""
        return self._sync_loop.run(self.adjudicate(raw, context))

    async def adjudicate(
        self, raw: Claim | Mapping[str, Any] | str, context: TenantContext | None = None
    ) -> AgentResponse:
        """Adjudicate one claim and return the response.

        Args:
            raw: A Claim, a mapping of claim fields, or free text.
            context: Tenant context; defaults to the engine's own.

        Returns:
            AgentResponse; rejected with a reason on every failure path.
        """
        ctx = context if context is not None else self.context
        if ctx is None:
            raise ValueError("a TenantContext is required")
        trace_id = new_trace_id()

        try:
            claim = normalize_claim(raw)
        except ClaimInputError as exc:
            _logger.info("claim rejected at intake trace=%s: %s", trace_id, exc)
            return AgentResponse(
                status=ClaimStatus.REJECTED,
                amount=0.0,
                purpose="",
                reason=str(exc),
                decision=Decision.DENY,
                trace_id=trace_id,
            )

        try:
            return await self._adjudicate(claim, ctx, trace_id)
        except Exception as exc:
            _logger.exception("adjudication failed trace=%s", trace_id)
            text = claim_text(claim)
            return await self._finalize(
                ctx,
                claim,
                trace_id,
                status=ClaimStatus.REJECTED,
                amount=claim.amount if claim.amount is not None else extract_amount(text),
                purpose=claim.purpose or text,
                recipient=claim.recipient,
                reason=f"Claim could not be processed: {exc}",
                error=str(exc),
                decision=Decision.DENY,
            )

    def _budget_lock(self, tenant_id: str) -> contextlib.AbstractAsyncContextManager[Any]:
        if not self.serialize_budget:
            return contextlib.nullcontext()
        lock = self._budget_locks.get(tenant_id)
        if lock is None:
            lock = self._budget_locks.setdefault(tenant_id, asyncio.Lock())
        return lock

    async def _adjudicate(self, claim: Claim, ctx: TenantContext, trace_id: str) -> AgentResponse:
        text = claim_text(claim)
        parsed = await resolve_claim(claim, ctx.parser)
        resolved = claim.model_copy(
            update={"amount": parsed.amount, "purpose": parsed.purpose, "recipient": parsed.recipient}
        )
        _logger.info(
            "adjudicating trace=%s tenant=%s amount=%.2f recipient=%s",
            trace_id,
            ctx.tenant_id,
            parsed.amount,
            parsed.recipient or "<default>",
        )

        custom = self.custom_policies.evaluate(
            resolved, ctx.config.custom_policies, agent_available=ctx.agent is not None
        )
        if not custom.passed:
            return await self._finalize(
                ctx,
                claim,
                trace_id,
                status=ClaimStatus.REJECTED,
                amount=parsed.amount,
                purpose=parsed.purpose,
                recipient=parsed.recipient,
                reason=custom.reason,
                decision=Decision.DENY,
                confidence=1.0,
                explanations=custom.explanations(),
            )

        async with self._budget_lock(ctx.tenant_id):
            return await self._decide(claim, ctx, trace_id, text, parsed)

    async def _decide(
        self,
        claim: Claim,
        ctx: TenantContext,
        trace_id: str,
        text: str,
        parsed: ParsedClaim,
    ) -> AgentResponse:
        policy = ctx.effective_policy()
        rules = RuleEvaluator(policies=ctx.policies, ledger=ctx.ledger, now=self._now)
        evaluation = await asyncio.to_thread(
            rules.evaluate, parsed.amount, parsed.recipient, policy=policy
        )
        recipient = parsed.recipient or policy.pick_default_recipient()
        explained = dict(
            confidence=evaluation.confidence,
            explanations=[Explanation.from_rule(result) for result in evaluation.results],
        )

        if not evaluation.approved:
            return await self._finalize(
                ctx,
                claim,
                trace_id,
                status=ClaimStatus.REJECTED,
                amount=parsed.amount,
                purpose=parsed.purpose,
                recipient=recipient,
                reason=evaluation.reason,
                decision=Decision.DENY,
                **explained,
            )

        opinion: AgentOpinion | None = None
        if ctx.agent is not None:
            try:
                opinion = await self._consult_agent(ctx, text, policy, rules, evaluation)
            except AgentError as exc:
                _logger.exception("claim agent failed trace=%s", trace_id)
                message = str(exc)
                return await self._finalize(
                    ctx,
                    claim,
                    trace_id,
                    status=ClaimStatus.REJECTED,
                    amount=extract_amount(text),
                    purpose=parsed.purpose,
                    recipient=recipient,
                    reason=f"Failed to initialize agent: {message}. Please check tool configurations.",
                    error=message,
                    decision=Decision.APPROVE,
                    **explained,
                )

        # A verified transfer already moved money, whatever the agent's verdict.
        if opinion is not None and opinion.tx_id is not None:
            _logger.info("agent payout verified trace=%s tx_id=%s", trace_id, opinion.tx_id)
            return await self._finalize(
                ctx,
                claim,
                trace_id,
                status=ClaimStatus.APPROVED,
                amount=parsed.amount,
                purpose=parsed.purpose,
                recipient=recipient,
                tx_id=opinion.tx_id,
                decision=Decision.APPROVE,
                **explained,
            )

        if opinion is not None and not opinion.approved:
            return await self._finalize(
                ctx,
                claim,
                trace_id,
                status=ClaimStatus.REVIEW,
                amount=parsed.amount,
                purpose=parsed.purpose,
                recipient=recipient,
                reason=opinion.reason or AGENT_DISSENT_REASON,
                decision=Decision.APPROVE,
                **explained,
            )

        if parsed.amount == 0:
            return await self._finalize(
                ctx,
                claim,
                trace_id,
                status=ClaimStatus.APPROVED,
                amount=0.0,
                purpose=parsed.purpose,
                recipient=recipient,
                reason="No payout required for a zero amount.",
                decision=Decision.APPROVE,
                **explained,
            )

        if recipient is None:
            return await self._finalize(
                ctx,
                claim,
                trace_id,
                status=ClaimStatus.REJECTED,
                amount=parsed.amount,
                purpose=parsed.purpose,
                reason=NO_RECIPIENT_REASON,
                decision=Decision.APPROVE,
                **explained,
            )

        try:
            receipt = await ctx.payout_executor().execute(recipient, parsed.amount, parsed.purpose)
        except PayoutError as exc:
            _logger.warning("payout failed trace=%s: %s", trace_id, exc)
            return await self._finalize(
                ctx,
                claim,
                trace_id,
                status=ClaimStatus.REJECTED,
                amount=parsed.amount,
                purpose=parsed.purpose,
                recipient=recipient,
                reason=f"Payment failed: {exc}",
                error=str(exc),
                decision=Decision.APPROVE,
                **explained,
            )

        if receipt.tx_id is None:
            # Approved so the transfer still counts toward the daily total.
            _logger.warning("payout sent without a verifiable tx id trace=%s", trace_id)
            return await self._finalize(
                ctx,
                claim,
                trace_id,
                status=ClaimStatus.APPROVED,
                amount=parsed.amount,
                purpose=parsed.purpose,
                recipient=recipient,
                reason=UNVERIFIED_PAYOUT_REASON,
                decision=Decision.APPROVE,
                **explained,
            )
        return await self._finalize(
            ctx,
            claim,
            trace_id,
            status=ClaimStatus.APPROVED,
            amount=parsed.amount,
            purpose=parsed.purpose,
            recipient=recipient,
            tx_id=receipt.tx_id,
            decision=Decision.APPROVE,
            **explained,
        )

    async def _consult_agent(
        self,
        ctx: TenantContext,
        text: str,
        policy: Policy,
        rules: RuleEvaluator,
        evaluation: RuleEvaluation,
    ) -> AgentOpinion:
        assert ctx.agent is not None
        today_total = await asyncio.to_thread(ctx.ledger.get_daily_total, rules.today())
        prompt = build_instructions(
            text,
            policy,
            today_total,
            ctx.config.custom_policies,
            currency=ctx.settings.payout_currency,
        )
        try:
            reply = ctx.agent.review(prompt)
            if inspect.isawaitable(reply):
                reply = await reply
            opinion = parse_agent_reply(reply, text)
        except Exception as exc:
            raise AgentError(str(exc) or type(exc).__name__) from exc
        _logger.debug(
            "agent opinion status=%s tx_id=%s rules_passed=%d",
            opinion.status.value,
            opinion.tx_id,
            evaluation.passed_count,
        )
        return opinion

    async def _finalize(
        self,
        ctx: TenantContext,
        claim: Claim,
        trace_id: str,
        **fields: Any,
    ) -> AgentResponse:
        """Build the response and append its audit entry."""
        response = AgentResponse(trace_id=trace_id, claim_id=claim.claim_id, **fields)
        entry = AuditEntry(
            timestamp=self._now(),
            status=response.status,
            amount=response.amount,
            purpose=response.purpose,
            recipient=response.recipient,
            reason=response.reason,
            tx_id=response.tx_id,
            error=response.error,
        )
        try:
            await asyncio.to_thread(ctx.ledger.add_entry, entry)
        except AuditLogError as exc:
            _logger.error("audit append failed trace=%s: %s", trace_id, exc)
            error = _join_errors(response.error, f"Audit log write failed: {exc}")
            return response.model_copy(update={"error": error})
        _logger.info(
            "claim finalized trace=%s status=%s amount=%.2f",
            trace_id,
            response.status.value,
            response.amount,
        )
        return response
