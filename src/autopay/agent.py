"""Boundary to the external claim agent: instructions out, advisory opinion in.

The agent's verdict is never decisional. What comes back is parsed into an
:class:`AgentOpinion`; transaction ids are only kept when a payout tool call
returned them in a structured result.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .claims import extract_amount
from .custom_policies import CustomPolicy, describe_policy, order_policies
from .payouts.results import classify_result, extract_transaction_id
from .policies import Policy
from .types import ClaimStatus

PAYOUT_TOOL_TERMS = ("payout", "send", "payment")

# Built-in rules occupy the first four instruction slots.
_CUSTOM_POLICY_OFFSET = 5

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallRecord:
    """One tool call the agent made, with whatever the tool returned."""

    name: str
    args: Mapping[str, Any] | None = None
    result: Any = None


@dataclass(frozen=True)
class AgentReply:
    text: str
    tool_calls: tuple[ToolCallRecord, ...] = ()


class ClaimAgent(Protocol):
    """External reasoning agent. ``review`` may be sync or async.

    It receives the full instruction prompt and returns an :class:`AgentReply`,
    a plain string, or a mapping with ``text`` and ``tool_calls`` keys.
    """

    def review(self, prompt: str) -> Any:
        ...


class AgentOpinion(BaseModel):
    """Advisory verdict parsed from the agent's reply."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status: ClaimStatus
    amount: float | None = None
    purpose: str | None = None
    recipient: str | None = None
    reason: str | None = None
    tx_id: str | None = Field(default=None, alias="txId")
    payout_tool_called: bool = False

    @property
    def approved(self) -> bool:
        return self.status is ClaimStatus.APPROVED


def _money(value: float) -> str:
    return f"${value:.2f}"


def build_instructions(
    claim_text: str,
    policy: Policy,
    today_total: float,
    custom_policies: Sequence[CustomPolicy] = (),
    *,
    currency: str = "USDC",
) -> str:
    """Render the prompt handed to the agent for one claim."""
    contact = policy.default_contact or ", ".join(policy.whitelisted_contacts)
    remaining = policy.daily_max - today_total

    custom_section = ""
    ordered = order_policies(custom_policies)
    if ordered:
        lines = [
            f"{index}. {describe_policy(p)}"
            for index, p in enumerate(ordered, start=_CUSTOM_POLICY_OFFSET)
        ]
        custom_section = (
            "\n\nCUSTOM POLICIES (STRICTLY ENFORCE):\n"
            + "\n".join(lines)
            + "\n\nThese custom policies are in addition to the standard policies above. "
            "ALL policies must pass for approval."
        )

    return f"""You are AutoPay Agent, an assistant that reviews expense claims and pays them with the available payment tools.

POLICY RULES (STRICTLY ENFORCE):
1. DEFAULT RECIPIENT: If no recipient is mentioned in the claim, use the whitelisted contact: {contact}
2. RECIPIENT CHECK: Only pay whitelisted contacts ({", ".join(policy.whitelisted_contacts)}). If a different recipient is mentioned, reject.
3. Maximum per transaction: {_money(policy.per_txn_max)}
4. Maximum daily total: {_money(policy.daily_max)} (Current today: {_money(today_total)}, Remaining: {_money(remaining)}){custom_section}

WORKFLOW:
1. Parse the expense claim to extract amount and purpose
2. Check the recipient; a missing recipient defaults to {contact} and is NOT a reason for rejection
3. Check the per-transaction limit (max {_money(policy.per_txn_max)})
4. Check the daily limit (current today: {_money(today_total)}, remaining: {_money(remaining)})
5. If ALL rules pass, use the payout tool to send {currency} to the recipient

Process this expense claim: "{claim_text}"

Always reply with a JSON object with status (approved/rejected), amount, purpose, recipient, and reason or transaction ID."""


def _first_json_object(text: str) -> dict[str, Any] | None:
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def _infer_status(text: str) -> ClaimStatus:
    lowered = text.lower()
    if "approved" in lowered or "success" in lowered:
        return ClaimStatus.APPROVED
    return ClaimStatus.REJECTED


def _as_reply(raw: Any) -> AgentReply:
    if isinstance(raw, AgentReply):
        return raw
    if isinstance(raw, str):
        return AgentReply(text=raw)
    if isinstance(raw, Mapping):
        calls = tuple(
            call
            if isinstance(call, ToolCallRecord)
            else ToolCallRecord(
                name=str(call.get("name") or ""),
                args=call.get("args"),
                result=call.get("result"),
            )
            for call in raw.get("tool_calls") or ()
        )
        return AgentReply(text=str(raw.get("text") or ""), tool_calls=calls)
    return AgentReply(text=str(raw))


def is_payout_tool(name: str) -> bool:
    lowered = name.lower()
    return any(term in lowered for term in PAYOUT_TOOL_TERMS)


def verified_transaction_id(tool_calls: Sequence[ToolCallRecord]) -> str | None:
    """Return the first transaction id found in a structured payout tool result."""
    for call in tool_calls:
        if not is_payout_tool(call.name) or call.result is None:
            continue
        tx_id = extract_transaction_id(classify_result(call.result))
        if tx_id is not None:
            return tx_id
    return None


def _optional_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if amount >= 0 else None


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_agent_reply(raw: Any, claim_text: str) -> AgentOpinion:
    """Turn whatever the agent returned into an :class:`AgentOpinion`.

    The first JSON object in the reply text wins; otherwise the status is inferred
    from keywords. Any transaction id the agent merely claims is dropped unless a
    payout tool call backs it.
    """
    reply = _as_reply(raw)
    data = _first_json_object(reply.text)
    if data is not None:
        status_text = str(data.get("status") or "").strip().lower()
        status = ClaimStatus.APPROVED if status_text == "approved" else ClaimStatus.REJECTED
        amount = _optional_float(data.get("amount"))
        purpose = _optional_text(data.get("purpose"))
        recipient = _optional_text(data.get("recipient"))
        reason = _optional_text(data.get("reason"))
        claimed = _optional_text(
            data.get("txId") or data.get("tx_id") or data.get("transactionId")
        )
    else:
        status = _infer_status(reply.text)
        amount = extract_amount(reply.text)
        purpose = None
        recipient = None
        reason = _optional_text(reply.text)
        claimed = None

    verified = verified_transaction_id(reply.tool_calls)
    if claimed is not None and claimed != verified:
        _logger.warning(
            "discarding transaction id %r claimed by agent without a verified tool result",
            claimed,
        )

    return AgentOpinion(
        status=status,
        amount=amount if amount else extract_amount(claim_text),
        purpose=purpose or claim_text,
        recipient=recipient,
        reason=reason,
        tx_id=verified,
        payout_tool_called=any(is_payout_tool(call.name) for call in reply.tool_calls),
    )
