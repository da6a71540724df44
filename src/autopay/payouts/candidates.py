"""Ranked candidate parameter payloads for a payment tool with an unknown contract."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping

from .schema import ToolSchema

RECIPIENT_FIELDS = ("contact", "address", "email", "recipient", "to")
AMOUNT_FIELDS = ("amount", "value", "usdc_amount")
MEMO_FIELDS = ("memo", "note", "purpose", "description")
MINOR_UNIT_FIELDS = frozenset({"usdc_amount"})
MINOR_UNITS_PER_TOKEN = 1_000_000

DEFAULT_MEMO = "Expense reimbursement"


@dataclass(frozen=True)
class PayoutCandidate:
    description: str
    params: Mapping[str, Any]

    def canonical(self) -> str:
        return json.dumps(dict(self.params), sort_keys=True, separators=(",", ":"), default=str)


def to_minor_units(amount: float) -> int:
    return int(round(amount * MINOR_UNITS_PER_TOKEN))


def _amount_value(field_name: str, amount: float) -> Any:
    if field_name.lower() in MINOR_UNIT_FIELDS:
        return to_minor_units(amount)
    return amount


def _schema_candidates(
    schema: ToolSchema,
    recipient: str,
    amount: float,
    purpose: str | None,
    *,
    currency: str,
    chain: str,
    network: str,
) -> list[PayoutCandidate]:
    recipient_field = schema.find(*RECIPIENT_FIELDS)
    amount_field = schema.find(*AMOUNT_FIELDS)
    if recipient_field is None or amount_field is None:
        return []

    value = _amount_value(amount_field, amount)
    candidates: list[PayoutCandidate] = []

    full: dict[str, Any] = {recipient_field: recipient, amount_field: value}
    for name in schema.param_names:
        lowered = name.lower()
        if lowered in ("currency", "token") and name not in full:
            full[name] = currency
        elif lowered in MEMO_FIELDS:
            full[name] = purpose or DEFAULT_MEMO
        elif lowered == "chain" and name not in full:
            full[name] = chain
        elif lowered == "network" and name not in full:
            full[name] = network
    if len(full) > 2:
        candidates.append(
            PayoutCandidate(f"all schema params: {', '.join(full)}", full)
        )

    token_field = schema.find("token")
    if token_field is not None:
        candidates.append(
            PayoutCandidate(
                "exact schema with token",
                {recipient_field: recipient, amount_field: value, token_field: currency},
            )
        )
    currency_field = schema.find("currency")
    if currency_field is not None:
        candidates.append(
            PayoutCandidate(
                "exact schema with currency",
                {recipient_field: recipient, amount_field: value, currency_field: currency},
            )
        )
    candidates.append(
        PayoutCandidate(
            f"exact schema: {recipient_field} + {amount_field}",
            {recipient_field: recipient, amount_field: value},
        )
    )
    return candidates


def _guessed_candidates(
    field_name: str,
    recipient: str,
    amount: float,
    *,
    currency: str,
    chain: str,
    network: str,
    short: bool,
) -> list[PayoutCandidate]:
    guesses = [
        PayoutCandidate(f"{field_name} + amount (number)", {field_name: recipient, "amount": amount}),
        PayoutCandidate(f"{field_name} + amount (string)", {field_name: recipient, "amount": f"{amount:.2f}"}),
        PayoutCandidate(
            f"{field_name} + amount + currency",
            {field_name: recipient, "amount": amount, "currency": currency},
        ),
        PayoutCandidate(
            f"{field_name} + usdc_amount (minor units)",
            {field_name: recipient, "usdc_amount": to_minor_units(amount)},
        ),
    ]
    if short:
        return guesses
    guesses.extend(
        [
            PayoutCandidate(
                f"{field_name} + value + currency",
                {field_name: recipient, "value": amount, "currency": currency},
            ),
            PayoutCandidate(
                f"{field_name} + amount + token",
                {field_name: recipient, "amount": amount, "token": currency},
            ),
            PayoutCandidate(
                f"{field_name} + amount + currency + chain/network",
                {
                    field_name: recipient,
                    "amount": amount,
                    "currency": currency,
                    "chain": chain,
                    "network": network,
                },
            ),
        ]
    )
    return guesses


def build_candidates(
    tool_name: str,
    schema: ToolSchema,
    recipient: str,
    amount: float,
    purpose: str | None = None,
    *,
    currency: str = "USDC",
    chain: str = "base",
    network: str = "mainnet",
) -> list[PayoutCandidate]:
    """Return de-duplicated candidates, schema-derived first, then name-based guesses."""
    candidates = _schema_candidates(
        schema, recipient, amount, purpose, currency=currency, chain=chain, network=network
    )

    lowered = tool_name.lower()
    guessed_field = next((f for f in ("contact", "address", "email") if f in lowered), None)
    if guessed_field is not None:
        candidates.extend(
            _guessed_candidates(
                guessed_field,
                recipient,
                amount,
                currency=currency,
                chain=chain,
                network=network,
                short=guessed_field == "email",
            )
        )
    elif not candidates:
        candidates.extend(
            [
                PayoutCandidate("recipient + amount", {"recipient": recipient, "amount": amount}),
                PayoutCandidate(
                    "recipient + amount + currency",
                    {"recipient": recipient, "amount": amount, "currency": currency},
                ),
            ]
        )

    seen: set[str] = set()
    unique: list[PayoutCandidate] = []
    for candidate in candidates:
        key = candidate.canonical()
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique
