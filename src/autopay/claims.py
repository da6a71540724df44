"""Claim intake: validation, canonical text rendering and best-effort amount recovery."""

from __future__ import annotations

import inspect
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from pydantic import ValidationError

from .errors import ClaimInputError
from .types import Claim

MISSING_FIELDS_REASON = 'Missing required fields: provide either "text" or both "amount" and "purpose".'

_AMOUNT_RE = re.compile(r"\$?([\d.]+)")

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedClaim:
    """Amount, purpose and optional recipient resolved from a claim."""

    amount: float
    purpose: str
    recipient: str | None = None


class ClaimParser(Protocol):
    """Natural-language claim parser. ``parse`` may be sync or async."""

    def parse(self, text: str) -> Any:
        ...


def extract_amount(text: str | None) -> float:
    """Return the first number in ``text`` (optionally ``$``-prefixed), or 0.0."""
    if not text:
        return 0.0
    for match in _AMOUNT_RE.finditer(text):
        try:
            return float(match.group(1))
        except ValueError:
            continue
    return 0.0


def render_claim_text(amount: float, purpose: str, recipient: str | None = None) -> str:
    text = f"Reimburse ${amount:.2f} for {purpose}"
    if recipient:
        text += f" to {recipient}"
    return text


def normalize_claim(raw: Claim | Mapping[str, Any] | str) -> Claim:
    """Validate raw input into a :class:`Claim`.

    Raises:
        ClaimInputError: the input has neither text nor both amount and purpose,
            or a field is invalid (e.g. a negative amount).
    """
    if isinstance(raw, Claim):
        claim = raw
    elif isinstance(raw, str):
        claim = Claim(text=raw)
    else:
        try:
            claim = Claim.model_validate(dict(raw))
        except ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            detail = first.get("msg") or str(exc)
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ClaimInputError(f"Invalid claim {field}: {detail}" if field else detail) from exc
    if claim.text is None and not claim.is_structured:
        raise ClaimInputError(MISSING_FIELDS_REASON)
    return claim


def claim_text(claim: Claim) -> str:
    """Text handed to the agent: the free text, or the rendered structured claim."""
    if claim.text:
        return claim.text
    assert claim.amount is not None and claim.purpose is not None
    return render_claim_text(claim.amount, claim.purpose, claim.recipient)


def _coerce_parsed(value: Any, text: str) -> ParsedClaim:
    if isinstance(value, ParsedClaim):
        return value
    if isinstance(value, Mapping):
        data = value
    else:
        dump = getattr(value, "model_dump", None)
        data = dump() if callable(dump) else vars(value)
    amount = data.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount < 0:
        raise ValueError("Invalid amount in parsed claim")
    recipient = data.get("recipient")
    return ParsedClaim(
        amount=float(amount),
        purpose=str(data.get("purpose") or text),
        recipient=str(recipient).strip() or None if recipient else None,
    )


async def resolve_claim(claim: Claim, parser: ClaimParser | None = None) -> ParsedClaim:
    """Resolve amount, purpose and recipient.

    Structured claims are taken as-is. Free text goes through ``parser`` when one
    is configured; without a parser, or when it fails, the amount is recovered
    with :func:`extract_amount` and the text becomes the purpose.
    """
    if claim.is_structured:
        assert claim.amount is not None and claim.purpose is not None
        return ParsedClaim(amount=claim.amount, purpose=claim.purpose, recipient=claim.recipient)

    text = claim.text or ""
    if parser is not None:
        try:
            result = parser.parse(text)
            if inspect.isawaitable(result):
                result = await result
            parsed = _coerce_parsed(result, text)
        except Exception as exc:
            _logger.warning("claim parser failed, falling back to amount extraction: %s", exc)
        else:
            if parsed.recipient is None and claim.recipient:
                parsed = ParsedClaim(parsed.amount, parsed.purpose, claim.recipient)
            return parsed
    return ParsedClaim(amount=extract_amount(text), purpose=text, recipient=claim.recipient)
