"""Tool results as a tagged union, and the only place transaction ids are trusted.

A payment tool may return almost anything. Results are classified once into
:class:`StructuredResult`, :class:`OpaqueResult` or :class:`FailedResult`, and a
transaction id is only ever read from the structured variant.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Union

TRANSACTION_ID_FIELDS = (
    "transactionId",
    "transaction_id",
    "txId",
    "tx_id",
    "txHash",
    "tx_hash",
    "id",
)

# Envelopes some providers wrap the payment record in.
_NESTED_KEYS = ("data", "result", "transaction", "payout")

PLACEHOLDER_IDS = frozenset({"", "pending", "success", "ok", "true", "false", "unknown", "none", "null"})


@dataclass(frozen=True)
class StructuredResult:
    fields: Mapping[str, Any]
    kind: Literal["structured"] = field(default="structured", init=False)


@dataclass(frozen=True)
class OpaqueResult:
    raw: str
    kind: Literal["opaque"] = field(default="opaque", init=False)


@dataclass(frozen=True)
class FailedResult:
    error: str
    kind: Literal["failed"] = field(default="failed", init=False)


ToolResult = Union[StructuredResult, OpaqueResult, FailedResult]


def _parse_json_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _content_text(blocks: Any) -> list[str]:
    texts: list[str] = []
    if not isinstance(blocks, list):
        return texts
    for block in blocks:
        if isinstance(block, Mapping) and isinstance(block.get("text"), str):
            texts.append(block["text"])
        elif isinstance(block, str):
            texts.append(block)
    return texts


def classify_result(value: Any) -> ToolResult:
    """Turn a raw tool return value into a :data:`ToolResult`."""
    if isinstance(value, (StructuredResult, OpaqueResult, FailedResult)):
        return value
    if isinstance(value, Mapping):
        texts = _content_text(value.get("content"))
        if value.get("isError") is True:
            return FailedResult(error=" ".join(texts) or "tool reported an error")
        if texts and not any(key in value for key in TRANSACTION_ID_FIELDS):
            for text in texts:
                parsed = _parse_json_object(text)
                if parsed is not None:
                    return StructuredResult(fields=parsed)
            return OpaqueResult(raw=" ".join(texts))
        return StructuredResult(fields=dict(value))
    if isinstance(value, str):
        parsed = _parse_json_object(value.strip())
        if parsed is not None:
            return classify_result(parsed)
        return OpaqueResult(raw=value)
    if isinstance(value, list):
        texts = _content_text(value)
        for text in texts:
            parsed = _parse_json_object(text)
            if parsed is not None:
                return StructuredResult(fields=parsed)
        return OpaqueResult(raw=" ".join(texts) if texts else repr(value))
    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        return classify_result(model_dump())
    if value is None:
        return OpaqueResult(raw="")
    return OpaqueResult(raw=str(value))


def _id_from_fields(fields: Mapping[str, Any]) -> str | None:
    for key in TRANSACTION_ID_FIELDS:
        candidate = fields.get(key)
        if isinstance(candidate, bool) or not isinstance(candidate, (str, int)):
            continue
        text = str(candidate).strip()
        if text.lower() in PLACEHOLDER_IDS:
            continue
        return text
    return None


def extract_transaction_id(result: ToolResult) -> str | None:
    """Return an authentic transaction id, or None.

    Opaque strings, failures, bare success flags and pending placeholders never
    yield an id.
    """
    if not isinstance(result, StructuredResult):
        return None
    found = _id_from_fields(result.fields)
    if found is not None:
        return found
    for key in _NESTED_KEYS:
        nested = result.fields.get(key)
        if isinstance(nested, Mapping):
            found = _id_from_fields(nested)
            if found is not None:
                return found
    return None
