"""Payment tool provider boundary, recipient classification and tool selection."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..errors import ToolDiscoveryError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

GENERIC_PAYOUT_TERMS = ("payout", "send", "payment", "transfer")


@runtime_checkable
class ToolProvider(Protocol):
    """External payment-tool provider.

    ``list_tools`` may return a sequence or an awaitable of one. Providers may also
    expose ``call_tool(server_name, tool_name, params)``; tools may expose
    ``invoke(params)`` or ``ainvoke(params)``. Either may be sync or async.
    """

    def list_tools(self) -> Any:
        ...


class RecipientKind(str, Enum):
    ADDRESS = "address"
    EMAIL = "email"
    CONTACT = "contact"


TOOL_PREFERENCES: dict[RecipientKind, tuple[str, ...]] = {
    RecipientKind.ADDRESS: ("send_to_address", "send_to_contact", "send_to_email"),
    RecipientKind.EMAIL: ("send_to_email", "send_to_contact", "send_to_address"),
    RecipientKind.CONTACT: ("send_to_contact", "send_to_address", "send_to_email"),
}


def classify_recipient(recipient: str) -> RecipientKind:
    if _ADDRESS_RE.match(recipient):
        return RecipientKind.ADDRESS
    if "@" in recipient:
        return RecipientKind.EMAIL
    return RecipientKind.CONTACT


def tool_name(tool: Any) -> str:
    if isinstance(tool, Mapping):
        return str(tool.get("name") or "")
    return str(getattr(tool, "name", "") or "")


def _preference_orderings(kind: RecipientKind) -> list[tuple[str, ...]]:
    others = [TOOL_PREFERENCES[k] for k in RecipientKind if k is not kind]
    return [TOOL_PREFERENCES[kind], *others]


def select_tool(tools: Sequence[Any], kind: RecipientKind) -> Any:
    """Pick the payout tool best matching the recipient kind.

    Exact names in the preferred ordering win, then names ending with a preferred
    name (provider-prefixed tools), walking the other orderings as fallback, then
    any tool whose name looks like a payout.
    """
    named = [(tool_name(tool), tool) for tool in tools if tool_name(tool)]
    orderings = _preference_orderings(kind)
    for ordering in orderings:
        for wanted in ordering:
            for name, tool in named:
                if name == wanted:
                    return tool
    for ordering in orderings:
        for wanted in ordering:
            for name, tool in named:
                if name.lower().endswith(wanted):
                    return tool
    for name, tool in named:
        lowered = name.lower()
        if any(term in lowered for term in GENERIC_PAYOUT_TERMS):
            return tool
    available = ", ".join(name for name, _ in named) or "none"
    raise ToolDiscoveryError(f"No payout tool found. Available tools: {available}")
