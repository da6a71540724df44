"""Discovers the payment tool and executes a payout through ranked candidates.

Candidates are tried strictly one at a time. The first accepted invocation ends
the search, so at most one external payment is ever accepted per claim.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Sequence, TypeVar

from ..cache import InMemoryCache, KeyValueCache
from ..config import Settings
from ..errors import PayoutExecutionError, ToolDiscoveryError
from ..redaction import redact_params, redact_text
from .candidates import PayoutCandidate, build_candidates
from .results import FailedResult, ToolResult, classify_result, extract_transaction_id
from .schema import introspect_tool
from .tools import ToolProvider, classify_recipient, select_tool, tool_name

DEFAULT_MAX_ERROR_LENGTH: int = 500

_logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _maybe_await(value: T | Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass(frozen=True)
class PayoutAttempt:
    method: str
    candidate: PayoutCandidate
    error: str


@dataclass(frozen=True)
class PayoutReceipt:
    """An accepted payout and the transaction id it yielded, if any."""

    tool_name: str
    method: str
    candidate: PayoutCandidate
    result: ToolResult
    tx_id: str | None
    attempts: tuple[PayoutAttempt, ...] = field(default_factory=tuple)


class PayoutExecutor:
    def __init__(
        self,
        provider: ToolProvider,
        *,
        settings: Settings | None = None,
        cache: KeyValueCache | None = None,
        cache_key: str = "default",
        secrets: tuple[str, ...] = (),
    ) -> None:
        self.provider = provider
        self.settings = settings or Settings()
        self.cache = cache if cache is not None else InMemoryCache()
        self.cache_key = cache_key
        self._secrets = secrets

    @property
    def _tools_key(self) -> str:
        return f"tools:{self.cache_key}"

    def _clean(self, message: str) -> str:
        return redact_text(message, self._secrets)[:DEFAULT_MAX_ERROR_LENGTH]

    async def discover_tools(self) -> list[Any]:
        cached = self.cache.get(self._tools_key)
        if cached is not None:
            return list(cached)
        try:
            raw = await _maybe_await(self.provider.list_tools())
        except Exception as exc:
            raise ToolDiscoveryError(
                f"Failed to list payment tools: {self._clean(str(exc))}"
            ) from exc
        tools = [tool for tool in (raw or []) if tool_name(tool)]
        if not tools:
            raise ToolDiscoveryError("No payout tool found. Available tools: none")
        _logger.info(
            "discovered %d payment tools: %s",
            len(tools),
            ", ".join(tool_name(tool) for tool in tools),
        )
        self.cache.set(self._tools_key, tuple(tools))
        return tools

    def invalidate_tools(self) -> None:
        self.cache.delete(self._tools_key)

    async def _invoke_primary(self, name: str, params: dict[str, Any]) -> Any:
        call_tool = getattr(self.provider, "call_tool")
        return await _maybe_await(call_tool(self.settings.tool_server, name, params))

    @staticmethod
    async def _invoke_secondary(tool: Any, params: dict[str, Any]) -> Any:
        ainvoke = getattr(tool, "ainvoke", None)
        if callable(ainvoke):
            return await ainvoke(params)
        return await _maybe_await(tool.invoke(params))

    def _methods(self, tool: Any) -> list[str]:
        methods: list[str] = []
        if callable(getattr(self.provider, "call_tool", None)):
            methods.append("call_tool")
        if callable(getattr(tool, "ainvoke", None)) or callable(getattr(tool, "invoke", None)):
            methods.append("invoke")
        return methods

    async def execute(self, recipient: str, amount: float, purpose: str | None = None) -> PayoutReceipt:
        """Pay ``amount`` to ``recipient``.

        Raises:
            ToolDiscoveryError: no payment tool is available.
            PayoutExecutionError: every candidate failed on every invocation path.
        """
        tools = await self.discover_tools()
        kind = classify_recipient(recipient)
        tool = select_tool(tools, kind)
        name = tool_name(tool)
        schema = introspect_tool(tool)
        candidates = build_candidates(
            name,
            schema,
            recipient,
            amount,
            purpose,
            currency=self.settings.payout_currency,
            chain=self.settings.chain,
            network=self.settings.network,
        )
        _logger.info(
            "paying %.2f to %s via %s (%s recipient, %d candidates)",
            amount,
            recipient,
            name,
            kind.value,
            len(candidates),
        )

        methods = self._methods(tool)
        attempts: list[PayoutAttempt] = []
        for index, candidate in enumerate(candidates, start=1):
            params = dict(candidate.params)
            _logger.debug(
                "[%d/%d] trying %s params=%s",
                index,
                len(candidates),
                candidate.description,
                redact_params(params),
            )
            if not methods:
                attempts.append(
                    PayoutAttempt("none", candidate, "No callable method available (call_tool or invoke)")
                )
                continue
            for method in methods:
                try:
                    if method == "call_tool":
                        raw = await self._invoke_primary(name, params)
                    else:
                        raw = await self._invoke_secondary(tool, params)
                except Exception as exc:
                    message = self._clean(str(exc) or type(exc).__name__)
                    attempts.append(PayoutAttempt(method, candidate, message))
                    _logger.debug("%s failed for %s: %s", method, candidate.description, message)
                    continue
                result = classify_result(raw)
                if isinstance(result, FailedResult):
                    message = self._clean(result.error)
                    attempts.append(PayoutAttempt(method, candidate, message))
                    _logger.debug("%s reported error for %s: %s", method, candidate.description, message)
                    continue
                tx_id = extract_transaction_id(result)
                _logger.info(
                    "payout accepted via %s with %s (tx_id=%s)",
                    method,
                    candidate.description,
                    tx_id or "unverified",
                )
                return PayoutReceipt(
                    tool_name=name,
                    method=method,
                    candidate=candidate,
                    result=result,
                    tx_id=tx_id,
                    attempts=tuple(attempts),
                )

        raise PayoutExecutionError(
            _failure_message(len(candidates), attempts),
            attempts=tuple(attempts),
            last_error=attempts[-1].error if attempts else None,
        )


def _failure_message(total: int, attempts: Sequence[PayoutAttempt]) -> str:
    message = f"All {total} parameter combinations failed. "
    if not attempts:
        return message + "Last error: Unknown"
    last = attempts[-1]
    params = json.dumps(redact_params(dict(last.candidate.params)), default=str)
    return message + f"Last attempt: {last.method} with params {params}. Error: {last.error}"
