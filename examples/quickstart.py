"""Quickstart demo for AutoPay."""

from __future__ import annotations

import asyncio
import itertools
from pathlib import Path
from typing import Any

from autopay import AdjudicationEngine, Settings, TenantContext
from autopay.ledger.jsonl import JSONLAuditLedger


class DemoPaymentProvider:
    """In-process payment provider that pretends every transfer settles."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)

    def list_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": "send_to_contact",
                "inputSchema": {
                    "type": "object",
                    "properties": {"contact": {"type": "string"}, "amount": {"type": "number"}},
                    "required": ["contact", "amount"],
                },
            }
        ]

    def call_tool(self, server: str, name: str, params: dict[str, Any]) -> dict[str, Any]:
        print(f"  [{server}] {name}({params})")
        return {"status": "sent", "txId": f"demo-tx-{next(self._ids)}"}


async def run() -> None:
    settings = Settings(
        whitelisted_contacts=("0xABC",),
        per_txn_max=0.50,
        daily_max=3.00,
        policy_path=Path("autopay_policy.json"),
        ledger_path=Path("autopay_audit.jsonl"),
    )
    context = TenantContext.from_settings(
        settings,
        ledger=JSONLAuditLedger(settings.ledger_path),
        provider=DemoPaymentProvider(),
    )
    engine = AdjudicationEngine(context)

    claims: list[Any] = [
        {"amount": 0.35, "purpose": "Coffee with a customer"},
        "Reimburse $0.75 for team lunch",
        {"amount": 0.20, "purpose": "Parking", "recipient": "0xSOMEONE"},
    ]
    for claim in claims:
        response = await engine.adjudicate(claim)
        print(f"{response.status.value:>8}  ${response.amount:.2f}  {response.reason or response.tx_id}")

    print("\nOutputs:")
    print(f"  Audit log: {settings.ledger_path}")
    print("\nInspect the ledger:")
    print(f"  autopay --ledger {settings.ledger_path} audit show")


if __name__ == "__main__":
    asyncio.run(run())
