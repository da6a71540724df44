"""Command-line interface for autopay."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from autopay.config import Settings
from autopay.errors import PolicyError
from autopay.ledger import JSONLAuditLedger, SQLiteAuditLedger, to_csv, to_json, to_ndjson
from autopay.ledger.base import AuditLedger
from autopay.policies import PolicyStore, PolicyUpdate
from autopay.rules import RuleEvaluator, utc_today

_STATUS_STYLES = {"approved": "green", "rejected": "red", "review": "yellow"}


def _console() -> Console:
    return Console(highlight=False)


def _open_ledger(args: argparse.Namespace, settings: Settings) -> AuditLedger:
    path = args.ledger or settings.ledger_path
    if args.backend == "sqlite":
        return SQLiteAuditLedger(path)
    return JSONLAuditLedger(path)


def _open_policies(args: argparse.Namespace, settings: Settings) -> PolicyStore:
    return PolicyStore(settings, path=args.policy)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="autopay", add_help=True)
    parser.add_argument("--ledger", type=Path, help="Path to the audit ledger")
    parser.add_argument(
        "--backend",
        choices=("jsonl", "sqlite"),
        default="jsonl",
        help="Audit ledger backend",
    )
    parser.add_argument("--policy", type=Path, help="Path to the policy JSON file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    audit_parser = subparsers.add_parser("audit", help="Inspect the audit ledger")
    audit_sub = audit_parser.add_subparsers(dest="audit_command", required=True)
    export_parser = audit_sub.add_parser("export", help="Export audit entries")
    export_parser.add_argument(
        "--format",
        choices=("json", "ndjson", "csv"),
        default="json",
        help="Output format",
    )
    export_parser.add_argument("--output", type=Path, help="Output file path")
    audit_sub.add_parser("show", help="Print the audit ledger as a table")
    total_parser = audit_sub.add_parser("total", help="Approved total for one UTC day")
    total_parser.add_argument("--date", help="UTC date as YYYY-MM-DD (default: today)")

    policy_parser = subparsers.add_parser("policy", help="Show or update the spending policy")
    policy_sub = policy_parser.add_subparsers(dest="policy_command", required=True)
    policy_sub.add_parser("show", help="Print the effective policy as JSON")
    set_parser = policy_sub.add_parser("set", help="Apply a partial policy update")
    set_parser.add_argument(
        "--contact",
        dest="contacts",
        action="append",
        help="Whitelisted contact (repeatable; replaces the whitelist)",
    )
    set_parser.add_argument("--default-contact", dest="default_contact", help="Default recipient")
    set_parser.add_argument("--per-txn-max", dest="per_txn_max", type=float, help="Per-transaction maximum")
    set_parser.add_argument("--daily-max", dest="daily_max", type=float, help="Daily maximum")

    evaluate_parser = subparsers.add_parser("evaluate", help="Dry-run the built-in rules")
    evaluate_parser.add_argument("amount", type=float, help="Claim amount")
    evaluate_parser.add_argument("--recipient", help="Recipient to check against the whitelist")

    return parser.parse_args(argv)


def _cmd_audit_export(ledger: AuditLedger, output_format: str, output_path: Path | None) -> int:
    entries = ledger.get_all_entries()
    if output_format == "csv":
        rendered = to_csv(entries) + "\n"
    elif output_format == "ndjson":
        rendered = to_ndjson(entries)
    else:
        rendered = to_json(entries) + "\n"
    if output_path is None:
        sys.stdout.write(rendered)
        return 0
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(rendered, encoding="utf-8", newline="")
    except OSError as exc:
        print(f"export failed: {exc}", file=sys.stderr)
        return 1
    return 0


def _cmd_audit_show(ledger: AuditLedger) -> int:
    entries = ledger.get_all_entries()
    table = Table(title=f"Audit log ({len(entries)} entries)")
    for column in ("Timestamp", "Status", "Amount", "Recipient", "Purpose", "Tx", "Reason"):
        table.add_column(column, justify="right" if column == "Amount" else "left")
    for entry in entries:
        style = _STATUS_STYLES.get(entry.status.value, "")
        table.add_row(
            escape(entry.to_payload()["timestamp"]),
            f"[{style}]{entry.status.value}[/{style}]" if style else entry.status.value,
            f"${entry.amount:.2f}",
            escape(entry.recipient or ""),
            escape(entry.purpose),
            escape(entry.tx_id or ""),
            escape(entry.reason or entry.error or ""),
        )
    _console().print(table)
    return 0


def _cmd_audit_total(ledger: AuditLedger, day: str | None) -> int:
    if day is None:
        day = utc_today()
    else:
        try:
            day = date.fromisoformat(day).isoformat()
        except ValueError:
            print("invalid --date, expected YYYY-MM-DD", file=sys.stderr)
            return 2
    total = ledger.get_daily_total(day)
    print(json.dumps({"date": day, "total": round(total, 2)}))
    return 0


def _cmd_policy_show(store: PolicyStore) -> int:
    print(json.dumps(store.get().to_payload(), indent=2))
    return 0


def _cmd_policy_set(store: PolicyStore, args: argparse.Namespace) -> int:
    update = PolicyUpdate(
        whitelisted_contacts=args.contacts,
        default_contact=args.default_contact,
        per_txn_max=args.per_txn_max,
        daily_max=args.daily_max,
    )
    try:
        policy = store.set(update)
    except PolicyError as exc:
        print(f"policy update rejected: {exc}", file=sys.stderr)
        return 2
    except OSError as exc:
        print(f"policy update failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(policy.to_payload(), indent=2))
    return 0


def _cmd_evaluate(store: PolicyStore, ledger: AuditLedger, amount: float, recipient: str | None) -> int:
    if amount < 0:
        print("amount must be >= 0", file=sys.stderr)
        return 2
    evaluation = RuleEvaluator(policies=store, ledger=ledger).evaluate(amount, recipient)
    verdict = "approve" if evaluation.approved else "deny"
    table = Table(title=f"Rules for ${amount:.2f}: {verdict}")
    table.add_column("Rule")
    table.add_column("Result")
    table.add_column("Weight", justify="right")
    table.add_column("Reason")
    for result in evaluation.results:
        table.add_row(
            result.label,
            "[green]pass[/green]" if result.passed else "[red]fail[/red]",
            f"{result.weight:+.1f}",
            escape(result.reason or ""),
        )
    console = _console()
    console.print(table)
    console.print(f"confidence: {evaluation.confidence:.2f}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    settings = Settings.from_env()
    if args.command == "audit":
        ledger = _open_ledger(args, settings)
        if args.audit_command == "export":
            return _cmd_audit_export(ledger, args.format, args.output)
        if args.audit_command == "show":
            return _cmd_audit_show(ledger)
        if args.audit_command == "total":
            return _cmd_audit_total(ledger, args.date)
    if args.command == "policy":
        store = _open_policies(args, settings)
        if args.policy_command == "show":
            return _cmd_policy_show(store)
        if args.policy_command == "set":
            return _cmd_policy_set(store, args)
    if args.command == "evaluate":
        return _cmd_evaluate(
            _open_policies(args, settings),
            _open_ledger(args, settings),
            args.amount,
            args.recipient,
        )
    print("unknown command", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
