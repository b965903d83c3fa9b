from __future__ import annotations
import argparse
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_settings, with_overrides, StorageSettings
from .observability import configure_logging
from .service import ClaimService

POLICY_ENV = "CLAIMFLOW_POLICY"


def _dump(obj: Any) -> None:
    print(json.dumps(obj, indent=2, default=str))


def _claims_from_file(path: Path) -> List[Dict[str, Any]]:
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = [data]
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="claimflow", description="Expense claim decision workflow")
    parser.add_argument("--policy", type=Path, default=None, help=f"Policy YAML (default: ${POLICY_ENV} or config/policy.yaml)")
    parser.add_argument("--db", default=None, help="SQLAlchemy URL; overrides storage.url")
    sub = parser.add_subparsers(dest="command", required=True)

    s = sub.add_parser("submit", help="Run one claim through the workflow")
    s.add_argument("--owner", required=True)
    s.add_argument("--amount", required=True, type=float)
    s.add_argument("--category", required=True)
    s.add_argument("--description", required=True)
    s.add_argument("--evidence", action="store_true", help="Supporting evidence was provided")

    b = sub.add_parser("batch", help="Submit every claim in a JSON file concurrently")
    b.add_argument("file", type=Path)
    b.add_argument("--workers", type=int, default=4)

    g = sub.add_parser("show", help="Print a stored claim")
    g.add_argument("identity")

    q = sub.add_parser("list", help="Page through an owner's claims")
    q.add_argument("owner")
    q.add_argument("--cursor", default=None)

    r = sub.add_parser("review", help="Apply a manual decision to a claim awaiting review")
    r.add_argument("identity")
    r.add_argument("decision", choices=["APPROVED", "REJECTED"])
    r.add_argument("reason")
    r.add_argument("--reviewer", default=None)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    policy_path = args.policy or (Path(os.environ[POLICY_ENV]) if os.environ.get(POLICY_ENV) else None)
    settings = load_settings(policy_path)
    if args.db:
        settings = with_overrides(settings, storage=StorageSettings(url=args.db, page_size=settings.storage.page_size))
    configure_logging(settings.logging.level, settings.logging.format)

    service = ClaimService(settings)

    if args.command == "submit":
        result = service.submit({
            "owner_id": args.owner,
            "amount": args.amount,
            "category": args.category,
            "description": args.description,
            "evidence_provided": args.evidence,
        })
        _dump({"identity": result.identity, "outcome": result.outcome, "created": result.created,
               "reasons": result.record["decision"]["reasons"]})
    elif args.command == "batch":
        results = service.submit_many(_claims_from_file(args.file), max_workers=args.workers)
        _dump([{"identity": r.identity, "outcome": r.outcome, "created": r.created} for r in results])
    elif args.command == "show":
        record = service.get_by_identity(args.identity)
        if record is None:
            print(f"Claim {args.identity} not found")
            return 1
        _dump(record)
    elif args.command == "list":
        page = service.query_by_owner(args.owner, args.cursor)
        _dump({"records": page.records, "next_cursor": page.next_cursor})
    elif args.command == "review":
        outcome = service.apply_manual_decision(args.identity, args.decision, args.reason, args.reviewer)
        if not outcome.success:
            print(outcome.error)
            return 1
        _dump(outcome.record)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
