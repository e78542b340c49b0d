"""
CLI entrypoint for the login page audit engine.

- seed / add-target / list manage the registered targets
- audit runs one audit (optionally in a visible, slowed-down browser)
- audit-all runs every active target in parallel worker slots and writes a
  batch report
- history prints stored results for one target

ETHICAL USE ONLY: the audit loads public login pages and reads them. It never
submits forms or tries credentials.
"""

import argparse
import sys
from typing import List, Optional

from auditor import build_orchestrator
from audit_store import AuditStore
from batch_runner import run_batch
from config import AuditSettings, load_settings
from errors import (
    AuditFailedError,
    DuplicateTargetError,
    InvalidTargetError,
    TargetNotFound,
    TargetStoreError,
)
from logging_utils import configure_logging, get_logger
from progress import LoggingProgressObserver
from report_generator import build_pdf_report, build_text_report, save_batch_report
from risk_model import risk_level
from seed_targets import seed_targets
from target_store import TargetStore

logger = get_logger("login_audit")

EXIT_OK = 0
EXIT_AUDIT_FAILED = 1
EXIT_UNKNOWN_TARGET = 2


def cmd_seed(args, settings: AuditSettings) -> int:
    try:
        counts = seed_targets(TargetStore(settings.targets_file))
    except TargetStoreError as exc:
        print(f"Cannot seed targets: {exc}", file=sys.stderr)
        return EXIT_AUDIT_FAILED
    print(f"Seeded targets: {counts['created']} created, {counts['updated']} updated")
    return EXIT_OK


def cmd_add_target(args, settings: AuditSettings) -> int:
    store = TargetStore(settings.targets_file)
    try:
        target = store.register_target(
            name=args.name,
            code=args.code,
            login_url=args.url,
            description=args.description,
            active=not args.inactive,
        )
    except (DuplicateTargetError, InvalidTargetError, TargetStoreError) as exc:
        print(f"Cannot register target: {exc}", file=sys.stderr)
        return EXIT_AUDIT_FAILED
    print(f"Registered {target.code}: {target.name} -> {target.login_url}")
    return EXIT_OK


def cmd_list(args, settings: AuditSettings) -> int:
    targets = TargetStore(settings.targets_file).list_targets(active_only=args.active)
    if not targets:
        print("No targets registered. Run: seed")
        return EXIT_OK
    for t in targets:
        flag = "" if t.active else " (inactive)"
        print(f"{t.code:<12} {t.name:<32} {t.login_url}{flag}")
    return EXIT_OK


def cmd_audit(args, settings: AuditSettings) -> int:
    orchestrator = build_orchestrator(settings, progress=LoggingProgressObserver())
    try:
        result = orchestrator.run_audit(args.code, verbose=args.verbose, raise_on_failure=True)
        exit_code = EXIT_OK
    except TargetNotFound as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_UNKNOWN_TARGET
    except AuditFailedError as exc:
        result = exc.result
        exit_code = EXIT_AUDIT_FAILED
    finally:
        orchestrator.shutdown()

    print(build_text_report(result))
    if args.pdf:
        with open(args.pdf, "wb") as fh:
            fh.write(build_pdf_report(result))
        print(f"PDF report written to {args.pdf}")
    return exit_code


def cmd_audit_all(args, settings: AuditSettings) -> int:
    store = TargetStore(settings.targets_file)
    codes = [t.code for t in store.list_targets(active_only=True)]
    if not codes:
        print("No active targets found. Run: seed")
        return EXIT_OK

    orchestrator = build_orchestrator(settings, progress=LoggingProgressObserver())
    try:
        attempts = run_batch(
            orchestrator,
            codes,
            max_workers=args.workers or settings.max_workers,
            verbose=args.verbose,
        )
    finally:
        orchestrator.shutdown()

    paths = save_batch_report(attempts, out_dir=args.report_dir or settings.report_dir)
    ok = sum(1 for a in attempts if a.success)
    print(f"\nAudits: {len(attempts)} total, {ok} successful, {len(attempts) - ok} failed")
    for attempt in attempts:
        if attempt.success:
            r = attempt.result
            print(f"  OK   {attempt.target_code:<12} risk {r.risk_score:>3}/100 ({risk_level(r.risk_score)})")
        else:
            print(f"  FAIL {attempt.target_code:<12} {attempt.error}")
    print("\nSaved reports:")
    for kind, path in paths.items():
        print(f"- {kind.upper()}: {path}")
    return EXIT_OK if ok == len(attempts) else EXIT_AUDIT_FAILED


def cmd_history(args, settings: AuditSettings) -> int:
    results = AuditStore(settings.audits_file).history(args.code, limit=args.limit)
    if not results:
        print(f"No audits stored for {args.code.upper()}")
        return EXIT_OK
    for r in results:
        print(f"{r.timestamp.isoformat()}  {r.status.value:<9} risk {r.risk_score:>3}/100  "
              f"TLS {r.tls.grade:<7} headers {r.headers.grade} auth {r.auth.grade} csrf {r.csrf.grade}")
    return EXIT_OK


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(
        description="Non-intrusive security audit of banking login pages."
    )
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("seed", help="Register the built-in list of institutions").set_defaults(func=cmd_seed)

    add = sub.add_parser("add-target", help="Register a new login page")
    add.add_argument("--name", required=True)
    add.add_argument("--code", required=True)
    add.add_argument("--url", required=True, help="Login page URL")
    add.add_argument("--description")
    add.add_argument("--inactive", action="store_true", help="Register but exclude from audit-all")
    add.set_defaults(func=cmd_add_target)

    lst = sub.add_parser("list", help="List registered targets")
    lst.add_argument("--active", action="store_true", help="Only active targets")
    lst.set_defaults(func=cmd_list)

    audit = sub.add_parser("audit", help="Audit one target")
    audit.add_argument("code")
    audit.add_argument("--verbose", action="store_true",
                       help="Visible browser with slow motion and devtools")
    audit.add_argument("--pdf", help="Also write a PDF report to this path")
    audit.set_defaults(func=cmd_audit)

    audit_all = sub.add_parser("audit-all", help="Audit every active target")
    audit_all.add_argument("--workers", type=int, help="Parallel browser sessions")
    audit_all.add_argument("--verbose", action="store_true")
    audit_all.add_argument("--report-dir", help="Where to write the batch report")
    audit_all.set_defaults(func=cmd_audit_all)

    history = sub.add_parser("history", help="Show stored audits for a target")
    history.add_argument("code")
    history.add_argument("--limit", type=int, default=10)
    history.set_defaults(func=cmd_history)

    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)
    return args.func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
