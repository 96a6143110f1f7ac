"""specsync CLI.

Subcommands:
  check             -> integrity report: spec files vs store (exit 2 on drift)
  import            -> import spec files into the store (guarded)
  repair            -> re-import files-only / mismatched ids and re-check (guarded)
  branch-check      -> fail when HEAD is a protected branch
  github-status     -> issue link rate and failed sync records
  github-reconcile  -> spec links vs sync records; --apply repairs (guarded)
  github-dedupe     -> back-fill numbers, drop duplicate sync records (guarded)
  github-cleanup    -> clear links to deleted GitHub issues (guarded)

Exit codes: 0 ok, 1 error, 2 drift detected, 3 protected branch.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from collections.abc import Iterable
from typing import Any

from specsync.config import CONFIG_FILENAME, SyncConfig
from specsync.errors import ProtectedBranchViolation, SpecSyncError
from specsync.github_sync import (
    GitHubSyncChecker,
    cleanup_ghost_links,
    deduplicate_sync_records,
    format_github_sync_report,
    reconcile_links,
    repair_links,
)
from specsync.integrity import IntegrityChecker, format_integrity_report
from specsync.path_validator import is_valid_identifier
from specsync.runtime import (
    build_branch_cache,
    build_github_client,
    build_store,
    ensure_specs_dir,
    execute_command,
    prepare_config,
)
from specsync.store import JsonStore
from specsync.sync_service import SyncResult, SyncService, repair_from_files

EXIT_ERROR = 1
EXIT_DRIFT = 2
EXIT_PROTECTED = 3

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=CONFIG_FILENAME)
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON")


def _build_parser() -> argparse.ArgumentParser:
    """Construct top-level CLI parser with subcommands.

    Keep ordering stable for help output readability.
    """
    p = _FormatterArgumentParser(
        prog="specsync", description="Spec file / store / GitHub issue reconciliation"
    )
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress informational logging (env: SPECSYNC_QUIET=1)",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    _add_common(sub.add_parser("check", help="Compare spec files against the store"))

    pi = sub.add_parser("import", help="Import spec files into the store")
    _add_common(pi)
    pi.add_argument(
        "--ids", nargs="+", help="Import only these spec ids (unique prefixes of stored ids work)"
    )

    _add_common(sub.add_parser("repair", help="Re-import drifted specs and re-check"))

    pb = sub.add_parser("branch-check", help="Fail when on a protected branch")
    _add_common(pb)
    pb.add_argument("--phase", help="Spec phase used to tailor branch suggestions")

    _add_common(sub.add_parser("github-status", help="Issue link status of tracked specs"))

    pr = sub.add_parser("github-reconcile", help="Compare spec links with sync records")
    _add_common(pr)
    pr.add_argument("--apply", action="store_true", help="Repair links (sync table wins)")

    pd = sub.add_parser("github-dedupe", help="Collapse duplicate sync records")
    _add_common(pd)
    pd.add_argument("--dry-run", action="store_true")

    pc = sub.add_parser("github-cleanup", help="Clear links to deleted GitHub issues")
    _add_common(pc)
    pc.add_argument("--dry-run", action="store_true")
    pc.add_argument("--repo", help="Override target repository (owner/repo)")
    return p


def _print_lines(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def _emit_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _format_sync_result(label: str, result: SyncResult) -> list[str]:
    lines = [
        f"[{label}] imported={result.imported} skipped={result.skipped} failed={result.failed}"
    ]
    lines.extend(f"  failed  {err.file}: {err.error}" for err in result.errors)
    return lines


def _cmd_check(cfg: SyncConfig, args: argparse.Namespace) -> int:
    checker = IntegrityChecker(
        build_store(cfg), build_branch_cache(cfg), integration_branches=cfg.integration_branches
    )
    report = checker.check(ensure_specs_dir(cfg))
    if args.json:
        _emit_json(report.to_dict())
    else:
        _print_lines(format_integrity_report(report))
    return 0 if report.in_sync else EXIT_DRIFT


def _resolve_ids(store: JsonStore, ids: Iterable[str]) -> list[str]:
    """Expand unique id prefixes of stored specs; anything else is passed through."""
    resolved: list[str] = []
    for spec_id in ids:
        match = None if is_valid_identifier(spec_id) else store.find_spec_by_prefix(spec_id)
        resolved.append(match.id if match else spec_id)
    return resolved


def _cmd_import(cfg: SyncConfig, args: argparse.Namespace) -> int:
    build_branch_cache(cfg).validate_branch()
    specs_dir = ensure_specs_dir(cfg)
    store = build_store(cfg)
    service = SyncService(store, default_branch=cfg.import_default_branch)
    if args.ids:
        ids = _resolve_ids(store, args.ids)
        result = asyncio.run(service.import_from_files(ids, specs_dir))
    else:
        result = asyncio.run(service.import_from_directory(specs_dir))
    if args.json:
        _emit_json(result.to_dict())
    else:
        _print_lines(_format_sync_result("import", result))
    return EXIT_ERROR if result.failed else 0


def _cmd_repair(cfg: SyncConfig, args: argparse.Namespace) -> int:
    cache = build_branch_cache(cfg)
    cache.validate_branch()
    store = build_store(cfg)
    specs_dir = ensure_specs_dir(cfg)
    checker = IntegrityChecker(store, cache, integration_branches=cfg.integration_branches)
    service = SyncService(store, default_branch=cfg.import_default_branch)
    outcome = asyncio.run(repair_from_files(service, checker, specs_dir))
    if args.json:
        _emit_json(
            {
                "before": outcome.before.to_dict(),
                "files_only": outcome.files_only.to_dict(),
                "mismatched": outcome.mismatched.to_dict(),
                "after": outcome.after.to_dict(),
            }
        )
    else:
        print(f"[repair] sync rate before: {outcome.before.sync_rate}%")
        _print_lines(_format_sync_result("repair files-only", outcome.files_only))
        _print_lines(_format_sync_result("repair mismatched", outcome.mismatched))
        _print_lines(format_integrity_report(outcome.after))
    return 0 if outcome.after.in_sync else EXIT_DRIFT


def _cmd_branch_check(cfg: SyncConfig, args: argparse.Namespace) -> int:
    cache = build_branch_cache(cfg)
    cache.validate_branch(args.phase)
    branch = cache.get_current_branch()
    if args.json:
        _emit_json({"branch": branch, "protected": False})
    else:
        print(f"[branch-check] ok: '{branch}' is not protected")
    return 0


def _cmd_github_status(cfg: SyncConfig, args: argparse.Namespace) -> int:
    report = GitHubSyncChecker(build_store(cfg)).check()
    if args.json:
        _emit_json(report.to_dict())
    else:
        _print_lines(format_github_sync_report(report))
    return 0


def _cmd_github_reconcile(cfg: SyncConfig, args: argparse.Namespace) -> int:
    store = build_store(cfg)
    if args.apply:
        build_branch_cache(cfg).validate_branch()
    report = reconcile_links(store)
    repaired = repair_links(store, report) if args.apply and not report.consistent else None
    if args.json:
        payload = report.to_dict()
        payload["repaired"] = len(repaired.repaired) if repaired else 0
        _emit_json(payload)
    else:
        if report.consistent:
            print(
                f"[github-reconcile] consistent (specs={report.checked_specs}, "
                f"records={report.checked_records})"
            )
        for item in report.inconsistencies:
            print(f"  {item.describe()}")
        if repaired:
            print(
                f"[github-reconcile] repaired={len(repaired.repaired)} "
                f"skipped={len(repaired.skipped)}"
            )
    if report.consistent or (repaired and not repaired.skipped):
        return 0
    return EXIT_DRIFT


def _cmd_github_dedupe(cfg: SyncConfig, args: argparse.Namespace) -> int:
    if not args.dry_run:
        build_branch_cache(cfg).validate_branch()
    result = deduplicate_sync_records(build_store(cfg), dry_run=args.dry_run)
    if args.json:
        _emit_json(result.to_dict())
    else:
        suffix = " (dry run)" if args.dry_run else ""
        print(
            f"[github-dedupe] backfilled={len(result.backfilled)} "
            f"removed={len(result.removed)}{suffix}"
        )
        for record in result.removed:
            print(f"  removed {record.entity_type} {record.entity_id} #{record.github_number}")
    return 0


def _cmd_github_cleanup(cfg: SyncConfig, args: argparse.Namespace) -> int:
    if not args.dry_run:
        build_branch_cache(cfg).validate_branch()
    result = cleanup_ghost_links(build_store(cfg), build_github_client(cfg), dry_run=args.dry_run)
    if args.json:
        _emit_json(result.to_dict())
    else:
        suffix = " (dry run)" if args.dry_run else ""
        print(
            f"[github-cleanup] checked={result.checked} cleared={len(result.cleared)} "
            f"failures={len(result.failures)}{suffix}"
        )
        for ghost in result.cleared:
            print(f"  cleared {ghost.spec_id} #{ghost.issue_number} ({ghost.reason})")
        for failure in result.failures:
            print(f"  failed  {failure.spec_id} #{failure.issue_number}: {failure.error}")
    return EXIT_ERROR if result.failures else 0


def _build_handlers(args: argparse.Namespace, cfg: SyncConfig) -> dict[str, Any]:
    return {
        "check": lambda: _cmd_check(cfg, args),
        "import": lambda: _cmd_import(cfg, args),
        "repair": lambda: _cmd_repair(cfg, args),
        "branch-check": lambda: _cmd_branch_check(cfg, args),
        "github-status": lambda: _cmd_github_status(cfg, args),
        "github-reconcile": lambda: _cmd_github_reconcile(cfg, args),
        "github-dedupe": lambda: _cmd_github_dedupe(cfg, args),
        "github-cleanup": lambda: _cmd_github_cleanup(cfg, args),
    }


def _report_violation(exc: ProtectedBranchViolation, as_json: bool) -> int:
    if as_json:
        _emit_json(exc.to_dict())
    else:
        print(f"[guard] {exc}", file=sys.stderr)
    return EXIT_PROTECTED


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "quiet", False) and os.environ.get("SPECSYNC_QUIET") == "1":
        args.quiet = True
    try:
        cfg = prepare_config(args)
        handlers = _build_handlers(args, cfg)
        handler = handlers.get(args.cmd)
        if handler is None:  # pragma: no cover - argparse enforces valid choices
            parser.print_help()
            return EXIT_ERROR
        return execute_command(handler, args, args.cmd)
    except ProtectedBranchViolation as exc:
        return _report_violation(exc, getattr(args, "json", False))
    except (SpecSyncError, OSError) as exc:
        print(f"[{args.cmd}] error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
