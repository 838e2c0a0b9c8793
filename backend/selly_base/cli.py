"""CLI for import job debugging and offline file checks.

Usage:
    python -m selly_base.cli list-jobs [--status queued] [--organization-id <uuid>]
    python -m selly_base.cli import-errors [--job-id <uuid>]
    python -m selly_base.cli cancel-job --job-id <uuid>
    python -m selly_base.cli write-template --entity-type companies --format xlsx [--output path]
    python -m selly_base.cli check-file path/to/file.csv [--entity-type contacts]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

from selly_base.backends.base import DataBackend
from selly_base.backends.factory import build_backend
from selly_base.config import settings
from selly_base.logging_config import setup_logging
from selly_base.models.import_job import EntityType, ImportStatus
from selly_base.plugins.registry import discover
from selly_base.services import import_service
from selly_base.services.errors import ImportJobError
from selly_base.services.file_parser import parse_file, validate_row
from selly_base.services.templates import (
    TemplateFormat,
    generate_template,
    get_template_filename,
)
from selly_base.tasks.runners import build_runner

MAX_PRINTED_FINDINGS = 20


def _print_findings(title: str, findings: list[dict]) -> None:
    if not findings:
        return
    print(f"\n{title}:")
    for f in findings[:MAX_PRINTED_FINDINGS]:
        print(f"  row {f['row']:<6} {f['column']:<28} {f['message']}")
    if len(findings) > MAX_PRINTED_FINDINGS:
        print(f"  ... and {len(findings) - MAX_PRINTED_FINDINGS} more")


async def list_jobs(args: argparse.Namespace, backend: DataBackend) -> None:
    status = ImportStatus(args.status) if args.status else None
    organization_id = uuid.UUID(args.organization_id) if args.organization_id else None
    jobs, pagination = await import_service.get_import_jobs(
        backend, status=status, organization_id=organization_id, page=1, limit=args.limit
    )
    if not jobs:
        print("No import jobs found.")
        return

    print(f"{'ID':<38} {'Filename':<30} {'Entity':<12} {'Status':<22} {'Rows':>6} {'Errors':>7}")
    print("-" * 120)
    for j in jobs:
        print(
            f"{str(j.id):<38} {j.filename[:30]:<30} {j.entity_type.value:<12} "
            f"{j.status.value:<22} {j.total_records:>6} {j.error_records:>7}"
        )
    print(f"\nShowing {len(jobs)} of {pagination.total} job(s)")


async def import_errors(args: argparse.Namespace, backend: DataBackend) -> None:
    if args.job_id:
        job = await backend.get_job(uuid.UUID(args.job_id))
        if job is None:
            print(f"Error: import job '{args.job_id}' not found")
            sys.exit(1)
        print(f"Job:      {job.id}")
        print(f"File:     {job.filename}")
        print(f"Entity:   {job.entity_type.value}")
        print(f"Status:   {job.status.value}")
        print(f"Rows:     {job.total_records} total, {job.error_records} with errors")
        if not job.errors and not job.warnings:
            print("Findings: (none)")
        _print_findings("Errors", job.errors)
        _print_findings("Warnings", job.warnings)
        return

    jobs = []
    for status in (ImportStatus.COMPLETED_WITH_ERRORS, ImportStatus.FAILED, ImportStatus.VALIDATED):
        found, _ = await backend.list_jobs(status=status, limit=20)
        jobs.extend(j for j in found if j.errors)
    if not jobs:
        print("No import jobs with errors found.")
        return

    jobs.sort(key=lambda j: j.created_at, reverse=True)
    print(f"{'ID':<38} {'Filename':<30} {'Status':<22} {'First error'}")
    print("-" * 120)
    for j in jobs[:20]:
        first = j.errors[0]["message"][:60]
        print(f"{str(j.id):<38} {j.filename[:30]:<30} {j.status.value:<22} {first}")
    print(f"\nTotal: {min(len(jobs), 20)} job(s) with errors")


async def cancel_job(args: argparse.Namespace, backend: DataBackend) -> None:
    runner = build_runner(settings, backend)
    try:
        job = await import_service.cancel_import_job(backend, runner, uuid.UUID(args.job_id))
    except ImportJobError as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)
    print(f"Cancelled job {job.id} ({job.filename})")


async def write_template(args: argparse.Namespace, _backend: DataBackend | None = None) -> None:
    output = Path(args.output or get_template_filename(args.entity_type, args.format))
    output.write_bytes(generate_template(args.entity_type, args.format))
    print(f"Wrote {args.entity_type} template to {output}")


async def check_file(args: argparse.Namespace, _backend: DataBackend | None = None) -> None:
    path = Path(args.path)
    if not path.is_file():
        print(f"Error: file '{path}' not found")
        sys.exit(1)

    try:
        parsed = await parse_file(path.read_bytes(), path.name)
    except ImportJobError as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)

    errors: list[dict] = []
    warnings: list[dict] = []
    error_rows = 0
    for index, row in enumerate(parsed.rows, start=1):
        findings = validate_row(row, index, args.entity_type)
        row_errors = [f.model_dump() for f in findings if f.severity == "error"]
        if row_errors:
            error_rows += 1
        errors.extend(row_errors)
        warnings.extend(f.model_dump() for f in findings if f.severity == "warning")

    print(f"File:     {path.name}")
    print(f"Columns:  {', '.join(parsed.columns)}")
    print(
        f"Rows:     {parsed.total_rows} total, {parsed.total_rows - error_rows} valid, "
        f"{error_rows} with errors, {len(warnings)} warning(s)"
    )
    _print_findings("Errors", errors)
    _print_findings("Warnings", warnings)
    if error_rows:
        sys.exit(1)


OFFLINE_COMMANDS = {write_template, check_file}


async def _run(args: argparse.Namespace) -> None:
    if args.func in OFFLINE_COMMANDS:
        await args.func(args)
        return
    backend = build_backend(settings, worker=True)
    try:
        await args.func(args, backend)
    finally:
        await backend.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="selly_base.cli", description="Selly Base import tools")
    subparsers = parser.add_subparsers(dest="command", required=True)
    entity_choices = [e.value for e in EntityType]

    # list-jobs
    p_list = subparsers.add_parser("list-jobs", help="List recent import jobs")
    p_list.add_argument("--status", choices=[s.value for s in ImportStatus], default=None)
    p_list.add_argument("--organization-id", default=None)
    p_list.add_argument("--limit", type=int, default=20)
    p_list.set_defaults(func=list_jobs)

    # import-errors
    p_errors = subparsers.add_parser("import-errors", help="Show import jobs with errors")
    p_errors.add_argument("--job-id", required=False, default=None, help="Specific job UUID")
    p_errors.set_defaults(func=import_errors)

    # cancel-job
    p_cancel = subparsers.add_parser("cancel-job", help="Cancel a job that has not finished")
    p_cancel.add_argument("--job-id", required=True, help="ImportJob UUID")
    p_cancel.set_defaults(func=cancel_job)

    # write-template
    p_tmpl = subparsers.add_parser("write-template", help="Write an import template file")
    p_tmpl.add_argument("--entity-type", choices=entity_choices, default=EntityType.COMPANIES.value)
    p_tmpl.add_argument("--format", choices=[f.value for f in TemplateFormat], default="csv")
    p_tmpl.add_argument("--output", default=None)
    p_tmpl.set_defaults(func=write_template)

    # check-file
    p_check = subparsers.add_parser("check-file", help="Parse and validate a local file")
    p_check.add_argument("path")
    p_check.add_argument("--entity-type", choices=entity_choices, default=EntityType.COMPANIES.value)
    p_check.set_defaults(func=check_file)

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging()
    discover()
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
