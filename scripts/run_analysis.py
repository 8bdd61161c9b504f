#!/usr/bin/env python3
"""
Command-line runner for curriculum alignment analysis.

  local FILE [--excel PATH]       run the whole pipeline in-process on a local file
  remote --base-url URL --id ID   trigger a run on a deployed API and poll it
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from alignment_api.analysis_schema import AnalysisStatus
from alignment_api.config import AnalysisSettings
from alignment_api.errors import AlignmentError
from alignment_api.generation_client import build_generation_client
from alignment_api.orchestrator import AnalysisOrchestrator
from alignment_api.poller import AnalysisStatusPoller, PollUpdate
from alignment_api.repository import InMemoryCurriculumRepository
from alignment_api.report_export import export_report_to_excel
from alignment_api.storage import StorageGateway
from alignment_api.structured_completion import StructuredCompletionClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _print_report(name: str, status: str, error, report) -> None:
    print("\n=== Curriculum Alignment Analysis ===")
    print(f"Curriculum: {name}")
    print(f"Status: {status}")
    if error:
        print(f"Error: {error}")
    if not report:
        return
    print(f"Score: {report.get('overallAlignmentScore')} ({report.get('overallStatusText')})")
    print(f"Analyzed by: {report.get('analyzedBy')}")
    for aspect in (report.get("aspects") or {}).values():
        print(f"\n{aspect['title']}: {aspect['partialScore']}/{aspect['partialMax']}")
        if aspect.get("summary"):
            print(f"  {aspect['summary']}")
        for finding in aspect.get("findings", []):
            print(f"  {finding['verdict']:<15} {finding['label']}")

    gap_analysis = report.get("gapAnalysis") or {}
    if gap_analysis.get("summary"):
        print(f"\nGap analysis: {gap_analysis['summary']}")
    for gap in gap_analysis.get("identifiedGaps", []):
        print(f"  [{gap['severity']}] {gap['area']}")
    for recommendation in gap_analysis.get("recommendations", []):
        print(f"  - {recommendation}")


async def _run_local(file_path: str, excel_path=None) -> int:
    path = Path(file_path).resolve()
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 2

    settings = AnalysisSettings.from_env()
    repository = InMemoryCurriculumRepository()
    record = repository.create(name=path.stem, original_file_name=path.name, storage_address=str(path))

    completion_client = StructuredCompletionClient(build_generation_client(settings), settings)
    orchestrator = AnalysisOrchestrator(
        repository=repository,
        storage=StorageGateway(settings),
        completion_client=completion_client,
        settings=settings,
    )
    orchestrator.mark_processing(record.id)
    outcome = await asyncio.wait_for(orchestrator.run(record.id), timeout=settings.timeout_seconds)

    _print_report(record.name, outcome.status.value, outcome.error, outcome.report)
    if excel_path and outcome.report:
        saved = export_report_to_excel(outcome.report, Path(excel_path), curriculum_name=record.name)
        print(f"\nExcel report written to {saved}")
    return 0 if outcome.status == AnalysisStatus.COMPLETED else 1


def _print_update(update: PollUpdate) -> None:
    print(update.message)
    if update.warning:
        print(f"Warning: {update.warning}")


async def _run_remote(base_url: str, curriculum_id: str, as_json: bool) -> int:
    settings = AnalysisSettings.from_env()
    poller = AnalysisStatusPoller(base_url, settings=settings, on_update=_print_update)
    try:
        triggered = await poller.trigger(curriculum_id)
        print(triggered.get("message", "Analysis triggered."))
        result = await poller.wait_for_completion(curriculum_id)
    except AlignmentError as exc:
        print(f"Polling failed: {exc}", file=sys.stderr)
        return 2

    if as_json:
        print(json.dumps(result.payload, indent=2))
    else:
        _print_report(result.payload.get("name", curriculum_id), result.status.value, result.error, result.results)
    return 0 if result.status == AnalysisStatus.COMPLETED else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Curriculum alignment analysis runner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    local_parser = subparsers.add_parser("local", help="Analyze a local PDF, DOCX or text file in-process")
    local_parser.add_argument("file_path", help="Path to the curriculum document")
    local_parser.add_argument("--excel", help="Also write the report to this .xlsx path")

    remote_parser = subparsers.add_parser("remote", help="Trigger and poll a run on a deployed API")
    remote_parser.add_argument("--base-url", required=True, help="API base URL, e.g. http://localhost:8000")
    remote_parser.add_argument("--id", required=True, dest="curriculum_id", help="Curriculum id")
    remote_parser.add_argument("--json", action="store_true", help="Print the final status payload as JSON")

    args = parser.parse_args()
    if args.command == "local":
        exit_code = asyncio.run(_run_local(args.file_path, args.excel))
    else:
        exit_code = asyncio.run(_run_remote(args.base_url, args.curriculum_id, args.json))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
