"""
Reel views annotator — CLI entry point.

Usage:
    python annotate.py <excel_file> [--output <out.xlsx>] [--mode synthetic|apify|hiker]
    python annotate.py <excel_file> --plan-only

Finds every post link in the first worksheet, works out where each link's
view count belongs, fetches the counts with the chosen provider and writes
an annotated copy next to the input (``<name>_processed.xlsx``) unless
--output is given.

--plan-only prints the detected layout and placements without fetching.
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import sys
from pathlib import Path

from config import ProviderMode, load_settings
from dto.job import JobStatus
from errors import PipelineError
from jobs import BatchFetchOrchestrator, InMemoryJobStore, JobController, LocalBlobStore
from planning import build_plan

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger(__name__)


def _print_plan(excel_path: Path) -> int:
    try:
        plan = build_plan(excel_path.read_bytes())
    except PipelineError as exc:
        logger.error("%s", exc)
        return 1

    print(f"layout: {plan.layout.value}")
    for link in plan.links:
        target = link.views_cell.a1 if link.views_cell else "-"
        print(
            f"{link.cell.a1:>8} -> {target:<8} {link.status.value:<8} "
            f"{link.canonical_id}"
        )
    return 0


def annotate(excel_path: Path, output_path: Path, mode: ProviderMode) -> int:
    """Run one job over *excel_path* and copy the result to *output_path*."""
    blobs = LocalBlobStore(excel_path.parent)
    jobs = InMemoryJobStore()
    orchestrator = BatchFetchOrchestrator(blobs, jobs, settings=load_settings())
    controller = JobController(orchestrator, jobs)

    job = controller.create_job(excel_path.name)
    job = controller.run(job.id, mode)

    logger.info(
        "Job %s: status=%s processed=%d/%d (%.0f%%) failed=%d api_calls=%d",
        job.id, job.status.value, job.processed_links, job.total_links,
        job.progress * 100, job.failed_links, job.api_calls_made,
    )

    produced = job.result_document_ref or job.partial_result_ref
    if produced:
        produced_path = excel_path.parent / produced
        if produced_path.resolve() != output_path.resolve():
            shutil.copyfile(produced_path, output_path)
        logger.info("Output written to %s", output_path)

    if job.status != JobStatus.COMPLETED:
        logger.error("Job did not complete: %s", job.error_message)
        return 1
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Write post view counts next to the post links of a spreadsheet.",
    )
    parser.add_argument(
        "excel_file",
        help="Path to the .xlsx file to annotate",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output .xlsx path (default: <input_name>_processed.xlsx)",
    )
    parser.add_argument(
        "-m",
        "--mode",
        choices=[m.value for m in ProviderMode],
        default=os.getenv("PROVIDER_MODE", ProviderMode.SYNTHETIC.value),
        help="Where view counts come from (default: $PROVIDER_MODE or synthetic)",
    )
    parser.add_argument(
        "--plan-only",
        action="store_true",
        help="Only print the detected layout and target cells",
    )
    args = parser.parse_args()

    excel_path = Path(args.excel_file)
    if not excel_path.is_file():
        logger.error("File not found: %s", excel_path)
        sys.exit(1)

    if args.plan_only:
        sys.exit(_print_plan(excel_path))

    if args.output:
        output_path = Path(args.output)
    else:
        output_path = excel_path.with_name(f"{excel_path.stem}_processed.xlsx")

    sys.exit(annotate(excel_path, output_path, ProviderMode(args.mode)))


if __name__ == "__main__":
    main()
