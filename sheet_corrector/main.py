"""
Entry point of the answer-sheet corrector (console).
Loads the configuration and the repositories, corrects a folder, a PDF or a
list of images against one exam and exports the summary.
"""

import argparse
import asyncio
import math
import sys
from pathlib import Path
from typing import List, Optional

from sheet_corrector.collaborators import (
    CsvIdentityRepository, FileResultStore, JsonExamRepository,
)
from sheet_corrector.core import SheetLayout
from sheet_corrector.core.exceptions import SheetCorrectorError
from sheet_corrector.core.models import BatchOptions, BatchProgress, ExamDefinition
from sheet_corrector.core.sheet_template import render_sheet
from sheet_corrector.utils import FileHandler, ImageUtils, app_logger
from sheet_corrector.utils.file_io import DEFAULT_CONFIG_PATH
from sheet_corrector.utils.page_source import is_pdf, list_page_files
from sheet_corrector.workers import CorrectionOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sheet-corrector",
        description="Correct scanned answer sheets against an exam answer key.",
    )
    parser.add_argument("inputs", nargs="*", type=Path,
                        help="Folder of scans, PDF file(s) or image file(s).")
    parser.add_argument("--exam", help="Exam ID to correct against.")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH,
                        help="Application config (JSON).")
    parser.add_argument("--exams", type=Path, help="Exams and answer keys (JSON). Overrides storage.exams_path.")
    parser.add_argument("--roster", type=Path, help="Student roster (CSV). Overrides storage.roster_path.")
    parser.add_argument("--out", type=Path, help="Result folder. Overrides storage.result_dir.")
    parser.add_argument("--format", choices=FileResultStore.FORMATS, help="Summary file format.")
    parser.add_argument("--concurrency", type=int, help="Pages processed at the same time.")
    parser.add_argument("--no-identify", action="store_true", help="Do not match IDs against the roster.")
    parser.add_argument("--check", action="store_true", help="Only report which services are available.")
    parser.add_argument("--debug-dir", type=Path, help="Write the debug overlays of every page here.")
    parser.add_argument("--preview-template", type=Path, metavar="PNG",
                        help="Render a blank sheet for --exam to this file and exit.")
    return parser


def collect_inputs(paths: List[Path]) -> List[Path]:
    files: List[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(list_page_files(path))
        elif path.is_file():
            files.append(path)
        else:
            app_logger.warning(f"Input not found, skipped: {path}")
    return files


def write_template_preview(config, exam: ExamDefinition, path: Path) -> bool:
    """Blank sheet for `exam`: questions split between the two tables, left first."""
    left_rows = math.ceil(exam.total_questions / 2)
    sheet = render_sheet(SheetLayout.from_config(config), left_rows,
                         exam.total_questions - left_rows, exam.alternative_count)
    return ImageUtils.save_image(sheet, path)


def print_progress(progress: BatchProgress) -> None:
    print(f"\r[{progress.stage:<10}] {progress.percentage:3d}% {progress.message:<50}", end="", flush=True)
    if progress.stage == "complete":
        print()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    app_logger.info("==========================================")
    app_logger.info("        STARTING SHEET CORRECTOR          ")
    app_logger.info("==========================================")

    try:
        config = FileHandler.load_config(args.config)
        if args.debug_dir:
            config.setdefault('review', {})['debug_dir'] = str(args.debug_dir)
        storage = config.get('storage', {})

        exams = JsonExamRepository(args.exams or Path(storage.get('exams_path', 'config/exams.json')))

        roster_path = args.roster or (Path(storage['roster_path']) if storage.get('roster_path') else None)
        identities = CsvIdentityRepository(roster_path) if roster_path and roster_path.exists() else None
        if identities is None:
            app_logger.warning("No roster loaded: students will not be identified.")

        results = FileResultStore(
            args.out or Path(storage.get('result_dir', 'results')),
            fmt=args.format or storage.get('format', 'csv'),
            prefix=args.exam or storage.get('prefix', 'results'),
        )

        orchestrator = CorrectionOrchestrator(config, exams, results, identities)

        if args.check:
            for name, ok in orchestrator.check_services().items():
                print(f"{name:<26} {'OK' if ok else 'MISSING'}")
            return 0

        if not args.exam:
            app_logger.error("--exam is required to correct sheets.")
            return 2

        if args.preview_template:
            if not write_template_preview(config, exams.get_exam(args.exam), args.preview_template):
                return 1
            print(f"Template written to: {args.preview_template}")
            return 0

        files = collect_inputs(args.inputs)
        if not files:
            app_logger.error("No images or PDF files to correct.")
            return 2
        pdf_count = sum(1 for f in files if is_pdf(f))
        app_logger.info(f"Inputs: {len(files)} files ({pdf_count} PDF).")

        options = BatchOptions(
            concurrency=args.concurrency or orchestrator.concurrency,
            identify=not args.no_identify,
        )
        summary = asyncio.run(orchestrator.process_batch(files, args.exam, options, print_progress))

        print(f"Pages: {summary.processed_pages}/{summary.total_pages}  "
              f"Identified: {summary.identified}  Pending: {summary.pending}  To review: {summary.errors}")
        for result in summary.results:
            if result.needs_review:
                reasons = "; ".join(str(r) for r in result.review_reasons)
                print(f"  page {result.page_number}: {reasons}")
        print(f"Summary written to: {results.path}")
        return 0

    except SheetCorrectorError as e:
        app_logger.critical(f"Correction aborted: {e}")
        return 1
    except Exception as e:
        app_logger.critical(f"Fatal Error: {e}", exc_info=True)
        return 1
    finally:
        app_logger.info("Sheet corrector terminated.")


if __name__ == "__main__":
    sys.exit(main())
