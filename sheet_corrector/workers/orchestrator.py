import asyncio
import time
import uuid
from contextlib import ExitStack
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from sheet_corrector.collaborators.factory import Collaborators, build_collaborators
from sheet_corrector.collaborators.repositories import ExamRepository, IdentityRepository, ResultStore
from sheet_corrector.core import AnswerMapper, GridGeometryResolver, RoiExtractor, ScoringEngine, SheetLayout
from sheet_corrector.core.exceptions import (
    CollaboratorInitTimeout, ConcurrentRunError, DetectionUnavailableError,
)
from sheet_corrector.core.models import (
    SIDES, BatchOptions, BatchProgress, BatchSummary, CorrectionResult, Detection, DetectionOutput,
    ExamDefinition, Page, ReviewCode, ReviewReason, ScoreResult,
)
from sheet_corrector.utils import ImageUtils, app_logger
from sheet_corrector.utils.page_source import PageInput, load_pages
from sheet_corrector.utils.visualize import draw_detections, draw_grid, draw_markers

ProgressCallback = Callable[[BatchProgress], None]

STAGE_DECODE = "decode"
STAGE_INITIALIZE = "initialize"
STAGE_PROCESS = "process"
STAGE_COMPLETE = "complete"


class BatchRun:
    """
    Handle of one batch run.

    `progress` always holds the last reported BatchProgress; `wait()` returns
    the BatchSummary or raises the run-level error that aborted the run.
    """

    def __init__(self, run_id: str, exam_id: str):
        self.run_id = run_id
        self.exam_id = exam_id
        self.started_at = datetime.now()
        self.progress: Optional[BatchProgress] = None
        self._task: Optional["asyncio.Task[BatchSummary]"] = None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> BatchSummary:
        return await self._task

    def __repr__(self) -> str:
        stage = self.progress.stage if self.progress else "pending"
        return f"BatchRun({self.run_id[:8]}, exam={self.exam_id}, stage={stage}, done={self.done})"


class CorrectionOrchestrator:
    """
    Runs the correction of a batch of pages:

    1. Decode the inputs into pages.
    2. Initialize the collaborators (detector is mandatory, bounded by a timeout).
    3. Process pages in windows of `concurrency`: pages of a window run
       concurrently, windows one after the other, results in input order.

    Per page: Align -> ROIs -> Recognize ID -> Identify -> Detect -> Map ->
    Score -> Persist. A page never aborts the batch: degraded stages and
    unexpected errors become review reasons on its result.
    """

    LOW_CONFIDENCE_THRESHOLD = 0.7
    CONCURRENCY = 4
    INIT_TIMEOUT_SECONDS = 10.0

    def __init__(self,
                 config: Dict[str, Any],
                 exams: ExamRepository,
                 results: ResultStore,
                 identities: Optional[IdentityRepository] = None,
                 collaborators: Optional[Collaborators] = None,
                 layout: Optional[SheetLayout] = None):
        self.config = config
        self.exams = exams
        self.results = results
        self.identities = identities
        self.layout = layout or SheetLayout.from_config(config)
        self.collaborators = collaborators or build_collaborators(config, layout=self.layout)

        self.grid_resolver = GridGeometryResolver(config, self.layout)
        self.roi_extractor = RoiExtractor(config, self.layout)
        self.mapper = AnswerMapper(config)
        self.scoring = ScoringEngine(config, exams)

        review_cfg = config.get('review', {})
        self.low_confidence = float(review_cfg.get('low_confidence_threshold', self.LOW_CONFIDENCE_THRESHOLD))
        self.thumbnail_width = int(review_cfg.get('thumbnail_width', ImageUtils.THUMBNAIL_WIDTH))
        debug_dir = review_cfg.get('debug_dir')
        self.debug_dir = Path(debug_dir) if debug_dir else None

        batch_cfg = config.get('batch', {})
        self.concurrency = int(batch_cfg.get('concurrency', self.CONCURRENCY))
        self.init_timeout = float(batch_cfg.get('init_timeout_seconds', self.INIT_TIMEOUT_SECONDS))

        self._active_run: Optional[BatchRun] = None
        self._recognizer_ready = False
        app_logger.debug("CorrectionOrchestrator initialized.")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active_run(self) -> Optional[BatchRun]:
        return self._active_run

    def check_services(self) -> Dict[str, bool]:
        detector_ready = self.collaborators.detector.is_available()
        return {
            'alignment': self.collaborators.aligner is not None,
            'detector': detector_ready,
            'detector_model_available': detector_ready,
            # Loaded lazily by the first run
            'recognizer': self.collaborators.recognizer is not None,
        }

    def start_batch(self,
                    pages: Sequence[PageInput],
                    exam_id: str,
                    options: Optional[BatchOptions] = None,
                    on_progress: Optional[ProgressCallback] = None) -> BatchRun:
        """
        Start a run on the running event loop and return its handle at once.
        Raises ConcurrentRunError if another run is still active.
        """
        if self._active_run is not None:
            raise ConcurrentRunError(f"A correction run is already in progress ({self._active_run.run_id}).")

        options = options or BatchOptions(concurrency=self.concurrency)
        if options.concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        loop = asyncio.get_running_loop()
        run = BatchRun(str(uuid.uuid4()), exam_id)
        self._active_run = run
        run._task = loop.create_task(self._run(run, list(pages), exam_id, options, on_progress))
        app_logger.info(f"Batch run {run.run_id} started for exam {exam_id} ({len(pages)} inputs).")
        return run

    async def process_batch(self,
                            pages: Sequence[PageInput],
                            exam_id: str,
                            options: Optional[BatchOptions] = None,
                            on_progress: Optional[ProgressCallback] = None) -> BatchSummary:
        run = self.start_batch(pages, exam_id, options, on_progress)
        return await run.wait()

    # ------------------------------------------------------------------
    # Run phases
    # ------------------------------------------------------------------

    def _report(self, run: BatchRun, on_progress: Optional[ProgressCallback], progress: BatchProgress) -> None:
        run.progress = progress
        app_logger.debug(f"[{progress.stage}] {progress.current}/{progress.total} {progress.message}")
        if on_progress is not None:
            on_progress(progress)

    async def _run(self, run: BatchRun, sources: List[PageInput], exam_id: str,
                   options: BatchOptions, on_progress: Optional[ProgressCallback]) -> BatchSummary:
        start_time = time.time()
        pages: List[Page] = []
        try:
            exam = self.exams.get_exam(exam_id)

            # PHASE 1: decode
            loop = asyncio.get_running_loop()
            self._report(run, on_progress, BatchProgress.of(STAGE_DECODE, 0, len(sources), "Decoding pages..."))

            def on_page(current: int, total: int, message: str) -> None:
                loop.call_soon_threadsafe(
                    self._report, run, on_progress, BatchProgress.of(STAGE_DECODE, current, total, message))

            pages = await asyncio.to_thread(load_pages, sources, on_page)

            # PHASE 2: collaborators
            await self._initialize(run, on_progress)

            # PHASE 3: pages
            results = await self._process_windows(run, pages, exam, options, on_progress)

            summary = BatchSummary.from_results(len(pages), results)
            self._report(run, on_progress, BatchProgress.of(
                STAGE_COMPLETE, len(pages), len(pages), f"{summary.processed_pages} pages corrected"))

            elapsed = time.time() - start_time
            app_logger.info(
                f"Batch run {run.run_id} finished. Pages: {summary.processed_pages}/{summary.total_pages}, "
                f"identified: {summary.identified}, to review: {summary.errors}. Time: {elapsed:.2f}s"
            )
            return summary

        except Exception as e:
            app_logger.error(f"Batch run {run.run_id} aborted: {e}")
            raise

        finally:
            for page in pages:
                page.release()
            self._terminate_recognizer()
            if self._active_run is run:
                self._active_run = None

    async def _init_with_timeout(self, init: Callable[[], None], name: str) -> None:
        try:
            await asyncio.wait_for(asyncio.to_thread(init), timeout=self.init_timeout)
        except asyncio.TimeoutError:
            raise CollaboratorInitTimeout(f"{name} did not initialize within {self.init_timeout:.0f}s") from None

    async def _initialize(self, run: BatchRun, on_progress: Optional[ProgressCallback]) -> None:
        detector = self.collaborators.detector
        recognizer = self.collaborators.recognizer
        total = 3

        self._report(run, on_progress, BatchProgress.of(STAGE_INITIALIZE, 0, total, "Initializing services..."))
        if not detector.is_available():
            raise DetectionUnavailableError("The mark detection model is not available.")
        self._report(run, on_progress, BatchProgress.of(STAGE_INITIALIZE, 1, total, "Loading mark detector..."))

        try:
            await self._init_with_timeout(detector.initialize, "Mark detector")
        except CollaboratorInitTimeout:
            raise
        except Exception as e:
            raise DetectionUnavailableError(f"The mark detector failed to initialize: {e}") from e
        self._report(run, on_progress, BatchProgress.of(STAGE_INITIALIZE, 2, total, "Loading ID recognizer..."))

        # Without a recognizer pages are still corrected, only flagged as unidentified
        try:
            await self._init_with_timeout(recognizer.initialize, "ID recognizer")
            self._recognizer_ready = True
        except CollaboratorInitTimeout:
            raise
        except Exception as e:
            app_logger.error(f"ID recognizer unavailable, IDs will not be read: {e}")
            self._recognizer_ready = False
        self._report(run, on_progress, BatchProgress.of(STAGE_INITIALIZE, 3, total, "Services ready"))

    def _terminate_recognizer(self) -> None:
        if not self._recognizer_ready:
            return
        self._recognizer_ready = False
        try:
            self.collaborators.recognizer.terminate()
        except Exception as e:
            app_logger.warning(f"ID recognizer did not terminate cleanly: {e}")

    async def _process_windows(self, run: BatchRun, pages: List[Page], exam: ExamDefinition,
                               options: BatchOptions, on_progress: Optional[ProgressCallback]) -> List[CorrectionResult]:
        results: List[CorrectionResult] = []
        total = len(pages)
        step = options.concurrency

        for start in range(0, total, step):
            window = pages[start:start + step]
            self._report(run, on_progress, BatchProgress.of(
                STAGE_PROCESS, start, total, f"Processing pages {start + 1}-{start + len(window)} of {total}..."))

            # gather keeps input order whatever the completion order
            window_results = await asyncio.gather(*(self._process_page(page, exam, options) for page in window))
            results.extend(window_results)

        return results

    # ------------------------------------------------------------------
    # Page pipeline
    # ------------------------------------------------------------------

    async def _detect_tables(self, rois, reasons: List[ReviewReason]) -> List[Detection]:
        """Detections of both tables, moved from ROI to sheet coordinates."""
        detector = self.collaborators.detector
        detections: List[Detection] = []

        for side in SIDES:
            roi = rois.table(side)
            if roi is None:
                continue
            try:
                output = await asyncio.to_thread(detector.detect, roi.image)
            except Exception as e:
                app_logger.error(f"Detector raised on the {side} table: {e}")
                output = DetectionOutput(False, error=str(e))

            if not output.success:
                reasons.append(ReviewReason(
                    ReviewCode.DETECTION_FAILED, f"Mark detection failed on the {side} table: {output.error}"))
                continue
            detections.extend(d.shifted(roi.x, roi.y, side) for d in output.detections)

        return detections

    async def _save_overlays(self, page: Page, image, alignment, sheet, grid, rois, detections, answers) -> None:
        """Marker, grid and per-table detection overlays of one page under `debug_dir`."""
        prefix = f"page_{page.page_number:03d}"
        overlays = [
            (f"{prefix}_markers.png", draw_markers(image.array, alignment.markers)),
            (f"{prefix}_grid.png", draw_grid(sheet.array, grid, answers)),
        ]
        for side in SIDES:
            roi = rois.table(side)
            if roi is None:
                continue
            local = [d.shifted(-roi.x, -roi.y) for d in detections if d.side == side]
            overlays.append((f"{prefix}_detections_{side}.png", draw_detections(roi.image.array, local)))

        for name, overlay in overlays:
            if not await asyncio.to_thread(ImageUtils.save_image, overlay, self.debug_dir / name):
                app_logger.warning(f"Could not write debug overlay {name}")

    async def _process_page(self, page: Page, exam: ExamDefinition, options: BatchOptions) -> CorrectionResult:
        start_time = time.perf_counter()
        reasons: List[ReviewReason] = []

        student_id = None
        detected_id = None
        id_valid = False
        id_confidence = 0.0
        answers = []
        detections: List[Detection] = []
        scoring = ScoreResult(0, exam.total_questions, 0.0, exam.grading.min_grade)
        markers_found = 0
        rows_detected = 0
        thumbnail = None

        with ExitStack() as stack:
            stack.callback(page.release)
            try:
                image = page.image
                thumbnail = await asyncio.to_thread(ImageUtils.thumbnail, image.array, self.thumbnail_width)

                # 1. Align
                alignment = await asyncio.to_thread(self.collaborators.aligner.align, image)
                sheet = stack.enter_context(alignment.sheet)
                markers_found = alignment.markers.found
                if not alignment.success:
                    reasons.append(ReviewReason(ReviewCode.ALIGNMENT_DEGRADED, alignment.error or "Alignment failed"))

                # 2. Grid & ROIs
                grid = await asyncio.to_thread(self.grid_resolver.resolve, sheet, exam.alternative_count)
                rows_detected = grid.rows_detected
                rois = await asyncio.to_thread(self.roi_extractor.extract, sheet, grid)
                for buf in rois.buffers():
                    stack.enter_context(buf)

                # 3. Recognize ID
                recognition = None
                if rois.id_field is not None and self._recognizer_ready:
                    recognition = await asyncio.to_thread(self.collaborators.recognizer.extract, rois.id_field.image)

                if recognition is None or not recognition.success:
                    reasons.append(ReviewReason(ReviewCode.ID_UNREADABLE, "Could not read the student ID"))
                else:
                    detected_id = recognition.formatted
                    id_valid = recognition.is_valid
                    id_confidence = recognition.confidence
                    if not id_valid:
                        reasons.append(ReviewReason(
                            ReviewCode.ID_CHECKSUM_INVALID, f"Invalid student ID {detected_id} (check digit)"))

                # 4. Identify (before scoring: differentiated exams need the student's key)
                if options.identify and id_valid and self.identities is not None:
                    identity = await asyncio.to_thread(self.identities.find_by_validated_id, detected_id)
                    if identity is not None:
                        student_id = identity.identity_id

                # 5. Detect
                detections = await self._detect_tables(rois, reasons)

                # 6. Map
                answers = self.mapper.map(detections, grid)
                multiple = sum(1 for a in answers if a.multiple_marks)
                if multiple:
                    reasons.append(ReviewReason(ReviewCode.MULTIPLE_MARKS, f"{multiple} questions with multiple marks"))

                if self.debug_dir is not None:
                    try:
                        await self._save_overlays(page, image, alignment, sheet, grid, rois, detections, answers)
                    except Exception as e:
                        app_logger.warning(f"Debug overlays of page {page.page_number} failed: {e}")

                # 7. Score
                scoring = await asyncio.to_thread(self.scoring.score, answers, exam, student_id)
                if scoring.error:
                    reasons.append(ReviewReason(ReviewCode.ANSWER_KEY_MISSING, scoring.error))

                low = sum(1 for d in detections if d.confidence < self.low_confidence)
                if low:
                    reasons.append(ReviewReason(ReviewCode.LOW_CONFIDENCE, f"{low} detections with low confidence"))

            except Exception as e:
                app_logger.error(f"Error processing page {page.page_number}: {e}", exc_info=True)
                reasons.append(ReviewReason(ReviewCode.PAGE_ERROR, f"Error: {e}"))

        result = CorrectionResult(
            exam_id=exam.exam_id,
            page_number=page.page_number,
            student_id=student_id,
            detected_id=detected_id,
            id_valid=id_valid,
            id_confidence=id_confidence,
            answers=tuple(answers),
            detections=tuple(detections),
            score=scoring.score,
            total_questions=scoring.total,
            percentage=scoring.percentage,
            grade=scoring.grade,
            needs_review=bool(reasons),
            review_reasons=tuple(reasons),
            markers_found=markers_found,
            rows_detected=rows_detected,
            thumbnail=thumbnail,
            processing_time=time.perf_counter() - start_time,
        )

        # 8. Persist
        try:
            await asyncio.to_thread(self.results.save, result)
        except Exception as e:
            app_logger.error(f"Could not save the result of page {page.page_number}: {e}")
            result = replace(
                result,
                needs_review=True,
                review_reasons=result.review_reasons + (ReviewReason(ReviewCode.PAGE_ERROR, f"Result not saved: {e}"),),
            )

        app_logger.info(
            f"Page {page.page_number}: {result.score}/{result.total_questions} -> {result.grade} "
            f"(review: {'yes' if result.needs_review else 'no'}) in {result.processing_time:.2f}s"
        )
        return result
