from typing import Any, Dict, List, Sequence

from sheet_corrector.utils import app_logger
from .models import Answer, Detection, GridGeometry, GridRow, MarkCandidate


class AnswerMapper:
    """
    Turns raw mark detections into one Answer per grid row.

    Logic per row:
    1. Keep detections of the same side whose vertical centre is within
       `tolerance` pixels of the row.
    2. Each one whose horizontal centre is within `tolerance` of an
       alternative column becomes a candidate for that letter.
    3. No candidate -> blank, one -> selected, several -> multiple marks
       (nothing selected, every candidate kept for review).
    """

    TOLERANCE = 15.0  # px, in the aligned frame

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        cfg = config.get('mapping', {})
        self.tolerance = float(cfg.get('tolerance_px', self.TOLERANCE))
        app_logger.debug(f"AnswerMapper initialized (tolerance={self.tolerance}px).")

    def _candidates(self, row: GridRow, detections: Sequence[Detection]) -> List[MarkCandidate]:
        candidates = []
        for det in detections:
            if det.side is not None and det.side != row.side:
                continue
            cx, cy = det.bbox.center
            if abs(cy - row.y) > self.tolerance:
                continue
            for alt in row.alternatives:
                if abs(cx - alt.x) <= self.tolerance:
                    candidates.append(MarkCandidate(alt.letter, det.confidence, det.mark_class))
        return candidates

    def map(self, detections: Sequence[Detection], grid: GridGeometry) -> List[Answer]:
        answers = [
            Answer.from_candidates(row.question_number, self._candidates(row, detections))
            for row in grid.all_rows
        ]
        answers.sort(key=lambda a: a.question)

        answered = sum(1 for a in answers if a.selected is not None)
        multiple = sum(1 for a in answers if a.multiple_marks)
        app_logger.info(f"Mapped {len(detections)} detections to {len(answers)} questions "
                        f"(answered: {answered}, multiple: {multiple}).")
        return answers
