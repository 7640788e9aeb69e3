from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .buffers import ImageBuffer
from .identifier import format_id

LEFT = "left"
RIGHT = "right"
SIDES = (LEFT, RIGHT)

MARK_CLASSES = ("mark_X", "mark_circle", "mark_line", "mark_check")


# ------------------------------------------------------------
# Pages & alignment
# ------------------------------------------------------------

@dataclass
class Page:
    page_number: int
    image: ImageBuffer
    source: str = ""

    def release(self) -> None:
        self.image.release()


@dataclass(frozen=True)
class MarkerBox:
    """Detected finder marker. x/y are the centre of its bounding box."""
    x: float
    y: float
    width: float
    height: float
    area: float


@dataclass(frozen=True)
class AlignmentMarkers:
    top_left: Optional[MarkerBox] = None
    top_right: Optional[MarkerBox] = None
    bottom_left: Optional[MarkerBox] = None

    @property
    def found(self) -> int:
        return sum(1 for m in (self.top_left, self.top_right, self.bottom_left) if m is not None)

    @property
    def complete(self) -> bool:
        return self.found == 3

    @property
    def bottom_right(self) -> Optional[Tuple[float, float]]:
        # Never detected: inferred from the other two corners
        if self.top_right is None or self.bottom_left is None:
            return None
        return (self.top_right.x, self.bottom_left.y)


@dataclass
class AlignmentResult:
    sheet: ImageBuffer
    markers: AlignmentMarkers
    success: bool
    error: Optional[str] = None


# ------------------------------------------------------------
# Grid
# ------------------------------------------------------------

@dataclass(frozen=True)
class RowMarker:
    y: float
    side: str


@dataclass(frozen=True)
class Alternative:
    letter: str
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class GridRow:
    question_number: int
    y: float
    side: str
    alternatives: Tuple[Alternative, ...]


@dataclass
class GridGeometry:
    left: List[GridRow] = field(default_factory=list)
    right: List[GridRow] = field(default_factory=list)

    def rows(self, side: str) -> List[GridRow]:
        return self.left if side == LEFT else self.right

    @property
    def all_rows(self) -> List[GridRow]:
        return list(self.left) + list(self.right)

    @property
    def rows_detected(self) -> int:
        return len(self.left) + len(self.right)


@dataclass
class RegionOfInterest:
    """Crop of the aligned sheet plus the offset of its top-left corner."""
    image: ImageBuffer
    x: int
    y: int
    side: Optional[str] = None


@dataclass
class SheetRois:
    id_field: Optional[RegionOfInterest] = None
    left_table: Optional[RegionOfInterest] = None
    right_table: Optional[RegionOfInterest] = None

    def table(self, side: str) -> Optional[RegionOfInterest]:
        return self.left_table if side == LEFT else self.right_table

    def buffers(self) -> List[ImageBuffer]:
        return [r.image for r in (self.id_field, self.left_table, self.right_table) if r is not None]


# ------------------------------------------------------------
# Detections & answers
# ------------------------------------------------------------

@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)


@dataclass(frozen=True)
class Detection:
    bbox: BoundingBox
    confidence: float
    mark_class: str
    side: Optional[str] = None

    def shifted(self, dx: float, dy: float, side: Optional[str] = None) -> "Detection":
        """Same detection translated into another coordinate frame."""
        b = self.bbox
        return Detection(
            bbox=BoundingBox(b.x + dx, b.y + dy, b.width, b.height),
            confidence=self.confidence,
            mark_class=self.mark_class,
            side=side if side is not None else self.side,
        )


@dataclass
class DetectionOutput:
    success: bool
    detections: List[Detection] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class MarkCandidate:
    letter: str
    confidence: float
    mark_type: Optional[str]


@dataclass(frozen=True)
class Answer:
    """
    Answer read for one question.

    selected is set only when exactly one candidate matched; multiple_marks is
    True when more than one did, in which case every candidate is kept.
    """
    question: int
    selected: Optional[str]
    confidence: float
    mark_type: Optional[str]
    multiple_marks: bool
    all_marked: Tuple[MarkCandidate, ...] = ()

    @classmethod
    def from_candidates(cls, question: int, candidates: List[MarkCandidate]) -> "Answer":
        if len(candidates) == 1:
            only = candidates[0]
            return cls(question, only.letter, only.confidence, only.mark_type, False, tuple(candidates))
        return cls(question, None, 0.0, None, len(candidates) > 1, tuple(candidates))


# ------------------------------------------------------------
# Exams, keys & grading
# ------------------------------------------------------------

@dataclass(frozen=True)
class AnswerKeyEntry:
    question: int
    correct_answer: Optional[str] = None
    correct_alternatives: Tuple[str, ...] = ()

    def accepts(self, letter: Optional[str]) -> bool:
        if not letter:
            return False
        if self.correct_answer is not None:
            return letter == self.correct_answer
        return letter in self.correct_alternatives


@dataclass(frozen=True)
class AnswerKey:
    entries: Tuple[AnswerKeyEntry, ...]

    @classmethod
    def from_records(cls, records: List[Dict[str, Any]]) -> "AnswerKey":
        """Accepts [{question, correct_answer | correct_alternatives}] (camelCase too)."""
        entries = []
        for rec in records:
            question = int(rec.get("question"))
            answer = rec.get("correct_answer", rec.get("correctAnswer"))
            alternatives = rec.get("correct_alternatives", rec.get("correctAlternatives")) or ()
            entries.append(AnswerKeyEntry(question, answer, tuple(alternatives)))
        entries.sort(key=lambda e: e.question)
        return cls(tuple(entries))

    def for_question(self, question: int) -> Optional[AnswerKeyEntry]:
        for entry in self.entries:
            if entry.question == question:
                return entry
        return None

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class GradingScale:
    max_grade: float = 7.0
    min_grade: float = 1.0
    passing_grade: float = 4.0
    demand_percentage: float = 60.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GradingScale":
        data = data or {}
        default = cls()
        return cls(
            max_grade=float(data.get("max_grade", data.get("maxGrade", default.max_grade))),
            min_grade=float(data.get("min_grade", data.get("minGrade", default.min_grade))),
            passing_grade=float(data.get("passing_grade", data.get("passingGrade", default.passing_grade))),
            demand_percentage=float(data.get("demand_percentage", data.get("demandPercentage", default.demand_percentage))),
        )


@dataclass(frozen=True)
class ExamQuestion:
    number: int
    type: str = "multiple"  # multiple | boolean | development
    alternatives: int = 4


@dataclass(frozen=True)
class ExamDefinition:
    exam_id: str
    questions: Tuple[ExamQuestion, ...]
    grading: GradingScale = GradingScale()
    title: str = ""

    MIN_ALTERNATIVES = 4

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def alternative_count(self) -> int:
        counts = [
            2 if q.type == "boolean" else q.alternatives
            for q in self.questions
            if q.type in ("multiple", "boolean")
        ]
        return max(counts + [self.MIN_ALTERNATIVES])


@dataclass(frozen=True)
class ScoreResult:
    score: int
    total: int
    percentage: float
    grade: float
    error: Optional[str] = None


# ------------------------------------------------------------
# Identification
# ------------------------------------------------------------

@dataclass(frozen=True)
class IdRecognition:
    success: bool
    id: Optional[str] = None
    check_digit: Optional[str] = None
    is_valid: bool = False
    confidence: float = 0.0
    raw_text: str = ""
    error: Optional[str] = None

    @property
    def formatted(self) -> Optional[str]:
        if not self.success or not self.id:
            return None
        return f"{format_id(self.id)}-{self.check_digit or ''}"


@dataclass(frozen=True)
class Identity:
    identity_id: str
    validated_id: str
    name: str = ""


# ------------------------------------------------------------
# Review & results
# ------------------------------------------------------------

class ReviewCode(str, enum.Enum):
    ALIGNMENT_DEGRADED = "alignment_degraded"
    ID_UNREADABLE = "id_unreadable"
    ID_CHECKSUM_INVALID = "id_checksum_invalid"
    MULTIPLE_MARKS = "multiple_marks"
    ANSWER_KEY_MISSING = "answer_key_missing"
    LOW_CONFIDENCE = "low_confidence"
    DETECTION_FAILED = "detection_failed"
    PAGE_ERROR = "page_error"


@dataclass(frozen=True)
class ReviewReason:
    code: ReviewCode
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class CorrectionResult:
    exam_id: str
    page_number: int
    student_id: Optional[str]
    detected_id: Optional[str]
    id_valid: bool
    id_confidence: float
    answers: Tuple[Answer, ...]
    detections: Tuple[Detection, ...]
    score: int
    total_questions: int
    percentage: float
    grade: float
    needs_review: bool
    review_reasons: Tuple[ReviewReason, ...]
    markers_found: int = 0
    rows_detected: int = 0
    thumbnail: Optional[bytes] = None
    processing_time: float = 0.0
    corrected_at: datetime = field(default_factory=datetime.now)
    result_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def has_reason(self, code: ReviewCode) -> bool:
        return any(r.code == code for r in self.review_reasons)

    def to_record(self) -> Dict[str, Any]:
        """Flat row for tabular export (thumbnail and raw detections left out)."""
        return {
            "ResultId": self.result_id,
            "Exam": self.exam_id,
            "Page": self.page_number,
            "Student": self.student_id or "",
            "DetectedId": self.detected_id or "",
            "IdValid": self.id_valid,
            "IdConfidence": round(self.id_confidence, 3),
            "Score": self.score,
            "Total": self.total_questions,
            "Percentage": self.percentage,
            "Grade": self.grade,
            "NeedsReview": self.needs_review,
            "ReviewReasons": "; ".join(str(r) for r in self.review_reasons),
            "Answers": "".join(a.selected or ("*" if a.multiple_marks else "-") for a in self.answers),
            "ProcessingTime": round(self.processing_time, 3),
            "CorrectedAt": self.corrected_at.isoformat(timespec="seconds"),
        }


# ------------------------------------------------------------
# Batch
# ------------------------------------------------------------

@dataclass(frozen=True)
class BatchProgress:
    stage: str
    current: int
    total: int
    percentage: int
    message: str = ""

    @classmethod
    def of(cls, stage: str, current: int, total: int, message: str = "") -> "BatchProgress":
        percentage = int(round(current / total * 100)) if total > 0 else 0
        return cls(stage, current, total, percentage, message)


@dataclass(frozen=True)
class BatchOptions:
    concurrency: int = 4
    identify: bool = True


@dataclass
class BatchSummary:
    success: bool
    total_pages: int
    processed_pages: int
    identified: int
    pending: int
    errors: int
    results: List[CorrectionResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, total_pages: int, results: List[CorrectionResult]) -> "BatchSummary":
        return cls(
            success=True,
            total_pages=total_pages,
            processed_pages=len(results),
            identified=sum(1 for r in results if r.student_id is not None),
            pending=sum(1 for r in results if r.student_id is None),
            errors=sum(1 for r in results if r.needs_review),
            results=list(results),
        )
