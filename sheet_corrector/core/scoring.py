import math
from typing import Any, Dict, Optional, Sequence, TYPE_CHECKING

from sheet_corrector.utils import app_logger
from .models import Answer, AnswerKey, ExamDefinition, GradingScale, ScoreResult

if TYPE_CHECKING:
    from sheet_corrector.collaborators.repositories import ExamRepository


def round_half_up(value: float, digits: int = 1) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def compute_grade(correct: int, total: int, scale: GradingScale) -> float:
    """
    Linear two-segment grading scale.

    passing = ceil(total * demand / 100). At or above it the grade runs from
    passing_grade to max_grade, below it from min_grade to passing_grade.
    Rounded to one decimal.
    """
    passing = math.ceil(total * scale.demand_percentage / 100.0)

    if correct >= passing:
        top = total - passing
        ratio = (correct - passing) / float(top) if top > 0 else 1.0
        grade = scale.passing_grade + ratio * (scale.max_grade - scale.passing_grade)
    else:
        ratio = correct / float(passing) if passing > 0 else 0.0
        grade = scale.min_grade + ratio * (scale.passing_grade - scale.min_grade)

    return round_half_up(grade)


def count_correct(answers: Sequence[Answer], key: AnswerKey) -> int:
    correct = 0
    for answer in answers:
        # Blank and multiply-marked questions never count
        if answer.multiple_marks or answer.selected is None:
            continue
        entry = key.for_question(answer.question)
        if entry is not None and entry.accepts(answer.selected):
            correct += 1
    return correct


def score_answers(answers: Sequence[Answer], key: AnswerKey, scale: GradingScale,
                  total_questions: int) -> ScoreResult:
    correct = count_correct(answers, key)
    percentage = correct / float(total_questions) * 100.0 if total_questions > 0 else 0.0
    return ScoreResult(
        score=correct,
        total=total_questions,
        percentage=round_half_up(percentage),
        grade=compute_grade(correct, total_questions, scale),
    )


class ScoringEngine:
    """
    Scores a page against the finalized answer key of its exam.

    The key depends on the student for differentiated exams, which is why the
    identity has to be known before scoring. A key that cannot be resolved is
    not an error for the caller: the result carries score 0, the minimum grade
    and the reason in `error`.
    """

    def __init__(self, config: Dict[str, Any], exam_repository: "ExamRepository"):
        self.config = config
        self.exams = exam_repository
        app_logger.debug("ScoringEngine initialized.")

    def score(self, answers: Sequence[Answer], exam: ExamDefinition,
              student_id: Optional[str] = None) -> ScoreResult:
        total = exam.total_questions
        try:
            key = self.exams.get_finalized_answer_key(exam.exam_id, student_id)
        except Exception as e:
            app_logger.warning(f"No answer key for exam {exam.exam_id} (student: {student_id}): {e}")
            return ScoreResult(
                score=0,
                total=total,
                percentage=0.0,
                grade=exam.grading.min_grade,
                error=str(e),
            )

        result = score_answers(answers, key, exam.grading, total)
        app_logger.info(f"Scoring finished. {result.score}/{result.total} ({result.percentage}%) -> grade {result.grade}")
        return result
