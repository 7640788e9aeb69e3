import pytest

from conftest import KEY_10, make_exam, make_key
from sheet_corrector.collaborators import InMemoryExamRepository
from sheet_corrector.core import ScoringEngine, compute_grade, score_answers
from sheet_corrector.core.models import Answer, GradingScale, MarkCandidate
from sheet_corrector.core.scoring import round_half_up


def answers_from(letters):
    """'AB-C*' -> answers; '-' is blank, '*' is a double mark."""
    out = []
    for q, ch in enumerate(letters, start=1):
        if ch == "-":
            out.append(Answer.from_candidates(q, []))
        elif ch == "*":
            out.append(Answer.from_candidates(q, [MarkCandidate("A", 0.9, None), MarkCandidate("B", 0.9, None)]))
        else:
            out.append(Answer.from_candidates(q, [MarkCandidate(ch, 0.9, "mark_X")]))
    return out


@pytest.mark.parametrize("correct, grade", [
    (0, 1.0),
    (3, 2.5),
    (6, 4.0),
    (8, 5.5),
    (10, 7.0),
])
def test_default_scale(correct, grade):
    assert compute_grade(correct, 10, GradingScale()) == grade


def test_grade_is_monotonic():
    scale = GradingScale()
    grades = [compute_grade(c, 37, scale) for c in range(38)]
    assert grades == sorted(grades)
    assert grades[0] == scale.min_grade
    assert grades[-1] == scale.max_grade


def test_full_demand_scale():
    scale = GradingScale(demand_percentage=100)
    assert compute_grade(10, 10, scale) == 7.0
    assert compute_grade(9, 10, scale) < 4.0


def test_round_half_up():
    assert round_half_up(2.25) == 2.3
    assert round_half_up(66.66666) == 66.7


def test_blank_and_double_marks_never_count():
    result = score_answers(answers_from("AB*D-BCDAB"), make_key(KEY_10), GradingScale(), 10)
    assert result.score == 8
    assert result.percentage == 80.0
    assert result.grade == 5.5


def test_total_comes_from_the_exam_not_the_answers():
    result = score_answers(answers_from("ABCD"), make_key(KEY_10), GradingScale(), 10)
    assert result.score == 4
    assert result.total == 10
    assert result.percentage == 40.0


def test_missing_key_is_a_soft_failure():
    repo = InMemoryExamRepository()
    exam = make_exam("e1")
    repo.add_exam(exam)

    result = ScoringEngine({}, repo).score(answers_from(KEY_10), exam)

    assert result.score == 0
    assert result.grade == exam.grading.min_grade
    assert result.percentage == 0.0
    assert result.error


def test_differentiated_keys_follow_the_student():
    repo = InMemoryExamRepository()
    exam = make_exam("e2", 4)
    repo.add_exam(exam, student_keys={"st-1": make_key("AAAA"), "st-2": make_key("BBBB")})
    engine = ScoringEngine({}, repo)
    answers = answers_from("AAAA")

    assert engine.score(answers, exam, "st-1").score == 4
    assert engine.score(answers, exam, "st-2").score == 0
    unknown = engine.score(answers, exam, None)
    assert unknown.score == 0
    assert unknown.error
