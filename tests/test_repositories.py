import json
from datetime import datetime, timedelta

import pandas as pd
import pytest

from conftest import CONFIG_DIR, make_key
from sheet_corrector.collaborators import (
    CsvIdentityRepository, FileResultStore, InMemoryExamRepository, InMemoryResultStore, JsonExamRepository,
)
from sheet_corrector.collaborators.repositories import exam_from_dict
from sheet_corrector.core.exceptions import ExamNotFoundError, MissingAnswerKeyError
from sheet_corrector.core.models import CorrectionResult, ExamDefinition, ExamQuestion


def make_result(exam_id="quiz", page=1, score=5, minutes=0):
    return CorrectionResult(
        exam_id=exam_id,
        page_number=page,
        student_id="st-001",
        detected_id="12.345.678-5",
        id_valid=True,
        id_confidence=0.91,
        answers=(),
        detections=(),
        score=score,
        total_questions=10,
        percentage=score * 10.0,
        grade=4.0,
        needs_review=False,
        review_reasons=(),
        corrected_at=datetime(2024, 5, 1, 10, 0) + timedelta(minutes=minutes),
    )


@pytest.fixture
def exams_file(tmp_path):
    data = {
        "exams": [
            {
                "exam_id": "q1",
                "title": "Quiz",
                "question_count": 3,
                "grading": {"demandPercentage": 50},
                "finalized_versions": {"type": "uniform", "answer_key": [
                    {"question": 1, "correct_answer": "A"},
                    {"question": 2, "correct_answer": "B"},
                    {"question": 3, "correct_answer": "C"},
                ]},
            },
            {
                "exam_id": "q2",
                "questions": [{"number": 1, "type": "boolean"}, {"number": 2, "alternatives": 5}],
                "finalized_versions": {"type": "differentiated", "answer_keys": {
                    "st-001": [{"question": 1, "correct_answer": "A"}, {"question": 2, "correct_answer": "E"}],
                }},
            },
            {"exam_id": "draft", "question_count": 5},
        ]
    }
    path = tmp_path / "exams.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_json_exam_repository(exams_file):
    repo = JsonExamRepository(exams_file)

    q1 = repo.get_exam("q1")
    assert q1.title == "Quiz"
    assert q1.total_questions == 3
    assert q1.grading.demand_percentage == 50.0
    assert [e.correct_answer for e in repo.get_finalized_answer_key("q1").entries] == ["A", "B", "C"]

    q2 = repo.get_exam("q2")
    assert q2.alternative_count == 5
    assert repo.is_differentiated("q2")
    assert repo.get_finalized_answer_key("q2", "st-001").for_question(2).correct_answer == "E"
    with pytest.raises(MissingAnswerKeyError):
        repo.get_finalized_answer_key("q2", "st-002")

    with pytest.raises(MissingAnswerKeyError):
        repo.get_finalized_answer_key("draft")
    with pytest.raises(ExamNotFoundError):
        repo.get_exam("nope")


def test_bundled_exams_load():
    repo = JsonExamRepository(CONFIG_DIR / "exams.json")
    assert repo.get_exam("quiz-01").total_questions == 10
    assert repo.is_differentiated("midterm-versions")


def test_exam_from_dict_requires_an_id():
    with pytest.raises(ValueError):
        exam_from_dict({"question_count": 3})


def test_uniform_key_ignores_the_student():
    repo = InMemoryExamRepository()
    repo.add_exam(ExamDefinition("u", (ExamQuestion(1),)), answer_key=make_key("C"))
    assert repo.get_finalized_answer_key("u", "anyone").for_question(1).correct_answer == "C"


def test_csv_roster(tmp_path):
    path = tmp_path / "roster.csv"
    path.write_text(
        "identity_id,validated_id,name\n"
        "st-1,12.345.678-5,Ana\n"
        "st-2,1000005-k,Luis\n"
        "st-3,,No ID\n",
        encoding="utf-8",
    )
    repo = CsvIdentityRepository(path)

    assert len(repo) == 2
    assert repo.find_by_validated_id("12345678-5").identity_id == "st-1"
    assert repo.find_by_validated_id("1.000.005-K").name == "Luis"
    assert repo.find_by_validated_id("11.111.111-1") is None


def test_csv_roster_missing_columns(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("id,name\n1,Ana\n", encoding="utf-8")
    with pytest.raises(ValueError):
        CsvIdentityRepository(path)


def test_in_memory_result_store():
    store = InMemoryResultStore()
    late = make_result(page=2, minutes=5)
    early = make_result(page=1)
    other = make_result(exam_id="other")
    for r in (late, early, other):
        store.save(r)

    assert store.results_by_exam("quiz") == [early, late]
    assert store.result_by_id(other.result_id) is other
    assert store.delete_results_by_exam("quiz") == 2
    assert store.results_by_exam("quiz") == []
    assert store.delete_results_by_exam("quiz") == 0


def test_file_result_store_csv(tmp_path):
    store = FileResultStore(tmp_path / "out", fmt="csv", prefix="quiz")
    store.save(make_result(page=1, score=5))
    store.save(make_result(page=2, score=7))
    store.save(make_result(exam_id="other", page=1))

    assert store.path.name == "quiz_summary.csv"
    df = pd.read_csv(store.path, encoding="utf-8-sig")
    assert len(df) == 3
    assert list(df["Score"])[:2] == [5, 7]
    assert df["Student"][0] == "st-001"

    assert store.delete_results_by_exam("other") == 1
    df = pd.read_csv(store.path, encoding="utf-8-sig")
    assert len(df) == 2
    assert set(df["Exam"]) == {"quiz"}


def test_file_result_store_excel(tmp_path):
    store = FileResultStore(tmp_path, fmt="excel", prefix="quiz")
    store.save(make_result(page=1))
    store.save(make_result(page=2))

    df = pd.read_excel(store.path)
    assert store.path.suffix == ".xlsx"
    assert list(df["Page"]) == [1, 2]


def test_file_result_store_rejects_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        FileResultStore(tmp_path, fmt="parquet")


def test_result_record():
    record = make_result().to_record()
    assert record["Exam"] == "quiz"
    assert record["CorrectedAt"] == "2024-05-01T10:00:00"
    assert record["ReviewReasons"] == ""


@pytest.mark.parametrize("fmt", ["csv", "excel"])
def test_file_result_store_deleting_everything_removes_the_file(tmp_path, fmt):
    store = FileResultStore(tmp_path, fmt=fmt, prefix="quiz")
    store.save(make_result(page=1))
    assert store.path.exists()

    assert store.delete_results_by_exam("quiz") == 1
    assert not store.path.exists()


def test_file_result_store_excel_appends_across_stores(tmp_path):
    FileResultStore(tmp_path, fmt="excel", prefix="quiz").save(make_result(page=1))
    FileResultStore(tmp_path, fmt="excel", prefix="quiz").save(make_result(page=2))

    df = pd.read_excel(tmp_path / "quiz_summary.xlsx")
    assert list(df["Page"]) == [1, 2]
