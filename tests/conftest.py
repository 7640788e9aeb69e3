import os
from pathlib import Path

# No log files from the test-suite
os.environ.setdefault("SHEET_CORRECTOR_LOG_DIR", "")

import numpy as np
import pytest

from sheet_corrector.collaborators import (
    Collaborators, InMemoryExamRepository, InMemoryIdentityRepository, InMemoryResultStore,
    ContourMarkDetector, ScriptedIdRecognizer,
)
from sheet_corrector.core import ImageAligner, SheetLayout
from sheet_corrector.core.models import AnswerKey, ExamDefinition, ExamQuestion, Identity
from sheet_corrector.core.sheet_template import render_sheet

KEY_10 = "ABCDABCDAB"
VALID_ID = "12.345.678-5"


def make_exam(exam_id: str = "quiz", count: int = 10) -> ExamDefinition:
    return ExamDefinition(exam_id, tuple(ExamQuestion(n) for n in range(1, count + 1)))


def make_key(letters: str) -> AnswerKey:
    return AnswerKey.from_records(
        [{"question": i, "correct_answer": letter} for i, letter in enumerate(letters, start=1)]
    )


@pytest.fixture
def layout():
    return SheetLayout()


@pytest.fixture
def render(layout):
    """render(left_rows, marks=None, right_rows=0, size=None) -> BGR sheet"""
    def _render(left_rows, marks=None, right_rows=0, size=None, alternative_count=4):
        return render_sheet(layout, left_rows, right_rows, alternative_count, marks, size)
    return _render


@pytest.fixture
def blank_page():
    return np.full((1754, 1240, 3), 255, dtype=np.uint8)


@pytest.fixture
def exam_repo():
    repo = InMemoryExamRepository()
    repo.add_exam(make_exam("quiz"), answer_key=make_key(KEY_10))
    repo.add_exam(make_exam("no-key"))
    return repo


@pytest.fixture
def identities():
    return InMemoryIdentityRepository([Identity("st-001", VALID_ID, "Ana")])


@pytest.fixture
def result_store():
    return InMemoryResultStore()


@pytest.fixture
def collaborators(layout):
    return Collaborators(
        aligner=ImageAligner({}, layout),
        detector=ContourMarkDetector({}),
        recognizer=ScriptedIdRecognizer(text="123456785"),
    )


PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
