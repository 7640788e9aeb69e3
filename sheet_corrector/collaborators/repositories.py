"""
Storage collaborators: exams and answer keys, student identities, results.

Interfaces first, then in-memory implementations (used by tests and as the
base of the file-backed ones), then the file-backed implementations: exams
from JSON, identities from a CSV roster and results to CSV/Excel.
"""

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sheet_corrector.core.exceptions import ExamNotFoundError, MissingAnswerKeyError
from sheet_corrector.core.identifier import normalize_id
from sheet_corrector.core.models import (
    AnswerKey, CorrectionResult, ExamDefinition, ExamQuestion, GradingScale, Identity,
)
from sheet_corrector.utils import FileHandler, app_logger

UNIFORM = "uniform"
DIFFERENTIATED = "differentiated"


# ------------------------------------------------------------
# Interfaces
# ------------------------------------------------------------

class ExamRepository(ABC):

    @abstractmethod
    def get_exam(self, exam_id: str) -> ExamDefinition:
        """Raises ExamNotFoundError for an unknown exam."""

    @abstractmethod
    def get_finalized_answer_key(self, exam_id: str, student_id: Optional[str] = None) -> AnswerKey:
        """Raises MissingAnswerKeyError when no key applies."""


class IdentityRepository(ABC):

    @abstractmethod
    def find_by_validated_id(self, validated_id: str) -> Optional[Identity]:
        ...


class ResultStore(ABC):

    @abstractmethod
    def save(self, result: CorrectionResult) -> None:
        ...

    @abstractmethod
    def results_by_exam(self, exam_id: str) -> List[CorrectionResult]:
        ...

    @abstractmethod
    def result_by_id(self, result_id: str) -> Optional[CorrectionResult]:
        ...

    @abstractmethod
    def delete_results_by_exam(self, exam_id: str) -> int:
        ...


# ------------------------------------------------------------
# In-memory implementations
# ------------------------------------------------------------

class InMemoryExamRepository(ExamRepository):
    """
    Exams and their finalized answer keys.

    A uniform exam has one key for everybody. A differentiated exam has one
    key per student (shuffled versions), so it can only be scored once the
    student is known.
    """

    def __init__(self):
        self._exams: Dict[str, ExamDefinition] = {}
        self._uniform_keys: Dict[str, AnswerKey] = {}
        self._student_keys: Dict[str, Dict[str, AnswerKey]] = {}

    def add_exam(self, exam: ExamDefinition,
                 answer_key: Optional[AnswerKey] = None,
                 student_keys: Optional[Dict[str, AnswerKey]] = None) -> None:
        self._exams[exam.exam_id] = exam
        if answer_key is not None:
            self._uniform_keys[exam.exam_id] = answer_key
        if student_keys is not None:
            self._student_keys[exam.exam_id] = dict(student_keys)

    def is_differentiated(self, exam_id: str) -> bool:
        return exam_id in self._student_keys

    def get_exam(self, exam_id: str) -> ExamDefinition:
        exam = self._exams.get(exam_id)
        if exam is None:
            raise ExamNotFoundError(f"Exam not found: {exam_id}")
        return exam

    def get_finalized_answer_key(self, exam_id: str, student_id: Optional[str] = None) -> AnswerKey:
        self.get_exam(exam_id)

        if student_id is not None and self.is_differentiated(exam_id):
            key = self._student_keys[exam_id].get(student_id)
            if key is None:
                raise MissingAnswerKeyError(f"No answer key for student {student_id} in exam {exam_id}")
            return key

        key = self._uniform_keys.get(exam_id)
        if key is None:
            if self.is_differentiated(exam_id):
                raise MissingAnswerKeyError(
                    f"Exam {exam_id} has one answer key per student and the student is unknown")
            raise MissingAnswerKeyError(f"Exam {exam_id} has no finalized answer key")
        return key


class InMemoryIdentityRepository(IdentityRepository):
    """Exact lookup on the normalized 'body-DV' form of the validated ID."""

    def __init__(self, identities: Optional[List[Identity]] = None):
        self._by_id: Dict[str, Identity] = {}
        for identity in identities or []:
            self.add(identity)

    def add(self, identity: Identity) -> None:
        self._by_id[normalize_id(identity.validated_id)] = identity

    def find_by_validated_id(self, validated_id: str) -> Optional[Identity]:
        return self._by_id.get(normalize_id(validated_id))

    def __len__(self) -> int:
        return len(self._by_id)


class InMemoryResultStore(ResultStore):
    """Thread-safe: pages of one window save concurrently."""

    def __init__(self):
        self._results: Dict[str, CorrectionResult] = {}
        self._lock = threading.Lock()

    def save(self, result: CorrectionResult) -> None:
        with self._lock:
            self._results[result.result_id] = result

    def results_by_exam(self, exam_id: str) -> List[CorrectionResult]:
        with self._lock:
            found = [r for r in self._results.values() if r.exam_id == exam_id]
        return sorted(found, key=lambda r: (r.corrected_at, r.page_number))

    def result_by_id(self, result_id: str) -> Optional[CorrectionResult]:
        with self._lock:
            return self._results.get(result_id)

    def delete_results_by_exam(self, exam_id: str) -> int:
        with self._lock:
            doomed = [rid for rid, r in self._results.items() if r.exam_id == exam_id]
            for rid in doomed:
                del self._results[rid]
        return len(doomed)

    def all_results(self) -> List[CorrectionResult]:
        with self._lock:
            return list(self._results.values())


# ------------------------------------------------------------
# File-backed implementations
# ------------------------------------------------------------

def exam_from_dict(data: Dict[str, Any]) -> ExamDefinition:
    """
    Build an ExamDefinition from its JSON form. Questions may be listed or
    given as a plain `question_count` of 4-alternative multiple choice.
    """
    exam_id = str(data.get("exam_id", data.get("id", "")))
    if not exam_id:
        raise ValueError("Exam entry without exam_id")

    if "questions" in data:
        questions = tuple(
            ExamQuestion(
                number=int(q.get("number", i)),
                type=q.get("type", "multiple"),
                alternatives=int(q.get("alternatives", 4)),
            )
            for i, q in enumerate(data["questions"], start=1)
        )
    else:
        questions = tuple(ExamQuestion(n) for n in range(1, int(data.get("question_count", 0)) + 1))

    return ExamDefinition(
        exam_id=exam_id,
        questions=questions,
        grading=GradingScale.from_dict(data.get("grading")),
        title=data.get("title", ""),
    )


class JsonExamRepository(InMemoryExamRepository):
    """
    Exams loaded from a JSON document:

        {"exams": [{"exam_id": "...", "title": "...", "questions": [...],
                    "grading": {...},
                    "finalized_versions": {"type": "uniform", "answer_key": [...]}}]}

    A differentiated exam carries {"type": "differentiated", "answer_keys":
    {"<student_id>": [...]}} instead.
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        data = FileHandler.load_json(self.path)

        for entry in data.get("exams", []):
            exam = exam_from_dict(entry)
            versions = entry.get("finalized_versions") or {}
            if versions.get("type", UNIFORM) == DIFFERENTIATED:
                keys = {
                    str(student): AnswerKey.from_records(records)
                    for student, records in (versions.get("answer_keys") or {}).items()
                }
                self.add_exam(exam, student_keys=keys)
            elif versions.get("answer_key"):
                self.add_exam(exam, answer_key=AnswerKey.from_records(versions["answer_key"]))
            else:
                self.add_exam(exam)

        app_logger.info(f"Loaded {len(self._exams)} exams from {self.path.name}")


class CsvIdentityRepository(InMemoryIdentityRepository):
    """Student roster from a CSV file with columns identity_id, validated_id, name."""

    REQUIRED_COLUMNS = ("identity_id", "validated_id")

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        df = FileHandler.load_table(self.path)

        missing = [c for c in self.REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            app_logger.error(f"Roster {self.path.name} is missing columns: {missing}")
            raise ValueError(f"Roster {self.path.name} is missing columns: {', '.join(missing)}")

        for row in df.to_dict(orient="records"):
            if not row["validated_id"]:
                continue
            self.add(Identity(row["identity_id"], row["validated_id"], row.get("name", "")))

        app_logger.info(f"Loaded {len(self)} identities from {self.path.name}")


class FileResultStore(InMemoryResultStore):
    """
    Results kept in memory and mirrored to a summary table (CSV or Excel)
    in `result_dir`. Saving appends one row; deleting rewrites the file.
    """

    FORMATS = ("csv", "excel")

    def __init__(self, result_dir: Union[str, Path], fmt: str = "csv", prefix: str = "results"):
        super().__init__()
        if fmt not in self.FORMATS:
            raise ValueError(f"Unsupported result format: {fmt}")
        self.result_dir = Path(result_dir)
        self.fmt = fmt
        self.prefix = prefix
        self._file_lock = threading.Lock()

    @property
    def path(self) -> Path:
        ext = "csv" if self.fmt == "csv" else "xlsx"
        return self.result_dir / f"{self.prefix}_summary.{ext}"

    def _write(self, records: List[Dict[str, Any]], overwrite: bool = False) -> None:
        FileHandler.write_records(records, self.path, append=not overwrite)

    def save(self, result: CorrectionResult) -> None:
        super().save(result)
        with self._file_lock:
            self._write([result.to_record()])

    def delete_results_by_exam(self, exam_id: str) -> int:
        removed = super().delete_results_by_exam(exam_id)
        if removed:
            remaining = sorted(self.all_results(), key=lambda r: (r.corrected_at, r.page_number))
            with self._file_lock:
                self._write([r.to_record() for r in remaining], overwrite=True)
        return removed
