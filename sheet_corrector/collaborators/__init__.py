"""
Package Collaborators: the external services of the pipeline.
- Mark detectors (ONNX model, contour fallback, scripted).
- ID recognizers (Tesseract, scripted).
- Repositories (exams, identities, results).
"""

from .contour_detector import ContourMarkDetector
from .onnx_detector import OnnxMarkDetector
from .tesseract_recognizer import TesseractIdRecognizer
from .scripted import ScriptedIdRecognizer, ScriptedMarkDetector
from .repositories import (
    ExamRepository, IdentityRepository, ResultStore,
    InMemoryExamRepository, InMemoryIdentityRepository, InMemoryResultStore,
    JsonExamRepository, CsvIdentityRepository, FileResultStore,
)
from .factory import Collaborators, build_collaborators

__all__ = [
    'ContourMarkDetector', 'OnnxMarkDetector', 'TesseractIdRecognizer',
    'ScriptedIdRecognizer', 'ScriptedMarkDetector',
    'ExamRepository', 'IdentityRepository', 'ResultStore',
    'InMemoryExamRepository', 'InMemoryIdentityRepository', 'InMemoryResultStore',
    'JsonExamRepository', 'CsvIdentityRepository', 'FileResultStore',
    'Collaborators', 'build_collaborators',
]
