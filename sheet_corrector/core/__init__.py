"""
Package Core: geometry and grading logic of the correction pipeline.
- ImageAligner: finder markers and perspective correction.
- GridGeometryResolver: question rows from the row markers.
- RoiExtractor: identifier and table crops.
- AnswerMapper: detections to answers.
- ScoringEngine: score and grade.
"""

from .buffers import ImageBuffer
from .layout import SheetLayout
from .aligner import ImageAligner
from .grid import GridGeometryResolver
from .roi import RoiExtractor
from .answer_mapper import AnswerMapper
from .scoring import ScoringEngine, compute_grade, score_answers

__all__ = [
    'ImageBuffer', 'SheetLayout', 'ImageAligner', 'GridGeometryResolver',
    'RoiExtractor', 'AnswerMapper', 'ScoringEngine', 'compute_grade', 'score_answers',
]
