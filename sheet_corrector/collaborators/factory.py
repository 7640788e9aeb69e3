from dataclasses import dataclass
from typing import Any, Dict, Optional

from sheet_corrector.core.aligner import ImageAligner
from sheet_corrector.core.interfaces import AlignmentBackend, IdRecognizer, MarkDetector
from sheet_corrector.core.layout import SheetLayout
from sheet_corrector.utils import app_logger
from .contour_detector import ContourMarkDetector
from .onnx_detector import OnnxMarkDetector
from .scripted import ScriptedIdRecognizer, ScriptedMarkDetector
from .tesseract_recognizer import TesseractIdRecognizer


@dataclass
class Collaborators:
    aligner: AlignmentBackend
    detector: MarkDetector
    recognizer: IdRecognizer


DETECTOR_BACKENDS = {
    "onnx": OnnxMarkDetector,
    "contour": ContourMarkDetector,
    "scripted": lambda config: ScriptedMarkDetector(),
}

RECOGNIZER_BACKENDS = {
    "tesseract": TesseractIdRecognizer,
    "scripted": lambda config: ScriptedIdRecognizer(),
}


def build_collaborators(config: Dict[str, Any],
                        aligner: Optional[AlignmentBackend] = None,
                        detector: Optional[MarkDetector] = None,
                        recognizer: Optional[IdRecognizer] = None,
                        layout: Optional[SheetLayout] = None) -> Collaborators:
    """
    Collaborators selected by the `backend` key of the `detector` and
    `recognizer` sections. Instances passed in explicitly win over the config.
    """
    if detector is None:
        name = config.get('detector', {}).get('backend', 'onnx')
        if name not in DETECTOR_BACKENDS:
            raise ValueError(f"Unknown detector backend: {name}")
        detector = DETECTOR_BACKENDS[name](config)

    if recognizer is None:
        name = config.get('recognizer', {}).get('backend', 'tesseract')
        if name not in RECOGNIZER_BACKENDS:
            raise ValueError(f"Unknown recognizer backend: {name}")
        recognizer = RECOGNIZER_BACKENDS[name](config)

    if aligner is None:
        aligner = ImageAligner(config, layout)

    app_logger.debug(
        f"Collaborators: aligner={type(aligner).__name__}, detector={type(detector).__name__}, "
        f"recognizer={type(recognizer).__name__}"
    )
    return Collaborators(aligner=aligner, detector=detector, recognizer=recognizer)
