"""
Scripted collaborators: deterministic stand-ins for the detector and the
recognizer, driven by a callback or a fixed answer. Used by the test-suite and
for dry runs without a model or an OCR engine.
"""

import threading
import time
from typing import Callable, List, Optional, Union

from sheet_corrector.core.buffers import ImageBuffer
from sheet_corrector.core.identifier import MIN_BODY_DIGITS, is_valid_id, parse_recognized_text
from sheet_corrector.core.interfaces import IdRecognizer, MarkDetector
from sheet_corrector.core.models import Detection, DetectionOutput, IdRecognition

DetectorScript = Callable[[ImageBuffer], Union[DetectionOutput, List[Detection]]]
RecognizerScript = Callable[[ImageBuffer], Union[IdRecognition, str]]


class ScriptedMarkDetector(MarkDetector):

    def __init__(self,
                 script: Optional[DetectorScript] = None,
                 available: bool = True,
                 delay: Union[float, Callable[[ImageBuffer], float]] = 0.0,
                 init_delay: float = 0.0):
        self.script = script
        self.available = available
        self.delay = delay
        self.init_delay = init_delay
        self.initialized = False
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return self.available

    def initialize(self) -> None:
        if self.init_delay:
            time.sleep(self.init_delay)
        self.initialized = True

    def detect(self, image: ImageBuffer) -> DetectionOutput:
        with self._lock:
            self.calls.append(image.label)

        wait = self.delay(image) if callable(self.delay) else self.delay
        if wait:
            time.sleep(wait)

        if self.script is None:
            return DetectionOutput(True, [])
        out = self.script(image)
        if isinstance(out, DetectionOutput):
            return out
        return DetectionOutput(True, list(out))


class ScriptedIdRecognizer(IdRecognizer):
    """Answers every extract() with `text` (parsed like OCR output) or with the script result."""

    def __init__(self, text: Optional[str] = None, script: Optional[RecognizerScript] = None,
                 confidence: float = 0.9):
        self.text = text
        self.script = script
        self.confidence = confidence
        self.initialized = False
        self.terminated = False

    def initialize(self) -> None:
        self.initialized = True

    def _from_text(self, raw_text: str) -> IdRecognition:
        body, dv = parse_recognized_text(raw_text)
        return IdRecognition(
            success=len(body) >= MIN_BODY_DIGITS,
            id=body or None,
            check_digit=dv or None,
            is_valid=is_valid_id(body, dv),
            confidence=self.confidence,
            raw_text=raw_text,
        )

    def extract(self, image: ImageBuffer) -> IdRecognition:
        if self.script is not None:
            out = self.script(image)
            return out if isinstance(out, IdRecognition) else self._from_text(out)
        if self.text is None:
            return IdRecognition(success=False, error="No text")
        return self._from_text(self.text)

    def terminate(self) -> None:
        self.terminated = True
