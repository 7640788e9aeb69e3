from abc import ABC, abstractmethod

from .buffers import ImageBuffer
from .models import AlignmentResult, DetectionOutput, IdRecognition


class AlignmentBackend(ABC):

    @abstractmethod
    def align(self, image: ImageBuffer) -> AlignmentResult:
        ...


class MarkDetector(ABC):
    """
    Finds handwritten marks in an answer-table crop.

    Coordinates of the returned detections are in the frame of the image
    passed to detect(); moving them back to the sheet is the caller's job.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """True when the model can be loaded (e.g. the model file exists)."""

    @abstractmethod
    def initialize(self) -> None:
        ...

    @abstractmethod
    def detect(self, image: ImageBuffer) -> DetectionOutput:
        ...


class IdRecognizer(ABC):
    """Reads the fixed-length numeric identifier field."""

    @abstractmethod
    def initialize(self) -> None:
        ...

    @abstractmethod
    def extract(self, image: ImageBuffer) -> IdRecognition:
        ...

    def terminate(self) -> None:
        pass
