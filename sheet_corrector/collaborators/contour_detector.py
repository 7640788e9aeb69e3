import cv2
import math
from typing import Any, Dict

from sheet_corrector.core.aligner import to_gray
from sheet_corrector.core.buffers import ImageBuffer
from sheet_corrector.core.interfaces import MarkDetector
from sheet_corrector.core.models import BoundingBox, Detection, DetectionOutput
from sheet_corrector.utils import app_logger


class ContourMarkDetector(MarkDetector):
    """
    Model-free detector for filled bubbles.

    Dark blobs (below a fixed intensity, so the light grid lines drop out)
    whose shape is close to a filled disc are reported as `mark_circle`. The
    confidence is the blob area over the area of its enclosing circle.
    Needs no model file, which makes it usable on plain bubble sheets and on
    rendered test sheets.
    """

    DARK_THRESHOLD = 100
    AREA_RANGE = (60, 5000)  # px
    ASPECT_RATIO_RANGE = (0.6, 1.6)
    MIN_FILL = 0.6
    MARK_CLASS = "mark_circle"

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        cfg = config.get('detector', {})
        self.dark_threshold = int(cfg.get('dark_threshold', self.DARK_THRESHOLD))
        self.area_range = tuple(cfg.get('blob_area_range', self.AREA_RANGE))
        self.aspect_range = tuple(cfg.get('blob_aspect_ratio_range', self.ASPECT_RATIO_RANGE))
        self.min_fill = float(cfg.get('min_fill', self.MIN_FILL))
        app_logger.debug("ContourMarkDetector initialized.")

    def is_available(self) -> bool:
        return True

    def initialize(self) -> None:
        pass

    def detect(self, image: ImageBuffer) -> DetectionOutput:
        try:
            gray = to_gray(image.array)
            _, binary = cv2.threshold(gray, self.dark_threshold, 255, cv2.THRESH_BINARY_INV)
            contours, _ = cv2.findContours(binary, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)

            detections = []
            for c in contours:
                area = cv2.contourArea(c)
                if not (self.area_range[0] <= area <= self.area_range[1]):
                    continue
                x, y, w, h = cv2.boundingRect(c)
                ratio = w / float(h) if h > 0 else 0
                if not (self.aspect_range[0] <= ratio <= self.aspect_range[1]):
                    continue

                _, radius = cv2.minEnclosingCircle(c)
                fill = area / (math.pi * radius * radius) if radius > 0 else 0.0
                if fill < self.min_fill:
                    continue

                detections.append(Detection(
                    bbox=BoundingBox(float(x), float(y), float(w), float(h)),
                    confidence=min(1.0, fill),
                    mark_class=self.MARK_CLASS,
                ))

            app_logger.debug(f"Contour detector found {len(detections)} marks in {image.label}.")
            return DetectionOutput(True, detections)

        except Exception as e:
            app_logger.error(f"Contour detection failed on {image.label}: {e}")
            return DetectionOutput(False, error=str(e))
